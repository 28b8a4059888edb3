"""
npdelivery CLI — Command-Line Interface
=======================================

Scheduled jobs and quick lookups.

Usage:
    npdelivery local-tariff-save
    npdelivery np-save
    npdelivery npi-save
    npdelivery indices
    npdelivery cities --locale ru
    npdelivery warehouses 8d5a980d-391c-11dd-90d9-001a92567626 --type postomat
"""

import argparse
import logging
import sys
from typing import List, Optional

from .config import Settings


def get_settings(args) -> Settings:
    """Environment settings with CLI overrides applied."""
    return Settings.from_env().with_overrides(hosts=args.hosts, api_key=args.api_key)


def cmd_np_save(args) -> int:
    """Rebuild Nova Poshta cities and divisions."""
    from .indexer import IndexManager
    from .sync import DomesticSync, SyncAborted

    settings = get_settings(args)
    with IndexManager.from_settings(settings) as manager:
        try:
            result = DomesticSync(settings, manager).run()
        except SyncAborted as e:
            print(f"Aborted: {e}")
            return 1

    print(f"Cities: {result.counts['cities']:,}")
    print(f"Divisions: {result.counts['divisions']:,} of {result.upstream_total:,}")
    return 0


def cmd_npi_save(args) -> int:
    """Rebuild Nova Post international countries, cities and divisions."""
    from .indexer import IndexManager
    from .sync import InternationalSync, SyncAborted

    settings = get_settings(args)
    with IndexManager.from_settings(settings) as manager:
        try:
            result = InternationalSync(settings, manager).run()
        except SyncAborted as e:
            print(f"Aborted: {e}")
            return 1

    for name, count in result.counts.items():
        print(f"{name.capitalize()}: {count:,}")
    return 0


def cmd_local_tariff_save(args) -> int:
    """Probe quotes and save the local tariff cities."""
    from .indexer import IndexManager
    from .lookup import DomesticLookup
    from .tariff import LocalTariffProber

    settings = get_settings(args)
    with IndexManager.from_settings(settings) as manager:
        members = LocalTariffProber(settings, DomesticLookup(manager.client)).run()

    return 0 if members is not None else 1


def cmd_indices(args) -> int:
    """List aliases and the indices behind them."""
    from .indexer import IndexManager

    settings = get_settings(args)
    with IndexManager.from_settings(settings) as manager:
        aliases = manager.aliases()

        print(f"\n{'Alias':<16} {'Index':<28} {'Docs':>10}")
        print("-" * 56)

        for alias in sorted(aliases):
            for index in aliases[alias]:
                count = manager.count(index) or 0
                print(f"{alias:<16} {index:<28} {count:>10,}")

    return 0


def cmd_cities(args) -> int:
    """Print cities in display order."""
    from .indexer import IndexManager
    from .lookup import DomesticLookup

    settings = get_settings(args)
    with IndexManager.from_settings(settings) as manager:
        lookup = DomesticLookup(manager.client, locale=settings.locale)
        cities = lookup.get_cities(locale=args.locale)

    for city in cities[:args.limit]:
        marker = "*" if city["localTariff"] else " "
        print(f"{marker} {city['ref']}  {city['typeCity'] or '':<8} {city['description']}")

    print(f"\n{len(cities):,} cities (* local tariff)")
    return 0


def cmd_warehouses(args) -> int:
    """Print warehouses of a city."""
    from .indexer import IndexManager
    from .lookup import DomesticLookup

    settings = get_settings(args)
    with IndexManager.from_settings(settings) as manager:
        lookup = DomesticLookup(manager.client, locale=settings.locale)
        warehouses = lookup.get_warehouses(args.city_ref, args.type, locale=args.locale)

    for wh in warehouses:
        print(f"[{wh['typeOfWarehouse']:<8}] {wh['siteKey'] or '':>6}  {wh['description']}")

    print(f"\n{len(warehouses):,} warehouses")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="npdelivery",
        description="Nova Poshta reference data in Elasticsearch"
    )

    # Global options
    parser.add_argument(
        "--hosts",
        help="Elasticsearch hosts (comma-separated)",
        default=None
    )
    parser.add_argument(
        "--api-key",
        dest="api_key",
        help="Elasticsearch API key",
        default=None
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("np-save", help="Save cities, warehouses, postomats")
    subparsers.add_parser("npi-save", help="Save international countries, cities, divisions")
    subparsers.add_parser("local-tariff-save", help="Save cities with the local tariff")
    subparsers.add_parser("indices", help="List aliases and their indices")

    # cities command
    cities_parser = subparsers.add_parser("cities", help="List cities")
    cities_parser.add_argument("--locale", choices=["uk", "ru"], default=None, help="Name locale")
    cities_parser.add_argument("--limit", type=int, default=50, help="Max rows to print")

    # warehouses command
    wh_parser = subparsers.add_parser("warehouses", help="List warehouses of a city")
    wh_parser.add_argument("city_ref", help="City ref")
    wh_parser.add_argument("--type", choices=["postomat", "division"], default=None, help="Warehouse type")
    wh_parser.add_argument("--locale", choices=["uk", "ru"], default=None, help="Name locale")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    commands = {
        "np-save": cmd_np_save,
        "npi-save": cmd_npi_save,
        "local-tariff-save": cmd_local_tariff_save,
        "indices": cmd_indices,
        "cities": cmd_cities,
        "warehouses": cmd_warehouses,
    }

    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 0

    return handler(args)


if __name__ == "__main__":
    sys.exit(main())
