"""
npdelivery Sync — Scheduled Index Rebuilds
==========================================

Two one-shot jobs rebuild the reference indices from scratch:

    DomesticSync       np_cities, np_divisions        (Nova Poshta API)
    InternationalSync  npi_countries, npi_cities,     (Nova Post dump)
                       npi_divisions

Each job builds new timestamped indices, bulk-loads them in batches, and
only then moves the aliases. When the load looks incomplete the new indices
are dropped and the aliases keep serving the previous data.

Typical usage:
    settings = Settings.from_env()
    with IndexManager.from_settings(settings) as manager:
        DomesticSync(settings, manager).run()
"""

import gzip
import logging
import os
import tempfile
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, Optional, Set

import ijson

from .api import NovaPoshtaClient, NovaPostClient
from .config import Settings
from .indexer import BulkLoader, IndexManager, DEFAULT_BATCH_SIZE, timestamped_name
from .tariff import load_local_tariff_refs
from . import transform
from .transform import (
    CITIES_INDEX,
    DIVISIONS_INDEX,
    INTL_CITIES_INDEX,
    INTL_COUNTRIES_INDEX,
    INTL_DIVISIONS_INDEX,
)


logger = logging.getLogger(__name__)


# Warehouses per getWarehouses page
DIVISIONS_PAGE_LIMIT = 500

# Domestic divisions live in the Nova Poshta API, not in the international dump
SKIPPED_COUNTRY = "ua"


class SyncAborted(Exception):
    """A sync run stopped before switching aliases."""


@dataclass
class SyncResult:
    """Outcome of one sync run."""

    job: str
    indices: Dict[str, str] = field(default_factory=dict)
    counts: Dict[str, int] = field(default_factory=dict)
    upstream_total: Optional[int] = None
    switched: bool = False


def divisions_incomplete(current: Optional[int], total: int, loaded: int) -> bool:
    """
    Decide whether a divisions load is too inconsistent to go live.

    Args:
        current: Documents behind the live alias (None/0 on first run)
        total: Total reported by the upstream API
        loaded: Documents read during this run

    Returns:
        True when the alias must stay on the old index
    """
    if not current:
        return False
    if current < total and current > loaded:
        return True
    if current > total and total == loaded:
        return True
    return False


def _data(response: Optional[dict]) -> Optional[list]:
    if not isinstance(response, dict):
        return None
    data = response.get("data")
    return data if isinstance(data, list) else None


class DomesticSync:
    """
    Rebuild of Nova Poshta cities and divisions.

    Cities are flagged with ``localTariff`` from the file written by
    ``LocalTariffProber``; run the prober first to refresh it.
    """

    def __init__(
        self,
        settings: Settings,
        manager: IndexManager,
        api: Optional[NovaPoshtaClient] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.settings = settings
        self.manager = manager
        self.api = api or NovaPoshtaClient(settings)
        self.batch_size = batch_size
        self._sleep = sleep

    def run(self) -> SyncResult:
        """
        Execute the rebuild.

        Returns:
            SyncResult with switched=True

        Raises:
            SyncAborted: upstream data missing or the count check failed
        """
        print("Starting the process of fetching and processing Nova Poshta data...")

        ts = int(time.time())
        result = SyncResult(job="np:save")
        result.indices = {
            CITIES_INDEX: timestamped_name(CITIES_INDEX, ts),
            DIVISIONS_INDEX: timestamped_name(DIVISIONS_INDEX, ts),
        }
        cities_index = result.indices[CITIES_INDEX]
        divisions_index = result.indices[DIVISIONS_INDEX]

        try:
            self.manager.create_index(cities_index, transform.CITY_PROPERTIES)
            self.manager.create_index(divisions_index, transform.DIVISION_PROPERTIES)

            result.counts["cities"] = self._load_cities(cities_index)
            total, loaded = self._load_divisions(divisions_index)
            result.upstream_total = total
            result.counts["divisions"] = loaded

            current = self.manager.count(DIVISIONS_INDEX)
            if divisions_incomplete(current, total, loaded):
                raise SyncAborted(
                    f"NP not correctly processed {loaded} of get {total} divisions, "
                    f"stay last index and not switch indexes"
                )
        except SyncAborted as e:
            logger.error("%s", e)
            self.manager.discard(cities_index, divisions_index)
            raise
        except Exception as e:
            logger.error("NP sync failed, dropping the new indices: %s", e)
            self.manager.discard(cities_index, divisions_index)
            raise

        self.manager.switch_alias(CITIES_INDEX, cities_index)
        self.manager.switch_alias(DIVISIONS_INDEX, divisions_index)
        result.switched = True

        print("Process completed successfully.")
        return result

    def _load_cities(self, index: str) -> int:
        print("Processing the NP cities...")

        cities = _data(self.api.get_cities())
        if cities is None:
            raise SyncAborted("NP cities are unavailable")

        local_refs = load_local_tariff_refs(self.settings.local_tariff_file)

        with BulkLoader(self.manager.client, "cities", self.batch_size) as loader:
            for city in cities:
                doc = transform.city_document(city, local_refs)
                loader.add(index, doc["ref"], doc)

        return loader.total

    def _postomat_refs(self) -> Set[str]:
        types = _data(self.api.get_warehouse_types())
        if types is None:
            raise SyncAborted("NP warehouse types are unavailable")
        return transform.postomat_type_refs(types)

    def _upstream_total(self) -> int:
        probe = self.api.get_warehouses(1, 1)
        try:
            return int(probe["info"]["totalCount"])
        except (TypeError, KeyError, ValueError):
            raise SyncAborted("NP divisions total is unavailable")

    def _load_divisions(self, index: str):
        print("Processing the NP divisions...")

        postomat_refs = self._postomat_refs()
        total = self._upstream_total()
        print(f"Total - {total}")

        pages = total // DIVISIONS_PAGE_LIMIT + 1
        with BulkLoader(self.manager.client, "divisions", self.batch_size) as loader:
            for page in range(1, pages + 1):
                divisions = _data(self.api.get_warehouses(page, DIVISIONS_PAGE_LIMIT))
                if divisions is None:
                    logger.warning("NP divisions page %d of %d is unavailable", page, pages)
                    divisions = []

                for division in divisions:
                    doc = transform.division_document(division, postomat_refs)
                    loader.add(index, doc["ref"], doc)

                if page < pages:
                    self._sleep(self.settings.divisions_page_delay)

        return total, loader.total


def iter_dump_items(path: str) -> Iterator[dict]:
    """
    Division items of a gzip-compressed Nova Post dump.

    The ``items`` array is parsed incrementally, one item in memory at a time.

    Raises:
        OSError, EOFError: the file is not a complete gzip stream
        ijson.JSONError: the decompressed body is not valid JSON
    """
    with gzip.open(path, "rb") as f:
        for item in ijson.items(f, "items.item", use_float=True):
            if isinstance(item, dict):
                yield item


class InternationalSync:
    """Rebuild of Nova Post international countries, cities and divisions."""

    ALIASES = (INTL_COUNTRIES_INDEX, INTL_CITIES_INDEX, INTL_DIVISIONS_INDEX)

    def __init__(
        self,
        settings: Settings,
        manager: IndexManager,
        api: Optional[NovaPostClient] = None,
        batch_size: int = DEFAULT_BATCH_SIZE
    ):
        self.settings = settings
        self.manager = manager
        self.api = api or NovaPostClient(settings)
        self.batch_size = batch_size

    def run(self) -> SyncResult:
        """
        Execute the rebuild.

        Raises:
            SyncAborted: the dump could not be fetched or read
        """
        print("Starting the process of fetching and processing NP international data...")

        versions = self.api.get_versions()
        if not versions:
            logger.error("NovaPost divisions versions are unavailable")
            raise SyncAborted("NovaPost divisions versions are unavailable")

        fd, tmp_path = tempfile.mkstemp(prefix="base_version", suffix=".gz")
        os.close(fd)

        try:
            print("Downloading and saving data to a temporary file...")
            if not self.api.download_base_version(versions, tmp_path):
                logger.error("NovaPost base version download failed")
                raise SyncAborted("NovaPost base version download failed")

            return self._rebuild(tmp_path)
        finally:
            os.remove(tmp_path)

    def _rebuild(self, dump_path: str) -> SyncResult:
        ts = int(time.time())
        result = SyncResult(job="npi:save")
        result.indices = {alias: timestamped_name(alias, ts) for alias in self.ALIASES}
        countries_index = result.indices[INTL_COUNTRIES_INDEX]
        cities_index = result.indices[INTL_CITIES_INDEX]
        divisions_index = result.indices[INTL_DIVISIONS_INDEX]

        countries: Set[str] = set()
        cities: Set[str] = set()
        divisions = 0

        try:
            self.manager.create_index(countries_index, transform.INTL_COUNTRY_PROPERTIES)
            self.manager.create_index(cities_index, transform.INTL_CITY_PROPERTIES)
            self.manager.create_index(divisions_index, transform.INTL_DIVISION_PROPERTIES)

            print("Processing the JSON stream from the compressed file...")

            with BulkLoader(self.manager.client, "records", self.batch_size) as loader:
                for item in iter_dump_items(dump_path):
                    country = transform.country_document(item)
                    if country["code"] == SKIPPED_COUNTRY:
                        continue

                    if country["code"] not in countries:
                        loader.add(countries_index, country["code"], country)
                        countries.add(country["code"])

                    city_id = transform.intl_city_id(item)
                    if city_id and city_id not in cities:
                        loader.add(cities_index, city_id, transform.intl_city_document(item))
                        cities.add(city_id)

                    loader.add(divisions_index, item.get("id"), transform.intl_division_document(item))
                    divisions += 1
        except (OSError, EOFError, ValueError, ijson.JSONError) as e:
            logger.error("NovaPost dump could not be read: %s", e)
            self.manager.discard(countries_index, cities_index, divisions_index)
            raise SyncAborted(f"NovaPost dump could not be read: {e}") from e
        except Exception as e:
            logger.error("NPI sync failed, dropping the new indices: %s", e)
            self.manager.discard(countries_index, cities_index, divisions_index)
            raise

        result.counts = {
            "countries": len(countries),
            "cities": len(cities),
            "divisions": divisions,
        }

        for alias in self.ALIASES:
            self.manager.switch_alias(alias, result.indices[alias])
        result.switched = True

        print(f"Processed {divisions:,} divisions. Process completed successfully.")
        return result
