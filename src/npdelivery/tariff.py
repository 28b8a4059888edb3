"""
npdelivery Tariff — Local Tariff Membership
===========================================

A city belongs to the local tariff when a reference parcel sent there from
the reference city (Kyiv by default) costs the same as one sent within the
reference city itself.

The membership is written to a JSON file keyed by city ref; the next
DomesticSync run reads it to set ``localTariff`` on each city.
"""

import json
import logging
import os
import time
from typing import Callable, Dict, Optional, Set

from .api import NovaPoshtaClient
from .config import Settings
from .lookup import DomesticLookup


logger = logging.getLogger(__name__)


def load_local_tariff_refs(path: str) -> Set[str]:
    """
    Refs stored in the local tariff file.

    A missing or unreadable file means no city gets the flag.
    """
    if not path or not os.path.exists(path):
        return set()

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning("Local tariff file %s is unreadable: %s", path, e)
        return set()

    return set(data) if isinstance(data, dict) else set()


class LocalTariffProber:
    """
    Probe delivery quotes to find local tariff cities.

    Example:
        prober = LocalTariffProber(settings, DomesticLookup(manager.client))
        members = prober.run()
    """

    def __init__(
        self,
        settings: Settings,
        lookup: DomesticLookup,
        api: Optional[NovaPoshtaClient] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.settings = settings
        self.lookup = lookup
        self.api = api or NovaPoshtaClient(settings)
        self._sleep = sleep

    def probe(self) -> Optional[Dict[str, dict]]:
        """
        Compare quotes for every candidate city.

        Returns:
            {ref: {"areaDescription", "ref"}} of matching cities, or None when
            the reference city is unknown
        """
        name = self.settings.local_tariff_city_name
        reference = self.lookup.get_city_ref(name)
        if not reference:
            logger.error("Local tariff reference city %r not found", name)
            return None

        candidates = self.lookup.get_area_cities(self.settings.local_tariff_city_area)
        base_price = self.api.get_document_price(reference, reference)

        members: Dict[str, dict] = {}
        if not base_price:
            logger.warning("No base delivery price for %s, no city gets the local tariff", name)
            return members

        for i, city in enumerate(candidates):
            if i:
                self._sleep(self.settings.tariff_probe_delay)
            if self.api.get_document_price(reference, city["ref"]) == base_price:
                members[city["ref"]] = city

        logger.info("%d of %d cities share the %s tariff", len(members), len(candidates), name)
        return members

    def run(self) -> Optional[Dict[str, dict]]:
        """Probe and write the membership file."""
        members = self.probe()
        if members is None:
            return None

        path = self.settings.local_tariff_file
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        with open(path, "w", encoding="utf-8") as f:
            json.dump(members, f, ensure_ascii=False)

        print(f"Saved {len(members)} local tariff cities to {path}")
        return members
