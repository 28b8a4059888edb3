"""
npdelivery API — Upstream HTTP Clients
======================================

Two upstream sources feed the indices:

    Nova Poshta JSON API   →  cities, warehouses, warehouse types, quotes
    Nova Post divisions    →  gzip-compressed JSON dump of international divisions

Every request failure is logged and turned into ``None``; callers decide
whether missing data aborts their job.
"""

import logging
import time
from typing import Any, Dict, List, Optional

import requests

from .config import Settings


logger = logging.getLogger(__name__)

# Streets change rarely; keep a city's list for a day
STREETS_TTL = 86400
DOWNLOAD_CHUNK = 1024 * 1024


class NovaPoshtaClient:
    """
    Client for the Nova Poshta v2.0 JSON API.

    Every call posts the same envelope:
        {"apiKey", "modelName", "calledMethod", "methodProperties"}

    Example:
        client = NovaPoshtaClient(Settings.from_env())
        cities = client.get_cities()
    """

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        self.settings = settings
        self._session = session or requests.Session()
        self._streets_cache: Dict[str, tuple] = {}

    def call(
        self,
        model: str,
        method: str,
        properties: Optional[Dict[str, Any]] = None
    ) -> Optional[dict]:
        """
        Send one API call.

        Args:
            model: Nova Poshta model name (e.g. "Address")
            method: Called method (e.g. "getCities")
            properties: Method properties (sent as {} when empty)

        Returns:
            Decoded response body, or None on transport/decoding failure
        """
        payload = {
            "apiKey": self.settings.np_api_key,
            "modelName": model,
            "calledMethod": method,
            "methodProperties": properties or {},
        }
        url = self.settings.np_api_url

        try:
            response = self._session.post(url, json=payload, timeout=self.settings.http_timeout)
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning("Send NovaPoshta: method - POST, url - %s, message - %s", url, e)
            return None

        if isinstance(body, dict) and body.get("success") is False:
            logger.error("NovaPoshta %s.%s failed: %s", model, method, body.get("errors"))

        return body

    def get_cities(self) -> Optional[dict]:
        """All cities served by Nova Poshta."""
        return self.call("Address", "getCities")

    def get_warehouse_types(self) -> Optional[dict]:
        return self.call("Address", "getWarehouseTypes")

    def get_warehouses(self, page: int, limit: int) -> Optional[dict]:
        """One page of warehouses; ``info.totalCount`` holds the grand total."""
        return self.call("Address", "getWarehouses", {"Page": page, "Limit": limit})

    def get_document_price(self, sender_ref: str, recipient_ref: str) -> Any:
        """
        Quote a reference parcel between two cities.

        The parcel is fixed (1 kg, declared cost 100, warehouse to warehouse)
        so quotes are comparable between cities.

        Returns:
            Quoted cost, or 0 when the API gave no quote
        """
        response = self.call("InternetDocument", "getDocumentPrice", {
            "CitySender": sender_ref,
            "CityRecipient": recipient_ref,
            "Weight": "1",
            "ServiceType": "WarehouseWarehouse",
            "Cost": "100",
            "CargoType": "Parcel",
            "SeatsAmount": "1",
        })
        try:
            return response["data"][0]["Cost"]
        except (TypeError, KeyError, IndexError):
            return 0

    def get_streets(self, city_ref: str, search: Optional[str] = None) -> List[dict]:
        """
        Streets of a city, optionally filtered by a search string.

        Unfiltered lists are cached per city for a day.
        """
        if search is None:
            cached = self._streets_cache.get(city_ref)
            if cached and time.monotonic() - cached[0] < STREETS_TTL:
                return cached[1]

        response = self.call("Address", "getStreet", {
            "CityRef": city_ref,
            "FindByString": search or "",
            "Page": "1",
            "Limit": "10000",
        })

        streets = [
            {
                "description": street.get("Description"),
                "type": street.get("StreetsType"),
                "typeRef": street.get("StreetsTypeRef"),
                "ref": street.get("Ref"),
            }
            for street in (response or {}).get("data") or []
        ]

        if streets and search is None:
            self._streets_cache[city_ref] = (time.monotonic(), streets)
        return streets

    def tracking_status(self, documents: List[dict]) -> Optional[dict]:
        """
        Tracking status for express waybills.

        Args:
            documents: [{"DocumentNumber": "...", "Phone": "..."}, ...]
        """
        return self.call("TrackingDocument", "getStatusDocuments", {"Documents": documents})

    def close(self):
        self._session.close()


class NovaPostClient:
    """Client for the Nova Post international divisions dump."""

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        self.settings = settings
        self._session = session or requests.Session()

    def get_versions(self) -> Optional[dict]:
        """Available dump versions; ``base_version.url`` points to the full dump."""
        url = self.settings.npi_versions_url
        try:
            response = self._session.get(
                url,
                headers={"Accept-Language": "en"},
                timeout=self.settings.http_timeout
            )
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning("Send NovaPostInternational: method - GET, url - %s, message - %s", url, e)
            return None

    def download_base_version(self, versions: dict, dest: str) -> bool:
        """
        Stream the gzip base dump to ``dest``.

        Returns:
            True when the file was written
        """
        try:
            url = versions["base_version"]["url"]
        except (TypeError, KeyError):
            logger.error("NovaPost versions response has no base_version url")
            return False

        try:
            with self._session.get(url, stream=True, timeout=self.settings.http_timeout) as response:
                response.raise_for_status()
                with open(dest, "wb") as f:
                    for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK):
                        f.write(chunk)
        except requests.RequestException as e:
            logger.warning("Send NovaPostInternational: method - GET, url - %s, message - %s", url, e)
            return False

        return True

    def close(self):
        self._session.close()
