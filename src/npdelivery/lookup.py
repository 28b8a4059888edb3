"""
npdelivery Lookup — Read Side over the Aliases
==============================================

Queries used by the consuming application. They always target the stable
aliases, never a timestamped index.

Ordering that needs more than a field sort (Kyiv first, warehouse number
inside the description) is applied to the fetched hits in Python.
"""

import re
from typing import Any, Dict, List, Optional

from elasticsearch import Elasticsearch

from .transform import (
    CITIES_INDEX,
    DIVISIONS_INDEX,
    INTL_CITIES_INDEX,
    INTL_COUNTRIES_INDEX,
    INTL_DIVISIONS_INDEX,
)


MAX_HITS = 100000

# Kyiv is listed before every other city
CAPITAL_REF = "8d5a980d-391c-11dd-90d9-001a92567626"

WAREHOUSE_NUMBER = re.compile(r"№\s*(\d+)")


def _hits(response: Any) -> List[dict]:
    try:
        return response["hits"]["hits"]
    except (TypeError, KeyError):
        return []


def _int_or_zero(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def warehouse_number(description: Optional[str]) -> int:
    """Number after ``№`` in a warehouse description, 0 if absent."""
    match = WAREHOUSE_NUMBER.search(description or "")
    return int(match.group(1)) if match else 0


class DomesticLookup:
    """
    Lookups over ``np_cities`` and ``np_divisions``.

    Example:
        lookup = DomesticLookup(manager.client)
        cities = lookup.get_cities(locale="ru")
    """

    def __init__(self, client: Elasticsearch, locale: str = "uk"):
        self._client = client
        self.locale = locale

    def _localized(self, source: dict, field: str, locale: Optional[str]) -> Optional[str]:
        if (locale or self.locale) == "ru":
            return source.get(f"{field}Ru")
        return source.get(field)

    def get_cities(self, locale: Optional[str] = None) -> List[dict]:
        """
        All cities, capital first, then by numeric city id.

        Args:
            locale: "ru" for Russian names, anything else for Ukrainian

        Returns:
            [{"description", "typeCity", "ref", "localTariff"}, ...]
        """
        response = self._client.search(
            index=CITIES_INDEX,
            size=MAX_HITS,
            source=["ref", "localTariff", "cityID",
                    "description", "descriptionRu", "typeCity", "typeCityRu"]
        )
        sources = [hit["_source"] for hit in _hits(response)]
        sources.sort(key=lambda src: (
            0 if src.get("ref") == CAPITAL_REF else 1,
            _int_or_zero(src.get("cityID"))
        ))

        return [
            {
                "description": self._localized(src, "description", locale),
                "typeCity": self._localized(src, "typeCity", locale),
                "ref": src.get("ref"),
                "localTariff": src.get("localTariff"),
            }
            for src in sources
        ]

    def get_warehouses(
        self,
        city_ref: str,
        warehouse_type: Optional[str] = None,
        locale: Optional[str] = None
    ) -> List[dict]:
        """
        Warehouses of a city ordered by their number.

        Args:
            city_ref: City reference id
            warehouse_type: "postomat" or "division" (default: both)
            locale: "ru" for Russian descriptions

        Returns:
            [{"siteKey", "description", "cityRef", "typeOfWarehouse", "ref"}, ...]
        """
        must: List[Dict[str, Any]] = [{"term": {"cityRef": city_ref}}]
        if warehouse_type:
            must.append({"term": {"typeOfWarehouse": warehouse_type}})

        response = self._client.search(
            index=DIVISIONS_INDEX,
            size=MAX_HITS,
            query={"bool": {"must": must}},
            source=["ref", "typeOfWarehouse", "cityRef", "siteKey",
                    "description", "descriptionRu"]
        )
        sources = [hit["_source"] for hit in _hits(response)]
        sources.sort(key=lambda src: warehouse_number(src.get("description")))

        return [
            {
                "siteKey": src.get("siteKey"),
                "description": self._localized(src, "description", locale),
                "cityRef": src.get("cityRef"),
                "typeOfWarehouse": src.get("typeOfWarehouse"),
                "ref": src.get("ref"),
            }
            for src in sources
        ]

    def _find_city(self, name: str, fields: List[str]) -> Optional[dict]:
        response = self._client.search(
            index=CITIES_INDEX,
            size=1,
            query={"bool": {"should": [
                {"term": {"description": name}},
                {"term": {"descriptionRu": name}},
            ]}},
            source=fields
        )
        hits = _hits(response)
        return hits[0]["_source"] if hits else None

    def get_city_ref(self, city_name: str) -> Optional[str]:
        """City ref by its Ukrainian or Russian name."""
        city = self._find_city(city_name, ["ref"])
        return city.get("ref") if city else None

    def get_type_city(self, city_name: str, language: str = "ru") -> Optional[str]:
        city = self._find_city(city_name, ["typeCity", "typeCityRu"])
        if not city:
            return None
        return city.get("typeCityRu") if language == "ru" else city.get("typeCity")

    def check_city_for_local_tariff(self, city_ref: str) -> bool:
        """Whether a city shares the reference city's delivery price."""
        response = self._client.search(
            index=CITIES_INDEX,
            size=1,
            query={"term": {"ref": city_ref}},
            source=["localTariff"]
        )
        hits = _hits(response)
        if not hits:
            return False
        return bool(hits[0]["_source"].get("localTariff"))

    def get_area_cities(self, area: str) -> List[dict]:
        """Cities of an administrative area as {"areaDescription", "ref"}."""
        response = self._client.search(
            index=CITIES_INDEX,
            size=MAX_HITS,
            query={"bool": {"must": [{"match": {"areaDescription": area}}]}},
            source=["areaDescription", "ref"]
        )
        return [
            {
                "areaDescription": hit["_source"].get("areaDescription"),
                "ref": hit["_source"].get("ref"),
            }
            for hit in _hits(response)
        ]


class InternationalLookup:
    """Lookups over ``npi_countries``, ``npi_cities`` and ``npi_divisions``."""

    def __init__(self, client: Elasticsearch):
        self._client = client

    def _search(self, index: str, **kwargs) -> List[dict]:
        return _hits(self._client.search(index=index, **kwargs))

    def get_countries(self) -> List[dict]:
        hits = self._search(
            INTL_COUNTRIES_INDEX,
            size=MAX_HITS,
            source=["code", "name"],
            sort=[{"name": {"order": "asc"}}]
        )
        return [
            {"code": hit["_source"].get("code"), "name": hit["_source"].get("name")}
            for hit in hits
        ]

    def get_country_code_by_name(self, country_name: Optional[str]) -> Optional[str]:
        if not country_name:
            return None

        hits = self._search(
            INTL_COUNTRIES_INDEX,
            size=1,
            query={"term": {"name": country_name}},
            source=["code"]
        )
        return hits[0]["_source"].get("code") if hits else None

    def get_cities(self, country_code: Optional[str]) -> Optional[List[str]]:
        """City names of a country, alphabetically."""
        if not country_code:
            return None

        hits = self._search(
            INTL_CITIES_INDEX,
            size=MAX_HITS,
            query={"term": {"countryCode": country_code}},
            source=["name"],
            sort=[{"name": {"order": "asc"}}]
        )
        return [hit["_source"].get("name") for hit in hits]

    def get_city_id(self, country_code: Optional[str], city_name: Optional[str]) -> Optional[str]:
        if not country_code or not city_name:
            return None

        hits = self._search(
            INTL_CITIES_INDEX,
            size=1,
            query={"bool": {"must": [
                {"term": {"countryCode": country_code}},
                {"term": {"name": city_name}},
            ]}},
            source=["id"]
        )
        return hits[0]["_source"].get("id") if hits else None

    def get_addresses(self, city_id: Optional[str]) -> Optional[List[dict]]:
        """
        Divisions of an international city.

        Returns:
            [{"id", "name", "street", "building", "zipcode", "address",
              "externalId", "countryCode", "cityId"}, ...]
        """
        if not city_id:
            return None

        fields = ["id", "name", "street", "building", "zipcode",
                  "address", "externalId", "countryCode", "cityId"]
        hits = self._search(
            INTL_DIVISIONS_INDEX,
            size=MAX_HITS,
            query={"term": {"cityId": city_id}},
            source=fields,
            sort=[{"name": {"order": "asc"}}]
        )
        return [{name: hit["_source"].get(name) for name in fields} for hit in hits]
