"""
npdelivery Transform — Upstream Records to Index Documents
==========================================================

Field renaming from the upstream payloads to the index schemas, plus the
explicit mappings each index is created with.
"""

from typing import Any, Dict, Iterable, Mapping, Optional, Set


# Aliases readers query
CITIES_INDEX = "np_cities"
DIVISIONS_INDEX = "np_divisions"
INTL_COUNTRIES_INDEX = "npi_countries"
INTL_CITIES_INDEX = "npi_cities"
INTL_DIVISIONS_INDEX = "npi_divisions"

POSTOMAT_TYPE = "postomat"
DIVISION_TYPE = "division"

# Matches both "Поштомат" and "Почтомат" in warehouse type names
POSTOMAT_MARKER = "очтомат"


CITY_PROPERTIES = {
    "ref": {"type": "keyword"},
    "description": {"type": "keyword"},
    "descriptionRu": {"type": "keyword"},
    "typeCity": {"type": "keyword"},
    "typeCityRu": {"type": "keyword"},
    "cityID": {"type": "keyword"},
    "areaDescription": {"type": "keyword"},
    "localTariff": {"type": "boolean"},
}

DIVISION_PROPERTIES = {
    "cityRef": {"type": "keyword"},
    "description": {"type": "keyword"},
    "descriptionRu": {"type": "keyword"},
    "ref": {"type": "keyword"},
    "siteKey": {"type": "keyword"},
    "typeOfWarehouse": {"type": "keyword"},
}

INTL_COUNTRY_PROPERTIES = {
    "code": {"type": "keyword"},
    "name": {"type": "keyword"},
}

INTL_CITY_PROPERTIES = {
    "id": {"type": "keyword"},
    "name": {"type": "keyword"},
    "countryCode": {"type": "keyword"},
}

INTL_DIVISION_PROPERTIES = {
    "id": {"type": "keyword"},
    "name": {"type": "keyword"},
    "street": {"type": "text"},
    "building": {"type": "text"},
    "zipcode": {"type": "text"},
    "address": {"type": "text"},
    "externalId": {"type": "text"},
    "countryCode": {"type": "keyword"},
    "cityId": {"type": "keyword"},
}


# Countries served by Nova Post outside Ukraine
COUNTRY_NAMES = {
    "AT": "Austria",
    "BE": "Belgium",
    "BG": "Bulgaria",
    "CH": "Switzerland",
    "CY": "Cyprus",
    "CZ": "Czech Republic",
    "DE": "Germany",
    "DK": "Denmark",
    "EE": "Estonia",
    "ES": "Spain",
    "FI": "Finland",
    "FR": "France",
    "GB": "United Kingdom",
    "GR": "Greece",
    "HR": "Croatia",
    "HU": "Hungary",
    "IE": "Ireland",
    "IT": "Italy",
    "LT": "Lithuania",
    "LU": "Luxembourg",
    "LV": "Latvia",
    "MD": "Moldova",
    "NL": "Netherlands",
    "NO": "Norway",
    "PL": "Poland",
    "PT": "Portugal",
    "RO": "Romania",
    "SE": "Sweden",
    "SI": "Slovenia",
    "SK": "Slovakia",
    "UA": "Ukraine",
    "US": "United States",
}


def country_name(code: Optional[str]) -> str:
    """English country name for an ISO alpha-2 code, or the code itself."""
    if not code:
        return ""
    return COUNTRY_NAMES.get(code.upper(), code.upper())


def city_document(raw: Mapping[str, Any], local_tariff_refs: Set[str]) -> Dict[str, Any]:
    """
    Map a ``getCities`` entry to the np_cities schema.

    Args:
        raw: Upstream city record
        local_tariff_refs: City refs sharing the reference city's tariff

    Returns:
        Index document
    """
    return {
        "ref": raw.get("Ref"),
        "description": raw.get("Description"),
        "descriptionRu": raw.get("DescriptionRu"),
        "typeCity": raw.get("SettlementTypeDescription"),
        "typeCityRu": raw.get("SettlementTypeDescriptionRu"),
        "cityID": raw.get("CityID"),
        "areaDescription": raw.get("AreaDescription"),
        "localTariff": raw.get("Ref") in local_tariff_refs,
    }


def postomat_type_refs(warehouse_types: Iterable[Mapping[str, Any]]) -> Set[str]:
    """Refs of the warehouse types that are parcel lockers."""
    return {
        str(wtype.get("Ref"))
        for wtype in warehouse_types
        if POSTOMAT_MARKER in str(wtype.get("DescriptionRu") or "")
    }


def division_document(raw: Mapping[str, Any], postomat_refs: Set[str]) -> Dict[str, Any]:
    """Map a ``getWarehouses`` entry to the np_divisions schema."""
    is_postomat = raw.get("TypeOfWarehouse") in postomat_refs
    return {
        "siteKey": raw.get("SiteKey"),
        "ref": raw.get("Ref"),
        "description": raw.get("Description"),
        "descriptionRu": raw.get("DescriptionRu"),
        "cityRef": raw.get("CityRef"),
        "typeOfWarehouse": POSTOMAT_TYPE if is_postomat else DIVISION_TYPE,
    }


def _address_parts(raw: Mapping[str, Any]) -> Mapping[str, Any]:
    return raw.get("addressParts") or {}


def intl_city_id(raw: Mapping[str, Any]) -> Optional[str]:
    return (raw.get("settlement") or {}).get("id")


def country_document(raw: Mapping[str, Any]) -> Dict[str, Any]:
    code = raw.get("countryCode") or ""
    return {"code": code.lower(), "name": country_name(code)}


def intl_city_document(raw: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "id": intl_city_id(raw),
        "name": _address_parts(raw).get("city"),
        "countryCode": (raw.get("countryCode") or "").lower(),
    }


def intl_division_document(raw: Mapping[str, Any]) -> Dict[str, Any]:
    """Map one item of the Nova Post divisions dump to the npi_divisions schema."""
    parts = _address_parts(raw)
    return {
        "id": raw.get("id"),
        "name": raw.get("name"),
        "street": parts.get("street"),
        "building": parts.get("building"),
        "zipcode": parts.get("postCode"),
        "address": raw.get("address"),
        "externalId": raw.get("externalId"),
        "cityId": intl_city_id(raw),
        "countryCode": (raw.get("countryCode") or "").lower(),
    }
