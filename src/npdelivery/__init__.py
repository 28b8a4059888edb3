"""
npdelivery — Nova Poshta Reference Data in Elasticsearch
========================================================

Scheduled jobs that pull postal reference data and serve it from
Elasticsearch behind stable aliases:

    Nova Poshta API        →  np_cities, np_divisions
    Nova Post divisions    →  npi_countries, npi_cities, npi_divisions
    Delivery quotes        →  local tariff flag on np_cities

Every rebuild loads a fresh timestamped index and only moves the alias once
the load is complete, so readers never see a half-built index.

Usage:
    from npdelivery import Settings, IndexManager, DomesticSync

    settings = Settings.from_env()
    with IndexManager.from_settings(settings) as manager:
        DomesticSync(settings, manager).run()

License: MIT
"""

__version__ = "0.1.0"

from .config import Settings
from .indexer import IndexManager, BulkLoader
from .lookup import DomesticLookup, InternationalLookup
from .sync import DomesticSync, InternationalSync, SyncAborted, SyncResult
from .tariff import LocalTariffProber

__all__ = [
    "Settings",
    "IndexManager",
    "BulkLoader",
    "DomesticLookup",
    "InternationalLookup",
    "DomesticSync",
    "InternationalSync",
    "SyncAborted",
    "SyncResult",
    "LocalTariffProber",
]
