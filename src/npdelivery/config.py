"""
npdelivery Config — Environment Settings
========================================

Settings are read from the process environment, with a ``.env`` file in the
working directory loaded first when present.

Variables:
    NP_API_KEY                  Nova Poshta API key
    NP_ELASTIC_HOSTS            Comma-separated Elasticsearch URLs
    NP_ELASTIC_API_KEY          Elasticsearch API key (optional)
    NP_LOCAL_TARIFF_CITY_NAME   Reference city for the local tariff probe
    NP_LOCAL_TARIFF_CITY_AREA   Area whose cities are probed
    NP_LOCAL_TARIFF_FILE        JSON file with local tariff city memberships
"""

import os
from dataclasses import dataclass, field, replace
from typing import List, Optional

from dotenv import load_dotenv


NP_API_URL = "https://api.novaposhta.ua/v2.0/json/"
NPI_VERSIONS_URL = "https://api.novapost.com/divisions/versions"
DEFAULT_HOSTS = ["http://localhost:9200"]
DEFAULT_TARIFF_FILE = "storage/app/sources/np-cities-with-tariff-local.json"


def _split_hosts(value: Optional[str]) -> List[str]:
    if not value:
        return list(DEFAULT_HOSTS)
    return [host.strip() for host in value.split(",") if host.strip()]


@dataclass
class Settings:
    """Runtime configuration shared by the sync jobs and lookups."""

    np_api_key: str = ""
    elastic_hosts: List[str] = field(default_factory=lambda: list(DEFAULT_HOSTS))
    elastic_api_key: Optional[str] = None
    local_tariff_city_name: str = "Київ"
    local_tariff_city_area: str = "Київська"
    local_tariff_file: str = DEFAULT_TARIFF_FILE
    np_api_url: str = NP_API_URL
    npi_versions_url: str = NPI_VERSIONS_URL
    http_timeout: float = 10.0
    divisions_page_delay: float = 20.0
    tariff_probe_delay: float = 2.0
    locale: str = "uk"

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "Settings":
        """
        Build settings from environment variables.

        Args:
            env_file: Explicit .env path (default: search from cwd)

        Returns:
            Populated Settings
        """
        load_dotenv(dotenv_path=env_file)
        env = os.environ

        return cls(
            np_api_key=env.get("NP_API_KEY", ""),
            elastic_hosts=_split_hosts(env.get("NP_ELASTIC_HOSTS")),
            elastic_api_key=env.get("NP_ELASTIC_API_KEY") or None,
            local_tariff_city_name=env.get("NP_LOCAL_TARIFF_CITY_NAME", "Київ"),
            local_tariff_city_area=env.get("NP_LOCAL_TARIFF_CITY_AREA", "Київська"),
            local_tariff_file=env.get("NP_LOCAL_TARIFF_FILE", DEFAULT_TARIFF_FILE),
            np_api_url=env.get("NP_API_URL", NP_API_URL),
            npi_versions_url=env.get("NPI_VERSIONS_URL", NPI_VERSIONS_URL),
            http_timeout=float(env.get("NP_HTTP_TIMEOUT", 10)),
            divisions_page_delay=float(env.get("NP_DIVISIONS_PAGE_DELAY", 20)),
            tariff_probe_delay=float(env.get("NP_TARIFF_PROBE_DELAY", 2)),
            locale=env.get("NP_LOCALE", "uk"),
        )

    def with_overrides(
        self,
        hosts: Optional[str] = None,
        api_key: Optional[str] = None
    ) -> "Settings":
        """Apply CLI overrides for the Elasticsearch connection."""
        changes = {}
        if hosts:
            changes["elastic_hosts"] = _split_hosts(hosts)
        if api_key:
            changes["elastic_api_key"] = api_key
        return replace(self, **changes)
