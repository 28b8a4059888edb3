"""Shared pytest fixtures."""

from typing import Any, Callable, Dict, List, Tuple
from unittest.mock import MagicMock

import pytest
from elasticsearch import NotFoundError

from npdelivery.config import Settings
from npdelivery.indexer import IndexManager


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings with no delays and a tariff file inside tmp_path."""
    return Settings(
        np_api_key="test-key",
        elastic_hosts=["http://es.test:9200"],
        local_tariff_file=str(tmp_path / "sources" / "np-cities-with-tariff-local.json"),
        divisions_page_delay=0,
        tariff_probe_delay=0,
    )


@pytest.fixture
def es_client() -> MagicMock:
    """Elasticsearch client stand-in with an empty cluster."""
    client = MagicMock()
    client.count.return_value = {"count": 0}
    client.indices.get_alias.return_value = {}
    return client


@pytest.fixture
def manager(es_client: MagicMock) -> IndexManager:
    return IndexManager(client=es_client)


@pytest.fixture
def bulk_calls(monkeypatch: pytest.MonkeyPatch) -> List[List[Dict]]:
    """Replace helpers.bulk; each flushed batch is recorded as a list of actions."""
    calls: List[List[Dict]] = []

    def fake_bulk(client: Any, actions: Any, **kwargs: Any) -> Tuple[int, list]:
        batch = list(actions)
        calls.append(batch)
        return len(batch), []

    monkeypatch.setattr("npdelivery.indexer.bulk", fake_bulk)
    return calls


@pytest.fixture
def not_found() -> Callable[[], NotFoundError]:
    """Factory for the 404 error the client raises for missing indices."""

    def make() -> NotFoundError:
        return NotFoundError("index_not_found_exception", MagicMock(status=404), {})

    return make
