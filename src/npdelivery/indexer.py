"""
npdelivery Indexer — Alias-Managed Index Lifecycle
==================================================

Readers only ever query a stable alias (``np_cities``). Each sync builds a
new physical index behind it:

    np_cities_1718000000  ←  built, bulk-loaded, validated
    np_cities (alias)     →  moved in one update_aliases call
    np_cities_1717000000  →  removed in that same call

so there is never a moment with zero or two indices behind the alias.
"""

import logging
import re
import time
from typing import Any, Dict, List, Optional

from elasticsearch import Elasticsearch, NotFoundError
from elasticsearch.helpers import bulk

from .config import Settings


logger = logging.getLogger(__name__)

MAX_RESULT_WINDOW = 100000
DEFAULT_BATCH_SIZE = 1000


def timestamped_name(alias: str, ts: Optional[int] = None) -> str:
    """Physical index name for an alias: ``<alias>_<unix seconds>``."""
    return f"{alias}_{int(time.time()) if ts is None else ts}"


class IndexManager:
    """
    Elasticsearch index and alias operations used by the sync jobs.

    Example:
        manager = IndexManager(hosts=["http://localhost:9200"])
        name = timestamped_name("np_cities")
        manager.create_index(name, CITY_PROPERTIES)
        manager.switch_alias("np_cities", name)
    """

    def __init__(
        self,
        hosts: Optional[List[str]] = None,
        api_key: Optional[str] = None,
        client: Optional[Elasticsearch] = None
    ):
        """
        Initialize the manager.

        Args:
            hosts: List of ES node URLs
            api_key: API key for authentication
            client: Ready client (overrides hosts/api_key)
        """
        if client is None:
            conn_kwargs: Dict[str, Any] = {
                "hosts": hosts or ["http://localhost:9200"]
            }
            if api_key:
                conn_kwargs["api_key"] = api_key
            client = Elasticsearch(**conn_kwargs)

        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "IndexManager":
        return cls(hosts=settings.elastic_hosts, api_key=settings.elastic_api_key)

    @property
    def client(self) -> Elasticsearch:
        return self._client

    def create_index(self, name: str, properties: Dict[str, Any]) -> None:
        """
        Create an index with an explicit mapping.

        Args:
            name: Physical index name
            properties: Field mapping (never inferred from documents)
        """
        self._client.indices.create(
            index=name,
            mappings={"properties": properties},
            settings={"index": {"max_result_window": MAX_RESULT_WINDOW}}
        )
        logger.debug("Created index %s", name)

    def delete_index(self, name: str) -> None:
        self._client.indices.delete(index=name)

    def discard(self, *names: str) -> None:
        """Drop freshly built indices of an aborted run."""
        for name in names:
            try:
                self.delete_index(name)
            except NotFoundError:
                pass
            logger.info("Discarded index %s", name)

    def count(self, index: str) -> Optional[int]:
        """
        Document count behind an alias or index.

        Returns:
            Count, or None when nothing answers to that name
        """
        try:
            return self._client.count(index=index)["count"]
        except NotFoundError:
            return None

    def indices_for_alias(self, alias: str) -> List[str]:
        """
        Physical indices built for an alias.

        Matches ``<alias>_<timestamp>`` whether or not the alias is attached,
        so leftovers of interrupted runs are picked up too.
        """
        try:
            response = self._client.indices.get_alias(index=f"{alias}_*")
        except NotFoundError:
            return []

        pattern = re.compile(rf"^{re.escape(alias)}_\d+$")
        return sorted(name for name in response.keys() if pattern.match(name))

    def switch_alias(self, alias: str, new_index: str) -> List[str]:
        """
        Point an alias at a new index and remove superseded indices.

        The add and the removals go in a single update_aliases request, so
        Elasticsearch applies them atomically.

        Args:
            alias: Stable alias name
            new_index: Freshly built index

        Returns:
            Names of removed indices
        """
        stale = [name for name in self.indices_for_alias(alias) if name != new_index]

        actions: List[Dict[str, Any]] = [
            {"add": {"index": new_index, "alias": alias}}
        ]
        actions.extend({"remove_index": {"index": name}} for name in stale)

        self._client.indices.update_aliases(actions=actions)
        logger.info("Alias %s → %s (removed: %s)", alias, new_index, ", ".join(stale) or "none")
        return stale

    def aliases(self, pattern: str = "np*") -> Dict[str, List[str]]:
        """Map of alias name to the indices behind it."""
        try:
            response = self._client.indices.get_alias(name=pattern)
        except NotFoundError:
            return {}

        result: Dict[str, List[str]] = {}
        for index, info in response.items():
            for alias in info.get("aliases", {}):
                result.setdefault(alias, []).append(index)
        return result

    def close(self):
        """Close the Elasticsearch client connection."""
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class BulkLoader:
    """
    Buffered bulk writer.

    Documents are collected in memory and sent every ``batch_size`` actions,
    so at most one batch is held at a time.

    Example:
        with BulkLoader(manager.client, label="cities") as loader:
            for doc in docs:
                loader.add(index_name, doc["ref"], doc)
    """

    def __init__(
        self,
        client: Elasticsearch,
        label: str = "documents",
        batch_size: int = DEFAULT_BATCH_SIZE,
        echo: bool = True
    ):
        self._client = client
        self.label = label
        self.batch_size = batch_size
        self.echo = echo
        self._buffer: List[Dict[str, Any]] = []
        self.total = 0
        self.indexed = 0
        self.failed = 0

    def add(self, index: str, doc_id: Any, source: Dict[str, Any]) -> None:
        self._buffer.append({
            "_index": index,
            "_id": doc_id,
            "_source": source
        })
        self.total += 1
        if len(self._buffer) >= self.batch_size:
            self.flush()

    def flush(self) -> None:
        """Send buffered documents."""
        if not self._buffer:
            return

        success, errors = bulk(
            self._client,
            self._buffer,
            chunk_size=self.batch_size,
            raise_on_error=False
        )
        self._buffer = []
        self.indexed += success

        for item in errors:
            self.failed += 1
            logger.error("Error indexing document: %s", item)

        if self.echo:
            print(f"\rProcessed {self.total:,} {self.label}...", end="", flush=True)

    def close(self) -> None:
        self.flush()
        if self.echo and self.total:
            print()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            self.close()
