"""
Work Item Cache
===============

Conversation key -> work item id, built from the cache query at startup and
extended as work items are created or looked up. The remote store stays the
system of record; this table is never persisted.

INV-CACHE-01 (Additive): Entries are never removed
INV-CACHE-02 (Idempotent): cache_by_id on a known id performs no fetch
INV-CACHE-03 (Isolation): A failing record never aborts population
INV-CACHE-04 (Store Is Truth): Keys always come from the stored record
"""

from __future__ import annotations

import logging
import threading

from mail2workitem.contracts import CacheEntryError, WorkItem, WorkItemStore
from mail2workitem.field_resolver import FieldResolver

logger = logging.getLogger(__name__)

POPULATE_BATCH_SIZE = 200


class WorkItemCache:
    """Conversation cache. Inserts are atomic under a single lock."""

    def __init__(
        self,
        store: WorkItemStore,
        field_resolver: FieldResolver,
        key_field_name: str,
    ) -> None:
        self._store = store
        self._field_resolver = field_resolver
        self._key_field_name = key_field_name
        self._items: dict[str, int] = {}
        self._lock = threading.Lock()

    def populate(self, query: str) -> None:
        """
        Cache every work item matched by a WIQL query.

        POST-CACHE-03: One entry per successfully processed record
        INV-CACHE-03: Failures are logged per record; the rest still get cached
        """
        logger.info("Initializing work items cache")
        work_item_ids = self._store.query_by_wiql(query)
        logger.info(f"{len(work_item_ids)} items retrieved by cache query")

        for start in range(0, len(work_item_ids), POPULATE_BATCH_SIZE):
            batch = work_item_ids[start:start + POPULATE_BATCH_SIZE]
            for work_item in self._fetch_batch(batch):
                try:
                    self.cache_work_item(work_item)
                except Exception as e:
                    logger.error(f"Exception caught while caching work item with id {work_item.id}: {e}")

        logger.info(f"Work items cache holds {len(self)} entries")

    def _fetch_batch(self, batch: list[int]) -> list[WorkItem]:
        try:
            return self._store.get_work_items(batch)
        except Exception as e:
            logger.warning(f"Batch fetch of {len(batch)} work items failed, fetching one by one: {e}")

        work_items = []
        for work_item_id in batch:
            try:
                work_items.append(self._store.get_work_item(work_item_id))
            except Exception as e:
                logger.error(f"Exception caught while fetching work item with id {work_item_id}: {e}")
        return work_items

    def cache_by_id(self, work_item_id: int) -> None:
        """
        Cache a work item known only by id.

        The key is read from the stored record, never taken from the caller:
        an existing work item may carry a different (shorter) conversation key
        than the one the caller has.
        """
        if self.contains_id(work_item_id):
            return

        work_item = self._store.get_work_item(work_item_id)
        self.cache_work_item(work_item)

    def cache_work_item(self, work_item: WorkItem) -> None:
        """
        Insert a full work item record.

        POST-CACHE-01: Non-empty trimmed key k gives cache[k] == id
        POST-CACHE-02: Empty or missing key gives cache[str(id)] == id

        ERRORS:
        - CacheEntryError: record has no positive integer id
        """
        work_item_id = work_item.id
        if not isinstance(work_item_id, int) or isinstance(work_item_id, bool) or work_item_id <= 0:
            raise CacheEntryError(f"Work item has no valid id: {work_item_id!r}")

        key_field = self._field_resolver.resolve(self._key_field_name)
        if not key_field:
            logger.warning(
                f"Item {work_item_id} doesn't contain the key field {self._key_field_name}. Not caching"
            )
            return

        raw_value = work_item.fields.get(key_field)
        key = str(raw_value).strip() if raw_value is not None else ""
        logger.debug(f"Work item {work_item_id} conversation ID is {key!r}")

        if not key:
            logger.debug(f"Field '{key_field}' of work item {work_item_id} is empty - using ID instead")
            key = str(work_item_id)

        with self._lock:
            self._items[key] = work_item_id

    def get(self, key: str) -> int | None:
        """Work item id for a conversation key, or None."""
        if key is None:
            return None
        return self._items.get(key.strip())

    def contains_id(self, work_item_id: int) -> bool:
        with self._lock:
            return work_item_id in self._items.values()

    def as_dict(self) -> dict[str, int]:
        """Snapshot of the cache, ordered by key."""
        with self._lock:
            return dict(sorted(self._items.items()))

    def __getitem__(self, key: str) -> int:
        work_item_id = self.get(key)
        if work_item_id is None:
            raise KeyError(key)
        return work_item_id

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
