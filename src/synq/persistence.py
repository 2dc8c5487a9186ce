"""Persistence bridge between the in-memory engine and durable storage.

The bridge only mirrors state the cache and queue already hold:

- ``hydrate()`` reads a persisted query back before its first fetch
- ``mirror()`` writes a query after each successful persisted fetch
- ``load_queue()`` / ``save_queue()`` round-trip the offline mutation queue

Every storage failure is logged and reported as a ``StorageError``; none of
them propagate into the cache.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from typing import Any

from synq.adapters.base import AsyncStorage
from synq.config import QueryConfig
from synq.exceptions import ErrorHandler, StorageError, report_error
from synq.keys import QueryKey
from synq.types import PersistedQuery, QueuedMutation

logger = logging.getLogger(__name__)

# Bumped when the persisted record shape changes
RECORD_VERSION = 1


def _now_ms() -> int:
    return int(time.time() * 1000)


class PersistenceBridge:
    """Reads and writes persisted queries and the mutation queue."""

    QUEUE_KEY = "mutation_queue"

    def __init__(
        self,
        storage: AsyncStorage | None = None,
        *,
        prefix: str = "synq",
        on_error: ErrorHandler | None = None,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._storage = storage
        self._prefix = prefix
        self._on_error = on_error
        self._clock = clock

    @property
    def storage(self) -> AsyncStorage | None:
        return self._storage

    def query_storage_key(self, key: QueryKey) -> str:
        """Storage key for a persisted query."""
        return f"{self._prefix}:query:{key.normalized}"

    @property
    def queue_storage_key(self) -> str:
        return f"{self._prefix}:{self.QUEUE_KEY}"

    def _storage_for(self, config: QueryConfig | None) -> AsyncStorage | None:
        if config is not None and config.storage is not None:
            return config.storage
        return self._storage

    def _fail(self, operation: str, key: str, exc: BaseException) -> None:
        error = StorageError(operation, key, exc)
        logger.warning("%s", error)
        report_error(self._on_error, error)

    async def hydrate(self, key: QueryKey, config: QueryConfig) -> PersistedQuery[Any] | None:
        """Load a persisted query, or None if absent, expired or unreadable.

        Records older than ``cache_time`` are deleted instead of returned.
        """
        storage = self._storage_for(config)
        if storage is None:
            logger.warning("Query %s is marked for persistence but no storage is configured", key)
            return None
        if config.from_json is None:
            logger.warning("Query %s is marked for persistence but from_json is not provided", key)
            return None

        storage_key = self.query_storage_key(key)
        try:
            record = await storage.read(storage_key)
        except Exception as e:
            self._fail("read", storage_key, e)
            return None
        if record is None:
            return None

        try:
            fetched_at = int(record["fetchedAt"])
            raw = record["data"]
        except (KeyError, TypeError, ValueError) as e:
            self._fail("decode", storage_key, e)
            return None

        if self._clock() - fetched_at > config.cache_ms:
            logger.debug("Persisted query %s expired, deleting", key)
            await self._delete(storage, storage_key)
            return None

        try:
            data = config.from_json(raw)
        except Exception as e:
            self._fail("decode", storage_key, e)
            return None

        logger.debug("Hydrated query %s", key)
        return PersistedQuery(data=data, fetched_at=fetched_at)

    async def mirror(self, key: QueryKey, data: Any, fetched_at: int, config: QueryConfig) -> bool:
        """Write a successful fetch to storage. Returns True if written."""
        storage = self._storage_for(config)
        if storage is None:
            logger.warning("Query %s is marked for persistence but no storage is configured", key)
            return False
        if config.to_json is None:
            logger.warning("Query %s is marked for persistence but to_json is not provided", key)
            return False

        storage_key = self.query_storage_key(key)
        try:
            record = {
                "data": config.to_json(data),
                "fetchedAt": fetched_at,
                "version": RECORD_VERSION,
            }
            await storage.write(storage_key, record)
        except Exception as e:
            self._fail("write", storage_key, e)
            return False

        logger.debug("Persisted query %s", key)
        return True

    async def forget(self, key: QueryKey, config: QueryConfig | None = None) -> None:
        """Delete a persisted query."""
        storage = self._storage_for(config)
        if storage is None:
            return
        await self._delete(storage, self.query_storage_key(key))

    async def _delete(self, storage: AsyncStorage, storage_key: str) -> None:
        try:
            await storage.delete(storage_key)
        except Exception as e:
            self._fail("delete", storage_key, e)

    async def load_queue(self) -> list[QueuedMutation]:
        """Read the persisted mutation queue in order."""
        if self._storage is None:
            return []
        try:
            record = await self._storage.read(self.queue_storage_key)
        except Exception as e:
            self._fail("read", self.queue_storage_key, e)
            return []
        if not record:
            return []

        jobs: list[QueuedMutation] = []
        for item in record.get("queue", []):
            try:
                jobs.append(QueuedMutation.from_json(item))
            except (KeyError, TypeError, ValueError) as e:
                # Skip corrupt records, keep the rest
                self._fail("decode", self.queue_storage_key, e)
        return jobs

    async def save_queue(self, jobs: Iterable[QueuedMutation]) -> bool:
        """Overwrite the persisted mutation queue. Returns True if written."""
        if self._storage is None:
            return False
        try:
            await self._storage.write(
                self.queue_storage_key,
                {"queue": [job.to_json() for job in jobs]},
            )
        except Exception as e:
            self._fail("write", self.queue_storage_key, e)
            return False
        return True


__all__ = ["RECORD_VERSION", "PersistenceBridge"]
