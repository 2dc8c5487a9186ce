"""Query cache - the registry of query entries and their fetch orchestration.

This module provides:
- fetch(): cached fetch with request coalescing, staleness and retries
- invalidate*(): mark entries stale, refetching the ones in use
- set_data(): direct writes for optimistic updates
- subscribe()/unsubscribe(): per-entry listeners, eviction and refetch_interval polling
- gc(): advisory garbage collection of unused entries
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Coroutine
from typing import Any

from synq.cancel import CancelToken
from synq.config import Fetcher, QueryConfig
from synq.exceptions import (
    ConfigurationError,
    ErrorHandler,
    FetchError,
    SynqError,
    report_error,
)
from synq.keys import KeyLike, QueryKey, normalize_key
from synq.network import Gate, NetworkSignal, resolve
from synq.persistence import PersistenceBridge
from synq.sharing import share_structure
from synq.types import CacheStats, QueryStatus

logger = logging.getLogger(__name__)

Listener = Callable[["QueryEntry"], None]

# What a fetch task resolves to: (data, error), or None if it was superseded
_Outcome = tuple[Any, SynqError | None] | None


def _now_ms() -> int:
    return int(time.time() * 1000)


class QueryEntry:
    """State of one cached query.

    ``data`` is only meaningful when ``has_data`` is true, since ``None`` is
    a legitimate payload. The one exception is ``is_placeholder``: ``data``
    then holds the configured placeholder and ``has_data`` stays false.
    ``in_flight`` is set only while ``status`` is ``LOADING``.
    """

    __slots__ = (
        "cancel_token",
        "config",
        "data",
        "error",
        "expires_at",
        "fetched_at",
        "fetcher",
        "gc_handle",
        "has_data",
        "hydrated",
        "in_flight",
        "is_placeholder",
        "key",
        "listeners",
        "poll_handle",
        "stale_at",
        "status",
        "subscriber_count",
    )

    def __init__(self, key: QueryKey, config: QueryConfig, created_at: int) -> None:
        self.key = key
        self.config = config
        self.status = QueryStatus.IDLE
        self.data: Any = None
        self.has_data = False
        self.error: SynqError | None = None
        self.fetched_at: int | None = None
        self.stale_at: int | None = None
        self.expires_at: int | None = created_at + config.cache_ms
        self.subscriber_count = 0
        self.in_flight: asyncio.Task[_Outcome] | None = None
        self.cancel_token: CancelToken | None = None
        self.fetcher: Fetcher[Any] | None = None
        self.hydrated = False
        self.is_placeholder = False
        self.listeners: list[Listener] = []
        self.gc_handle: asyncio.TimerHandle | None = None
        self.poll_handle: asyncio.TimerHandle | None = None

    def is_stale(self, now: int) -> bool:
        return self.stale_at is None or now >= self.stale_at

    @property
    def is_refetching(self) -> bool:
        return self.status is QueryStatus.LOADING and self.has_data

    def __repr__(self) -> str:
        return (
            f"QueryEntry(key={self.key.normalized!r}, status={self.status.value}, "
            f"has_data={self.has_data}, subscribers={self.subscriber_count})"
        )


class QueryCache:
    """Registry of query entries for one client."""

    def __init__(
        self,
        *,
        network: NetworkSignal | None = None,
        bridge: PersistenceBridge | None = None,
        default_config: QueryConfig | None = None,
        on_error: ErrorHandler | None = None,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._entries: dict[QueryKey, QueryEntry] = {}
        self._network = network if network is not None else NetworkSignal()
        self._bridge = bridge if bridge is not None else PersistenceBridge(clock=clock, on_error=on_error)
        self._default_config = default_config if default_config is not None else QueryConfig()
        self._on_error = on_error
        self._clock = clock
        self._background_tasks: set[asyncio.Task[Any]] = set()
        self._remove_listener = self._network.add_listener(self._on_network_change)

    @property
    def network(self) -> NetworkSignal:
        return self._network

    @property
    def default_config(self) -> QueryConfig:
        return self._default_config

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: KeyLike) -> bool:
        return normalize_key(key) in self._entries

    # -- Entry access --

    def get_entry(self, key: KeyLike) -> QueryEntry | None:
        return self._entries.get(normalize_key(key))

    def get_data(self, key: KeyLike) -> Any | None:
        """Cached data for key, or None."""
        entry = self._entries.get(normalize_key(key))
        if entry is None or not entry.has_data:
            return None
        return entry.data

    def entries(self) -> list[QueryEntry]:
        return list(self._entries.values())

    def _ensure(self, key: KeyLike) -> QueryEntry:
        query_key = normalize_key(key)
        entry = self._entries.get(query_key)
        if entry is None:
            entry = QueryEntry(query_key, self._default_config, self._clock())
            self._entries[query_key] = entry
            logger.debug("Created query entry %s", query_key)
        return entry

    def _configure(
        self,
        entry: QueryEntry,
        config: QueryConfig | None,
        overrides: dict[str, Any],
    ) -> None:
        base = config if config is not None else entry.config
        entry.config = base.merge(**overrides) if overrides else base
        if not entry.has_data and entry.config.placeholder_data is not None:
            entry.data = entry.config.placeholder_data
            entry.is_placeholder = True

    def _set_real_data(self, entry: QueryEntry, data: Any) -> None:
        entry.data = share_structure(entry.data, data) if entry.has_data else data
        entry.has_data = True
        entry.is_placeholder = False

    # -- Fetching --

    async def fetch(
        self,
        key: KeyLike,
        fetcher: Fetcher[Any],
        config: QueryConfig | None = None,
        *,
        force: bool = False,
        raise_on_error: bool = False,
        **overrides: Any,
    ) -> Any:
        """Return cached data if fresh, otherwise fetch it.

        Concurrent calls for the same key share one request. Failures are
        stored on the entry and the last good data (or None) is returned,
        unless ``raise_on_error`` is set.

        Args:
            key: String or sequence identifying the query
            fetcher: Async function receiving a CancelToken
            config: Options for this entry (default: current/client config)
            force: Ignore freshness and supersede any in-flight request
            raise_on_error: Raise the FetchError instead of returning
            **overrides: QueryConfig fields to override, e.g. stale_time="1m"

        Returns:
            Cached or freshly fetched data
        """
        entry = self._ensure(key)
        self._configure(entry, config, overrides)
        entry.fetcher = fetcher
        self._schedule_poll(entry)

        if entry.config.persist and not entry.hydrated:
            if await self._hydrate(entry) and not force:
                # Stale-while-revalidate: serve hydrated data, refresh behind it
                self._revalidate(entry)
                return entry.data

        while True:
            if not force and entry.status is QueryStatus.SUCCESS and not entry.is_stale(self._clock()):
                return entry.data

            if entry.in_flight is not None and not force:
                return await self._wait_for(entry, raise_on_error)

            gate = resolve(entry.config.network_mode, self._network.is_online, entry.has_data)
            if gate is Gate.SERVE_CACHED:
                logger.debug("Query %s served from cache (offline)", entry.key)
                return entry.data
            if gate is Gate.WAIT:
                logger.debug("Query %s paused until network returns", entry.key)
                await self._network.wait_until_online()
                continue
            break

        self._start_fetch(entry, fetcher)
        return await self._wait_for(entry, raise_on_error)

    async def refetch(
        self,
        key: KeyLike,
        fetcher: Fetcher[Any] | None = None,
        config: QueryConfig | None = None,
        *,
        raise_on_error: bool = False,
        **overrides: Any,
    ) -> Any:
        """Force a fetch, reusing the entry's last fetcher if none is given."""
        entry = self.get_entry(key)
        fn = fetcher or (entry.fetcher if entry is not None else None)
        if fn is None:
            raise ConfigurationError(f"No fetcher known for query {normalize_key(key)}")
        return await self.fetch(
            key, fn, config, force=True, raise_on_error=raise_on_error, **overrides
        )

    async def prefetch(
        self,
        key: KeyLike,
        fetcher: Fetcher[Any],
        config: QueryConfig | None = None,
        **overrides: Any,
    ) -> None:
        """Best-effort fetch if the entry is stale or absent. Never raises."""
        entry = self._ensure(key)
        self._configure(entry, config, overrides)
        if entry.status is QueryStatus.SUCCESS and not entry.is_stale(self._clock()):
            return

        gate = resolve(entry.config.network_mode, self._network.is_online, entry.has_data)
        if gate is Gate.WAIT:
            logger.debug("Prefetch of %s skipped (offline)", entry.key)
            return

        try:
            await self.fetch(key, fetcher, raise_on_error=True)
        except SynqError as e:
            logger.warning("Prefetch failed for %s: %s", entry.key, e)
            report_error(self._on_error, e)

    async def hydrate(self, key: KeyLike, config: QueryConfig | None = None, **overrides: Any) -> bool:
        """Load a persisted entry from storage ahead of its first fetch."""
        entry = self._ensure(key)
        self._configure(entry, config, overrides)
        if not entry.config.persist or entry.hydrated:
            return False
        return await self._hydrate(entry)

    async def _hydrate(self, entry: QueryEntry) -> bool:
        entry.hydrated = True
        record = await self._bridge.hydrate(entry.key, entry.config)
        # A fetch may have landed while storage was being read
        if record is None or entry.has_data:
            return False

        entry.data = record.data
        entry.has_data = True
        entry.is_placeholder = False
        entry.fetched_at = record.fetched_at
        entry.stale_at = record.fetched_at + entry.config.stale_ms
        if entry.in_flight is None:
            entry.status = QueryStatus.SUCCESS
            entry.error = None
        self._notify(entry)
        return True

    def _revalidate(self, entry: QueryEntry) -> None:
        if entry.in_flight is not None or entry.fetcher is None:
            return
        if resolve(entry.config.network_mode, self._network.is_online, entry.has_data) is Gate.PROCEED:
            self._start_fetch(entry, entry.fetcher)

    def _start_fetch(self, entry: QueryEntry, fetcher: Fetcher[Any]) -> None:
        if entry.in_flight is not None and entry.cancel_token is not None:
            entry.cancel_token.cancel("Superseded by a newer fetch")

        token = CancelToken(f"fetch {entry.key}")
        entry.cancel_token = token
        entry.status = QueryStatus.LOADING
        entry.error = None
        task = asyncio.create_task(self._run_fetch(entry, fetcher, token))
        entry.in_flight = task
        self._track(task)
        self._notify(entry)

    async def _wait_for(self, entry: QueryEntry, raise_on_error: bool) -> Any:
        while True:
            task = entry.in_flight
            if task is None:
                if raise_on_error and entry.status is QueryStatus.ERROR and entry.error is not None:
                    raise entry.error
                return entry.data if entry.has_data else None

            # Shield: a waiter giving up must not cancel the shared request
            outcome = await asyncio.shield(task)
            if outcome is not None:
                data, error = outcome
                if error is not None and raise_on_error:
                    raise error
                return data
            # Superseded: follow the newer request

    async def _run_fetch(self, entry: QueryEntry, fetcher: Fetcher[Any], token: CancelToken) -> _Outcome:
        policy = entry.config.retry
        attempt = 0
        try:
            while True:
                try:
                    data = await fetcher(token)
                except Exception as e:
                    if token.is_cancelled:
                        return self._discard(entry, token)
                    if not policy.should_retry(attempt):
                        error = FetchError(entry.key.normalized, attempt + 1, e)
                        error.__cause__ = e
                        return self._settle_error(entry, error)

                    delay = policy.next_delay(attempt, e)
                    attempt += 1
                    logger.debug(
                        "Query %s failed, retrying (%d/%d) in %dms: %s",
                        entry.key,
                        attempt,
                        policy.retry_count,
                        delay,
                        e,
                    )
                    await asyncio.sleep(delay / 1000)
                    if token.is_cancelled:
                        return self._discard(entry, token)
                    continue

                if token.is_cancelled:
                    return self._discard(entry, token)
                return self._settle_success(entry, data)
        except asyncio.CancelledError:
            if entry.cancel_token is token:
                self._release(entry)
            raise

    def _release(self, entry: QueryEntry) -> None:
        entry.in_flight = None
        entry.cancel_token = None
        if entry.status is QueryStatus.LOADING:
            entry.status = QueryStatus.SUCCESS if entry.has_data else QueryStatus.IDLE

    def _discard(self, entry: QueryEntry, token: CancelToken) -> _Outcome:
        logger.debug("Discarding cancelled fetch for %s", entry.key)
        if entry.cancel_token is not token:
            return None
        # Cancelled without a successor: the entry goes back to its data
        self._release(entry)
        self._notify(entry)
        return (entry.data if entry.has_data else None, None)

    def _settle_success(self, entry: QueryEntry, data: Any) -> _Outcome:
        now = self._clock()
        entry.in_flight = None
        entry.cancel_token = None
        self._set_real_data(entry, data)
        entry.error = None
        entry.status = QueryStatus.SUCCESS
        self._mark_fresh(entry, now)
        self._notify(entry)
        return (entry.data, None)

    def _mark_fresh(self, entry: QueryEntry, now: int) -> None:
        entry.fetched_at = now
        entry.stale_at = now + entry.config.stale_ms
        if entry.subscriber_count == 0:
            entry.expires_at = now + entry.config.cache_ms
            self._schedule_gc(entry)
        if entry.config.persist:
            self._spawn(self._bridge.mirror(entry.key, entry.data, now, entry.config))

    def _settle_error(self, entry: QueryEntry, error: FetchError) -> _Outcome:
        logger.error("%s", error)
        entry.in_flight = None
        entry.cancel_token = None
        entry.error = error
        entry.status = QueryStatus.ERROR
        self._notify(entry)
        return (entry.data if entry.has_data else None, error)

    def cancel(self, key: KeyLike, reason: str | None = None) -> bool:
        """Cancel the in-flight request for key. Its result is discarded."""
        entry = self.get_entry(key)
        if entry is None or entry.cancel_token is None:
            return False
        entry.cancel_token.cancel(reason or "Cancelled by caller")
        return True

    # -- Writes and invalidation --

    def set_data(self, key: KeyLike, data: Any, *, fresh: bool = False) -> Any:
        """Write data directly.

        By default ``stale_at`` is kept, which suits optimistic updates.
        With ``fresh=True`` the write counts as a completed fetch: timestamps
        move to now and persisted queries are mirrored to storage.
        """
        entry = self._ensure(key)
        self._set_real_data(entry, data)
        if entry.status is not QueryStatus.LOADING:
            entry.status = QueryStatus.SUCCESS
            entry.error = None
        if fresh:
            self._mark_fresh(entry, self._clock())
        self._notify(entry)
        return entry.data

    def invalidate(self, key: KeyLike) -> bool:
        """Mark one entry stale. Returns False if it does not exist."""
        entry = self.get_entry(key)
        if entry is None:
            return False
        self._invalidate_entry(entry, self._clock())
        return True

    def invalidate_by_prefix(self, prefix: KeyLike) -> int:
        """Mark stale every entry whose key starts with ``prefix``.

        Matching is by key parts: ``"todos"`` matches ``"todos"``,
        ``["todos"]`` and ``["todos", 1]``.
        """
        prefix_key = normalize_key(prefix)
        return self.invalidate_where(prefix_key.is_prefix_of)

    def invalidate_where(self, predicate: Callable[[QueryKey], bool]) -> int:
        """Mark stale every entry whose key satisfies ``predicate``."""
        now = self._clock()
        matched = [entry for key, entry in list(self._entries.items()) if predicate(key)]
        for entry in matched:
            self._invalidate_entry(entry, now)
        logger.debug("Invalidated %d queries", len(matched))
        return len(matched)

    def _invalidate_entry(self, entry: QueryEntry, now: int) -> None:
        entry.stale_at = now
        # Entries in use refetch now; the rest wait for their next fetch
        if entry.subscriber_count > 0:
            self._revalidate(entry)

    # -- Subscriptions and eviction --

    def subscribe(self, key: KeyLike, listener: Listener | None = None) -> Callable[[], None]:
        """Register interest in key. Returns a function that unsubscribes."""
        entry = self._ensure(key)
        entry.subscriber_count += 1
        entry.expires_at = None
        if entry.gc_handle is not None:
            entry.gc_handle.cancel()
            entry.gc_handle = None
        if listener is not None:
            entry.listeners.append(listener)
        self._schedule_poll(entry)

        done = False

        def unsubscribe() -> None:
            nonlocal done
            if not done:
                done = True
                self.unsubscribe(key, listener)

        return unsubscribe

    def unsubscribe(self, key: KeyLike, listener: Listener | None = None) -> None:
        entry = self.get_entry(key)
        if entry is None or entry.subscriber_count == 0:
            return
        if listener is not None and listener in entry.listeners:
            entry.listeners.remove(listener)
        entry.subscriber_count -= 1
        if entry.subscriber_count == 0:
            self._stop_poll(entry)
            entry.expires_at = self._clock() + entry.config.cache_ms
            self._schedule_gc(entry)

    def _notify(self, entry: QueryEntry) -> None:
        for listener in list(entry.listeners):
            try:
                listener(entry)
            except Exception:
                logger.exception("Listener for %s failed", entry.key)

    def _is_evictable(self, entry: QueryEntry, now: int) -> bool:
        return (
            entry.config.auto_dispose
            and entry.subscriber_count == 0
            and entry.in_flight is None
            and entry.expires_at is not None
            and now > entry.expires_at
        )

    def _schedule_gc(self, entry: QueryEntry) -> None:
        if not entry.config.auto_dispose:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return  # no loop to time with; gc() still sweeps it
        if entry.gc_handle is not None:
            entry.gc_handle.cancel()
        # +1ms so the clock has moved past expires_at when the timer fires
        delay = (entry.config.cache_ms + 1) / 1000
        entry.gc_handle = loop.call_later(delay, self._collect, entry.key)

    def _collect(self, key: QueryKey) -> None:
        entry = self._entries.get(key)
        if entry is None:
            return
        entry.gc_handle = None
        if self._is_evictable(entry, self._clock()):
            self._drop(entry)

    # -- Background polling --

    def _schedule_poll(self, entry: QueryEntry) -> None:
        interval = entry.config.refetch_interval_ms
        if interval is None or entry.poll_handle is not None:
            return
        if entry.subscriber_count == 0 or entry.fetcher is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        entry.poll_handle = loop.call_later(interval / 1000, self._poll, entry.key)

    def _stop_poll(self, entry: QueryEntry) -> None:
        if entry.poll_handle is not None:
            entry.poll_handle.cancel()
            entry.poll_handle = None

    def _poll(self, key: QueryKey) -> None:
        entry = self._entries.get(key)
        if entry is None:
            return
        entry.poll_handle = None
        # Only refresh data that exists and is not already being fetched
        if entry.has_data and entry.in_flight is None and entry.fetcher is not None:
            if resolve(entry.config.network_mode, self._network.is_online, True) is Gate.PROCEED:
                logger.debug("Polling query %s", entry.key)
                self._start_fetch(entry, entry.fetcher)
        self._schedule_poll(entry)

    def gc(self) -> int:
        """Evict every unused, expired entry. Returns how many were removed."""
        now = self._clock()
        expired = [entry for entry in list(self._entries.values()) if self._is_evictable(entry, now)]
        for entry in expired:
            self._drop(entry)
        return len(expired)

    def _drop(self, entry: QueryEntry) -> None:
        if self._entries.get(entry.key) is entry:
            del self._entries[entry.key]
        if entry.gc_handle is not None:
            entry.gc_handle.cancel()
            entry.gc_handle = None
        self._stop_poll(entry)
        if entry.cancel_token is not None:
            entry.cancel_token.cancel("Entry removed")
        logger.debug("Evicted query %s", entry.key)

    def remove(self, key: KeyLike) -> bool:
        """Remove an entry immediately, cancelling any in-flight request."""
        entry = self.get_entry(key)
        if entry is None:
            return False
        self._drop(entry)
        return True

    def clear(self) -> None:
        """Remove all entries."""
        for entry in list(self._entries.values()):
            self._drop(entry)

    def get_stats(self) -> CacheStats:
        now = self._clock()
        counts = dict.fromkeys(QueryStatus, 0)
        stale = 0
        for entry in self._entries.values():
            counts[entry.status] += 1
            if entry.has_data and entry.is_stale(now):
                stale += 1
        return CacheStats(
            total=len(self._entries),
            idle=counts[QueryStatus.IDLE],
            loading=counts[QueryStatus.LOADING],
            success=counts[QueryStatus.SUCCESS],
            error=counts[QueryStatus.ERROR],
            stale=stale,
        )

    # -- Network and lifecycle --

    def _on_network_change(self, online: bool) -> None:
        if not online:
            return
        now = self._clock()
        candidates = [
            entry
            for entry in self._entries.values()
            if entry.config.refetch_on_reconnect
            and entry.subscriber_count > 0
            and entry.in_flight is None
            and (entry.is_stale(now) or entry.status is QueryStatus.ERROR)
        ]
        if candidates:
            logger.debug("Network reconnected, refetching %d queries", len(candidates))
        for entry in candidates:
            self._revalidate(entry)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        self._track(asyncio.create_task(coro))

    def _track(self, task: asyncio.Task[Any]) -> None:
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def wait_idle(self) -> None:
        """Wait for in-flight fetches and background writes to finish."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    async def close(self) -> None:
        """Detach from the network signal and cancel background work."""
        self._remove_listener()
        for entry in self._entries.values():
            if entry.gc_handle is not None:
                entry.gc_handle.cancel()
                entry.gc_handle = None
            self._stop_poll(entry)
        tasks = list(self._background_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


__all__ = ["Listener", "QueryCache", "QueryEntry"]
