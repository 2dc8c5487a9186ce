"""Async sync client: query cache, mutation queue and storage wired together."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterable, Awaitable, Callable, Mapping
from functools import wraps
from typing import Any, ParamSpec, TypeVar, overload

from synq.adapters.base import AsyncStorage
from synq.cache import Listener, QueryCache, QueryEntry
from synq.config import Fetcher, QueryConfig, QuerySpec
from synq.exceptions import ErrorHandler
from synq.infinite import InfiniteQuery, PageFetcher, PageParam
from synq.keys import KeyLike, QueryKey
from synq.mutation import Mutation
from synq.mutation_queue import MutationQueue, ReplayErrorHandler
from synq.network import NetworkSignal
from synq.persistence import PersistenceBridge
from synq.retry import RetryPolicy
from synq.types import CacheStats, Duration, MutationHandler, NetworkMode

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R")
V = TypeVar("V")


def _now_ms() -> int:
    return int(time.time() * 1000)


class SyncClient:
    """Query cache with offline mutation replay.

    Usage:
        client = SyncClient(storage=AsyncMemoryStorage(), handlers={"add_todo": api.add_todo})

        @client.query
        def todos(user_id: int) -> QuerySpec[list[dict]]:
            return QuerySpec(["todos", user_id], lambda token: api.todos(user_id))

        async with client:
            items = await todos(1)
    """

    def __init__(
        self,
        *,
        storage: AsyncStorage | None = None,
        network: NetworkSignal | None = None,
        network_stream: AsyncIterable[bool] | None = None,
        handlers: Mapping[str, MutationHandler] | None = None,
        prefix: str = "synq",
        default_stale_time: Duration = "30s",
        default_cache_time: Duration = "5m",
        default_retry: RetryPolicy | None = None,
        default_network_mode: NetworkMode = NetworkMode.ONLINE,
        on_error: ErrorHandler | None = None,
        on_replay_error: ReplayErrorHandler | None = None,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._storage = storage
        self._network = network if network is not None else NetworkSignal()
        self._network_stream = network_stream
        self._clock = clock
        self._on_error = on_error
        self._default_config = QueryConfig(
            stale_time=default_stale_time,
            cache_time=default_cache_time,
            retry=default_retry if default_retry is not None else RetryPolicy(),
            network_mode=default_network_mode,
        )
        self._bridge = PersistenceBridge(storage, prefix=prefix, on_error=on_error, clock=clock)
        self._cache = QueryCache(
            network=self._network,
            bridge=self._bridge,
            default_config=self._default_config,
            on_error=on_error,
            clock=clock,
        )
        self._queue = MutationQueue(
            network=self._network,
            bridge=self._bridge,
            handlers=handlers,
            on_replay_error=on_replay_error,
            on_error=on_error,
            clock=clock,
        )
        self._stream_task: asyncio.Task[None] | None = None
        self._started = False

    @property
    def cache(self) -> QueryCache:
        return self._cache

    @property
    def queue(self) -> MutationQueue:
        return self._queue

    @property
    def network(self) -> NetworkSignal:
        return self._network

    @property
    def storage(self) -> AsyncStorage | None:
        return self._storage

    @property
    def default_config(self) -> QueryConfig:
        return self._default_config

    # -- Lifecycle --

    async def start(self) -> None:
        """Restore the persisted queue, follow the network stream, start replay."""
        if self._started:
            return
        self._started = True
        await self._queue.restore()
        if self._network_stream is not None:
            self._stream_task = asyncio.create_task(self._network.follow(self._network_stream))
        self._queue.trigger()

    async def close(self) -> None:
        """Stop replay and background work. Does not disconnect storage."""
        if self._stream_task is not None:
            self._stream_task.cancel()
            await asyncio.gather(self._stream_task, return_exceptions=True)
            self._stream_task = None
        await self._queue.close()
        await self._cache.close()
        self._started = False

    async def __aenter__(self) -> SyncClient:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # -- Decorators --

    def query(self, fn: Callable[P, QuerySpec[R]]) -> Callable[P, Awaitable[R]]:
        """Decorator that turns a QuerySpec factory into a cached query."""

        @wraps(fn)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            spec = fn(*args, **kwargs)
            return await self._cache.fetch(spec.key, spec.fetcher, spec.config)

        return wrapper

    def infinite_query(
        self,
        key: KeyLike,
        fetch_page: PageFetcher[R],
        *,
        get_next_page_param: PageParam[R],
        get_previous_page_param: PageParam[R] | None = None,
        initial_page_param: Any = None,
        config: QueryConfig | None = None,
    ) -> InfiniteQuery[R]:
        """Build a paged query whose pages live under ``key`` in this cache."""
        return InfiniteQuery(
            self._cache,
            key,
            fetch_page,
            get_next_page_param=get_next_page_param,
            get_previous_page_param=get_previous_page_param,
            initial_page_param=initial_page_param,
            config=config,
            on_error=self._on_error,
        )

    @overload
    def mutation(
        self, fn: Callable[[V], Awaitable[R]], **options: Any
    ) -> Mutation[R, V]: ...

    @overload
    def mutation(
        self, fn: None = None, **options: Any
    ) -> Callable[[Callable[[V], Awaitable[R]]], Mutation[R, V]]: ...

    def mutation(self, fn: Any = None, **options: Any) -> Any:
        """Build a Mutation bound to this client's network and queue.

        Works both as ``client.mutation(api.add, mutation_key="add")`` and as
        ``@client.mutation(mutation_key="add")``. A keyed mutation also
        registers its function as the replay handler unless one exists.
        """
        options.setdefault("network_mode", self._default_config.network_mode)

        def build(func: Callable[[V], Awaitable[R]]) -> Mutation[R, V]:
            mutation_key = options.get("mutation_key")
            if mutation_key is not None and mutation_key not in self._queue.handlers:
                self._queue.register_handlers({mutation_key: func})
            return Mutation(func, network=self._network, queue=self._queue, **options)

        if fn is None:
            return build
        return build(fn)

    def register_handlers(self, handlers: Mapping[str, MutationHandler]) -> None:
        self._queue.register_handlers(handlers)

    # -- Queries --

    async def fetch(
        self,
        key: KeyLike,
        fetcher: Fetcher[R],
        config: QueryConfig | None = None,
        *,
        force: bool = False,
        raise_on_error: bool = False,
        **overrides: Any,
    ) -> R | None:
        return await self._cache.fetch(
            key, fetcher, config, force=force, raise_on_error=raise_on_error, **overrides
        )

    async def refetch(
        self,
        key: KeyLike,
        fetcher: Fetcher[Any] | None = None,
        *,
        raise_on_error: bool = False,
    ) -> Any:
        return await self._cache.refetch(key, fetcher, raise_on_error=raise_on_error)

    async def prefetch(
        self,
        key: KeyLike,
        fetcher: Fetcher[Any],
        config: QueryConfig | None = None,
        **overrides: Any,
    ) -> None:
        await self._cache.prefetch(key, fetcher, config, **overrides)

    async def hydrate(self, key: KeyLike, config: QueryConfig | None = None, **overrides: Any) -> bool:
        return await self._cache.hydrate(key, config, **overrides)

    def get_data(self, key: KeyLike) -> Any | None:
        return self._cache.get_data(key)

    def get_entry(self, key: KeyLike) -> QueryEntry | None:
        return self._cache.get_entry(key)

    def set_data(self, key: KeyLike, data: Any, *, fresh: bool = False) -> Any:
        return self._cache.set_data(key, data, fresh=fresh)

    def remove(self, key: KeyLike) -> bool:
        return self._cache.remove(key)

    def invalidate(self, key: KeyLike) -> bool:
        return self._cache.invalidate(key)

    def invalidate_by_prefix(self, prefix: KeyLike) -> int:
        return self._cache.invalidate_by_prefix(prefix)

    def invalidate_where(self, predicate: Callable[[QueryKey], bool]) -> int:
        return self._cache.invalidate_where(predicate)

    def subscribe(self, key: KeyLike, listener: Listener | None = None) -> Callable[[], None]:
        return self._cache.subscribe(key, listener)

    def unsubscribe(self, key: KeyLike, listener: Listener | None = None) -> None:
        self._cache.unsubscribe(key, listener)

    def cancel(self, key: KeyLike, reason: str | None = None) -> bool:
        return self._cache.cancel(key, reason)

    def gc(self) -> int:
        return self._cache.gc()

    def get_stats(self) -> CacheStats:
        return self._cache.get_stats()

    async def clear(self) -> None:
        """Drop every cached query and every queued mutation."""
        self._cache.clear()
        await self._queue.clear()

    async def wait_idle(self) -> None:
        """Wait for fetches, storage writes and a running replay to finish."""
        await self._cache.wait_idle()
        await self._queue.wait_idle()
        await self._cache.wait_idle()


__all__ = ["SyncClient"]
