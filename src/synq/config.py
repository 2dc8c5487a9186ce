"""Per-query configuration."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from synq.cancel import CancelToken
from synq.duration import parse_duration
from synq.keys import KeyLike
from synq.retry import RetryPolicy
from synq.types import Duration, NetworkMode

if TYPE_CHECKING:
    from synq.adapters.base import AsyncStorage

T = TypeVar("T")

Fetcher = Callable[[CancelToken], Awaitable[T]]


@dataclass(frozen=True, slots=True)
class QueryConfig:
    """Resolved options for one query entry.

    Durations accept ``"30s"``-style strings, milliseconds or ``timedelta``
    and are parsed when used.
    """

    stale_time: Duration = "30s"
    cache_time: Duration = "5m"
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    network_mode: NetworkMode = NetworkMode.ONLINE
    refetch_on_reconnect: bool = True
    auto_dispose: bool = True
    persist: bool = False
    to_json: Callable[[Any], Any] | None = None
    from_json: Callable[[Any], Any] | None = None
    storage: AsyncStorage | None = None  # overrides the client storage
    refetch_interval: Duration | None = None  # poll while subscribed
    placeholder_data: Any = None  # shown while loading, never cached

    def __post_init__(self) -> None:
        parse_duration(self.stale_time)
        parse_duration(self.cache_time)
        if self.refetch_interval is not None and parse_duration(self.refetch_interval) <= 0:
            raise ValueError(f"refetch_interval must be positive: {self.refetch_interval!r}")

    @property
    def stale_ms(self) -> int:
        return parse_duration(self.stale_time)

    @property
    def cache_ms(self) -> int:
        return parse_duration(self.cache_time)

    @property
    def refetch_interval_ms(self) -> int | None:
        if self.refetch_interval is None:
            return None
        return parse_duration(self.refetch_interval)

    def merge(self, **overrides: Any) -> QueryConfig:
        """Copy with the given fields replaced; ``None`` values are ignored."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        if not changes:
            return self
        return replace(self, **changes)


@dataclass(frozen=True, slots=True)
class QuerySpec(Generic[T]):
    """What a ``@client.query`` function returns: key, fetcher and options."""

    key: KeyLike
    fetcher: Fetcher[T]
    config: QueryConfig | None = None


__all__ = ["Fetcher", "QueryConfig", "QuerySpec"]
