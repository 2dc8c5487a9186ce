"""Core types for the synq cache library."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")

# Duration type alias
Duration = str | int | timedelta  # "30s", "5m", "2h", "1d", milliseconds or timedelta

# Replay handler: receives the deserialized payload of a queued mutation
MutationHandler = Callable[[Any], Awaitable[Any]]


class QueryStatus(str, Enum):
    """Lifecycle state of a query entry."""

    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


class MutationStatus(str, Enum):
    """Lifecycle state of a single mutation invocation."""

    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


class NetworkMode(str, Enum):
    """How an operation behaves with respect to connectivity."""

    ONLINE = "online"
    OFFLINE_FIRST = "offline_first"
    ALWAYS = "always"


@dataclass(frozen=True, slots=True)
class PersistedQuery(Generic[T]):
    """A query record read back from durable storage."""

    data: T
    fetched_at: int  # Unix timestamp ms


@dataclass(frozen=True, slots=True)
class QueuedMutation:
    """A mutation waiting in the offline queue."""

    id: int
    mutation_key: str
    payload: Any
    enqueued_at: int  # Unix timestamp ms

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "mutationKey": self.mutation_key,
            "payload": self.payload,
            "enqueuedAt": self.enqueued_at,
        }

    @classmethod
    def from_json(cls, obj: dict[str, Any]) -> "QueuedMutation":
        return cls(
            id=int(obj["id"]),
            mutation_key=obj["mutationKey"],
            payload=obj.get("payload"),
            enqueued_at=int(obj["enqueuedAt"]),
        )


@dataclass(frozen=True, slots=True)
class CacheStats:
    """Counts of cache entries by status."""

    total: int
    idle: int
    loading: int
    success: int
    error: int
    stale: int
