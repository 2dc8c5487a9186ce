"""Base storage protocol for durable backends."""

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class AsyncStorage(Protocol):
    """Async key-value storage used for persisted queries and the mutation queue.

    Values are JSON-compatible objects. Each call is treated as independent
    and idempotent; the engine never relies on multi-key transactions.
    """

    async def read(self, key: str) -> Any | None:
        """Read the value stored under key, or None."""
        ...

    async def write(self, key: str, value: Any) -> None:
        """Store a JSON-compatible value under key."""
        ...

    async def delete(self, key: str) -> None:
        """Delete the value stored under key (no-op if absent)."""
        ...

    async def disconnect(self) -> None:
        """Release backend resources."""
        ...
