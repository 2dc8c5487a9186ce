"""In-memory storage adapter (async only)."""

import asyncio
import json
from typing import Any


class AsyncMemoryStorage:
    """Async in-memory storage.

    Values are JSON-encoded on write so non-serializable data fails here the
    same way it would against a real backend.
    """

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def read(self, key: str) -> Any | None:
        """Read the value stored under key."""
        async with self._lock:
            raw = self._data.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def write(self, key: str, value: Any) -> None:
        """Store a value."""
        raw = json.dumps(value)
        async with self._lock:
            self._data[key] = raw

    async def delete(self, key: str) -> None:
        """Delete a value."""
        async with self._lock:
            self._data.pop(key, None)

    async def keys(self) -> list[str]:
        """List stored keys."""
        async with self._lock:
            return list(self._data)

    async def clear(self) -> None:
        """Remove everything."""
        async with self._lock:
            self._data.clear()

    async def disconnect(self) -> None:
        """Disconnect from the storage backend (no-op for memory)."""
        pass
