"""Redis storage adapter."""

from __future__ import annotations

import json
from typing import Any


class AsyncRedisStorage:
    """Async Redis storage adapter.

    Values are stored as JSON strings under ``{prefix}:{key}``.
    """

    def __init__(
        self,
        client: Any,  # redis.asyncio.Redis
        *,
        prefix: str = "synq",
    ) -> None:
        self._client = client
        self._prefix = prefix

    def _full_key(self, key: str) -> str:
        """Generate full Redis key."""
        return f"{self._prefix}:{key}"

    async def read(self, key: str) -> Any | None:
        """Read the value stored under key."""
        data = await self._client.get(self._full_key(key))
        if data is None:
            return None
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        return json.loads(data)

    async def write(self, key: str, value: Any) -> None:
        """Store a value. Persisted entries do not expire in Redis."""
        await self._client.set(self._full_key(key), json.dumps(value))

    async def delete(self, key: str) -> None:
        """Delete a value."""
        await self._client.delete(self._full_key(key))

    async def clear(self) -> None:
        """Delete every key under this adapter's prefix."""
        # Use SCAN to find and delete all keys
        cursor: int = 0
        pattern = f"{self._prefix}:*"
        while True:
            result = await self._client.scan(cursor, match=pattern, count=100)
            cursor = result[0]
            keys = result[1]
            if keys:
                await self._client.delete(*keys)
            if cursor == 0:
                break

    async def disconnect(self) -> None:
        """Close the Redis connection."""
        await self._client.aclose()
