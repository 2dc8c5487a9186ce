"""Storage adapters for synq (async only)."""

from contextlib import suppress

from synq.adapters.base import AsyncStorage
from synq.adapters.memory import AsyncMemoryStorage

# Optional adapters - only available when dependencies are installed
with suppress(ImportError):
    from synq.adapters.redis import AsyncRedisStorage

with suppress(ImportError):
    from synq.adapters.http import AsyncHttpStorage

__all__ = [
    "AsyncHttpStorage",
    "AsyncMemoryStorage",
    "AsyncRedisStorage",
    "AsyncStorage",
]
