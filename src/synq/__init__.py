"""synq - Query cache and offline mutation sync for asyncio apps."""

from contextlib import suppress

# Adapters (async only)
from synq.adapters import (
    AsyncMemoryStorage,
    AsyncStorage,
)

# Engine
from synq.cache import QueryCache, QueryEntry
from synq.cancel import CancelToken
from synq.client import SyncClient
from synq.config import Fetcher, QueryConfig, QuerySpec

# Duration parsing
from synq.duration import parse_duration
from synq.exceptions import (
    ConfigurationError,
    FetchCancelled,
    FetchError,
    MissingHandlerError,
    MutationError,
    ReplayError,
    StorageError,
    SynqError,
)
from synq.keys import QueryKey, normalize_key
from synq.mutation import Mutation
from synq.mutation_queue import MutationQueue
from synq.network import Gate, NetworkSignal, resolve
from synq.infinite import InfiniteQuery
from synq.optimistic import list_add, list_remove, list_update, value_remove, value_set, value_update
from synq.persistence import PersistenceBridge
from synq.retry import NO_RETRY, RetryPolicy
from synq.sharing import share_structure, structural_equals

# Core types
from synq.types import (
    CacheStats,
    Duration,
    MutationStatus,
    NetworkMode,
    PersistedQuery,
    QueryStatus,
    QueuedMutation,
)

# Optional adapter imports - only available when dependencies are installed
with suppress(ImportError):
    from synq.adapters import AsyncRedisStorage

with suppress(ImportError):
    from synq.adapters import AsyncHttpStorage

__version__ = "0.1.0"

__all__ = [
    "NO_RETRY",
    "AsyncHttpStorage",
    "AsyncMemoryStorage",
    "AsyncRedisStorage",
    "AsyncStorage",
    "CacheStats",
    "CancelToken",
    "ConfigurationError",
    "Duration",
    "FetchCancelled",
    "FetchError",
    "Fetcher",
    "Gate",
    "InfiniteQuery",
    "MissingHandlerError",
    "Mutation",
    "MutationError",
    "MutationQueue",
    "MutationStatus",
    "NetworkMode",
    "NetworkSignal",
    "PersistedQuery",
    "PersistenceBridge",
    "QueryCache",
    "QueryConfig",
    "QueryEntry",
    "QueryKey",
    "QuerySpec",
    "QueryStatus",
    "QueuedMutation",
    "ReplayError",
    "RetryPolicy",
    "StorageError",
    "SyncClient",
    "SynqError",
    "list_add",
    "list_remove",
    "list_update",
    "normalize_key",
    "parse_duration",
    "resolve",
    "share_structure",
    "structural_equals",
    "value_remove",
    "value_set",
    "value_update",
]
