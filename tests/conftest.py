"""Shared pytest fixtures."""

import pytest

from synq import (
    AsyncMemoryStorage,
    NetworkSignal,
    PersistenceBridge,
    QueryCache,
    QueryConfig,
    RetryPolicy,
    SyncClient,
)


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start: int = 1_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


# Retries without real sleeps
FAST_RETRY = RetryPolicy(retry_count=3, base_delay=0, jitter=False)


@pytest.fixture
def clock() -> FakeClock:
    """Create a fake clock for each test."""
    return FakeClock()


@pytest.fixture
def storage() -> AsyncMemoryStorage:
    """Create a fresh AsyncMemoryStorage for each test."""
    return AsyncMemoryStorage()


@pytest.fixture
def network() -> NetworkSignal:
    """Create an online network signal for each test."""
    return NetworkSignal(online=True)


@pytest.fixture
def bridge(storage: AsyncMemoryStorage, clock: FakeClock) -> PersistenceBridge:
    """Create a persistence bridge over the memory storage."""
    return PersistenceBridge(storage, prefix="test", clock=clock)


@pytest.fixture
def cache(network: NetworkSignal, bridge: PersistenceBridge, clock: FakeClock) -> QueryCache:
    """Create a query cache with fast retries and the fake clock."""
    return QueryCache(
        network=network,
        bridge=bridge,
        default_config=QueryConfig(stale_time="30s", cache_time="5m", retry=FAST_RETRY),
        clock=clock,
    )


@pytest.fixture
async def client(storage: AsyncMemoryStorage, network: NetworkSignal, clock: FakeClock):
    """Create a started SyncClient and close it after the test."""
    sync_client = SyncClient(
        storage=storage,
        network=network,
        prefix="test",
        default_retry=FAST_RETRY,
        clock=clock,
    )
    await sync_client.start()
    yield sync_client
    await sync_client.close()
