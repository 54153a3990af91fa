import pytest
import pytest_asyncio
import fakeredis.aioredis

from fleet.coordinator import Coordinator
from fleet.store.memory_store import MemoryLeaseStore
from fleet.store.redis_store import RedisLeaseStore
from fleet.store.sql_store import SqlLeaseStore


class FakeClock:
    """Manually advanced wall clock shared by a store and its coordinator."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()

@pytest.fixture
def memory_store(clock):
    return MemoryLeaseStore(clock=clock)

@pytest.fixture
def coordinator(memory_store, clock):
    return Coordinator(memory_store, stage="app", lease_ttl=3600, heartbeat_ttl=120, clock=clock)

@pytest_asyncio.fixture
async def sql_store(tmp_path, clock):
    store = SqlLeaseStore(f"sqlite+aiosqlite:///{tmp_path / 'leases.db'}", clock=clock)
    await store.ping()
    yield store
    await store.close()

@pytest_asyncio.fixture(params=["memory", "redis", "sql"])
async def any_store(request, clock, tmp_path):
    """Every backend, for contract tests that do not depend on expiry."""
    if request.param == "memory":
        yield MemoryLeaseStore(clock=clock)
    elif request.param == "redis":
        client = fakeredis.aioredis.FakeRedis(decode_responses=True)
        store = RedisLeaseStore("redis://fake:6379/0", client=client)
        yield store
        await client.flushall()
        await store.close()
    else:
        store = SqlLeaseStore(f"sqlite+aiosqlite:///{tmp_path / 'contract.db'}", clock=clock)
        await store.ping()
        yield store
        await store.close()
