"""
Redis-backed Lease Store.

Production backend: every worker and the monitor talk to one Redis instance.
Leases and heartbeats use native key expiry; the guarded claim is a Lua script
so the completion check and the SET NX EX happen in one server-side step.
"""

import logging
import re
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable, Optional, Sequence

import redis.asyncio as redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError as RedisConnectionError, TimeoutError as RedisTimeoutError, RedisError

from fleet.domain.errors import StoreConnectivityError, StoreError
from fleet.store.base import LeaseStore, StoreOp, SetOp, DeleteOp

logger = logging.getLogger(__name__)

# KEYS[1] = key to set, KEYS[2..n] = guards; ARGV[1] = value, ARGV[2] = ttl seconds
GUARDED_SET_NX_SCRIPT = """
for i = 2, #KEYS do
    if redis.call('EXISTS', KEYS[i]) == 1 then
        return 0
    end
end
if redis.call('SET', KEYS[1], ARGV[1], 'NX', 'EX', ARGV[2]) then
    return 1
end
return 0
"""

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


def obfuscate_url(url: str) -> str:
    return re.sub(r"//(.+?)@", "//****:****@", url)

def glob_escape(prefix: str) -> str:
    return _GLOB_SPECIAL.sub(r"\\\1", prefix)


class RedisLeaseStore(LeaseStore):

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        client: Optional[redis.Redis] = None,
        connect_timeout: float = 20.0
    ):
        """
        Initialize the Redis store.

        Args:
            redis_url: Redis connection URL (redis:// or rediss://)
            client: Pre-built client; used as-is when given
            connect_timeout: Socket connect/read timeout in seconds
        """
        self.redis_url = redis_url
        if client is None:
            client = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=connect_timeout,
                socket_timeout=connect_timeout,
                socket_keepalive=True,
                health_check_interval=30,
                retry=Retry(ExponentialBackoff(cap=2.0, base=0.05), retries=3),
                retry_on_error=[RedisConnectionError, RedisTimeoutError],
            )
        self.client = client
        self._guarded_set = self.client.register_script(GUARDED_SET_NX_SCRIPT)

    @asynccontextmanager
    async def _errors(self, operation: str):
        try:
            yield
        except (RedisConnectionError, RedisTimeoutError, OSError) as e:
            raise StoreConnectivityError(
                f"Redis {operation} failed at {obfuscate_url(self.redis_url)}: {e}"
            ) from e
        except RedisError as e:
            raise StoreError(f"Redis {operation} failed: {e}") from e

    async def ping(self) -> None:
        async with self._errors("ping"):
            await self.client.ping()
        logger.info(f"Connected to Redis at {obfuscate_url(self.redis_url)}")

    async def set_if_absent(self, key: str, value: str, ttl: int, guard_keys: Sequence[str] = ()) -> bool:
        async with self._errors("set_if_absent"):
            written = await self._guarded_set(keys=[key, *guard_keys], args=[value, int(ttl)])
        return bool(written)

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        async with self._errors("set"):
            await self.client.set(key, value, ex=ttl)

    async def get(self, key: str) -> Optional[str]:
        async with self._errors("get"):
            return await self.client.get(key)

    async def get_many(self, keys: Sequence[str]) -> list[Optional[str]]:
        if not keys:
            return []
        async with self._errors("mget"):
            return await self.client.mget(list(keys))

    async def exists(self, key: str) -> bool:
        async with self._errors("exists"):
            return bool(await self.client.exists(key))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        async with self._errors("delete"):
            return int(await self.client.delete(*keys))

    async def apply(self, ops: Iterable[StoreOp]) -> list[bool]:
        async with self._errors("transaction"):
            async with self.client.pipeline(transaction=True) as pipe:
                for op in ops:
                    if isinstance(op, SetOp):
                        pipe.set(op.key, op.value, ex=op.ttl, nx=op.only_if_absent)
                    elif isinstance(op, DeleteOp):
                        pipe.delete(op.key)
                    else:
                        raise TypeError(f"Unsupported store op: {op!r}")
                replies = await pipe.execute()
        # SET NX replies None when skipped, DEL replies the number removed
        return [bool(reply) for reply in replies]

    async def scan_prefix(self, prefix: str) -> AsyncIterator[str]:
        # SCAN may return a key more than once across cursor steps
        seen: set[str] = set()
        async with self._errors("scan"):
            async for key in self.client.scan_iter(match=glob_escape(prefix) + "*", count=100):
                if key not in seen:
                    seen.add(key)
                    yield key

    async def close(self) -> None:
        await self.client.aclose()
