"""
Lease Store factory.

Selects the backend from the URL scheme:
1. redis:// / rediss://                       -> RedisLeaseStore
2. postgresql+asyncpg:// / sqlite+aiosqlite:// -> SqlLeaseStore
3. memory://                                   -> MemoryLeaseStore (single process only)
"""

import logging
from urllib.parse import urlsplit

from fleet.store.base import LeaseStore

logger = logging.getLogger(__name__)


def create_store(url: str, connect_timeout: float = 20.0) -> LeaseStore:
    scheme = urlsplit(url).scheme.lower()

    if scheme in ("redis", "rediss", "unix"):
        from fleet.store.redis_store import RedisLeaseStore
        return RedisLeaseStore(url, connect_timeout=connect_timeout)

    if scheme.startswith("postgresql") or scheme.startswith("sqlite"):
        from fleet.store.sql_store import SqlLeaseStore
        return SqlLeaseStore(url, connect_timeout=connect_timeout)

    if scheme == "memory":
        from fleet.store.memory_store import MemoryLeaseStore
        logger.warning("Using in-memory lease store: leases are NOT shared between processes")
        return MemoryLeaseStore()

    raise ValueError(f"Unsupported lease store URL scheme: {scheme or url!r}")
