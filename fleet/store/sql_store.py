"""
SQL-backed Lease Store (PostgreSQL via asyncpg, SQLite via aiosqlite).

One key/value table with an epoch expiry column. Rows past expires_at are
invisible to every read and are overwritten by the next conditional write.
"""

import hashlib
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Iterable, Optional, Sequence

from sqlalchemy import select, delete, func, literal, text, and_, or_, true, String, Text, Float
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from fleet.db.models import StoreEntry
from fleet.db.session import Base, create_engine, create_session_factory
from fleet.domain.errors import StoreConnectivityError, StoreError
from fleet.store.base import LeaseStore, StoreOp, SetOp, DeleteOp

logger = logging.getLogger(__name__)


def advisory_lock_key(key: str) -> int:
    """Maps a store key onto Postgres' signed 64-bit advisory lock space."""
    digest = hashlib.sha256(key.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


class SqlLeaseStore(LeaseStore):

    def __init__(
        self,
        database_url: str,
        engine: Optional[AsyncEngine] = None,
        clock: Callable[[], float] = time.time,
        connect_timeout: float = 20.0
    ):
        self.database_url = database_url
        self.engine = engine or create_engine(database_url, connect_timeout=connect_timeout)
        self.session_factory = create_session_factory(self.engine)
        self.clock = clock
        self._initialized = False

        dialect = self.engine.dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            raise StoreError(f"Unsupported SQL dialect for lease store: {dialect}")
        self._insert = insert
        self._use_advisory_locks = dialect == "postgresql"

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    yield session
        except (OperationalError, InterfaceError, OSError) as e:
            raise StoreConnectivityError(f"SQL store {operation} failed: {e}") from e
        except DBAPIError as e:
            if e.connection_invalidated:
                raise StoreConnectivityError(f"SQL store {operation} lost its connection: {e}") from e
            raise StoreError(f"SQL store {operation} failed: {e}") from e
        except SQLAlchemyError as e:
            raise StoreError(f"SQL store {operation} failed: {e}") from e

    @staticmethod
    def _live(now: float):
        return or_(StoreEntry.expires_at.is_(None), StoreEntry.expires_at > now)

    @staticmethod
    def _expired(now: float):
        return and_(StoreEntry.expires_at.is_not(None), StoreEntry.expires_at <= now)

    async def _lock_keys(self, session: AsyncSession, keys: Iterable[str]) -> None:
        # Sorted so two transactions touching the same keys cannot deadlock
        if not self._use_advisory_locks:
            return
        for lock_key in sorted({advisory_lock_key(k) for k in keys}):
            await session.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": lock_key})

    def _upsert(self, key: str, value: str, expires_at: Optional[float], now: float, only_if_absent: bool):
        stmt = self._insert(StoreEntry).values(key=key, value=value, expires_at=expires_at)
        return stmt.on_conflict_do_update(
            index_elements=[StoreEntry.key],
            set_={"value": stmt.excluded.value, "expires_at": stmt.excluded.expires_at},
            where=self._expired(now) if only_if_absent else None,
        )

    async def ping(self) -> None:
        async with self._transaction("ping") as session:
            await session.execute(text("SELECT 1"))
        if not self._initialized:
            try:
                async with self.engine.begin() as conn:
                    await conn.run_sync(Base.metadata.create_all)
            except (OperationalError, InterfaceError, OSError) as e:
                raise StoreConnectivityError(f"SQL store schema init failed: {e}") from e
            self._initialized = True
            logger.info(f"SQL lease store ready ({self.engine.dialect.name})")

    async def set_if_absent(self, key: str, value: str, ttl: int, guard_keys: Sequence[str] = ()) -> bool:
        now = self.clock()
        candidate = select(
            literal(key, String),
            literal(value, Text),
            literal(now + ttl, Float),
        )
        if guard_keys:
            guard = select(StoreEntry.key).where(StoreEntry.key.in_(list(guard_keys)), self._live(now))
            candidate = candidate.where(~guard.exists())
        else:
            # SQLite needs a WHERE clause to parse INSERT ... SELECT ... ON CONFLICT
            candidate = candidate.where(true())

        stmt = self._insert(StoreEntry).from_select(["key", "value", "expires_at"], candidate)
        stmt = stmt.on_conflict_do_update(
            index_elements=[StoreEntry.key],
            set_={"value": stmt.excluded.value, "expires_at": stmt.excluded.expires_at},
            where=self._expired(now),
        )

        async with self._transaction("set_if_absent") as session:
            await self._lock_keys(session, [key, *guard_keys])
            result = await session.execute(stmt)
            return result.rowcount == 1

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        now = self.clock()
        expires_at = now + ttl if ttl is not None else None
        async with self._transaction("set") as session:
            await session.execute(self._upsert(key, value, expires_at, now, only_if_absent=False))

    async def get(self, key: str) -> Optional[str]:
        now = self.clock()
        async with self._transaction("get") as session:
            return await session.scalar(
                select(StoreEntry.value).where(StoreEntry.key == key, self._live(now))
            )

    async def get_many(self, keys: Sequence[str]) -> list[Optional[str]]:
        if not keys:
            return []
        now = self.clock()
        async with self._transaction("get_many") as session:
            rows = await session.execute(
                select(StoreEntry.key, StoreEntry.value).where(StoreEntry.key.in_(list(keys)), self._live(now))
            )
            found = {k: v for k, v in rows.all()}
        return [found.get(k) for k in keys]

    async def exists(self, key: str) -> bool:
        return await self.get(key) is not None

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        now = self.clock()
        async with self._transaction("delete") as session:
            await self._lock_keys(session, keys)
            result = await session.execute(
                delete(StoreEntry).where(StoreEntry.key.in_(list(keys)), self._live(now))
            )
            # Expired leftovers are gone from the reader's point of view already
            await session.execute(delete(StoreEntry).where(StoreEntry.key.in_(list(keys))))
            return result.rowcount

    async def apply(self, ops: Iterable[StoreOp]) -> list[bool]:
        ops = list(ops)
        now = self.clock()
        results = []
        async with self._transaction("transaction") as session:
            await self._lock_keys(session, [op.key for op in ops])
            for op in ops:
                if isinstance(op, SetOp):
                    expires_at = now + op.ttl if op.ttl is not None else None
                    result = await session.execute(self._upsert(op.key, op.value, expires_at, now, op.only_if_absent))
                    results.append(result.rowcount == 1)
                elif isinstance(op, DeleteOp):
                    result = await session.execute(
                        delete(StoreEntry).where(StoreEntry.key == op.key, self._live(now))
                    )
                    results.append(result.rowcount > 0)
                    await session.execute(delete(StoreEntry).where(StoreEntry.key == op.key))
                else:
                    raise TypeError(f"Unsupported store op: {op!r}")
        return results

    async def scan_prefix(self, prefix: str) -> AsyncIterator[str]:
        now = self.clock()
        async with self._transaction("scan") as session:
            keys = (await session.scalars(
                select(StoreEntry.key).where(StoreEntry.key.startswith(prefix, autoescape=True), self._live(now))
            )).all()
        for key in keys:
            yield key

    async def count_prefix(self, prefix: str) -> int:
        now = self.clock()
        async with self._transaction("count") as session:
            count = await session.scalar(
                select(func.count()).select_from(StoreEntry).where(
                    StoreEntry.key.startswith(prefix, autoescape=True), self._live(now)
                )
            )
        return count or 0

    async def close(self) -> None:
        await self.engine.dispose()
