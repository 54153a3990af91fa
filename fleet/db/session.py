from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


def create_engine(url: str, connect_timeout: float = 20.0) -> AsyncEngine:
    connect_args = {}
    if url.startswith("sqlite"):
        # Writers queue on SQLite's database lock instead of failing fast
        connect_args["timeout"] = connect_timeout
    elif "asyncpg" in url:
        connect_args["timeout"] = connect_timeout
    return create_async_engine(
        url,
        echo=False,
        pool_pre_ping=True,
        connect_args=connect_args,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
