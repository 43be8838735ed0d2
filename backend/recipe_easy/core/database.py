"""Database configuration and session management.

PostgreSQL (asyncpg) in deployment, SQLite (aiosqlite) for local runs and
tests. The ledger relies on row-level atomic UPDATEs, which both support;
SQLite additionally needs a busy timeout so concurrent writers wait for the
file lock instead of failing immediately.
"""

from typing import AsyncGenerator, Optional

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import NullPool

# Declarative base for models (can be imported without engine)
Base = declarative_base()

# Seconds a SQLite connection waits on a locked database file
SQLITE_BUSY_TIMEOUT_SECONDS = 30

# Global engine and session factory (initialized on first use)
engine: Optional[AsyncEngine] = None
AsyncSessionLocal = None


def build_engine(database_url: str, echo: bool = False, pooled: bool = True) -> AsyncEngine:
    """
    Create an async engine for a database URL.

    Args:
        database_url: SQLAlchemy URL (postgresql+asyncpg or sqlite+aiosqlite)
        echo: Log every statement
        pooled: Keep a connection pool; SQLite never pools

    Returns:
        AsyncEngine
    """
    connect_args = {}
    is_sqlite = make_url(database_url).get_backend_name() == "sqlite"
    if is_sqlite:
        connect_args["timeout"] = SQLITE_BUSY_TIMEOUT_SECONDS

    return create_async_engine(
        database_url,
        echo=echo,
        future=True,
        poolclass=NullPool if is_sqlite or not pooled else None,
        connect_args=connect_args,
    )


def build_session_factory(bind: AsyncEngine):
    """Session factory whose objects stay readable after commit."""
    return sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


def get_engine() -> AsyncEngine:
    """Get or create the application engine."""
    global engine
    if engine is None:
        from recipe_easy.core.config import settings

        engine = build_engine(
            settings.DATABASE_URL,
            echo=settings.ENVIRONMENT == "development",
            pooled=settings.ENVIRONMENT != "test",
        )
    return engine


def get_session_factory():
    """Get or create async session factory."""
    global AsyncSessionLocal
    if AsyncSessionLocal is None:
        AsyncSessionLocal = build_session_factory(get_engine())
    return AsyncSessionLocal


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for FastAPI routes to get database session.

    The session commits when the route returns and rolls back if it raises.

    Usage:
        @app.get("/user-usage")
        async def get_usage(db: AsyncSession = Depends(get_db)):
            ...
    """
    session_factory = get_session_factory()
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db() -> None:
    """Create the ledger, image and config tables if they do not exist."""
    # Import models so every table is registered on Base.metadata
    import recipe_easy.models  # noqa: F401

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose the engine, if one was created, and forget it.

    A later call to get_engine() builds a fresh engine, so a worker can shut
    down and start again in the same process.
    """
    global engine, AsyncSessionLocal
    if engine is None:
        return

    await engine.dispose()
    engine = None
    AsyncSessionLocal = None
