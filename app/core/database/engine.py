"""
Async engine and session factory for the account and audit stores.

SQLite (aiosqlite) by default. Set DATABASE_URL to a postgresql+asyncpg URL
to run against PostgreSQL; the SQLite connection pragmas below are skipped
there.
"""
from collections.abc import AsyncGenerator
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from app.core import config


_is_sqlite = config.SQLALCHEMY_DATABASE_URL.startswith("sqlite")

engine = create_async_engine(
    config.SQLALCHEMY_DATABASE_URL,
    # One connection per session; SQLite connections must not cross event loops
    poolclass=NullPool if _is_sqlite else None,
    echo=False,
    future=True,
)


if _is_sqlite:
    @event.listens_for(engine.sync_engine, "connect")
    def _sqlite_pragmas(dbapi_connection, _connection_record):
        # Concurrent compare-and-swap writers wait for the lock instead of failing
        cursor = dbapi_connection.cursor()
        cursor.execute(f"PRAGMA busy_timeout={int(config.STORE_TIMEOUT_SECONDS * 1000)}")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Request-scoped session. Commits on success, rolls back on any error.

    Usage in FastAPI routes:
        @router.get("/users/{user_id}")
        async def get_user(user_id: str, db: AsyncSession = Depends(get_db)):
            ...
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def _metadata():
    from app.core.database.base import Base

    # Register every table on Base.metadata
    from app.features.users.models import User  # noqa: F401
    from app.features.audit.models import AuditLog  # noqa: F401

    return Base.metadata


async def init_db():
    """Create the users and audit_logs tables if missing. Run at startup."""
    metadata = _metadata()
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)


async def drop_db():
    """Drop all tables. Used by tests and local resets."""
    metadata = _metadata()
    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
