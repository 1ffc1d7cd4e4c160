import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy import event, text
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import DB_CREATE_SCHEMA, DB_OPERATION_TIMEOUT, build_database_url
from .errors import Conflict, StorageUnavailable
from .models import Base

_logger = logging.getLogger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected
RETRYABLE_SQLSTATES = {"40001", "40P01"}

SQLITE_WRITE_LOCK = "sqlite_write_lock"


def to_async_url(url: str) -> str:
    if url.startswith(("postgresql+asyncpg://", "sqlite+aiosqlite://")):
        return url
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


def _configure_sqlite(engine: AsyncEngine) -> None:
    """Take over SQLite's BEGIN so write units lock the database up front.

    The driver's own BEGIN handling is disabled. Connections marked with the
    ``sqlite_write_lock`` execution option start with ``BEGIN IMMEDIATE`` so
    concurrent writers queue on the lock instead of deadlocking on lock
    upgrades; everything else gets a deferred ``BEGIN`` and keeps reading
    while a writer holds the lock.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        if conn.get_execution_options().get(SQLITE_WRITE_LOCK):
            conn.exec_driver_sql("BEGIN IMMEDIATE")
        else:
            conn.exec_driver_sql("BEGIN")


def create_engine(url: str) -> AsyncEngine:
    url = to_async_url(url)
    if url.startswith("sqlite+aiosqlite://"):
        engine = create_async_engine(url)
        _configure_sqlite(engine)
        return engine
    return create_async_engine(url, pool_pre_ping=True)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


DATABASE_URL = to_async_url(build_database_url())

engine = create_engine(DATABASE_URL)
SessionLocal = create_session_factory(engine)


async def create_schema(target: AsyncEngine) -> None:
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def startup_db() -> None:
    if DB_CREATE_SCHEMA:
        await create_schema(engine)
    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))


async def shutdown_db() -> None:
    await engine.dispose()


def is_conflict(exc: DBAPIError) -> bool:
    if isinstance(exc, IntegrityError):
        return True
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in RETRYABLE_SQLSTATES:
        return True
    return "database is locked" in str(orig)


async def run_in_transaction(
    session_factory: async_sessionmaker[AsyncSession],
    work: Callable[[AsyncSession], Awaitable[T]],
    *,
    write: bool = False,
    timeout: float = DB_OPERATION_TIMEOUT,
) -> T:
    """Run ``work`` against one session and translate store failures.

    Writes are committed under the strongest isolation the backend offers
    (SERIALIZABLE on PostgreSQL, an immediate write lock on SQLite); reads
    are rolled back when the session closes. Serialization failures and
    racing inserts come back from writes as ``Conflict``. Anything else that
    stops the store from answering within ``timeout``, a read that cannot get
    past a lock included, is ``StorageUnavailable``.
    """

    async def unit() -> T:
        async with session_factory() as session:
            if write:
                if session.get_bind().dialect.name == "sqlite":
                    options = {SQLITE_WRITE_LOCK: True}
                else:
                    options = {"isolation_level": "SERIALIZABLE"}
                await session.connection(execution_options=options)
            result = await work(session)
            if write:
                await session.commit()
            return result

    try:
        return await asyncio.wait_for(unit(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        _logger.error("Storage operation timed out after %ss", timeout)
        raise StorageUnavailable("Storage operation timed out.") from exc
    except DBAPIError as exc:
        if is_conflict(exc):
            if write:
                raise Conflict() from exc
            _logger.warning("Read gave up waiting on a locked store: %s", exc)
            raise StorageUnavailable("Storage is busy; try again.") from exc
        _logger.exception("Storage operation failed")
        raise StorageUnavailable() from exc
    except (PoolTimeoutError, OSError) as exc:
        _logger.exception("Storage is unreachable")
        raise StorageUnavailable() from exc
