import logging

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import event
from sqlalchemy.exc import InterfaceError, OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from src import config
from src.exceptions import StorageUnavailable

logger = logging.getLogger(__name__)

STORAGE_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError, ConnectionError)


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False, "timeout": config.DB_TIMEOUT_SECONDS}}
    return {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_timeout": config.DB_TIMEOUT_SECONDS,
        "pool_recycle": 1800,
        "connect_args": {"timeout": config.DB_TIMEOUT_SECONDS},
    }


def enable_sqlite_foreign_keys(async_engine) -> None:
    """Включает проверку внешних ключей для SQLite (ON DELETE CASCADE)."""
    if async_engine.dialect.name != "sqlite":
        return

    @event.listens_for(async_engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


engine = create_async_engine(config.DATABASE_URL, **_engine_options(config.DATABASE_URL))
enable_sqlite_foreign_keys(engine)

async_session = async_sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


async def get_db() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


@asynccontextmanager
async def storage_guard(session: AsyncSession) -> AsyncIterator[None]:
    """
    Откатывает транзакцию при любой ошибке внутри блока.

    Ошибки соединения с БД превращаются в StorageUnavailable,
    остальные пробрасываются как есть.
    """
    try:
        yield
    except STORAGE_ERRORS as e:
        logger.error("Storage failure: %s", e)
        await session.rollback()
        raise StorageUnavailable() from e
    except Exception:
        await session.rollback()
        raise
