import asyncio
import logging

from celery import Celery
from sqlalchemy.ext.asyncio import async_sessionmaker

from src import config
from src.database import async_session, engine
from src.links.services import cleanup_inactive

logger = logging.getLogger(__name__)

celery = Celery('tasks', broker=config.REDIS_URL, backend=config.REDIS_URL)
celery.conf.beat_schedule = {
    "cleanup-inactive-links": {
        "task": "src.tasks.tasks.cleanup_inactive_links",
        "schedule": float(config.CLEANUP_INTERVAL_SECONDS),
    },
}


@celery.task(name="src.tasks.tasks.cleanup_inactive_links")
def cleanup_inactive_links() -> int:
    """
    Celery-таска: удаляет неактивные и просроченные ссылки вместе с кликами.
    """
    logger.info("Запущена таска: cleanup_inactive_links")
    return asyncio.run(_run_cleanup())


async def _run_cleanup() -> int:
    # Каждый запуск таски идет в новом event loop, пул соединений за ним не переносим
    try:
        return await delete_inactive_links()
    finally:
        await engine.dispose()


async def delete_inactive_links(session_factory: async_sessionmaker = async_session) -> int:
    """
    Асинхронная часть таски, открывает собственную сессию.
    """
    async with session_factory() as session:
        deleted = await cleanup_inactive(session)
    logger.info("Удаление завершено, удалено ссылок: %d", deleted)
    return deleted
