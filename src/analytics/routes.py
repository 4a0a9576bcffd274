from fastapi import APIRouter, Depends
from fastapi_cache.decorator import cache

from sqlalchemy.ext.asyncio import AsyncSession

from src.analytics import services
from src.analytics.models import GlobalStats
from src.auth.services import require_admin
from src.database import get_db

router = APIRouter(dependencies=[Depends(require_admin)])

GLOBAL_STATS_CACHE_SECONDS = 60


def global_stats_key_builder(func, namespace: str = "", *, request=None, response=None, args=(), kwargs=None) -> str:
    """Один ключ на всю глобальную статистику: сессия БД в ключ не попадает."""
    return f"{namespace}:{func.__module__}:{func.__name__}"


@router.get("/global", response_model=GlobalStats)
@cache(expire=GLOBAL_STATS_CACHE_SECONDS, key_builder=global_stats_key_builder)
async def get_global_stats(db: AsyncSession = Depends(get_db)):
    """
    Глобальная статистика по всем ссылкам.
    Результат кэшируется на 60 секунд.
    """
    return await services.get_global_stats(db)
