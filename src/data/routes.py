import json
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Response

from sqlalchemy.ext.asyncio import AsyncSession

from src.analytics.models import GlobalStats
from src.analytics.services import get_global_stats
from src.auth.services import require_admin
from src.data import services
from src.data.models import ImportReport, ImportRequest
from src.database import get_db

router = APIRouter(dependencies=[Depends(require_admin)])


@router.get("/export")
async def export_data(db: AsyncSession = Depends(get_db)):
    """
    Выгрузка всех данных в JSON-файл.
    :return: shortlink-backup-YYYY-MM-DD.json
    """
    snapshot = await services.export_data(db)
    filename = f"shortlink-backup-{datetime.now(timezone.utc):%Y-%m-%d}.json"
    return Response(
        content=json.dumps(snapshot, ensure_ascii=False, indent=2),
        media_type="application/json",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Cache-Control": "no-cache",
        },
    )


@router.post("/import", response_model=ImportReport)
async def import_data(payload: ImportRequest, db: AsyncSession = Depends(get_db)):
    """
    Импорт snapshot.
    Принимает JSON {data: <snapshot>, options: {overwriteExisting, batchSize}}.
    :return: количество импортированных и пропущенных записей и список ошибок
    """
    return await services.import_data(
        db,
        payload.data,
        overwrite_existing=payload.options.overwrite_existing,
        batch_size=payload.options.batch_size,
    )


@router.get("/stats", response_model=GlobalStats)
async def database_stats(db: AsyncSession = Depends(get_db)):
    """Статистика базы для экрана управления данными (без кэша)."""
    return await get_global_stats(db)
