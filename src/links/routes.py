import asyncio
import logging

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import RedirectResponse

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.analytics import services as analytics
from src.analytics.geo import GeoResolver, click_metadata_from_headers, extract_client_ip, get_geo_resolver
from src.analytics.models import LinkStats
from src.auth.services import require_admin
from src.database import get_db
from src.exceptions import ShortLinkError
from src.links import services
from src.links.models import (
    BatchDeleteRequest,
    ClickEventOut,
    DeletedCount,
    LinkCreate,
    LinkDetail,
    LinkOut,
    LinkPageOut,
    LinkUpdate,
)

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_admin)])
redirect_router = APIRouter()


@router.post("", response_model=LinkOut, status_code=status.HTTP_201_CREATED)
async def create_link(
        link_data: LinkCreate,
        request: Request,
        db: AsyncSession = Depends(get_db),
):
    """
        Создание короткой ссылки.
        Принимает JSON с полями:
        :param original_url: URL для сокращения,
        :param custom_code: Необязательное поле - собственный короткий код,
        :param title, description: Необязательные метаданные,
        :param expires_at: Необязательное поле - дата и время истечения срока действия.

        Если custom_code уже занят (в том числе удаленной ссылкой), возвращается 409.
    """
    return await services.create_link(
        db,
        original_url=link_data.original_url,
        custom_code=link_data.custom_code,
        title=link_data.title,
        description=link_data.description,
        expires_at=link_data.expires_at,
        creator_ip=extract_client_ip(request.headers),
        creator_user_agent=request.headers.get("user-agent"),
    )


@router.get("", response_model=LinkPageOut)
async def list_links(
        page: int = Query(1, ge=1),
        limit: int = Query(10, ge=1, le=200),
        db: AsyncSession = Depends(get_db),
):
    """Список ссылок, новые первыми."""
    return LinkPageOut.model_validate(await services.list_links(db, page=page, limit=limit))


@router.post("/batch-delete", response_model=DeletedCount)
async def batch_delete(payload: BatchDeleteRequest, db: AsyncSession = Depends(get_db)):
    """
    Пакетное удаление.
    :param hard: True - физическое удаление вместе с кликами, иначе мягкое
    """
    if payload.hard:
        return {"deleted_count": await services.hard_delete_many(db, payload.ids)}

    deleted = 0
    for link_id in payload.ids:
        try:
            await services.soft_delete(db, link_id)
            deleted += 1
        except ShortLinkError as e:
            logger.warning("Soft delete of link id=%s skipped: %s", link_id, e)
    return {"deleted_count": deleted}


@router.post("/cleanup", response_model=DeletedCount)
async def cleanup(db: AsyncSession = Depends(get_db)):
    """Физически удаляет неактивные и просроченные ссылки вместе с их кликами."""
    return {"deleted_count": await services.cleanup_inactive(db)}


@router.get("/{link_id}", response_model=LinkDetail)
async def get_link(link_id: int, db: AsyncSession = Depends(get_db)):
    """Ссылка и последние 100 кликов по ней."""
    link = await services.get_link(db, link_id)
    detail = LinkDetail.model_validate(link)
    detail.recent_clicks = [
        ClickEventOut.model_validate(click) for click in await services.recent_clicks(db, link_id)
    ]
    return detail


@router.put("/{link_id}", response_model=LinkOut)
async def update_link(link_id: int, payload: LinkUpdate, db: AsyncSession = Depends(get_db)):
    """Обновляет адрес и метаданные. Короткий код не меняется."""
    return await services.update_link(db, link_id, payload.model_dump(exclude_unset=True))


@router.delete("/{link_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_link(link_id: int, hard: bool = False, db: AsyncSession = Depends(get_db)):
    """
        Удаляет ссылку.
        :param hard: False - мягкое удаление (код остается занятым), True - физическое
        :return: HTTP 204 No Content
    """
    if hard:
        await services.hard_delete(db, link_id)
    else:
        await services.soft_delete(db, link_id)


@router.get("/{link_id}/stats", response_model=LinkStats)
async def get_link_stats(link_id: int, db: AsyncSession = Depends(get_db)):
    """Статистика переходов по ссылке."""
    return await analytics.get_link_stats(db, link_id)


@redirect_router.get("/{short_code}", include_in_schema=False)
async def redirect_to_original_url(
        short_code: str,
        request: Request,
        db: AsyncSession = Depends(get_db),
        geo_resolver: GeoResolver = Depends(get_geo_resolver),
):
    """
        Переход по короткой ссылке на оригинальный URL.
        Ошибка записи клика не мешает редиректу, а только логируется.
        :return: Редирект на оригинальный URL, 404 или 410
    """
    link = await services.resolve_link(db, short_code)
    link_id, target_url = link.id, link.original_url
    metadata = click_metadata_from_headers(request.headers, geo_resolver)
    # Сессия запроса отпускает соединение до записи клика
    await db.close()

    try:
        # Запись клика доводится до конца в своей сессии, даже если клиент отключился
        await asyncio.shield(analytics.record_click_detached(db.bind, link_id, metadata))
    except (ShortLinkError, SQLAlchemyError):
        logger.exception("Failed to record click for %s", short_code)

    return RedirectResponse(url=target_url)
