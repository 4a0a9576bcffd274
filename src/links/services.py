import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime

import httpx
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src import config
from src.database import storage_guard
from src.exceptions import CodeConflict, Expired, InvalidShortCode, InvalidUrl, NotFound
from src.models.models import ClickEvent, Link, LinkState, to_naive_utc, utcnow
from src.utils import generate_short_code, is_valid_custom_code, is_valid_url

logger = logging.getLogger(__name__)

# Сколько раз повторяем вставку, если уникальный индекс поймал гонку
INSERT_ATTEMPTS = 3

TITLE_PATTERN = re.compile(r"<title[^>]*>([^<]*)</title>", re.IGNORECASE)
TITLE_MAX_BYTES = 100_000

UPDATABLE_FIELDS = ("original_url", "title", "description", "expires_at")


@dataclass
class LinkPage:
    links: list[Link]
    total: int
    pages: int
    current_page: int


async def short_code_exists(session: AsyncSession, code: str) -> bool:
    """Проверяет, занят ли код, включая мягко удаленные ссылки."""
    async with storage_guard(session):
        result = await session.execute(select(Link.id).filter_by(short_code=code))
        return result.first() is not None


async def generate_unique_code(session: AsyncSession, custom_code: str | None = None) -> str:
    """
    Подбирает короткий код для новой ссылки.

    Кастомный код используется как есть, если он свободен, иначе CodeConflict.
    Случайный код длины SHORT_CODE_LENGTH проверяется до SHORT_CODE_MAX_ATTEMPTS раз;
    после этого берется код длины SHORT_CODE_FALLBACK_LENGTH без повторной проверки.
    Код не резервируется: от гонки защищает уникальный индекс на short_code.
    """
    if custom_code:
        if await short_code_exists(session, custom_code):
            raise CodeConflict("Такой алиас уже занят")
        return custom_code

    for _ in range(config.SHORT_CODE_MAX_ATTEMPTS):
        code = generate_short_code(config.SHORT_CODE_LENGTH)
        if not await short_code_exists(session, code):
            return code

    # TODO: решить, нужна ли проверка существования и для длинного кода
    logger.warning(
        "No free %d-char code after %d attempts, falling back to length %d",
        config.SHORT_CODE_LENGTH, config.SHORT_CODE_MAX_ATTEMPTS, config.SHORT_CODE_FALLBACK_LENGTH,
    )
    return generate_short_code(config.SHORT_CODE_FALLBACK_LENGTH)


async def fetch_page_title(url: str) -> str | None:
    """Пытается получить <title> целевой страницы. Любая ошибка дает None."""
    try:
        async with httpx.AsyncClient(
            timeout=config.TITLE_FETCH_TIMEOUT_SECONDS,
            follow_redirects=True,
            headers={"User-Agent": "Mozilla/5.0 (compatible; shortlinks-title-fetcher)"},
        ) as client:
            response = await client.get(url)
    except httpx.HTTPError as e:
        logger.info("Failed to fetch page title for %s: %s", url, e)
        return None

    if not response.is_success:
        return None
    if "text/html" not in response.headers.get("content-type", "").lower():
        return None

    match = TITLE_PATTERN.search(response.text[:TITLE_MAX_BYTES])
    if not match:
        return None
    return match.group(1).strip() or None


async def create_link(
        session: AsyncSession,
        original_url: str,
        custom_code: str | None = None,
        title: str | None = None,
        description: str | None = None,
        expires_at: datetime | None = None,
        creator_ip: str | None = None,
        creator_user_agent: str | None = None,
        fetch_title: bool | None = None,
) -> Link:
    """
    Создает короткую ссылку.

    Arguments:
    - session: Сессия для работы с базой данных
    - original_url: Оригинальный URL (http/https)
    - custom_code: Необязательный собственный код
    - title, description: Необязательные метаданные
    - expires_at: Дата и время истечения срока действия ссылки (UTC)
    - creator_ip, creator_user_agent: Данные создателя
    - fetch_title: Подтягивать ли <title> страницы, если title не передан

    Raises:
    - InvalidUrl, InvalidShortCode: до любых изменений в БД
    - CodeConflict: код уже занят (в том числе мягко удаленной ссылкой)
    """
    if not is_valid_url(original_url):
        raise InvalidUrl()
    if custom_code is not None and not is_valid_custom_code(custom_code):
        raise InvalidShortCode()

    expires_at = to_naive_utc(expires_at)
    if fetch_title is None:
        fetch_title = config.FETCH_PAGE_TITLE
    if not title and fetch_title:
        title = await fetch_page_title(original_url)

    for attempt in range(1, INSERT_ATTEMPTS + 1):
        short_code = await generate_unique_code(session, custom_code)
        now = utcnow()
        link = Link(
            short_code=short_code,
            original_url=original_url,
            title=title,
            description=description,
            click_count=0,
            created_at=now,
            updated_at=now,
            expires_at=expires_at,
            is_active=True,
            creator_ip=creator_ip,
            creator_user_agent=creator_user_agent,
        )
        session.add(link)
        try:
            async with storage_guard(session):
                await session.commit()
        except IntegrityError:
            if custom_code:
                raise CodeConflict("Такой алиас уже занят")
            logger.warning("Short code %s taken concurrently (attempt %d)", short_code, attempt)
            continue

        logger.info("Created link %s -> %s", link.short_code, link.original_url)
        return link

    raise CodeConflict("Не удалось подобрать свободный короткий код")


async def find_active_by_code(session: AsyncSession, code: str) -> Link | None:
    """Активная ссылка по коду. Срок действия здесь не проверяется."""
    async with storage_guard(session):
        result = await session.execute(select(Link).filter_by(short_code=code, is_active=True))
        return result.scalars().first()


async def resolve_link(session: AsyncSession, code: str) -> Link:
    """
    Находит ссылку для редиректа.

    :raises NotFound: ссылки нет или она мягко удалена
    :raises Expired: срок действия истек
    """
    link = await find_active_by_code(session, code)
    if link is None:
        raise NotFound()
    if link.is_expired():
        raise Expired()
    return link


async def get_link(session: AsyncSession, link_id: int) -> Link:
    async with storage_guard(session):
        link = await session.get(Link, link_id, populate_existing=True)
    if link is None:
        raise NotFound()
    return link


async def get_link_state(session: AsyncSession, link_id: int) -> LinkState:
    """Состояние ссылки по id; удаленная физически ссылка дает DESTROYED."""
    async with storage_guard(session):
        is_active = await session.scalar(select(Link.is_active).where(Link.id == link_id))
    if is_active is None:
        return LinkState.DESTROYED
    return LinkState.ACTIVE if is_active else LinkState.SOFT_DELETED


async def recent_clicks(session: AsyncSession, link_id: int, limit: int = 100) -> list[ClickEvent]:
    """Последние клики по ссылке, новые первыми."""
    async with storage_guard(session):
        result = await session.execute(
            select(ClickEvent)
            .where(ClickEvent.link_id == link_id)
            .order_by(ClickEvent.clicked_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())


async def list_links(session: AsyncSession, page: int = 1, limit: int = 10) -> LinkPage:
    page = max(page, 1)
    limit = max(limit, 1)
    async with storage_guard(session):
        total = await session.scalar(select(func.count(Link.id)))
        result = await session.execute(
            select(Link)
            .order_by(Link.created_at.desc(), Link.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        links = list(result.scalars().all())
    return LinkPage(links=links, total=total, pages=math.ceil(total / limit), current_page=page)


async def update_link(session: AsyncSession, link_id: int, changes: dict) -> Link:
    """
    Обновляет адрес и метаданные ссылки. Короткий код не меняется никогда.
    :param changes: поля из UPDATABLE_FIELDS, остальные игнорируются
    """
    link = await get_link(session, link_id)
    values = {key: value for key, value in changes.items() if key in UPDATABLE_FIELDS}
    if "expires_at" in values:
        values["expires_at"] = to_naive_utc(values["expires_at"])
    if "original_url" in values and not is_valid_url(values["original_url"]):
        raise InvalidUrl()

    async with storage_guard(session):
        for key, value in values.items():
            setattr(link, key, value)
        link.updated_at = utcnow()
        await session.commit()
    return link


async def soft_delete(session: AsyncSession, link_id: int) -> None:
    """Помечает ссылку неактивной. Код остается занятым, клики не трогаются."""
    async with storage_guard(session):
        result = await session.execute(
            update(Link)
            .where(Link.id == link_id)
            .values(is_active=False, updated_at=utcnow())
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount == 0:
            raise NotFound()
        await session.commit()
    logger.info("Soft-deleted link id=%s", link_id)


async def hard_delete_many(session: AsyncSession, ids: list[int]) -> int:
    """
    Физически удаляет ссылки вместе с их кликами в одной транзакции.
    :return: количество удаленных ссылок
    """
    if not ids:
        return 0
    async with storage_guard(session):
        await session.execute(
            delete(ClickEvent)
            .where(ClickEvent.link_id.in_(ids))
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(
            delete(Link)
            .where(Link.id.in_(ids))
            .execution_options(synchronize_session="fetch")
        )
        await session.commit()
    logger.info("Hard-deleted %d links", result.rowcount)
    return result.rowcount


async def hard_delete(session: AsyncSession, link_id: int) -> None:
    if await hard_delete_many(session, [link_id]) == 0:
        raise NotFound()


async def cleanup_inactive(session: AsyncSession) -> int:
    """
    Удаляет неактивные и просроченные ссылки вместе с кликами.
    :return: количество удаленных ссылок
    """
    condition = or_(Link.is_active.is_(False), Link.expires_at < utcnow())
    async with storage_guard(session):
        await session.execute(
            delete(ClickEvent)
            .where(ClickEvent.link_id.in_(select(Link.id).where(condition)))
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(
            delete(Link).where(condition).execution_options(synchronize_session="fetch")
        )
        await session.commit()
    logger.info("Cleanup removed %d links", result.rowcount)
    return result.rowcount
