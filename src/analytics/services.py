import logging
from datetime import datetime, timedelta

from sqlalchemy import func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from src import config
from src.analytics.geo import ClickMetadata
from src.analytics.models import DailyCount, GlobalStats, LinkStats, ReferrerCount, TopLink
from src.analytics.referrers import aggregate_referrers
from src.database import storage_guard
from src.exceptions import NotFound
from src.models.models import ClickEvent, Link, utcnow

logger = logging.getLogger(__name__)

TOP_LIMIT = 10
HISTOGRAM_DAYS = 30


async def _insert_click_event(
        session: AsyncSession,
        link_id: int,
        metadata: ClickMetadata,
        clicked_at: datetime,
) -> None:
    geo = metadata.geo
    await session.execute(
        insert(ClickEvent).values(
            link_id=link_id,
            clicked_at=clicked_at,
            ip_address=metadata.ip_address,
            user_agent=metadata.user_agent,
            referer=metadata.referer,
            country=geo.country,
            city=geo.city,
            country_name=geo.country_name,
            country_id=geo.country_id,
            province_name=geo.province_name,
            province_id=geo.province_id,
            city_name=geo.city_name,
            city_id=geo.city_id,
        )
    )


async def record_click(
        session: AsyncSession,
        link_id: int,
        metadata: ClickMetadata,
        clicked_at: datetime | None = None,
) -> None:
    """
    Засчитывает переход по ссылке одной транзакцией:
    click_count = click_count + 1 и новая запись ClickEvent.
    Либо фиксируются оба изменения, либо ни одного.

    :param clicked_at: время события (по умолчанию сейчас, UTC)
    :raises NotFound: ссылки с таким id нет
    :raises StorageUnavailable: БД недоступна
    """
    now = utcnow()
    async with storage_guard(session):
        result = await session.execute(
            update(Link)
            .where(Link.id == link_id)
            .values(click_count=Link.click_count + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFound()
        await _insert_click_event(session, link_id, metadata, clicked_at or now)
        await session.commit()
    logger.debug("Recorded click for link id=%s", link_id)


async def record_click_detached(
        bind: AsyncEngine,
        link_id: int,
        metadata: ClickMetadata,
        clicked_at: datetime | None = None,
) -> None:
    """
    record_click в собственной сессии на том же движке.

    Транзакция клика не зависит от сессии запроса: ее закрытие
    (например, при отключении клиента) не откатывает уже выполненный UPDATE.
    """
    async with AsyncSession(bind=bind, expire_on_commit=False) as session:
        await record_click(session, link_id, metadata, clicked_at)


def _window_bounds(now: datetime) -> tuple[datetime, datetime, datetime]:
    """Начало сегодняшнего дня (полночь UTC), 7 и 30 дней назад."""
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return today, now - timedelta(days=7), now - timedelta(days=HISTOGRAM_DAYS)


async def _click_stats(session: AsyncSession, *criteria) -> LinkStats:
    today, week_ago, month_ago = _window_bounds(utcnow())

    counts = (await session.execute(
        select(
            func.count(ClickEvent.id),
            func.count(ClickEvent.id).filter(ClickEvent.clicked_at >= today),
            func.count(ClickEvent.id).filter(ClickEvent.clicked_at >= week_ago),
            func.count(ClickEvent.id).filter(ClickEvent.clicked_at >= month_ago),
        ).where(*criteria)
    )).one()

    day = func.date(ClickEvent.clicked_at).label("day")
    daily_rows = (await session.execute(
        select(day, func.count(ClickEvent.id))
        .where(ClickEvent.clicked_at >= month_ago, *criteria)
        .group_by(day)
        .order_by(day)
    )).all()

    # Группируем сырые referer в SQL, нормализуем уже уникальные значения
    referer_rows = (await session.execute(
        select(ClickEvent.referer, func.count(ClickEvent.id))
        .where(ClickEvent.clicked_at >= month_ago, *criteria)
        .group_by(ClickEvent.referer)
    )).all()
    top_referrers = aggregate_referrers(referer_rows, config.REF_AGG_LEVEL, TOP_LIMIT)

    return LinkStats(
        total_clicks=counts[0],
        today_clicks=counts[1],
        week_clicks=counts[2],
        month_clicks=counts[3],
        daily_stats=[DailyCount(date=str(date)[:10], clicks=count) for date, count in daily_rows],
        top_referrers=[ReferrerCount(referer=ref, clicks=count) for ref, count in top_referrers],
    )


async def get_link_stats(session: AsyncSession, link_id: int) -> LinkStats:
    """
    Статистика по одной ссылке.

    Общее число кликов считается по ClickEvent, а не по кэшу click_count.
    Гистограмма по дням за 30 дней без нулевых дней, top-10 referer за 30 дней.
    """
    async with storage_guard(session):
        exists = await session.scalar(select(Link.id).where(Link.id == link_id))
        if exists is None:
            raise NotFound()
        return await _click_stats(session, ClickEvent.link_id == link_id)


async def get_global_stats(session: AsyncSession) -> GlobalStats:
    """Те же окна и referer по всем ссылкам плюс top-10 активных ссылок по click_count."""
    async with storage_guard(session):
        stats = await _click_stats(session)
        link_counts = (await session.execute(
            select(
                func.count(Link.id),
                func.count(Link.id).filter(Link.is_active.is_(True)),
            )
        )).one()
        top_rows = (await session.execute(
            select(Link)
            .where(Link.is_active.is_(True))
            .order_by(Link.click_count.desc(), Link.id)
            .limit(TOP_LIMIT)
            .execution_options(populate_existing=True)
        )).scalars().all()

    total_links, active_links = link_counts
    return GlobalStats(
        **stats.model_dump(),
        total_links=total_links,
        active_links=active_links,
        inactive_links=total_links - active_links,
        top_links=[
            TopLink(
                short_code=link.short_code,
                original_url=link.original_url,
                title=link.title,
                click_count=link.click_count,
            )
            for link in top_rows
        ],
    )
