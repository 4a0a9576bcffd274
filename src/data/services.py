import logging
from typing import Any

from pydantic import ValidationError
from sqlalchemy import delete, insert, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src import config
from src.data.models import (
    SNAPSHOT_VERSION,
    AdminPrincipalRecord,
    ClickEventRecord,
    ImportReport,
    LinkRecord,
    Snapshot,
)
from src.database import storage_guard
from src.exceptions import ImportFormatError, ShortLinkError
from src.models.models import AdminUser, ClickEvent, Link, to_naive_utc, utcnow

logger = logging.getLogger(__name__)


def _dump(record) -> dict:
    return record.model_dump(mode="json", by_alias=True)


def _fresh(statement):
    # click_count меняется UPDATE-запросом в обход identity map
    return statement.execution_options(populate_existing=True)


async def export_data(session: AsyncSession) -> dict:
    """
    Выгружает все ссылки, клики и администраторов в snapshot.

    Чтение не транзакционное: согласованность между таблицами
    не гарантируется, для резервной копии этого достаточно.
    """
    async with storage_guard(session):
        links = (await session.execute(_fresh(select(Link).order_by(Link.id)))).scalars().all()
        clicks = (await session.execute(_fresh(select(ClickEvent).order_by(ClickEvent.id)))).scalars().all()
        admins = (await session.execute(_fresh(select(AdminUser).order_by(AdminUser.id)))).scalars().all()

    logger.info("Exported %d links, %d clicks", len(links), len(clicks))
    return {
        "version": SNAPSHOT_VERSION,
        "exportTime": utcnow().isoformat() + "Z",
        "data": {
            "links": [_dump(LinkRecord.model_validate(link)) for link in links],
            "clickEvents": [_dump(ClickEventRecord.model_validate(click)) for click in clicks],
            "adminPrincipals": [_dump(AdminPrincipalRecord.model_validate(admin)) for admin in admins],
        },
        "stats": {
            "totalLinks": len(links),
            "totalClicks": len(clicks),
        },
    }


def parse_snapshot(payload: Any) -> Snapshot:
    """
    Проверяет верхний уровень snapshot до любых изменений в БД.
    :raises ImportFormatError: нет version/data или data.links не список
    """
    if not isinstance(payload, dict):
        raise ImportFormatError("Snapshot должен быть JSON-объектом")
    try:
        return Snapshot.model_validate(payload)
    except ValidationError as e:
        fields = ", ".join(".".join(str(part) for part in err["loc"]) for err in e.errors())
        raise ImportFormatError(f"Некорректный формат snapshot: {fields}") from e


def effective_batch_size(batch_size: int | None) -> int:
    """Размер пачки кликов: по умолчанию IMPORT_BATCH_SIZE, не больше IMPORT_MAX_BATCH_SIZE."""
    if not batch_size or batch_size <= 0:
        return config.IMPORT_BATCH_SIZE
    return min(batch_size, config.IMPORT_MAX_BATCH_SIZE)


async def _clear_all(session: AsyncSession) -> None:
    async with storage_guard(session):
        await session.execute(delete(ClickEvent).execution_options(synchronize_session=False))
        await session.execute(delete(Link).execution_options(synchronize_session=False))
        await session.commit()
    session.expunge_all()
    logger.info("Existing links and clicks removed before import")


async def _upsert_link(session: AsyncSession, record: LinkRecord) -> int:
    """Обновляет ссылку с тем же кодом или создает новую. Возвращает id в этой БД."""
    now = utcnow()
    values = {
        "original_url": record.original_url,
        "title": record.title,
        "description": record.description,
        "click_count": record.click_count,
        "expires_at": to_naive_utc(record.expires_at),
        "is_active": record.is_active,
        "creator_ip": record.creator_ip,
        "creator_user_agent": record.creator_user_agent,
    }
    async with storage_guard(session):
        link = (await session.execute(
            select(Link).filter_by(short_code=record.short_code)
        )).scalars().first()
        if link is None:
            link = Link(
                short_code=record.short_code,
                created_at=to_naive_utc(record.created_at) or now,
                updated_at=to_naive_utc(record.updated_at) or now,
                **values,
            )
            session.add(link)
        else:
            for key, value in values.items():
                setattr(link, key, value)
            link.updated_at = to_naive_utc(record.updated_at) or now
        await session.commit()
    return link.id


def _click_row(record: ClickEventRecord, link_id: int) -> dict:
    row = record.model_dump(exclude={"id", "link_id", "clicked_at"})
    row["link_id"] = link_id
    row["clicked_at"] = to_naive_utc(record.clicked_at)
    return row


async def _insert_chunk(session: AsyncSession, rows: list[dict]) -> None:
    async with storage_guard(session):
        await session.execute(insert(ClickEvent), rows)
        await session.commit()


async def import_data(
        session: AsyncSession,
        payload: Any,
        overwrite_existing: bool = False,
        batch_size: int | None = None,
) -> ImportReport:
    """
    Восстанавливает данные из snapshot.

    - overwrite_existing: сначала удалить все клики, затем все ссылки (одна транзакция)
    - ссылки: upsert по short_code, каждая отдельным коммитом; запоминаем старый id -> новый id
    - клики: link_id переводится через эту таблицу, без пары - пропуск;
      вставка пачками по batch_size, каждая пачка - отдельный коммит

    Ошибки отдельных записей и пачек не прерывают импорт, а попадают в report.errors.

    :raises ImportFormatError: до любых изменений, если верхний уровень некорректен
    """
    snapshot = parse_snapshot(payload)
    report = ImportReport()

    if overwrite_existing:
        await _clear_all(session)

    # Все ссылки импортируются до кликов: клики ссылаются на новые id
    id_map: dict[int, int] = {}
    for index, raw in enumerate(snapshot.data.links):
        code = raw.get("shortCode") if isinstance(raw, dict) else None
        try:
            record = LinkRecord.model_validate(raw)
            new_id = await _upsert_link(session, record)
        except (ValidationError, ShortLinkError, SQLAlchemyError) as e:
            report.skipped.links += 1
            report.errors.append(f"link #{index} ({code}): {e}")
            continue
        if record.id is not None:
            id_map[record.id] = new_id
        report.imported.links += 1

    rows: list[dict] = []
    for index, raw in enumerate(snapshot.data.click_events):
        try:
            record = ClickEventRecord.model_validate(raw)
        except ValidationError as e:
            report.skipped.click_analytics += 1
            report.errors.append(f"click #{index}: {e}")
            continue
        target_id = id_map.get(record.link_id)
        if target_id is None:
            report.skipped.click_analytics += 1
            continue
        rows.append(_click_row(record, target_id))

    chunk_size = effective_batch_size(batch_size)
    for start in range(0, len(rows), chunk_size):
        chunk = rows[start:start + chunk_size]
        try:
            await _insert_chunk(session, chunk)
        except (ShortLinkError, SQLAlchemyError) as e:
            report.skipped.click_analytics += len(chunk)
            report.errors.append(f"clicks {start}-{start + len(chunk) - 1}: {e}")
            continue
        report.imported.click_analytics += len(chunk)

    if snapshot.data.admin_principals:
        logger.info("Snapshot has %d admin principals, they are not restored",
                    len(snapshot.data.admin_principals))

    logger.info(
        "Import finished: links %d/%d skipped, clicks %d/%d skipped, %d errors",
        report.imported.links, report.skipped.links,
        report.imported.click_analytics, report.skipped.click_analytics,
        len(report.errors),
    )
    return report
