from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from src import config
from src.analytics.geo import ClickMetadata
from src.analytics.services import record_click
from src.exceptions import CodeConflict, InvalidShortCode, InvalidUrl, NotFound, Expired
from src.links import services
from src.models.models import ClickEvent, Link, LinkState, utcnow


@pytest.mark.asyncio
async def test_create_link_with_custom_code(db_session: AsyncSession):
    link = await services.create_link(db_session, "https://example.com", custom_code="promo")

    assert link.short_code == "promo"
    assert link.original_url == "https://example.com"
    assert link.click_count == 0
    assert link.is_active is True
    assert link.state == LinkState.ACTIVE


@pytest.mark.asyncio
async def test_create_link_generates_code(db_session: AsyncSession):
    link = await services.create_link(db_session, "https://example.com/page")

    assert len(link.short_code) == config.SHORT_CODE_LENGTH
    assert link.short_code.isalnum()


@pytest.mark.asyncio
async def test_create_link_rejects_invalid_url(db_session: AsyncSession):
    for url in ("example.com", "ftp://example.com/file", "https://", "https://exa mple.com"):
        with pytest.raises(InvalidUrl):
            await services.create_link(db_session, url)

    count = len((await db_session.execute(select(Link))).scalars().all())
    assert count == 0


@pytest.mark.asyncio
async def test_create_link_rejects_invalid_custom_code(db_session: AsyncSession):
    with pytest.raises(InvalidShortCode):
        await services.create_link(db_session, "https://example.com", custom_code="bad code!")
    with pytest.raises(InvalidShortCode):
        await services.create_link(db_session, "https://example.com", custom_code="links")


@pytest.mark.asyncio
async def test_custom_code_conflict(db_session: AsyncSession):
    await services.create_link(db_session, "https://example.com", custom_code="promo")

    with pytest.raises(CodeConflict):
        await services.create_link(db_session, "https://other.com", custom_code="promo")


@pytest.mark.asyncio
async def test_custom_code_conflict_with_soft_deleted(db_session: AsyncSession):
    link = await services.create_link(db_session, "https://example.com", custom_code="promo")
    await services.soft_delete(db_session, link.id)

    with pytest.raises(CodeConflict):
        await services.generate_unique_code(db_session, "promo")


@pytest.mark.asyncio
async def test_code_escalates_after_max_attempts(db_session: AsyncSession, monkeypatch):
    calls = []

    async def always_taken(session, code):
        calls.append(code)
        return True

    monkeypatch.setattr(services, "short_code_exists", always_taken)

    code = await services.generate_unique_code(db_session)

    assert len(calls) == 10
    assert all(len(c) == config.SHORT_CODE_LENGTH for c in calls)
    assert len(code) == config.SHORT_CODE_FALLBACK_LENGTH


@pytest.mark.asyncio
async def test_code_found_before_escalation(db_session: AsyncSession, monkeypatch):
    calls = []

    async def taken_three_times(session, code):
        calls.append(code)
        return len(calls) <= 3

    monkeypatch.setattr(services, "short_code_exists", taken_three_times)

    code = await services.generate_unique_code(db_session)

    assert len(calls) == 4
    assert code == calls[-1]
    assert len(code) == config.SHORT_CODE_LENGTH


@pytest.mark.asyncio
async def test_generated_code_collision_is_retried(db_session: AsyncSession, monkeypatch):
    await services.create_link(db_session, "https://example.com", custom_code="AAAAAA")
    codes = iter(["AAAAAA", "BBBBBB"])

    async def stale_check(session, custom_code=None):
        return next(codes)

    monkeypatch.setattr(services, "generate_unique_code", stale_check)

    link = await services.create_link(db_session, "https://other.com")

    assert link.short_code == "BBBBBB"


@pytest.mark.asyncio
async def test_create_link_uses_fetched_title(db_session: AsyncSession, monkeypatch):
    async def fake_title(url):
        return "Example Domain"

    monkeypatch.setattr(services, "fetch_page_title", fake_title)

    link = await services.create_link(db_session, "https://example.com", fetch_title=True)
    assert link.title == "Example Domain"

    link = await services.create_link(db_session, "https://example.com", title="Mine", fetch_title=True)
    assert link.title == "Mine"


@pytest.mark.asyncio
async def test_resolve_link(db_session: AsyncSession):
    await services.create_link(db_session, "https://example.com", custom_code="live")
    await services.create_link(
        db_session, "https://example.com", custom_code="old",
        expires_at=utcnow() - timedelta(minutes=1),
    )
    deleted = await services.create_link(db_session, "https://example.com", custom_code="gone")
    await services.soft_delete(db_session, deleted.id)

    assert (await services.resolve_link(db_session, "live")).original_url == "https://example.com"
    with pytest.raises(Expired):
        await services.resolve_link(db_session, "old")
    with pytest.raises(NotFound):
        await services.resolve_link(db_session, "gone")
    with pytest.raises(NotFound):
        await services.resolve_link(db_session, "missing")

    # Просроченная ссылка все еще активна, поиск по коду срок не проверяет
    assert await services.find_active_by_code(db_session, "old") is not None


@pytest.mark.asyncio
async def test_list_links_pagination(db_session: AsyncSession):
    for i in range(5):
        await services.create_link(db_session, f"https://example.com/{i}", custom_code=f"code{i}")

    page = await services.list_links(db_session, page=2, limit=2)

    assert page.total == 5
    assert page.pages == 3
    assert page.current_page == 2
    assert [link.short_code for link in page.links] == ["code2", "code1"]


@pytest.mark.asyncio
async def test_update_link_keeps_code(db_session: AsyncSession):
    link = await services.create_link(db_session, "https://example.com", custom_code="promo")

    updated = await services.update_link(db_session, link.id, {
        "original_url": "https://example.org",
        "title": "New title",
        "short_code": "hacked",
    })

    assert updated.original_url == "https://example.org"
    assert updated.title == "New title"
    assert updated.short_code == "promo"

    with pytest.raises(InvalidUrl):
        await services.update_link(db_session, link.id, {"original_url": "not a url"})


@pytest.mark.asyncio
async def test_soft_delete_keeps_clicks(db_session: AsyncSession):
    link = await services.create_link(db_session, "https://example.com", custom_code="promo")
    await record_click(db_session, link.id, ClickMetadata(ip_address="8.8.8.8"))

    await services.soft_delete(db_session, link.id)

    link = await services.get_link(db_session, link.id)
    assert link.is_active is False
    assert link.state == LinkState.SOFT_DELETED
    clicks = (await db_session.execute(select(ClickEvent))).scalars().all()
    assert len(clicks) == 1

    with pytest.raises(NotFound):
        await services.soft_delete(db_session, 9999)


@pytest.mark.asyncio
async def test_hard_delete_removes_clicks(db_session: AsyncSession):
    link = await services.create_link(db_session, "https://example.com", custom_code="promo")
    other = await services.create_link(db_session, "https://example.org", custom_code="keep")
    for _ in range(3):
        await record_click(db_session, link.id, ClickMetadata())
    await record_click(db_session, other.id, ClickMetadata())

    await services.hard_delete(db_session, link.id)

    with pytest.raises(NotFound):
        await services.get_link(db_session, link.id)
    clicks = (await db_session.execute(select(ClickEvent))).scalars().all()
    assert [click.link_id for click in clicks] == [other.id]

    with pytest.raises(NotFound):
        await services.hard_delete(db_session, link.id)


@pytest.mark.asyncio
async def test_hard_delete_many(db_session: AsyncSession):
    ids = []
    for i in range(3):
        link = await services.create_link(db_session, "https://example.com", custom_code=f"c{i}")
        ids.append(link.id)

    assert await services.hard_delete_many(db_session, ids[:2] + [9999]) == 2
    assert await services.hard_delete_many(db_session, []) == 0

    remaining = (await db_session.execute(select(Link.id))).scalars().all()
    assert remaining == [ids[2]]


@pytest.mark.asyncio
async def test_cleanup_inactive(db_session: AsyncSession):
    expired = await services.create_link(
        db_session, "https://example.com", custom_code="expired",
        expires_at=utcnow() - timedelta(days=1),
    )
    await record_click(db_session, expired.id, ClickMetadata())
    inactive = await services.create_link(db_session, "https://example.com", custom_code="inactive")
    await services.soft_delete(db_session, inactive.id)
    await services.create_link(db_session, "https://example.com", custom_code="alive")
    await services.create_link(
        db_session, "https://example.com", custom_code="future",
        expires_at=utcnow() + timedelta(days=1),
    )

    deleted = await services.cleanup_inactive(db_session)

    assert deleted == 2
    codes = (await db_session.execute(select(Link.short_code).order_by(Link.short_code))).scalars().all()
    assert codes == ["alive", "future"]
    clicks = (await db_session.execute(select(ClickEvent))).scalars().all()
    assert clicks == []


@pytest.mark.asyncio
async def test_link_state_lifecycle(db_session: AsyncSession):
    link = await services.create_link(db_session, "https://example.com", custom_code="cycle")

    assert await services.get_link_state(db_session, link.id) == LinkState.ACTIVE

    await services.soft_delete(db_session, link.id)
    assert await services.get_link_state(db_session, link.id) == LinkState.SOFT_DELETED

    await services.hard_delete(db_session, link.id)
    assert await services.get_link_state(db_session, link.id) == LinkState.DESTROYED


@pytest.mark.asyncio
async def test_link_state_after_cleanup(db_session: AsyncSession):
    link = await services.create_link(
        db_session, "https://example.com", custom_code="stale",
        expires_at=utcnow() - timedelta(hours=1),
    )

    await services.cleanup_inactive(db_session)

    assert await services.get_link_state(db_session, link.id) == LinkState.DESTROYED
