import enum
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Integer, String, ForeignKey, DateTime, Text, Index
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    """Текущее время в UTC без tzinfo (так время хранится в БД)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class LinkState(str, enum.Enum):
    """
    Жизненный цикл ссылки: ACTIVE -> SOFT_DELETED -> DESTROYED или сразу ACTIVE -> DESTROYED.
    DESTROYED - строки уже нет (hard_delete или cleanup_inactive), см. get_link_state.
    """

    ACTIVE = "active"
    SOFT_DELETED = "soft_deleted"
    DESTROYED = "destroyed"


class AdminUser(Base):
    __tablename__ = 'admin_users'

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, unique=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class Link(Base):
    __tablename__ = 'links'

    id = Column(Integer, primary_key=True, index=True)
    short_code = Column(String(64), unique=True, nullable=False, index=True)
    original_url = Column(Text, nullable=False)
    title = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    click_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    creator_ip = Column(String, nullable=True)
    creator_user_agent = Column(Text, nullable=True)

    @property
    def state(self) -> LinkState:
        return LinkState.ACTIVE if self.is_active else LinkState.SOFT_DELETED

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) > self.expires_at


class ClickEvent(Base):
    __tablename__ = 'click_events'

    id = Column(Integer, primary_key=True, index=True)
    link_id = Column(Integer, ForeignKey("links.id", ondelete="CASCADE"), nullable=False)
    clicked_at = Column(DateTime, default=utcnow, nullable=False)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)
    referer = Column(Text, nullable=True)
    country = Column(String, nullable=True)
    city = Column(String, nullable=True)
    country_name = Column(String, nullable=True)
    country_id = Column(String, nullable=True)
    province_name = Column(String, nullable=True)
    province_id = Column(String, nullable=True)
    city_name = Column(String, nullable=True)
    city_id = Column(String, nullable=True)

    __table_args__ = (
        Index("ix_click_events_link_id_clicked_at", "link_id", "clicked_at"),
        Index("ix_click_events_clicked_at", "clicked_at"),
    )
