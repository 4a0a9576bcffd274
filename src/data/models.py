"""
Формат файла резервной копии (snapshot).

{version, exportTime, data: {links, clickEvents, adminPrincipals}, stats: {totalLinks, totalClicks}}

Поля записей - camelCase от атрибутов моделей. Незнакомые поля игнорируются,
старые имена из прежних версий формата принимаются при импорте.
"""
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

SNAPSHOT_VERSION = "1.0"


def _rename_legacy_keys(data: Any, legacy: dict[str, str]) -> Any:
    if not isinstance(data, dict):
        return data
    data = dict(data)
    for old, new in legacy.items():
        if old in data and new not in data:
            data[new] = data.pop(old)
    return data


class SnapshotRecord(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        extra="ignore",
    )


class LinkRecord(SnapshotRecord):
    id: Optional[int] = None
    short_code: str = Field(min_length=1)
    original_url: str = Field(min_length=1)
    title: Optional[str] = None
    description: Optional[str] = None
    click_count: int = Field(default=0, ge=0)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    is_active: bool = True
    creator_ip: Optional[str] = None
    creator_user_agent: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def accept_legacy_names(cls, data: Any) -> Any:
        return _rename_legacy_keys(data, {
            "clicks": "clickCount",
            "userIp": "creatorIp",
            "userAgent": "creatorUserAgent",
        })


class ClickEventRecord(SnapshotRecord):
    id: Optional[int] = None
    link_id: int
    clicked_at: datetime
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    referer: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    country_name: Optional[str] = None
    country_id: Optional[str] = None
    province_name: Optional[str] = None
    province_id: Optional[str] = None
    city_name: Optional[str] = None
    city_id: Optional[str] = None


class AdminPrincipalRecord(SnapshotRecord):
    id: Optional[int] = None
    username: str
    hashed_password: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SnapshotData(BaseModel):
    """Разделы данных. Записи валидируются поштучно при импорте."""

    model_config = ConfigDict(extra="ignore")

    links: list[Any]
    click_events: list[Any] = Field(default_factory=list, alias="clickEvents")
    admin_principals: list[Any] = Field(default_factory=list, alias="adminPrincipals")

    @model_validator(mode="before")
    @classmethod
    def accept_legacy_names(cls, data: Any) -> Any:
        return _rename_legacy_keys(data, {
            "clickAnalytics": "clickEvents",
            "adminUsers": "adminPrincipals",
        })


class SnapshotStats(SnapshotRecord):
    total_links: int = 0
    total_clicks: int = 0


class Snapshot(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    version: str
    export_time: Optional[datetime] = Field(default=None, alias="exportTime")
    data: SnapshotData
    stats: Optional[SnapshotStats] = None


class ImportOptions(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    overwrite_existing: bool = False
    batch_size: Optional[int] = Field(default=None, gt=0)


class ImportRequest(BaseModel):
    # Формат snapshot проверяет parse_snapshot
    data: Any
    options: ImportOptions = Field(default_factory=ImportOptions)


class ImportCounts(BaseModel):
    links: int = 0
    click_analytics: int = Field(default=0, serialization_alias="clickAnalytics")


class ImportReport(BaseModel):
    imported: ImportCounts = Field(default_factory=ImportCounts)
    skipped: ImportCounts = Field(default_factory=ImportCounts)
    errors: list[str] = Field(default_factory=list)
