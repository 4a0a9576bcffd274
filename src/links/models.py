from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import datetime


class LinkCreate(BaseModel):
    original_url: str
    title: Optional[str] = None
    description: Optional[str] = None
    expires_at: Optional[datetime] = None
    custom_code: Optional[str] = None


class LinkUpdate(BaseModel):
    original_url: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    expires_at: Optional[datetime] = None


class LinkOut(BaseModel):
    id: int
    short_code: str
    original_url: str
    title: Optional[str] = None
    description: Optional[str] = None
    click_count: int
    created_at: datetime
    updated_at: datetime
    expires_at: Optional[datetime] = None
    is_active: bool
    creator_ip: Optional[str] = None
    creator_user_agent: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ClickEventOut(BaseModel):
    id: int
    link_id: int
    clicked_at: datetime
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    referer: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class LinkDetail(LinkOut):
    recent_clicks: list[ClickEventOut] = []


class LinkPageOut(BaseModel):
    links: list[LinkOut]
    total: int
    pages: int
    current_page: int

    model_config = ConfigDict(from_attributes=True)


class BatchDeleteRequest(BaseModel):
    ids: list[int] = Field(min_length=1)
    hard: bool = False


class DeletedCount(BaseModel):
    deleted_count: int
