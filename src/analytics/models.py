from pydantic import BaseModel


class DailyCount(BaseModel):
    date: str
    clicks: int


class ReferrerCount(BaseModel):
    referer: str
    clicks: int


class TopLink(BaseModel):
    short_code: str
    original_url: str
    title: str | None = None
    click_count: int


class LinkStats(BaseModel):
    total_clicks: int
    today_clicks: int
    week_clicks: int
    month_clicks: int
    daily_stats: list[DailyCount]
    top_referrers: list[ReferrerCount]


class GlobalStats(LinkStats):
    total_links: int
    active_links: int
    inactive_links: int
    top_links: list[TopLink]
