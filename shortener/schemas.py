from pydantic import BaseModel, ConfigDict, Field
from typing import Any, List, Optional
from datetime import datetime

from .domain import ClickEvent, UrlStats, UrlSummary

class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

# Types are checked by the service so every bad field maps to a 400 with
# a specific error kind.
class ShortUrlCreate(BaseModel):
    url: Any = None
    validity: Any = None
    shortcode: Any = None

class ShortUrlCreated(CamelModel):
    short_link: str = Field(serialization_alias="shortLink")
    expiry: datetime

class ClickOut(CamelModel):
    timestamp: datetime
    referrer: str = "Direct"
    user_agent: str = Field("Unknown", serialization_alias="userAgent")
    ip: str = "Unknown"
    location: str = "Unknown"

    @classmethod
    def from_event(cls, event: ClickEvent) -> "ClickOut":
        return cls(
            timestamp=event.timestamp,
            referrer=event.referrer or "Direct",
            user_agent=event.user_agent or "Unknown",
            ip=event.ip or "Unknown",
            location=event.location or "Unknown",
        )

class ShortUrlStats(CamelModel):
    shortcode: str
    original_url: str = Field(serialization_alias="originalUrl")
    total_clicks: int = Field(serialization_alias="totalClicks")
    created_at: datetime = Field(serialization_alias="createdAt")
    expiry_at: datetime = Field(serialization_alias="expiryAt")
    click_history: List[ClickOut] = Field(serialization_alias="clickHistory")

    @classmethod
    def from_stats(cls, stats: UrlStats) -> "ShortUrlStats":
        return cls(
            shortcode=stats.shortcode,
            original_url=stats.original_url,
            total_clicks=stats.total_clicks,
            created_at=stats.created_at,
            expiry_at=stats.expiry_at,
            click_history=[ClickOut.from_event(e) for e in stats.click_history],
        )

class ShortUrlListItem(CamelModel):
    shortcode: str
    short_link: str = Field(serialization_alias="shortLink")
    original_url: str = Field(serialization_alias="originalUrl")
    total_clicks: int = Field(serialization_alias="totalClicks")
    created_at: datetime = Field(serialization_alias="createdAt")
    expiry_at: datetime = Field(serialization_alias="expiryAt")
    is_expired: bool = Field(serialization_alias="isExpired")

    @classmethod
    def from_summary(cls, summary: UrlSummary) -> "ShortUrlListItem":
        return cls(**summary.model_dump())

class ErrorResponse(BaseModel):
    error: str
    message: str
    details: Optional[List[Any]] = None
