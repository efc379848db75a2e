"""
Records shared by the storage backends and the service layer.

These are plain value objects: storage backends build them from rows,
the service builds them from validated input. Nothing here talks to a
database.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class UrlMapping(BaseModel):
    """One shortcode and the URL it points at."""

    shortcode: str
    original_url: str
    created_at: datetime
    expiry_at: datetime
    validity_minutes: int
    click_count: int = Field(0, ge=0)

    model_config = ConfigDict(from_attributes=True)

    def is_expired(self, now: datetime) -> bool:
        return now > self.expiry_at


class ClickEvent(BaseModel):
    """A single recorded visit. Never mutated after it is appended."""

    shortcode: str
    timestamp: datetime
    referrer: Optional[str] = None
    user_agent: Optional[str] = None
    ip: Optional[str] = None
    location: Optional[str] = None

    model_config = ConfigDict(from_attributes=True, frozen=True)


class ShortenResult(BaseModel):
    shortcode: str
    short_link: str
    expiry_at: datetime


class UrlStats(BaseModel):
    shortcode: str
    original_url: str
    total_clicks: int
    created_at: datetime
    expiry_at: datetime
    click_history: List[ClickEvent]


class UrlSummary(BaseModel):
    shortcode: str
    short_link: str
    original_url: str
    total_clicks: int
    created_at: datetime
    expiry_at: datetime
    is_expired: bool
