from datetime import datetime
from typing import Optional
from sqlalchemy import String, Integer, BigInteger, ForeignKey, CheckConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column
from .database import Base, UTCDateTime

class UrlRecord(Base):
    __tablename__ = "url_mappings"

    shortcode: Mapped[str] = mapped_column(String(20), primary_key=True)
    original_url: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    expiry_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    validity_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    click_count: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)

    __table_args__ = (
        CheckConstraint("expiry_at > created_at", name="ck_url_mappings_expiry_after_created"),
        CheckConstraint("click_count >= 0", name="ck_url_mappings_click_count_non_negative"),
    )

class ClickRecord(Base):
    __tablename__ = "click_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shortcode: Mapped[str] = mapped_column(String(20), ForeignKey("url_mappings.shortcode"), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    referrer: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    ip: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)  # IPv4 or IPv6
    location: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    __table_args__ = (
        Index("idx_click_events_shortcode_timestamp", "shortcode", "timestamp"),
    )
