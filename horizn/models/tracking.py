"""
Immutable tracking rows: pageviews and custom events.
"""
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from horizn.core.database import Base
from horizn.models.types import BigIntId, JSONType


class Pageview(Base):
    """A single page load."""

    __tablename__ = "pageviews"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    site_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("sites.id", ondelete="CASCADE"),
        nullable=False,
    )
    session_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    page_url: Mapped[str] = mapped_column(String(512), nullable=False)
    page_path: Mapped[str] = mapped_column(String(512), nullable=False)
    page_title: Mapped[Optional[str]] = mapped_column(String(255))
    referrer: Mapped[Optional[str]] = mapped_column(String(512))
    user_agent: Mapped[Optional[str]] = mapped_column(Text)
    ip_hash: Mapped[Optional[str]] = mapped_column(String(64))
    load_time: Mapped[Optional[int]] = mapped_column(Integer)  # milliseconds

    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("idx_pageviews_site_timestamp", "site_id", "timestamp"),
        Index("idx_pageviews_site_path", "site_id", "page_path"),
    )


class CustomEvent(Base):
    """A named interaction sent by the collector (click, signup, purchase...)."""

    __tablename__ = "events"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    site_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("sites.id", ondelete="CASCADE"),
        nullable=False,
    )
    session_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    event_name: Mapped[str] = mapped_column(String(100), nullable=False)
    event_category: Mapped[Optional[str]] = mapped_column(String(100))
    event_action: Mapped[Optional[str]] = mapped_column(String(100))
    event_label: Mapped[Optional[str]] = mapped_column(String(255))
    event_value: Mapped[Optional[float]] = mapped_column(Float)
    event_data: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONType)

    page_url: Mapped[Optional[str]] = mapped_column(String(512))
    page_path: Mapped[Optional[str]] = mapped_column(String(512))

    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("idx_events_site_timestamp", "site_id", "timestamp"),
        Index("idx_events_site_name", "site_id", "event_name"),
    )
