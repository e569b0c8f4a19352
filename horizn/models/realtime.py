"""
Realtime presence rows - one per (site, session), purged after a few minutes.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from horizn.core.database import Base


class RealtimeVisitor(Base):
    """Last-seen marker used for live visitor counts. Not a durable record."""

    __tablename__ = "realtime_visitors"

    site_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("sites.id", ondelete="CASCADE"),
        primary_key=True,
    )
    session_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    page_url: Mapped[Optional[str]] = mapped_column(String(512))
    page_title: Mapped[Optional[str]] = mapped_column(String(255))
    user_agent: Mapped[Optional[str]] = mapped_column(Text)
    ip_hash: Mapped[Optional[str]] = mapped_column(String(64))
    last_seen: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("idx_realtime_site_last_seen", "site_id", "last_seen"),
        Index("idx_realtime_last_seen", "last_seen"),
    )
