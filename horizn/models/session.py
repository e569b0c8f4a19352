"""
Visitor session model - one bounded run of activity from a visitor.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from horizn.core.database import Base


class VisitorSession(Base):
    """
    Session aggregate updated on every beacon.

    There is no close record: a session is over once `last_activity` is
    older than the configured timeout.
    """

    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    site_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("sites.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_hash: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    ip_hash: Mapped[Optional[str]] = mapped_column(String(64))

    # Timing
    first_visit: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    last_activity: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    # Engagement
    page_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    event_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_bounce: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Entry & exit
    referrer: Mapped[Optional[str]] = mapped_column(String(512))
    referrer_domain: Mapped[Optional[str]] = mapped_column(String(255), index=True)
    entry_page: Mapped[Optional[str]] = mapped_column(String(512))
    exit_page: Mapped[Optional[str]] = mapped_column(String(512))

    # Device context
    user_agent: Mapped[Optional[str]] = mapped_column(Text)
    device_type: Mapped[str] = mapped_column(String(20), default="desktop")
    browser: Mapped[str] = mapped_column(String(50), default="Unknown")
    os: Mapped[str] = mapped_column(String(50), default="Unknown")
    country_code: Mapped[Optional[str]] = mapped_column(String(2))

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("idx_sessions_site_activity", "site_id", "last_activity"),
        Index("idx_sessions_site_first_visit", "site_id", "first_visit"),
    )

    def __repr__(self) -> str:
        return f"<VisitorSession {self.id}>"
