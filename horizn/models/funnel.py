"""
Funnel models - definitions, per-session progress and daily rollups.
"""
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from horizn.core.database import Base
from horizn.models.types import BigIntId, JSONType


class FunnelStatus(str, Enum):
    """Only active funnels are evaluated on ingestion."""

    ACTIVE = "active"
    PAUSED = "paused"
    ARCHIVED = "archived"


class StepType(str, Enum):
    """How a funnel step matches incoming beacons."""

    PAGEVIEW = "pageview"
    EVENT = "event"
    CUSTOM = "custom"


class Funnel(Base):
    """An ordered conversion path for a site."""

    __tablename__ = "funnels"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    site_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("sites.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), default=FunnelStatus.ACTIVE.value)

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
        onupdate=func.now(),
    )

    steps: Mapped[list["FunnelStep"]] = relationship(
        "FunnelStep",
        back_populates="funnel",
        cascade="all, delete-orphan",
        order_by="FunnelStep.step_order",
        lazy="selectin",
    )

    __table_args__ = (
        Index("idx_funnels_site_status", "site_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<Funnel {self.name}>"


class FunnelStep(Base):
    """One ordered condition of a funnel. `step_order` runs 1..N."""

    __tablename__ = "funnel_steps"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    funnel_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("funnels.id", ondelete="CASCADE"),
        nullable=False,
    )
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    step_type: Mapped[str] = mapped_column(String(20), nullable=False)
    # pageview: {"page_path": ...}; event: {"event_name", "event_category"?}; custom: {key: value}
    conditions: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    is_required: Mapped[bool] = mapped_column(Boolean, default=True)

    funnel: Mapped["Funnel"] = relationship("Funnel", back_populates="steps")

    __table_args__ = (
        UniqueConstraint("funnel_id", "step_order", name="uq_funnel_steps_order"),
    )


class FunnelUserSession(Base):
    """
    Progress of one session through one funnel.

    `last_step_reached` only increases; `version` is bumped on every
    advance and guards the compare-and-swap update.
    """

    __tablename__ = "funnel_user_sessions"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    funnel_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("funnels.id", ondelete="CASCADE"),
        nullable=False,
    )
    session_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_hash: Mapped[Optional[str]] = mapped_column(String(64))

    last_step_reached: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    # {"<step_order>": {"timestamp": iso, "event_data": {...}}}
    steps_data: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)
    is_converted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    conversion_time: Mapped[Optional[int]] = mapped_column(Integer)  # seconds
    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    day: Mapped[date] = mapped_column("date", Date, nullable=False)

    __table_args__ = (
        UniqueConstraint("funnel_id", "session_id", name="uq_funnel_user_sessions_pair"),
        Index("idx_funnel_user_sessions_funnel_date", "funnel_id", "date"),
    )


class FunnelAnalytics(Base):
    """Daily rollup produced by the scheduled aggregation job."""

    __tablename__ = "funnel_analytics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    funnel_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("funnels.id", ondelete="CASCADE"),
        nullable=False,
    )
    day: Mapped[date] = mapped_column("date", Date, nullable=False)

    sessions_entered: Mapped[int] = mapped_column(Integer, default=0)
    total_conversions: Mapped[int] = mapped_column(Integer, default=0)
    overall_conversion_rate: Mapped[float] = mapped_column(Float, default=0.0)
    avg_time_to_convert: Mapped[Optional[float]] = mapped_column(Float)
    # {"1": users_reached, "2": ...}
    step_counts: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("funnel_id", "date", name="uq_funnel_analytics_day"),
    )
