import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Boolean,
    ForeignKey,
    Integer,
    Numeric,
    JSON,
    Text,
    Index,
    Enum as SAEnum,
)
from sqlalchemy.orm import Mapped, mapped_column

from ..db import Base


class RecordOrigin(str, enum.Enum):
    """Who created a row. Seeded rows are fixtures and are never mutated."""
    seeded = "seeded"
    user = "user"


class ScheduleStatus(str, enum.Enum):
    pending = "pending"
    in_progress = "in-progress"
    completed = "completed"
    cancelled = "cancelled"


class ActivityType(str, enum.Enum):
    schedule = "schedule"
    inspection = "inspection"
    check_in = "check-in"
    check_out = "check-out"
    report = "report"
    maintenance = "maintenance"


def origin_column() -> Mapped[RecordOrigin]:
    return mapped_column(
        SAEnum(RecordOrigin, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=RecordOrigin.user,
    )


class Site(Base):
    """Solar site; decorates visits and validates site-bound schedules"""
    __tablename__ = "sites"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    latitude: Mapped[Optional[float]] = mapped_column(Numeric(10, 7))
    longitude: Mapped[Optional[float]] = mapped_column(Numeric(10, 7))
    capacity: Mapped[Optional[str]] = mapped_column(String(50))  # e.g. "5 MW"
    origin: Mapped[RecordOrigin] = origin_column()
    archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    synced: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class Schedule(Base):
    """One planned visit, either site-bound or unlinked (other reason)"""
    __tablename__ = "schedules"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    site_id: Mapped[Optional[str]] = mapped_column(String(64), ForeignKey("sites.id", ondelete="SET NULL"), index=True)  # NULL for unlinked visits
    date: Mapped[str] = mapped_column(String(10), nullable=False, index=True)  # YYYY-MM-DD
    time: Mapped[str] = mapped_column(String(16), nullable=False)  # HH:MM AM/PM
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    assigned_user_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    status: Mapped[str] = mapped_column(String(20), default=ScheduleStatus.pending.value, nullable=False)  # pending|in-progress|completed|cancelled
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Check-in / check-out
    checked_in_at: Mapped[Optional[datetime]] = mapped_column(DateTime, index=True)
    checked_out_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    actual_duration_minutes: Mapped[Optional[int]] = mapped_column(Integer)
    activity_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)  # check-in activity

    # Unlinked visits
    is_unlinked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    unlinked_reason: Mapped[Optional[str]] = mapped_column(Text)  # required when is_unlinked
    linked_site_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)  # context only

    archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    synced: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    origin: Mapped[RecordOrigin] = origin_column()
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    # Indexes for conflict checking
    __table_args__ = (
        Index("idx_schedules_user_date_time", "assigned_user_id", "date", "time"),
        Index("idx_schedules_unsynced", "synced", "archived"),
    )

    @property
    def is_checked_in(self) -> bool:
        return self.checked_in_at is not None and self.checked_out_at is None


class Activity(Base):
    """Append-only activity feed entry"""
    __tablename__ = "activities"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)  # schedule|inspection|check-in|check-out|report|maintenance
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    site_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    site_name: Mapped[Optional[str]] = mapped_column(String(255))
    schedule_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    icon: Mapped[str] = mapped_column(String(50), nullable=False)
    metadata_json: Mapped[Optional[dict]] = mapped_column("metadata", JSON)  # before/after diff, context
    archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    synced: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    integrity_hash: Mapped[Optional[str]] = mapped_column(String(64))  # SHA256 over canonical entry
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("idx_activities_type_timestamp", "type", "timestamp"),
    )
