from datetime import datetime
from typing import Optional, List
from enum import Enum

from pydantic import BaseModel, field_validator

from ..models.models import RecordOrigin, ScheduleStatus


class ScheduleView(str, Enum):
    all = "all"
    upcoming = "upcoming"
    today = "today"


def _normalize_status(v):
    if v is None:
        return None
    v = str(v).strip().lower()
    if v == "scheduled":
        return ScheduleStatus.pending.value
    return v


class ScheduleBase(BaseModel):
    title: str
    date: str  # YYYY-MM-DD
    time: str  # HH:MM AM/PM
    description: Optional[str] = None
    site_id: Optional[str] = None  # None for unlinked visits
    assigned_user_id: Optional[str] = None
    status: Optional[ScheduleStatus] = None

    # Unlinked visit fields
    is_unlinked: bool = False
    unlinked_reason: Optional[str] = None
    linked_site_id: Optional[str] = None

    @field_validator('title', 'date', 'time', mode='before')
    @classmethod
    def strip_required(cls, v):
        if v is None:
            return v
        return str(v).strip()

    @field_validator('description', 'site_id', 'assigned_user_id', 'unlinked_reason', 'linked_site_id', mode='before')
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator('status', mode='before')
    @classmethod
    def status_alias(cls, v):
        return _normalize_status(v)


class ScheduleCreate(ScheduleBase):
    pass


class ScheduleUpdate(BaseModel):
    """Partial update; only fields explicitly set are applied."""
    title: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None
    description: Optional[str] = None
    site_id: Optional[str] = None
    assigned_user_id: Optional[str] = None
    status: Optional[ScheduleStatus] = None
    is_unlinked: Optional[bool] = None
    unlinked_reason: Optional[str] = None
    linked_site_id: Optional[str] = None

    @field_validator('title', 'date', 'time', mode='before')
    @classmethod
    def strip_required(cls, v):
        if v is None:
            return v
        return str(v).strip()

    @field_validator('description', 'site_id', 'assigned_user_id', 'unlinked_reason', 'linked_site_id', mode='before')
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator('status', mode='before')
    @classmethod
    def status_alias(cls, v):
        return _normalize_status(v)


class ScheduleRead(BaseModel):
    id: str
    site_id: Optional[str] = None
    date: str
    time: str
    title: str
    description: Optional[str] = None
    assigned_user_id: Optional[str] = None
    status: str
    completed_at: Optional[datetime] = None
    checked_in_at: Optional[datetime] = None
    checked_out_at: Optional[datetime] = None
    actual_duration_minutes: Optional[int] = None
    activity_id: Optional[str] = None
    is_unlinked: bool
    unlinked_reason: Optional[str] = None
    linked_site_id: Optional[str] = None
    archived: bool
    archived_at: Optional[datetime] = None
    synced: bool
    origin: RecordOrigin
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

    @property
    def is_checked_in(self) -> bool:
        return self.checked_in_at is not None and self.checked_out_at is None


class ScheduleFilter(BaseModel):
    include_archived: bool = False
    include_completed: bool = True
    user_id: Optional[str] = None
    date: Optional[str] = None

    class Config:
        frozen = True


class ConflictCheckRequest(BaseModel):
    user_id: str
    date: str
    time: str
    exclude_schedule_id: Optional[str] = None


class ConflictResult(BaseModel):
    has_conflict: bool
    reason: Optional[str] = None
    conflicting_schedule_id: Optional[str] = None
    conflicting_schedule_ids: List[str] = []


class CheckInRequest(BaseModel):
    activity_id: Optional[str] = None
