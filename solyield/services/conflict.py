"""
Visit conflict detection service.
Advisory rule: two visits for the same technician on the same date conflict
when their start times fall within the buffer of each other.
"""
from typing import Optional, List

import structlog
from sqlalchemy.orm import Session

from ..models.models import Schedule, ScheduleStatus
from ..schemas.schedules import ConflictResult
from ..errors import ValidationError
from ..config import settings
from .time_rules import parse_time_to_minutes, format_minutes_as_time

logger = structlog.get_logger(__name__)


def _active_schedules_for(
    db: Session,
    user_id: str,
    date_val: str,
    exclude_schedule_id: Optional[str] = None
) -> List[Schedule]:
    query = db.query(Schedule).filter(
        Schedule.assigned_user_id == user_id,
        Schedule.date == date_val,
        Schedule.archived.is_(False),
        Schedule.status != ScheduleStatus.cancelled.value,
    )

    if exclude_schedule_id:
        query = query.filter(Schedule.id != exclude_schedule_id)

    return query.order_by(Schedule.time.asc(), Schedule.created_at.asc()).all()


def times_within_buffer(minutes1: int, minutes2: int, buffer_minutes: int) -> bool:
    """Symmetric check: |T1 - T2| <= buffer."""
    return abs(minutes1 - minutes2) <= buffer_minutes


def get_conflicting_schedules(
    db: Session,
    user_id: str,
    date_val: str,
    time_val: str,
    exclude_schedule_id: Optional[str] = None,
    buffer_minutes: Optional[int] = None
) -> List[Schedule]:
    """
    Get every visit that conflicts with the proposed slot.

    Args:
        db: Database session
        user_id: Technician user ID
        date_val: Visit date (YYYY-MM-DD)
        time_val: Proposed time (HH:MM AM/PM or HH:MM)
        exclude_schedule_id: Optional schedule ID to exclude (for edits)
        buffer_minutes: Protection buffer (default from settings)

    Returns:
        List of Schedule objects that conflict

    Raises:
        ValueError: if time_val cannot be parsed
    """
    if buffer_minutes is None:
        buffer_minutes = settings.conflict_buffer_min

    proposed = parse_time_to_minutes(time_val)
    conflicts = []

    for schedule in _active_schedules_for(db, user_id, date_val, exclude_schedule_id):
        try:
            existing = parse_time_to_minutes(schedule.time)
        except ValueError:
            logger.warning("schedule_time_unparseable", schedule_id=schedule.id, time=schedule.time)
            continue
        if times_within_buffer(proposed, existing, buffer_minutes):
            conflicts.append(schedule)

    return conflicts


def check_conflict(
    db: Session,
    user_id: str,
    date_val: str,
    time_val: str,
    exclude_schedule_id: Optional[str] = None,
    buffer_minutes: Optional[int] = None
) -> ConflictResult:
    """
    Check whether a technician already has a visit near the proposed time.

    The result is advisory; callers decide whether to warn or reject.
    """
    if buffer_minutes is None:
        buffer_minutes = settings.conflict_buffer_min

    conflicts = get_conflicting_schedules(
        db, user_id, date_val, time_val,
        exclude_schedule_id=exclude_schedule_id,
        buffer_minutes=buffer_minutes,
    )
    if not conflicts:
        return ConflictResult(has_conflict=False)

    first = conflicts[0]
    return ConflictResult(
        has_conflict=True,
        reason=(
            f'Conflicts with "{first.title}" at {first.time}. '
            f"Visits for the same technician must be more than {buffer_minutes} minutes apart."
        ),
        conflicting_schedule_id=first.id,
        conflicting_schedule_ids=[c.id for c in conflicts],
    )


def suggest_next_slot(
    db: Session,
    user_id: str,
    date_val: str,
    after_time: str,
    buffer_minutes: Optional[int] = None
) -> Optional[str]:
    """
    Find the first conflict-free time after after_time on the same day.

    Returns:
        Time string (HH:MM AM/PM) or None if the rest of the day is blocked
    """
    if buffer_minutes is None:
        buffer_minutes = settings.conflict_buffer_min

    taken = []
    for schedule in _active_schedules_for(db, user_id, date_val):
        try:
            taken.append(parse_time_to_minutes(schedule.time))
        except ValueError:
            continue

    candidate = parse_time_to_minutes(after_time) + buffer_minutes + 1
    while candidate < 24 * 60:
        blocking = [t for t in taken if times_within_buffer(candidate, t, buffer_minutes)]
        if not blocking:
            return format_minutes_as_time(candidate)
        candidate = max(blocking) + buffer_minutes + 1

    return None


class ConflictValidator:
    """Read-only validator bound to a session factory."""

    def __init__(self, session_factory, buffer_minutes: Optional[int] = None):
        self._session_factory = session_factory
        self.buffer_minutes = settings.conflict_buffer_min if buffer_minutes is None else buffer_minutes

    def check_conflict(
        self,
        user_id: str,
        date_val: str,
        time_val: str,
        exclude_schedule_id: Optional[str] = None
    ) -> ConflictResult:
        with self._session_factory() as db:
            try:
                return check_conflict(db, user_id, date_val, time_val, exclude_schedule_id, self.buffer_minutes)
            except ValueError as e:
                raise ValidationError(str(e), detail={"field": "time"}) from e

    def suggest_next_slot(self, user_id: str, date_val: str, after_time: str) -> Optional[str]:
        with self._session_factory() as db:
            return suggest_next_slot(db, user_id, date_val, after_time, self.buffer_minutes)
