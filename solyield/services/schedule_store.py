"""
Schedule store.

Single source of truth for visits. Every user-visible mutation is written
together with its activity entry in one transaction, marks the visit
unsynced, and is followed by a replay of the live queries before the call
returns.
"""
import asyncio
import inspect
import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union, Awaitable

import structlog
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import ValidationError, NotFoundError, InvalidStateError
from ..models.models import Activity, ActivityType, RecordOrigin, Schedule, ScheduleStatus, Site
from ..schemas.schedules import ScheduleCreate, ScheduleUpdate, ScheduleRead, ScheduleFilter
from ..schemas.sync import PendingRecord
from .activity_trail import append_activity, compute_diff
from .schedule_query import SubscriptionRegistry, Subscription, SnapshotCallback, fetch_snapshot
from .sites import SiteDirectory, get_active_site, site_name_for
from .time_rules import StoreClock, is_valid_date, is_valid_time, normalize_time, whole_minutes_between

logger = structlog.get_logger(__name__)

CommitListener = Callable[[str, Optional[str]], Union[None, Awaitable[None]]]

# Fields a caller may change through update()
EDITABLE_FIELDS = (
    "title",
    "date",
    "time",
    "description",
    "site_id",
    "assigned_user_id",
    "status",
    "is_unlinked",
    "unlinked_reason",
    "linked_site_id",
)

SYNC_PAYLOAD_FIELDS = EDITABLE_FIELDS + (
    "completed_at",
    "checked_in_at",
    "checked_out_at",
    "actual_duration_minutes",
    "activity_id",
    "archived",
    "archived_at",
    "created_at",
    "updated_at",
)


def _snapshot_fields(schedule: Schedule) -> Dict[str, Any]:
    return {field: getattr(schedule, field) for field in EDITABLE_FIELDS}


def _visit_summary(schedule: Schedule) -> str:
    return f"{schedule.title} - {schedule.date} at {schedule.time}"


def _require_text(value: Optional[str]) -> bool:
    return bool(value and value.strip())


class ScheduleStore:
    """
    Owns the schedule collection.

    One asyncio.Lock serializes writers and a second one serializes
    deliveries; reads go straight to the session factory. Subscribers
    registered through subscribe() receive an initial snapshot and then a
    fresh one after each write that changes their result.
    """

    def __init__(
        self,
        session_factory,
        sites: Optional[SiteDirectory] = None,
        clock: Optional[StoreClock] = None,
        id_prefix: Optional[str] = None,
    ):
        self._session_factory = session_factory
        self.clock = clock or StoreClock()
        self.sites = sites or SiteDirectory(session_factory, self.clock)
        self.id_prefix = id_prefix or settings.user_schedule_prefix
        self._write_lock = asyncio.Lock()
        self._delivery_lock = asyncio.Lock()
        self._delivering: Optional[asyncio.Task] = None
        self._pending_events: List[Tuple[str, Optional[str]]] = []
        self._subscriptions = SubscriptionRegistry()
        self._commit_listeners: List[CommitListener] = []

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, schedule_id: str) -> ScheduleRead:
        with self._session_factory() as db:
            schedule = db.get(Schedule, schedule_id)
            if schedule is None:
                raise NotFoundError(f"Schedule {schedule_id} not found", detail={"schedule_id": schedule_id})
            return ScheduleRead.model_validate(schedule)

    def list(self, filters: Optional[ScheduleFilter] = None) -> List[ScheduleRead]:
        with self._session_factory() as db:
            return fetch_snapshot(db, filters or ScheduleFilter())

    def unsynced_schedule_count(self) -> int:
        with self._session_factory() as db:
            return db.query(func.count(Schedule.id)).filter(
                Schedule.synced.is_(False),
                Schedule.archived.is_(False),
            ).scalar() or 0

    def unsynced_count(self) -> int:
        """Unsynced, non-archived schedules plus unsynced activities."""
        with self._session_factory() as db:
            schedules = db.query(func.count(Schedule.id)).filter(
                Schedule.synced.is_(False),
                Schedule.archived.is_(False),
            ).scalar() or 0
            activities = db.query(func.count(Activity.id)).filter(Activity.synced.is_(False)).scalar() or 0
        return schedules + activities

    def pending_records(self) -> Dict[str, List[PendingRecord]]:
        """Capture every unsynced row with the updated_at it had at capture time."""
        with self._session_factory() as db:
            schedules = db.query(Schedule).filter(
                Schedule.synced.is_(False),
                Schedule.archived.is_(False),
            ).order_by(Schedule.created_at.asc()).all()
            activities = db.query(Activity).filter(
                Activity.synced.is_(False),
            ).order_by(Activity.timestamp.asc()).all()
            return {
                "schedules": [
                    PendingRecord(
                        id=s.id,
                        updated_at=s.updated_at,
                        payload={field: getattr(s, field) for field in SYNC_PAYLOAD_FIELDS} | {"id": s.id},
                    )
                    for s in schedules
                ],
                "activities": [
                    PendingRecord(
                        id=a.id,
                        updated_at=a.created_at,
                        payload={
                            "id": a.id,
                            "type": a.type,
                            "title": a.title,
                            "description": a.description,
                            "site_id": a.site_id,
                            "schedule_id": a.schedule_id,
                            "timestamp": a.timestamp,
                            "metadata": a.metadata_json,
                        },
                    )
                    for a in activities
                ],
            }

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def subscribe(self, filters: Optional[ScheduleFilter], callback: SnapshotCallback) -> Subscription:
        """Register a live query and deliver its initial snapshot."""
        async with self._delivery_lock:
            self._delivering = asyncio.current_task()
            try:
                subscription = self._subscriptions.add(filters or ScheduleFilter(), callback)
                with self._session_factory() as db:
                    await subscription.deliver(fetch_snapshot(db, subscription.filters))
                await self._flush_pending()
            finally:
                self._delivering = None
        return subscription

    def add_commit_listener(self, listener: CommitListener) -> None:
        """listener(event, schedule_id) runs after each committed write."""
        self._commit_listeners.append(listener)

    async def _after_commit(self, event: str, schedule_id: Optional[str]) -> None:
        """
        Publish a committed write to subscribers and commit listeners.

        Runs after the write lock is released, so callbacks may write back to
        the store. Deliveries are serialized by their own lock and always read
        the latest committed state. A write made from inside a callback is
        queued and published by the flush already running in that task.
        """
        self._pending_events.append((event, schedule_id))
        if self._delivering is not None and self._delivering is asyncio.current_task():
            return
        async with self._delivery_lock:
            self._delivering = asyncio.current_task()
            try:
                await self._flush_pending()
            finally:
                self._delivering = None

    async def _flush_pending(self) -> None:
        while self._pending_events:
            events, self._pending_events = self._pending_events, []
            if len(self._subscriptions):
                with self._session_factory() as db:
                    await self._subscriptions.publish(db)
            for event, schedule_id in events:
                for listener in list(self._commit_listeners):
                    try:
                        result = listener(event, schedule_id)
                        if inspect.isawaitable(result):
                            await result
                    except asyncio.CancelledError:
                        raise
                    except Exception as e:
                        logger.error("commit_listener_failed", event=event, error=str(e))

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------

    def _load_mutable(self, db: Session, schedule_id: str, *, allow_archived: bool = False) -> Schedule:
        schedule = db.get(Schedule, schedule_id)
        if schedule is None or (schedule.archived and not allow_archived):
            raise NotFoundError(f"Schedule {schedule_id} not found", detail={"schedule_id": schedule_id})
        if schedule.origin != RecordOrigin.user:
            raise InvalidStateError(
                "Seeded visits cannot be modified",
                detail={"schedule_id": schedule_id, "origin": schedule.origin.value},
            )
        return schedule

    def _validate(self, db: Session, schedule: Schedule) -> None:
        if not _require_text(schedule.title):
            raise ValidationError("Title is required", detail={"field": "title"})
        if not is_valid_date(schedule.date):
            raise ValidationError("Date must be YYYY-MM-DD", detail={"field": "date", "value": schedule.date})
        if not is_valid_time(schedule.time):
            raise ValidationError("Time must be HH:MM AM/PM or HH:MM", detail={"field": "time", "value": schedule.time})
        schedule.time = normalize_time(schedule.time)

        if schedule.is_unlinked:
            if not _require_text(schedule.unlinked_reason):
                raise ValidationError(
                    "A reason is required for visits not linked to a site",
                    detail={"field": "unlinked_reason"},
                )
            schedule.unlinked_reason = schedule.unlinked_reason.strip()
            schedule.site_id = None
        else:
            if get_active_site(db, schedule.site_id) is None:
                raise ValidationError(
                    "Site-bound visits must reference a valid site",
                    detail={"field": "site_id", "value": schedule.site_id},
                )
            schedule.unlinked_reason = None
            schedule.linked_site_id = None

    @staticmethod
    def _coerce(model, data):
        if isinstance(data, model):
            return data
        try:
            return model.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError("Invalid schedule data", detail={"errors": e.errors(include_url=False)}) from e

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(self, data: Union[ScheduleCreate, Dict[str, Any]]) -> ScheduleRead:
        payload = self._coerce(ScheduleCreate, data)

        async with self._write_lock:
            with self._session_factory() as db, db.begin():
                now = self.clock.stamp()
                schedule = Schedule(
                    id=f"{self.id_prefix}{uuid.uuid4().hex[:16]}",
                    title=payload.title,
                    date=payload.date,
                    time=payload.time,
                    description=payload.description,
                    site_id=payload.site_id,
                    assigned_user_id=payload.assigned_user_id,
                    status=(payload.status or ScheduleStatus.pending).value,
                    is_unlinked=payload.is_unlinked,
                    unlinked_reason=payload.unlinked_reason,
                    linked_site_id=payload.linked_site_id,
                    archived=False,
                    synced=False,
                    origin=RecordOrigin.user,
                    created_at=now,
                    updated_at=now,
                )
                self._validate(db, schedule)
                db.add(schedule)
                db.flush()

                append_activity(
                    db,
                    activity_type=ActivityType.schedule.value,
                    title="Visit Scheduled",
                    description=_visit_summary(schedule),
                    timestamp=now,
                    site_id=schedule.site_id,
                    site_name=site_name_for(db, schedule.site_id or schedule.linked_site_id),
                    schedule_id=schedule.id,
                    user_id=schedule.assigned_user_id,
                    icon="calendar-plus",
                )
                result = ScheduleRead.model_validate(schedule)

            logger.info("schedule_created", schedule_id=result.id, is_unlinked=result.is_unlinked, date=result.date)
        await self._after_commit("create", result.id)
        return result

    async def update(self, schedule_id: str, data: Union[ScheduleUpdate, Dict[str, Any]]) -> ScheduleRead:
        payload = self._coerce(ScheduleUpdate, data)
        changes = payload.model_dump(exclude_unset=True)

        async with self._write_lock:
            with self._session_factory() as db, db.begin():
                schedule = self._load_mutable(db, schedule_id)
                before = _snapshot_fields(schedule)

                for field in EDITABLE_FIELDS:
                    if field not in changes:
                        continue
                    value = changes[field]
                    if field in ("title", "date", "time", "is_unlinked") and value is None:
                        raise ValidationError(f"{field} cannot be cleared", detail={"field": field})
                    if field == "status" and value is not None:
                        value = ScheduleStatus(value).value
                    setattr(schedule, field, value)

                self._validate(db, schedule)

                now = self.clock.stamp()
                schedule.synced = False
                schedule.updated_at = now

                append_activity(
                    db,
                    activity_type=ActivityType.schedule.value,
                    title="Visit Updated",
                    description=_visit_summary(schedule),
                    timestamp=now,
                    site_id=schedule.site_id,
                    site_name=site_name_for(db, schedule.site_id or schedule.linked_site_id),
                    schedule_id=schedule.id,
                    user_id=schedule.assigned_user_id,
                    metadata={"changes": compute_diff(before, _snapshot_fields(schedule))},
                    icon="calendar-check",
                )
                result = ScheduleRead.model_validate(schedule)

            logger.info("schedule_updated", schedule_id=schedule_id, fields=sorted(changes))
        await self._after_commit("update", schedule_id)
        return result

    async def archive(self, schedule_id: str) -> ScheduleRead:
        """Cancel a visit: soft delete, hidden from default listings."""
        async with self._write_lock:
            with self._session_factory() as db, db.begin():
                schedule = self._load_mutable(db, schedule_id)
                now = self.clock.stamp()
                schedule.archived = True
                schedule.archived_at = now
                schedule.status = ScheduleStatus.cancelled.value
                schedule.synced = False
                schedule.updated_at = now

                append_activity(
                    db,
                    activity_type=ActivityType.schedule.value,
                    title="Visit Cancelled",
                    description=f"Cancelled: {schedule.title}",
                    timestamp=now,
                    site_id=schedule.site_id,
                    site_name=site_name_for(db, schedule.site_id or schedule.linked_site_id),
                    schedule_id=schedule.id,
                    user_id=schedule.assigned_user_id,
                    icon="calendar-remove",
                )
                result = ScheduleRead.model_validate(schedule)

            logger.info("schedule_archived", schedule_id=schedule_id)
        await self._after_commit("archive", schedule_id)
        return result

    async def hard_delete(self, schedule_id: str) -> None:
        """Permanently remove a visit. Callers confirm no external reference remains."""
        async with self._write_lock:
            with self._session_factory() as db, db.begin():
                schedule = self._load_mutable(db, schedule_id, allow_archived=True)
                db.delete(schedule)

            logger.info("schedule_hard_deleted", schedule_id=schedule_id)
        await self._after_commit("delete", schedule_id)

    async def check_in(self, schedule_id: str, activity_id: Optional[str] = None) -> ScheduleRead:
        async with self._write_lock:
            with self._session_factory() as db, db.begin():
                schedule = self._load_mutable(db, schedule_id)
                if schedule.checked_in_at is not None:
                    raise InvalidStateError("Visit is already checked in", detail={"schedule_id": schedule_id})
                if activity_id and db.get(Activity, activity_id) is not None:
                    raise InvalidStateError("Activity id already in use", detail={"activity_id": activity_id})

                now = self.clock.stamp()
                activity = append_activity(
                    db,
                    activity_type=ActivityType.check_in.value,
                    title="Checked In",
                    description=_visit_summary(schedule),
                    timestamp=now,
                    site_id=schedule.site_id,
                    site_name=site_name_for(db, schedule.site_id or schedule.linked_site_id),
                    schedule_id=schedule.id,
                    user_id=schedule.assigned_user_id,
                    activity_id=activity_id,
                )
                schedule.checked_in_at = now
                schedule.activity_id = activity.id
                schedule.status = ScheduleStatus.in_progress.value
                schedule.synced = False
                schedule.updated_at = now
                result = ScheduleRead.model_validate(schedule)

            logger.info("schedule_checked_in", schedule_id=schedule_id, activity_id=result.activity_id)
        await self._after_commit("check_in", schedule_id)
        return result

    async def check_out(self, schedule_id: str) -> ScheduleRead:
        async with self._write_lock:
            with self._session_factory() as db, db.begin():
                schedule = self._load_mutable(db, schedule_id)
                if schedule.checked_in_at is None:
                    raise InvalidStateError("Cannot check out before checking in", detail={"schedule_id": schedule_id})
                if schedule.checked_out_at is not None:
                    raise InvalidStateError("Visit is already checked out", detail={"schedule_id": schedule_id})

                now = self.clock.stamp()
                schedule.checked_out_at = now
                schedule.actual_duration_minutes = whole_minutes_between(schedule.checked_in_at, now)
                schedule.status = ScheduleStatus.completed.value
                schedule.completed_at = now
                schedule.synced = False
                schedule.updated_at = now

                append_activity(
                    db,
                    activity_type=ActivityType.check_out.value,
                    title="Checked Out",
                    description=f"{_visit_summary(schedule)} ({schedule.actual_duration_minutes} min on site)",
                    timestamp=now,
                    site_id=schedule.site_id,
                    site_name=site_name_for(db, schedule.site_id or schedule.linked_site_id),
                    schedule_id=schedule.id,
                    user_id=schedule.assigned_user_id,
                    metadata={"actual_duration_minutes": schedule.actual_duration_minutes},
                )
                result = ScheduleRead.model_validate(schedule)

            logger.info("schedule_checked_out", schedule_id=schedule_id, minutes=result.actual_duration_minutes)
        await self._after_commit("check_out", schedule_id)
        return result

    async def mark_synced(self, schedule_id: str) -> ScheduleRead:
        """Idempotent; touches only the synced flag, never updated_at."""
        async with self._write_lock:
            with self._session_factory() as db, db.begin():
                schedule = db.get(Schedule, schedule_id)
                if schedule is None:
                    raise NotFoundError(f"Schedule {schedule_id} not found", detail={"schedule_id": schedule_id})
                changed = not schedule.synced
                schedule.synced = True
                result = ScheduleRead.model_validate(schedule)

        if changed:
            await self._after_commit("synced", schedule_id)
        return result

    async def mark_synced_many(
        self,
        schedules: Sequence[PendingRecord],
        activities: Sequence[PendingRecord],
    ) -> int:
        """
        Flip synced flags for a reconciled batch in one transaction.

        A schedule is only marked when its updated_at still matches the value
        captured before the push; rows edited mid-sync stay unsynced.

        Returns:
            Number of rows marked synced
        """
        marked = 0
        async with self._write_lock:
            with self._session_factory() as db, db.begin():
                for record in schedules:
                    schedule = db.get(Schedule, record.id)
                    if schedule is None or schedule.synced:
                        continue
                    if schedule.updated_at != record.updated_at:
                        logger.info("schedule_changed_during_sync", schedule_id=record.id)
                        continue
                    schedule.synced = True
                    marked += 1

                activity_ids = [record.id for record in activities]
                if activity_ids:
                    marked += db.query(Activity).filter(
                        Activity.id.in_(activity_ids),
                        Activity.synced.is_(False),
                    ).update({Activity.synced: True}, synchronize_session=False)

        if marked:
            await self._after_commit("synced", None)
        return marked

    async def create_site(
        self,
        name: str,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        capacity: Optional[str] = None,
        site_id: Optional[str] = None,
        origin: RecordOrigin = RecordOrigin.user,
    ) -> Site:
        async with self._write_lock:
            with self._session_factory() as db, db.begin():
                site = self.sites.add(
                    db,
                    name,
                    latitude=latitude,
                    longitude=longitude,
                    capacity=capacity,
                    site_id=site_id,
                    origin=origin,
                    now=self.clock.stamp(),
                )
        await self._after_commit("site_create", None)
        return site

    async def archive_site(self, site_id: str) -> int:
        """Archive a site and cascade to its visits and activities."""
        return await self._set_site_archived(site_id, True)

    async def unarchive_site(self, site_id: str) -> int:
        return await self._set_site_archived(site_id, False)

    async def _set_site_archived(self, site_id: str, archived: bool) -> int:
        async with self._write_lock:
            with self._session_factory() as db, db.begin():
                count = self.sites.set_archived(db, site_id, archived, self.clock.stamp())
        await self._after_commit("site_archive" if archived else "site_unarchive", None)
        return count

    async def seed(self, records: Iterable[Dict[str, Any]]) -> int:
        """
        Insert fixture visits. Seeded rows are already synced and immutable.

        Existing ids are skipped so seeding can be re-run.
        """
        inserted = 0
        async with self._write_lock:
            with self._session_factory() as db, db.begin():
                for record in records:
                    if db.get(Schedule, record["id"]) is not None:
                        continue
                    now = self.clock.stamp()
                    is_unlinked = bool(record.get("is_unlinked", False))
                    db.add(Schedule(
                        id=record["id"],
                        site_id=None if is_unlinked else record.get("site_id"),
                        date=record["date"],
                        time=record["time"],
                        title=record["title"],
                        description=record.get("description"),
                        assigned_user_id=record.get("assigned_user_id"),
                        status=record.get("status", ScheduleStatus.pending.value),
                        is_unlinked=is_unlinked,
                        unlinked_reason=record.get("unlinked_reason"),
                        linked_site_id=record.get("linked_site_id"),
                        archived=False,
                        synced=True,
                        origin=RecordOrigin.seeded,
                        created_at=now,
                        updated_at=now,
                    ))
                    inserted += 1
        if inserted:
            await self._after_commit("seed", None)
        logger.info("schedules_seeded", inserted=inserted)
        return inserted
