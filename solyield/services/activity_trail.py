"""
Activity audit trail.
Append-only activity feed with integrity hashing, newest first.
"""
import hashlib
import json
import uuid
from datetime import datetime
from typing import Optional, Dict, Any, List
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models.models import Activity, ActivityType
from ..schemas.activities import ActivityRead, ActivityCounts
from ..config import settings


ACTIVITY_ICONS = {
    ActivityType.inspection.value: "check-circle",
    ActivityType.check_in.value: "map-marker-check",
    ActivityType.check_out.value: "map-marker-off",
    ActivityType.report.value: "file-document",
    ActivityType.schedule.value: "calendar-check",
    ActivityType.maintenance.value: "wrench",
}


def icon_for(activity_type: str) -> str:
    return ACTIVITY_ICONS.get(activity_type, "information")


def new_activity_id() -> str:
    return f"activity_{uuid.uuid4().hex[:16]}"


def compute_integrity_hash(fields: Dict[str, Any], secret: Optional[str] = None) -> Optional[str]:
    """SHA256 over the canonical JSON of an entry, salted with the audit secret."""
    if secret is None:
        secret = settings.audit_secret
    if not secret:
        return None
    # Remove None values and sort keys for consistency
    canonical_data = {k: v for k, v in fields.items() if v is not None}
    canonical_json = json.dumps(canonical_data, sort_keys=True, default=str)
    hash_input = f"{canonical_json}:{secret}"
    return hashlib.sha256(hash_input.encode()).hexdigest()


def _canonical_fields(activity: Activity) -> Dict[str, Any]:
    return {
        "id": activity.id,
        "type": activity.type,
        "title": activity.title,
        "description": activity.description,
        "site_id": activity.site_id,
        "schedule_id": activity.schedule_id,
        "user_id": activity.user_id,
        "timestamp": activity.timestamp.isoformat(),
        "metadata": activity.metadata_json,
    }


def append_activity(
    db: Session,
    *,
    activity_type: str,
    title: str,
    timestamp: datetime,
    description: Optional[str] = None,
    site_id: Optional[str] = None,
    site_name: Optional[str] = None,
    schedule_id: Optional[str] = None,
    user_id: Optional[str] = None,
    metadata: Optional[Dict] = None,
    activity_id: Optional[str] = None,
    icon: Optional[str] = None,
    integrity_secret: Optional[str] = None,
) -> Activity:
    """
    Append an activity inside the caller's write scope.

    Nothing is committed here: the caller commits the activity together with
    the schedule change that produced it.

    Args:
        db: Session of the enclosing transaction
        activity_type: schedule|inspection|check-in|check-out|report|maintenance
        title: Short headline ("Visit Scheduled")
        timestamp: Store clock stamp of the mutation
        description: Human readable summary ("{title} - {date} at {time}")
        metadata: Before/after diff or other context
        activity_id: Caller supplied id (defaults to a fresh activity_<hex>)

    Returns:
        The pending Activity row
    """
    activity = Activity(
        id=activity_id or new_activity_id(),
        type=activity_type,
        title=title,
        description=description,
        site_id=site_id,
        site_name=site_name,
        schedule_id=schedule_id,
        user_id=user_id,
        timestamp=timestamp,
        icon=icon or icon_for(activity_type),
        metadata_json=metadata,
        archived=False,
        synced=False,
        created_at=timestamp,
    )
    activity.integrity_hash = compute_integrity_hash(_canonical_fields(activity), integrity_secret)
    db.add(activity)
    db.flush()
    return activity


def verify_integrity(activity: Activity, integrity_secret: Optional[str] = None) -> bool:
    """Recompute the entry hash and compare it with the stored one."""
    expected = compute_integrity_hash(_canonical_fields(activity), integrity_secret)
    return expected == activity.integrity_hash


def get_activities(
    db: Session,
    activity_type: Optional[str] = None,
    site_id: Optional[str] = None,
    schedule_id: Optional[str] = None,
    include_archived: bool = False,
    limit: int = 100,
    offset: int = 0
) -> List[Activity]:
    """
    Get activities newest first with optional filtering.

    Args:
        db: Database session
        activity_type: Filter by activity type
        site_id: Filter by site
        schedule_id: Filter by originating schedule
        include_archived: Include entries archived with their site
        limit: Maximum number of results
        offset: Offset for pagination
    """
    query = db.query(Activity)

    if not include_archived:
        query = query.filter(Activity.archived.is_(False))
    if activity_type:
        query = query.filter(Activity.type == activity_type)
    if site_id:
        query = query.filter(Activity.site_id == site_id)
    if schedule_id:
        query = query.filter(Activity.schedule_id == schedule_id)

    query = query.order_by(Activity.timestamp.desc(), Activity.created_at.desc())
    query = query.limit(limit).offset(offset)

    return query.all()


def compute_diff(before: Dict, after: Dict) -> Dict:
    """
    Compute a diff between two dictionaries.

    Returns:
        Dict with before/after values for changed fields
    """
    diff = {}
    all_keys = set(before.keys()) | set(after.keys())

    for key in all_keys:
        before_val = before.get(key)
        after_val = after.get(key)

        if before_val != after_val:
            diff[key] = {
                "before": before_val,
                "after": after_val,
            }

    return diff


class ActivityTrail:
    """Read side of the activity feed; writes go through the schedule store."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    def list(
        self,
        activity_type: Optional[str] = None,
        site_id: Optional[str] = None,
        schedule_id: Optional[str] = None,
        include_archived: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> List[ActivityRead]:
        with self._session_factory() as db:
            rows = get_activities(
                db,
                activity_type=activity_type,
                site_id=site_id,
                schedule_id=schedule_id,
                include_archived=include_archived,
                limit=limit,
                offset=offset,
            )
            return [ActivityRead.model_validate(row) for row in rows]

    def recent(self, limit: int = 5) -> List[ActivityRead]:
        return self.list(limit=limit)

    def counts(self, include_archived: bool = False) -> ActivityCounts:
        with self._session_factory() as db:
            query = db.query(Activity.type, func.count(Activity.id))
            if not include_archived:
                query = query.filter(Activity.archived.is_(False))
            by_type = {row[0]: row[1] for row in query.group_by(Activity.type).all()}
        return ActivityCounts(total=sum(by_type.values()), by_type=by_type)

    def unsynced_count(self) -> int:
        with self._session_factory() as db:
            return db.query(func.count(Activity.id)).filter(Activity.synced.is_(False)).scalar() or 0

    def verify(self, activity_id: str) -> bool:
        with self._session_factory() as db:
            activity = db.get(Activity, activity_id)
            return activity is not None and verify_integrity(activity)

