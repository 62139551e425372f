"""
Site directory.
Resolves site ids for site-bound visits and cascades archiving to the
visits and activities recorded against a site.
"""
import uuid
from typing import Optional, List

import structlog
from sqlalchemy.orm import Session

from ..models.models import Site, Schedule, Activity, RecordOrigin, ScheduleStatus
from ..errors import NotFoundError, InvalidStateError, ValidationError
from .time_rules import StoreClock

logger = structlog.get_logger(__name__)


def get_active_site(db: Session, site_id: Optional[str]) -> Optional[Site]:
    if not site_id:
        return None
    site = db.get(Site, site_id)
    if site is None or site.archived:
        return None
    return site


def site_name_for(db: Session, site_id: Optional[str]) -> Optional[str]:
    if not site_id:
        return None
    site = db.get(Site, site_id)
    return site.name if site else None


class SiteDirectory:
    def __init__(self, session_factory, clock: Optional[StoreClock] = None):
        self._session_factory = session_factory
        self.clock = clock or StoreClock()

    def get(self, site_id: str) -> Optional[Site]:
        with self._session_factory() as db:
            return db.get(Site, site_id)

    def exists(self, site_id: str) -> bool:
        with self._session_factory() as db:
            return get_active_site(db, site_id) is not None

    def list(self, include_archived: bool = False) -> List[Site]:
        with self._session_factory() as db:
            query = db.query(Site)
            if not include_archived:
                query = query.filter(Site.archived.is_(False))
            return query.order_by(Site.name.asc()).all()

    def add(
        self,
        db: Session,
        name: str,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        capacity: Optional[str] = None,
        site_id: Optional[str] = None,
        origin: RecordOrigin = RecordOrigin.user,
        now=None,
    ) -> Site:
        """Insert a site inside the caller's write scope."""
        name = (name or "").strip()
        if not name:
            raise ValidationError("Site name is required", detail={"field": "name"})
        if site_id and db.get(Site, site_id) is not None:
            raise InvalidStateError("Site already exists", detail={"site_id": site_id})
        now = now or self.clock.stamp()
        site = Site(
            id=site_id or f"site_user_{uuid.uuid4().hex[:12]}",
            name=name,
            latitude=latitude,
            longitude=longitude,
            capacity=capacity,
            origin=origin,
            archived=False,
            synced=origin == RecordOrigin.seeded,
            created_at=now,
            updated_at=now,
        )
        db.add(site)
        db.flush()
        logger.info("site_created", site_id=site.id, origin=site.origin.value)
        return site

    def set_archived(self, db: Session, site_id: str, archived: bool, now) -> int:
        """
        Archive or restore a site together with its visits and activities.

        Runs inside the caller's write scope.

        Returns:
            Number of schedules whose archived flag changed
        """
        site = db.get(Site, site_id)
        if site is None:
            raise NotFoundError(f"Site {site_id} not found")
        if site.origin == RecordOrigin.seeded:
            raise InvalidStateError("Built-in sites cannot be archived", detail={"site_id": site_id})
        if site.archived == archived:
            return 0

        query = db.query(Schedule).filter(
            Schedule.site_id == site_id,
            Schedule.archived.is_(not archived),
        )
        if not archived:
            # Only visits archived together with the site; cancelled visits stay cancelled
            query = query.filter(
                Schedule.archived_at == site.archived_at,
                Schedule.status != ScheduleStatus.cancelled.value,
            )
        schedules = query.all()

        site.archived = archived
        site.archived_at = now if archived else None
        site.synced = False
        site.updated_at = now

        for schedule in schedules:
            schedule.archived = archived
            schedule.archived_at = now if archived else None
            schedule.synced = False
            schedule.updated_at = now

        db.query(Activity).filter(
            Activity.site_id == site_id,
            Activity.archived.is_(not archived),
        ).update({Activity.archived: archived}, synchronize_session=False)

        logger.info("site_archive_changed", site_id=site_id, archived=archived, schedules=len(schedules))
        return len(schedules)
