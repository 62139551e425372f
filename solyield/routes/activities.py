from fastapi import APIRouter, Depends, Query
from typing import List, Optional

from ..deps import get_activity_trail
from ..models.models import ActivityType
from ..schemas.activities import ActivityRead, ActivityCounts
from ..services.activity_trail import ActivityTrail

router = APIRouter(prefix="/activities", tags=["activities"])


@router.get("", response_model=List[ActivityRead])
def list_activities(
    type: Optional[ActivityType] = None,
    site_id: Optional[str] = None,
    schedule_id: Optional[str] = None,
    include_archived: bool = False,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    trail: ActivityTrail = Depends(get_activity_trail),
):
    return trail.list(
        activity_type=type.value if type else None,
        site_id=site_id,
        schedule_id=schedule_id,
        include_archived=include_archived,
        limit=limit,
        offset=offset,
    )


@router.get("/recent", response_model=List[ActivityRead])
def recent_activities(limit: int = Query(5, ge=1, le=50), trail: ActivityTrail = Depends(get_activity_trail)):
    return trail.recent(limit=limit)


@router.get("/counts", response_model=ActivityCounts)
def activity_counts(include_archived: bool = False, trail: ActivityTrail = Depends(get_activity_trail)):
    return trail.counts(include_archived=include_archived)
