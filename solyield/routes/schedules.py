"""
Schedule API routes.
Handles visit CRUD, check-in/out and conflict checks.
"""
from fastapi import APIRouter, Depends, HTTPException
from typing import List, Optional

from ..deps import get_store, get_conflicts
from ..schemas.schedules import (
    ScheduleCreate, ScheduleUpdate, ScheduleRead, ScheduleFilter, ScheduleView,
    ConflictCheckRequest, ConflictResult, CheckInRequest,
)
from ..services.conflict import ConflictValidator
from ..services.schedule_query import upcoming, todays
from ..services.schedule_store import ScheduleStore

router = APIRouter(prefix="/schedules", tags=["schedules"])


@router.post("", response_model=ScheduleRead, status_code=201)
async def create_schedule(payload: ScheduleCreate, store: ScheduleStore = Depends(get_store)):
    return await store.create(payload)


@router.get("", response_model=List[ScheduleRead])
def list_schedules(
    view: ScheduleView = ScheduleView.all,
    user_id: Optional[str] = None,
    date: Optional[str] = None,
    include_archived: bool = False,
    include_completed: bool = True,
    store: ScheduleStore = Depends(get_store),
):
    """
    List visits in display order: unlinked first, then by date and time.

    view=upcoming keeps visits from today on; view=today keeps today's only.
    """
    schedules = store.list(ScheduleFilter(
        include_archived=include_archived,
        include_completed=include_completed,
        user_id=user_id,
        date=date,
    ))
    if view == ScheduleView.upcoming:
        return upcoming(schedules)
    if view == ScheduleView.today:
        return todays(schedules)
    return schedules


@router.post("/conflicts/check", response_model=ConflictResult)
def check_conflicts(payload: ConflictCheckRequest, conflicts: ConflictValidator = Depends(get_conflicts)):
    return conflicts.check_conflict(
        payload.user_id,
        payload.date,
        payload.time,
        exclude_schedule_id=payload.exclude_schedule_id,
    )


@router.get("/{schedule_id}", response_model=ScheduleRead)
def get_schedule(schedule_id: str, store: ScheduleStore = Depends(get_store)):
    return store.get(schedule_id)


@router.patch("/{schedule_id}", response_model=ScheduleRead)
async def update_schedule(schedule_id: str, payload: ScheduleUpdate, store: ScheduleStore = Depends(get_store)):
    return await store.update(schedule_id, payload)


@router.post("/{schedule_id}/archive", response_model=ScheduleRead)
async def archive_schedule(schedule_id: str, store: ScheduleStore = Depends(get_store)):
    return await store.archive(schedule_id)


@router.delete("/{schedule_id}", status_code=204)
async def delete_schedule(schedule_id: str, confirm: bool = False, store: ScheduleStore = Depends(get_store)):
    # Hard delete skips the audit trail, so the caller has to ask for it explicitly
    if not confirm:
        raise HTTPException(status_code=400, detail="Pass confirm=true to permanently delete a visit")
    await store.hard_delete(schedule_id)


@router.post("/{schedule_id}/check-in", response_model=ScheduleRead)
async def check_in(
    schedule_id: str,
    payload: Optional[CheckInRequest] = None,
    store: ScheduleStore = Depends(get_store),
):
    activity_id = payload.activity_id if payload else None
    return await store.check_in(schedule_id, activity_id=activity_id)


@router.post("/{schedule_id}/check-out", response_model=ScheduleRead)
async def check_out(schedule_id: str, store: ScheduleStore = Depends(get_store)):
    return await store.check_out(schedule_id)
