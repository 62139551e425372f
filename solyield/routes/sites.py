from fastapi import APIRouter, Depends
from typing import List

from ..deps import get_sites, get_store
from ..schemas.sites import SiteCreate, SiteRead, SiteArchiveResult
from ..services.schedule_store import ScheduleStore
from ..services.sites import SiteDirectory

router = APIRouter(prefix="/sites", tags=["sites"])


@router.get("", response_model=List[SiteRead])
def list_sites(include_archived: bool = False, sites: SiteDirectory = Depends(get_sites)):
    return sites.list(include_archived=include_archived)


@router.post("", response_model=SiteRead, status_code=201)
async def create_site(payload: SiteCreate, store: ScheduleStore = Depends(get_store)):
    return await store.create_site(
        payload.name,
        latitude=payload.latitude,
        longitude=payload.longitude,
        capacity=payload.capacity,
    )


@router.post("/{site_id}/archive", response_model=SiteArchiveResult)
async def archive_site(site_id: str, store: ScheduleStore = Depends(get_store)):
    count = await store.archive_site(site_id)
    return SiteArchiveResult(site_id=site_id, archived=True, schedules_affected=count)


@router.post("/{site_id}/unarchive", response_model=SiteArchiveResult)
async def unarchive_site(site_id: str, store: ScheduleStore = Depends(get_store)):
    count = await store.unarchive_site(site_id)
    return SiteArchiveResult(site_id=site_id, archived=False, schedules_affected=count)
