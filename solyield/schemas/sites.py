from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from ..models.models import RecordOrigin


class SiteCreate(BaseModel):
    name: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    capacity: Optional[str] = None  # e.g. "5 MW"


class SiteRead(BaseModel):
    id: str
    name: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    capacity: Optional[str] = None
    origin: RecordOrigin
    archived: bool
    archived_at: Optional[datetime] = None
    synced: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class SiteArchiveResult(BaseModel):
    site_id: str
    archived: bool
    schedules_affected: int
