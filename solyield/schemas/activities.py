from datetime import datetime
from typing import Optional, Dict

from pydantic import BaseModel, Field


class ActivityRead(BaseModel):
    id: str
    type: str
    title: str
    description: Optional[str] = None
    site_id: Optional[str] = None
    site_name: Optional[str] = None
    schedule_id: Optional[str] = None
    user_id: Optional[str] = None
    timestamp: datetime
    icon: str
    metadata: Optional[Dict] = Field(default=None, validation_alias="metadata_json")
    archived: bool
    synced: bool
    integrity_hash: Optional[str] = None

    class Config:
        from_attributes = True
        populate_by_name = True


class ActivityCounts(BaseModel):
    total: int = 0
    by_type: Dict[str, int] = {}
