from datetime import datetime
from typing import Optional, List
from enum import Enum

from pydantic import BaseModel


class SyncState(str, Enum):
    offline = "offline"
    idle_unsynced = "idle-unsynced"
    syncing = "syncing"
    synced = "synced"


class NetworkState(BaseModel):
    is_online: bool
    type: str = "unknown"  # wifi|cellular|ethernet|none|unknown
    is_internet_reachable: Optional[bool] = None


class SyncStatus(BaseModel):
    is_online: bool
    is_syncing: bool
    last_sync_time: Optional[datetime] = None
    unsynced_count: int = 0
    error: Optional[str] = None
    state: SyncState
    message: str = ""


class SyncResult(BaseModel):
    success: bool
    message: str
    synced_count: int = 0


class PendingRecord(BaseModel):
    """One unsynced row captured at the start of a sync pass."""
    id: str
    updated_at: datetime
    payload: dict


class SyncBatch(BaseModel):
    schedules: List[PendingRecord] = []
    activities: List[PendingRecord] = []

    @property
    def size(self) -> int:
        return len(self.schedules) + len(self.activities)
