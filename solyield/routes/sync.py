"""
Sync API routes.
Status chip data, manual sync and connectivity reports from the device.
"""
from fastapi import APIRouter, Depends, HTTPException

from ..deps import get_sync
from ..schemas.sync import NetworkState, SyncResult, SyncStatus
from ..services.sync_orchestrator import SyncOrchestrator

router = APIRouter(prefix="/sync", tags=["sync"])


@router.get("/status", response_model=SyncStatus)
def sync_status(orchestrator: SyncOrchestrator = Depends(get_sync)):
    return orchestrator.status()


@router.post("", response_model=SyncResult)
async def sync_now(orchestrator: SyncOrchestrator = Depends(get_sync)):
    """Manual sync; always answers with a success flag and a user-facing message."""
    return await orchestrator.sync_now()


@router.post("/connectivity", response_model=SyncStatus)
async def report_connectivity(state: NetworkState, orchestrator: SyncOrchestrator = Depends(get_sync)):
    set_state = getattr(orchestrator.connectivity, "set_state", None)
    if set_state is None:
        raise HTTPException(status_code=409, detail="Connectivity is probed by the server")
    await set_state(state.is_online, state.type)
    return orchestrator.status()
