from fastapi import Request

from .services.activity_trail import ActivityTrail
from .services.conflict import ConflictValidator
from .services.schedule_store import ScheduleStore
from .services.sites import SiteDirectory
from .services.sync_orchestrator import SyncOrchestrator


# Services are built once in create_app() and hung off app.state


def get_store(request: Request) -> ScheduleStore:
    return request.app.state.schedule_store


def get_sites(request: Request) -> SiteDirectory:
    return request.app.state.schedule_store.sites


def get_conflicts(request: Request) -> ConflictValidator:
    return request.app.state.conflict_validator


def get_activity_trail(request: Request) -> ActivityTrail:
    return request.app.state.activity_trail


def get_sync(request: Request) -> SyncOrchestrator:
    return request.app.state.sync_orchestrator
