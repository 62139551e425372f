"""
Test configuration and fixtures.

Provides:
- Fresh in-memory SQLite engine per test (StaticPool)
- Controllable clock for timestamps and check-out durations
- Store, conflict validator, activity trail and sync orchestrator wired together
- Recording remote reconciler that can fail or block on demand
"""
import asyncio
import os
from datetime import datetime, timedelta
from typing import List

# Point the module-level engine and app at memory before anything imports them
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest

from solyield.db import Base, make_engine, make_session_factory
from solyield.errors import SyncFailure
from solyield.models.models import RecordOrigin
from solyield.schemas.sync import SyncBatch
from solyield.services.activity_trail import ActivityTrail
from solyield.services.conflict import ConflictValidator
from solyield.services.connectivity import ManualConnectivity
from solyield.services.schedule_store import ScheduleStore
from solyield.services.sites import SiteDirectory
from solyield.services.sync_orchestrator import SyncOrchestrator
from solyield.services.time_rules import StoreClock


# =============================================================================
# Helpers
# =============================================================================

class FakeClock:
    """Wall clock that only moves when a test says so."""

    def __init__(self, start: datetime = datetime(2025, 6, 1, 8, 0, 0)):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


class RecordingRemote:
    """Remote reconciler double: records batches, fails or blocks when told to."""

    def __init__(self):
        self.batches: List[SyncBatch] = []
        self.fail = False
        self.gate: asyncio.Event = None
        self.entered = asyncio.Event()

    def hold(self) -> None:
        self.gate = asyncio.Event()

    def release(self) -> None:
        if self.gate is not None:
            self.gate.set()

    async def push(self, batch: SyncBatch) -> None:
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise SyncFailure("remote rejected batch")
        self.batches.append(batch)


def visit(**overrides) -> dict:
    data = {
        "title": "Inverter Check",
        "date": "2025-06-01",
        "time": "10:00 AM",
        "site_id": "site_01",
        "assigned_user_id": "u1",
    }
    data.update(overrides)
    return data


def unlinked_visit(**overrides) -> dict:
    data = {
        "title": "Emergency Call",
        "date": "2025-06-01",
        "time": "09:00 AM",
        "is_unlinked": True,
        "unlinked_reason": "Emergency repair",
        "assigned_user_id": "u1",
    }
    data.update(overrides)
    return data


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
def engine():
    engine = make_engine("sqlite:///:memory:")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def fake_now() -> FakeClock:
    return FakeClock()


@pytest.fixture
def clock(fake_now) -> StoreClock:
    return StoreClock(fake_now)


# =============================================================================
# Service Fixtures
# =============================================================================

@pytest.fixture
def sites(session_factory, clock) -> SiteDirectory:
    return SiteDirectory(session_factory, clock)


@pytest.fixture
async def store(session_factory, sites, clock) -> ScheduleStore:
    store = ScheduleStore(session_factory, sites=sites, clock=clock)
    await store.create_site("Bhadla Solar Park", capacity="2245 MW", site_id="site_01", origin=RecordOrigin.seeded)
    await store.create_site("Pavagada Solar Park", capacity="2050 MW", site_id="site_02", origin=RecordOrigin.seeded)
    await store.create_site("Rooftop Array", capacity="1 MW", site_id="site_user_roof")
    return store


@pytest.fixture
def conflicts(session_factory) -> ConflictValidator:
    return ConflictValidator(session_factory, buffer_minutes=5)


@pytest.fixture
def trail(session_factory) -> ActivityTrail:
    return ActivityTrail(session_factory)


@pytest.fixture
def connectivity() -> ManualConnectivity:
    return ManualConnectivity(is_online=True)


@pytest.fixture
def remote() -> RecordingRemote:
    return RecordingRemote()


@pytest.fixture
async def orchestrator(store, connectivity, remote):
    orchestrator = SyncOrchestrator(store, connectivity, remote, settle_delay_s=0.05, interval_s=3600)
    await orchestrator.start()
    yield orchestrator
    remote.release()
    await orchestrator.stop()
