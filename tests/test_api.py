"""
API tests over ASGITransport.

Coverage:
- Schedule endpoints and error mapping (422/404/409)
- Conflict check endpoint
- Activities feed and counts
- Site archive cascade
- Sync status, manual sync and connectivity reports
"""
import pytest
from httpx import AsyncClient, ASGITransport

from solyield.config import Settings
from solyield.db import make_engine
from solyield.main import create_app
from solyield.models.models import RecordOrigin
from solyield.services.connectivity import ManualConnectivity
from solyield.services.sync_orchestrator import OFFLINE_MESSAGE
from solyield.services.time_rules import StoreClock

from conftest import FakeClock, RecordingRemote, visit, unlinked_visit


@pytest.fixture
async def app():
    config = Settings(
        metrics_enabled=False,
        sync_settle_delay_s=0.05,
        sync_interval_s=3600,
        auto_create_db=True,
    )
    application = create_app(
        config,
        engine=make_engine("sqlite:///:memory:"),
        connectivity=ManualConnectivity(is_online=True),
        remote=RecordingRemote(),
        clock=StoreClock(FakeClock()),
    )
    store = application.state.schedule_store
    await store.create_site("Bhadla Solar Park", site_id="site_01", origin=RecordOrigin.seeded)
    await store.create_site("Pavagada Solar Park", site_id="site_02", origin=RecordOrigin.seeded)

    orchestrator = application.state.sync_orchestrator
    await orchestrator.start()
    yield application
    orchestrator.remote.release()
    await orchestrator.stop()


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# =============================================================================
# Schedules
# =============================================================================

@pytest.mark.asyncio
async def test_create_and_fetch_schedule(client):
    response = await client.post("/schedules", json=visit())
    assert response.status_code == 201
    body = response.json()
    assert body["id"].startswith("schedule_user_")
    assert body["origin"] == "user"
    assert body["synced"] is False

    fetched = await client.get(f"/schedules/{body['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["title"] == "Inverter Check"


@pytest.mark.asyncio
async def test_unlinked_without_reason_is_422(client):
    response = await client.post("/schedules", json=unlinked_visit(unlinked_reason=""))

    assert response.status_code == 422
    assert response.json()["error"] == "ValidationError"


@pytest.mark.asyncio
async def test_list_orders_unlinked_first(client):
    site = (await client.post("/schedules", json=visit(time="08:00 AM"))).json()
    emergency = (await client.post("/schedules", json=unlinked_visit(time="11:00 AM"))).json()

    response = await client.get("/schedules", params={"date": "2025-06-01"})

    assert [s["id"] for s in response.json()] == [emergency["id"], site["id"]]


@pytest.mark.asyncio
async def test_patch_unknown_is_404(client):
    response = await client.patch("/schedules/schedule_user_missing", json={"title": "x"})
    assert response.status_code == 404
    assert response.json()["error"] == "NotFoundError"


@pytest.mark.asyncio
async def test_seeded_visit_is_409(app, client):
    await app.state.schedule_store.seed([{
        "id": "visit_101", "site_id": "site_01", "date": "2025-03-01", "time": "09:00 AM",
        "title": "Quarterly Inspection",
    }])

    response = await client.patch("/schedules/visit_101", json={"title": "Renamed"})

    assert response.status_code == 409
    assert response.json()["error"] == "InvalidStateError"


@pytest.mark.asyncio
async def test_archive_then_hard_delete(client):
    created = (await client.post("/schedules", json=visit())).json()

    archived = await client.post(f"/schedules/{created['id']}/archive")
    assert archived.json()["status"] == "cancelled"
    assert (await client.get("/schedules")).json() == []

    assert (await client.delete(f"/schedules/{created['id']}")).status_code == 400
    assert (await client.delete(f"/schedules/{created['id']}", params={"confirm": "true"})).status_code == 204
    assert (await client.get(f"/schedules/{created['id']}")).status_code == 404


@pytest.mark.asyncio
async def test_check_in_and_out(client):
    created = (await client.post("/schedules", json=visit())).json()

    early = await client.post(f"/schedules/{created['id']}/check-out")
    assert early.status_code == 409

    checked_in = await client.post(f"/schedules/{created['id']}/check-in", json={"activity_id": "activity_device_1"})
    assert checked_in.json()["status"] == "in-progress"
    assert checked_in.json()["activity_id"] == "activity_device_1"

    checked_out = await client.post(f"/schedules/{created['id']}/check-out")
    assert checked_out.status_code == 200
    assert checked_out.json()["status"] == "completed"
    assert checked_out.json()["actual_duration_minutes"] == 0


@pytest.mark.asyncio
async def test_conflict_check_endpoint(client):
    await client.post("/schedules", json=unlinked_visit(time="09:00 AM"))

    response = await client.post("/schedules/conflicts/check", json={
        "user_id": "u1", "date": "2025-06-01", "time": "09:03 AM",
    })

    assert response.status_code == 200
    assert response.json()["has_conflict"] is True

    clear = await client.post("/schedules/conflicts/check", json={
        "user_id": "u1", "date": "2025-06-01", "time": "09:06 AM",
    })
    assert clear.json()["has_conflict"] is False


# =============================================================================
# Activities
# =============================================================================

@pytest.mark.asyncio
async def test_recent_activities(client):
    created = (await client.post("/schedules", json=visit())).json()
    await client.post(f"/schedules/{created['id']}/check-in")

    response = await client.get("/activities/recent")

    assert [a["type"] for a in response.json()] == ["check-in", "schedule"]
    filtered = await client.get("/activities", params={"type": "check-in"})
    assert len(filtered.json()) == 1


# =============================================================================
# Sync
# =============================================================================

@pytest.mark.asyncio
async def test_manual_sync_offline_then_online(client):
    await client.post("/schedules", json=visit())

    offline = await client.post("/sync/connectivity", json={"is_online": False, "type": "none"})
    assert offline.json()["state"] == "offline"

    result = await client.post("/sync")
    assert result.json() == {"success": False, "message": OFFLINE_MESSAGE, "synced_count": 0}

    await client.post("/sync/connectivity", json={"is_online": True, "type": "wifi"})
    result = await client.post("/sync")
    assert result.json()["success"] is True
    assert result.json()["message"] == "Successfully synced 2 items."

    status = (await client.get("/sync/status")).json()
    assert status["unsynced_count"] == 0
    assert status["state"] == "synced"


@pytest.mark.asyncio
async def test_request_id_is_echoed(client):
    response = await client.get("/healthz", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


@pytest.mark.asyncio
async def test_activity_counts(client):
    created = (await client.post("/schedules", json=visit())).json()
    await client.post(f"/schedules/{created['id']}/check-in")

    response = await client.get("/activities/counts")

    assert response.json() == {"total": 2, "by_type": {"schedule": 1, "check-in": 1}}


# =============================================================================
# Sites
# =============================================================================

@pytest.mark.asyncio
async def test_site_archive_cascades_to_visits(client):
    site = await client.post("/sites", json={"name": "Rooftop Array", "capacity": "0.5 MW"})
    assert site.status_code == 201
    site_id = site.json()["id"]
    assert site.json()["origin"] == "user"

    await client.post("/schedules", json=visit(site_id=site_id))

    archived = await client.post(f"/sites/{site_id}/archive")
    assert archived.json() == {"site_id": site_id, "archived": True, "schedules_affected": 1}
    assert (await client.get("/schedules")).json() == []
    assert site_id not in [s["id"] for s in (await client.get("/sites")).json()]

    restored = await client.post(f"/sites/{site_id}/unarchive")
    assert restored.json()["schedules_affected"] == 1
    assert len((await client.get("/schedules")).json()) == 1


@pytest.mark.asyncio
async def test_seeded_site_cannot_be_archived(client):
    response = await client.post("/sites/site_01/archive")

    assert response.status_code == 409
    assert response.json()["error"] == "InvalidStateError"
