"""
Tests for visit conflict detection.

Coverage:
- Five-minute symmetric buffer
- Cancelled/archived visits ignored
- Unlinked visits with an assignee participate
- Edits exclude the visit being edited
- Next free slot suggestion
"""
import pytest

from solyield.errors import ValidationError
from solyield.schemas.schedules import ScheduleFilter
from solyield.services.conflict import times_within_buffer

from conftest import visit, unlinked_visit


@pytest.mark.asyncio
async def test_unlinked_and_site_visit_conflict_within_buffer(store, conflicts):
    emergency = await store.create(unlinked_visit(
        date="2025-06-01", time="09:00 AM", unlinked_reason="Emergency repair", assigned_user_id="u1",
    ))

    result = conflicts.check_conflict("u1", "2025-06-01", "09:03 AM")
    assert result.has_conflict is True
    assert result.conflicting_schedule_id == emergency.id
    assert "5 minutes" in result.reason

    site_visit = await store.create(visit(date="2025-06-01", time="09:03 AM", assigned_user_id="u1"))

    day = store.list(ScheduleFilter(date="2025-06-01"))
    assert [s.id for s in day] == [emergency.id, site_visit.id]


@pytest.mark.asyncio
@pytest.mark.parametrize("existing,proposed,expected", [
    ("10:00 AM", "10:05 AM", True),
    ("10:05 AM", "10:00 AM", True),
    ("10:00 AM", "09:55 AM", True),
    ("10:00 AM", "10:06 AM", False),
    ("10:00 AM", "09:54 AM", False),
    ("12:00 PM", "11:58 AM", True),
    ("14:00", "02:03 PM", True),
])
async def test_buffer_is_symmetric_and_inclusive(store, conflicts, existing, proposed, expected):
    await store.create(visit(time=existing))
    assert conflicts.check_conflict("u1", "2025-06-01", proposed).has_conflict is expected


@pytest.mark.asyncio
async def test_other_users_and_dates_do_not_conflict(store, conflicts):
    await store.create(visit(time="10:00 AM", assigned_user_id="u1"))

    assert conflicts.check_conflict("u2", "2025-06-01", "10:00 AM").has_conflict is False
    assert conflicts.check_conflict("u1", "2025-06-02", "10:00 AM").has_conflict is False


@pytest.mark.asyncio
async def test_archived_and_cancelled_visits_are_ignored(store, conflicts):
    archived = await store.create(visit(time="10:00 AM"))
    await store.archive(archived.id)
    await store.create(visit(time="11:00 AM", status="cancelled"))

    assert conflicts.check_conflict("u1", "2025-06-01", "10:00 AM").has_conflict is False
    assert conflicts.check_conflict("u1", "2025-06-01", "11:00 AM").has_conflict is False


@pytest.mark.asyncio
async def test_unassigned_unlinked_visit_never_conflicts(store, conflicts):
    await store.create(unlinked_visit(time="10:00 AM", assigned_user_id=None))
    assert conflicts.check_conflict("u1", "2025-06-01", "10:00 AM").has_conflict is False


@pytest.mark.asyncio
async def test_edit_excludes_its_own_visit(store, conflicts):
    existing = await store.create(visit(time="10:00 AM"))

    result = conflicts.check_conflict("u1", "2025-06-01", "10:02 AM", exclude_schedule_id=existing.id)

    assert result.has_conflict is False


@pytest.mark.asyncio
async def test_lists_every_conflicting_visit(store, conflicts):
    a = await store.create(visit(time="10:00 AM"))
    b = await store.create(visit(time="10:04 AM"))
    await store.create(visit(time="10:30 AM"))

    result = conflicts.check_conflict("u1", "2025-06-01", "10:02 AM")

    assert set(result.conflicting_schedule_ids) == {a.id, b.id}


@pytest.mark.asyncio
async def test_check_is_read_only(store, conflicts):
    await store.create(visit(time="10:00 AM"))
    before = store.unsynced_count()

    conflicts.check_conflict("u1", "2025-06-01", "10:01 AM")

    assert store.unsynced_count() == before


def test_unparseable_proposed_time_is_validation_error(conflicts):
    with pytest.raises(ValidationError):
        conflicts.check_conflict("u1", "2025-06-01", "soon")


@pytest.mark.asyncio
async def test_suggest_next_slot_skips_blocked_times(store, conflicts):
    await store.create(visit(time="10:00 AM"))
    await store.create(visit(time="10:06 AM"))

    assert conflicts.suggest_next_slot("u1", "2025-06-01", "09:58 AM") == "10:12 AM"
    assert conflicts.suggest_next_slot("u2", "2025-06-01", "09:58 AM") == "10:04 AM"


def test_times_within_buffer():
    assert times_within_buffer(600, 605, 5)
    assert times_within_buffer(605, 600, 5)
    assert not times_within_buffer(600, 606, 5)
