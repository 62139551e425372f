"""
Tests for the activity audit trail.
"""
import pytest

from solyield.models.models import Activity
from solyield.services.activity_trail import (
    append_activity, compute_diff, compute_integrity_hash, icon_for, verify_integrity,
)

from conftest import visit


@pytest.mark.asyncio
async def test_entries_are_newest_first(store, trail, fake_now):
    created = await store.create(visit())
    fake_now.advance(minutes=1)
    await store.check_in(created.id)
    fake_now.advance(minutes=20)
    await store.check_out(created.id)

    titles = [a.title for a in trail.list()]

    assert titles == ["Checked Out", "Checked In", "Visit Scheduled"]


@pytest.mark.asyncio
async def test_recent_limits_results(store, trail):
    for hour in range(1, 8):
        await store.create(visit(time=f"{hour:02d}:00 PM"))

    assert len(trail.recent()) == 5
    assert len(trail.recent(limit=2)) == 2


@pytest.mark.asyncio
async def test_filter_by_type_and_pagination(store, trail):
    created = await store.create(visit())
    await store.check_in(created.id)

    assert [a.type for a in trail.list(activity_type="check-in")] == ["check-in"]
    assert len(trail.list(limit=1)) == 1
    assert len(trail.list(limit=1, offset=1)) == 1
    assert trail.list(limit=1, offset=2) == []


@pytest.mark.asyncio
async def test_entries_start_unsynced_with_icon_and_hash(store, trail):
    created = await store.create(visit())

    entry = trail.list(schedule_id=created.id)[0]

    assert entry.id.startswith("activity_")
    assert entry.synced is False
    assert entry.icon == "calendar-plus"
    assert entry.integrity_hash
    assert trail.verify(entry.id) is True
    assert trail.unsynced_count() == 1


@pytest.mark.asyncio
async def test_tampering_breaks_integrity(store, trail, session_factory):
    created = await store.create(visit())
    entry_id = trail.list(schedule_id=created.id)[0].id

    with session_factory() as db, db.begin():
        db.get(Activity, entry_id).description = "rewritten"

    assert trail.verify(entry_id) is False


def test_append_activity_uses_caller_transaction(session_factory, fake_now):
    with session_factory() as db:
        activity = append_activity(
            db,
            activity_type="maintenance",
            title="Panel Cleaning",
            timestamp=fake_now(),
            site_id="site_01",
        )
        activity_id = activity.id
        assert activity.icon == "wrench"
        db.rollback()

    with session_factory() as db:
        assert db.get(Activity, activity_id) is None


def test_integrity_hash_ignores_none_and_key_order():
    a = compute_integrity_hash({"id": "x", "title": "t", "site_id": None}, secret="s")
    b = compute_integrity_hash({"title": "t", "id": "x"}, secret="s")
    assert a == b
    assert compute_integrity_hash({"id": "x"}, secret="other") != a
    assert compute_integrity_hash({"id": "x"}, secret="") is None


def test_compute_diff_reports_changed_fields_only():
    diff = compute_diff({"time": "10:00 AM", "title": "A"}, {"time": "11:00 AM", "title": "A"})
    assert diff == {"time": {"before": "10:00 AM", "after": "11:00 AM"}}


def test_unknown_type_gets_default_icon():
    assert icon_for("report") == "file-document"
    assert icon_for("something-else") == "information"


def test_verify_integrity_on_detached_row(session_factory, fake_now):
    with session_factory() as db, db.begin():
        activity = append_activity(db, activity_type="report", title="Monthly Report", timestamp=fake_now())
    assert verify_integrity(activity) is True
