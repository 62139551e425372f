"""
Reactive schedule queries.

Filters and the canonical visit ordering live here; the schedule store owns
the subscriptions and replays this pipeline after every committed write.
"""
import asyncio
import inspect
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, Union, Awaitable

import structlog
from sqlalchemy.orm import Session

from ..models.models import Schedule, ScheduleStatus
from ..schemas.schedules import ScheduleFilter, ScheduleRead
from .time_rules import local_today

logger = structlog.get_logger(__name__)

SnapshotCallback = Callable[[List[ScheduleRead]], Union[None, Awaitable[None]]]


def build_query(db: Session, filters: ScheduleFilter):
    """Translate a filter set into a query in insertion order."""
    query = db.query(Schedule)

    if not filters.include_archived:
        query = query.filter(Schedule.archived.is_(False))
    if not filters.include_completed:
        query = query.filter(Schedule.status != ScheduleStatus.completed.value)
    if filters.user_id:
        query = query.filter(Schedule.assigned_user_id == filters.user_id)
    if filters.date:
        query = query.filter(Schedule.date == filters.date)

    # created_at is strictly monotonic, so this is arrival order
    return query.order_by(Schedule.created_at.asc(), Schedule.id.asc())


def sort_key(schedule) -> Tuple[int, str, str]:
    # Unlinked visits first, then chronological by date then time string
    return (0 if schedule.is_unlinked else 1, schedule.date, schedule.time)


def sort_schedules(schedules: Iterable) -> list:
    """
    Apply the canonical visit ordering.

    All unlinked visits come before all site-bound visits. Within each group
    the order is ascending by date then time, compared as strings. The sort is
    stable, so ties keep their arrival order.
    """
    return sorted(schedules, key=sort_key)


def fetch_snapshot(db: Session, filters: ScheduleFilter) -> List[ScheduleRead]:
    rows = build_query(db, filters).all()
    return [ScheduleRead.model_validate(row) for row in sort_schedules(rows)]


def split_visits(schedules: Sequence[ScheduleRead]) -> Tuple[List[ScheduleRead], List[ScheduleRead]]:
    """Return (unlinked visits, site visits) preserving order."""
    unlinked = [s for s in schedules if s.is_unlinked]
    site_bound = [s for s in schedules if not s.is_unlinked]
    return unlinked, site_bound


def upcoming(schedules: Sequence[ScheduleRead], today: Optional[str] = None) -> List[ScheduleRead]:
    """Visits dated today or later, by string comparison against the local date."""
    today = today or local_today()
    return [s for s in schedules if s.date >= today]


def todays(schedules: Sequence[ScheduleRead], today: Optional[str] = None) -> List[ScheduleRead]:
    today = today or local_today()
    return [s for s in schedules if s.date == today]


class Subscription:
    """A registered live query: filter, callback and the last delivered snapshot."""

    def __init__(self, registry: "SubscriptionRegistry", filters: ScheduleFilter, callback: SnapshotCallback):
        self._registry = registry
        self.filters = filters
        self.callback = callback
        self.last_snapshot: Optional[List[ScheduleRead]] = None
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._registry.remove(self)

    async def deliver(self, snapshot: List[ScheduleRead]) -> bool:
        """Push the snapshot if it differs from the last one. Returns True if pushed."""
        if not self.active:
            return False
        if self.last_snapshot is not None and snapshot == self.last_snapshot:
            return False
        self.last_snapshot = snapshot
        try:
            result = self.callback(list(snapshot))
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("schedule_subscriber_failed", error=str(e), filters=self.filters.model_dump())
        return True


class SubscriptionRegistry:
    def __init__(self) -> None:
        self._subscriptions: List[Subscription] = []

    def add(self, filters: ScheduleFilter, callback: SnapshotCallback) -> Subscription:
        subscription = Subscription(self, filters, callback)
        self._subscriptions.append(subscription)
        return subscription

    def remove(self, subscription: Subscription) -> None:
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            pass

    def __len__(self) -> int:
        return len(self._subscriptions)

    async def publish(self, db: Session) -> int:
        """Replay every subscriber's query; push only changed results."""
        pushed = 0
        for subscription in list(self._subscriptions):
            snapshot = fetch_snapshot(db, subscription.filters)
            if await subscription.deliver(snapshot):
                pushed += 1
        return pushed
