"""
Sync orchestrator.

Watches connectivity and local commits, and pushes unsynced schedules and
activities to the remote reconciler. At most one pass is in flight; callers
that ask for a sync while one is running share its outcome.
"""
import asyncio
import inspect
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Union

import structlog
from sqlalchemy.exc import SQLAlchemyError

from ..config import settings
from ..errors import OfflineError, SyncFailure
from ..schemas.sync import NetworkState, SyncBatch, SyncResult, SyncState, SyncStatus
from .connectivity import ConnectivityObserver
from .remote_sync import RemoteReconciler
from .schedule_store import ScheduleStore
from .time_rules import StoreClock, utcnow
from .timers import CancellableTimer, PeriodicTimer

logger = structlog.get_logger(__name__)

StatusCallback = Callable[[SyncStatus], Union[None, Awaitable[None]]]

OFFLINE_MESSAGE = "Cannot sync while offline. Data will sync automatically when online."
FAILURE_MESSAGE = "Sync failed. Please try again."
NOTHING_MESSAGE = "Nothing to sync."

# Commit events raised by the sync pass itself
_SYNC_EVENTS = {"synced"}


def format_last_sync_time(last_sync_time: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Relative age of the last successful sync ("Just now", "5m ago", "2h ago", "3d ago")."""
    if last_sync_time is None:
        return "Never synced"
    now = now or utcnow()
    seconds = int((now - last_sync_time).total_seconds())
    minutes = seconds // 60
    hours = minutes // 60
    days = hours // 24

    if seconds < 60:
        return "Just now"
    if minutes < 60:
        return f"{minutes}m ago"
    if hours < 24:
        return f"{hours}h ago"
    return f"{days}d ago"


def get_sync_status_message(status: SyncStatus, now: Optional[datetime] = None) -> str:
    if status.is_syncing:
        return "Syncing data..."
    if not status.is_online:
        return f"Offline - {status.unsynced_count} items pending"
    if status.unsynced_count > 0:
        return f"{status.unsynced_count} items waiting to sync"
    if status.last_sync_time:
        return f"Last synced {format_last_sync_time(status.last_sync_time, now)}"
    return "All data synced"


class SyncOrchestrator:
    def __init__(
        self,
        store: ScheduleStore,
        connectivity: ConnectivityObserver,
        remote: RemoteReconciler,
        settle_delay_s: Optional[float] = None,
        interval_s: Optional[float] = None,
        clock: Optional[StoreClock] = None,
    ):
        self.store = store
        self.connectivity = connectivity
        self.remote = remote
        self.clock = clock or store.clock
        self.settle_delay_s = settings.sync_settle_delay_s if settle_delay_s is None else settle_delay_s
        self.interval_s = settings.sync_interval_s if interval_s is None else interval_s

        self._settle = CancellableTimer(self.settle_delay_s, self._on_settle, name="sync_settle")
        self._periodic = PeriodicTimer(self.interval_s, self._on_tick, name="sync_periodic")
        self._current: Optional[asyncio.Task] = None
        self._status_callbacks: List[StatusCallback] = []
        self._unsubscribe_network: Optional[Callable[[], None]] = None
        self._listening = False

        self.is_online = False
        self.is_syncing = False
        self.last_sync_time: Optional[datetime] = None
        self.error: Optional[str] = None
        self.passes = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        self.is_online = self.connectivity.current().is_online
        self._unsubscribe_network = self.connectivity.subscribe(self.on_network_change)
        if not self._listening:
            self.store.add_commit_listener(self._on_commit)
            self._listening = True
        self._periodic.start()
        logger.info(
            "sync_orchestrator_started",
            is_online=self.is_online,
            settle_delay_s=self.settle_delay_s,
            interval_s=self.interval_s,
        )
        if self.is_online and self.store.unsynced_count() > 0:
            self._settle.start()
        await self._notify()

    async def stop(self) -> None:
        self._settle.cancel()
        await self._periodic.stop()
        if self._unsubscribe_network is not None:
            self._unsubscribe_network()
            self._unsubscribe_network = None
        if self._current is not None:
            try:
                await asyncio.shield(self._current)
            except (OfflineError, SyncFailure):
                pass
        logger.info("sync_orchestrator_stopped")

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    async def on_network_change(self, state: NetworkState) -> None:
        was_online = self.is_online
        self.is_online = state.is_online

        if not state.is_online:
            self._settle.cancel()
        elif not was_online and self.store.unsynced_count() > 0:
            # Back online with pending data: wait out flapping before syncing
            self._settle.start()
        await self._notify()

    async def _on_commit(self, event: str, schedule_id: Optional[str]) -> None:
        if event not in _SYNC_EVENTS and self.is_online and not self.is_syncing:
            if self.store.unsynced_count() > 0:
                self._settle.start()
        await self._notify()

    async def _on_settle(self) -> None:
        await self._silent_sync("settle")

    async def _on_tick(self) -> None:
        if self.is_online and not self.is_syncing and self.store.unsynced_count() > 0:
            await self._silent_sync("periodic")

    async def _silent_sync(self, trigger: str) -> None:
        """Background pass: failures only change the status indicator."""
        try:
            count = await self._run_pass()
            logger.info("silent_sync_completed", trigger=trigger, synced=count)
        except OfflineError:
            logger.info("silent_sync_skipped_offline", trigger=trigger)
        except SyncFailure as e:
            logger.warning("silent_sync_failed", trigger=trigger, error=e.message)

    # ------------------------------------------------------------------
    # Sync passes
    # ------------------------------------------------------------------

    async def _run_pass(self) -> int:
        """Start a pass, or join the one already running."""
        if self._current is None:
            self._current = asyncio.create_task(self._pass())
        return await asyncio.shield(self._current)

    async def _pass(self) -> int:
        self.is_syncing = True
        self.error = None
        self.passes += 1
        await self._notify()
        try:
            if not self.connectivity.current().is_online:
                self.is_online = False
                raise OfflineError("Device is offline")

            try:
                batch = SyncBatch(**self.store.pending_records())
            except SQLAlchemyError as e:
                raise SyncFailure(f"Could not read pending changes: {e}") from e
            if batch.size == 0:
                return 0

            logger.info("sync_pass_started", schedules=len(batch.schedules), activities=len(batch.activities))
            try:
                await self.remote.push(batch)
            except SyncFailure:
                raise
            except Exception as e:
                raise SyncFailure(f"Remote reconciliation failed: {e}") from e

            try:
                marked = await self.store.mark_synced_many(batch.schedules, batch.activities)
                remaining = self.store.unsynced_count()
            except SQLAlchemyError as e:
                raise SyncFailure(f"Could not record synced changes: {e}") from e
            self.last_sync_time = self.clock.now()
            logger.info("sync_pass_completed", pushed=batch.size, marked=marked)
            if remaining > 0:
                # Rows edited while the batch was in flight
                self._settle.start()
            return marked
        except (OfflineError, SyncFailure) as e:
            self.error = e.message
            logger.warning("sync_pass_failed", error=e.message, error_type=type(e).__name__)
            raise
        finally:
            self.is_syncing = False
            self._current = None
            await self._notify()

    async def sync_now(self) -> SyncResult:
        """Manual sync. Skips the settle delay and never raises."""
        self._settle.cancel()
        if not self.connectivity.current().is_online:
            self.is_online = False
            self.error = "Device is offline"
            await self._notify()
            return SyncResult(success=False, message=OFFLINE_MESSAGE)

        try:
            pending = self.store.unsynced_count()
        except SQLAlchemyError as e:
            logger.warning("manual_sync_count_failed", error=str(e))
            return SyncResult(success=False, message=FAILURE_MESSAGE)
        if pending == 0 and self._current is None:
            return SyncResult(success=True, message=NOTHING_MESSAGE)

        try:
            count = await self._run_pass()
        except OfflineError:
            return SyncResult(success=False, message=OFFLINE_MESSAGE)
        except SyncFailure:
            return SyncResult(success=False, message=FAILURE_MESSAGE)
        return SyncResult(success=True, message=f"Successfully synced {count} items.", synced_count=count)

    async def wait_for_pending(self) -> None:
        """Wait for a scheduled settle sync and any pass in flight."""
        await self._settle.wait()
        if self._current is not None:
            try:
                await asyncio.shield(self._current)
            except (OfflineError, SyncFailure):
                pass

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> SyncStatus:
        unsynced = self.store.unsynced_count()
        if self.is_syncing:
            state = SyncState.syncing
        elif not self.is_online:
            state = SyncState.offline
        elif unsynced > 0:
            state = SyncState.idle_unsynced
        else:
            state = SyncState.synced
        status = SyncStatus(
            is_online=self.is_online,
            is_syncing=self.is_syncing,
            last_sync_time=self.last_sync_time,
            unsynced_count=unsynced,
            error=self.error,
            state=state,
        )
        status.message = get_sync_status_message(status, self.clock.now())
        return status

    def subscribe_status(self, callback: StatusCallback) -> Callable[[], None]:
        self._status_callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._status_callbacks:
                self._status_callbacks.remove(callback)

        return unsubscribe

    async def _notify(self) -> None:
        if not self._status_callbacks:
            return
        status = self.status()
        for callback in list(self._status_callbacks):
            try:
                result = callback(status)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("sync_status_listener_failed", error=str(e))
