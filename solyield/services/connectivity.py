"""
Connectivity observers.

An observer answers current() on demand and notifies subscribers when the
network state changes. ManualConnectivity is driven by the host (or the
/sync/connectivity route); HttpConnectivityProbe polls a health URL.
"""
import asyncio
import inspect
from typing import Awaitable, Callable, List, Optional, Protocol, Union

import httpx
import structlog

from ..schemas.sync import NetworkState

logger = structlog.get_logger(__name__)

NetworkCallback = Callable[[NetworkState], Union[None, Awaitable[None]]]


class ConnectivityObserver(Protocol):
    def current(self) -> NetworkState: ...

    def subscribe(self, callback: NetworkCallback) -> Callable[[], None]: ...


class ManualConnectivity:
    """Connectivity state pushed in from outside."""

    def __init__(self, is_online: bool = True, network_type: str = "unknown"):
        self._state = NetworkState(is_online=is_online, type=network_type, is_internet_reachable=is_online)
        self._callbacks: List[NetworkCallback] = []

    def current(self) -> NetworkState:
        return self._state

    def subscribe(self, callback: NetworkCallback) -> Callable[[], None]:
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    async def set_state(self, is_online: bool, network_type: Optional[str] = None) -> NetworkState:
        """Record a new state and notify subscribers if it changed."""
        previous = self._state
        self._state = NetworkState(
            is_online=is_online,
            type=network_type or previous.type,
            is_internet_reachable=is_online,
        )
        if previous.is_online != is_online:
            logger.info("connectivity_changed", is_online=is_online, type=self._state.type)
            for callback in list(self._callbacks):
                result = callback(self._state)
                if inspect.isawaitable(result):
                    await result
        return self._state


class StaticConnectivity(ManualConnectivity):
    """Always reports the state it was built with; handy for wiring and tests."""

    async def set_state(self, is_online: bool, network_type: Optional[str] = None) -> NetworkState:
        return self._state


class HttpConnectivityProbe(ManualConnectivity):
    """
    Polls a health URL and feeds the result into set_state().

    Any HTTP response counts as online; transport errors count as offline.
    """

    def __init__(self, url: str, interval_s: float = 30.0, timeout_s: float = 5.0, client: Optional[httpx.AsyncClient] = None):
        super().__init__(is_online=False, network_type="unknown")
        self.url = url
        self.interval_s = interval_s
        self._client = client or httpx.AsyncClient(timeout=timeout_s)
        self._owns_client = client is None
        self._task: Optional[asyncio.Task] = None

    async def probe(self) -> NetworkState:
        try:
            await self._client.get(self.url)
            online = True
        except httpx.HTTPError as e:
            logger.warning("connectivity_probe_failed", url=self.url, error=str(e))
            online = False
        return await self.set_state(online)

    async def _run(self) -> None:
        while True:
            await self.probe()
            await asyncio.sleep(self.interval_s)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._owns_client:
            await self._client.aclose()
