"""
Remote reconciliation.

A reconciler receives the batch of unsynced rows and either accepts all of it
or raises SyncFailure. Nothing is marked synced locally until push() returns.
"""
import asyncio
from typing import Optional, Protocol

import httpx
import structlog
from fastapi.encoders import jsonable_encoder

from ..errors import SyncFailure
from ..schemas.sync import SyncBatch

logger = structlog.get_logger(__name__)


class RemoteReconciler(Protocol):
    async def push(self, batch: SyncBatch) -> None: ...


class SimulatedRemoteReconciler:
    """Stand-in remote that accepts every batch after a fixed delay."""

    def __init__(self, delay_s: float = 2.0, fail: bool = False):
        self.delay_s = delay_s
        self.fail = fail
        self.pushed = []

    async def push(self, batch: SyncBatch) -> None:
        await asyncio.sleep(self.delay_s)
        if self.fail:
            raise SyncFailure("Simulated remote rejected the batch", detail={"size": batch.size})
        self.pushed.append(batch)
        logger.info("remote_batch_accepted", size=batch.size, simulated=True)


class HttpRemoteReconciler:
    """POSTs the batch as JSON to the configured sync endpoint."""

    def __init__(self, url: str, timeout_s: float = 30.0, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self._client = client or httpx.AsyncClient(timeout=timeout_s)
        self._owns_client = client is None

    async def push(self, batch: SyncBatch) -> None:
        body = jsonable_encoder({
            "schedules": [record.payload for record in batch.schedules],
            "activities": [record.payload for record in batch.activities],
        })
        try:
            response = await self._client.post(self.url, json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise SyncFailure(
                f"Remote rejected sync batch: {e.response.status_code}",
                detail={"status_code": e.response.status_code},
            ) from e
        except httpx.HTTPError as e:
            raise SyncFailure(f"Remote sync request failed: {e}") from e
        logger.info("remote_batch_accepted", size=batch.size, url=self.url)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
