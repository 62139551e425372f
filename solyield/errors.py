"""
Domain errors for scheduling and sync.

Validation and state errors are local: the immediate caller handles them.
Offline and sync failures are recoverable and retried by the orchestrator.
"""
from typing import Optional


class SolYieldError(Exception):
    """Base class for every error raised by the scheduling core."""

    status_code = 400

    def __init__(self, message: str, *, detail: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def to_dict(self) -> dict:
        data = {"error": type(self).__name__, "message": self.message}
        if self.detail:
            data["detail"] = self.detail
        return data


class ValidationError(SolYieldError):
    """Invalid entity data, e.g. an unlinked visit without a reason."""

    status_code = 422


class NotFoundError(SolYieldError):
    """Referenced id does not exist or is already archived."""

    status_code = 404


class InvalidStateError(SolYieldError):
    """Illegal transition, or an attempt to mutate a seeded record."""

    status_code = 409


class OfflineError(SolYieldError):
    """Sync attempted with no connectivity."""

    status_code = 503


class SyncFailure(SolYieldError):
    """The remote reconciliation step failed while online."""

    status_code = 502
