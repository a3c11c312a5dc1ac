"""Exceptions raised by the sync engine and its collaborators."""

from typing import Optional


class SyncError(Exception):
    """Base class for all push sync agent errors."""


class TransientNetworkError(SyncError):
    """Timeout, refused connection or DNS failure. Retried by the next poll tick."""


class ProtocolError(SyncError):
    """Non-success HTTP status or a response body that cannot be understood."""

    def __init__(self, message: str, status_code: Optional[int] = None, detail: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class PermissionDenied(SyncError):
    """Alert capability refused. Disables local alerts, never polling."""
