"""
Exception hierarchy shared by the remote gateway and the sync engines.
"""

from __future__ import annotations


class ExchangeSyncError(Exception):
    """Base class for all exchange_sync errors."""

    pass


class RemoteStoreError(ExchangeSyncError):
    """
    Raised when a remote store operation fails.

    Attributes:
        status: HTTP status code returned by the server, if any
        code: EWS response code (e.g. "ErrorServerBusy"), if any
    """

    def __init__(
        self, message: str, status: int | None = None, code: str | None = None
    ):
        super().__init__(message)
        self.status = status
        self.code = code

    def __repr__(self) -> str:
        return (
            f"RemoteStoreError({str(self)!r}, status={self.status!r}, "
            f"code={self.code!r})"
        )


class AuthenticationError(ExchangeSyncError):
    """Raised when an authorization header cannot be produced for an account."""

    pass


class SyncCancelledError(ExchangeSyncError):
    """Raised inside an engine when its running sync has been cancelled."""

    pass


__all__ = [
    "ExchangeSyncError",
    "RemoteStoreError",
    "AuthenticationError",
    "SyncCancelledError",
]
