"""Sync agent exception types.

Convention:
- ``AuthError``: credentials were rejected or no token is available. The user
  has to log in again; nothing is retried.
- ``FetchError``: a listing or read failed. Callers treat the remote state as
  unknown and must never infer deletions from it.
- ``TransferError`` subclasses: a single upload, delete or download failed.
  The index entry for that file is left untouched and the rest of the batch
  continues.

HTTP client failures (connection refused, timeouts, undecodable bodies) are raised
as the error kind of the operation that hit them, chained from the ``httpx`` error.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for all sync agent errors."""


class AuthError(SyncError):
    """Raised when login fails or the server rejects the bearer token."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class NotAuthenticatedError(AuthError):
    """Raised when a protected call is attempted without a token."""

    def __init__(self) -> None:
        super().__init__("Not authenticated")


class FetchError(SyncError):
    """Raised when the remote listing or user profile cannot be read."""


class TransferError(SyncError):
    """Raised when a single-file operation fails."""

    action = "transfer"

    def __init__(self, name: str, detail: str) -> None:
        super().__init__(f"Failed to {self.action} {name}: {detail}")
        self.name = name
        self.detail = detail


class UploadError(TransferError):
    action = "upload"


class DeleteError(TransferError):
    action = "delete"


class DownloadError(TransferError):
    action = "download"

    @property
    def key(self) -> str:
        return self.name


class SyncInProgressError(SyncError):
    """Raised when a manual sync is requested while another run is active."""


class CooldownError(SyncError):
    """Raised when a manual sync is requested before the cooldown elapsed."""

    def __init__(self, retry_after_ms: int) -> None:
        seconds = max(retry_after_ms // 1000, 1)
        super().__init__(f"Manual sync available again in {seconds}s")
        self.retry_after_ms = retry_after_ms
