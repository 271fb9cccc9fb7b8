"""Exception types raised by the sync engine."""


class FieldSyncError(Exception):
    """Base class for all sync engine errors."""


class PreconditionError(FieldSyncError):
    """A required local input is missing or invalid.

    Raised before anything is persisted. The message is meant to be shown
    to the user as-is.
    """


class StoreError(FieldSyncError):
    """Local storage failed even after recreating its schema."""


class RemoteAPIError(FieldSyncError):
    """The remote API answered with a non-success status."""

    def __init__(self, operation: str, status_code: int, body: str = "") -> None:
        self.operation = operation
        self.status_code = status_code
        self.body = body
        super().__init__(f"{operation} failed: {status_code} - {body[:500]}")

    @property
    def is_transient(self) -> bool:
        """Server errors and throttling are worth retrying."""
        return self.status_code >= 500 or self.status_code == 429


class UploadTargetError(FieldSyncError):
    """The remote API issued an upload target without a usable URL."""
