"""
VaultSync Server - Storage Error

Raised when blob storage I/O keeps failing after bounded retries.
"""

from exceptions.vaultsync_error import VaultSyncError


class StorageError(VaultSyncError):
    """Generic storage operation failure."""

    kind = "storage_error"

    def __init__(self, operation: str, key: str, cause: Exception = None):
        self.operation = operation
        self.key = key
        self.cause = cause
        super().__init__(f"Storage {operation} failed for {key}: {cause}")

    def ToDict(self) -> dict:
        result = super().ToDict()
        result.update({"operation": self.operation, "key": self.key})
        return result
