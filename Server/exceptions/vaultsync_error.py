"""
VaultSync Server - Base Error

Base exception class for all synchronization errors.
"""


class VaultSyncError(Exception):
    """Base exception for sync subsystem errors."""

    kind = "sync_error"

    def ToDict(self) -> dict:
        """Structured form returned to API callers"""
        return {"error": self.kind, "message": str(self)}
