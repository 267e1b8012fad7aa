"""
VaultSync Server - Conflict Detected

Raised by the version store when a write names a parent version that is
no longer the file's current version.
"""

from exceptions.vaultsync_error import VaultSyncError


class ConflictDetected(VaultSyncError):
    """Optimistic concurrency check failed for a file."""

    kind = "conflict"

    def __init__(self, file_id: int, expected_parent_version_id: int, current_version_id: int):
        self.file_id = file_id
        self.expected_parent_version_id = expected_parent_version_id
        self.current_version_id = current_version_id
        super().__init__(
            f"File {file_id} has moved on: parent version {expected_parent_version_id} "
            f"is not current version {current_version_id}"
        )

    def ToDict(self) -> dict:
        result = super().ToDict()
        result.update({
            "file_id": self.file_id,
            "parent_version_id": self.expected_parent_version_id,
            "current_version_id": self.current_version_id
        })
        return result
