"""
VaultSync Server - Integrity Error

Raised when content does not match its expected checksum.
"""

from typing import Optional

from exceptions.vaultsync_error import VaultSyncError


class IntegrityError(VaultSyncError):
    """Checksum mismatch. The write is rejected with no state change."""

    kind = "integrity_error"

    def __init__(self, expected_hash: str, actual_hash: str, file_id: Optional[int] = None):
        self.file_id = file_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Checksum mismatch (expected {expected_hash}, got {actual_hash})"
        )

    def ToDict(self) -> dict:
        result = super().ToDict()
        result.update({
            "file_id": self.file_id,
            "expected_hash": self.expected_hash,
            "actual_hash": self.actual_hash
        })
        return result
