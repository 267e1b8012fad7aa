"""
VaultSync Server - Quota Exceeded Error

Raised when a write would push a user past their storage limit.
"""

from exceptions.vaultsync_error import VaultSyncError


class QuotaExceededError(VaultSyncError):
    """Admission denied by the quota ledger."""

    kind = "quota_exceeded"

    def __init__(self, user_id: int, used_bytes: int, limit_bytes: int, required_bytes: int):
        self.user_id = user_id
        self.used_bytes = used_bytes
        self.limit_bytes = limit_bytes
        self.required_bytes = required_bytes

        available = max(0, limit_bytes - used_bytes)
        super().__init__(
            f"Quota exceeded: need {required_bytes} bytes, "
            f"only {available} bytes available "
            f"(limit: {limit_bytes}, used: {used_bytes})"
        )

    def ToDict(self) -> dict:
        result = super().ToDict()
        result.update({
            "user_id": self.user_id,
            "used": self.used_bytes,
            "limit": self.limit_bytes,
            "required": self.required_bytes
        })
        return result
