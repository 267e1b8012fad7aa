"""
VaultSync Server - Stale Cursor Error

Raised when a cursor points before the user's retained change history.
The client must fall back to a full resync.
"""

from datetime import datetime
from typing import Optional

from exceptions.vaultsync_error import VaultSyncError


class StaleCursorError(VaultSyncError):
    """Cursor cannot be resumed incrementally."""

    kind = "stale_cursor"

    def __init__(self, user_id: int, cursor_timestamp: Optional[datetime],
                 horizon: Optional[datetime], reason: str = "history purged"):
        self.user_id = user_id
        self.cursor_timestamp = cursor_timestamp
        self.horizon = horizon
        self.reason = reason
        super().__init__(f"Cursor cannot be resumed ({reason}); full resync required")

    def ToDict(self) -> dict:
        result = super().ToDict()
        result.update({
            "full_resync_required": True,
            "reason": self.reason,
            "cursor_timestamp": self.cursor_timestamp.isoformat() if self.cursor_timestamp else None,
            "horizon": self.horizon.isoformat() if self.horizon else None
        })
        return result
