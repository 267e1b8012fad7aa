"""
VaultSync Server - Sync Cursor Model

Decoded position in a user's change stream: the ordering key of the last
change delivered. A cursor with no timestamp is the beginning of time.
"""

from datetime import datetime
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class SyncCursor:
    """Position after (modified_at_utc, version_id, record_id)"""
    user_id: int
    modified_at_utc: Optional[datetime] = None
    version_id: int = 0
    record_id: int = 0

    def IsBeginning(self) -> bool:
        """True for a full-resync cursor"""
        return self.modified_at_utc is None

    def SortKey(self) -> tuple:
        """Comparable ordering key; the beginning sorts first"""
        if self.modified_at_utc is None:
            return (0, None, 0, 0)
        return (1, self.modified_at_utc, self.version_id, self.record_id)
