"""
VaultSync Server - Sync Session Model

Dataclass for one device's reconciliation pass. Sessions live in memory
only; the cursor token is the only state a device needs to resume.
"""

import enum
import threading
from datetime import datetime, timedelta
from dataclasses import dataclass, field
from typing import Optional

from timestamps import UtcNow


class SessionState(str, enum.Enum):
    """Lifecycle: Created -> Active -> (Idle -> Active | Expired)"""
    CREATED = "created"
    ACTIVE = "active"
    IDLE = "idle"
    EXPIRED = "expired"


@dataclass
class SyncSession:
    """Represents an active sync session"""
    session_id: str
    user_id: int
    device_id: str
    cursor: str  # Acknowledged cursor token
    created_at_utc: datetime
    last_activity_utc: datetime
    idle_after_seconds: int
    expire_after_seconds: int
    pending_cursor: Optional[str] = None  # Issued by the last batch, not yet acknowledged
    full_resync_required: bool = False
    touched: bool = False
    # Guards cursor, pending_cursor and full_resync_required
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def State(self, now: Optional[datetime] = None) -> SessionState:
        """Derive the lifecycle state from the last activity time"""
        now = now or UtcNow()
        inactive = now - self.last_activity_utc
        if inactive >= timedelta(seconds=self.expire_after_seconds):
            return SessionState.EXPIRED
        if inactive >= timedelta(seconds=self.idle_after_seconds):
            return SessionState.IDLE
        if not self.touched:
            return SessionState.CREATED
        return SessionState.ACTIVE

    def IsExpired(self, now: Optional[datetime] = None) -> bool:
        """Check if session has expired"""
        return self.State(now) == SessionState.EXPIRED

    def Touch(self, now: Optional[datetime] = None) -> None:
        """Record activity; an Idle session becomes Active again"""
        self.last_activity_utc = now or UtcNow()
        self.touched = True
