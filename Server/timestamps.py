"""
VaultSync Server - Timestamp Helpers

SQLite hands DateTime values back without tzinfo. Every timestamp in the
server is UTC, so naive values are tagged as UTC on the way out.
"""

from datetime import datetime, timezone
from typing import Optional


def UtcNow() -> datetime:
    """Current time as an aware UTC datetime"""
    return datetime.now(timezone.utc)


def AsUtc(value: Optional[datetime]) -> Optional[datetime]:
    """Tag a naive datetime as UTC; aware values are converted to UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
