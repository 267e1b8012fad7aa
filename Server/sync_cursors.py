"""
VaultSync Server - Sync Cursor Tokens

Cursors are opaque to clients: a signed token carrying the ordering key of
the last change delivered. They are signed with the persistent
cursor_secret setting, so they stay valid across server restarts and a
client cannot forge a position in another user's stream.
"""

import logging
from datetime import datetime
from typing import Optional

from jose import JWTError, jwt

from exceptions import StaleCursorError
from managers.database_manager import DatabaseManager
from models.infrastructure import SyncCursor
from timestamps import AsUtc

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

# Sorts after every real version/record at a given timestamp
_AFTER_ALL_VERSIONS = 2 ** 31 - 1
_AFTER_ALL_RECORDS = 2 ** 63 - 1


def _GetSecret(db_manager: DatabaseManager) -> str:
    secret = db_manager.GetSetting("cursor_secret")
    if not secret:
        raise RuntimeError("cursor_secret setting missing; database not initialized")
    return secret


def BeginningCursor(user_id: int) -> SyncCursor:
    """Cursor positioned before all of a user's changes (full resync)"""
    return SyncCursor(user_id=user_id)


def CursorFromTimestamp(user_id: int, last_seen_utc: datetime) -> SyncCursor:
    """
    Reconstruct a cursor from a user and the last ModifiedAt they have seen

    Args:
        user_id: User ID
        last_seen_utc: Timestamp of the last change the device processed

    Returns:
        SyncCursor: Cursor positioned after every change at that timestamp
    """
    return SyncCursor(
        user_id=user_id,
        modified_at_utc=AsUtc(last_seen_utc),
        version_id=_AFTER_ALL_VERSIONS,
        record_id=_AFTER_ALL_RECORDS
    )


def EncodeCursor(db_manager: DatabaseManager, cursor: SyncCursor) -> str:
    """
    Encode a cursor as a signed opaque token

    Args:
        db_manager: DatabaseManager instance (for the signing secret)
        cursor: Cursor to encode

    Returns:
        str: Cursor token
    """
    claims = {
        "uid": cursor.user_id,
        "ts": cursor.modified_at_utc.isoformat() if cursor.modified_at_utc else None,
        "v": cursor.version_id,
        "r": cursor.record_id
    }
    return jwt.encode(claims, _GetSecret(db_manager), algorithm=ALGORITHM)


def DecodeCursor(db_manager: DatabaseManager, token: Optional[str], user_id: int) -> SyncCursor:
    """
    Decode and validate a cursor token

    An empty token means the beginning of time.

    Args:
        db_manager: DatabaseManager instance
        token: Cursor token from the client
        user_id: User the cursor must belong to

    Returns:
        SyncCursor: Decoded cursor

    Raises:
        StaleCursorError: If the token is malformed, forged or belongs to another user
    """
    if not token:
        return BeginningCursor(user_id)

    try:
        claims = jwt.decode(token, _GetSecret(db_manager), algorithms=[ALGORITHM])
    except JWTError as e:
        logger.warning(f"Rejected invalid cursor for user {user_id}: {str(e)}")
        raise StaleCursorError(user_id, None, None, reason="invalid cursor")

    if claims.get("uid") != user_id:
        logger.warning(f"Rejected cursor issued to user {claims.get('uid')} presented by user {user_id}")
        raise StaleCursorError(user_id, None, None, reason="cursor belongs to another user")

    timestamp = claims.get("ts")
    return SyncCursor(
        user_id=user_id,
        modified_at_utc=AsUtc(datetime.fromisoformat(timestamp)) if timestamp else None,
        version_id=int(claims.get("v", 0)),
        record_id=int(claims.get("r", 0))
    )


def CursorAfter(user_id: int, modified_at_utc: datetime, version_id: int, record_id: int) -> SyncCursor:
    """Cursor positioned just after the given change"""
    return SyncCursor(
        user_id=user_id,
        modified_at_utc=AsUtc(modified_at_utc),
        version_id=version_id,
        record_id=record_id
    )
