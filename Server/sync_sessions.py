"""
VaultSync Server - Sync Session Management

One session per device reconciliation pass. Sessions are stored in memory
only; the acknowledged cursor token is everything a device needs to
resume after a restart.

Delivery is at-least-once: get-changes records the cursor of the batch it
returned as pending, and the session cursor only moves when the device
acknowledges it. A dropped response therefore redelivers the same batch.
"""

import secrets
import logging
import threading
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from checksums import ComputeContentHash, VerifyContent
from conflict_resolver import HandleDivergentSubmission
from exceptions import ConflictDetected, NotFoundError, StaleCursorError
from managers.blob_manager import BlobManager
from managers.database_manager import DatabaseManager
from models.infrastructure import ChangeEntry, SubmitResult, SubmitStatus, SyncSession
from quota_ledger import QuotaReservation
from sync_cursors import BeginningCursor, CursorFromTimestamp, DecodeCursor, EncodeCursor
from timestamps import UtcNow
import version_store

logger = logging.getLogger(__name__)

# In-memory session storage
_sessions: Dict[str, SyncSession] = {}
_sessions_lock = threading.Lock()


# ==================== Lifecycle ====================

def InitializeSession(db_manager: DatabaseManager, user_id: int, device_id: str,
                      cursor_token: Optional[str] = None,
                      last_seen_utc: Optional[datetime] = None) -> SyncSession:
    """
    Start a reconciliation pass for a device

    Without a cursor the session starts at the beginning of time. A
    previously issued cursor resumes where it left off. A device that lost
    its token can instead give the ModifiedAt of the last change it
    processed, and the cursor is rebuilt from that. If the resume point
    cannot be used (history purged, or not a valid cursor for this user)
    the session starts from the beginning with full_resync_required set.

    Args:
        db_manager: DatabaseManager instance
        user_id: Authenticated user
        device_id: Client device identifier
        cursor_token: Cursor from a previous session, if any
        last_seen_utc: Last change timestamp the device saw; used when no
            cursor_token is given

    Returns:
        SyncSession: The new session
    """
    if not device_id or not device_id.strip():
        raise ValueError("device_id must not be empty")

    CleanupExpiredSessions()

    full_resync_required = False
    cursor = BeginningCursor(user_id)
    if cursor_token or last_seen_utc is not None:
        try:
            if cursor_token:
                cursor = DecodeCursor(db_manager, cursor_token, user_id)
            else:
                cursor = CursorFromTimestamp(user_id, last_seen_utc)
            version_store.CheckCursor(db_manager, cursor)
        except StaleCursorError as e:
            logger.warning(f"Device {device_id} of user {user_id} must fully resync: {e.reason}")
            cursor = BeginningCursor(user_id)
            full_resync_required = True

    now = UtcNow()
    session = SyncSession(
        session_id=secrets.token_urlsafe(24),
        user_id=user_id,
        device_id=device_id,
        cursor=EncodeCursor(db_manager, cursor),
        created_at_utc=now,
        last_activity_utc=now,
        idle_after_seconds=db_manager.GetIntSetting("session_idle_seconds", 300),
        expire_after_seconds=db_manager.GetIntSetting("session_ttl_seconds", 3600),
        full_resync_required=full_resync_required
    )

    with _sessions_lock:
        _sessions[session.session_id] = session

    logger.info(
        f"Sync session {session.session_id[:8]} created for user {user_id} device {device_id} "
        f"({'full resync' if cursor.IsBeginning() else 'resuming'})"
    )
    return session


def GetSession(session_id: str, user_id: Optional[int] = None) -> SyncSession:
    """
    Get a live session and record activity on it

    Raises:
        NotFoundError: If the session is unknown, expired or owned by another user
    """
    with _sessions_lock:
        session = _sessions.get(session_id)
        if session is None or (user_id is not None and session.user_id != user_id):
            raise NotFoundError("session", session_id)

        if session.IsExpired():
            logger.info(f"Sync session {session_id[:8]} expired for user {session.user_id}")
            del _sessions[session_id]
            raise NotFoundError("session", session_id)

        session.Touch()
        return session


def EndSession(session_id: str, user_id: Optional[int] = None) -> None:
    """Discard a session before its idle timeout"""
    with _sessions_lock:
        session = _sessions.get(session_id)
        if session is None or (user_id is not None and session.user_id != user_id):
            raise NotFoundError("session", session_id)
        del _sessions[session_id]
    logger.info(f"Sync session {session_id[:8]} ended by device {session.device_id}")


def CleanupExpiredSessions() -> int:
    """
    Remove all expired sessions from memory

    Returns:
        Number of sessions cleaned up
    """
    now = UtcNow()
    with _sessions_lock:
        expired_ids = [
            session_id
            for session_id, session in _sessions.items()
            if session.IsExpired(now)
        ]
        for session_id in expired_ids:
            del _sessions[session_id]

    if expired_ids:
        logger.info(f"Cleaned up {len(expired_ids)} expired sync sessions")

    return len(expired_ids)


# ==================== Change Delivery ====================

def GetChanges(db_manager: DatabaseManager, session_id: str, user_id: int,
               cursor_token: Optional[str] = None,
               limit: Optional[int] = None) -> Tuple[List[ChangeEntry], str, bool]:
    """
    Get the next batch of changes for a session

    Reads after the acknowledged cursor, or after cursor_token when the
    device names its own resume point. The session cursor is not moved.

    Returns:
        (entries, next_cursor, has_more)

    Raises:
        NotFoundError: If the session is not live
        StaleCursorError: If the resume point is older than retained history
    """
    session = GetSession(session_id, user_id)
    batch_size = limit or db_manager.GetIntSetting("sync_batch_size", 500)

    start_token = cursor_token or session.cursor
    start = DecodeCursor(db_manager, start_token, user_id)

    entries = version_store.ListChangesSince(db_manager, user_id, start, batch_size + 1)
    has_more = len(entries) > batch_size
    entries = entries[:batch_size]

    next_cursor = entries[-1].cursor if entries else start_token
    with session.lock:
        session.pending_cursor = next_cursor

    logger.debug(
        f"Session {session_id[:8]} delivered {len(entries)} changes to device {session.device_id}"
        f"{' (more pending)' if has_more else ''}"
    )
    return entries, next_cursor, has_more


def AcknowledgeChanges(db_manager: DatabaseManager, session_id: str, user_id: int,
                       cursor_token: str) -> SyncSession:
    """
    Record that the device has durably processed changes up to a cursor

    The session cursor never moves backwards.

    Raises:
        NotFoundError: If the session is not live
        StaleCursorError: If the token is not a valid cursor for this user
    """
    session = GetSession(session_id, user_id)
    acknowledged = DecodeCursor(db_manager, cursor_token, user_id)

    with session.lock:
        current = DecodeCursor(db_manager, session.cursor, user_id)
        if acknowledged.SortKey() > current.SortKey():
            session.cursor = cursor_token
            session.full_resync_required = False
            logger.debug(f"Session {session_id[:8]} cursor advanced")

        if session.pending_cursor == cursor_token:
            session.pending_cursor = None

    return session


# ==================== Submission ====================

def SubmitChange(db_manager: DatabaseManager, blob_manager: BlobManager, session_id: str, user_id: int,
                 file_id: Optional[int], parent_version_id: Optional[int], content: bytes,
                 declared_hash: Optional[str] = None, name: Optional[str] = None,
                 parent_folder_id: Optional[int] = None) -> SubmitResult:
    """
    Apply a device's local change

    Order: checksum verification, quota reservation, content storage and
    version commit. The reservation is released again if the commit does
    not happen. A stale parent is handed to the conflict resolver.

    Args:
        db_manager: DatabaseManager instance
        blob_manager: BlobManager instance
        session_id: Live sync session
        user_id: Authenticated user
        file_id: Existing file, or None to create a file named `name`
        parent_version_id: Version the change was derived from (None/0 for the first)
        content: New content
        declared_hash: Hash the device computed, verified before anything is written
        name: Name for a new file
        parent_folder_id: Folder for a new file

    Returns:
        SubmitResult: COMMITTED, UNCHANGED or CONFLICT

    Raises:
        IntegrityError: If declared_hash does not match the content
        QuotaExceededError: If the change does not fit
        NotFoundError: Unknown session, file or parent version
    """
    session = GetSession(session_id, user_id)

    content_hash = ComputeContentHash(content)
    if declared_hash:
        VerifyContent(content, declared_hash, file_id)
    size_bytes = len(content)

    if file_id is None:
        return _SubmitNewFile(db_manager, blob_manager, session, content, content_hash,
                              name, parent_folder_id)

    file = version_store.GetFile(db_manager, file_id, owner_id=user_id)
    parent = parent_version_id or 0
    if parent > file.current_version_id:
        raise NotFoundError("version", f"{file_id}/{parent}")

    if parent == file.current_version_id:
        current = None
        if parent > 0:
            current = version_store.GetVersion(db_manager, file_id, parent)
            if not current.is_tombstone and current.content_hash == content_hash:
                return SubmitResult(status=SubmitStatus.UNCHANGED, version=current)

        try:
            with QuotaReservation(db_manager, user_id, size_bytes - version_store.LiveSize(current)) as reservation:
                blob_manager.Put(content_hash, content)
                version = version_store.CreateVersion(
                    db_manager, file_id, parent, content_hash, size_bytes, session.device_id,
                    reservation=reservation
                )
            return SubmitResult(status=SubmitStatus.COMMITTED, version=version)
        except ConflictDetected:
            logger.info(f"Submission for file {file_id} lost a race; checking divergence")
    else:
        blob_manager.Put(content_hash, content)

    return HandleDivergentSubmission(
        db_manager, file_id, user_id, parent, content_hash, size_bytes, session.device_id
    )


def _SubmitNewFile(db_manager: DatabaseManager, blob_manager: BlobManager, session: SyncSession,
                   content: bytes, content_hash: str, name: Optional[str],
                   parent_folder_id: Optional[int]) -> SubmitResult:
    if not name:
        raise ValueError("name is required when creating a file")

    with QuotaReservation(db_manager, session.user_id, len(content)) as reservation:
        blob_manager.Put(content_hash, content)
        file = version_store.CreateFile(db_manager, session.user_id, name, parent_folder_id)
        try:
            version = version_store.CreateVersion(
                db_manager, file.file_id, 0, content_hash, len(content), session.device_id,
                reservation=reservation
            )
        except Exception:
            version_store.DeleteEmptyFile(db_manager, file.file_id)
            raise

    return SubmitResult(status=SubmitStatus.COMMITTED, version=version)
