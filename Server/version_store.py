"""
VaultSync Server - Version Store

Per-file version history with optimistic concurrency:
- Versions are immutable rows; only File.current_version_id moves
- The pointer moves by compare-and-swap on the expected parent version
- Deletions are tombstone versions, so they flow through the change feed
- The change feed is ordered by (modified_at_utc, version_id, record_id)
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import and_, delete, func, or_, update

from exceptions import ConflictDetected, NotFoundError, StaleCursorError
from managers.database_manager import DatabaseManager
from models.database import Conflict, File, FileVersion, SyncHorizon
from models.infrastructure import ChangeEntry, ResolutionState, SyncCursor
from quota_ledger import ApplyCommittedWrite, HeldBytes, QuotaReservation
from sync_cursors import CursorAfter, EncodeCursor
from timestamps import AsUtc, UtcNow

logger = logging.getLogger(__name__)

TOMBSTONE_RETRY_ATTEMPTS = 3
TIMESTAMP_STEP = timedelta(microseconds=1)


def LiveSize(version: Optional[FileVersion]) -> int:
    """Bytes a version counts against quota while it is current"""
    if version is None or version.is_tombstone:
        return 0
    return version.size_bytes


# ==================== Lookups ====================

def GetFile(db_manager: DatabaseManager, file_id: int, owner_id: Optional[int] = None) -> File:
    """
    Get a file, optionally checking its owner

    Raises:
        NotFoundError: If the file does not exist or belongs to someone else
    """
    session = db_manager.GetSession()
    try:
        file = session.query(File).filter(File.file_id == file_id).first()
        if file is None or (owner_id is not None and file.owner_id != owner_id):
            raise NotFoundError("file", file_id)
        return file
    finally:
        session.close()


def GetVersion(db_manager: DatabaseManager, file_id: int, version_id: int) -> FileVersion:
    """
    Get one version of a file

    Raises:
        NotFoundError: If the version does not exist (or was garbage-collected)
    """
    session = db_manager.GetSession()
    try:
        version = session.query(FileVersion).filter(
            FileVersion.file_id == file_id,
            FileVersion.version_id == version_id
        ).first()
        if version is None:
            raise NotFoundError("version", f"{file_id}/{version_id}")
        return version
    finally:
        session.close()


def GetCurrentVersion(db_manager: DatabaseManager, file_id: int) -> FileVersion:
    """
    Get the version a file's pointer currently references

    Returns the tombstone version for a deleted file.

    Raises:
        NotFoundError: If the file is unknown or has no committed version
    """
    file = GetFile(db_manager, file_id)
    if file.current_version_id == 0:
        raise NotFoundError("version", f"{file_id}/current")
    return GetVersion(db_manager, file_id, file.current_version_id)


def ListVersions(db_manager: DatabaseManager, file_id: int) -> List[FileVersion]:
    """Retained history of a file, newest first"""
    session = db_manager.GetSession()
    try:
        return session.query(FileVersion).filter(
            FileVersion.file_id == file_id
        ).order_by(FileVersion.version_id.desc()).all()
    finally:
        session.close()


def ListFiles(db_manager: DatabaseManager, owner_id: int,
              include_deleted: bool = False) -> List[Tuple[File, Optional[FileVersion]]]:
    """
    List a user's files with their current versions

    Args:
        db_manager: DatabaseManager instance
        owner_id: Owner of the files
        include_deleted: Include tombstoned files still within retention

    Returns:
        List of (File, current FileVersion or None) ordered by name
    """
    session = db_manager.GetSession()
    try:
        query = session.query(File, FileVersion).outerjoin(
            FileVersion,
            and_(FileVersion.file_id == File.file_id, FileVersion.version_id == File.current_version_id)
        ).filter(File.owner_id == owner_id)

        if not include_deleted:
            query = query.filter(File.is_deleted == False)

        return [(file, version) for file, version in query.order_by(File.name, File.file_id).all()]
    finally:
        session.close()


# ==================== Writes ====================

def CreateFile(db_manager: DatabaseManager, owner_id: int, name: str,
               parent_folder_id: Optional[int] = None,
               forked_from_file_id: Optional[int] = None) -> File:
    """
    Create a File with no versions yet (current_version_id = 0)

    Args:
        db_manager: DatabaseManager instance
        owner_id: Owning user
        name: File name
        parent_folder_id: Containing folder, if any
        forked_from_file_id: Original file when this is a conflicted copy

    Returns:
        File: The new file
    """
    if not name or not name.strip():
        raise ValueError("File name must not be empty")

    session = db_manager.GetSession()
    try:
        file = File(
            owner_id=owner_id,
            name=name,
            parent_folder_id=parent_folder_id,
            is_deleted=False,
            current_version_id=0,
            forked_from_file_id=forked_from_file_id,
            created_at_utc=UtcNow()
        )
        session.add(file)
        session.commit()
        logger.info(f"Created file {file.file_id} '{name}' for user {owner_id}")
        return file
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def DeleteEmptyFile(db_manager: DatabaseManager, file_id: int) -> bool:
    """
    Remove a file row that never received a version

    Used to undo CreateFile when the first write is refused.

    Returns:
        bool: True if the row was removed
    """
    session = db_manager.GetSession()
    try:
        removed = session.query(File).filter(
            File.file_id == file_id,
            File.current_version_id == 0
        ).delete(synchronize_session=False)
        session.commit()
        if removed:
            logger.info(f"Discarded empty file {file_id}")
        return bool(removed)
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def CreateVersion(db_manager: DatabaseManager, file_id: int, parent_version_id: Optional[int],
                  content_hash: Optional[str], size_bytes: int, origin_device_id: str,
                  is_tombstone: bool = False, reservation: Optional[QuotaReservation] = None,
                  resolves_conflict_id: Optional[str] = None) -> FileVersion:
    """
    Append a version and make it current, if parent_version_id is still current

    The pointer swap, the version insert and the owner's quota update share
    one transaction. The modification timestamp is assigned after the swap,
    while the write lock is held, so it is strictly increasing per user.

    Args:
        db_manager: DatabaseManager instance
        file_id: File to write
        parent_version_id: Version the write was derived from (None/0 for the first)
        content_hash: SHA-256 of the content (None for tombstones)
        size_bytes: Content size
        origin_device_id: Device that produced the version
        is_tombstone: True for a deletion marker
        reservation: Open QuotaReservation for this write; settled by the commit
        resolves_conflict_id: Pending conflict this write resolves; removed in
            the same transaction

    Returns:
        FileVersion: The committed version

    Raises:
        ConflictDetected: If parent_version_id is not the current version
        NotFoundError: If the file does not exist, or the conflict is no
            longer pending
    """
    parent = parent_version_id or 0
    new_version_id = parent + 1
    held_bytes = HeldBytes(reservation)

    session = db_manager.GetSession()
    try:
        result = session.execute(
            update(File)
            .where(File.file_id == file_id, File.current_version_id == parent)
            .values(current_version_id=new_version_id)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            session.rollback()
            file = session.query(File).filter(File.file_id == file_id).first()
            if file is None:
                raise NotFoundError("file", file_id)
            logger.info(
                f"Version check failed for file {file_id}: parent {parent}, "
                f"current {file.current_version_id}"
            )
            raise ConflictDetected(file_id, parent, file.current_version_id)

        if resolves_conflict_id is not None:
            removed = session.execute(
                delete(Conflict)
                .where(
                    Conflict.conflict_id == resolves_conflict_id,
                    Conflict.resolution_state == ResolutionState.PENDING.value
                )
                .execution_options(synchronize_session=False)
            )
            if removed.rowcount == 0:
                session.rollback()
                raise NotFoundError("conflict", resolves_conflict_id)

        file = session.query(File).filter(File.file_id == file_id).one()

        replaced = None
        if parent > 0:
            replaced = session.query(FileVersion).filter(
                FileVersion.file_id == file_id,
                FileVersion.version_id == parent
            ).first()

        now = UtcNow()
        latest = session.query(func.max(FileVersion.modified_at_utc)).filter(
            FileVersion.owner_id == file.owner_id
        ).scalar()
        if latest is not None and AsUtc(latest) >= now:
            now = AsUtc(latest) + TIMESTAMP_STEP

        version = FileVersion(
            file_id=file_id,
            version_id=new_version_id,
            owner_id=file.owner_id,
            parent_version_id=parent if parent > 0 else None,
            content_hash=content_hash,
            size_bytes=0 if is_tombstone else size_bytes,
            modified_at_utc=now,
            origin_device_id=origin_device_id,
            is_tombstone=is_tombstone
        )
        session.add(version)

        file.is_deleted = is_tombstone
        file.deleted_at_utc = now if is_tombstone else None

        ApplyCommittedWrite(session, file.owner_id, LiveSize(version) - LiveSize(replaced), held_bytes)

        session.commit()
        if reservation is not None:
            reservation.MarkSettled()

        logger.info(
            f"Committed {'tombstone' if is_tombstone else 'version'} {new_version_id} "
            f"of file {file_id} from device {origin_device_id}"
        )
        return version

    except (ConflictDetected, NotFoundError):
        raise
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def TombstoneFile(db_manager: DatabaseManager, file_id: int, origin_device_id: str,
                  parent_version_id: Optional[int] = None) -> FileVersion:
    """
    Delete a file by appending a tombstone version

    The tombstone commit gives the file's live size back to the owner's
    quota. History is kept until maintenance purges the file after the
    retention window. Deleting an already deleted file returns the existing tombstone.

    Args:
        db_manager: DatabaseManager instance
        file_id: File to delete
        origin_device_id: Device requesting the delete
        parent_version_id: Version the device believes is current; when
            given, a newer commit makes the delete fail with ConflictDetected
            instead of discarding that edit

    Returns:
        FileVersion: The tombstone version

    Raises:
        ConflictDetected: If parent_version_id is stale
    """
    last_conflict = None

    for _ in range(TOMBSTONE_RETRY_ATTEMPTS):
        file = GetFile(db_manager, file_id)
        current = None
        if file.current_version_id > 0:
            current = GetVersion(db_manager, file_id, file.current_version_id)

        if file.is_deleted and current is not None and current.is_tombstone:
            if parent_version_id is None or parent_version_id == current.version_id:
                return current

        parent = file.current_version_id if parent_version_id is None else parent_version_id
        if parent != file.current_version_id:
            raise ConflictDetected(file_id, parent, file.current_version_id)

        try:
            tombstone = CreateVersion(
                db_manager, file_id, parent, None, 0, origin_device_id, is_tombstone=True
            )
        except ConflictDetected as e:
            if parent_version_id is not None:
                raise
            last_conflict = e
            continue

        return tombstone

    raise last_conflict


def UndeleteFile(db_manager: DatabaseManager, file_id: int, origin_device_id: str) -> FileVersion:
    """
    Bring back a tombstoned file within its retention window

    Appends a version carrying the last live content, reserving its size.

    Raises:
        ValueError: If the file is not deleted or never had content
        QuotaExceededError: If the restored content does not fit
    """
    file = GetFile(db_manager, file_id)
    if not file.is_deleted:
        raise ValueError(f"File {file_id} is not deleted")

    session = db_manager.GetSession()
    try:
        last_live = session.query(FileVersion).filter(
            FileVersion.file_id == file_id,
            FileVersion.is_tombstone == False
        ).order_by(FileVersion.version_id.desc()).first()
    finally:
        session.close()

    if last_live is None:
        raise ValueError(f"File {file_id} has no content to restore")

    with QuotaReservation(db_manager, file.owner_id, last_live.size_bytes) as reservation:
        version = CreateVersion(
            db_manager, file_id, file.current_version_id,
            last_live.content_hash, last_live.size_bytes, origin_device_id,
            reservation=reservation
        )

    logger.info(f"Undeleted file {file_id} from version {last_live.version_id}")
    return version


def RestoreVersion(db_manager: DatabaseManager, file_id: int, version_id: int,
                   origin_device_id: str) -> FileVersion:
    """
    Make an older version's content current again

    The restore is a new version whose parent is the current version, so
    history stays linear.

    Raises:
        NotFoundError: If the version is not retained
        ValueError: If the version is a tombstone
        ConflictDetected: If another write lands first
    """
    target = GetVersion(db_manager, file_id, version_id)
    if target.is_tombstone:
        raise ValueError(f"Version {version_id} of file {file_id} is a tombstone")

    file = GetFile(db_manager, file_id)
    current = GetVersion(db_manager, file_id, file.current_version_id)

    with QuotaReservation(db_manager, file.owner_id, target.size_bytes - LiveSize(current)) as reservation:
        version = CreateVersion(
            db_manager, file_id, current.version_id,
            target.content_hash, target.size_bytes, origin_device_id,
            reservation=reservation
        )

    logger.info(f"Restored file {file_id} to content of version {version_id} as version {version.version_id}")
    return version


# ==================== Sync Horizon ====================

def GetHorizon(db_manager: DatabaseManager, user_id: int) -> Optional[datetime]:
    """Timestamp through which a user's history has been purged, if any"""
    session = db_manager.GetSession()
    try:
        horizon = session.query(SyncHorizon).filter(SyncHorizon.user_id == user_id).first()
        return AsUtc(horizon.purged_through_utc) if horizon else None
    finally:
        session.close()


def AdvanceHorizonInSession(session, user_id: int, purged_through_utc: datetime) -> bool:
    """
    Move a user's horizon forward inside the caller's transaction

    Does not commit; the caller's commit persists it.

    Returns:
        bool: True if the horizon moved
    """
    horizon = session.query(SyncHorizon).filter(SyncHorizon.user_id == user_id).first()
    if horizon is None:
        session.add(SyncHorizon(user_id=user_id, purged_through_utc=purged_through_utc))
    elif AsUtc(horizon.purged_through_utc) < AsUtc(purged_through_utc):
        horizon.purged_through_utc = purged_through_utc
    else:
        return False
    return True


def AdvanceHorizon(db_manager: DatabaseManager, user_id: int, purged_through_utc: datetime) -> None:
    """Move a user's horizon forward; it never moves back"""
    session = db_manager.GetSession()
    try:
        if not AdvanceHorizonInSession(session, user_id, purged_through_utc):
            return
        session.commit()
        logger.info(f"Sync horizon for user {user_id} advanced to {purged_through_utc.isoformat()}")
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def CheckCursor(db_manager: DatabaseManager, cursor: SyncCursor) -> None:
    """
    Ensure a cursor can resume incrementally

    Raises:
        StaleCursorError: If history after the cursor has been purged
    """
    if cursor.IsBeginning():
        return
    horizon = GetHorizon(db_manager, cursor.user_id)
    if horizon is not None and cursor.modified_at_utc < horizon:
        logger.warning(
            f"Stale cursor for user {cursor.user_id}: {cursor.modified_at_utc.isoformat()} "
            f"is before horizon {horizon.isoformat()}"
        )
        raise StaleCursorError(cursor.user_id, cursor.modified_at_utc, horizon)


# ==================== Change Feed ====================

def ListChangesSince(db_manager: DatabaseManager, user_id: int, cursor: SyncCursor,
                     limit: int = 500) -> List[ChangeEntry]:
    """
    List a user's versions after a cursor position

    Ordering is (modified_at_utc, version_id, record_id) ascending. Each
    entry carries the cursor positioned just after it, so a client can
    resume from the last entry it fully processed.

    Args:
        db_manager: DatabaseManager instance
        user_id: Owner of the change stream
        cursor: Position to list after
        limit: Maximum number of entries

    Returns:
        List[ChangeEntry]: Ordered changes

    Raises:
        StaleCursorError: If the cursor is older than the user's sync horizon
    """
    if cursor.user_id != user_id:
        raise ValueError("Cursor belongs to another user")
    if limit <= 0:
        raise ValueError("limit must be positive")

    CheckCursor(db_manager, cursor)

    session = db_manager.GetSession()
    try:
        query = session.query(FileVersion, File).join(
            File, File.file_id == FileVersion.file_id
        ).filter(FileVersion.owner_id == user_id)

        if not cursor.IsBeginning():
            # Naive UTC, the form rows are stored in
            timestamp = cursor.modified_at_utc.replace(tzinfo=None)
            query = query.filter(or_(
                FileVersion.modified_at_utc > timestamp,
                and_(
                    FileVersion.modified_at_utc == timestamp,
                    FileVersion.version_id > cursor.version_id
                ),
                and_(
                    FileVersion.modified_at_utc == timestamp,
                    FileVersion.version_id == cursor.version_id,
                    FileVersion.record_id > cursor.record_id
                )
            ))

        rows = query.order_by(
            FileVersion.modified_at_utc, FileVersion.version_id, FileVersion.record_id
        ).limit(limit).all()

        entries = []
        for version, file in rows:
            position = CursorAfter(user_id, version.modified_at_utc, version.version_id, version.record_id)
            entries.append(ChangeEntry(
                version=version,
                name=file.name,
                parent_folder_id=file.parent_folder_id,
                is_current=version.version_id == file.current_version_id,
                cursor=EncodeCursor(db_manager, position)
            ))

        logger.debug(f"Listed {len(entries)} changes for user {user_id}")
        return entries

    finally:
        session.close()
