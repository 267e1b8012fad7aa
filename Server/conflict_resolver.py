"""
VaultSync Server - Conflict Resolver

Handles submissions whose parent is no longer the file's current version.

Perspective: the local side is the server's current version when the
divergence was detected, the remote side is the device submission.
Identical content is never a conflict. Otherwise, depending on the
conflict_policy setting, the submission either waits as a Pending
conflict for an explicit decision or wins immediately (last_write_wins).
"""

import logging
import os
import uuid
from datetime import timedelta
from typing import Dict, List, Optional

from sqlalchemy import update

from exceptions import ConflictDetected, NotFoundError, VaultSyncError
from managers.database_manager import DatabaseManager
from models.database import Conflict, FileVersion
from models.infrastructure import (
    ConflictResolution, ResolutionDecision, ResolutionState, SubmitResult, SubmitStatus
)
from quota_ledger import QuotaReservation
import version_store
from timestamps import AsUtc, UtcNow

logger = logging.getLogger(__name__)

POLICY_MANUAL = "manual"
POLICY_LAST_WRITE_WINS = "last_write_wins"
LAST_WRITE_WINS_ATTEMPTS = 3
FORK_SUFFIX = " (conflicted copy)"


def ForkName(name: str) -> str:
    """'report.txt' -> 'report (conflicted copy).txt'"""
    stem, extension = os.path.splitext(name)
    return f"{stem}{FORK_SUFFIX}{extension}"


# ==================== Ancestry ====================

def _LoadParentMap(db_manager: DatabaseManager, file_id: int) -> Dict[int, Optional[int]]:
    session = db_manager.GetSession()
    try:
        rows = session.query(FileVersion.version_id, FileVersion.parent_version_id).filter(
            FileVersion.file_id == file_id
        ).all()
        return {version_id: parent_id for version_id, parent_id in rows}
    finally:
        session.close()


def FindCommonAncestor(db_manager: DatabaseManager, file_id: int, local_version_id: int,
                       remote_parent_version_id: Optional[int]) -> Optional[int]:
    """
    Find the nearest version both sides derive from

    The local chain is walked from the current version, the remote chain
    from the version the submission was based on.

    Returns:
        int: Common ancestor version ID, or None when the chains share no
        retained version (e.g. the submission had no parent, or history
        was pruned)
    """
    parents = _LoadParentMap(db_manager, file_id)

    local_chain = set()
    cursor = local_version_id
    while cursor and cursor in parents and cursor not in local_chain:
        local_chain.add(cursor)
        cursor = parents[cursor]

    cursor = remote_parent_version_id
    visited = set()
    while cursor and cursor not in visited:
        if cursor in local_chain:
            return cursor
        visited.add(cursor)
        cursor = parents.get(cursor)

    return None


# ==================== Lookups ====================

def GetConflict(db_manager: DatabaseManager, conflict_id: str, owner_id: Optional[int] = None) -> Conflict:
    """
    Get a pending conflict

    Raises:
        NotFoundError: If unknown, already resolved or owned by someone else
    """
    session = db_manager.GetSession()
    try:
        conflict = session.query(Conflict).filter(Conflict.conflict_id == conflict_id).first()
        if conflict is None or (owner_id is not None and conflict.owner_id != owner_id):
            raise NotFoundError("conflict", conflict_id)
        return conflict
    finally:
        session.close()


def ListPendingConflicts(db_manager: DatabaseManager, owner_id: int,
                         file_id: Optional[int] = None) -> List[Conflict]:
    """Pending conflicts of a user, oldest first"""
    session = db_manager.GetSession()
    try:
        query = session.query(Conflict).filter(
            Conflict.owner_id == owner_id,
            Conflict.resolution_state == ResolutionState.PENDING.value
        )
        if file_id is not None:
            query = query.filter(Conflict.file_id == file_id)
        return query.order_by(Conflict.created_at_utc).all()
    finally:
        session.close()


# ==================== Detection ====================

def HandleDivergentSubmission(db_manager: DatabaseManager, file_id: int, owner_id: int,
                              parent_version_id: Optional[int], content_hash: str,
                              size_bytes: int, device_id: str) -> SubmitResult:
    """
    Decide the outcome of a submission that failed the version check

    The submitted content must already be in the blob store.

    Returns:
        SubmitResult: UNCHANGED for identical content, COMMITTED under
        last_write_wins, otherwise CONFLICT with the pending Conflict
    """
    parent = parent_version_id or 0
    policy = db_manager.GetSetting("conflict_policy", POLICY_MANUAL)

    for _ in range(LAST_WRITE_WINS_ATTEMPTS):
        current = version_store.GetCurrentVersion(db_manager, file_id)

        if not current.is_tombstone and current.content_hash == content_hash:
            logger.info(
                f"Submission for file {file_id} from device {device_id} matches current "
                f"version {current.version_id}; nothing to do"
            )
            return SubmitResult(status=SubmitStatus.UNCHANGED, version=current)

        if policy != POLICY_LAST_WRITE_WINS:
            return SubmitResult(
                status=SubmitStatus.CONFLICT,
                conflict=_RecordConflict(db_manager, file_id, owner_id, current, parent,
                                         content_hash, size_bytes, device_id)
            )

        try:
            with QuotaReservation(db_manager, owner_id, size_bytes - version_store.LiveSize(current)) as reservation:
                version = version_store.CreateVersion(
                    db_manager, file_id, current.version_id, content_hash, size_bytes, device_id,
                    reservation=reservation
                )
        except ConflictDetected:
            continue

        logger.warning(
            f"Last write wins: submission from device {device_id} (parent {parent}) "
            f"replaced version {current.version_id} of file {file_id}"
        )
        return SubmitResult(status=SubmitStatus.COMMITTED, version=version)

    # Still racing after bounded retries; keep the submission instead of dropping it
    current = version_store.GetCurrentVersion(db_manager, file_id)
    return SubmitResult(
        status=SubmitStatus.CONFLICT,
        conflict=_RecordConflict(db_manager, file_id, owner_id, current, parent,
                                 content_hash, size_bytes, device_id)
    )


def _RecordConflict(db_manager: DatabaseManager, file_id: int, owner_id: int, current: FileVersion,
                    parent: int, content_hash: str, size_bytes: int, device_id: str) -> Conflict:
    """Persist a Pending conflict, reusing an identical one from a retried submission"""
    ancestor = FindCommonAncestor(db_manager, file_id, current.version_id, parent)

    session = db_manager.GetSession()
    try:
        existing = session.query(Conflict).filter(
            Conflict.file_id == file_id,
            Conflict.remote_content_hash == content_hash,
            Conflict.remote_parent_version_id == parent,
            Conflict.resolution_state == ResolutionState.PENDING.value
        ).first()
        if existing:
            if existing.local_version_id != current.version_id:
                existing.local_version_id = current.version_id
                existing.common_ancestor_version_id = ancestor
                session.commit()
            return existing

        conflict = Conflict(
            conflict_id=str(uuid.uuid4()),
            file_id=file_id,
            owner_id=owner_id,
            local_version_id=current.version_id,
            remote_parent_version_id=parent,
            remote_content_hash=content_hash,
            remote_size_bytes=size_bytes,
            remote_device_id=device_id,
            common_ancestor_version_id=ancestor,
            resolution_state=ResolutionState.PENDING.value,
            created_at_utc=UtcNow()
        )
        session.add(conflict)
        session.commit()

        logger.info(
            f"Conflict {conflict.conflict_id} recorded for file {file_id}: device {device_id} "
            f"submitted on parent {parent}, current is {current.version_id} (ancestor {ancestor})"
        )
        return conflict

    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ==================== Resolution ====================

def _RetargetConflict(db_manager: DatabaseManager, conflict: Conflict, local_version_id: int) -> Conflict:
    """
    Point a still-pending conflict at a newer local version

    Raises:
        NotFoundError: If the conflict was resolved in the meantime
    """
    ancestor = FindCommonAncestor(
        db_manager, conflict.file_id, local_version_id, conflict.remote_parent_version_id
    )

    session = db_manager.GetSession()
    try:
        result = session.execute(
            update(Conflict)
            .where(
                Conflict.conflict_id == conflict.conflict_id,
                Conflict.resolution_state == ResolutionState.PENDING.value
            )
            .values(local_version_id=local_version_id, common_ancestor_version_id=ancestor)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            session.rollback()
            raise NotFoundError("conflict", conflict.conflict_id)
        session.commit()
        return session.query(Conflict).filter(Conflict.conflict_id == conflict.conflict_id).one()
    except NotFoundError:
        raise
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def ResolveConflict(db_manager: DatabaseManager, conflict_id: str, decision: ResolutionDecision,
                    owner_id: Optional[int] = None, device_id: Optional[str] = None) -> ConflictResolution:
    """
    Apply a client decision to a pending conflict

    KEEP_LOCAL and KEEP_REMOTE append a version on top of the local
    version carrying the chosen side's content. FORK leaves the original
    file alone and copies the remote content into a new file.

    The conflict row is removed by the same transaction that commits the
    chosen version, so of two racing resolutions exactly one succeeds and
    the other gets NotFoundError. Until that commit the row stays pending.

    If another write became current after the conflict was recorded, the
    decision was made against outdated content: the conflict is
    re-targeted at the new current version and stays PENDING.

    Args:
        db_manager: DatabaseManager instance
        conflict_id: Conflict to resolve
        decision: KEEP_LOCAL, KEEP_REMOTE or FORK
        owner_id: Owner check (None skips it, for maintenance)
        device_id: Device applying the decision (defaults to the submitting device)

    Returns:
        ConflictResolution: The outcome

    Raises:
        NotFoundError: If the conflict is unknown or already resolved
        QuotaExceededError: If the chosen content does not fit; the conflict stays pending
    """
    decision = ResolutionDecision(decision)
    conflict = GetConflict(db_manager, conflict_id, owner_id)
    if conflict.resolution_state != ResolutionState.PENDING.value:
        raise NotFoundError("conflict", conflict_id)
    device = device_id or conflict.remote_device_id

    try:
        if decision == ResolutionDecision.FORK:
            local = version_store.GetVersion(db_manager, conflict.file_id, conflict.local_version_id)
            forked = _ForkRemote(db_manager, conflict, device)
            resolution = ConflictResolution(
                conflict_id=conflict_id,
                state=decision.ResolvedState(),
                version=local,
                forked_version=forked
            )
        else:
            version = _CommitSide(db_manager, conflict, decision, device)
            resolution = ConflictResolution(
                conflict_id=conflict_id,
                state=decision.ResolvedState(),
                version=version
            )

    except ConflictDetected as e:
        retargeted = _RetargetConflict(db_manager, conflict, e.current_version_id)
        logger.info(
            f"Resolution of conflict {conflict_id} lost to version {e.current_version_id}; "
            f"conflict re-targeted and still pending"
        )
        return ConflictResolution(conflict_id=conflict_id, state=ResolutionState.PENDING, conflict=retargeted)

    logger.info(f"Conflict {conflict_id} on file {conflict.file_id} resolved: {resolution.state.value}")
    return resolution


def _CommitSide(db_manager: DatabaseManager, conflict: Conflict, decision: ResolutionDecision,
                device: str) -> FileVersion:
    """Append a version on top of the local version carrying the chosen content"""
    local = version_store.GetVersion(db_manager, conflict.file_id, conflict.local_version_id)

    if decision == ResolutionDecision.KEEP_REMOTE:
        with QuotaReservation(db_manager, conflict.owner_id,
                              conflict.remote_size_bytes - version_store.LiveSize(local)) as reservation:
            return version_store.CreateVersion(
                db_manager, conflict.file_id, local.version_id,
                conflict.remote_content_hash, conflict.remote_size_bytes, device,
                reservation=reservation, resolves_conflict_id=conflict.conflict_id
            )

    # Same content as the version it replaces, so usage is unchanged
    return version_store.CreateVersion(
        db_manager, conflict.file_id, local.version_id,
        local.content_hash, local.size_bytes, device,
        is_tombstone=local.is_tombstone, resolves_conflict_id=conflict.conflict_id
    )


def _ForkRemote(db_manager: DatabaseManager, conflict: Conflict, device: str) -> FileVersion:
    """Create the conflicted copy seeded from the remote content"""
    original = version_store.GetFile(db_manager, conflict.file_id)
    fork = version_store.CreateFile(
        db_manager, original.owner_id, ForkName(original.name),
        parent_folder_id=original.parent_folder_id,
        forked_from_file_id=original.file_id
    )

    try:
        with QuotaReservation(db_manager, conflict.owner_id, conflict.remote_size_bytes) as reservation:
            return version_store.CreateVersion(
                db_manager, fork.file_id, 0,
                conflict.remote_content_hash, conflict.remote_size_bytes, device,
                reservation=reservation, resolves_conflict_id=conflict.conflict_id
            )
    except Exception:
        version_store.DeleteEmptyFile(db_manager, fork.file_id)
        raise


# ==================== Timeout Extension Point ====================

def ExpireStalePendingConflicts(db_manager: DatabaseManager) -> int:
    """
    Auto-resolve pending conflicts older than pending_conflict_timeout_hours

    Disabled when the timeout is 0. The decision applied is
    pending_conflict_timeout_decision.

    Returns:
        int: Number of conflicts resolved
    """
    timeout_hours = db_manager.GetIntSetting("pending_conflict_timeout_hours", 0)
    if timeout_hours <= 0:
        return 0

    decision = ResolutionDecision(db_manager.GetSetting("pending_conflict_timeout_decision", "fork"))
    cutoff = UtcNow() - timedelta(hours=timeout_hours)

    session = db_manager.GetSession()
    try:
        stale = [
            conflict.conflict_id
            for conflict in session.query(Conflict).filter(
                Conflict.resolution_state == ResolutionState.PENDING.value
            ).all()
            if AsUtc(conflict.created_at_utc) <= cutoff
        ]
    finally:
        session.close()

    resolved = 0
    for conflict_id in stale:
        try:
            result = ResolveConflict(db_manager, conflict_id, decision)
        except VaultSyncError as e:
            logger.warning(f"Could not auto-resolve conflict {conflict_id}: {str(e)}")
            continue
        if result.state != ResolutionState.PENDING:
            resolved += 1

    if resolved:
        logger.info(f"Auto-resolved {resolved} pending conflicts older than {timeout_hours}h ({decision.value})")
    return resolved
