"""
VaultSync Server - Maintenance

Periodic housekeeping, run once at server startup and available as a
command:

    python maintenance.py --db-path database/vaultsync.db --storage-root storage

Jobs:
- Purge files tombstoned longer than tombstone_retention_days, advancing
  the owner's sync horizon
- Prune history beyond max_versions_per_file
- Delete blobs no version or pending conflict references
- Recompute quota usage and correct drift
- Auto-resolve stale pending conflicts (when enabled)
- Drop expired sync sessions
"""

import argparse
import logging
import sys
from datetime import datetime, timedelta
from typing import Dict, Set, Tuple

from sqlalchemy import func

from conflict_resolver import ExpireStalePendingConflicts
from managers.blob_manager import BlobManager
from managers.database_manager import DatabaseManager
from models.database import Conflict, File, FileVersion, QuotaRecord
from models.infrastructure import ResolutionState
from quota_ledger import RecalculateUsage
from sync_sessions import CleanupExpiredSessions
from timestamps import AsUtc, UtcNow
import version_store

logger = logging.getLogger(__name__)

# Exit codes
EXIT_SUCCESS = 0
EXIT_FAILURE = 1

DEFAULT_BLOB_GRACE_SECONDS = 3600


def _ProtectedVersions(session, file_id: int) -> Set[int]:
    """Versions pending conflicts still point at"""
    protected = set()
    for conflict in session.query(Conflict).filter(
        Conflict.file_id == file_id,
        Conflict.resolution_state == ResolutionState.PENDING.value
    ).all():
        protected.update({
            conflict.local_version_id,
            conflict.remote_parent_version_id,
            conflict.common_ancestor_version_id
        })
    protected.discard(None)
    protected.discard(0)
    return protected


def PurgeExpiredTombstones(db_manager: DatabaseManager) -> int:
    """
    Remove files deleted longer ago than the retention window

    All versions and pending conflicts of each file go with it. Each
    owner's sync horizon moves to the newest purged change in the same
    transaction, so cursors that never saw those tombstones are reported
    stale.

    Returns:
        int: Number of files purged
    """
    retention_days = db_manager.GetIntSetting("tombstone_retention_days", 30)
    cutoff = UtcNow() - timedelta(days=retention_days)

    session = db_manager.GetSession()
    horizons: Dict[int, datetime] = {}
    purged = 0
    try:
        expired = [
            file for file in session.query(File).filter(File.is_deleted == True).all()
            if file.deleted_at_utc is not None and AsUtc(file.deleted_at_utc) <= cutoff
        ]

        for file in expired:
            newest = session.query(func.max(FileVersion.modified_at_utc)).filter(
                FileVersion.file_id == file.file_id
            ).scalar()
            if newest is not None:
                newest = AsUtc(newest)
                if file.owner_id not in horizons or horizons[file.owner_id] < newest:
                    horizons[file.owner_id] = newest

            session.query(FileVersion).filter(FileVersion.file_id == file.file_id).delete(synchronize_session=False)
            session.query(Conflict).filter(Conflict.file_id == file.file_id).delete(synchronize_session=False)
            session.delete(file)
            purged += 1
            logger.debug(f"Purged tombstoned file {file.file_id} '{file.name}'")

        for user_id, purged_through in horizons.items():
            version_store.AdvanceHorizonInSession(session, user_id, purged_through)

        session.commit()

    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    if purged:
        logger.info(
            f"Purged {purged} files deleted more than {retention_days} days ago; "
            f"sync horizon advanced for {len(horizons)} users"
        )
    return purged


def PruneVersionHistory(db_manager: DatabaseManager) -> int:
    """
    Trim each file's non-current history to max_versions_per_file

    The current version and versions referenced by pending conflicts are
    always kept.

    Returns:
        int: Number of versions removed
    """
    max_versions = db_manager.GetIntSetting("max_versions_per_file", 50)
    if max_versions <= 0:
        return 0

    session = db_manager.GetSession()
    removed = 0
    try:
        crowded = session.query(FileVersion.file_id).group_by(FileVersion.file_id).having(
            func.count(FileVersion.record_id) > max_versions + 1
        ).all()

        for (file_id,) in crowded:
            file = session.query(File).filter(File.file_id == file_id).first()
            if file is None:
                continue

            protected = _ProtectedVersions(session, file_id)
            history = session.query(FileVersion).filter(
                FileVersion.file_id == file_id,
                FileVersion.version_id != file.current_version_id
            ).order_by(FileVersion.version_id.desc()).all()

            for version in history[max_versions:]:
                if version.version_id in protected:
                    continue
                session.delete(version)
                removed += 1

        session.commit()

    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    if removed:
        logger.info(f"Pruned {removed} versions beyond {max_versions} per file")
    return removed


def CollectOrphanBlobs(db_manager: DatabaseManager, blob_manager: BlobManager,
                       min_age_seconds: int = DEFAULT_BLOB_GRACE_SECONDS) -> int:
    """
    Delete stored content no version or pending conflict references

    Returns:
        int: Number of blobs deleted
    """
    session = db_manager.GetSession()
    try:
        referenced = {
            content_hash for (content_hash,) in
            session.query(FileVersion.content_hash).filter(FileVersion.content_hash != None).distinct()
        }
        referenced.update(
            content_hash for (content_hash,) in session.query(Conflict.remote_content_hash).distinct()
        )
    finally:
        session.close()

    return blob_manager.CollectGarbage(referenced, min_age_seconds=min_age_seconds)


def ReconcileQuotas(db_manager: DatabaseManager) -> Dict[int, Tuple[int, int]]:
    """
    Recompute every user's usage from live versions

    Returns:
        Dict[int, Tuple[int, int]]: user_id -> (recorded, actual) for users whose usage drifted
    """
    session = db_manager.GetSession()
    try:
        user_ids = [user_id for (user_id,) in session.query(QuotaRecord.user_id).all()]
    finally:
        session.close()

    drift = {}
    for user_id in user_ids:
        previous, actual = RecalculateUsage(db_manager, user_id)
        if previous != actual:
            drift[user_id] = (previous, actual)
    return drift


def RunMaintenance(db_manager: DatabaseManager, blob_manager: BlobManager,
                   blob_grace_seconds: int = DEFAULT_BLOB_GRACE_SECONDS) -> dict:
    """
    Run every maintenance job once

    Returns:
        dict: Counts per job
    """
    logger.info("Running maintenance...")

    summary = {
        "sessions_expired": CleanupExpiredSessions(),
        "conflicts_auto_resolved": ExpireStalePendingConflicts(db_manager),
        "files_purged": PurgeExpiredTombstones(db_manager),
        "versions_pruned": PruneVersionHistory(db_manager),
        "blobs_deleted": CollectOrphanBlobs(db_manager, blob_manager, blob_grace_seconds),
        "quota_drift_corrected": len(ReconcileQuotas(db_manager))
    }

    logger.info(
        "Maintenance complete: " + ", ".join(f"{key}={value}" for key, value in summary.items())
    )
    return summary


def main() -> int:
    """Command-line entry point"""
    parser = argparse.ArgumentParser(
        description="Run VaultSync server maintenance",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument("--db-path", default="database/vaultsync.db", help="SQLite database file")
    parser.add_argument("--storage-root", default="storage", help="Blob storage directory")
    parser.add_argument("--blob-grace-seconds", type=int, default=DEFAULT_BLOB_GRACE_SECONDS,
                        help="Keep unreferenced blobs younger than this")
    parser.add_argument("--verbose", action="store_true", help="Log per-item detail")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        db_manager = DatabaseManager(db_path=args.db_path)
        admin_password = db_manager.InitializeDatabase()
        if admin_password:
            logger.warning(f"New database created; admin password: {admin_password}")
        blob_manager = BlobManager(storage_root=args.storage_root)
        blob_manager.InitializeStorage()

        RunMaintenance(db_manager, blob_manager, args.blob_grace_seconds)
        return EXIT_SUCCESS

    except Exception as e:
        logger.error(f"Maintenance failed: {str(e)}", exc_info=True)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
