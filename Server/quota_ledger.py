"""
VaultSync Server - Quota Ledger

Tracks bytes consumed per user. Every check-and-update is a single
conditional UPDATE statement, so concurrent writes for one user can never
both pass a check that together overshoots the limit.

used_bytes counts live content plus reservations still in flight;
reserved_bytes is the in-flight part alone. A reservation is settled by
the version commit it was made for, in the same transaction, or cancelled
if that commit fails.
"""

import logging
from typing import Optional, Tuple

from sqlalchemy import case, func, update
from sqlalchemy.exc import IntegrityError as DBIntegrityError

from exceptions import QuotaExceededError
from managers.database_manager import DatabaseManager
from models.database import File, FileVersion, QuotaRecord
from timestamps import UtcNow

logger = logging.getLogger(__name__)


def _NotBelowZero(expression):
    return case((expression >= 0, expression), else_=0)


# ==================== Quota Records ====================

def GetOrCreateQuota(db_manager: DatabaseManager, user_id: int) -> QuotaRecord:
    """
    Get a user's quota record, creating it on demand

    New records start with the configured default limit and the user's
    actual live usage.

    Args:
        db_manager: DatabaseManager instance
        user_id: User ID

    Returns:
        QuotaRecord: The user's record
    """
    session = db_manager.GetSession()
    try:
        record = session.query(QuotaRecord).filter(QuotaRecord.user_id == user_id).first()
        if record:
            return record

        limit_bytes = db_manager.GetIntSetting("default_quota_bytes")
        record = QuotaRecord(
            user_id=user_id,
            limit_bytes=limit_bytes,
            used_bytes=ComputeLiveUsage(session, user_id),
            reserved_bytes=0,
            updated_at_utc=UtcNow()
        )
        session.add(record)
        try:
            session.commit()
            logger.info(f"Created quota for user {user_id}: {limit_bytes} bytes")
            return record
        except DBIntegrityError:
            # Another request created it first
            session.rollback()
            return session.query(QuotaRecord).filter(QuotaRecord.user_id == user_id).one()

    finally:
        session.close()


def ComputeLiveUsage(session, user_id: int) -> int:
    """
    Sum the sizes of a user's current, non-tombstoned versions

    Args:
        session: SQLAlchemy session
        user_id: User ID

    Returns:
        int: Bytes in use
    """
    total = session.query(func.coalesce(func.sum(FileVersion.size_bytes), 0)).join(
        File,
        (FileVersion.file_id == File.file_id) &
        (FileVersion.version_id == File.current_version_id)
    ).filter(
        File.owner_id == user_id,
        File.is_deleted == False,
        FileVersion.is_tombstone == False
    ).scalar()
    return int(total or 0)


# ==================== Reserve / Release ====================

def Reserve(db_manager: DatabaseManager, user_id: int, delta_bytes: int) -> QuotaRecord:
    """
    Atomically reserve space for a write

    The bytes count as used at once and stay held in reserved_bytes until
    the write commits (ApplyCommittedWrite) or is abandoned
    (CancelReservation).

    Args:
        db_manager: DatabaseManager instance
        user_id: User ID
        delta_bytes: Bytes to add to usage (must be >= 0)

    Returns:
        QuotaRecord: Record after the reservation

    Raises:
        QuotaExceededError: If used + delta would exceed the limit; usage is unchanged
    """
    if delta_bytes < 0:
        raise ValueError("Reserve requires a non-negative delta; use Release for net releases")

    record = GetOrCreateQuota(db_manager, user_id)
    if delta_bytes == 0:
        return record

    session = db_manager.GetSession()
    try:
        result = session.execute(
            update(QuotaRecord)
            .where(
                QuotaRecord.user_id == user_id,
                QuotaRecord.used_bytes + delta_bytes <= QuotaRecord.limit_bytes
            )
            .values(
                used_bytes=QuotaRecord.used_bytes + delta_bytes,
                reserved_bytes=QuotaRecord.reserved_bytes + delta_bytes,
                updated_at_utc=UtcNow()
            )
            .execution_options(synchronize_session=False)
        )
        session.commit()

        record = session.query(QuotaRecord).filter(QuotaRecord.user_id == user_id).one()

        if result.rowcount == 0:
            logger.warning(
                f"Quota exceeded for user {user_id}: need {delta_bytes}, "
                f"have {max(0, record.limit_bytes - record.used_bytes)} available"
            )
            raise QuotaExceededError(
                user_id=user_id,
                used_bytes=record.used_bytes,
                limit_bytes=record.limit_bytes,
                required_bytes=delta_bytes
            )

        logger.debug(
            f"Reserved {delta_bytes} bytes for user {user_id} "
            f"(used: {record.used_bytes}, in flight: {record.reserved_bytes})"
        )
        return record

    except QuotaExceededError:
        raise
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def CancelReservation(db_manager: DatabaseManager, user_id: int, delta_bytes: int) -> None:
    """
    Give back space reserved for a write that never committed

    Args:
        db_manager: DatabaseManager instance
        user_id: User ID
        delta_bytes: Bytes previously passed to Reserve (must be >= 0)
    """
    if delta_bytes < 0:
        raise ValueError("CancelReservation requires a non-negative delta")
    if delta_bytes == 0:
        return

    session = db_manager.GetSession()
    try:
        session.execute(
            update(QuotaRecord)
            .where(QuotaRecord.user_id == user_id)
            .values(
                used_bytes=_NotBelowZero(QuotaRecord.used_bytes - delta_bytes),
                reserved_bytes=_NotBelowZero(QuotaRecord.reserved_bytes - delta_bytes),
                updated_at_utc=UtcNow()
            )
            .execution_options(synchronize_session=False)
        )
        session.commit()
        logger.debug(f"Cancelled reservation of {delta_bytes} bytes for user {user_id}")
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def Release(db_manager: DatabaseManager, user_id: int, delta_bytes: int) -> None:
    """
    Atomically release space, clamping usage at 0

    Args:
        db_manager: DatabaseManager instance
        user_id: User ID
        delta_bytes: Bytes to subtract from usage (must be >= 0)
    """
    if delta_bytes < 0:
        raise ValueError("Release requires a non-negative delta")
    if delta_bytes == 0:
        return

    session = db_manager.GetSession()
    try:
        session.execute(
            update(QuotaRecord)
            .where(QuotaRecord.user_id == user_id)
            .values(
                used_bytes=case(
                    (QuotaRecord.used_bytes >= delta_bytes, QuotaRecord.used_bytes - delta_bytes),
                    else_=0
                ),
                updated_at_utc=UtcNow()
            )
            .execution_options(synchronize_session=False)
        )
        session.commit()
        logger.debug(f"Released {delta_bytes} bytes for user {user_id}")
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def ApplyCommittedWrite(session, user_id: int, live_delta_bytes: int, reserved_bytes: int = 0) -> None:
    """
    Account for a version commit inside the caller's transaction

    Moves reserved_bytes out of the in-flight counter and adjusts usage by
    the change in live content. Does not commit.

    Args:
        session: SQLAlchemy session holding the version commit
        user_id: Owner of the written file
        live_delta_bytes: New live size minus the replaced live size (may be negative)
        reserved_bytes: Bytes this write reserved beforehand
    """
    if live_delta_bytes == 0 and reserved_bytes == 0:
        return

    session.execute(
        update(QuotaRecord)
        .where(QuotaRecord.user_id == user_id)
        .values(
            used_bytes=_NotBelowZero(QuotaRecord.used_bytes + (live_delta_bytes - reserved_bytes)),
            reserved_bytes=_NotBelowZero(QuotaRecord.reserved_bytes - reserved_bytes),
            updated_at_utc=UtcNow()
        )
        .execution_options(synchronize_session=False)
    )


def GetUsage(db_manager: DatabaseManager, user_id: int) -> Tuple[int, int]:
    """
    Get a user's usage

    Returns:
        (used_bytes, limit_bytes)
    """
    record = GetOrCreateQuota(db_manager, user_id)
    return record.used_bytes, record.limit_bytes


def SetLimit(db_manager: DatabaseManager, user_id: int, limit_bytes: int) -> QuotaRecord:
    """
    Change a user's storage limit

    Lowering the limit below current usage is allowed; further growth is
    then refused until usage drops.

    Args:
        db_manager: DatabaseManager instance
        user_id: User ID
        limit_bytes: New limit (>= 0)

    Returns:
        QuotaRecord: Updated record
    """
    if limit_bytes < 0:
        raise ValueError("limit_bytes must be non-negative")

    GetOrCreateQuota(db_manager, user_id)

    session = db_manager.GetSession()
    try:
        session.execute(
            update(QuotaRecord)
            .where(QuotaRecord.user_id == user_id)
            .values(limit_bytes=limit_bytes, updated_at_utc=UtcNow())
            .execution_options(synchronize_session=False)
        )
        session.commit()
        record = session.query(QuotaRecord).filter(QuotaRecord.user_id == user_id).one()
        logger.info(f"Quota limit for user {user_id} set to {limit_bytes} bytes (used: {record.used_bytes})")
        return record
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def RecalculateUsage(db_manager: DatabaseManager, user_id: int) -> Tuple[int, int]:
    """
    Recompute a user's usage from live versions and fix any drift

    Reservations still in flight are kept: the corrected usage is the live
    sum plus reserved_bytes. The row is locked before it is read, so no
    reservation or commit can land between the read and the correction.

    Returns:
        (previous_used_bytes, recalculated_used_bytes)
    """
    GetOrCreateQuota(db_manager, user_id)

    session = db_manager.GetSession()
    try:
        # Take the write lock first
        session.execute(
            update(QuotaRecord)
            .where(QuotaRecord.user_id == user_id)
            .values(updated_at_utc=UtcNow())
            .execution_options(synchronize_session=False)
        )

        record = session.query(QuotaRecord).filter(QuotaRecord.user_id == user_id).one()
        previous = record.used_bytes
        actual = ComputeLiveUsage(session, user_id) + record.reserved_bytes

        if previous != actual:
            record.used_bytes = actual
            logger.warning(
                f"Quota drift for user {user_id}: recorded {previous}, actual {actual} "
                f"({record.reserved_bytes} in flight, corrected)"
            )
        session.commit()
        return previous, actual

    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ==================== Reservation Scope ====================

class QuotaReservation:
    """
    Reserve-then-commit-then-compensate scope for a write

    A positive delta is reserved on entry. Pass the scope to
    version_store.CreateVersion as reservation= and the commit settles it;
    if the block ends without a settling commit, the reservation is
    cancelled. A negative delta reserves nothing: the commit itself gives
    the space back.

    Usage:
        with QuotaReservation(db_manager, user_id, new_size - old_size) as reservation:
            CreateVersion(..., reservation=reservation)
    """

    def __init__(self, db_manager: DatabaseManager, user_id: int, delta_bytes: int):
        self.db_manager = db_manager
        self.user_id = user_id
        self.delta_bytes = delta_bytes
        self.reserved = False
        self.settled = False

    @property
    def held_bytes(self) -> int:
        """Bytes still held in flight for this write"""
        if self.reserved and not self.settled:
            return self.delta_bytes
        return 0

    def MarkSettled(self) -> None:
        self.settled = True

    def __enter__(self):
        if self.delta_bytes > 0:
            Reserve(self.db_manager, self.user_id, self.delta_bytes)
            self.reserved = True
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        held = self.held_bytes
        if held:
            CancelReservation(self.db_manager, self.user_id, held)
            self.settled = True
            reason = exc_type.__name__ if exc_type is not None else "no commit"
            logger.info(
                f"Released {held} reserved bytes for user {self.user_id} after failed write ({reason})"
            )
        return False


def HeldBytes(reservation: Optional[QuotaReservation]) -> int:
    return reservation.held_bytes if reservation is not None else 0
