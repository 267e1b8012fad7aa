"""
Tests for the quota ledger in VaultSync Server

Tests atomic reservation, release, compensation and usage reconciliation.
"""

import threading

import pytest

from exceptions import QuotaExceededError
from models.database import QuotaRecord
from quota_ledger import (
    GetOrCreateQuota, GetUsage, Reserve, Release, CancelReservation, SetLimit,
    RecalculateUsage, ComputeLiveUsage, QuotaReservation
)
from checksums import ComputeContentHash
import version_store


def _LiveUsage(db_manager, user_id):
    session = db_manager.GetSession()
    try:
        return ComputeLiveUsage(session, user_id)
    finally:
        session.close()


def _Reserved(db_manager, user_id):
    return GetOrCreateQuota(db_manager, user_id).reserved_bytes


def test_quota_created_with_default_limit(db_manager, user):
    """Test that a new record gets the configured default limit"""
    record = GetOrCreateQuota(db_manager, user.user_id)

    assert record.limit_bytes == 100 * 1024 * 1024
    assert record.used_bytes == 0
    assert GetUsage(db_manager, user.user_id) == (0, 100 * 1024 * 1024)


def test_reserve_and_release(db_manager, user):
    """Test basic reservation, cancellation and release"""
    SetLimit(db_manager, user.user_id, 1000)

    Reserve(db_manager, user.user_id, 400)
    Reserve(db_manager, user.user_id, 600)
    assert GetUsage(db_manager, user.user_id) == (1000, 1000)
    assert _Reserved(db_manager, user.user_id) == 1000

    CancelReservation(db_manager, user.user_id, 400)
    assert GetUsage(db_manager, user.user_id) == (600, 1000)
    assert _Reserved(db_manager, user.user_id) == 600

    Release(db_manager, user.user_id, 250)
    assert GetUsage(db_manager, user.user_id) == (350, 1000)


def test_release_floors_at_zero(db_manager, user, open_session, submit):
    """Test that releasing more than is used leaves usage at 0"""
    submit(open_session(), b"x" * 10, name="small.bin")
    Release(db_manager, user.user_id, 500)

    assert GetUsage(db_manager, user.user_id)[0] == 0


def test_reserve_rejects_negative_delta(db_manager, user):
    """Test that net releases must go through Release"""
    with pytest.raises(ValueError):
        Reserve(db_manager, user.user_id, -1)
    with pytest.raises(ValueError):
        Release(db_manager, user.user_id, -1)


def test_quota_exceeded_leaves_usage_unchanged(db_manager, user):
    """Test that a refused reservation changes nothing and reports usage"""
    SetLimit(db_manager, user.user_id, 1000)
    Reserve(db_manager, user.user_id, 900)

    with pytest.raises(QuotaExceededError) as exc_info:
        Reserve(db_manager, user.user_id, 150)

    error = exc_info.value
    assert (error.used_bytes, error.limit_bytes, error.required_bytes) == (900, 1000, 150)
    assert error.ToDict()["used"] == 900
    assert GetUsage(db_manager, user.user_id) == (900, 1000)


def test_scenario_a_submission_over_quota(db_manager, blob_manager, user, open_session, submit):
    """Test limit=1000, used=900, 150-byte submission -> QuotaExceededError, used stays 900"""
    SetLimit(db_manager, user.user_id, 1000)
    session = open_session()
    submit(session, b"x" * 900, name="big.bin")

    oversized = b"y" * 150
    with pytest.raises(QuotaExceededError):
        submit(session, oversized, name="small.bin")

    assert GetUsage(db_manager, user.user_id) == (900, 1000)
    assert [f.name for f, _ in version_store.ListFiles(db_manager, user.user_id)] == ["big.bin"]
    assert not blob_manager.Exists(ComputeContentHash(oversized))


def test_reservation_compensates_on_failure(db_manager, user):
    """Test that a failed write releases its reservation"""
    SetLimit(db_manager, user.user_id, 1000)

    with pytest.raises(RuntimeError):
        with QuotaReservation(db_manager, user.user_id, 300):
            assert GetUsage(db_manager, user.user_id)[0] == 300
            assert _Reserved(db_manager, user.user_id) == 300
            raise RuntimeError("commit failed")

    assert GetUsage(db_manager, user.user_id)[0] == 0
    assert _Reserved(db_manager, user.user_id) == 0


def test_shrinking_write_releases_space_on_commit_only(db_manager, user, open_session, submit):
    """Test that shrinking writes reserve nothing and free space when committed"""
    version = submit(open_session(), b"s" * 500, name="shrink.bin").version

    with pytest.raises(RuntimeError):
        with QuotaReservation(db_manager, user.user_id, -200):
            raise RuntimeError("commit failed")
    assert GetUsage(db_manager, user.user_id)[0] == 500

    with QuotaReservation(db_manager, user.user_id, -200) as reservation:
        version_store.CreateVersion(
            db_manager, version.file_id, version.version_id, ComputeContentHash(b"s" * 300), 300,
            "device-a", reservation=reservation
        )
    assert GetUsage(db_manager, user.user_id)[0] == 300
    assert _Reserved(db_manager, user.user_id) == 0


def test_commit_settles_reservation(db_manager, user):
    """Test that a committed write moves its reservation into live usage"""
    file = version_store.CreateFile(db_manager, user.user_id, "settled.bin")

    with QuotaReservation(db_manager, user.user_id, 250) as reservation:
        version_store.CreateVersion(
            db_manager, file.file_id, 0, ComputeContentHash(b"z" * 250), 250, "device-a",
            reservation=reservation
        )
        assert reservation.settled
        assert GetUsage(db_manager, user.user_id)[0] == 250
        assert _Reserved(db_manager, user.user_id) == 0

    assert GetUsage(db_manager, user.user_id)[0] == 250
    assert _LiveUsage(db_manager, user.user_id) == 250


def test_concurrent_reservations_never_overshoot(db_manager, user):
    """Test that parallel reservations cannot together exceed the limit"""
    SetLimit(db_manager, user.user_id, 1000)
    results = []
    results_lock = threading.Lock()

    def worker():
        try:
            Reserve(db_manager, user.user_id, 100)
            outcome = "ok"
        except QuotaExceededError:
            outcome = "refused"
        with results_lock:
            results.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(20)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert results.count("ok") == 10
    assert results.count("refused") == 10
    assert GetUsage(db_manager, user.user_id) == (1000, 1000)


def test_lowering_limit_below_usage(db_manager, user):
    """Test that a lowered limit refuses growth but keeps existing data"""
    Reserve(db_manager, user.user_id, 800)
    SetLimit(db_manager, user.user_id, 500)

    with pytest.raises(QuotaExceededError):
        Reserve(db_manager, user.user_id, 1)

    Reserve(db_manager, user.user_id, 0)
    assert GetUsage(db_manager, user.user_id) == (800, 500)


def test_recalculate_usage_fixes_drift(db_manager, user, open_session, submit):
    """Test that recalculation restores the live-version sum"""
    session = open_session()
    submit(session, b"a" * 120, name="one.txt")
    submit(session, b"b" * 30, name="two.txt")

    db_session = db_manager.GetSession()
    try:
        record = db_session.query(QuotaRecord).filter(QuotaRecord.user_id == user.user_id).one()
        record.used_bytes = 5
        db_session.commit()
    finally:
        db_session.close()

    assert RecalculateUsage(db_manager, user.user_id) == (5, 150)
    assert GetUsage(db_manager, user.user_id)[0] == 150
    assert RecalculateUsage(db_manager, user.user_id) == (150, 150)


def test_recalculate_keeps_in_flight_reservations(db_manager, user):
    """Test that a recalculation during an open reservation cannot let writes overshoot the limit"""
    SetLimit(db_manager, user.user_id, 1000)
    first = version_store.CreateFile(db_manager, user.user_id, "first.bin")
    second = version_store.CreateFile(db_manager, user.user_id, "second.bin")

    with QuotaReservation(db_manager, user.user_id, 900) as reservation:
        assert RecalculateUsage(db_manager, user.user_id) == (900, 900)
        assert _Reserved(db_manager, user.user_id) == 900

        with pytest.raises(QuotaExceededError):
            with QuotaReservation(db_manager, user.user_id, 900) as competing:
                version_store.CreateVersion(
                    db_manager, second.file_id, 0, ComputeContentHash(b"b" * 900), 900, "device-b",
                    reservation=competing
                )

        version_store.CreateVersion(
            db_manager, first.file_id, 0, ComputeContentHash(b"a" * 900), 900, "device-a",
            reservation=reservation
        )

    assert _LiveUsage(db_manager, user.user_id) == 900
    assert GetUsage(db_manager, user.user_id) == (900, 1000)
    assert _Reserved(db_manager, user.user_id) == 0
    assert RecalculateUsage(db_manager, user.user_id) == (900, 900)


def test_usage_matches_live_versions_after_mixed_operations(db_manager, user, open_session, submit):
    """Test that usage equals the sum of current, non-tombstoned sizes"""
    session = open_session()

    grown = submit(session, b"a" * 100, name="grow.txt").version
    submit(session, b"a" * 250, file_id=grown.file_id, parent_version_id=grown.version_id)

    shrunk = submit(session, b"b" * 400, name="shrink.txt").version
    submit(session, b"b" * 40, file_id=shrunk.file_id, parent_version_id=shrunk.version_id)

    removed = submit(session, b"c" * 70, name="remove.txt").version
    version_store.TombstoneFile(db_manager, removed.file_id, "device-a")

    returned = submit(session, b"d" * 33, name="return.txt").version
    version_store.TombstoneFile(db_manager, returned.file_id, "device-a")
    version_store.UndeleteFile(db_manager, returned.file_id, "device-a")

    restored = submit(session, b"e" * 10, name="restore.txt").version
    submit(session, b"e" * 90, file_id=restored.file_id, parent_version_id=1)
    version_store.RestoreVersion(db_manager, restored.file_id, 1, "device-a")

    expected = 250 + 40 + 33 + 10
    assert _LiveUsage(db_manager, user.user_id) == expected
    assert GetUsage(db_manager, user.user_id)[0] == expected
