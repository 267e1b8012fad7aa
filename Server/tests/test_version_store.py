"""
Tests for the version store in VaultSync Server

Tests optimistic version chaining, tombstones, history operations and the
change feed.
"""

from datetime import timedelta

import pytest

from exceptions import ConflictDetected, NotFoundError, StaleCursorError
from quota_ledger import GetUsage
from sync_cursors import BeginningCursor, DecodeCursor
from timestamps import AsUtc, UtcNow
import version_store


def _NewFile(db_manager, user, name="doc.txt"):
    return version_store.CreateFile(db_manager, user.user_id, name)


def test_create_version_chains_on_current(db_manager, user):
    """Test that each version must name the current version as parent"""
    file = _NewFile(db_manager, user)

    v1 = version_store.CreateVersion(db_manager, file.file_id, None, "a" * 64, 10, "device-a")
    v2 = version_store.CreateVersion(db_manager, file.file_id, 1, "b" * 64, 20, "device-a")

    assert (v1.version_id, v1.parent_version_id) == (1, None)
    assert (v2.version_id, v2.parent_version_id) == (2, 1)
    assert version_store.GetCurrentVersion(db_manager, file.file_id).version_id == 2


def test_stale_parent_never_overwrites(db_manager, user):
    """Test that a stale parent raises ConflictDetected and leaves current alone"""
    file = _NewFile(db_manager, user)
    version_store.CreateVersion(db_manager, file.file_id, 0, "a" * 64, 10, "device-a")
    version_store.CreateVersion(db_manager, file.file_id, 1, "b" * 64, 10, "device-a")

    with pytest.raises(ConflictDetected) as exc_info:
        version_store.CreateVersion(db_manager, file.file_id, 1, "c" * 64, 10, "device-b")

    assert exc_info.value.current_version_id == 2
    current = version_store.GetCurrentVersion(db_manager, file.file_id)
    assert (current.version_id, current.content_hash) == (2, "b" * 64)
    assert len(version_store.ListVersions(db_manager, file.file_id)) == 2


def test_create_version_unknown_file(db_manager):
    """Test that writing to an unknown file is NotFound, not a conflict"""
    with pytest.raises(NotFoundError):
        version_store.CreateVersion(db_manager, 404, 0, "a" * 64, 1, "device-a")


def test_current_version_lookups(db_manager, user):
    """Test NotFound for unknown files and files without versions"""
    file = _NewFile(db_manager, user)

    with pytest.raises(NotFoundError):
        version_store.GetCurrentVersion(db_manager, file.file_id)
    with pytest.raises(NotFoundError):
        version_store.GetCurrentVersion(db_manager, 12345)
    with pytest.raises(NotFoundError):
        version_store.GetFile(db_manager, file.file_id, owner_id=user.user_id + 1)


def test_version_chain_is_acyclic_and_increasing(db_manager, user, open_session, submit):
    """Test the parent chain from the current version after mixed operations"""
    session = open_session()
    first = submit(session, b"one").version
    file_id = first.file_id
    submit(session, b"two", file_id=file_id, parent_version_id=1)
    submit(session, b"stale", file_id=file_id, parent_version_id=1)
    version_store.TombstoneFile(db_manager, file_id, "device-a")
    version_store.UndeleteFile(db_manager, file_id, "device-a")
    version_store.RestoreVersion(db_manager, file_id, 1, "device-a")

    versions = {v.version_id: v for v in version_store.ListVersions(db_manager, file_id)}
    cursor = version_store.GetFile(db_manager, file_id).current_version_id
    seen = []
    while cursor is not None:
        assert cursor not in seen
        seen.append(cursor)
        cursor = versions[cursor].parent_version_id

    assert seen == sorted(seen, reverse=True)
    assert seen[-1] == 1


def test_modified_at_strictly_increases_per_user(db_manager, user):
    """Test server-assigned timestamps across files of one user"""
    files = [_NewFile(db_manager, user, f"f{i}.txt") for i in range(3)]
    stamps = []
    for round_number in range(3):
        for file in files:
            version = version_store.CreateVersion(
                db_manager, file.file_id, round_number, f"{round_number}".ljust(64, "0"), 1, "device-a"
            )
            stamps.append(AsUtc(version.modified_at_utc))

    assert all(later > earlier for earlier, later in zip(stamps, stamps[1:]))


def test_tombstone_releases_quota_and_marks_deleted(db_manager, user, open_session, submit):
    """Test deletion as a tombstone version"""
    session = open_session()
    version = submit(session, b"x" * 64).version

    tombstone = version_store.TombstoneFile(db_manager, version.file_id, "device-b")

    assert tombstone.is_tombstone
    assert (tombstone.version_id, tombstone.parent_version_id) == (2, 1)
    assert tombstone.content_hash is None and tombstone.size_bytes == 0
    file = version_store.GetFile(db_manager, version.file_id)
    assert file.is_deleted and file.deleted_at_utc is not None
    assert GetUsage(db_manager, user.user_id)[0] == 0

    # Deleting again is a no-op
    again = version_store.TombstoneFile(db_manager, version.file_id, "device-b")
    assert again.version_id == tombstone.version_id
    assert GetUsage(db_manager, user.user_id)[0] == 0


def test_tombstone_with_stale_parent_conflicts(db_manager, user, open_session, submit):
    """Test that a delete based on an old version does not discard a newer edit"""
    session = open_session()
    version = submit(session, b"first").version
    submit(session, b"second", file_id=version.file_id, parent_version_id=1)

    with pytest.raises(ConflictDetected):
        version_store.TombstoneFile(db_manager, version.file_id, "device-b", parent_version_id=1)

    assert not version_store.GetFile(db_manager, version.file_id).is_deleted


def test_undelete_restores_last_content(db_manager, user, open_session, submit):
    """Test undelete within retention"""
    session = open_session()
    version = submit(session, b"keep me").version
    version_store.TombstoneFile(db_manager, version.file_id, "device-a")

    restored = version_store.UndeleteFile(db_manager, version.file_id, "device-a")

    assert restored.content_hash == version.content_hash
    assert restored.parent_version_id == 2
    assert not version_store.GetFile(db_manager, version.file_id).is_deleted
    assert GetUsage(db_manager, user.user_id)[0] == len(b"keep me")

    with pytest.raises(ValueError):
        version_store.UndeleteFile(db_manager, version.file_id, "device-a")


def test_restore_version_appends_new_current(db_manager, user, open_session, submit):
    """Test restoring an older version's content"""
    session = open_session()
    first = submit(session, b"original").version
    submit(session, b"edited", file_id=first.file_id, parent_version_id=1)

    restored = version_store.RestoreVersion(db_manager, first.file_id, 1, "device-a")

    assert (restored.version_id, restored.parent_version_id) == (3, 2)
    assert restored.content_hash == first.content_hash
    assert GetUsage(db_manager, user.user_id)[0] == len(b"original")

    with pytest.raises(NotFoundError):
        version_store.RestoreVersion(db_manager, first.file_id, 99, "device-a")


def test_list_files(db_manager, user, open_session, submit):
    """Test file listing with and without deleted files"""
    session = open_session()
    kept = submit(session, b"a", name="b-kept.txt").version
    gone = submit(session, b"b", name="a-gone.txt").version
    version_store.TombstoneFile(db_manager, gone.file_id, "device-a")

    live = version_store.ListFiles(db_manager, user.user_id)
    everything = version_store.ListFiles(db_manager, user.user_id, include_deleted=True)

    assert [f.file_id for f, _ in live] == [kept.file_id]
    assert [f.name for f, _ in everything] == ["a-gone.txt", "b-kept.txt"]
    assert everything[0][1].is_tombstone


def test_change_feed_ordered_and_complete(db_manager, user, open_session, submit):
    """Test that the feed returns every version in timestamp order"""
    session = open_session()
    a = submit(session, b"a1", name="a.txt").version
    b = submit(session, b"b1", name="b.txt").version
    submit(session, b"a2", file_id=a.file_id, parent_version_id=1)
    version_store.TombstoneFile(db_manager, b.file_id, "device-a")

    entries = version_store.ListChangesSince(db_manager, user.user_id, BeginningCursor(user.user_id))

    assert [(e.version.file_id, e.version.version_id) for e in entries] == [
        (a.file_id, 1), (b.file_id, 1), (a.file_id, 2), (b.file_id, 2)
    ]
    assert [e.is_current for e in entries] == [False, False, True, True]
    assert entries[-1].version.is_tombstone
    stamps = [AsUtc(e.version.modified_at_utc) for e in entries]
    assert stamps == sorted(stamps)


def test_change_feed_idempotent_and_resumable(db_manager, user, open_session, submit):
    """Test repeated reads and paging by per-entry cursors"""
    session = open_session()
    for i in range(5):
        submit(session, f"content {i}".encode(), name=f"file{i}.txt")

    beginning = BeginningCursor(user.user_id)
    full = version_store.ListChangesSince(db_manager, user.user_id, beginning)
    again = version_store.ListChangesSince(db_manager, user.user_id, beginning)
    assert [e.version.record_id for e in full] == [e.version.record_id for e in again]

    paged = []
    cursor = beginning
    while True:
        page = version_store.ListChangesSince(db_manager, user.user_id, cursor, limit=2)
        if not page:
            break
        paged.extend(page)
        cursor = DecodeCursor(db_manager, page[-1].cursor, user.user_id)

    assert [e.version.record_id for e in paged] == [e.version.record_id for e in full]

    # Resuming mid-stream never returns what came before
    middle = DecodeCursor(db_manager, full[2].cursor, user.user_id)
    rest = version_store.ListChangesSince(db_manager, user.user_id, middle)
    assert [e.version.record_id for e in rest] == [e.version.record_id for e in full[3:]]


def test_change_feed_is_per_user(db_manager, user, other_user, open_session, submit):
    """Test that another user's changes are not listed"""
    submit(open_session(), b"mine")
    submit(open_session(device_id="device-b", user_id=other_user.user_id), b"theirs")

    entries = version_store.ListChangesSince(db_manager, user.user_id, BeginningCursor(user.user_id))

    assert len(entries) == 1
    assert entries[0].version.owner_id == user.user_id


def test_cursor_before_horizon_is_stale(db_manager, user, open_session, submit):
    """Test that a cursor older than purged history cannot resume"""
    session = open_session()
    submit(session, b"one", name="one.txt")
    entries = version_store.ListChangesSince(db_manager, user.user_id, BeginningCursor(user.user_id))
    old_cursor = DecodeCursor(db_manager, entries[0].cursor, user.user_id)

    version_store.AdvanceHorizon(db_manager, user.user_id, UtcNow() + timedelta(seconds=1))

    with pytest.raises(StaleCursorError) as exc_info:
        version_store.ListChangesSince(db_manager, user.user_id, old_cursor)
    assert exc_info.value.ToDict()["full_resync_required"] is True

    # A full resync is always possible
    assert version_store.ListChangesSince(db_manager, user.user_id, BeginningCursor(user.user_id))


def test_horizon_never_moves_back(db_manager, user):
    """Test that the sync horizon only advances"""
    later = UtcNow()
    version_store.AdvanceHorizon(db_manager, user.user_id, later)
    version_store.AdvanceHorizon(db_manager, user.user_id, later - timedelta(days=1))

    assert version_store.GetHorizon(db_manager, user.user_id) == later
