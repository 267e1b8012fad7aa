"""
Tests for the checksum engine in VaultSync Server

Tests hashing, verification of submitted content, batch lookups and
verification of stored content.
"""

import hashlib

import pytest

from checksums import (
    ComputeContentHash, CalculateFileHash, NormalizeHash, VerifyContent,
    BatchChecksums, VerifyStoredContent
)
from exceptions import IntegrityError
import version_store


def test_compute_content_hash_known_values():
    """Test SHA-256 digests against known values"""
    assert ComputeContentHash(b"") == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
    assert ComputeContentHash(b"abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"


def test_verify_accepts_matching_content():
    """Test that verification succeeds for the content's own hash"""
    for data in [b"", b"x", b"hello world", bytes(range(256)) * 4]:
        assert VerifyContent(data, ComputeContentHash(data))


def test_verify_rejects_single_bit_mutation():
    """Test that flipping any bit of the content fails verification"""
    data = b"The quick brown fox"
    expected = ComputeContentHash(data)

    for byte_index in range(len(data)):
        for bit in range(8):
            mutated = bytearray(data)
            mutated[byte_index] ^= 1 << bit
            with pytest.raises(IntegrityError) as exc_info:
                VerifyContent(bytes(mutated), expected, file_id=7)
            assert exc_info.value.expected_hash == expected
            assert exc_info.value.file_id == 7


def test_verify_normalizes_declared_hash():
    """Test that upper case and 'sha256:' prefixed hashes are accepted"""
    data = b"payload"
    digest = ComputeContentHash(data)

    assert NormalizeHash(f"SHA256:{digest.upper()}") == digest
    assert VerifyContent(data, f"sha256:{digest}")
    assert VerifyContent(data, digest.upper())


def test_integrity_error_details():
    """Test that the error reports both hashes"""
    with pytest.raises(IntegrityError) as exc_info:
        VerifyContent(b"actual", ComputeContentHash(b"expected"))

    details = exc_info.value.ToDict()
    assert details["error"] == "integrity_error"
    assert details["actual_hash"] == ComputeContentHash(b"actual")
    assert details["expected_hash"] == ComputeContentHash(b"expected")


def test_calculate_file_hash_streams(tmp_path):
    """Test chunked hashing of a file matches in-memory hashing"""
    data = b"0123456789" * 5000
    path = tmp_path / "blob.bin"
    path.write_bytes(data)

    assert CalculateFileHash(path, chunk_size=1024) == hashlib.sha256(data).hexdigest()

    with pytest.raises(FileNotFoundError):
        CalculateFileHash(tmp_path / "missing.bin")


def test_batch_checksums_current_versions_only(db_manager, user, other_user, open_session, submit):
    """Test that only current, live, owned files are reported"""
    session = open_session()
    first = submit(session, b"version one", name="a.txt").version
    second = submit(session, b"version two", file_id=first.file_id, parent_version_id=1).version
    deleted = submit(session, b"soon gone", name="b.txt").version
    version_store.TombstoneFile(db_manager, deleted.file_id, "device-a")

    other_session = open_session(device_id="device-b", user_id=other_user.user_id)
    foreign = submit(other_session, b"not yours", name="c.txt").version

    checksums = BatchChecksums(
        db_manager, user.user_id, [first.file_id, deleted.file_id, foreign.file_id, 9999]
    )

    assert checksums == {first.file_id: second.content_hash}


def test_batch_checksums_empty_request(db_manager, user):
    """Test that an empty request needs no lookup"""
    assert BatchChecksums(db_manager, user.user_id, []) == {}


def test_verify_stored_content(db_manager, blob_manager, user, open_session, submit):
    """Test each verification outcome for stored content"""
    session = open_session()
    good = submit(session, b"intact content", name="good.txt").version
    stale = submit(session, b"current content", name="stale.txt").version
    corrupt = submit(session, b"will be corrupted", name="corrupt.txt").version
    missing = submit(session, b"will be removed", name="missing.txt").version

    blob_manager.GetBlobPath(corrupt.content_hash).write_bytes(b"bit rot")
    blob_manager.Delete(missing.content_hash)

    results = VerifyStoredContent(db_manager, blob_manager, user.user_id, {
        good.file_id: good.content_hash,
        stale.file_id: ComputeContentHash(b"older content"),
        corrupt.file_id: corrupt.content_hash,
        missing.file_id: missing.content_hash,
        4242: good.content_hash
    })

    assert results[good.file_id] == {"ok": True}
    assert results[stale.file_id] == {"ok": False, "error": "hash_mismatch", "current_hash": stale.content_hash}
    assert results[corrupt.file_id] == {"ok": False, "error": "corrupt"}
    assert results[missing.file_id] == {"ok": False, "error": "content_missing"}
    assert results[4242] == {"ok": False, "error": "not_found"}
