"""
VaultSync Server - Checksum Engine

Content digests for file versions:
- SHA-256 hashing of in-memory content and streamed blobs
- Verification of submitted content against a client-declared hash
- Batch lookup of current-version hashes for cheap "what changed" checks
- Integrity verification of stored content
"""

import hashlib
import logging
from pathlib import Path
from typing import Dict, Iterable, Optional

from exceptions import IntegrityError
from managers.database_manager import DatabaseManager
from managers.blob_manager import BlobManager
from models.database import File, FileVersion

logger = logging.getLogger(__name__)

HASH_PREFIX = "sha256:"


# ==================== Hash Calculation ====================

def ComputeContentHash(data: bytes) -> str:
    """
    Calculate the SHA-256 digest of content

    Args:
        data: Content bytes

    Returns:
        str: Hex-encoded SHA-256 hash
    """
    return hashlib.sha256(data).hexdigest()


def CalculateFileHash(file_path: Path, chunk_size: int = 8192) -> str:
    """
    Calculate SHA-256 hash of a file using streaming/chunked reading

    Args:
        file_path: Path to file to hash
        chunk_size: Size of chunks to read (default 8KB)

    Returns:
        str: Hex-encoded SHA-256 hash

    Raises:
        FileNotFoundError: If file doesn't exist
        IOError: If file cannot be read
    """
    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")

    sha256_hash = hashlib.sha256()

    try:
        with open(file_path, 'rb') as f:
            while chunk := f.read(chunk_size):
                sha256_hash.update(chunk)

        hash_hex = sha256_hash.hexdigest()
        logger.debug(f"Calculated hash for {file_path.name}: {hash_hex}")
        return hash_hex

    except Exception as e:
        logger.error(f"Failed to calculate hash for {file_path}: {str(e)}")
        raise IOError(f"Failed to calculate hash: {str(e)}")


def NormalizeHash(content_hash: str) -> str:
    """
    Normalize a client-supplied hash: lower case, optional 'sha256:' prefix removed
    """
    value = content_hash.strip().lower()
    if value.startswith(HASH_PREFIX):
        value = value[len(HASH_PREFIX):]
    return value


# ==================== Verification ====================

def VerifyContent(data: bytes, expected_hash: str, file_id: Optional[int] = None) -> bool:
    """
    Recompute the digest of content and compare it with an expected hash

    Args:
        data: Content bytes
        expected_hash: Hash the content is expected to have
        file_id: File the content belongs to (for error reporting)

    Returns:
        bool: True when the hashes match

    Raises:
        IntegrityError: On any mismatch
    """
    actual_hash = ComputeContentHash(data)
    expected = NormalizeHash(expected_hash)

    if actual_hash != expected:
        logger.warning(
            f"Checksum mismatch for file {file_id}: expected {expected[:16]}..., "
            f"got {actual_hash[:16]}..."
        )
        raise IntegrityError(expected, actual_hash, file_id=file_id)

    return True


def BatchChecksums(db_manager: DatabaseManager, user_id: int, file_ids: Iterable[int]) -> Dict[int, str]:
    """
    Get the current content hash of each requested file

    Files that are unknown, owned by another user, deleted, or have no
    committed version yet are left out of the result.

    Args:
        db_manager: DatabaseManager instance
        user_id: Owner of the files
        file_ids: Files to look up

    Returns:
        Dict[int, str]: file_id -> content hash
    """
    ids = set(file_ids)
    if not ids:
        return {}

    session = db_manager.GetSession()
    try:
        rows = session.query(File.file_id, FileVersion.content_hash).join(
            FileVersion,
            (FileVersion.file_id == File.file_id) &
            (FileVersion.version_id == File.current_version_id)
        ).filter(
            File.file_id.in_(ids),
            File.owner_id == user_id,
            File.is_deleted == False,
            FileVersion.is_tombstone == False
        ).all()

        return {file_id: content_hash for file_id, content_hash in rows}

    finally:
        session.close()


def VerifyStoredContent(db_manager: DatabaseManager, blob_manager: BlobManager, user_id: int,
                        expected_hashes: Dict[int, str]) -> Dict[int, dict]:
    """
    Verify the integrity of stored current versions

    For each file, the stored blob is re-hashed and compared with both the
    recorded version hash and the hash the client expects.

    Args:
        db_manager: DatabaseManager instance
        blob_manager: BlobManager instance
        user_id: Owner of the files
        expected_hashes: file_id -> hash the client holds

    Returns:
        Dict[int, dict]: file_id -> {'ok': bool, 'error': str (when not ok)}
    """
    current = BatchChecksums(db_manager, user_id, expected_hashes.keys())
    results = {}

    for file_id, expected_hash in expected_hashes.items():
        recorded_hash = current.get(file_id)
        if recorded_hash is None:
            results[file_id] = {"ok": False, "error": "not_found"}
            continue

        if NormalizeHash(expected_hash) != recorded_hash:
            results[file_id] = {"ok": False, "error": "hash_mismatch", "current_hash": recorded_hash}
            continue

        try:
            actual_hash = CalculateFileHash(blob_manager.GetBlobPath(recorded_hash))
        except FileNotFoundError:
            logger.error(f"Content missing for file {file_id} (hash {recorded_hash[:16]}...)")
            results[file_id] = {"ok": False, "error": "content_missing"}
            continue

        if actual_hash != recorded_hash:
            logger.error(
                f"Stored content corrupt for file {file_id}: recorded {recorded_hash[:16]}..., "
                f"actual {actual_hash[:16]}..."
            )
            results[file_id] = {"ok": False, "error": "corrupt"}
            continue

        results[file_id] = {"ok": True}

    return results
