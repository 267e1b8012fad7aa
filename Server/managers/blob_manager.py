"""
VaultSync Server - Blob Manager

Content storage for file versions. Blobs are addressed by their SHA-256
content hash, so two writers storing the same bytes write the same blob
and a retried write can never produce a different result.

Layout:
/storage_root/
  ab/
    ab3f...e9        (full hex digest)
  .tmp/              (in-flight writes, renamed into place when complete)
"""

import logging
import os
import time
import uuid
from pathlib import Path
from typing import Callable, Iterator, Set

from exceptions import StorageError

logger = logging.getLogger(__name__)


# ==================== Storage Configuration ====================

DEFAULT_STORAGE_ROOT = "storage"
RETRY_ATTEMPTS = 3
RETRY_BACKOFF_SECONDS = 0.05


class BlobManager:
    """
    Manages the content-addressed blob store
    """

    def __init__(self, storage_root: str = DEFAULT_STORAGE_ROOT,
                 retry_attempts: int = RETRY_ATTEMPTS,
                 retry_backoff_seconds: float = RETRY_BACKOFF_SECONDS):
        """
        Initialize blob manager

        Args:
            storage_root: Root directory for blob storage
            retry_attempts: Attempts for transient I/O failures
            retry_backoff_seconds: Base delay between attempts (doubles each retry)
        """
        self.storage_root = Path(storage_root)
        self.temp_root = self.storage_root / ".tmp"
        self.retry_attempts = retry_attempts
        self.retry_backoff_seconds = retry_backoff_seconds

    def InitializeStorage(self) -> None:
        """
        Create the storage directory structure if needed
        """
        try:
            self.storage_root.mkdir(parents=True, exist_ok=True)
            self.temp_root.mkdir(exist_ok=True)
            logger.info(f"Blob storage ready: {self.storage_root.absolute()}")
        except Exception as e:
            logger.error(f"Failed to initialize storage: {str(e)}")
            raise

    def GetBlobPath(self, content_hash: str) -> Path:
        """
        Resolve a content hash to its storage path

        Args:
            content_hash: Hex-encoded SHA-256 digest

        Returns:
            Path: Absolute path of the blob
        """
        if len(content_hash) < 3 or not all(c in "0123456789abcdef" for c in content_hash):
            raise ValueError(f"Invalid content hash: {content_hash}")
        return (self.storage_root / content_hash[:2] / content_hash).absolute()

    def _WithRetries(self, operation: str, key: str, action: Callable):
        """
        Run an I/O action, retrying transient OSErrors a bounded number of times

        Raises:
            StorageError: If every attempt fails
        """
        delay = self.retry_backoff_seconds
        for attempt in range(1, self.retry_attempts + 1):
            try:
                return action()
            except FileNotFoundError:
                raise
            except OSError as e:
                if attempt == self.retry_attempts:
                    logger.error(f"Storage {operation} failed for {key} after {attempt} attempts: {str(e)}")
                    raise StorageError(operation, key, e)
                logger.warning(f"Storage {operation} failed for {key} (attempt {attempt}), retrying: {str(e)}")
                time.sleep(delay)
                delay *= 2

    def Exists(self, content_hash: str) -> bool:
        """Check whether a blob is stored"""
        return self.GetBlobPath(content_hash).exists()

    def Put(self, content_hash: str, data: bytes) -> Path:
        """
        Store bytes under their content hash

        The caller computes the hash; storing is idempotent and a blob that
        already exists is left untouched.

        Args:
            content_hash: Hex-encoded SHA-256 digest of data
            data: Content bytes

        Returns:
            Path: Path of the stored blob
        """
        blob_path = self.GetBlobPath(content_hash)
        if blob_path.exists():
            logger.debug(f"Blob already stored: {content_hash[:16]}...")
            return blob_path

        def write():
            blob_path.parent.mkdir(parents=True, exist_ok=True)
            self.temp_root.mkdir(parents=True, exist_ok=True)
            temp_path = self.temp_root / f"{content_hash}.{uuid.uuid4().hex}"
            try:
                with open(temp_path, 'wb') as f:
                    f.write(data)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(temp_path, blob_path)
            finally:
                if temp_path.exists():
                    temp_path.unlink()
            return blob_path

        path = self._WithRetries("write", content_hash, write)
        logger.debug(f"Stored blob {content_hash[:16]}... ({len(data)} bytes)")
        return path

    def Get(self, content_hash: str) -> bytes:
        """
        Read a blob

        Args:
            content_hash: Hex-encoded SHA-256 digest

        Returns:
            bytes: Blob content

        Raises:
            FileNotFoundError: If the blob is not stored
            StorageError: If reading keeps failing
        """
        blob_path = self.GetBlobPath(content_hash)
        if not blob_path.exists():
            raise FileNotFoundError(f"Blob not found: {content_hash}")
        return self._WithRetries("read", content_hash, blob_path.read_bytes)

    def Delete(self, content_hash: str) -> bool:
        """
        Delete a blob

        Returns:
            bool: True if a blob was removed
        """
        blob_path = self.GetBlobPath(content_hash)
        if not blob_path.exists():
            return False
        self._WithRetries("delete", content_hash, blob_path.unlink)
        logger.info(f"Deleted blob {content_hash[:16]}...")
        return True

    def IterateHashes(self) -> Iterator[str]:
        """Yield the content hash of every stored blob"""
        if not self.storage_root.exists():
            return
        for shard in self.storage_root.iterdir():
            if not shard.is_dir() or shard == self.temp_root:
                continue
            for blob_path in shard.iterdir():
                if blob_path.is_file() and len(blob_path.name) == 64:
                    yield blob_path.name

    def CollectGarbage(self, referenced_hashes: Set[str], min_age_seconds: int = 3600) -> int:
        """
        Delete blobs that no version or pending conflict references

        Blobs younger than min_age_seconds are kept: a submission stores its
        content before its version row is committed.

        Args:
            referenced_hashes: Hashes that must be kept
            min_age_seconds: Grace period for freshly written blobs

        Returns:
            int: Number of blobs deleted
        """
        cutoff = time.time() - min_age_seconds
        orphans = [
            h for h in self.IterateHashes()
            if h not in referenced_hashes and self.GetBlobPath(h).stat().st_mtime <= cutoff
        ]
        deleted = 0
        for content_hash in orphans:
            if self.Delete(content_hash):
                deleted += 1

        if deleted:
            logger.info(f"Blob garbage collection removed {deleted} unreferenced blobs")
        return deleted
