"""
VaultSync Server - Exceptions Package

Contains the error taxonomy of the synchronization subsystem.
"""

from exceptions.vaultsync_error import VaultSyncError
from exceptions.integrity_error import IntegrityError
from exceptions.quota_exceeded_error import QuotaExceededError
from exceptions.conflict_detected import ConflictDetected
from exceptions.stale_cursor_error import StaleCursorError
from exceptions.not_found_error import NotFoundError
from exceptions.storage_error import StorageError

__all__ = [
    'VaultSyncError',
    'IntegrityError',
    'QuotaExceededError',
    'ConflictDetected',
    'StaleCursorError',
    'NotFoundError',
    'StorageError'
]
