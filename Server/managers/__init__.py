"""
VaultSync Server - Managers Package

This package contains manager classes for the database and blob storage.
"""

from managers.database_manager import DatabaseManager
from managers.blob_manager import BlobManager

__all__ = ['DatabaseManager', 'BlobManager']
