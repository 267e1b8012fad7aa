"""
VaultSync Server - Database Module

This module exports the global db_manager and blob_manager instances for
use across the application.
"""

from managers.database_manager import DatabaseManager
from managers.blob_manager import BlobManager

# Global manager instances
# Initialized in server.py lifespan handler (or by tests before startup)
db_manager: DatabaseManager = None
blob_manager: BlobManager = None
