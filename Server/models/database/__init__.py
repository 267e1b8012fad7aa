"""
VaultSync Server - Database Models Package

This package contains all SQLAlchemy database model definitions.
All models share a common declarative base for proper table relationships.
"""

# Import Base first
from models.database.base import Base

# Import all models
from models.database.role import Role
from models.database.user import User
from models.database.file import File
from models.database.file_version import FileVersion
from models.database.conflict import Conflict
from models.database.quota_record import QuotaRecord
from models.database.sync_horizon import SyncHorizon
from models.database.setting import Setting

# Export all models and Base
__all__ = [
    'Base',
    'Role',
    'User',
    'File',
    'FileVersion',
    'Conflict',
    'QuotaRecord',
    'SyncHorizon',
    'Setting',
]
