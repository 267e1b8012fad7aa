"""
VaultSync Server - Infrastructure Models Package

This package contains dataclass models for infrastructure components
like sync sessions, cursors and conflict outcomes.
"""

from models.infrastructure.sync_session import SyncSession, SessionState
from models.infrastructure.sync_cursor import SyncCursor
from models.infrastructure.change_entry import ChangeEntry
from models.infrastructure.conflict_resolution import (
    ResolutionState, ResolutionDecision, SubmitStatus,
    SubmitResult, ConflictResolution
)

__all__ = [
    'SyncSession',
    'SessionState',
    'SyncCursor',
    'ChangeEntry',
    'ResolutionState',
    'ResolutionDecision',
    'SubmitStatus',
    'SubmitResult',
    'ConflictResolution',
]
