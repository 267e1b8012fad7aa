"""
VaultSync Server - Sync API Models

Pydantic models for the sync session endpoints.
"""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel

from models.api.file_version import FileVersionInfo
from models.database import Conflict
from models.infrastructure import ChangeEntry, ResolutionDecision, ResolutionState, SubmitStatus
from timestamps import AsUtc


class SyncInitRequest(BaseModel):
    device_id: str
    cursor: Optional[str] = None  # Cursor from a previous session
    last_seen_utc: Optional[datetime] = None  # Rebuilds the cursor when no token is kept


class SyncInitResponse(BaseModel):
    session_id: str
    cursor: str
    state: str
    full_resync_required: bool
    idle_timeout_seconds: int


class ChangeInfo(FileVersionInfo):
    """A version delivered by the change feed"""
    name: str
    parent_folder_id: Optional[int]
    is_current: bool
    cursor: str  # Resume point after this change

    @classmethod
    def FromEntry(cls, entry: ChangeEntry) -> "ChangeInfo":
        return cls(
            **FileVersionInfo.FromVersion(entry.version).model_dump(),
            name=entry.name,
            parent_folder_id=entry.parent_folder_id,
            is_current=entry.is_current,
            cursor=entry.cursor
        )


class SyncChangesResponse(BaseModel):
    changes: List[ChangeInfo]
    next_cursor: str
    has_more: bool
    full_resync_required: bool


class SyncAckRequest(BaseModel):
    session_id: str
    cursor: str


class SyncAckResponse(BaseModel):
    session_id: str
    cursor: str
    pending_cursor: Optional[str]


class ConflictInfo(BaseModel):
    """A pending conflict: local is the server version, remote the submission"""
    conflict_id: str
    file_id: int
    local_version_id: int
    remote_parent_version_id: int
    remote_content_hash: str
    remote_size_bytes: int
    remote_device_id: str
    common_ancestor_version_id: Optional[int]
    resolution_state: ResolutionState
    created_at_utc: datetime

    @classmethod
    def FromConflict(cls, conflict: Conflict) -> "ConflictInfo":
        return cls(
            conflict_id=conflict.conflict_id,
            file_id=conflict.file_id,
            local_version_id=conflict.local_version_id,
            remote_parent_version_id=conflict.remote_parent_version_id,
            remote_content_hash=conflict.remote_content_hash,
            remote_size_bytes=conflict.remote_size_bytes,
            remote_device_id=conflict.remote_device_id,
            common_ancestor_version_id=conflict.common_ancestor_version_id,
            resolution_state=ResolutionState(conflict.resolution_state),
            created_at_utc=AsUtc(conflict.created_at_utc)
        )


class SyncSubmitResponse(BaseModel):
    status: SubmitStatus
    version: Optional[FileVersionInfo] = None
    conflict: Optional[ConflictInfo] = None


class SyncResolveRequest(BaseModel):
    conflict_id: str
    decision: ResolutionDecision
    session_id: Optional[str] = None


class SyncResolveResponse(BaseModel):
    conflict_id: str
    state: ResolutionState
    version: Optional[FileVersionInfo] = None
    forked_version: Optional[FileVersionInfo] = None
    conflict: Optional[ConflictInfo] = None  # Set when the conflict was re-targeted


class ConflictListResponse(BaseModel):
    conflicts: List[ConflictInfo]
