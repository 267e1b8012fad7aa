"""
VaultSync Server - Sync Endpoints

This module contains the sync session endpoints: session setup, change
delivery and acknowledgement, change submission and conflict resolution.
"""

import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query, File as FastAPIFile, UploadFile, Form

from models.database import User
from models.api import (
    SyncInitRequest, SyncInitResponse,
    ChangeInfo, SyncChangesResponse,
    SyncAckRequest, SyncAckResponse,
    FileVersionInfo, ConflictInfo,
    SyncSubmitResponse,
    SyncResolveRequest, SyncResolveResponse,
    ConflictListResponse
)
from auth import GetCurrentActiveUser
from exceptions import VaultSyncError
import conflict_resolver
import sync_sessions


# Create logger
logger = logging.getLogger(__name__)

# Create router instance
router = APIRouter()


# ==================== Session Endpoints ====================

@router.post("/sync/init", response_model=SyncInitResponse, tags=["Sync"])
async def init_sync(
    request: SyncInitRequest,
    current_user: User = Depends(GetCurrentActiveUser)
):
    """
    Start a sync session for a device

    Without a cursor the device gets a full resync. A cursor from an
    earlier session resumes, as does last_seen_utc, the timestamp of the
    last change the device processed. If the resume point can no longer
    be used the response says full_resync_required.
    """
    from database import db_manager

    try:
        session = sync_sessions.InitializeSession(
            db_manager, current_user.user_id, request.device_id, request.cursor,
            last_seen_utc=request.last_seen_utc
        )

        return SyncInitResponse(
            session_id=session.session_id,
            cursor=session.cursor,
            state=session.State().value,
            full_resync_required=session.full_resync_required,
            idle_timeout_seconds=session.idle_after_seconds
        )

    except (VaultSyncError, ValueError):
        raise
    except Exception as e:
        logger.error(f"Error starting sync session for user '{current_user.username}': {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to start sync session"
        )


@router.delete("/sync/session/{session_id}", tags=["Sync"])
async def end_sync(
    session_id: str,
    current_user: User = Depends(GetCurrentActiveUser)
):
    """End a sync session before it times out"""
    sync_sessions.EndSession(session_id, current_user.user_id)
    return {"success": True, "session_id": session_id}


# ==================== Change Delivery ====================

@router.get("/sync/changes", response_model=SyncChangesResponse, tags=["Sync"])
async def get_changes(
    session_id: str = Query(..., description="Sync session ID"),
    cursor: Optional[str] = Query(None, description="Resume after this cursor instead of the acknowledged one"),
    limit: Optional[int] = Query(None, ge=1, le=5000, description="Maximum changes in this batch"),
    current_user: User = Depends(GetCurrentActiveUser)
):
    """
    Get the next batch of changes

    The session cursor does not move until the batch is acknowledged via
    /sync/ack, so repeating this call redelivers the same batch.

    Raises:
        410: Cursor is older than retained history (full resync required)
    """
    from database import db_manager

    try:
        entries, next_cursor, has_more = sync_sessions.GetChanges(
            db_manager, session_id, current_user.user_id, cursor, limit
        )
        session = sync_sessions.GetSession(session_id, current_user.user_id)

        return SyncChangesResponse(
            changes=[ChangeInfo.FromEntry(entry) for entry in entries],
            next_cursor=next_cursor,
            has_more=has_more,
            full_resync_required=session.full_resync_required
        )

    except (VaultSyncError, ValueError):
        raise
    except Exception as e:
        logger.error(f"Error listing changes for user '{current_user.username}': {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to list changes"
        )


@router.post("/sync/ack", response_model=SyncAckResponse, tags=["Sync"])
async def acknowledge_changes(
    request: SyncAckRequest,
    current_user: User = Depends(GetCurrentActiveUser)
):
    """Acknowledge changes up to a cursor, advancing the session"""
    from database import db_manager

    session = sync_sessions.AcknowledgeChanges(
        db_manager, request.session_id, current_user.user_id, request.cursor
    )

    return SyncAckResponse(
        session_id=session.session_id,
        cursor=session.cursor,
        pending_cursor=session.pending_cursor
    )


# ==================== Submission ====================

@router.put("/sync/submit", response_model=SyncSubmitResponse, tags=["Sync"])
async def submit_change(
    session_id: str = Form(...),
    file: UploadFile = FastAPIFile(...),
    file_id: Optional[int] = Form(None),
    parent_version_id: Optional[int] = Form(None),
    content_hash: Optional[str] = Form(None),
    name: Optional[str] = Form(None),
    parent_folder_id: Optional[int] = Form(None),
    current_user: User = Depends(GetCurrentActiveUser)
):
    """
    Submit a local change

    Omit file_id to create a new file called `name`. parent_version_id is
    the version the change was made on; if the server has moved on, the
    result is a pending conflict (or a no-op for identical content).

    Raises:
        422: content_hash does not match the uploaded bytes
        507: Quota exceeded
    """
    from database import db_manager, blob_manager

    try:
        content = await file.read()

        result = sync_sessions.SubmitChange(
            db_manager, blob_manager, session_id, current_user.user_id,
            file_id, parent_version_id, content,
            declared_hash=content_hash, name=name or file.filename,
            parent_folder_id=parent_folder_id
        )

        return SyncSubmitResponse(
            status=result.status,
            version=FileVersionInfo.FromVersion(result.version) if result.version else None,
            conflict=ConflictInfo.FromConflict(result.conflict) if result.conflict else None
        )

    except (VaultSyncError, ValueError):
        raise
    except Exception as e:
        logger.error(f"Error submitting change for user '{current_user.username}': {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to submit change"
        )


# ==================== Conflicts ====================

@router.put("/sync/resolve", response_model=SyncResolveResponse, tags=["Sync"])
async def resolve_conflict(
    request: SyncResolveRequest,
    current_user: User = Depends(GetCurrentActiveUser)
):
    """
    Resolve a pending conflict with keep_local, keep_remote or fork

    If the file changed again since the conflict was recorded, the
    conflict comes back re-targeted (state 'pending') for a fresh decision.
    """
    from database import db_manager

    try:
        device_id = None
        if request.session_id:
            device_id = sync_sessions.GetSession(request.session_id, current_user.user_id).device_id

        resolution = conflict_resolver.ResolveConflict(
            db_manager, request.conflict_id, request.decision,
            owner_id=current_user.user_id, device_id=device_id
        )

        return SyncResolveResponse(
            conflict_id=resolution.conflict_id,
            state=resolution.state,
            version=FileVersionInfo.FromVersion(resolution.version) if resolution.version else None,
            forked_version=(
                FileVersionInfo.FromVersion(resolution.forked_version) if resolution.forked_version else None
            ),
            conflict=ConflictInfo.FromConflict(resolution.conflict) if resolution.conflict else None
        )

    except (VaultSyncError, ValueError):
        raise
    except Exception as e:
        logger.error(f"Error resolving conflict {request.conflict_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to resolve conflict"
        )


@router.get("/sync/conflicts", response_model=ConflictListResponse, tags=["Sync"])
async def list_conflicts(
    file_id: Optional[int] = Query(None, description="Only conflicts for this file"),
    current_user: User = Depends(GetCurrentActiveUser)
):
    """List the current user's pending conflicts"""
    from database import db_manager

    conflicts = conflict_resolver.ListPendingConflicts(db_manager, current_user.user_id, file_id)
    return ConflictListResponse(conflicts=[ConflictInfo.FromConflict(c) for c in conflicts])
