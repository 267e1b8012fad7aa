"""
VaultSync Server - File Endpoints

This module contains endpoints for file listing, download, version
history, deletion, undelete and restore.
"""

import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query
from fastapi.responses import Response

from models.database import User
from models.api import (
    FileInfo, FileListResponse, FileVersionInfo, VersionListResponse,
    RestoreVersionRequest, UndeleteRequest
)
from auth import GetCurrentActiveUser
from checksums import VerifyContent
from exceptions import NotFoundError, StorageError, VaultSyncError
from timestamps import AsUtc
import version_store


# Create logger
logger = logging.getLogger(__name__)

# Create router instance
router = APIRouter()


# ==================== Listing ====================

@router.get("/files", response_model=FileListResponse, tags=["Files"])
async def list_files(
    include_deleted: bool = Query(False, description="Include deleted files still within retention"),
    current_user: User = Depends(GetCurrentActiveUser)
):
    """
    List the current user's files with their current versions

    Args:
        include_deleted: Include tombstoned files
        current_user: Currently authenticated user (from JWT token)

    Returns:
        FileListResponse: Files ordered by name
    """
    from database import db_manager

    try:
        files = []
        for file, version in version_store.ListFiles(db_manager, current_user.user_id, include_deleted):
            files.append(FileInfo(
                file_id=file.file_id,
                name=file.name,
                parent_folder_id=file.parent_folder_id,
                is_deleted=file.is_deleted,
                current_version_id=file.current_version_id,
                content_hash=version.content_hash if version else None,
                size_bytes=version.size_bytes if version else 0,
                modified_at_utc=AsUtc(version.modified_at_utc) if version else None,
                forked_from_file_id=file.forked_from_file_id
            ))

        logger.info(f"User '{current_user.username}' listed {len(files)} files")
        return FileListResponse(files=files)

    except Exception as e:
        logger.error(f"Error listing files for user '{current_user.username}': {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve file list"
        )


@router.get("/files/{file_id}/versions", response_model=VersionListResponse, tags=["Files"])
async def list_versions(
    file_id: int,
    current_user: User = Depends(GetCurrentActiveUser)
):
    """Retained version history of a file, newest first"""
    from database import db_manager

    file = version_store.GetFile(db_manager, file_id, owner_id=current_user.user_id)
    versions = version_store.ListVersions(db_manager, file_id)

    return VersionListResponse(
        file_id=file_id,
        current_version_id=file.current_version_id,
        versions=[FileVersionInfo.FromVersion(v) for v in versions]
    )


# ==================== Download ====================

@router.get("/files/{file_id}/content", tags=["Files"])
async def download_file(
    file_id: int,
    version_id: Optional[int] = Query(None, description="Version to download (default: current)"),
    current_user: User = Depends(GetCurrentActiveUser)
):
    """
    Download a version's content

    The stored bytes are re-hashed before they are returned; content that
    no longer matches its recorded hash is never served.

    Raises:
        404: Unknown file or version, or a tombstone
        422: Stored content is corrupt
    """
    from database import db_manager, blob_manager

    file = version_store.GetFile(db_manager, file_id, owner_id=current_user.user_id)
    version = version_store.GetVersion(db_manager, file_id, version_id or file.current_version_id)

    if version.is_tombstone:
        raise NotFoundError("content", f"{file_id}/{version.version_id}")

    try:
        data = blob_manager.Get(version.content_hash)
    except FileNotFoundError:
        logger.error(f"Content of file {file_id} version {version.version_id} missing from storage")
        raise StorageError("read", version.content_hash)

    VerifyContent(data, version.content_hash, file_id)

    return Response(
        content=data,
        media_type="application/octet-stream",
        headers={
            "Content-Disposition": f'attachment; filename="{file.name}"',
            "X-Content-Hash": version.content_hash,
            "X-Version-Id": str(version.version_id)
        }
    )


# ==================== Delete / Undelete / Restore ====================

@router.delete("/files/{file_id}", response_model=FileVersionInfo, tags=["Files"])
async def delete_file(
    file_id: int,
    device_id: str = Query(..., description="Device requesting the delete"),
    parent_version_id: Optional[int] = Query(None, description="Version the device believes is current"),
    current_user: User = Depends(GetCurrentActiveUser)
):
    """
    Delete a file (tombstone), releasing its quota

    Raises:
        409: parent_version_id is no longer current
    """
    from database import db_manager

    version_store.GetFile(db_manager, file_id, owner_id=current_user.user_id)

    try:
        tombstone = version_store.TombstoneFile(db_manager, file_id, device_id, parent_version_id)
        logger.info(f"User '{current_user.username}' deleted file {file_id}")
        return FileVersionInfo.FromVersion(tombstone)

    except (VaultSyncError, ValueError):
        raise
    except Exception as e:
        logger.error(f"Error deleting file {file_id}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete file"
        )


@router.post("/files/{file_id}/undelete", response_model=FileVersionInfo, tags=["Files"])
async def undelete_file(
    file_id: int,
    request: UndeleteRequest,
    current_user: User = Depends(GetCurrentActiveUser)
):
    """Restore a deleted file within its retention window"""
    from database import db_manager

    version_store.GetFile(db_manager, file_id, owner_id=current_user.user_id)
    version = version_store.UndeleteFile(db_manager, file_id, request.device_id)

    logger.info(f"User '{current_user.username}' undeleted file {file_id}")
    return FileVersionInfo.FromVersion(version)


@router.post("/files/{file_id}/restore", response_model=FileVersionInfo, tags=["Files"])
async def restore_version(
    file_id: int,
    request: RestoreVersionRequest,
    current_user: User = Depends(GetCurrentActiveUser)
):
    """Make an older version's content current again"""
    from database import db_manager

    version_store.GetFile(db_manager, file_id, owner_id=current_user.user_id)
    version = version_store.RestoreVersion(db_manager, file_id, request.version_id, request.device_id)

    logger.info(
        f"User '{current_user.username}' restored file {file_id} to version {request.version_id}"
    )
    return FileVersionInfo.FromVersion(version)
