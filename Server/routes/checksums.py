"""
VaultSync Server - Checksum Endpoints

Cheap "what changed" checks and stored-content verification.
"""

import logging
from fastapi import APIRouter, Depends, HTTPException, status, Query

from models.database import User
from models.api import ChecksumsResponse, ChecksumVerifyRequest, ChecksumVerifyResult, ChecksumVerifyResponse
from auth import GetCurrentActiveUser
from checksums import BatchChecksums, VerifyStoredContent
from exceptions import VaultSyncError


# Create logger
logger = logging.getLogger(__name__)

# Create router instance
router = APIRouter()

MAX_FILE_IDS = 1000


def ParseFileIds(file_ids: str) -> list:
    """Parse a comma-separated list of file IDs"""
    try:
        ids = [int(part) for part in file_ids.split(",") if part.strip()]
    except ValueError:
        raise ValueError("file_ids must be a comma-separated list of integers")
    if not ids:
        raise ValueError("file_ids must not be empty")
    if len(ids) > MAX_FILE_IDS:
        raise ValueError(f"At most {MAX_FILE_IDS} file_ids per request")
    return ids


@router.get("/checksums", response_model=ChecksumsResponse, tags=["Checksums"])
async def get_checksums(
    file_ids: str = Query(..., description="Comma-separated file IDs"),
    current_user: User = Depends(GetCurrentActiveUser)
):
    """
    Get the current content hash of each file

    Files that are unknown, deleted or not owned by the caller are omitted.
    """
    from database import db_manager

    ids = ParseFileIds(file_ids)
    checksums = BatchChecksums(db_manager, current_user.user_id, ids)

    logger.debug(f"User '{current_user.username}' fetched {len(checksums)} of {len(ids)} checksums")
    return ChecksumsResponse(checksums=checksums)


@router.post("/checksums/verify", response_model=ChecksumVerifyResponse, tags=["Checksums"])
async def verify_checksums(
    request: ChecksumVerifyRequest,
    current_user: User = Depends(GetCurrentActiveUser)
):
    """
    Verify stored content against the hashes a client holds

    Each stored blob is re-hashed, so this also detects server-side corruption.
    """
    from database import db_manager, blob_manager

    if len(request.files) > MAX_FILE_IDS:
        raise ValueError(f"At most {MAX_FILE_IDS} files per request")

    try:
        results = VerifyStoredContent(db_manager, blob_manager, current_user.user_id, request.files)

        failed = sum(1 for result in results.values() if not result["ok"])
        if failed:
            logger.warning(f"Checksum verification for user '{current_user.username}': {failed} of {len(results)} failed")

        return ChecksumVerifyResponse(
            results={file_id: ChecksumVerifyResult(**result) for file_id, result in results.items()}
        )

    except (VaultSyncError, ValueError):
        raise
    except Exception as e:
        logger.error(f"Error verifying checksums for user '{current_user.username}': {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to verify checksums"
        )
