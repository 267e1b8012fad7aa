"""
VaultSync Server - Quota Endpoints

Users read their own usage; admins and moderators may read anyone's;
only admins change limits or force a recalculation.
"""

import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query

from models.database import User
from models.api import QuotaResponse, QuotaUpdateRequest, QuotaRecalculateResponse
from auth import GetCurrentActiveUser, RequireAdmin, UserHasRole, ROLE_ADMIN, ROLE_MODERATOR
from exceptions import NotFoundError
import quota_ledger


# Create logger
logger = logging.getLogger(__name__)

# Create router instance
router = APIRouter()


def _RequireUser(user_id: int) -> None:
    from database import db_manager

    session = db_manager.GetSession()
    try:
        if session.query(User).filter(User.user_id == user_id).first() is None:
            raise NotFoundError("user", user_id)
    finally:
        session.close()


def _QuotaResponse(user_id: int, used: int, limit: int) -> QuotaResponse:
    return QuotaResponse(user_id=user_id, used=used, limit=limit, available=max(0, limit - used))


@router.get("/quota", response_model=QuotaResponse, tags=["Quota"])
async def get_quota(
    user_id: Optional[int] = Query(None, description="User to inspect (admin/moderator only)"),
    current_user: User = Depends(GetCurrentActiveUser)
):
    """Get storage usage and limit"""
    from database import db_manager

    target_id = user_id if user_id is not None else current_user.user_id

    if target_id != current_user.user_id:
        if not UserHasRole(current_user, ROLE_ADMIN, ROLE_MODERATOR):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Permission denied. Only admins and moderators can view other users' quota"
            )
        _RequireUser(target_id)

    used, limit = quota_ledger.GetUsage(db_manager, target_id)
    return _QuotaResponse(target_id, used, limit)


@router.put("/quota", response_model=QuotaResponse, tags=["Quota"])
async def set_quota(
    request: QuotaUpdateRequest,
    user_id: int = Query(..., description="User whose limit changes"),
    current_user: User = Depends(RequireAdmin)
):
    """Set a user's storage limit (admin only)"""
    from database import db_manager

    _RequireUser(user_id)
    record = quota_ledger.SetLimit(db_manager, user_id, request.limit)

    logger.info(f"Admin '{current_user.username}' set quota of user {user_id} to {request.limit} bytes")
    return _QuotaResponse(user_id, record.used_bytes, record.limit_bytes)


@router.post("/quota/recalculate", response_model=QuotaRecalculateResponse, tags=["Quota"])
async def recalculate_quota(
    user_id: int = Query(..., description="User to recalculate"),
    current_user: User = Depends(RequireAdmin)
):
    """Recompute a user's usage from live versions (admin only)"""
    from database import db_manager

    _RequireUser(user_id)
    previous, actual = quota_ledger.RecalculateUsage(db_manager, user_id)

    logger.info(f"Admin '{current_user.username}' recalculated quota of user {user_id}: {previous} -> {actual}")
    return QuotaRecalculateResponse(user_id=user_id, previous_used=previous, used=actual)
