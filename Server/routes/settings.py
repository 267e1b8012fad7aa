"""
VaultSync Server - Settings Endpoints

Admin access to the server settings table.
"""

import logging
from fastapi import APIRouter, Depends

from models.database import Setting, User
from models.api import SettingsResponse, SettingsUpdateRequest
from models.infrastructure import ResolutionDecision
from managers.database_manager import DEFAULT_SETTINGS
from auth import RequireAdmin
from conflict_resolver import POLICY_LAST_WRITE_WINS, POLICY_MANUAL


# Create logger
logger = logging.getLogger(__name__)

# Create router instance
router = APIRouter()

# Never exposed or writable over the API
HIDDEN_SETTINGS = {"cursor_secret"}

INTEGER_SETTINGS = {
    "jwt_expiration_hours": (1, 168),
    "default_quota_bytes": (0, None),
    "max_versions_per_file": (0, None),
    "tombstone_retention_days": (0, 3650),
    "session_idle_seconds": (1, None),
    "session_ttl_seconds": (1, None),
    "sync_batch_size": (1, 5000),
    "pending_conflict_timeout_hours": (0, None),
}

CHOICE_SETTINGS = {
    "conflict_policy": {POLICY_MANUAL, POLICY_LAST_WRITE_WINS},
    "pending_conflict_timeout_decision": {decision.value for decision in ResolutionDecision},
}


def ValidateSetting(key: str, value: str) -> str:
    """
    Check a setting update

    Raises:
        ValueError: Unknown key or invalid value
    """
    if key not in DEFAULT_SETTINGS or key in HIDDEN_SETTINGS:
        raise ValueError(f"Unknown setting: {key}")

    if key in INTEGER_SETTINGS:
        try:
            number = int(value)
        except ValueError:
            raise ValueError(f"{key} must be an integer")
        low, high = INTEGER_SETTINGS[key]
        if number < low or (high is not None and number > high):
            bounds = f"between {low} and {high}" if high is not None else f"at least {low}"
            raise ValueError(f"{key} must be {bounds}")
        return str(number)

    if key in CHOICE_SETTINGS and value not in CHOICE_SETTINGS[key]:
        raise ValueError(f"{key} must be one of: {', '.join(sorted(CHOICE_SETTINGS[key]))}")

    return value


def _VisibleSettings(db_manager) -> dict:
    session = db_manager.GetSession()
    try:
        return {
            setting.key: setting.value
            for setting in session.query(Setting).all()
            if setting.key not in HIDDEN_SETTINGS
        }
    finally:
        session.close()


@router.get("/settings", response_model=SettingsResponse, tags=["Admin"])
async def get_settings(current_user: User = Depends(RequireAdmin)):
    """Get current server settings (admin only)"""
    from database import db_manager

    return SettingsResponse(settings=_VisibleSettings(db_manager))


@router.put("/settings", response_model=SettingsResponse, tags=["Admin"])
async def update_settings(
    request: SettingsUpdateRequest,
    current_user: User = Depends(RequireAdmin)
):
    """
    Update server settings (admin only)

    All values are validated before any is written.
    """
    from database import db_manager

    validated = {key: ValidateSetting(key, value) for key, value in request.settings.items()}

    for key, value in validated.items():
        db_manager.SetSetting(key, value)

    logger.info(f"Admin '{current_user.username}' updated settings: {', '.join(sorted(validated))}")
    return SettingsResponse(settings=_VisibleSettings(db_manager))
