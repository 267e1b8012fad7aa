"""
VaultSync Server - Settings API Models

Pydantic models for settings management endpoints.
"""

from typing import Dict
from pydantic import BaseModel


class SettingsResponse(BaseModel):
    settings: Dict[str, str]


class SettingsUpdateRequest(BaseModel):
    settings: Dict[str, str]  # Only known keys are accepted
