"""
VaultSync Server - Quota API Models

Pydantic models for quota endpoints.
"""

from pydantic import BaseModel


class QuotaResponse(BaseModel):
    user_id: int
    used: int
    limit: int
    available: int


class QuotaUpdateRequest(BaseModel):
    limit: int


class QuotaRecalculateResponse(BaseModel):
    user_id: int
    previous_used: int
    used: int
