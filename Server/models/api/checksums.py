"""
VaultSync Server - Checksum API Models

Pydantic models for checksum lookup and verification endpoints.
"""

from typing import Dict, Optional
from pydantic import BaseModel


class ChecksumsResponse(BaseModel):
    checksums: Dict[int, str]  # file_id -> content hash of the current version


class ChecksumVerifyRequest(BaseModel):
    files: Dict[int, str]  # file_id -> hash the client holds


class ChecksumVerifyResult(BaseModel):
    ok: bool
    error: Optional[str] = None  # not_found, hash_mismatch, content_missing, corrupt
    current_hash: Optional[str] = None


class ChecksumVerifyResponse(BaseModel):
    results: Dict[int, ChecksumVerifyResult]
