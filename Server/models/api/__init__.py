"""
VaultSync Server - API Models Package

This package contains Pydantic models for all API endpoints.
"""

from models.api.file_version import FileVersionInfo
from models.api.sync import (
    SyncInitRequest,
    SyncInitResponse,
    ChangeInfo,
    SyncChangesResponse,
    SyncAckRequest,
    SyncAckResponse,
    ConflictInfo,
    SyncSubmitResponse,
    SyncResolveRequest,
    SyncResolveResponse,
    ConflictListResponse
)
from models.api.checksums import (
    ChecksumsResponse,
    ChecksumVerifyRequest,
    ChecksumVerifyResult,
    ChecksumVerifyResponse
)
from models.api.quota import QuotaResponse, QuotaUpdateRequest, QuotaRecalculateResponse
from models.api.files import (
    FileInfo,
    FileListResponse,
    VersionListResponse,
    RestoreVersionRequest,
    UndeleteRequest
)
from models.api.settings import SettingsResponse, SettingsUpdateRequest

__all__ = [
    'FileVersionInfo',
    'SyncInitRequest',
    'SyncInitResponse',
    'ChangeInfo',
    'SyncChangesResponse',
    'SyncAckRequest',
    'SyncAckResponse',
    'ConflictInfo',
    'SyncSubmitResponse',
    'SyncResolveRequest',
    'SyncResolveResponse',
    'ConflictListResponse',
    'ChecksumsResponse',
    'ChecksumVerifyRequest',
    'ChecksumVerifyResult',
    'ChecksumVerifyResponse',
    'QuotaResponse',
    'QuotaUpdateRequest',
    'QuotaRecalculateResponse',
    'FileInfo',
    'FileListResponse',
    'VersionListResponse',
    'RestoreVersionRequest',
    'UndeleteRequest',
    'SettingsResponse',
    'SettingsUpdateRequest',
]
