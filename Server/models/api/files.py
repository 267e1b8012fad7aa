"""
VaultSync Server - File API Models

Pydantic models for file listing, history and restore endpoints.
"""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel

from models.api.file_version import FileVersionInfo


class FileInfo(BaseModel):
    file_id: int
    name: str
    parent_folder_id: Optional[int]
    is_deleted: bool
    current_version_id: int
    content_hash: Optional[str]
    size_bytes: int
    modified_at_utc: Optional[datetime]
    forked_from_file_id: Optional[int]


class FileListResponse(BaseModel):
    files: List[FileInfo]


class VersionListResponse(BaseModel):
    file_id: int
    current_version_id: int
    versions: List[FileVersionInfo]


class RestoreVersionRequest(BaseModel):
    version_id: int
    device_id: str


class UndeleteRequest(BaseModel):
    device_id: str
