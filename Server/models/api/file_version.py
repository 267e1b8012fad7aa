"""
VaultSync Server - File Version API Model

Pydantic model for FileVersion responses.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel

from models.database import FileVersion
from timestamps import AsUtc


class FileVersionInfo(BaseModel):
    """One immutable version of a file"""
    file_id: int
    version_id: int
    parent_version_id: Optional[int]
    content_hash: Optional[str]  # None for tombstones
    size_bytes: int
    modified_at_utc: datetime
    origin_device_id: str
    is_tombstone: bool

    @classmethod
    def FromVersion(cls, version: FileVersion) -> "FileVersionInfo":
        return cls(
            file_id=version.file_id,
            version_id=version.version_id,
            parent_version_id=version.parent_version_id,
            content_hash=version.content_hash,
            size_bytes=version.size_bytes,
            modified_at_utc=AsUtc(version.modified_at_utc),
            origin_device_id=version.origin_device_id,
            is_tombstone=version.is_tombstone
        )
