"""
VaultSync Server - Change Entry Model

One element of a change feed batch: the version, the file metadata the
client needs to materialize it, and the cursor positioned just after it.
"""

from dataclasses import dataclass
from typing import Optional

from models.database import FileVersion


@dataclass
class ChangeEntry:
    """A FileVersion delivered by the change feed"""
    version: FileVersion
    name: str
    parent_folder_id: Optional[int]
    is_current: bool
    cursor: str  # Resume token positioned after this entry
