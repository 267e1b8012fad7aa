"""
VaultSync Server - File Database Model

A File is a logical document owned by exactly one user. Its identity
never changes; only the current-version pointer moves.
"""

from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, Index

from models.database.base import Base


class File(Base):
    """
    Files table - one row per logical document

    current_version_id is the compare-and-swap pointer guarded by the
    version store. 0 means no version has been committed yet.
    """
    __tablename__ = "files"

    file_id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(Integer, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)
    name = Column(String, nullable=False)
    parent_folder_id = Column(Integer, nullable=True)  # Folders are managed outside the sync core
    is_deleted = Column(Boolean, nullable=False, default=False)
    deleted_at_utc = Column(DateTime, nullable=True)
    current_version_id = Column(Integer, nullable=False, default=0)
    forked_from_file_id = Column(Integer, nullable=True)  # Set on conflicted copies
    created_at_utc = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        Index('idx_files_owner', 'owner_id'),
        Index('idx_files_deleted', 'is_deleted', 'deleted_at_utc'),
        {"sqlite_autoincrement": True}
    )
