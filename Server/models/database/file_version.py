"""
VaultSync Server - FileVersion Database Model

Immutable snapshot of a file. Rows are only ever appended, except when
maintenance garbage-collects history past its retention window.
"""

from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, Index, UniqueConstraint

from models.database.base import Base


class FileVersion(Base):
    """
    File versions table

    version_id strictly increases per file. record_id is a global
    insertion sequence used only to break ordering ties in the change feed.
    """
    __tablename__ = "file_versions"

    record_id = Column(Integer, primary_key=True, autoincrement=True)
    file_id = Column(Integer, ForeignKey("files.file_id", ondelete="CASCADE"), nullable=False)
    version_id = Column(Integer, nullable=False)
    owner_id = Column(Integer, nullable=False)  # Denormalized for change listing
    parent_version_id = Column(Integer, nullable=True)  # NULL for the first version
    content_hash = Column(String, nullable=True)  # SHA-256 hex, NULL for tombstones
    size_bytes = Column(Integer, nullable=False, default=0)
    modified_at_utc = Column(DateTime, nullable=False)
    origin_device_id = Column(String, nullable=False)
    is_tombstone = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint('file_id', 'version_id', name='uq_file_versions_file_version'),
        # Change feed: per user, ordered by modification time
        Index('idx_file_versions_owner_modified', 'owner_id', 'modified_at_utc'),
        Index('idx_file_versions_hash', 'content_hash'),
        {"sqlite_autoincrement": True}
    )
