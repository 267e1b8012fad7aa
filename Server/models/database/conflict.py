"""
VaultSync Server - Conflict Database Model

Pending divergence between the server's current version of a file and a
device submission derived from an older version. The local side is the
server version at detection time; the remote side is the submission,
whose content is kept in the blob store until the conflict is resolved.
"""

from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index

from models.database.base import Base


class Conflict(Base):
    """
    Conflicts table - pending conflicts keyed by file
    Rows are deleted once a resolution has been recorded.
    """
    __tablename__ = "conflicts"

    conflict_id = Column(String, primary_key=True)
    file_id = Column(Integer, ForeignKey("files.file_id", ondelete="CASCADE"), nullable=False)
    owner_id = Column(Integer, nullable=False)
    local_version_id = Column(Integer, nullable=False)
    remote_parent_version_id = Column(Integer, nullable=False)  # 0 if the submission had no parent
    remote_content_hash = Column(String, nullable=False)
    remote_size_bytes = Column(Integer, nullable=False)
    remote_device_id = Column(String, nullable=False)
    common_ancestor_version_id = Column(Integer, nullable=True)
    resolution_state = Column(String, nullable=False, default="pending")
    created_at_utc = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        Index('idx_conflicts_file', 'file_id'),
        Index('idx_conflicts_owner', 'owner_id'),
    )
