"""
VaultSync Server - QuotaRecord Database Model

Per-user storage counter. used_bytes is the sum of the sizes of the user's
current, non-tombstoned versions plus reserved_bytes, the space held by
writes that have been admitted but not yet committed.
"""

from datetime import datetime, timezone
from sqlalchemy import Column, Integer, DateTime, ForeignKey, CheckConstraint

from models.database.base import Base


class QuotaRecord(Base):
    """
    Quota records table - one row per user, created on demand
    """
    __tablename__ = "quota_records"

    user_id = Column(Integer, ForeignKey("users.user_id", ondelete="CASCADE"), primary_key=True)
    limit_bytes = Column(Integer, nullable=False)
    used_bytes = Column(Integer, nullable=False, default=0)
    reserved_bytes = Column(Integer, nullable=False, default=0)
    updated_at_utc = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        CheckConstraint('used_bytes >= 0', name='used_bytes_non_negative'),
        CheckConstraint('reserved_bytes >= 0', name='reserved_bytes_non_negative'),
    )
