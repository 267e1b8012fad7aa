"""
VaultSync Server - SyncHorizon Database Model

Tracks how far each user's change history has been garbage-collected.
Cursors older than the horizon cannot resume incrementally.
"""

from sqlalchemy import Column, Integer, DateTime, ForeignKey

from models.database.base import Base


class SyncHorizon(Base):
    """
    Sync horizons table - one row per user once anything has been purged
    """
    __tablename__ = "sync_horizons"

    user_id = Column(Integer, ForeignKey("users.user_id", ondelete="CASCADE"), primary_key=True)
    purged_through_utc = Column(DateTime, nullable=False)
