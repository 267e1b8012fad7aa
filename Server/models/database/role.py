"""
VaultSync Server - Role Database Model

Role names: 'Admin', 'Moderator', 'User'.
Admins manage quotas and settings; moderators may inspect other users' quotas.
"""

from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, DateTime, Boolean
from sqlalchemy.orm import relationship

from models.database.base import Base


class Role(Base):
    """
    Roles table - stores role definitions
    """
    __tablename__ = "roles"

    role_id = Column(Integer, primary_key=True, autoincrement=True)
    role_name = Column(String, unique=True, nullable=False)
    description = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    is_system_role = Column(Boolean, default=False)  # True for default roles that cannot be deleted

    # Relationship to users
    users = relationship("User", back_populates="role")
