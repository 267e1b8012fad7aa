"""
VaultSync Server - Database Manager

This module manages database connection, initialization, and settings access.
"""

import secrets
import string
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
import bcrypt

from models.database import Base, Role, User, Setting


# Default server settings, stored as strings in the settings table
DEFAULT_SETTINGS = {
    "jwt_expiration_hours": "24",
    "default_quota_bytes": str(100 * 1024 * 1024),  # 100 MB
    "max_versions_per_file": "50",  # 0 = keep all history
    "tombstone_retention_days": "30",
    "session_idle_seconds": "300",
    "session_ttl_seconds": "3600",
    "sync_batch_size": "500",
    "conflict_policy": "manual",  # 'manual' or 'last_write_wins'
    "pending_conflict_timeout_hours": "0",  # 0 disables auto-resolution
    "pending_conflict_timeout_decision": "fork"
}

DEFAULT_ROLES = {
    "Admin": "Full administrative access, manages quotas and settings",
    "Moderator": "Can inspect other users' quota usage",
    "User": "Can synchronize their own files"
}


class DatabaseManager:
    """
    Manages database connection, initialization, and operations
    """

    def __init__(self, db_path: str = "database/vaultsync.db"):
        """
        Initialize database manager

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

        # Ensure database directory exists
        db_dir = Path(db_path).parent
        if db_dir and str(db_dir) != '.':
            db_dir.mkdir(parents=True, exist_ok=True)

        # Requests are served from a thread pool; writers wait on the
        # SQLite lock instead of failing immediately
        self.engine = create_engine(
            f"sqlite:///{db_path}",
            echo=False,
            connect_args={"check_same_thread": False, "timeout": 30}
        )
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine, expire_on_commit=False)

    def InitializeDatabase(self) -> Optional[str]:
        """
        Initialize the database with all tables and default data
        Creates tables if they don't exist, populates default settings,
        and creates a default admin user on first run.

        Returns:
            str: Generated admin password if admin user was created, None otherwise
        """
        Base.metadata.create_all(bind=self.engine)

        session = self.SessionLocal()
        admin_password = None

        try:
            is_first_run = session.query(User).count() == 0

            self.PopulateDefaultRoles(session)
            session.flush()

            if is_first_run:
                admin_role = session.query(Role).filter(Role.role_name == "Admin").first()

                admin_password = self.GenerateRandomPassword()
                admin_user = User(
                    username="admin",
                    password_hash=self.HashPassword(admin_password),
                    role_id=admin_role.role_id if admin_role else None,
                    created_at=datetime.now(timezone.utc),
                    is_active=True
                )
                session.add(admin_user)

            self.PopulateDefaultSettings(session)

            session.commit()

        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        return admin_password

    def PopulateDefaultRoles(self, session):
        """
        Populate default roles
        Only adds roles that don't already exist

        Args:
            session: SQLAlchemy session
        """
        for role_name, description in DEFAULT_ROLES.items():
            existing = session.query(Role).filter(Role.role_name == role_name).first()
            if not existing:
                session.add(Role(role_name=role_name, description=description, is_system_role=True))

    def PopulateDefaultSettings(self, session):
        """
        Populate default settings
        Only adds settings that don't already exist

        Args:
            session: SQLAlchemy session
        """
        for key, value in DEFAULT_SETTINGS.items():
            existing = session.query(Setting).filter(Setting.key == key).first()
            if not existing:
                session.add(Setting(key=key, value=value))

        # Signing key for cursor tokens, generated once so cursors survive restarts
        if not session.query(Setting).filter(Setting.key == "cursor_secret").first():
            session.add(Setting(key="cursor_secret", value=secrets.token_urlsafe(32)))

    def GetSetting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """
        Read a setting value

        Args:
            key: Setting key
            default: Value returned when the key is missing

        Returns:
            str: Stored value or default
        """
        session = self.SessionLocal()
        try:
            setting = session.query(Setting).filter(Setting.key == key).first()
            return setting.value if setting else default
        finally:
            session.close()

    def GetIntSetting(self, key: str, default: int = 0) -> int:
        """Read an integer setting, falling back to the default table then `default`"""
        value = self.GetSetting(key, DEFAULT_SETTINGS.get(key))
        if value is None:
            return default
        return int(value)

    def SetSetting(self, key: str, value: str) -> None:
        """
        Create or update a setting

        Args:
            key: Setting key
            value: New value (stored as string)
        """
        session = self.SessionLocal()
        try:
            setting = session.query(Setting).filter(Setting.key == key).first()
            if setting:
                setting.value = str(value)
            else:
                session.add(Setting(key=key, value=str(value)))
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @staticmethod
    def GenerateRandomPassword(length: int = 12) -> str:
        """
        Generate a secure random password

        Args:
            length: Password length (default 12)

        Returns:
            str: Generated password
        """
        alphabet = string.ascii_letters + string.digits + "!@#$%^&*"
        return ''.join(secrets.choice(alphabet) for _ in range(length))

    @staticmethod
    def HashPassword(password: str) -> str:
        """
        Hash a password using bcrypt
        Truncates to 72 bytes to comply with bcrypt's maximum password length

        Args:
            password: Plain text password

        Returns:
            str: Hashed password (as string)
        """
        password_bytes = password.encode('utf-8')[:72]
        hashed = bcrypt.hashpw(password_bytes, bcrypt.gensalt())
        return hashed.decode('utf-8')

    @staticmethod
    def VerifyPassword(plain_password: str, hashed_password: str) -> bool:
        """
        Verify a password against a hash

        Args:
            plain_password: Plain text password to verify
            hashed_password: Stored password hash (as string)

        Returns:
            bool: True if password matches, False otherwise
        """
        password_bytes = plain_password.encode('utf-8')[:72]
        return bcrypt.checkpw(password_bytes, hashed_password.encode('utf-8'))

    def GetSession(self):
        """
        Get a new database session

        Returns:
            Session: SQLAlchemy session
        """
        return self.SessionLocal()

    def CreateUser(self, username: str, password: str, role_name: str = "User") -> User:
        """
        Create a user account with the given role

        Args:
            username: Unique username
            password: Plain text password (stored as bcrypt hash)
            role_name: 'Admin', 'Moderator' or 'User'

        Returns:
            User: The created user
        """
        session = self.SessionLocal()
        try:
            role = session.query(Role).filter(Role.role_name == role_name).first()
            if role is None:
                raise ValueError(f"Unknown role: {role_name}")

            user = User(
                username=username,
                password_hash=self.HashPassword(password),
                role_id=role.role_id,
                created_at=datetime.now(timezone.utc),
                is_active=True
            )
            session.add(user)
            session.commit()
            return user
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def GetUserRoleName(self, user_id: int) -> Optional[str]:
        """
        Get the role name of a user

        Args:
            user_id: User ID

        Returns:
            str: Role name, or None if user not found or has no role
        """
        session = self.SessionLocal()
        try:
            user = session.query(User).filter(User.user_id == user_id).first()
            if user and user.role:
                return user.role.role_name
            return None
        finally:
            session.close()
