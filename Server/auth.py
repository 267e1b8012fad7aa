"""
VaultSync Server - Authentication Utilities

This module provides authentication functionality including:
- JWT token generation and validation
- Authentication dependency for protected routes
- Role checks (Admin, Moderator, User)

The sync subsystem only needs an authenticated user ID and role from here.
"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from models.database import User
from models.auth import TokenData
from managers.database_manager import DatabaseManager

# JWT Configuration
# Tokens are invalidated by a restart; clients log in again
SECRET_KEY = secrets.token_urlsafe(32)
ALGORITHM = "HS256"

ROLE_ADMIN = "Admin"
ROLE_MODERATOR = "Moderator"

# Security scheme for FastAPI
security = HTTPBearer()


# ==================== JWT Token Functions ====================

def CreateAccessToken(data: dict, db_manager: DatabaseManager, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token

    Args:
        data: Dictionary containing user data (user_id, username, role)
        db_manager: DatabaseManager instance to get JWT expiration setting
        expires_delta: Optional custom expiration time

    Returns:
        str: Encoded JWT token
    """
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expiration_hours = db_manager.GetIntSetting("jwt_expiration_hours", 24)
        expire = datetime.now(timezone.utc) + timedelta(hours=expiration_hours)

    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def DecodeAccessToken(token: str) -> TokenData:
    """
    Decode and validate a JWT access token

    Args:
        token: JWT token string

    Returns:
        TokenData: Token data

    Raises:
        HTTPException: If token is invalid or expired
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id: int = payload.get("user_id")
        username: str = payload.get("username")
        role: Optional[str] = payload.get("role")

        if user_id is None or username is None:
            raise credentials_exception

        return TokenData(user_id=user_id, username=username, role=role)

    except JWTError:
        raise credentials_exception


# ==================== Authentication Dependencies ====================

def GetCurrentUser(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> User:
    """
    FastAPI dependency to get the current authenticated user
    Validates the JWT token and returns the user object

    Raises:
        HTTPException: If authentication fails
    """
    token_data = DecodeAccessToken(credentials.credentials)

    from database import db_manager

    session = db_manager.GetSession()
    try:
        user = session.query(User).filter(User.user_id == token_data.user_id).first()

        if user is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="User not found",
                headers={"WWW-Authenticate": "Bearer"},
            )

        return user

    finally:
        session.close()


def GetCurrentActiveUser(current_user: User = Depends(GetCurrentUser)) -> User:
    """
    FastAPI dependency to get the current authenticated and active user

    Raises:
        HTTPException: If user is not active
    """
    if not current_user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User account is disabled",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return current_user


# ==================== Authentication Helper Functions ====================

def AuthenticateUser(db_manager: DatabaseManager, username: str, password: str) -> Optional[dict]:
    """
    Authenticate a user with username and password

    Args:
        db_manager: DatabaseManager instance
        username: Username
        password: Plain text password

    Returns:
        dict: User data (user_id, username, role, last_login) if authentication
              succeeded, None otherwise
    """
    session = db_manager.GetSession()

    try:
        user = session.query(User).filter(User.username == username).first()

        if not user:
            return None

        if not db_manager.VerifyPassword(password, user.password_hash):
            return None

        if not user.is_active:
            return None

        user.last_login = datetime.now(timezone.utc)
        session.commit()

        # Return user data as dictionary to avoid SQLAlchemy session issues
        return {
            'user_id': user.user_id,
            'username': user.username,
            'role': user.role.role_name if user.role else None,
            'last_login': user.last_login
        }

    finally:
        session.close()


# ==================== Role Checking ====================

def UserHasRole(user: User, *role_names: str, db_manager: DatabaseManager = None) -> bool:
    """
    Check if a user holds one of the given roles

    Args:
        user: User object (from GetCurrentUser)
        role_names: Accepted role names
        db_manager: Optional DatabaseManager instance (uses global if not provided)

    Returns:
        bool: True if the user's role is one of role_names
    """
    if db_manager is None:
        from database import db_manager as global_db_manager
        db_manager = global_db_manager

    return db_manager.GetUserRoleName(user.user_id) in role_names


def RequireRole(*role_names: str):
    """
    Dependency factory to create a role checking dependency

    Usage:
        @router.put("/quota")
        async def set_quota(user: User = Depends(RequireRole("Admin"))):
            ...
    """
    def role_checker(current_user: User = Depends(GetCurrentActiveUser)) -> User:
        """
        Raises:
            HTTPException: 403 Forbidden if the user lacks the role
        """
        if not UserHasRole(current_user, *role_names):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied. Required role: {' or '.join(role_names)}"
            )

        return current_user

    return role_checker


# Convenience dependency for admin-only endpoints
RequireAdmin = RequireRole(ROLE_ADMIN)
