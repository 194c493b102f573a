"""
API Dependencies
Common dependencies for FastAPI endpoints including database sessions,
authentication, and authorization
"""

import uuid
from typing import Generator, List

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.core.security import JWTManager
from app.db.database import SessionLocal
from app.models.user import User

# Security scheme for JWT token
security = HTTPBearer()


def get_db() -> Generator:
    """
    Database dependency
    Creates and yields database session, ensures proper cleanup
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_user(
    db: Session = Depends(get_db),
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> User:
    """
    Get current authenticated user from JWT token

    The `sub` claim carries the user id; it is the acting user for every
    workflow operation.

    Raises:
        HTTPException: If token is invalid, or the user is unknown or inactive
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    payload = JWTManager.verify_token(credentials.credentials)
    if payload is None or not payload.get("sub"):
        raise credentials_exception

    try:
        user_id = str(uuid.UUID(str(payload["sub"])))
    except ValueError:
        raise credentials_exception

    user = db.query(User).filter(User.id == user_id).first()

    if user is None or not user.is_active:
        raise credentials_exception

    return user


def require_roles(allowed_roles: List[str]):
    """
    Role-based access control dependency factory

    Args:
        allowed_roles: List of allowed roles for the endpoint

    Returns:
        Dependency function that checks user role
    """

    def role_checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role.value not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required roles: {allowed_roles}",
            )
        return current_user

    return role_checker


def require_admin():
    """Require admin role"""
    return require_roles(["admin"])
