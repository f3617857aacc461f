"""
Yellowbook JWT Authentication

Session tokens are HS256 JWTs issued by the web front end after GitHub
sign-in. The API accepts the same token as a bearer credential and resolves
it to a stored user, so role changes take effect on the next request.

Guards:
    get_current_user  — 401 unless the credential resolves to a user
    require_admin     — 403 unless that user's role is ``admin``

Usage:
    @router.get("/secure-endpoint")
    def secure(user: User = Depends(require_admin)):
        ...
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from yellowbook.config import settings
from yellowbook.db.models import User
from yellowbook.db.session import get_db

logger = structlog.get_logger(__name__)

# HTTP Bearer scheme for Authorization header
security = HTTPBearer(auto_error=False)


class InvalidCredential(Exception):
    """The token is malformed, expired, or names no stored user."""


def create_access_token(
    user_id: str,
    role: str = "user",
    expires_delta_minutes: Optional[int] = None,
) -> str:
    """
    Create a signed session token for *user_id*.

    The ``role`` claim is informational only; authorization always reads
    the role from the database.
    """
    minutes = expires_delta_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES
    expire = datetime.now(timezone.utc) + timedelta(minutes=minutes)

    to_encode = {
        "sub": user_id,
        "role": role,
        "exp": expire,
    }
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def resolve_user(token: str, db: Session) -> User:
    """
    Decode *token* and load the user it names.

    Raises:
        InvalidCredential: bad signature, expired, missing subject, or
            unknown user.
    """
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as e:
        raise InvalidCredential(str(e)) from e

    user_id = payload.get("sub")
    if not user_id:
        raise InvalidCredential("missing subject")

    user = db.get(User, user_id)
    if user is None:
        raise InvalidCredential("unknown user")
    return user


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """
    FastAPI dependency resolving the bearer credential to a stored user.

    Raises:
        HTTPException(401): If the token is missing, invalid, or names no user
    """
    if not credentials:
        logger.warning("auth_missing_token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized: No token provided",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        user = resolve_user(credentials.credentials, db)
    except InvalidCredential as e:
        logger.warning("auth_invalid_token", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    logger.debug("auth_token_validated", user_id=user.id)
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    """
    FastAPI dependency for admin-only endpoints.

    Raises:
        HTTPException(403): If the resolved user is not an admin
    """
    if user.role != "admin":
        logger.warning(
            "auth_insufficient_permissions",
            user_id=user.id,
            role=user.role,
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden: Insufficient permissions",
        )

    logger.info("auth_admin_access_granted", user_id=user.id)
    return user
