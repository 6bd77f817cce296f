"""
Guardian Angel - API Dependencies
=================================

Shared dependencies for FastAPI endpoints.
"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Annotated, Optional, TypeVar
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from guardian.core.config import settings
from guardian.core.database import get_db
from guardian.core.models import User
from guardian.core.results import FailureCode, OperationResult
from guardian.core.timeline import EngineRegistry, TimelineEngine, TimelineStore

T = TypeVar("T")


# ==========================================================================
# Security
# ==========================================================================

security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


# ==========================================================================
# Token Utilities
# ==========================================================================

def _encode(user_id: UUID, token_type: str, expires_delta: timedelta) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "exp": now + expires_delta,
        "iat": now,
        "type": token_type,
        "jti": secrets.token_hex(16),  # Unique token identifier
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def create_access_token(
    user_id: UUID,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a new access token.

    Args:
        user_id: User's UUID
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    return _encode(user_id, "access", expires_delta)


def create_refresh_token(
    user_id: UUID,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create a new refresh token."""
    if expires_delta is None:
        expires_delta = timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)
    return _encode(user_id, "refresh", expires_delta)


def decode_token(token: str) -> dict:
    """
    Decode and validate a JWT token.

    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        return jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
        )
    except JWTError as e:
        raise _unauthorized("Invalid or expired token") from e


# ==========================================================================
# User Dependencies
# ==========================================================================

async def get_current_user(
    request: Request,
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """
    Get the current authenticated user.

    The access token is read from the Authorization header, falling back
    to the session cookie set at login.

    Raises:
        HTTPException: If not authenticated or user not found
    """
    if credentials is not None:
        token = credentials.credentials
    else:
        token = request.cookies.get(settings.SESSION_COOKIE_NAME)
    if not token:
        raise _unauthorized("Not authenticated")

    payload = decode_token(token)

    if payload.get("type") != "access":
        raise _unauthorized("Invalid token type")

    user_id_str = payload.get("sub")
    if user_id_str is None:
        raise _unauthorized("Invalid token payload")

    try:
        user_id = UUID(user_id_str)
    except ValueError as e:
        raise _unauthorized("Invalid user ID in token") from e

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if user is None:
        raise _unauthorized("User not found")
    if not user.is_active:
        raise _unauthorized("User account is deactivated")

    return user


# ==========================================================================
# Service Dependencies
# ==========================================================================

def get_engine_registry(request: Request) -> EngineRegistry:
    """The application's engine registry, created at startup."""
    registry = getattr(request.app.state, "engines", None)
    if registry is None:
        registry = EngineRegistry()
        request.app.state.engines = registry
    return registry


async def get_timeline_engine(
    current_user: Annotated[User, Depends(get_current_user)],
    registry: Annotated[EngineRegistry, Depends(get_engine_registry)],
) -> TimelineEngine:
    """The calling user's timeline engine."""
    return registry.get(current_user.id)


async def get_timeline_store(
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> TimelineStore:
    return TimelineStore(db, current_user.id)


# ==========================================================================
# Type Aliases for Dependency Injection
# ==========================================================================

CurrentUser = Annotated[User, Depends(get_current_user)]
DbSession = Annotated[AsyncSession, Depends(get_db)]
Engines = Annotated[EngineRegistry, Depends(get_engine_registry)]
Engine = Annotated[TimelineEngine, Depends(get_timeline_engine)]
Store = Annotated[TimelineStore, Depends(get_timeline_store)]


# ==========================================================================
# Result Handling
# ==========================================================================

_FAILURE_STATUS = {
    FailureCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    FailureCode.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    FailureCode.INVALID: status.HTTP_400_BAD_REQUEST,
    FailureCode.CONFLICT: status.HTTP_409_CONFLICT,
    FailureCode.STORAGE: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def unwrap_result(result: OperationResult[T]) -> T:
    """Return the value of a successful result or raise the matching HTTPException."""
    if result.ok:
        return result.value
    code = _FAILURE_STATUS.get(result.code, status.HTTP_500_INTERNAL_SERVER_ERROR)
    raise HTTPException(status_code=code, detail=result.error)
