"""
Guardian Angel - Authentication API
===================================

Registration, login and token management. Login returns tokens in the
body and also sets the access token as an HTTP-only session cookie.
"""

import hashlib
from datetime import datetime, timedelta, timezone
from uuid import UUID

from fastapi import APIRouter, HTTPException, Response, status
from passlib.hash import bcrypt
from sqlalchemy import select

from guardian.api.deps import (
    CurrentUser,
    DbSession,
    Engines,
    create_access_token,
    create_refresh_token,
    decode_token,
)
from guardian.core.config import settings
from guardian.core.models import RefreshToken, User
from guardian.core.schemas import (
    MessageResponse,
    RefreshTokenRequest,
    TokenResponse,
    UserCreate,
    UserLogin,
    UserResponse,
)

router = APIRouter(prefix="/auth", tags=["Authentication"])


# ==========================================================================
# Helper Functions
# ==========================================================================

def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    return bcrypt.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return bcrypt.verify(password, password_hash)


def hash_token(token: str) -> str:
    """Create a hash of a token for storage."""
    return hashlib.sha256(token.encode()).hexdigest()


async def _issue_tokens(db: DbSession, user: User, response: Response) -> TokenResponse:
    access_token = create_access_token(user.id)
    refresh_token = create_refresh_token(user.id)

    db.add(
        RefreshToken(
            user_id=user.id,
            token_hash=hash_token(refresh_token),
            expires_at=datetime.now(timezone.utc) + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
            revoked=False,
        )
    )
    await db.commit()

    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=access_token,
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        httponly=True,
        secure=settings.SESSION_COOKIE_SECURE,
        samesite="lax",
    )

    return TokenResponse(
        access_token=access_token,
        refresh_token=refresh_token,
        token_type="bearer",
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )


# ==========================================================================
# Registration
# ==========================================================================

@router.post(
    "/register",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new user",
    responses={
        201: {"description": "User created successfully"},
        409: {"description": "Email already registered"},
    },
)
async def register(data: UserCreate, db: DbSession) -> UserResponse:
    """Register a new user account."""
    result = await db.execute(select(User).where(User.email == data.email.lower()))
    if result.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered",
        )

    user = User(
        email=data.email.lower(),
        password_hash=hash_password(data.password),
        name=data.name,
        is_active=True,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)

    return UserResponse.model_validate(user)


# ==========================================================================
# Login / Logout
# ==========================================================================

@router.post(
    "/login",
    response_model=TokenResponse,
    summary="Login and get tokens",
    responses={401: {"description": "Invalid credentials"}},
)
async def login(data: UserLogin, db: DbSession, response: Response) -> TokenResponse:
    """
    Authenticate user and return tokens.

    Unknown email, wrong password and inactive account all return the
    same 401.
    """
    result = await db.execute(select(User).where(User.email == data.email.lower()))
    user = result.scalar_one_or_none()

    if not user or not verify_password(data.password, user.password_hash) or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
        )

    user.last_login = datetime.now(timezone.utc)
    return await _issue_tokens(db, user, response)


@router.post(
    "/logout",
    response_model=MessageResponse,
    summary="Logout and revoke refresh tokens",
)
async def logout(
    current_user: CurrentUser,
    db: DbSession,
    engines: Engines,
    response: Response,
) -> MessageResponse:
    """Revoke all refresh tokens, drop the timeline engine and clear the session cookie."""
    result = await db.execute(
        select(RefreshToken).where(
            RefreshToken.user_id == current_user.id,
            RefreshToken.revoked.is_(False),
        )
    )
    for token in result.scalars().all():
        token.revoked = True
    await db.commit()

    engines.discard(current_user.id)
    response.delete_cookie(settings.SESSION_COOKIE_NAME)
    return MessageResponse(message="Logged out successfully", success=True)


# ==========================================================================
# Token Management
# ==========================================================================

@router.post(
    "/refresh",
    response_model=TokenResponse,
    summary="Refresh access token",
    responses={401: {"description": "Invalid or expired refresh token"}},
)
async def refresh_token(data: RefreshTokenRequest, db: DbSession, response: Response) -> TokenResponse:
    """Exchange a refresh token for a new pair. The old refresh token is revoked."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or expired refresh token",
    )

    try:
        payload = decode_token(data.refresh_token)
    except HTTPException:
        raise credentials_exception

    if payload.get("type") != "refresh" or not payload.get("sub"):
        raise credentials_exception

    result = await db.execute(
        select(RefreshToken).where(RefreshToken.token_hash == hash_token(data.refresh_token))
    )
    stored_token = result.scalar_one_or_none()
    if not stored_token or stored_token.revoked:
        raise credentials_exception

    # SQLite hands back naive datetimes
    expires_at = stored_token.expires_at
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    if expires_at < datetime.now(timezone.utc):
        raise credentials_exception

    try:
        user_id = UUID(payload["sub"])
    except ValueError:
        raise credentials_exception
    user = await db.get(User, user_id)
    if not user or not user.is_active:
        raise credentials_exception

    stored_token.revoked = True
    return await _issue_tokens(db, user, response)


# ==========================================================================
# Current User
# ==========================================================================

@router.get("/me", response_model=UserResponse, summary="Get current user")
async def get_me(current_user: CurrentUser) -> UserResponse:
    return UserResponse.model_validate(current_user)
