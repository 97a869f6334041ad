"""Bearer-token authentication: HS256 JWTs whose ``sub`` is the user email."""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.orm import Session

from memory_core.auth import AuthContext, user_auth
from memory_core.config import get_settings
from memory_core.models.user import User

# JWT configuration
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_HOURS = 24

ENV_ADMIN_USER_ID = "env-admin"


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a signed JWT access token."""
    settings = get_settings()
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(hours=ACCESS_TOKEN_EXPIRE_HOURS)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> Optional[dict]:
    """Decode and validate a JWT token. Returns payload or None."""
    settings = get_settings()
    if not settings.secret_key:
        return None
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return None


def get_user_from_token(db: Session, token: str) -> Optional[User]:
    """User named by the token's ``sub`` email, or None."""
    payload = decode_access_token(token)
    if payload is None:
        return None
    email: Optional[str] = payload.get("sub")
    if not email:
        return None
    return db.execute(
        select(User).where(User.email == email.strip().lower())
    ).scalar_one_or_none()


def is_env_admin_token(token: str) -> bool:
    expected = get_settings().env_admin_token
    return bool(expected) and secrets.compare_digest(token, expected)


def auth_context_from_token(db: Session, token: str) -> Optional[AuthContext]:
    """AuthContext for a bearer token: env admin first, then a user JWT."""
    if is_env_admin_token(token):
        return AuthContext(
            user_id=ENV_ADMIN_USER_ID,
            auth_method="env_admin",
            env_admin=True,
        )
    user = get_user_from_token(db, token)
    if user is None:
        return None
    return user_auth(user.id, user.email)
