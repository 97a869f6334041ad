"""Shared FastAPI dependencies for API routes."""

from __future__ import annotations

import logging
import secrets
from collections.abc import AsyncIterator

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from memory_core.auth import AuthContext
from memory_core.config import get_settings
from memory_core.db.session import get_db  # re-export
from memory_core.github.client import GithubApi, GithubClient
from memory_core.services.auth import auth_context_from_token

logger = logging.getLogger(__name__)

__all__ = [
    "get_db",
    "get_github_client",
    "require_auth",
    "require_internal_token",
]


def require_auth(
    db: Session = Depends(get_db),
    authorization: str | None = Header(None),
) -> AuthContext:
    """AuthContext from ``Authorization: Bearer <token>``; 401 otherwise."""
    token: str | None = None
    if authorization and authorization.startswith("Bearer "):
        token = authorization[len("Bearer ") :].strip()
    auth = auth_context_from_token(db, token) if token else None
    if auth is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return auth


def require_internal_token(x_internal_token: str = Header(...)) -> None:
    """Constant-time check of the static ``X-Internal-Token``; 403 on mismatch."""
    expected = get_settings().internal_job_token
    if not expected or not secrets.compare_digest(x_internal_token, expected):
        logger.warning("Internal endpoint auth failed: invalid or missing token")
        raise HTTPException(status_code=403, detail="Invalid internal token")


async def get_github_client() -> AsyncIterator[GithubApi]:
    """One GitHub client per request, closed afterwards."""
    async with GithubClient() as client:
        yield client
