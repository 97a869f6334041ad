"""Signed ``state`` for the GitHub App install round trip.

The install URL carries a short-lived HS256 token naming the workspace and
the admin who started the flow; GitHub echoes it back to the callback, which
trusts nothing else about the caller.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from memory_core.config import get_settings
from memory_core.errors import ValidationError

ALGORITHM = "HS256"
STATE_TOKEN_TYPE = "github_install_state"
DEFAULT_TTL_SECONDS = 900
MIN_TTL_SECONDS = 60


def issue_install_state(
    workspace_key: str,
    actor_user_id: str,
    ttl_seconds: int = DEFAULT_TTL_SECONDS,
    now: Optional[datetime] = None,
) -> str:
    secret = get_settings().github_state_secret
    if not secret:
        raise ValidationError("GitHub install state secret is missing. Set GITHUB_STATE_SECRET.")
    issued = now or datetime.now(timezone.utc)
    claims = {
        "typ": STATE_TOKEN_TYPE,
        "workspace_key": workspace_key,
        "actor_user_id": str(actor_user_id),
        "nonce": secrets.token_urlsafe(16),
        "iat": issued,
        "exp": issued + timedelta(seconds=max(MIN_TTL_SECONDS, int(ttl_seconds))),
    }
    return jwt.encode(claims, secret, algorithm=ALGORITHM)


def verify_install_state(token: str) -> Optional[dict]:
    """Claims of a valid, unexpired state token, else None."""
    secret = get_settings().github_state_secret
    if not secret or not token:
        return None
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except JWTError:
        return None
    # access tokens share the secret by default; only install state is accepted
    if payload.get("typ") != STATE_TOKEN_TYPE:
        return None
    if not payload.get("workspace_key") or not payload.get("actor_user_id") or not payload.get("nonce"):
        return None
    return payload
