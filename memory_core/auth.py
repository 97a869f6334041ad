"""Authenticated principal passed to every service call."""

from __future__ import annotations

import uuid
from dataclasses import dataclass


@dataclass(frozen=True)
class AuthContext:
    """Who is calling.

    ``env_admin`` and ``project_access_bypass`` principals (env tokens, the
    webhook processor) are treated as implicit workspace OWNER everywhere.
    """

    user_id: str | None
    user_email: str | None = None
    auth_method: str = "session"
    env_admin: bool = False
    project_access_bypass: bool = False

    @property
    def user_uuid(self) -> uuid.UUID | None:
        """``user_id`` as a UUID, or None for service principals."""
        if not self.user_id:
            return None
        try:
            return uuid.UUID(str(self.user_id))
        except ValueError:
            return None

    @property
    def is_service_principal(self) -> bool:
        return self.env_admin or self.project_access_bypass


SYSTEM_WEBHOOK_AUTH = AuthContext(
    user_id="system:github-webhook",
    user_email="system@github-webhook.local",
    auth_method="system",
    env_admin=True,
    project_access_bypass=True,
)


def user_auth(user_id: uuid.UUID | str, email: str | None = None) -> AuthContext:
    """AuthContext for a regular signed-in user."""
    return AuthContext(user_id=str(user_id), user_email=email)
