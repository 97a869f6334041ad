"""Connecting a workspace to its GitHub App installation.

An admin asks for an install URL carrying signed ``state``; GitHub sends the
browser back to the callback with ``installation_id`` and that state, and the
callback stores the installation details fetched with the App JWT.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote, urlencode

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from memory_core.auth import AuthContext, user_auth
from memory_core.config import get_settings
from memory_core.db.session import unit_of_work
from memory_core.errors import AuthenticationError, AuthorizationError, ValidationError
from memory_core.github.client import GithubApi
from memory_core.models.github_installation import GithubInstallation
from memory_core.models.github_repo_link import GithubRepoLink
from memory_core.models.project import Project
from memory_core.services.access_control import assert_workspace_access, assert_workspace_admin
from memory_core.services.audit import record_audit
from memory_core.services.auth import ENV_ADMIN_USER_ID
from memory_core.services.github_install_state import issue_install_state, verify_install_state
from memory_core.services.github_team_mappings import parse_numeric_id
from memory_core.services.workspaces import get_workspace_by_key

logger = logging.getLogger(__name__)

REPOSITORY_SELECTIONS = ("all", "selected")


def _install_base_url() -> str:
    settings = get_settings()
    if settings.github_app_url:
        return f"{settings.github_app_url}/installations/new"
    if settings.github_app_name:
        return f"https://github.com/apps/{quote(settings.github_app_name, safe='')}/installations/new"
    raise ValidationError("GitHub App is not configured. Set GITHUB_APP_NAME or GITHUB_APP_URL.")


def get_github_install_url(db: Session, auth: AuthContext, workspace_key: str) -> str:
    workspace = get_workspace_by_key(db, workspace_key)
    assert_workspace_admin(db, auth, workspace.id)
    base = _install_base_url()
    state = issue_install_state(workspace.key, auth.user_id or "")
    return f"{base}?{urlencode({'state': state})}"


def _string_map(value: Any) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(key): item for key, item in value.items() if isinstance(item, str)}


def normalize_installation_payload(payload: dict[str, Any]) -> dict[str, Any]:
    """Columns for ``GithubInstallation`` from a ``GET /app/installations/{id}`` body."""
    account = payload.get("account") or {}
    account_login = str(account.get("login") or "").strip()
    if not account_login:
        raise ValidationError("GitHub installation payload is missing account login.")
    selection = str(payload.get("repository_selection") or "").strip().lower()
    return {
        "account_type": "Organization" if account.get("type") == "Organization" else "User",
        "account_login": account_login,
        "repository_selection": selection if selection in REPOSITORY_SELECTIONS else "unknown",
        "permissions": _string_map(payload.get("permissions")),
    }


def _state_actor(actor_user_id: str) -> AuthContext:
    if actor_user_id == ENV_ADMIN_USER_ID:
        return AuthContext(user_id=ENV_ADMIN_USER_ID, auth_method="env_admin", env_admin=True)
    return user_auth(actor_user_id)


def _installation_by_id(db: Session, installation_id: int) -> GithubInstallation | None:
    return db.execute(
        select(GithubInstallation).where(GithubInstallation.installation_id == installation_id)
    ).scalar_one_or_none()


async def connect_github_installation(
    db: Session, client: GithubApi, installation_id: str, state: str
) -> dict[str, Any]:
    """Install callback: verify ``state``, fetch the installation, store it."""
    claims = verify_install_state(state)
    if claims is None:
        raise AuthenticationError("Invalid or expired GitHub installation state")
    workspace = get_workspace_by_key(db, claims["workspace_key"])
    actor = _state_actor(claims["actor_user_id"])
    try:
        assert_workspace_admin(db, actor, workspace.id)
    except AuthorizationError as exc:
        raise AuthorizationError("Only workspace admin can connect a GitHub installation.") from exc

    numeric_id = parse_numeric_id(installation_id, "installation_id")
    details = normalize_installation_payload(await client.get_installation_details(numeric_id))

    linked = _installation_by_id(db, numeric_id)
    if linked is not None and linked.workspace_id != workspace.id:
        raise ValidationError("This GitHub installation is already linked to another workspace.")

    with unit_of_work(db):
        installation = db.execute(
            select(GithubInstallation).where(GithubInstallation.workspace_id == workspace.id)
        ).scalar_one_or_none()
        if installation is None:
            installation = GithubInstallation(workspace_id=workspace.id, installation_id=numeric_id)
            try:
                with db.begin_nested():
                    db.add(installation)
            except IntegrityError as exc:
                raise ValidationError(
                    "This GitHub installation is already linked to another workspace."
                ) from exc
        installation.installation_id = numeric_id
        for column, value in details.items():
            setattr(installation, column, value)
        record_audit(
            db,
            workspace.id,
            "github.installation.connected",
            {
                "workspace_key": workspace.key,
                "installation_id": str(numeric_id),
                "account_login": details["account_login"],
                "account_type": details["account_type"],
                "repository_selection": details["repository_selection"],
            },
            actor_user_id=actor.user_id,
        )

    logger.info(
        "Connected GitHub installation %s (%s) to workspace=%s",
        numeric_id,
        details["account_login"],
        workspace.key,
    )
    return {
        "workspace_key": workspace.key,
        "installation_id": str(numeric_id),
        **details,
        "connected": True,
    }


def get_github_installation_status(
    db: Session, auth: AuthContext, workspace_key: str
) -> dict[str, Any]:
    workspace = get_workspace_by_key(db, workspace_key)
    assert_workspace_access(db, auth, workspace.id)
    installation = db.execute(
        select(GithubInstallation).where(GithubInstallation.workspace_id == workspace.id)
    ).scalar_one_or_none()
    if installation is None:
        return {"workspace_key": workspace.key, "connected": False, "installation": None}
    return {
        "workspace_key": workspace.key,
        "connected": True,
        "installation": {
            "installation_id": str(installation.installation_id),
            "account_type": installation.account_type,
            "account_login": installation.account_login,
            "repository_selection": installation.repository_selection,
            "permissions": _string_map(installation.permissions),
            "updated_at": installation.updated_at,
        },
    }


def list_github_repos(db: Session, auth: AuthContext, workspace_key: str) -> list[dict[str, Any]]:
    """Active repo links with their linked project, by ``full_name``."""
    workspace = get_workspace_by_key(db, workspace_key)
    assert_workspace_access(db, auth, workspace.id)
    rows = db.execute(
        select(GithubRepoLink, Project)
        .outerjoin(Project, Project.id == GithubRepoLink.linked_project_id)
        .where(GithubRepoLink.workspace_id == workspace.id, GithubRepoLink.is_active.is_(True))
        .order_by(GithubRepoLink.full_name)
    ).all()
    return [
        {
            "github_repo_id": str(link.github_repo_id),
            "full_name": link.full_name,
            "private": link.is_private,
            "default_branch": link.default_branch,
            "is_active": link.is_active,
            "updated_at": link.updated_at,
            "linked_project_id": project.id if project else None,
            "linked_project_key": project.key if project else None,
            "linked_project_name": project.name if project else None,
        }
        for link, project in rows
    ]
