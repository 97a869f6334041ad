"""Internal user ↔ GitHub login links.

Permission sync and team mappings only ever touch users that have a link.
The numeric GitHub id is looked up best-effort when the link is created;
matching falls back to the login when it is missing.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from memory_core.auth import AuthContext
from memory_core.db.session import unit_of_work
from memory_core.errors import NotFoundError, ValidationError
from memory_core.github.client import GithubApi
from memory_core.models.github_installation import GithubInstallation
from memory_core.models.github_user_link import GithubUserLink
from memory_core.models.workspace_member import WorkspaceMember
from memory_core.services.access_control import assert_workspace_admin
from memory_core.services.audit import record_audit
from memory_core.services.identity import normalize_github_login
from memory_core.services.workspaces import get_workspace_by_key

logger = logging.getLogger(__name__)


def list_github_user_links(
    db: Session, auth: AuthContext, workspace_key: str
) -> list[GithubUserLink]:
    workspace = get_workspace_by_key(db, workspace_key)
    assert_workspace_admin(db, auth, workspace.id)
    return list(
        db.execute(
            select(GithubUserLink)
            .where(GithubUserLink.workspace_id == workspace.id)
            .order_by(GithubUserLink.github_login.asc())
        ).scalars()
    )


async def _lookup_github_user_id(
    db: Session, client: GithubApi | None, workspace_id: uuid.UUID, login: str
) -> int | None:
    """GitHub id for ``login``, or None when it cannot be fetched."""
    if client is None:
        return None
    installation = db.execute(
        select(GithubInstallation).where(GithubInstallation.workspace_id == workspace_id)
    ).scalar_one_or_none()
    if installation is None:
        return None
    try:
        token = await client.get_installation_token(installation.installation_id)
        user = await client.get_user_by_login(token, login)
    except ValidationError as exc:
        logger.warning("GitHub user lookup failed for %s: %s", login, exc.message)
        return None
    if not user or user.get("id") is None:
        return None
    return int(user["id"])


async def create_github_user_link(
    db: Session,
    auth: AuthContext,
    workspace_key: str,
    user_id: uuid.UUID,
    github_login: str,
    client: GithubApi | None = None,
) -> GithubUserLink:
    workspace = get_workspace_by_key(db, workspace_key)
    assert_workspace_admin(db, auth, workspace.id)
    login = normalize_github_login(github_login)
    if not login:
        raise ValidationError("github_login is required.")

    member = db.execute(
        select(WorkspaceMember).where(
            WorkspaceMember.workspace_id == workspace.id,
            WorkspaceMember.user_id == user_id,
        )
    ).scalar_one_or_none()
    if member is None:
        raise NotFoundError("User is not a workspace member.")

    by_login = db.execute(
        select(GithubUserLink).where(
            GithubUserLink.workspace_id == workspace.id,
            GithubUserLink.github_login == login,
        )
    ).scalar_one_or_none()
    if by_login is not None and by_login.user_id != user_id:
        raise ValidationError("github_login is already linked to another user.")

    github_user_id = await _lookup_github_user_id(db, client, workspace.id, login)

    with unit_of_work(db):
        link = db.execute(
            select(GithubUserLink).where(
                GithubUserLink.workspace_id == workspace.id,
                GithubUserLink.user_id == user_id,
            )
        ).scalar_one_or_none()
        if link is None:
            link = GithubUserLink(workspace_id=workspace.id, user_id=user_id)
            db.add(link)
        link.github_login = login
        link.github_user_id = github_user_id
        db.flush()
        record_audit(
            db,
            workspace.id,
            "github.user_link.created",
            _link_target(workspace.key, link),
            actor_user_id=auth.user_id,
        )
    return link


def delete_github_user_link(
    db: Session, auth: AuthContext, workspace_key: str, user_id: uuid.UUID
) -> None:
    workspace = get_workspace_by_key(db, workspace_key)
    assert_workspace_admin(db, auth, workspace.id)
    link = db.execute(
        select(GithubUserLink).where(
            GithubUserLink.workspace_id == workspace.id,
            GithubUserLink.user_id == user_id,
        )
    ).scalar_one_or_none()
    if link is None:
        raise NotFoundError("GitHub user link not found.")
    with unit_of_work(db):
        record_audit(
            db,
            workspace.id,
            "github.user_link.deleted",
            _link_target(workspace.key, link),
            actor_user_id=auth.user_id,
        )
        db.delete(link)


def _link_target(workspace_key: str, link: GithubUserLink) -> dict[str, Any]:
    return {
        "workspace_key": workspace_key,
        "user_id": str(link.user_id),
        "github_login": link.github_login,
        "github_user_id": str(link.github_user_id) if link.github_user_id is not None else None,
    }
