"""Read-only views of GitHub permission sync: last run, per-repo preview, caches."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from memory_core.auth import AuthContext
from memory_core.db.session import unit_of_work
from memory_core.errors import NotFoundError
from memory_core.github.client import GithubApi
from memory_core.models.audit_log import AuditLog
from memory_core.models.github_repo_link import GithubRepoLink
from memory_core.models.github_user_link import GithubUserLink
from memory_core.models.project import Project
from memory_core.models.user import User
from memory_core.services.access_control import assert_workspace_access, assert_workspace_admin
from memory_core.services.github_permissions import (
    GITHUB_PERMISSION_RANK,
    compute_repo_permissions,
    map_github_permission_to_project_role,
)
from memory_core.services.identity import normalize_github_login
from memory_core.services.permission_cache import as_utc, get_cache_status
from memory_core.services.workspace_settings import get_effective_workspace_settings
from memory_core.services.workspaces import get_installation_for_workspace, get_workspace_by_key

logger = logging.getLogger(__name__)

SYNC_AUDIT_ACTIONS = (
    "github.permissions.computed",
    "github.permissions.synced",
)
_LAST_SYNC_COUNTS = (
    "repos_processed",
    "users_matched",
    "added",
    "updated",
    "removed",
    "skipped_unmatched",
)


def _count(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def get_github_permission_status(
    db: Session, auth: AuthContext, workspace_key: str
) -> dict[str, Any]:
    """Effective sync settings plus a summary of the most recent sync run."""
    workspace = get_workspace_by_key(db, workspace_key)
    assert_workspace_access(db, auth, workspace.id)
    settings = get_effective_workspace_settings(db, workspace.id)
    last = db.execute(
        select(AuditLog)
        .where(AuditLog.workspace_id == workspace.id, AuditLog.action.in_(SYNC_AUDIT_ACTIONS))
        .order_by(AuditLog.created_at.desc())
        .limit(1)
    ).scalar_one_or_none()

    last_sync = None
    unmatched: list[dict[str, Any]] = []
    if last is not None:
        target = last.target if isinstance(last.target, dict) else {}
        last_sync = {
            "created_at": as_utc(last.created_at),
            "dry_run": target.get("dry_run") is True,
            **{key: _count(target.get(key)) for key in _LAST_SYNC_COUNTS},
        }
        rows = target.get("unmatched_users")
        if isinstance(rows, list) and all(isinstance(row, dict) for row in rows):
            unmatched = rows

    return {
        "workspace_key": workspace.key,
        "github_permission_sync_enabled": settings.github_permission_sync_enabled,
        "github_permission_sync_mode": settings.github_permission_sync_mode,
        "github_cache_ttl_seconds": settings.github_cache_ttl_seconds,
        "github_role_mapping": settings.github_role_mapping,
        "last_sync": last_sync,
        "unmatched_users": unmatched,
    }


def _preview_order(row: dict[str, Any]) -> tuple[int, str]:
    return -GITHUB_PERMISSION_RANK.get(row["permission"], 0), row["github_user_id"]


async def preview_github_permissions(
    db: Session, auth: AuthContext, workspace_key: str, client: GithubApi, repo: str
) -> dict[str, Any]:
    """Computed permissions for one linked repo and who they would map to. Writes no members."""
    workspace = get_workspace_by_key(db, workspace_key)
    assert_workspace_admin(db, auth, workspace.id)
    settings = get_effective_workspace_settings(db, workspace.id)

    repo_name = (repo or "").strip().lower()
    row = db.execute(
        select(GithubRepoLink, Project)
        .join(Project, Project.id == GithubRepoLink.linked_project_id)
        .where(
            GithubRepoLink.workspace_id == workspace.id,
            GithubRepoLink.is_active.is_(True),
            func.lower(GithubRepoLink.full_name) == repo_name,
        )
    ).first()
    if row is None:
        raise NotFoundError("Linked GitHub repo not found for permission preview.")
    link, project = row
    installation = get_installation_for_workspace(db, workspace)

    token = await client.get_installation_token(installation.installation_id)
    rate_limit_warnings: list[str] = []
    with unit_of_work(db):
        computed = await compute_repo_permissions(
            db,
            client,
            token,
            workspace.id,
            link.github_repo_id,
            link.full_name,
            settings.github_cache_ttl_seconds,
            rate_limit_warnings,
        )

    by_id: dict[int, tuple[str, str]] = {}
    by_login: dict[str, tuple[str, str]] = {}
    for user_link, email in db.execute(
        select(GithubUserLink, User.email)
        .join(User, User.id == GithubUserLink.user_id)
        .where(GithubUserLink.workspace_id == workspace.id)
    ).all():
        match = (str(user_link.user_id), email)
        by_login[normalize_github_login(user_link.github_login)] = match
        if user_link.github_user_id is not None:
            by_id[int(user_link.github_user_id)] = match

    rows: list[dict[str, Any]] = []
    for github_user_id, permission in computed.users.items():
        match = by_id.get(github_user_id)
        if match is None and permission.github_login:
            match = by_login.get(normalize_github_login(permission.github_login))
        rows.append(
            {
                "github_user_id": str(github_user_id),
                "github_login": permission.github_login,
                "permission": permission.permission,
                "matched_user_id": match[0] if match else None,
                "matched_user_email": match[1] if match else None,
                "mapped_project_role": map_github_permission_to_project_role(
                    permission.permission, settings.github_role_mapping
                )
                if match
                else None,
            }
        )
    rows.sort(key=_preview_order)

    logger.info(
        "Permission preview workspace=%s repo=%s users=%d", workspace.key, link.full_name, len(rows)
    )
    return {
        "workspace_key": workspace.key,
        "repo_full_name": link.full_name,
        "project_key": project.key,
        "computed_permissions": rows,
        "unmatched_users": [
            {
                "github_user_id": row["github_user_id"],
                "github_login": row["github_login"],
                "permission": row["permission"],
            }
            for row in rows
            if row["matched_user_id"] is None
        ],
        "rate_limit_warnings": list(dict.fromkeys(rate_limit_warnings)),
    }


def get_github_cache_status(db: Session, auth: AuthContext, workspace_key: str) -> dict[str, Any]:
    workspace = get_workspace_by_key(db, workspace_key)
    assert_workspace_admin(db, auth, workspace.id)
    settings = get_effective_workspace_settings(db, workspace.id)
    return {
        "workspace_key": workspace.key,
        "ttl_seconds": settings.github_cache_ttl_seconds,
        **get_cache_status(db, workspace.id),
    }
