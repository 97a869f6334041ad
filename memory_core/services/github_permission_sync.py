"""Sync project membership from GitHub repo permissions.

For every active repo link with a linked project, compute each GitHub user's
effective permission, map it to a project role through the workspace role
mapping, and reconcile ``project_members`` for linked (internal ↔ GitHub)
users. A project is only touched when every repo linked to it was computed
without error, so a single failed GitHub call never reads as "no access".
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from memory_core.auth import AuthContext
from memory_core.db.session import unit_of_work
from memory_core.errors import ValidationError
from memory_core.github.client import GithubApi
from memory_core.models.enums import SyncMode
from memory_core.models.github_repo_link import GithubRepoLink
from memory_core.models.github_user_link import GithubUserLink
from memory_core.models.project import Project
from memory_core.services.access_control import assert_workspace_admin, project_role_rank
from memory_core.services.audit import record_audit
from memory_core.services.github_permissions import (
    compute_repo_permissions,
    is_protected_role_change,
    map_github_permission_to_project_role,
)
from memory_core.services.identity import normalize_github_login, normalize_github_repo_id
from memory_core.services.membership_ops import (
    RoleChange,
    apply_project_changes,
    load_project_roles,
    plan_member_changes,
    protected_workspace_user_ids,
)
from memory_core.services.permission_cache import store_repo_permissions
from memory_core.services.workspace_settings import get_effective_workspace_settings
from memory_core.services.workspaces import get_installation_for_workspace, get_workspace_by_key

logger = logging.getLogger(__name__)

MAX_UNMATCHED_USERS = 1000
# the audit row doubles as the permission-status snapshot
MAX_AUDITED_UNMATCHED_USERS = 100


def _target_repos(
    db: Session,
    workspace_id: uuid.UUID,
    repos: list[str] | None,
    project_key_prefix: str | None,
) -> list[tuple[GithubRepoLink, Project]]:
    stmt = (
        select(GithubRepoLink, Project)
        .join(Project, Project.id == GithubRepoLink.linked_project_id)
        .where(
            GithubRepoLink.workspace_id == workspace_id,
            GithubRepoLink.is_active.is_(True),
        )
        .order_by(GithubRepoLink.full_name)
    )
    wanted = {normalize_github_repo_id(name) for name in repos or []}
    wanted.discard(None)
    if wanted:
        stmt = stmt.where(GithubRepoLink.full_name.in_(wanted))
    if project_key_prefix:
        stmt = stmt.where(Project.key.startswith(project_key_prefix, autoescape=True))
    return [(link, project) for link, project in db.execute(stmt).all()]


def _user_link_index(
    db: Session, workspace_id: uuid.UUID
) -> tuple[dict[int, uuid.UUID], dict[str, uuid.UUID]]:
    by_id: dict[int, uuid.UUID] = {}
    by_login: dict[str, uuid.UUID] = {}
    links = db.execute(
        select(GithubUserLink).where(GithubUserLink.workspace_id == workspace_id)
    ).scalars()
    for link in links:
        by_login[normalize_github_login(link.github_login)] = link.user_id
        if link.github_user_id is not None:
            by_id[int(link.github_user_id)] = link.user_id
    return by_id, by_login


def _parse_mode(mode: SyncMode | str | None, default: SyncMode) -> SyncMode:
    if mode is None:
        return default
    try:
        return SyncMode(mode)
    except ValueError as exc:
        raise ValidationError(f"Invalid sync mode: {mode}") from exc


async def sync_github_permissions(
    db: Session,
    auth: AuthContext,
    workspace_key: str,
    client: GithubApi,
    dry_run: bool = False,
    project_key_prefix: str | None = None,
    repos: list[str] | None = None,
    mode: SyncMode | str | None = None,
) -> dict[str, Any]:
    workspace = get_workspace_by_key(db, workspace_key)
    assert_workspace_admin(db, auth, workspace.id)
    installation = get_installation_for_workspace(db, workspace)
    settings = get_effective_workspace_settings(db, workspace.id)
    sync_mode = _parse_mode(mode, settings.github_permission_sync_mode)

    targets = _target_repos(db, workspace.id, repos, project_key_prefix)
    token = await client.get_installation_token(installation.installation_id)
    user_by_github_id, user_by_login = _user_link_index(db, workspace.id)
    linked_user_ids = set(user_by_github_id.values()) | set(user_by_login.values())
    protected = protected_workspace_user_ids(db, workspace.id)

    desired: dict[uuid.UUID, dict[uuid.UUID, str]] = {}
    failed_projects: set[uuid.UUID] = set()
    rate_limit_warnings: list[str] = []
    repo_errors: list[dict[str, str]] = []
    unmatched_users: list[dict[str, Any]] = []
    matched_users: set[uuid.UUID] = set()
    repos_processed = 0

    for link, project in targets:
        desired.setdefault(project.id, {})
        try:
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
        except ValidationError as exc:
            logger.warning("Permission compute failed for %s: %s", link.full_name, exc.message)
            repo_errors.append({"repo_full_name": link.full_name, "error": exc.message})
            failed_projects.add(project.id)
            continue
        repos_processed += 1

        if not dry_run:
            store_repo_permissions(
                db,
                workspace.id,
                link.github_repo_id,
                {github_id: row.permission for github_id, row in computed.users.items()},
            )

        per_project = desired[project.id]
        for github_user_id, row in computed.users.items():
            user_id = user_by_github_id.get(github_user_id) or user_by_login.get(
                normalize_github_login(row.github_login)
            )
            if user_id is None:
                unmatched_users.append(
                    {
                        "repo_full_name": link.full_name,
                        "github_login": row.github_login,
                        "github_user_id": str(github_user_id),
                        "permission": row.permission,
                    }
                )
                continue
            matched_users.add(user_id)
            role = map_github_permission_to_project_role(
                row.permission, settings.github_role_mapping
            )
            current = per_project.get(user_id)
            if current is None or project_role_rank(role) > project_role_rank(current):
                per_project[user_id] = role

    project_ids = [project_id for project_id in desired if project_id not in failed_projects]
    existing_roles = load_project_roles(db, project_ids)
    plans: dict[uuid.UUID, list[RoleChange]] = {}
    for project_id in project_ids:
        plans[project_id] = plan_member_changes(
            existing_roles[project_id],
            desired[project_id],
            sync_mode,
            project_role_rank,
            lambda user_id, role: is_protected_role_change(user_id, role, protected),
            removable_user_ids=linked_user_ids,
        )

    all_changes = [change for changes in plans.values() for change in changes]
    result = {
        "workspace_key": workspace.key,
        "dry_run": dry_run,
        "repos_processed": repos_processed,
        "users_matched": len(matched_users),
        "added": sum(1 for change in all_changes if change.kind == "added"),
        "updated": sum(1 for change in all_changes if change.kind == "role_changed"),
        "removed": sum(1 for change in all_changes if change.kind == "removed"),
        "skipped_unmatched": len(unmatched_users),
        "rate_limit_warnings": list(dict.fromkeys(rate_limit_warnings)),
        "unmatched_users": unmatched_users[:MAX_UNMATCHED_USERS],
        "repo_errors": repo_errors,
    }

    with unit_of_work(db):
        if not dry_run:
            evidence = {"mode": sync_mode.value}
            for project_id, changes in plans.items():
                apply_project_changes(
                    db, workspace.id, project_id, changes, auth.user_id, evidence
                )
        record_audit(
            db,
            workspace.id,
            "github.permissions.computed" if dry_run else "github.permissions.synced",
            {
                "mode": sync_mode.value,
                **result,
                "unmatched_users": unmatched_users[:MAX_AUDITED_UNMATCHED_USERS],
            },
            actor_user_id=auth.user_id,
        )

    logger.info(
        "GitHub permission sync workspace=%s repos=%d added=%d updated=%d removed=%d dry_run=%s",
        workspace.key,
        repos_processed,
        result["added"],
        result["updated"],
        result["removed"],
        dry_run,
    )
    return result
