"""Sync the installation's repositories into GithubRepoLink rows.

Links are upserted and re-activated on every run; repos that left the
installation are deactivated, never deleted. With
``github_auto_create_projects`` on, each repo also gets a project keyed
``prefix + owner/repo`` and a ``github_remote`` mapping pointing at it.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from memory_core.auth import AuthContext
from memory_core.db.session import unit_of_work
from memory_core.github.client import GithubApi
from memory_core.models.enums import ResolutionKind
from memory_core.models.github_repo_link import GithubRepoLink
from memory_core.services.access_control import assert_workspace_admin
from memory_core.services.audit import record_audit
from memory_core.services.identity import normalize_github_repo_id, to_github_mapping_external_id
from memory_core.services.project_mapping import ensure_project_mapping, upsert_project
from memory_core.services.workspace_settings import get_effective_workspace_settings
from memory_core.services.workspaces import get_installation_for_workspace, get_workspace_by_key

logger = logging.getLogger(__name__)


def _repo_filter(repos: list[str] | None) -> set[str] | None:
    if not repos:
        return None
    names = {normalize_github_repo_id(name) for name in repos}
    names.discard(None)
    return names or None


def _upsert_repo_link(
    db: Session, workspace_id: uuid.UUID, repo: dict[str, Any], full_name: str
) -> GithubRepoLink:
    owner, _, name = full_name.partition("/")
    owner_login = str((repo.get("owner") or {}).get("login") or owner)
    link = db.execute(
        select(GithubRepoLink).where(
            GithubRepoLink.workspace_id == workspace_id,
            GithubRepoLink.github_repo_id == int(repo["id"]),
        )
    ).scalar_one_or_none()
    if link is None:
        link = GithubRepoLink(workspace_id=workspace_id, github_repo_id=int(repo["id"]))
        db.add(link)
    link.full_name = full_name
    link.owner_login = owner_login
    link.repo_name = str(repo.get("name") or name)
    link.default_branch = repo.get("default_branch")
    link.is_private = bool(repo.get("private"))
    link.is_active = True
    db.flush()
    return link


async def sync_github_repos(
    db: Session,
    auth: AuthContext,
    workspace_key: str,
    client: GithubApi,
    repos: list[str] | None = None,
) -> dict[str, Any]:
    """Mirror the installation's repos; optionally restricted to ``owner/repo`` names."""
    workspace = get_workspace_by_key(db, workspace_key)
    assert_workspace_admin(db, auth, workspace.id)
    installation = get_installation_for_workspace(db, workspace)
    settings = get_effective_workspace_settings(db, workspace.id)
    wanted = _repo_filter(repos)

    token = await client.get_installation_token(installation.installation_id)
    fetched = await client.list_installation_repositories(token)

    selected: list[tuple[dict[str, Any], str]] = []
    for repo in fetched:
        full_name = normalize_github_repo_id(repo.get("full_name"))
        if repo.get("id") is None or not full_name:
            continue
        if wanted is not None and full_name not in wanted:
            continue
        selected.append((repo, full_name))

    projects_auto_created = 0
    projects_auto_linked = 0
    with unit_of_work(db):
        stale = update(GithubRepoLink).where(
            GithubRepoLink.workspace_id == workspace.id,
            GithubRepoLink.is_active.is_(True),
        )
        if wanted is None:
            db.execute(stale.values(is_active=False))
        else:
            missing = wanted - {full_name for _, full_name in selected}
            if missing:
                db.execute(stale.where(GithubRepoLink.full_name.in_(missing)).values(is_active=False))

        for repo, full_name in selected:
            link = _upsert_repo_link(db, workspace.id, repo, full_name)
            if not settings.github_auto_create_projects:
                continue
            project, created = upsert_project(
                db, workspace.id, f"{settings.github_project_key_prefix}{full_name}", full_name
            )
            if created:
                projects_auto_created += 1
            ensure_project_mapping(
                db,
                workspace.id,
                project.id,
                ResolutionKind.github_remote,
                to_github_mapping_external_id(full_name),
            )
            projects_auto_linked += 1
            link.linked_project_id = project.id

        record_audit(
            db,
            workspace.id,
            "github.repos.synced",
            {
                "count": len(selected),
                "repos": sorted(wanted) if wanted else None,
                "projects_auto_created": projects_auto_created,
            },
            actor_user_id=auth.user_id,
        )

    logger.info(
        "GitHub repo sync workspace=%s repos=%d created=%d linked=%d",
        workspace.key,
        len(selected),
        projects_auto_created,
        projects_auto_linked,
    )
    return {
        "workspace_key": workspace.key,
        "count": len(selected),
        "projects_auto_created": projects_auto_created,
        "projects_auto_linked": projects_auto_linked,
    }
