"""Repository sync tests."""

from __future__ import annotations

import pytest
from sqlalchemy import select

from memory_core.auth import user_auth
from memory_core.errors import AuthorizationError, NotFoundError
from memory_core.models import GithubRepoLink, Project, ProjectMapping
from memory_core.services.github_repo_sync import sync_github_repos
from tests.factories import audit_actions, make_installation, make_member, make_workspace
from tests.fakes import repo_payload


@pytest.fixture
def workspace_admin(db):
    def _make(**settings):
        workspace = make_workspace(db, "acme", **settings)
        make_installation(db, workspace)
        user = make_member(db, workspace, "admin@example.com", "ADMIN")
        return workspace, user_auth(user.id, user.email)

    return _make


def _links(db) -> dict[str, bool]:
    rows = db.execute(select(GithubRepoLink)).scalars()
    return {row.full_name: row.is_active for row in rows}


async def test_repeat_sync_links_without_recreating_projects(db, github, workspace_admin):
    workspace, auth = workspace_admin()
    github.repos = [repo_payload(100, "Acme/Platform", private=True)]

    first = await sync_github_repos(db, auth, "acme", github)
    second = await sync_github_repos(db, auth, "acme", github)

    assert first == {
        "workspace_key": "acme",
        "count": 1,
        "projects_auto_created": 1,
        "projects_auto_linked": 1,
    }
    assert (second["projects_auto_created"], second["projects_auto_linked"]) == (0, 1)

    project = db.execute(select(Project)).scalar_one()
    assert project.key == "github:acme/platform"
    mapping = db.execute(select(ProjectMapping)).scalar_one()
    assert (mapping.kind, mapping.external_id) == ("github_remote", "acme/platform")
    link = db.execute(select(GithubRepoLink)).scalar_one()
    assert link.linked_project_id == project.id
    assert link.is_private is True
    assert audit_actions(db, workspace).count("github.repos.synced") == 2


async def test_auto_create_disabled_only_links_repos(db, github, workspace_admin):
    _, auth = workspace_admin(github_auto_create_projects=False)
    github.repos = [repo_payload(100, "acme/platform")]

    for _ in range(2):
        result = await sync_github_repos(db, auth, "acme", github)
        assert (result["projects_auto_created"], result["projects_auto_linked"]) == (0, 0)

    assert db.execute(select(Project)).first() is None
    assert _links(db) == {"acme/platform": True}


async def test_repos_that_left_the_installation_are_deactivated(db, github, workspace_admin):
    _, auth = workspace_admin()
    github.repos = [repo_payload(100, "acme/api"), repo_payload(200, "acme/web")]
    await sync_github_repos(db, auth, "acme", github)

    github.repos = [repo_payload(200, "acme/web")]
    await sync_github_repos(db, auth, "acme", github)

    assert _links(db) == {"acme/api": False, "acme/web": True}

    github.repos = [repo_payload(100, "acme/api"), repo_payload(200, "acme/web")]
    await sync_github_repos(db, auth, "acme", github)
    assert _links(db) == {"acme/api": True, "acme/web": True}


async def test_filtered_sync_leaves_other_links_alone(db, github, workspace_admin):
    _, auth = workspace_admin()
    github.repos = [repo_payload(100, "acme/api"), repo_payload(200, "acme/web")]
    await sync_github_repos(db, auth, "acme", github)

    github.repos = [repo_payload(200, "acme/web")]
    result = await sync_github_repos(db, auth, "acme", github, repos=["ACME/web", "acme/gone"])

    assert result["count"] == 1
    assert _links(db) == {"acme/api": True, "acme/web": True}


async def test_requires_admin_and_installation(db, github):
    workspace = make_workspace(db, "acme")
    admin = make_member(db, workspace, "admin@example.com", "ADMIN")
    dev = make_member(db, workspace, "dev@example.com", "MEMBER")

    with pytest.raises(AuthorizationError):
        await sync_github_repos(db, user_auth(dev.id), "acme", github)
    with pytest.raises(NotFoundError, match="installation not connected"):
        await sync_github_repos(db, user_auth(admin.id), "acme", github)
