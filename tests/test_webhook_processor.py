"""Webhook queue processor tests."""

from __future__ import annotations

from sqlalchemy import select

from memory_core.auth import user_auth
from memory_core.models import GithubRepoLink, GithubWebhookEvent
from memory_core.schemas.github import TeamMappingCreate
from memory_core.services.github_team_mappings import create_github_team_mapping
from memory_core.services.permission_cache import store_repo_teams
from memory_core.webhooks.ingest import enqueue_github_webhook
from memory_core.webhooks.processor import process_github_webhook_queue
from tests.factories import (
    audit_actions,
    link_github_user,
    make_installation,
    make_member,
    make_project,
    make_repo_link,
    make_workspace,
    project_roles,
)
from tests.fakes import (
    bad_gateway,
    member,
    not_found,
    repo_payload,
    sign_payload,
    webhook_body,
)
from tests.test_constants import TEST_INSTALLATION_ID


def _enqueue(db, event_type: str, delivery_id: str, **fields) -> None:
    body = webhook_body(**fields)
    enqueue_github_webhook(db, event_type, delivery_id, sign_payload(body), body)


def _event(db, delivery_id: str) -> GithubWebhookEvent:
    return db.execute(
        select(GithubWebhookEvent)
        .where(GithubWebhookEvent.delivery_id == delivery_id)
        .execution_options(populate_existing=True)
    ).scalar_one()


def _workspace(db, **settings):
    workspace = make_workspace(db, "acme", github_webhook_enabled=True, **settings)
    make_installation(db, workspace)
    return workspace


async def test_membership_change_recomputes_affected_repos(db, github):
    workspace = _workspace(db, github_permission_sync_enabled=True)
    user = make_member(db, workspace, "one@example.com")
    link_github_user(db, workspace, user, "octo-one", github_user_id=1)
    project = make_project(db, workspace, "github:acme/api")
    make_repo_link(db, workspace, 100, "acme/api", project)
    store_repo_teams(
        db,
        workspace.id,
        100,
        [{"team_id": 7, "team_slug": "platform", "org_login": "acme", "permission": "write"}],
    )
    db.commit()
    github.team_members["acme/platform"] = [member(1, "octo-one")]
    _enqueue(db, "membership", "d-1", action="added", team={"id": 7})

    result = await process_github_webhook_queue(db, github)

    assert result == {"processed": 1, "failed": 0}
    event = _event(db, "d-1")
    assert (event.status, event.attempt_count, event.affected_repos_count) == ("done", 1, 1)
    assert project_roles(db, project) == {"one@example.com": "WRITER"}
    assert "github.permissions.recomputed" in audit_actions(db, workspace)


async def test_failed_recompute_is_retried_instead_of_throttled(db, github):
    workspace = _workspace(db, github_permission_sync_enabled=True)
    user = make_member(db, workspace, "one@example.com")
    link_github_user(db, workspace, user, "octo-one", github_user_id=1)
    project = make_project(db, workspace, "github:acme/api")
    make_repo_link(db, workspace, 100, "acme/api", project)
    store_repo_teams(
        db,
        workspace.id,
        100,
        [{"team_id": 7, "team_slug": "platform", "org_login": "acme", "permission": "write"}],
    )
    db.commit()
    github.team_members["acme/platform"] = [member(1, "octo-one")]
    github.failures[f"token:{TEST_INSTALLATION_ID}"] = [bad_gateway()]
    _enqueue(db, "membership", "d-1", action="added", team={"id": 7})

    result = await process_github_webhook_queue(db, github)

    assert result == {"processed": 1, "failed": 0}
    event = _event(db, "d-1")
    assert (event.status, event.attempt_count, event.affected_repos_count) == ("done", 2, 1)
    assert project_roles(db, project) == {"one@example.com": "WRITER"}


async def test_installation_repositories_syncs_the_named_repos(db, github):
    workspace = _workspace(db)
    github.repos = [repo_payload(100, "acme/api"), repo_payload(200, "acme/other")]
    _enqueue(
        db,
        "installation_repositories",
        "d-1",
        action="added",
        repositories_added=[{"id": 100, "full_name": "acme/api"}],
    )

    await process_github_webhook_queue(db, github)

    names = list(db.execute(select(GithubRepoLink.full_name)).scalars())
    assert names == ["acme/api"]
    assert _event(db, "d-1").status == "done"
    assert "github.repos.synced.webhook" in audit_actions(db, workspace)


async def test_repository_rename_updates_the_link(db, github):
    workspace = _workspace(db)
    make_repo_link(db, workspace, 100, "acme/api")
    _enqueue(
        db,
        "repository",
        "d-1",
        action="renamed",
        repository={"id": 100, "full_name": "Acme/API-v2", "default_branch": "trunk"},
    )

    await process_github_webhook_queue(db, github)

    link = db.execute(
        select(GithubRepoLink).execution_options(populate_existing=True)
    ).scalar_one()
    assert (link.full_name, link.repo_name, link.default_branch) == ("acme/api-v2", "api-v2", "trunk")
    assert "github.repo.updated.webhook" in audit_actions(db, workspace)


async def test_failing_event_is_retried_then_marked_failed(db, github):
    _workspace(db)
    github.failures["repos"] = not_found()
    _enqueue(
        db,
        "installation_repositories",
        "d-1",
        repositories_added=[{"id": 100, "full_name": "acme/api"}],
    )

    result = await process_github_webhook_queue(db, github)

    assert result == {"processed": 0, "failed": 1}
    event = _event(db, "d-1")
    assert (event.status, event.attempt_count) == ("failed", 3)
    assert event.error == "GitHub API error: 404 Not Found"
    assert github.count("repos") == 3


async def test_transient_failure_recovers_on_retry(db, github):
    _workspace(db)
    github.repos = [repo_payload(100, "acme/api")]
    github.failures["repos"] = [not_found()]
    _enqueue(
        db,
        "installation_repositories",
        "d-1",
        repositories_added=[{"id": 100, "full_name": "acme/api"}],
    )

    await process_github_webhook_queue(db, github)

    event = _event(db, "d-1")
    assert (event.status, event.attempt_count) == ("done", 2)


async def test_disabled_webhooks_and_unknown_installations_are_noops(db, github):
    workspace = make_workspace(db, "acme")
    make_installation(db, workspace)
    _enqueue(db, "team", "d-1", action="edited", team={"id": 7})
    _enqueue(db, "team", "d-2", installation_id=999, action="edited", team={"id": 7})

    result = await process_github_webhook_queue(db, github)

    assert result == {"processed": 2, "failed": 0}
    assert _event(db, "d-1").affected_repos_count == 0
    assert github.calls == []


async def test_batch_size_limits_work_and_done_rows_are_skipped(db, github):
    _workspace(db)
    for index in range(3):
        _enqueue(db, "ping", f"d-{index}")

    assert await process_github_webhook_queue(db, github, batch_size=2) == {
        "processed": 2,
        "failed": 0,
    }
    assert await process_github_webhook_queue(db, github, batch_size=2) == {
        "processed": 1,
        "failed": 0,
    }
    assert await process_github_webhook_queue(db, github) == {"processed": 0, "failed": 0}


async def test_membership_without_team_id_still_applies_team_mappings(db, github):
    workspace = _workspace(db)
    admin = make_member(db, workspace, "admin@example.com", "ADMIN")
    user = make_member(db, workspace, "one@example.com")
    link_github_user(db, workspace, user, "octo-one", github_user_id=1)
    project = make_project(db, workspace, "github:acme/api")
    create_github_team_mapping(
        db,
        user_auth(admin.id),
        "acme",
        TeamMappingCreate(
            github_team_id="7",
            github_team_slug="platform",
            github_org_login="acme",
            target_type="project",
            target_key="github:acme/api",
            role="READER",
        ),
    )
    github.team_members["acme/platform"] = [member(1, "octo-one")]
    _enqueue(db, "membership", "d-1", action="added", member={"login": "octo-one"})

    result = await process_github_webhook_queue(db, github)

    assert result == {"processed": 1, "failed": 0}
    assert _event(db, "d-1").affected_repos_count == 0
    assert project_roles(db, project) == {"one@example.com": "READER"}
