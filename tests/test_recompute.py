"""Recompute throttle and partial recompute tests."""

from __future__ import annotations

import uuid

import pytest

from memory_core.errors import GithubApiError
from memory_core.webhooks.recompute import (
    InMemoryRecomputeThrottle,
    get_recompute_throttle,
    recompute_github_permissions_for_repos,
    set_recompute_throttle,
)
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
from tests.fakes import bad_gateway
from tests.test_constants import TEST_INSTALLATION_ID

WS = uuid.uuid4()


class TestThrottle:
    def test_window_has_a_floor(self):
        assert InMemoryRecomputeThrottle(10).window_ms == 1000

    def test_repos_are_accepted_once_per_window(self):
        throttle = InMemoryRecomputeThrottle(1000)

        assert throttle.accept(WS, [1, 2], now_ms=0) == [1, 2]
        assert throttle.accept(WS, [2, 3], now_ms=500) == [3]
        assert throttle.accept(WS, [1, 2], now_ms=1000) == [1, 2]

    def test_workspaces_are_independent(self):
        throttle = InMemoryRecomputeThrottle(1000)
        throttle.accept(WS, [1], now_ms=0)
        assert throttle.accept(uuid.uuid4(), [1], now_ms=1) == [1]

    def test_duplicate_ids_in_one_call(self):
        assert InMemoryRecomputeThrottle().accept(WS, [5, 5], now_ms=0) == [5]

    def test_old_entries_are_pruned_past_max_entries(self):
        throttle = InMemoryRecomputeThrottle(1000, max_entries=2)
        throttle.accept(WS, [1, 2], now_ms=0)
        throttle.accept(WS, [3], now_ms=10_000)
        assert len(throttle) == 1

    def test_released_repos_are_accepted_again(self):
        throttle = InMemoryRecomputeThrottle(1000)
        throttle.accept(WS, [1, 2], now_ms=0)
        throttle.release(WS, [1])
        assert throttle.accept(WS, [1, 2], now_ms=10) == [1]

    def test_process_default_can_be_replaced(self):
        custom = InMemoryRecomputeThrottle(5000)
        set_recompute_throttle(custom)
        assert get_recompute_throttle() is custom
        set_recompute_throttle(None)
        assert get_recompute_throttle() is not custom


class TestRecompute:
    async def test_recomputes_linked_repos_once_per_window(self, db, github):
        workspace = make_workspace(
            db, "acme", github_permission_sync_enabled=True, github_webhook_sync_mode="add_only"
        )
        make_installation(db, workspace)
        user = make_member(db, workspace, "one@example.com")
        link_github_user(db, workspace, user, "octo-one", github_user_id=1)
        project = make_project(db, workspace, "github:acme/api")
        make_repo_link(db, workspace, 100, "acme/api", project)
        make_repo_link(db, workspace, 200, "acme/unlinked")
        github.collaborators["acme/api"] = [{"id": 1, "login": "octo-one", "permission": "write"}]

        first = await recompute_github_permissions_for_repos(
            db, github, workspace.id, [100, 200], "team_change", delivery_id="d-1"
        )
        second = await recompute_github_permissions_for_repos(
            db, github, workspace.id, [100], "team_change", delivery_id="d-2"
        )

        assert (first, second) == (1, 0)
        assert project_roles(db, project) == {"one@example.com": "WRITER"}
        assert "github.permissions.recomputed" in audit_actions(db, workspace)
        assert github.count("collaborators:acme/api") == 1

    async def test_disabled_sync_does_nothing(self, db, github):
        workspace = make_workspace(db, "acme")
        make_installation(db, workspace)

        assert await recompute_github_permissions_for_repos(
            db, github, workspace.id, [100], "team_change"
        ) == 0
        assert github.calls == []

    async def test_failed_recompute_does_not_hold_the_window(self, db, github):
        workspace = make_workspace(db, "acme", github_permission_sync_enabled=True)
        make_installation(db, workspace)
        project = make_project(db, workspace, "github:acme/api")
        make_repo_link(db, workspace, 100, "acme/api", project)
        github.failures[f"token:{TEST_INSTALLATION_ID}"] = [bad_gateway()]

        with pytest.raises(GithubApiError):
            await recompute_github_permissions_for_repos(
                db, github, workspace.id, [100], "team_change"
            )
        db.rollback()

        assert await recompute_github_permissions_for_repos(
            db, github, workspace.id, [100], "team_change"
        ) == 1
