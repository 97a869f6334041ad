"""Team mapping CRUD and reconciliation tests."""

from __future__ import annotations

import uuid

import pytest

from memory_core.auth import user_auth
from memory_core.errors import AuthorizationError, NotFoundError, ValidationError
from memory_core.schemas.github import TeamMappingCreate, TeamMappingPatch
from memory_core.services.github_team_mappings import (
    apply_github_team_mappings,
    apply_github_team_mappings_for_workspace,
    clamp_priority,
    create_github_team_mapping,
    delete_github_team_mapping,
    list_github_team_mappings,
    patch_github_team_mapping,
)
from tests.factories import (
    add_project_member,
    audit_actions,
    link_github_user,
    make_installation,
    make_member,
    make_project,
    make_workspace,
    project_roles,
    update_settings,
    workspace_roles,
)
from tests.fakes import bad_gateway, member, not_found
from tests.test_constants import TEST_INSTALLATION_ID


def _mapping(**overrides) -> TeamMappingCreate:
    values = {
        "github_team_id": "501",
        "github_team_slug": "Platform",
        "github_org_login": "@Acme",
        "target_type": "project",
        "target_key": "github:acme/api",
        "role": "writer",
    }
    values.update(overrides)
    return TeamMappingCreate(**values)


@pytest.fixture
def setup(db, github):
    workspace = make_workspace(db, "acme")
    make_installation(db, workspace)
    admin = make_member(db, workspace, "admin@example.com", "ADMIN")
    project = make_project(db, workspace, "github:acme/api")
    users = {}
    for index, name in enumerate(("one", "two", "three"), start=1):
        user = make_member(db, workspace, f"{name}@example.com")
        link_github_user(db, workspace, user, f"octo-{name}", github_user_id=index)
        users[name] = user
    github.team_members["acme/platform"] = [member(1, "octo-one"), member(2, "octo-two")]
    return workspace, project, users, user_auth(admin.id, admin.email)


class TestCrud:
    def test_create_normalizes_and_audits(self, db, setup):
        workspace, _, _, auth = setup

        mapping = create_github_team_mapping(db, auth, "acme", _mapping())

        assert mapping.github_team_id == 501
        assert mapping.github_team_slug == "platform"
        assert mapping.github_org_login == "acme"
        assert mapping.role == "WRITER"
        assert mapping.priority == 100
        assert audit_actions(db, workspace) == ["github.team_mapping.created"]

    @pytest.mark.parametrize(
        "overrides, message",
        [
            ({"github_team_id": "abc"}, "github_team_id must be a numeric string"),
            ({"github_team_slug": "  "}, "github_team_slug is required"),
            ({"target_key": "github:acme/missing"}, "does not exist"),
            ({"role": "ADMIN"}, "Project mappings require role"),
            ({"target_type": "workspace", "target_key": "other", "role": "MEMBER"}, "current workspace"),
            ({"target_type": "workspace", "target_key": "acme", "role": "WRITER"}, "OWNER/ADMIN/MEMBER"),
        ],
    )
    def test_create_rejects_invalid_input(self, db, setup, overrides, message):
        *_, auth = setup
        with pytest.raises(ValidationError, match=message):
            create_github_team_mapping(db, auth, "acme", _mapping(**overrides))

    def test_duplicate_mapping_is_rejected(self, db, setup):
        *_, auth = setup
        create_github_team_mapping(db, auth, "acme", _mapping())
        with pytest.raises(ValidationError, match="already exists"):
            create_github_team_mapping(db, auth, "acme", _mapping(role="READER"))
        assert len(list_github_team_mappings(db, auth, "acme")) == 1

    def test_priority_is_clamped(self):
        assert clamp_priority(None) == 100
        assert clamp_priority(-5) == 0
        assert clamp_priority(10**9) == 100000

    def test_patch_and_delete(self, db, setup):
        workspace, _, _, auth = setup
        mapping = create_github_team_mapping(db, auth, "acme", _mapping())

        patched = patch_github_team_mapping(
            db, auth, "acme", mapping.id, TeamMappingPatch(role="maintainer", priority=5, enabled=False)
        )
        assert (patched.role, patched.priority, patched.enabled) == ("MAINTAINER", 5, False)

        delete_github_team_mapping(db, auth, "acme", mapping.id)
        assert list_github_team_mappings(db, auth, "acme") == []
        assert sorted(audit_actions(db, workspace)) == [
            "github.team_mapping.created",
            "github.team_mapping.deleted",
            "github.team_mapping.updated",
        ]

    def test_unknown_mapping(self, db, setup):
        *_, auth = setup
        with pytest.raises(NotFoundError):
            delete_github_team_mapping(db, auth, "acme", uuid.uuid4())

    def test_members_cannot_manage_mappings(self, db, setup):
        _, _, users, _ = setup
        with pytest.raises(AuthorizationError):
            list_github_team_mappings(db, user_auth(users["one"].id), "acme")


class TestApply:
    async def test_add_only_adds_and_promotes(self, db, github, setup):
        _, project, users, auth = setup
        add_project_member(db, project, users["one"], "READER")
        create_github_team_mapping(db, auth, "acme", _mapping(role="WRITER"))

        result = await apply_github_team_mappings_for_workspace(
            db, auth, "acme", github, mode="add_only"
        )

        assert (result.added, result.updated, result.removed) == (1, 1, 0)
        assert result.teams_fetched == 1
        assert result.users_matched == 2
        assert project_roles(db, project) == {
            "one@example.com": "WRITER",
            "two@example.com": "WRITER",
        }

    async def test_add_and_remove_drops_linked_users_outside_the_team(self, db, github, setup):
        workspace, project, users, auth = setup
        add_project_member(db, project, users["one"], "WRITER")
        add_project_member(db, project, users["two"], "WRITER")
        add_project_member(db, project, users["three"], "WRITER")
        create_github_team_mapping(db, auth, "acme", _mapping(role="WRITER"))

        result = await apply_github_team_mappings_for_workspace(
            db, auth, "acme", github, mode="add_and_remove"
        )

        assert (result.added, result.updated, result.removed) == (0, 0, 1)
        assert "three@example.com" not in project_roles(db, project)
        actions = audit_actions(db, workspace)
        assert "access.project_member.removed" in actions
        assert "github.team_mappings.applied" in actions

    async def test_highest_role_wins_across_mappings(self, db, github, setup):
        _, project, _, auth = setup
        github.team_members["acme/leads"] = [member(2, "octo-two")]
        create_github_team_mapping(db, auth, "acme", _mapping(role="READER"))
        create_github_team_mapping(
            db,
            auth,
            "acme",
            _mapping(github_team_id="502", github_team_slug="leads", role="MAINTAINER"),
        )

        await apply_github_team_mappings_for_workspace(db, auth, "acme", github)

        assert project_roles(db, project) == {
            "one@example.com": "READER",
            "two@example.com": "MAINTAINER",
        }

    async def test_workspace_target_never_touches_admins(self, db, github, setup):
        workspace, _, users, auth = setup
        create_github_team_mapping(
            db,
            auth,
            "acme",
            _mapping(target_type="workspace", target_key="acme", role="ADMIN"),
        )

        result = await apply_github_team_mappings_for_workspace(
            db, auth, "acme", github, mode="add_and_remove"
        )

        roles = workspace_roles(db, workspace)
        assert roles["one@example.com"] == "ADMIN"
        assert roles["two@example.com"] == "ADMIN"
        assert roles["admin@example.com"] == "ADMIN"
        assert "three@example.com" not in roles
        assert (result.updated, result.removed) == (2, 1)

    async def test_failed_roster_and_unmatched_members_are_reported(self, db, github, setup):
        workspace, project, _, auth = setup
        make_project(db, workspace, "github:acme/web")
        github.team_members["acme/platform"].append(member(77, "Stranger"))
        github.failures["members:acme/ghosts"] = not_found()
        create_github_team_mapping(db, auth, "acme", _mapping())
        create_github_team_mapping(
            db,
            auth,
            "acme",
            _mapping(github_team_id="503", github_team_slug="ghosts", target_key="github:acme/web"),
        )

        result = await apply_github_team_mappings_for_workspace(db, auth, "acme", github)

        assert result.team_errors == [
            {"team_slug": "ghosts", "org_login": "acme", "error": "GitHub API error: 404 Not Found"}
        ]
        assert result.unmatched_users == [
            {"github_login": "stranger", "github_user_id": "77", "team_slug": "platform"}
        ]
        assert result.teams_fetched == 1
        assert len(project_roles(db, project)) == 2

    async def test_failed_roster_never_removes_members(self, db, github, setup):
        _, project, users, auth = setup
        add_project_member(db, project, users["one"], "WRITER")
        add_project_member(db, project, users["two"], "WRITER")
        github.failures["members:acme/platform"] = bad_gateway()
        create_github_team_mapping(db, auth, "acme", _mapping(role="WRITER"))

        result = await apply_github_team_mappings_for_workspace(
            db, auth, "acme", github, mode="add_and_remove"
        )

        assert (result.added, result.updated, result.removed) == (0, 0, 0)
        assert result.team_errors == [
            {"team_slug": "platform", "org_login": "acme", "error": "GitHub API error: 502 Bad Gateway"}
        ]
        assert project_roles(db, project) == {
            "one@example.com": "WRITER",
            "two@example.com": "WRITER",
        }

    async def test_failed_roster_blocks_the_whole_target(self, db, github, setup):
        _, project, users, auth = setup
        github.team_members["acme/leads"] = [member(3, "octo-three")]
        add_project_member(db, project, users["one"], "WRITER")
        github.failures["members:acme/platform"] = bad_gateway()
        create_github_team_mapping(db, auth, "acme", _mapping(role="WRITER"))
        create_github_team_mapping(
            db,
            auth,
            "acme",
            _mapping(github_team_id="502", github_team_slug="leads", role="MAINTAINER"),
        )

        result = await apply_github_team_mappings_for_workspace(
            db, auth, "acme", github, mode="add_and_remove"
        )

        assert (result.added, result.removed) == (0, 0)
        assert project_roles(db, project) == {"one@example.com": "WRITER"}

    async def test_workspace_target_is_skipped_when_its_roster_fails(self, db, github, setup):
        workspace, _, _, auth = setup
        github.failures["members:acme/platform"] = bad_gateway()
        create_github_team_mapping(
            db,
            auth,
            "acme",
            _mapping(target_type="workspace", target_key="acme", role="MEMBER"),
        )
        before = workspace_roles(db, workspace)

        result = await apply_github_team_mappings_for_workspace(
            db, auth, "acme", github, mode="add_and_remove"
        )

        assert result.removed == 0
        assert workspace_roles(db, workspace) == before

    async def test_non_numeric_member_ids_fall_back_to_login(self, db, github, setup):
        _, project, _, auth = setup
        github.team_members["acme/platform"] = [
            {"id": "not-a-number", "login": "octo-one"},
            {"id": None, "login": "octo-two"},
        ]
        create_github_team_mapping(db, auth, "acme", _mapping(role="READER"))

        result = await apply_github_team_mappings_for_workspace(db, auth, "acme", github)

        assert result.added == 2
        assert project_roles(db, project) == {
            "one@example.com": "READER",
            "two@example.com": "READER",
        }

    async def test_disabled_feature_is_a_no_op(self, db, github, setup):
        workspace, project, _, auth = setup
        create_github_team_mapping(db, auth, "acme", _mapping())
        update_settings(db, workspace, github_team_mapping_enabled=False)

        result = await apply_github_team_mappings(db, github, workspace.id, TEST_INSTALLATION_ID)

        assert result.mappings_processed == 0
        assert github.calls == []
        assert project_roles(db, project) == {}

    async def test_mappings_for_other_installations_are_ignored(self, db, github, setup):
        workspace, project, _, auth = setup
        create_github_team_mapping(db, auth, "acme", _mapping(provider_installation_id="9999"))

        result = await apply_github_team_mappings(db, github, workspace.id, TEST_INSTALLATION_ID)

        assert result.mappings_processed == 0
        assert project_roles(db, project) == {}
