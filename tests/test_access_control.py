"""Workspace and project RBAC tests."""

from __future__ import annotations

import pytest

from memory_core.auth import SYSTEM_WEBHOOK_AUTH, AuthContext, user_auth
from memory_core.errors import AuthorizationError
from memory_core.services.access_control import (
    assert_project_access,
    assert_workspace_access,
    assert_workspace_admin,
    normalize_project_role,
    project_role_rank,
    require_project_membership,
    workspace_role_rank,
)
from tests.factories import add_project_member, make_member, make_project, make_user, make_workspace


class TestRoleHelpers:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("owner", "OWNER"),
            ("MAINTAINER", "MAINTAINER"),
            ("ADMIN", "OWNER"),
            ("member", "WRITER"),
            ("nonsense", "READER"),
            (None, "READER"),
        ],
    )
    def test_normalize_project_role(self, raw, expected):
        assert normalize_project_role(raw) == expected

    def test_ranks_are_ordered(self):
        assert workspace_role_rank("OWNER") > workspace_role_rank("ADMIN") > workspace_role_rank(
            "MEMBER"
        )
        assert project_role_rank("OWNER") > project_role_rank("MAINTAINER")
        assert project_role_rank("WRITER") > project_role_rank("READER")
        assert workspace_role_rank("GUEST") == 0


class TestWorkspaceAccess:
    def test_member_passes_member_check_but_not_admin(self, db):
        workspace = make_workspace(db)
        user = make_member(db, workspace, "dev@example.com", "MEMBER")
        auth = user_auth(user.id, user.email)

        assert assert_workspace_access(db, auth, workspace.id).role == "MEMBER"
        with pytest.raises(AuthorizationError):
            assert_workspace_admin(db, auth, workspace.id)

    def test_non_member_is_denied(self, db):
        workspace = make_workspace(db)
        outsider = make_user(db, "outsider@example.com")
        with pytest.raises(AuthorizationError, match="Workspace access denied"):
            assert_workspace_access(db, user_auth(outsider.id), workspace.id)

    def test_service_principals_are_implicit_owner(self, db):
        workspace = make_workspace(db)
        env_admin = AuthContext(user_id="env-admin", auth_method="env_admin", env_admin=True)

        assert assert_workspace_admin(db, env_admin, workspace.id).role == "OWNER"
        assert assert_workspace_admin(db, SYSTEM_WEBHOOK_AUTH, workspace.id).role == "OWNER"

    def test_non_uuid_user_id_has_no_membership(self, db):
        workspace = make_workspace(db)
        with pytest.raises(AuthorizationError):
            assert_workspace_access(db, AuthContext(user_id="not-a-uuid"), workspace.id)


class TestProjectAccess:
    def test_workspace_admin_is_implicit_project_owner(self, db):
        workspace = make_workspace(db)
        admin = make_member(db, workspace, "admin@example.com", "ADMIN")
        project = make_project(db, workspace, "local:app")

        membership = require_project_membership(db, user_auth(admin.id), workspace.id, project.id)
        assert membership.role == "OWNER"
        assert membership.via_workspace_override is True

    def test_legacy_member_row_reads_as_writer(self, db):
        workspace = make_workspace(db)
        user = make_member(db, workspace, "dev@example.com")
        project = make_project(db, workspace, "local:app")
        add_project_member(db, project, user, "MEMBER")

        membership = assert_project_access(
            db, user_auth(user.id), workspace.id, project.id, "WRITER"
        )
        assert membership.role == "WRITER"
        with pytest.raises(AuthorizationError, match="MAINTAINER"):
            assert_project_access(db, user_auth(user.id), workspace.id, project.id, "MAINTAINER")

    def test_workspace_member_without_project_row_is_denied(self, db):
        workspace = make_workspace(db)
        user = make_member(db, workspace, "dev@example.com")
        project = make_project(db, workspace, "local:app")
        with pytest.raises(AuthorizationError, match="Project access denied"):
            assert_project_access(db, user_auth(user.id), workspace.id, project.id)
