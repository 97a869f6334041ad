"""Workspace and project RBAC.

Workspace roles: MEMBER < ADMIN < OWNER.
Project roles:   READER < WRITER < MAINTAINER < OWNER.

Every state-changing or sensitive-read service calls one of the ``assert_*``
helpers before touching data. A workspace OWNER/ADMIN is an implicit project
OWNER and needs no ``ProjectMember`` row.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from memory_core.auth import AuthContext
from memory_core.errors import AuthorizationError
from memory_core.models.enums import ProjectRole, WorkspaceRole
from memory_core.models.project_member import ProjectMember
from memory_core.models.workspace_member import WorkspaceMember

WORKSPACE_ROLE_RANK: dict[str, int] = {
    WorkspaceRole.MEMBER.value: 1,
    WorkspaceRole.ADMIN.value: 2,
    WorkspaceRole.OWNER.value: 3,
}

PROJECT_ROLE_RANK: dict[str, int] = {
    ProjectRole.READER.value: 1,
    ProjectRole.WRITER.value: 2,
    ProjectRole.MAINTAINER.value: 3,
    ProjectRole.OWNER.value: 4,
}

# Pre-split project role names still present in older rows
_LEGACY_PROJECT_ROLES = {
    "ADMIN": ProjectRole.OWNER.value,
    "MEMBER": ProjectRole.WRITER.value,
}


@dataclass(frozen=True)
class WorkspaceMembership:
    role: str


@dataclass(frozen=True)
class ProjectMembership:
    role: str
    via_workspace_override: bool = False


def normalize_project_role(value: str | None) -> str:
    """Map legacy ADMIN/MEMBER to OWNER/WRITER; unknown values become READER."""
    role = str(value or "").strip().upper()
    if role in PROJECT_ROLE_RANK:
        return role
    return _LEGACY_PROJECT_ROLES.get(role, ProjectRole.READER.value)


def workspace_role_rank(role: str | None) -> int:
    return WORKSPACE_ROLE_RANK.get(str(role or "").upper(), 0)


def project_role_rank(role: str | None) -> int:
    return PROJECT_ROLE_RANK[normalize_project_role(role)]


def _as_uuid(value: uuid.UUID | str) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


def require_workspace_membership(
    db: Session, auth: AuthContext, workspace_id: uuid.UUID | str
) -> WorkspaceMembership | None:
    """Return the caller's workspace membership, or None.

    Service principals (env admin, access bypass) are implicit OWNER.
    """
    if auth.is_service_principal:
        return WorkspaceMembership(role=WorkspaceRole.OWNER.value)
    user_id = auth.user_uuid
    if user_id is None:
        return None
    member = db.execute(
        select(WorkspaceMember).where(
            WorkspaceMember.workspace_id == _as_uuid(workspace_id),
            WorkspaceMember.user_id == user_id,
        )
    ).scalar_one_or_none()
    if member is None:
        return None
    return WorkspaceMembership(role=member.role)


def require_project_membership(
    db: Session,
    auth: AuthContext,
    workspace_id: uuid.UUID | str,
    project_id: uuid.UUID | str,
) -> ProjectMembership | None:
    """Return the caller's effective project role, or None."""
    workspace_membership = require_workspace_membership(db, auth, workspace_id)
    if workspace_membership and workspace_membership.role in (
        WorkspaceRole.OWNER.value,
        WorkspaceRole.ADMIN.value,
    ):
        return ProjectMembership(role=ProjectRole.OWNER.value, via_workspace_override=True)

    user_id = auth.user_uuid
    if user_id is None:
        return None
    member = db.execute(
        select(ProjectMember).where(
            ProjectMember.project_id == _as_uuid(project_id),
            ProjectMember.user_id == user_id,
        )
    ).scalar_one_or_none()
    if member is None:
        return None
    return ProjectMembership(role=normalize_project_role(member.role))


def assert_workspace_access(
    db: Session,
    auth: AuthContext,
    workspace_id: uuid.UUID | str,
    min_role: str = WorkspaceRole.MEMBER.value,
) -> WorkspaceMembership:
    membership = require_workspace_membership(db, auth, workspace_id)
    if membership is None:
        raise AuthorizationError("Workspace access denied")
    if workspace_role_rank(membership.role) < workspace_role_rank(min_role):
        raise AuthorizationError(f"Workspace role {min_role} or higher required")
    return membership


def assert_workspace_admin(
    db: Session, auth: AuthContext, workspace_id: uuid.UUID | str
) -> WorkspaceMembership:
    return assert_workspace_access(db, auth, workspace_id, WorkspaceRole.ADMIN.value)


def assert_project_access(
    db: Session,
    auth: AuthContext,
    workspace_id: uuid.UUID | str,
    project_id: uuid.UUID | str,
    min_role: str = ProjectRole.READER.value,
) -> ProjectMembership:
    membership = require_project_membership(db, auth, workspace_id, project_id)
    if membership is None:
        raise AuthorizationError("Project access denied")
    if project_role_rank(membership.role) < project_role_rank(min_role):
        raise AuthorizationError(f"Project role {min_role} or higher required")
    return membership
