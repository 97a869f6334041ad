"""SQLAlchemy models."""

from memory_core.models.audit_log import AuditLog
from memory_core.models.enums import (
    MonorepoContextMode,
    MonorepoMode,
    ProjectRole,
    ResolutionKind,
    SyncMode,
    TeamMappingTargetType,
    WebhookEventStatus,
    WorkspaceRole,
)
from memory_core.models.github_cache import (
    GithubPermissionCache,
    GithubRepoTeamsCache,
    GithubTeamMembersCache,
)
from memory_core.models.github_installation import GithubInstallation
from memory_core.models.github_repo_link import GithubRepoLink
from memory_core.models.github_team_mapping import GithubTeamMapping
from memory_core.models.github_user_link import GithubUserLink
from memory_core.models.github_webhook_event import GithubWebhookEvent
from memory_core.models.monorepo_subproject_policy import MonorepoSubprojectPolicy
from memory_core.models.project import Project
from memory_core.models.project_mapping import ProjectMapping
from memory_core.models.project_member import ProjectMember
from memory_core.models.user import User
from memory_core.models.workspace import Workspace
from memory_core.models.workspace_member import WorkspaceMember
from memory_core.models.workspace_settings import WorkspaceSettings

__all__ = [
    "AuditLog",
    "GithubInstallation",
    "GithubPermissionCache",
    "GithubRepoLink",
    "GithubRepoTeamsCache",
    "GithubTeamMapping",
    "GithubTeamMembersCache",
    "GithubUserLink",
    "GithubWebhookEvent",
    "MonorepoContextMode",
    "MonorepoMode",
    "MonorepoSubprojectPolicy",
    "Project",
    "ProjectMapping",
    "ProjectMember",
    "ProjectRole",
    "ResolutionKind",
    "SyncMode",
    "TeamMappingTargetType",
    "User",
    "WebhookEventStatus",
    "Workspace",
    "WorkspaceMember",
    "WorkspaceRole",
    "WorkspaceSettings",
]
