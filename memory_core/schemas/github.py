"""GitHub integration request and response schemas."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from memory_core.models.enums import SyncMode, TeamMappingTargetType


class SyncReposRequest(BaseModel):
    """Optional ``owner/repo`` filter; empty means every installation repo."""

    repos: list[str] | None = None


class SyncReposResponse(BaseModel):
    workspace_key: str
    count: int
    projects_auto_created: int = 0
    projects_auto_linked: int = 0


class SyncPermissionsRequest(BaseModel):
    dry_run: bool = False
    project_key_prefix: str | None = None
    repos: list[str] | None = None
    mode: SyncMode | None = None


class SyncPermissionsResponse(BaseModel):
    workspace_key: str
    dry_run: bool
    repos_processed: int
    users_matched: int
    added: int
    updated: int
    removed: int
    skipped_unmatched: int
    rate_limit_warnings: list[str] = Field(default_factory=list)
    unmatched_users: list[dict[str, Any]] = Field(default_factory=list)
    repo_errors: list[dict[str, str]] = Field(default_factory=list)


# ── Team mappings ────────────────────────────────────────────────────


class TeamMappingCreate(BaseModel):
    """Team ids are accepted as numeric strings (GitHub ids exceed JS-safe ints)."""

    provider_installation_id: str | int | None = None
    github_team_id: str | int
    github_team_slug: str
    github_org_login: str
    target_type: TeamMappingTargetType
    target_key: str
    role: str
    enabled: bool = True
    priority: int | None = None


class TeamMappingPatch(BaseModel):
    provider_installation_id: str | int | None = None
    github_team_id: str | int | None = None
    github_team_slug: str | None = None
    github_org_login: str | None = None
    target_type: TeamMappingTargetType | None = None
    target_key: str | None = None
    role: str | None = None
    enabled: bool | None = None
    priority: int | None = None


class TeamMappingRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    provider_installation_id: int | None = None
    github_team_id: int
    github_team_slug: str
    github_org_login: str
    target_type: str
    target_key: str
    role: str
    enabled: bool
    priority: int
    created_at: datetime
    updated_at: datetime


class TeamMappingList(BaseModel):
    workspace_key: str
    mappings: list[TeamMappingRead]


class TeamMappingApplyRequest(BaseModel):
    mode: SyncMode | None = None


class TeamMappingApplyResponse(BaseModel):
    mode: SyncMode
    mappings_processed: int = 0
    teams_fetched: int = 0
    users_matched: int = 0
    added: int = 0
    updated: int = 0
    removed: int = 0
    skipped_unmatched: int = 0
    unmatched_users: list[dict[str, Any]] = Field(default_factory=list)
    team_errors: list[dict[str, str]] = Field(default_factory=list)
    target_errors: list[dict[str, str]] = Field(default_factory=list)


# ── User links ───────────────────────────────────────────────────────


class UserLinkCreate(BaseModel):
    user_id: uuid.UUID
    github_login: str = Field(..., min_length=1)


class UserLinkRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: uuid.UUID
    github_login: str
    github_user_id: int | None = None
    created_at: datetime
    updated_at: datetime


class UserLinkList(BaseModel):
    workspace_key: str
    links: list[UserLinkRead]


# ── Webhooks ─────────────────────────────────────────────────────────


class WebhookEnqueueResponse(BaseModel):
    ok: bool = True
    delivery_id: str
    event_type: str
    queued: bool
    duplicate: bool
    workspace_key: str | None = None


class WebhookEventRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    installation_id: int
    event_type: str
    delivery_id: str
    status: str
    attempt_count: int
    affected_repos_count: int | None = None
    error: str | None = None
    created_at: datetime
    updated_at: datetime


class WebhookEventList(BaseModel):
    workspace_key: str
    events: list[WebhookEventRead]


class ProcessWebhooksRequest(BaseModel):
    batch_size: int | None = None


class ProcessWebhooksResponse(BaseModel):
    processed: int
    failed: int


# ── Installation ─────────────────────────────────────────────────────


class InstallUrlResponse(BaseModel):
    url: str


class InstallationConnectResponse(BaseModel):
    workspace_key: str
    installation_id: str
    account_type: str
    account_login: str
    repository_selection: str
    permissions: dict[str, str] = Field(default_factory=dict)
    connected: bool = True


class InstallationRead(BaseModel):
    installation_id: str
    account_type: str | None = None
    account_login: str | None = None
    repository_selection: str | None = None
    permissions: dict[str, str] = Field(default_factory=dict)
    updated_at: datetime


class InstallationStatusResponse(BaseModel):
    workspace_key: str
    connected: bool
    installation: InstallationRead | None = None


class RepoLinkRead(BaseModel):
    github_repo_id: str
    full_name: str
    private: bool
    default_branch: str | None = None
    is_active: bool
    updated_at: datetime
    linked_project_id: uuid.UUID | None = None
    linked_project_key: str | None = None
    linked_project_name: str | None = None


class RepoLinkList(BaseModel):
    workspace_key: str
    repos: list[RepoLinkRead]


# ── Permission status ────────────────────────────────────────────────


class LastSyncSummary(BaseModel):
    created_at: datetime
    dry_run: bool
    repos_processed: int = 0
    users_matched: int = 0
    added: int = 0
    updated: int = 0
    removed: int = 0
    skipped_unmatched: int = 0


class PermissionStatusResponse(BaseModel):
    workspace_key: str
    github_permission_sync_enabled: bool
    github_permission_sync_mode: SyncMode
    github_cache_ttl_seconds: int
    github_role_mapping: dict[str, str]
    last_sync: LastSyncSummary | None = None
    unmatched_users: list[dict[str, Any]] = Field(default_factory=list)


class PreviewPermission(BaseModel):
    github_user_id: str
    github_login: str | None = None
    permission: str
    matched_user_id: str | None = None
    matched_user_email: str | None = None
    mapped_project_role: str | None = None


class PermissionPreviewResponse(BaseModel):
    workspace_key: str
    repo_full_name: str
    project_key: str
    computed_permissions: list[PreviewPermission]
    unmatched_users: list[dict[str, Any]] = Field(default_factory=list)
    rate_limit_warnings: list[str] = Field(default_factory=list)


class CacheStatusResponse(BaseModel):
    workspace_key: str
    ttl_seconds: int
    repo_teams_cache_count: int
    team_members_cache_count: int
    permission_cache_count: int
    latest_repo_teams_cache_at: datetime | None = None
    latest_team_members_cache_at: datetime | None = None
    latest_permission_cache_at: datetime | None = None
