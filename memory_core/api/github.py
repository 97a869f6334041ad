"""Workspace GitHub integration endpoints.

Mounted under ``/v1/workspaces/{workspace_key}/github``. Every route defers
RBAC to the service it calls.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from memory_core.api.deps import get_db, get_github_client, require_auth
from memory_core.auth import AuthContext
from memory_core.github.client import GithubApi
from memory_core.models.enums import WebhookEventStatus
from memory_core.schemas.github import (
    CacheStatusResponse,
    InstallationStatusResponse,
    InstallUrlResponse,
    PermissionPreviewResponse,
    PermissionStatusResponse,
    RepoLinkList,
    RepoLinkRead,
    SyncPermissionsRequest,
    SyncPermissionsResponse,
    SyncReposRequest,
    SyncReposResponse,
    TeamMappingApplyRequest,
    TeamMappingApplyResponse,
    TeamMappingCreate,
    TeamMappingList,
    TeamMappingPatch,
    TeamMappingRead,
    UserLinkCreate,
    UserLinkList,
    UserLinkRead,
    WebhookEventList,
    WebhookEventRead,
)
from memory_core.services.github_integration import (
    get_github_install_url,
    get_github_installation_status,
    list_github_repos,
)
from memory_core.services.github_permission_status import (
    get_github_cache_status,
    get_github_permission_status,
    preview_github_permissions,
)
from memory_core.services.github_permission_sync import sync_github_permissions
from memory_core.services.github_repo_sync import sync_github_repos
from memory_core.services.github_team_mappings import (
    apply_github_team_mappings_for_workspace,
    create_github_team_mapping,
    delete_github_team_mapping,
    list_github_team_mappings,
    patch_github_team_mapping,
)
from memory_core.services.github_user_links import (
    create_github_user_link,
    delete_github_user_link,
    list_github_user_links,
)
from memory_core.webhooks.ingest import list_github_webhook_events

router = APIRouter()


# ── Installation ─────────────────────────────────────────────────────


@router.get("/install-url", response_model=InstallUrlResponse)
def install_url(
    workspace_key: str,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
) -> InstallUrlResponse:
    return InstallUrlResponse(url=get_github_install_url(db, auth, workspace_key))


@router.get("/installation", response_model=InstallationStatusResponse)
def installation_status(
    workspace_key: str,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
) -> InstallationStatusResponse:
    return InstallationStatusResponse(**get_github_installation_status(db, auth, workspace_key))


@router.get("/repos", response_model=RepoLinkList)
def list_repos(
    workspace_key: str,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
) -> RepoLinkList:
    repos = list_github_repos(db, auth, workspace_key)
    return RepoLinkList(
        workspace_key=workspace_key, repos=[RepoLinkRead(**repo) for repo in repos]
    )


# ── Sync ─────────────────────────────────────────────────────────────


@router.post("/sync-repos", response_model=SyncReposResponse)
async def sync_repos(
    workspace_key: str,
    data: SyncReposRequest | None = None,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
    client: GithubApi = Depends(get_github_client),
) -> SyncReposResponse:
    result = await sync_github_repos(
        db, auth, workspace_key, client, repos=data.repos if data else None
    )
    return SyncReposResponse(**result)


@router.post("/sync-permissions", response_model=SyncPermissionsResponse)
async def sync_permissions(
    workspace_key: str,
    data: SyncPermissionsRequest | None = None,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
    client: GithubApi = Depends(get_github_client),
) -> SyncPermissionsResponse:
    data = data or SyncPermissionsRequest()
    result = await sync_github_permissions(
        db,
        auth,
        workspace_key,
        client,
        dry_run=data.dry_run,
        project_key_prefix=data.project_key_prefix,
        repos=data.repos,
        mode=data.mode,
    )
    return SyncPermissionsResponse(**result)


@router.get("/permission-status", response_model=PermissionStatusResponse)
def permission_status(
    workspace_key: str,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
) -> PermissionStatusResponse:
    return PermissionStatusResponse(**get_github_permission_status(db, auth, workspace_key))


@router.get("/permission-preview", response_model=PermissionPreviewResponse)
async def permission_preview(
    workspace_key: str,
    repo: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
    client: GithubApi = Depends(get_github_client),
) -> PermissionPreviewResponse:
    result = await preview_github_permissions(db, auth, workspace_key, client, repo)
    return PermissionPreviewResponse(**result)


@router.get("/cache-status", response_model=CacheStatusResponse)
def cache_status(
    workspace_key: str,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
) -> CacheStatusResponse:
    return CacheStatusResponse(**get_github_cache_status(db, auth, workspace_key))


@router.get("/webhook-events", response_model=WebhookEventList)
def webhook_events(
    workspace_key: str,
    status_filter: WebhookEventStatus | None = Query(None, alias="status"),
    limit: int = Query(50),
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
) -> WebhookEventList:
    events = list_github_webhook_events(db, auth, workspace_key, status_filter, limit)
    return WebhookEventList(
        workspace_key=workspace_key,
        events=[WebhookEventRead.model_validate(event) for event in events],
    )


# ── Team mappings ────────────────────────────────────────────────────


@router.get("/team-mappings", response_model=TeamMappingList)
def list_team_mappings(
    workspace_key: str,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
) -> TeamMappingList:
    mappings = list_github_team_mappings(db, auth, workspace_key)
    return TeamMappingList(
        workspace_key=workspace_key,
        mappings=[TeamMappingRead.model_validate(mapping) for mapping in mappings],
    )


@router.post(
    "/team-mappings", response_model=TeamMappingRead, status_code=status.HTTP_201_CREATED
)
def create_team_mapping(
    workspace_key: str,
    data: TeamMappingCreate,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
) -> TeamMappingRead:
    mapping = create_github_team_mapping(db, auth, workspace_key, data)
    return TeamMappingRead.model_validate(mapping)


@router.post("/team-mappings/apply", response_model=TeamMappingApplyResponse)
async def apply_team_mappings(
    workspace_key: str,
    data: TeamMappingApplyRequest | None = None,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
    client: GithubApi = Depends(get_github_client),
) -> TeamMappingApplyResponse:
    result = await apply_github_team_mappings_for_workspace(
        db, auth, workspace_key, client, mode=data.mode if data else None
    )
    return TeamMappingApplyResponse(**result.to_dict())


@router.patch("/team-mappings/{mapping_id}", response_model=TeamMappingRead)
def patch_team_mapping(
    workspace_key: str,
    mapping_id: uuid.UUID,
    data: TeamMappingPatch,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
) -> TeamMappingRead:
    mapping = patch_github_team_mapping(db, auth, workspace_key, mapping_id, data)
    return TeamMappingRead.model_validate(mapping)


@router.delete("/team-mappings/{mapping_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_team_mapping(
    workspace_key: str,
    mapping_id: uuid.UUID,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
) -> Response:
    delete_github_team_mapping(db, auth, workspace_key, mapping_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ── User links ───────────────────────────────────────────────────────


@router.get("/user-links", response_model=UserLinkList)
def list_user_links(
    workspace_key: str,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
) -> UserLinkList:
    links = list_github_user_links(db, auth, workspace_key)
    return UserLinkList(
        workspace_key=workspace_key,
        links=[UserLinkRead.model_validate(link) for link in links],
    )


@router.post("/user-links", response_model=UserLinkRead, status_code=status.HTTP_201_CREATED)
async def create_user_link(
    workspace_key: str,
    data: UserLinkCreate,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
    client: GithubApi = Depends(get_github_client),
) -> UserLinkRead:
    link = await create_github_user_link(
        db, auth, workspace_key, data.user_id, data.github_login, client
    )
    return UserLinkRead.model_validate(link)


@router.delete("/user-links/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user_link(
    workspace_key: str,
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
) -> Response:
    delete_github_user_link(db, auth, workspace_key, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
