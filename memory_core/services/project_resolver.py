"""Project resolution: pick (or create) the project a git context refers to.

Resolution kinds are tried in the workspace's configured order:

- ``github_remote``: normalized ``owner/repo`` (plus host variant), with
  optional monorepo subproject handling per ``monorepo_context_mode``
- ``repo_root_slug``: the client's repo-root slug
- ``manual``: an explicit project key that must already exist

The first enabled mapping hit wins. Auto-created projects go through
``create_project_and_mapping`` so repeating a call never creates a second
project or mapping.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from memory_core.auth import AuthContext
from memory_core.db.session import unit_of_work
from memory_core.errors import NotFoundError
from memory_core.models.enums import MonorepoContextMode, ResolutionKind
from memory_core.models.monorepo_subproject_policy import MonorepoSubprojectPolicy
from memory_core.models.project import Project
from memory_core.models.workspace import Workspace
from memory_core.schemas.project import ProjectRef, ResolveProjectRequest, ResolveProjectResponse
from memory_core.services.access_control import assert_project_access, assert_workspace_access
from memory_core.services.identity import (
    GithubSelector,
    build_github_external_id_candidates,
    normalize_github_selector,
    to_github_mapping_external_id,
)
from memory_core.services.monorepo import (
    compose_monorepo_project_key,
    normalize_subpath_for_split_policy,
    resolve_monorepo_subpath,
)
from memory_core.services.project_mapping import (
    ProjectMappingResult,
    create_project_and_mapping,
    ensure_project_mapping,
    find_enabled_mapping,
    get_project_by_key,
)
from memory_core.services.workspace_settings import (
    EffectiveWorkspaceSettings,
    get_effective_workspace_settings,
)
from memory_core.services.workspaces import get_workspace_by_key

logger = logging.getLogger(__name__)


def has_enabled_subproject_policy(
    db: Session, workspace_id, repo_key: str, subpath: str
) -> bool:
    row = db.execute(
        select(MonorepoSubprojectPolicy.id).where(
            MonorepoSubprojectPolicy.workspace_id == workspace_id,
            MonorepoSubprojectPolicy.repo_key == repo_key,
            MonorepoSubprojectPolicy.subpath == subpath,
            MonorepoSubprojectPolicy.enabled.is_(True),
        )
    ).first()
    return row is not None


def _response(
    db: Session,
    auth: AuthContext,
    workspace: Workspace,
    project: Project,
    resolution: ResolutionKind,
    mapping_id,
    created: bool = False,
) -> ResolveProjectResponse:
    assert_project_access(db, auth, workspace.id, project.id)
    return ResolveProjectResponse(
        workspace_key=workspace.key,
        project=ProjectRef(key=project.key, id=str(project.id), name=project.name),
        resolution=resolution,
        matched_mapping_id=str(mapping_id) if mapping_id else None,
        created=created,
    )


def _detect_subpath(
    request: ResolveProjectRequest, settings: EffectiveWorkspaceSettings
) -> str | None:
    monorepo_requested = request.monorepo is None or request.monorepo.enabled is not False
    if not (settings.enable_monorepo_resolution and monorepo_requested):
        return None
    detected = resolve_monorepo_subpath(request, settings)
    return normalize_subpath_for_split_policy(
        detected, settings.monorepo_max_depth, settings.monorepo_exclude_globs
    )


def _create_subproject(
    db: Session,
    auth: AuthContext,
    workspace: Workspace,
    selector: GithubSelector,
    repo_project: Project,
    repo_name: str,
    subpath: str,
    settings: EffectiveWorkspaceSettings,
) -> ProjectMappingResult:
    return create_project_and_mapping(
        db,
        workspace.id,
        ResolutionKind.github_remote,
        to_github_mapping_external_id(selector.normalized, subpath),
        compose_monorepo_project_key(repo_project.key, subpath, settings.monorepo_mode),
        f"{repo_name} / {subpath}",
        actor_user_id=auth.user_id,
    )


def _resolve_github_remote(
    db: Session,
    auth: AuthContext,
    workspace: Workspace,
    request: ResolveProjectRequest,
    settings: EffectiveWorkspaceSettings,
) -> ResolveProjectResponse | None:
    selector = normalize_github_selector(request.github_remote)
    if selector is None:
        return None

    context_mode = settings.monorepo_context_mode
    split_on_demand = context_mode == MonorepoContextMode.split_on_demand
    split_auto = context_mode == MonorepoContextMode.split_auto
    subpath = _detect_subpath(request, settings)
    kind = ResolutionKind.github_remote

    mapping = find_enabled_mapping(
        db, workspace.id, kind, build_github_external_id_candidates(selector)
    )
    if mapping is not None:
        repo_project = mapping.project
        use_on_demand = bool(
            split_on_demand
            and subpath
            and has_enabled_subproject_policy(db, workspace.id, repo_project.key, subpath)
        )
        use_auto = bool(split_auto and subpath)
        if subpath and (use_on_demand or use_auto):
            sub_mapping = find_enabled_mapping(
                db,
                workspace.id,
                kind,
                build_github_external_id_candidates(selector, subpath, include_base=False),
            )
            if sub_mapping is not None:
                return _response(db, auth, workspace, sub_mapping.project, kind, sub_mapping.id)
            if use_on_demand or settings.github_auto_create_subprojects:
                sub = _create_subproject(
                    db, auth, workspace, selector, repo_project, repo_project.name, subpath, settings
                )
                return _response(
                    db, auth, workspace, sub.project, kind, sub.mapping.id, sub.created
                )
        return _response(db, auth, workspace, repo_project, kind, mapping.id)

    if not settings.github_auto_create_projects:
        return None

    repo = create_project_and_mapping(
        db,
        workspace.id,
        kind,
        to_github_mapping_external_id(selector.normalized),
        f"{settings.github_project_key_prefix}{selector.normalized}",
        selector.normalized,
        actor_user_id=auth.user_id,
    )
    wants_subproject = bool(
        subpath
        and (
            (
                split_on_demand
                and has_enabled_subproject_policy(db, workspace.id, repo.project.key, subpath)
            )
            or (split_auto and settings.github_auto_create_subprojects)
        )
    )
    if subpath and wants_subproject:
        sub = _create_subproject(
            db, auth, workspace, selector, repo.project, selector.normalized, subpath, settings
        )
        return _response(
            db, auth, workspace, sub.project, kind, sub.mapping.id, sub.created or repo.created
        )
    return _response(db, auth, workspace, repo.project, kind, repo.mapping.id, repo.created)


def _resolve_repo_root_slug(
    db: Session,
    auth: AuthContext,
    workspace: Workspace,
    request: ResolveProjectRequest,
    settings: EffectiveWorkspaceSettings,
) -> ResolveProjectResponse | None:
    slug = (request.repo_root_slug or "").strip()
    if not slug:
        return None
    kind = ResolutionKind.repo_root_slug
    mapping = find_enabled_mapping(db, workspace.id, kind, [slug])
    if mapping is not None:
        return _response(db, auth, workspace, mapping.project, kind, mapping.id)
    if not settings.auto_create_project:
        return None
    created = create_project_and_mapping(
        db,
        workspace.id,
        kind,
        slug,
        f"{settings.local_key_prefix}{slug}",
        slug,
        actor_user_id=auth.user_id,
    )
    return _response(db, auth, workspace, created.project, kind, created.mapping.id, created.created)


def _resolve_manual(
    db: Session,
    auth: AuthContext,
    workspace: Workspace,
    request: ResolveProjectRequest,
) -> ResolveProjectResponse | None:
    manual_key = (request.manual_project_key or "").strip()
    if not manual_key:
        return None
    project = get_project_by_key(db, workspace.id, manual_key)
    if project is None:
        raise NotFoundError(f"Project not found for manual selection: {manual_key}")
    assert_project_access(db, auth, workspace.id, project.id)
    with unit_of_work(db):
        mapping = ensure_project_mapping(
            db, workspace.id, project.id, ResolutionKind.manual, manual_key
        )
    return _response(db, auth, workspace, project, ResolutionKind.manual, mapping.id)


def resolve_project_by_priority(
    db: Session, auth: AuthContext, request: ResolveProjectRequest
) -> ResolveProjectResponse:
    """Resolve ``request`` to a project, creating it when the workspace allows.

    Raises NotFoundError (carrying the attempted order) when no kind resolves.
    """
    workspace = get_workspace_by_key(db, request.workspace_key)
    assert_workspace_access(db, auth, workspace.id)
    settings = get_effective_workspace_settings(db, workspace.id)

    for kind in settings.resolution_order:
        if kind == ResolutionKind.github_remote:
            result = _resolve_github_remote(db, auth, workspace, request, settings)
        elif kind == ResolutionKind.repo_root_slug:
            result = _resolve_repo_root_slug(db, auth, workspace, request, settings)
        else:
            result = _resolve_manual(db, auth, workspace, request)
        if result is not None:
            logger.debug(
                "Resolved workspace=%s project=%s via %s created=%s",
                workspace.key,
                result.project.key,
                kind.value,
                result.created,
            )
            return result

    attempted = [kind.value for kind in settings.resolution_order]
    raise NotFoundError("Could not resolve project from provided selectors.", attempted=attempted)
