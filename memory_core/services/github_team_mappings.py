"""GitHub team → workspace/project role mappings.

CRUD for the mapping rows plus ``apply_github_team_mappings``, which fetches
each mapped team's roster once and reconciles workspace and project
membership for GitHub-linked users.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from memory_core.auth import AuthContext
from memory_core.db.session import unit_of_work
from memory_core.errors import NotFoundError, ValidationError
from memory_core.github.client import GithubApi
from memory_core.models.enums import ProjectRole, SyncMode, TeamMappingTargetType, WorkspaceRole
from memory_core.models.github_team_mapping import GithubTeamMapping
from memory_core.models.github_user_link import GithubUserLink
from memory_core.models.project import Project
from memory_core.models.workspace import Workspace
from memory_core.schemas.github import TeamMappingCreate, TeamMappingPatch
from memory_core.services.access_control import (
    assert_workspace_admin,
    project_role_rank,
    workspace_role_rank,
)
from memory_core.services.audit import record_audit
from memory_core.services.github_permissions import call_with_retry, is_protected_role_change
from memory_core.services.identity import normalize_github_login
from memory_core.services.membership_ops import (
    RoleChange,
    apply_project_changes,
    apply_workspace_changes,
    load_project_roles,
    load_workspace_roles,
    plan_member_changes,
    protected_workspace_user_ids,
)
from memory_core.services.project_mapping import get_project_by_key
from memory_core.services.workspace_settings import get_effective_workspace_settings
from memory_core.services.workspaces import get_installation_for_workspace, get_workspace_by_key

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY = 100
MAX_PRIORITY = 100000
MAX_UNMATCHED_USERS = 500

_WORKSPACE_ROLES = {role.value for role in WorkspaceRole}
_PROJECT_ROLES = {role.value for role in ProjectRole}


# ── Input validation ─────────────────────────────────────────────────


def parse_numeric_id(value: Any, field_name: str) -> int:
    raw = str(value if value is not None else "").strip()
    if not raw.isdigit():
        raise ValidationError(f"{field_name} must be a numeric string.")
    return int(raw)


def normalize_slug(value: Any, field_name: str) -> str:
    normalized = str(value or "").strip().lstrip("@").lower()
    if not normalized:
        raise ValidationError(f"{field_name} is required.")
    return normalized


def clamp_priority(value: int | None) -> int:
    if value is None:
        return DEFAULT_PRIORITY
    return min(max(int(value), 0), MAX_PRIORITY)


def _validate_target(
    db: Session, workspace: Workspace, target_type: TeamMappingTargetType, target_key: str, role: str
) -> tuple[str, str]:
    key = (target_key or "").strip()
    if not key:
        raise ValidationError("target_key is required.")
    role = (role or "").strip().upper()
    if target_type == TeamMappingTargetType.workspace:
        if role not in _WORKSPACE_ROLES:
            raise ValidationError("Workspace mappings require role OWNER/ADMIN/MEMBER.")
        if key != workspace.key:
            raise ValidationError("Workspace mappings must target the current workspace key.")
    else:
        if role not in _PROJECT_ROLES:
            raise ValidationError("Project mappings require role OWNER/MAINTAINER/WRITER/READER.")
        if get_project_by_key(db, workspace.id, key) is None:
            raise ValidationError("Project target_key does not exist in workspace.")
    return key, role


def _installation_id(value: Any) -> int | None:
    if value is None or str(value).strip() == "":
        return None
    return parse_numeric_id(value, "provider_installation_id")


def _mapping_target(mapping: GithubTeamMapping) -> dict[str, Any]:
    return {
        "mapping_id": str(mapping.id),
        "github_team_id": str(mapping.github_team_id),
        "github_team_slug": mapping.github_team_slug,
        "github_org_login": mapping.github_org_login,
        "target_type": mapping.target_type,
        "target_key": mapping.target_key,
        "role": mapping.role,
        "enabled": mapping.enabled,
        "priority": mapping.priority,
    }


def _flush_unique(db: Session) -> None:
    try:
        with db.begin_nested():
            db.flush()
    except IntegrityError as exc:
        raise ValidationError(
            "A mapping for this team and target already exists in the workspace."
        ) from exc


# ── CRUD ─────────────────────────────────────────────────────────────


def list_github_team_mappings(
    db: Session, auth: AuthContext, workspace_key: str
) -> list[GithubTeamMapping]:
    workspace = get_workspace_by_key(db, workspace_key)
    assert_workspace_admin(db, auth, workspace.id)
    return list(
        db.execute(
            select(GithubTeamMapping)
            .where(GithubTeamMapping.workspace_id == workspace.id)
            .order_by(
                GithubTeamMapping.priority.asc(),
                GithubTeamMapping.github_org_login.asc(),
                GithubTeamMapping.github_team_slug.asc(),
            )
        ).scalars()
    )


def create_github_team_mapping(
    db: Session, auth: AuthContext, workspace_key: str, data: TeamMappingCreate
) -> GithubTeamMapping:
    workspace = get_workspace_by_key(db, workspace_key)
    assert_workspace_admin(db, auth, workspace.id)
    target_key, role = _validate_target(db, workspace, data.target_type, data.target_key, data.role)
    mapping = GithubTeamMapping(
        workspace_id=workspace.id,
        provider_installation_id=_installation_id(data.provider_installation_id),
        github_team_id=parse_numeric_id(data.github_team_id, "github_team_id"),
        github_team_slug=normalize_slug(data.github_team_slug, "github_team_slug"),
        github_org_login=normalize_slug(data.github_org_login, "github_org_login"),
        target_type=data.target_type.value,
        target_key=target_key,
        role=role,
        enabled=data.enabled,
        priority=clamp_priority(data.priority),
    )
    with unit_of_work(db):
        db.add(mapping)
        _flush_unique(db)
        record_audit(
            db,
            workspace.id,
            "github.team_mapping.created",
            _mapping_target(mapping),
            actor_user_id=auth.user_id,
        )
    return mapping


def _get_mapping(db: Session, workspace_id: uuid.UUID, mapping_id: uuid.UUID) -> GithubTeamMapping:
    mapping = db.execute(
        select(GithubTeamMapping).where(
            GithubTeamMapping.workspace_id == workspace_id,
            GithubTeamMapping.id == mapping_id,
        )
    ).scalar_one_or_none()
    if mapping is None:
        raise NotFoundError("GitHub team mapping not found.")
    return mapping


def patch_github_team_mapping(
    db: Session,
    auth: AuthContext,
    workspace_key: str,
    mapping_id: uuid.UUID,
    data: TeamMappingPatch,
) -> GithubTeamMapping:
    workspace = get_workspace_by_key(db, workspace_key)
    assert_workspace_admin(db, auth, workspace.id)
    mapping = _get_mapping(db, workspace.id, mapping_id)
    changes = data.model_dump(exclude_unset=True)

    target_type = TeamMappingTargetType(changes.get("target_type") or mapping.target_type)
    target_key, role = _validate_target(
        db,
        workspace,
        target_type,
        changes.get("target_key") or mapping.target_key,
        changes.get("role") or mapping.role,
    )

    with unit_of_work(db):
        if "provider_installation_id" in changes:
            mapping.provider_installation_id = _installation_id(changes["provider_installation_id"])
        if changes.get("github_team_id") is not None:
            mapping.github_team_id = parse_numeric_id(changes["github_team_id"], "github_team_id")
        if changes.get("github_team_slug") is not None:
            mapping.github_team_slug = normalize_slug(
                changes["github_team_slug"], "github_team_slug"
            )
        if changes.get("github_org_login") is not None:
            mapping.github_org_login = normalize_slug(
                changes["github_org_login"], "github_org_login"
            )
        if changes.get("enabled") is not None:
            mapping.enabled = bool(changes["enabled"])
        if "priority" in changes:
            mapping.priority = clamp_priority(changes["priority"])
        mapping.target_type = target_type.value
        mapping.target_key = target_key
        mapping.role = role
        _flush_unique(db)
        record_audit(
            db,
            workspace.id,
            "github.team_mapping.updated",
            _mapping_target(mapping),
            actor_user_id=auth.user_id,
        )
    return mapping


def delete_github_team_mapping(
    db: Session, auth: AuthContext, workspace_key: str, mapping_id: uuid.UUID
) -> None:
    workspace = get_workspace_by_key(db, workspace_key)
    assert_workspace_admin(db, auth, workspace.id)
    mapping = _get_mapping(db, workspace.id, mapping_id)
    with unit_of_work(db):
        record_audit(
            db,
            workspace.id,
            "github.team_mapping.deleted",
            _mapping_target(mapping),
            actor_user_id=auth.user_id,
        )
        db.delete(mapping)


# ── Reconciler ───────────────────────────────────────────────────────


@dataclass
class TeamMappingApplyResult:
    mode: SyncMode
    mappings_processed: int = 0
    teams_fetched: int = 0
    users_matched: int = 0
    added: int = 0
    updated: int = 0
    removed: int = 0
    skipped_unmatched: int = 0
    unmatched_users: list[dict[str, Any]] = field(default_factory=list)
    team_errors: list[dict[str, str]] = field(default_factory=list)
    target_errors: list[dict[str, str]] = field(default_factory=list)

    def count(self, changes: list[RoleChange]) -> None:
        for change in changes:
            if change.kind == "added":
                self.added += 1
            elif change.kind == "removed":
                self.removed += 1
            else:
                self.updated += 1

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["mode"] = self.mode.value
        return data


def _enabled_mappings(
    db: Session, workspace_id: uuid.UUID, installation_id: int
) -> list[GithubTeamMapping]:
    rows = db.execute(
        select(GithubTeamMapping).where(
            GithubTeamMapping.workspace_id == workspace_id,
            GithubTeamMapping.enabled.is_(True),
            (GithubTeamMapping.provider_installation_id.is_(None))
            | (GithubTeamMapping.provider_installation_id == installation_id),
        )
    ).scalars()
    # sorted() is stable: equal priorities keep creation order
    return sorted(rows, key=lambda mapping: (mapping.priority, mapping.created_at))


def _github_id(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _team_key(mapping: GithubTeamMapping) -> str:
    return f"{mapping.github_org_login.lower()}/{mapping.github_team_slug.lower()}"


async def apply_github_team_mappings(
    db: Session,
    client: GithubApi,
    workspace_id: uuid.UUID,
    installation_id: int,
    mode: SyncMode | str | None = None,
    actor_user_id: str | None = None,
) -> TeamMappingApplyResult:
    settings = get_effective_workspace_settings(db, workspace_id)
    sync_mode = SyncMode(mode) if mode else settings.github_webhook_sync_mode
    result = TeamMappingApplyResult(mode=sync_mode)
    if not settings.github_team_mapping_enabled:
        return result
    mappings = _enabled_mappings(db, workspace_id, installation_id)
    if not mappings:
        return result
    workspace = db.get(Workspace, workspace_id)

    token = await client.get_installation_token(installation_id)
    rate_limit_warnings: list[str] = []
    rosters: dict[str, list[dict[str, Any]]] = {}
    failed_teams: set[str] = set()
    for mapping in mappings:
        key = _team_key(mapping)
        if key in rosters or key in failed_teams:
            continue
        try:
            rosters[key] = await call_with_retry(
                lambda m=mapping: client.list_team_members(
                    token, m.github_org_login, m.github_team_slug
                ),
                f"team-members:{key}",
                rate_limit_warnings,
            )
        except ValidationError as exc:
            logger.warning("Team roster fetch failed for %s: %s", key, exc.message)
            failed_teams.add(key)
            result.team_errors.append(
                {
                    "team_slug": mapping.github_team_slug,
                    "org_login": mapping.github_org_login,
                    "error": exc.message,
                }
            )

    user_by_github_id: dict[int, uuid.UUID] = {}
    user_by_login: dict[str, uuid.UUID] = {}
    for link in db.execute(
        select(GithubUserLink).where(GithubUserLink.workspace_id == workspace_id)
    ).scalars():
        user_by_login[normalize_github_login(link.github_login)] = link.user_id
        if link.github_user_id is not None:
            user_by_github_id[int(link.github_user_id)] = link.user_id
    linked_user_ids = set(user_by_github_id.values()) | set(user_by_login.values())

    projects_by_key: dict[str, Project] = {}
    desired_workspace: dict[uuid.UUID, str] = {}
    desired_projects: dict[uuid.UUID, dict[uuid.UUID, str]] = {}
    has_workspace_mapping = False
    # Targets fed by a team whose roster could not be fetched are left untouched
    workspace_blocked = False
    blocked_projects: set[uuid.UUID] = set()
    matched_users: set[uuid.UUID] = set()

    for mapping in mappings:
        if mapping.target_type == TeamMappingTargetType.project.value:
            project = projects_by_key.get(mapping.target_key) or get_project_by_key(
                db, workspace_id, mapping.target_key
            )
            if project is None:
                result.target_errors.append(
                    {
                        "target_type": "project",
                        "target_key": mapping.target_key,
                        "error": "Target project not found in workspace",
                    }
                )
                continue
            projects_by_key[mapping.target_key] = project
            desired_projects.setdefault(project.id, {})
            if _team_key(mapping) in failed_teams:
                blocked_projects.add(project.id)
        else:
            has_workspace_mapping = True
            if _team_key(mapping) in failed_teams:
                workspace_blocked = True

        for member in rosters.get(_team_key(mapping), []):
            login = normalize_github_login(member.get("login"))
            github_user_id = _github_id(member.get("id"))
            if github_user_id is None and member.get("id") is not None:
                logger.warning(
                    "Ignoring non-numeric GitHub id %r for %s in team %s",
                    member.get("id"),
                    login,
                    _team_key(mapping),
                )
            user_id = None
            if github_user_id is not None:
                user_id = user_by_github_id.get(github_user_id)
            user_id = user_id or user_by_login.get(login)
            if user_id is None:
                result.unmatched_users.append(
                    {
                        "github_login": login,
                        "github_user_id": str(github_user_id) if github_user_id is not None else None,
                        "team_slug": mapping.github_team_slug,
                    }
                )
                continue
            matched_users.add(user_id)

            if mapping.target_type == TeamMappingTargetType.workspace.value:
                if mapping.role not in _WORKSPACE_ROLES:
                    continue
                current = desired_workspace.get(user_id)
                if current is None or workspace_role_rank(mapping.role) > workspace_role_rank(current):
                    desired_workspace[user_id] = mapping.role
            else:
                if mapping.role not in _PROJECT_ROLES:
                    continue
                per_project = desired_projects[projects_by_key[mapping.target_key].id]
                current = per_project.get(user_id)
                if current is None or project_role_rank(mapping.role) > project_role_rank(current):
                    per_project[user_id] = mapping.role

    evidence = {"installation_id": str(installation_id), "mapping_source": "github_team_mapping"}
    with unit_of_work(db):
        if has_workspace_mapping and not workspace_blocked:
            changes = plan_member_changes(
                load_workspace_roles(db, workspace_id),
                desired_workspace,
                sync_mode,
                workspace_role_rank,
                lambda _user_id, role: role in ("OWNER", "ADMIN"),
                removable_user_ids=linked_user_ids,
            )
            apply_workspace_changes(db, workspace_id, changes, actor_user_id, evidence)
            result.count(changes)

        protected = protected_workspace_user_ids(db, workspace_id)
        project_ids = [pid for pid in desired_projects if pid not in blocked_projects]
        existing_projects = load_project_roles(db, project_ids)
        for project_id in project_ids:
            desired = desired_projects[project_id]
            changes = plan_member_changes(
                existing_projects[project_id],
                desired,
                sync_mode,
                project_role_rank,
                lambda user_id, role: is_protected_role_change(user_id, role, protected),
                removable_user_ids=linked_user_ids,
            )
            apply_project_changes(db, workspace_id, project_id, changes, actor_user_id, evidence)
            result.count(changes)

        result.mappings_processed = len(mappings)
        result.teams_fetched = len(rosters)
        result.users_matched = len(matched_users)
        result.skipped_unmatched = len(result.unmatched_users)
        result.unmatched_users = result.unmatched_users[:MAX_UNMATCHED_USERS]
        summary = result.to_dict()
        summary.pop("unmatched_users")
        record_audit(
            db,
            workspace_id,
            "github.team_mappings.applied",
            {"workspace_key": workspace.key if workspace else None, **summary},
            actor_user_id=actor_user_id,
        )

    logger.info(
        "Applied %d team mappings workspace=%s added=%d updated=%d removed=%d",
        result.mappings_processed,
        workspace_id,
        result.added,
        result.updated,
        result.removed,
    )
    return result


async def apply_github_team_mappings_for_workspace(
    db: Session,
    auth: AuthContext,
    workspace_key: str,
    client: GithubApi,
    mode: SyncMode | str | None = None,
) -> TeamMappingApplyResult:
    """Admin-triggered reconcile for the workspace's installation."""
    workspace = get_workspace_by_key(db, workspace_key)
    assert_workspace_admin(db, auth, workspace.id)
    installation = get_installation_for_workspace(db, workspace)
    return await apply_github_team_mappings(
        db, client, workspace.id, installation.installation_id, mode, actor_user_id=auth.user_id
    )
