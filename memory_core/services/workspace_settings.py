"""Effective workspace settings: WorkspaceSettings row merged over defaults.

Every value is parsed defensively: NULL or invalid column values fall back to
the default instead of raising, so a bad admin edit never breaks resolution.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from memory_core.models.enums import MonorepoContextMode, MonorepoMode, ResolutionKind, SyncMode
from memory_core.models.workspace_settings import WorkspaceSettings
from memory_core.services.monorepo import (
    DEFAULT_MONOREPO_EXCLUDE_GLOBS,
    DEFAULT_MONOREPO_GLOBS,
    DEFAULT_MONOREPO_MAX_DEPTH,
)

DEFAULT_RESOLUTION_ORDER: tuple[ResolutionKind, ...] = (
    ResolutionKind.github_remote,
    ResolutionKind.repo_root_slug,
    ResolutionKind.manual,
)
DEFAULT_GITHUB_ROLE_MAPPING: dict[str, str] = {
    "admin": "maintainer",
    "maintain": "maintainer",
    "write": "writer",
    "triage": "reader",
    "read": "reader",
}
_VALID_MAPPED_ROLES = frozenset({"owner", "maintainer", "writer", "reader"})

DEFAULT_CACHE_TTL_SECONDS = 900
MIN_CACHE_TTL_SECONDS = 30
MAX_CACHE_TTL_SECONDS = 86400


@dataclass
class EffectiveWorkspaceSettings:
    resolution_order: list[ResolutionKind] = field(
        default_factory=lambda: list(DEFAULT_RESOLUTION_ORDER)
    )
    auto_create_project: bool = True
    auto_create_project_subprojects: bool = False
    github_auto_create_projects: bool = True
    github_auto_create_subprojects: bool = False
    github_permission_sync_enabled: bool = False
    github_permission_sync_mode: SyncMode = SyncMode.add_only
    github_cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS
    github_role_mapping: dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_GITHUB_ROLE_MAPPING)
    )
    github_webhook_enabled: bool = False
    github_webhook_sync_mode: SyncMode = SyncMode.add_only
    github_team_mapping_enabled: bool = True
    github_project_key_prefix: str = "github:"
    local_key_prefix: str = "local:"
    enable_monorepo_resolution: bool = False
    monorepo_mode: MonorepoMode = MonorepoMode.repo_hash_subpath
    monorepo_context_mode: MonorepoContextMode = MonorepoContextMode.shared_repo
    monorepo_workspace_globs: list[str] = field(
        default_factory=lambda: list(DEFAULT_MONOREPO_GLOBS)
    )
    monorepo_exclude_globs: list[str] = field(
        default_factory=lambda: list(DEFAULT_MONOREPO_EXCLUDE_GLOBS)
    )
    monorepo_max_depth: int = DEFAULT_MONOREPO_MAX_DEPTH


def parse_resolution_order(value: object) -> list[ResolutionKind]:
    """Non-empty list of distinct known kinds, else the default order."""
    if not isinstance(value, list) or not value:
        return list(DEFAULT_RESOLUTION_ORDER)
    kinds: list[ResolutionKind] = []
    for item in value:
        try:
            kind = ResolutionKind(str(item))
        except ValueError:
            return list(DEFAULT_RESOLUTION_ORDER)
        if kind in kinds:
            return list(DEFAULT_RESOLUTION_ORDER)
        kinds.append(kind)
    return kinds


def _parse_enum(value: object, enum_cls, default):
    try:
        return enum_cls(str(value)) if value is not None else default
    except ValueError:
        return default


def _parse_sync_mode(value: object) -> SyncMode:
    return SyncMode.add_and_remove if value == SyncMode.add_and_remove.value else SyncMode.add_only


def _parse_string_list(value: object, fallback: tuple[str, ...]) -> list[str]:
    if not isinstance(value, list):
        return list(fallback)
    items = [str(item or "").strip() for item in value]
    items = [item for item in items if item]
    return items or list(fallback)


def _parse_positive_int(value: object, fallback: int) -> int:
    if isinstance(value, bool):
        return fallback
    try:
        number = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return fallback
    return number if number > 0 else fallback


def parse_cache_ttl_seconds(value: object) -> int:
    """Clamp to 30..86400; invalid → 900."""
    if value is None or isinstance(value, bool):
        return DEFAULT_CACHE_TTL_SECONDS
    try:
        number = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return DEFAULT_CACHE_TTL_SECONDS
    return min(max(number, MIN_CACHE_TTL_SECONDS), MAX_CACHE_TTL_SECONDS)


def parse_github_role_mapping(value: object) -> dict[str, str]:
    if not isinstance(value, dict):
        return dict(DEFAULT_GITHUB_ROLE_MAPPING)
    mapping: dict[str, str] = {}
    for raw_key, raw_value in value.items():
        key = str(raw_key or "").strip().lower()
        role = str(raw_value or "").strip().lower()
        if key and role in _VALID_MAPPED_ROLES:
            mapping[key] = role
    return mapping or dict(DEFAULT_GITHUB_ROLE_MAPPING)


def _bool_or(*values: bool | None) -> bool:
    """First non-None value."""
    for value in values:
        if value is not None:
            return bool(value)
    return False


def _prefix(value: str | None, default: str) -> str:
    cleaned = (value or "").strip()
    return cleaned or default


def effective_settings_from_row(row: WorkspaceSettings | None) -> EffectiveWorkspaceSettings:
    if row is None:
        return EffectiveWorkspaceSettings()
    return EffectiveWorkspaceSettings(
        resolution_order=parse_resolution_order(row.resolution_order),
        auto_create_project=_bool_or(row.auto_create_project, True),
        auto_create_project_subprojects=_bool_or(row.auto_create_project_subprojects, False),
        github_auto_create_projects=_bool_or(
            row.github_auto_create_projects, row.auto_create_project, True
        ),
        github_auto_create_subprojects=_bool_or(
            row.github_auto_create_subprojects, row.auto_create_project_subprojects, False
        ),
        github_permission_sync_enabled=_bool_or(row.github_permission_sync_enabled, False),
        github_permission_sync_mode=_parse_sync_mode(row.github_permission_sync_mode),
        github_cache_ttl_seconds=parse_cache_ttl_seconds(row.github_cache_ttl_seconds),
        github_role_mapping=parse_github_role_mapping(row.github_role_mapping),
        github_webhook_enabled=_bool_or(row.github_webhook_enabled, False),
        github_webhook_sync_mode=_parse_sync_mode(row.github_webhook_sync_mode),
        github_team_mapping_enabled=_bool_or(row.github_team_mapping_enabled, True),
        github_project_key_prefix=_prefix(row.github_project_key_prefix, "github:"),
        local_key_prefix=_prefix(row.local_key_prefix, "local:"),
        enable_monorepo_resolution=_bool_or(row.enable_monorepo_resolution, False),
        monorepo_mode=_parse_enum(
            row.monorepo_mode, MonorepoMode, MonorepoMode.repo_hash_subpath
        ),
        monorepo_context_mode=_parse_enum(
            row.monorepo_context_mode, MonorepoContextMode, MonorepoContextMode.shared_repo
        ),
        monorepo_workspace_globs=_parse_string_list(
            row.monorepo_workspace_globs, DEFAULT_MONOREPO_GLOBS
        ),
        monorepo_exclude_globs=_parse_string_list(
            row.monorepo_exclude_globs, DEFAULT_MONOREPO_EXCLUDE_GLOBS
        ),
        monorepo_max_depth=_parse_positive_int(row.monorepo_max_depth, DEFAULT_MONOREPO_MAX_DEPTH),
    )


def get_effective_workspace_settings(
    db: Session, workspace_id: uuid.UUID
) -> EffectiveWorkspaceSettings:
    """Settings for the workspace; defaults when no row exists."""
    return effective_settings_from_row(db.get(WorkspaceSettings, workspace_id))
