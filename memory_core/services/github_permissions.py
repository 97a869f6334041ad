"""GitHub permission levels → project roles.

Ranks: admin(5) > maintain(4) > write(3) > triage(2) > read(1). A user's
effective permission on a repo is the max of their direct collaborator grant
and every team grant, and is then mapped to a project role through the
workspace role mapping.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from sqlalchemy.orm import Session

from memory_core.errors import GithubApiError
from memory_core.github.client import GithubApi
from memory_core.models.enums import ProjectRole
from memory_core.services.identity import normalize_github_login, parse_owner_repo
from memory_core.services.permission_cache import (
    get_cached_repo_teams,
    get_cached_team_members,
    store_repo_teams,
    store_team_members,
)
from memory_core.services.workspace_settings import DEFAULT_GITHUB_ROLE_MAPPING

logger = logging.getLogger(__name__)

T = TypeVar("T")

GITHUB_PERMISSION_RANK: dict[str, int] = {
    "admin": 5,
    "maintain": 4,
    "write": 3,
    "triage": 2,
    "read": 1,
}

# Legacy names GitHub still returns in some payloads
_PERMISSION_ALIASES = {"push": "write", "pull": "read"}

_MAX_API_ATTEMPTS = 3
_RETRY_DELAY_SECS = 0.2


def normalize_github_permission(value: Any) -> str | None:
    permission = str(value or "").strip().lower()
    permission = _PERMISSION_ALIASES.get(permission, permission)
    return permission if permission in GITHUB_PERMISSION_RANK else None


def compare_github_permission(left: str | None, right: str | None) -> int:
    return GITHUB_PERMISSION_RANK.get(left or "", 0) - GITHUB_PERMISSION_RANK.get(right or "", 0)


def max_github_permission(left: str | None, right: str | None) -> str | None:
    """Higher of two grants; ties keep ``left``."""
    if left is None:
        return right
    if right is None:
        return left
    return left if compare_github_permission(left, right) >= 0 else right


def map_github_permission_to_project_role(
    permission: str | None, mapping: dict[str, str] | None = None
) -> str:
    """Workspace mapping first, then the default table, then READER."""
    key = normalize_github_permission(permission) or ""
    role = (mapping or {}).get(key) or DEFAULT_GITHUB_ROLE_MAPPING.get(key) or "reader"
    return ProjectRole(role.upper()).value


def derive_collaborator_permission(collaborator: dict[str, Any]) -> str | None:
    """Effective permission from ``role_name``, ``permission`` or the permissions map."""
    for key in ("role_name", "permission"):
        permission = normalize_github_permission(collaborator.get(key))
        if permission:
            return permission
    flags = collaborator.get("permissions")
    if not isinstance(flags, dict):
        return None
    for flag, permission in (
        ("admin", "admin"),
        ("maintain", "maintain"),
        ("push", "write"),
        ("triage", "triage"),
        ("pull", "read"),
    ):
        if flags.get(flag) is True:
            return permission
    return None


def is_protected_role_change(
    user_id: uuid.UUID | str, current_role: str | None, protected_user_ids: set[str]
) -> bool:
    """Automation must not demote or remove protected users or current OWNERs."""
    return str(user_id) in protected_user_ids or current_role == ProjectRole.OWNER.value


# ── Per-repo computation ─────────────────────────────────────────────


@dataclass
class ComputedPermission:
    permission: str
    github_login: str | None = None


@dataclass
class RepoPermissions:
    users: dict[int, ComputedPermission] = field(default_factory=dict)

    def merge(self, github_user_id: int, permission: str, login: str | None = None) -> None:
        existing = self.users.get(github_user_id)
        if existing is None:
            self.users[github_user_id] = ComputedPermission(permission, login)
            return
        existing.permission = max_github_permission(existing.permission, permission) or permission
        existing.github_login = existing.github_login or login


async def call_with_retry(
    run: Callable[[], Awaitable[T]],
    operation: str,
    rate_limit_warnings: list[str],
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Up to three attempts for retryable GitHub failures."""
    attempt = 0
    while True:
        try:
            return await run()
        except GithubApiError as exc:
            attempt += 1
            if exc.rate_limited:
                rate_limit_warnings.append(
                    f"Rate limit while running {operation} (attempt {attempt})."
                )
            if not exc.retryable or attempt >= _MAX_API_ATTEMPTS:
                raise
            logger.warning("GitHub call %s failed (attempt %d): %s", operation, attempt, exc)
            await sleep(_RETRY_DELAY_SECS * attempt)


def _team_from_api(team: dict[str, Any], default_org: str) -> dict[str, Any] | None:
    organization = team.get("organization") or {}
    org_login = str(
        team.get("organization_login") or organization.get("login") or default_org
    ).strip()
    permission = normalize_github_permission(team.get("permission"))
    slug = str(team.get("slug") or "").strip()
    if team.get("id") is None or not slug or not org_login or not permission:
        return None
    return {
        "team_id": int(team["id"]),
        "team_slug": slug,
        "org_login": org_login,
        "permission": permission,
    }


async def get_repo_teams(
    db: Session,
    client: GithubApi,
    token: str,
    workspace_id: uuid.UUID,
    repo_id: int,
    full_name: str,
    ttl_seconds: int,
    rate_limit_warnings: list[str],
) -> list[dict[str, Any]]:
    cached = get_cached_repo_teams(db, workspace_id, repo_id, ttl_seconds)
    if cached is not None:
        return cached
    owner, repo = parse_owner_repo(full_name)
    fetched = await call_with_retry(
        lambda: client.list_repository_teams(token, owner, repo),
        f"repo-teams:{full_name}",
        rate_limit_warnings,
    )
    teams = [team for team in (_team_from_api(item, owner) for item in fetched) if team]
    store_repo_teams(db, workspace_id, repo_id, teams)
    return teams


async def get_team_member_ids(
    db: Session,
    client: GithubApi,
    token: str,
    workspace_id: uuid.UUID,
    team: dict[str, Any],
    ttl_seconds: int,
    rate_limit_warnings: list[str],
) -> list[int]:
    cached = get_cached_team_members(db, workspace_id, team["team_id"], ttl_seconds)
    if cached is not None:
        return cached
    fetched = await call_with_retry(
        lambda: client.list_team_members(token, team["org_login"], team["team_slug"]),
        f"team-members:{team['org_login']}/{team['team_slug']}",
        rate_limit_warnings,
    )
    member_ids = [int(member["id"]) for member in fetched if member.get("id") is not None]
    store_team_members(db, workspace_id, team["team_id"], member_ids)
    return member_ids


async def compute_repo_permissions(
    db: Session,
    client: GithubApi,
    token: str,
    workspace_id: uuid.UUID,
    repo_id: int,
    full_name: str,
    ttl_seconds: int,
    rate_limit_warnings: list[str],
) -> RepoPermissions:
    """Effective permission per GitHub user id for one repo."""
    owner, repo = parse_owner_repo(full_name)
    computed = RepoPermissions()

    collaborators = await call_with_retry(
        lambda: client.list_repository_collaborators(token, owner, repo),
        f"collaborators:{full_name}",
        rate_limit_warnings,
    )
    for collaborator in collaborators:
        permission = derive_collaborator_permission(collaborator)
        if not permission or collaborator.get("id") is None:
            continue
        computed.merge(
            int(collaborator["id"]),
            permission,
            normalize_github_login(collaborator.get("login")) or None,
        )

    teams = await get_repo_teams(
        db, client, token, workspace_id, repo_id, full_name, ttl_seconds, rate_limit_warnings
    )
    for team in teams:
        member_ids = await get_team_member_ids(
            db, client, token, workspace_id, team, ttl_seconds, rate_limit_warnings
        )
        for github_user_id in member_ids:
            computed.merge(github_user_id, team["permission"])
    return computed
