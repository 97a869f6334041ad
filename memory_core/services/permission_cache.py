"""GitHub permission caches: read-through helpers and id-set invalidation.

TTL is compared lazily when a row is read; nothing sweeps the tables.
Invalidation always names the exact repo or team ids to drop so a single
webhook only forces recompute for the repos it actually touched.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from memory_core.models.github_cache import (
    GithubPermissionCache,
    GithubRepoTeamsCache,
    GithubTeamMembersCache,
)

logger = logging.getLogger(__name__)

_MIN_TTL_SECONDS = 30
_FALLBACK_TTL_SECONDS = 900


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone=True columns
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def is_cache_fresh(
    updated_at: datetime, ttl_seconds: int, now: datetime | None = None
) -> bool:
    ttl = max(_MIN_TTL_SECONDS, int(ttl_seconds or _FALLBACK_TTL_SECONDS))
    now = now or datetime.now(UTC)
    return now - as_utc(updated_at) < timedelta(seconds=ttl)


def _ids(values: Iterable[int | str]) -> list[int]:
    out: list[int] = []
    for value in values:
        try:
            number = int(value)
        except (TypeError, ValueError):
            continue
        if number not in out:
            out.append(number)
    return out


# ── Repo → teams ─────────────────────────────────────────────────────


def parse_repo_teams(raw: Any) -> list[dict[str, Any]]:
    """Keep only complete ``{team_id, team_slug, org_login, permission}`` entries."""
    if not isinstance(raw, list):
        return []
    teams: list[dict[str, Any]] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        team_id = _ids([item.get("team_id")])
        slug = str(item.get("team_slug") or "").strip()
        org = str(item.get("org_login") or "").strip()
        permission = str(item.get("permission") or "").strip().lower()
        if team_id and slug and org and permission:
            teams.append(
                {"team_id": team_id[0], "team_slug": slug, "org_login": org, "permission": permission}
            )
    return teams


def get_cached_repo_teams(
    db: Session, workspace_id: uuid.UUID, repo_id: int, ttl_seconds: int
) -> list[dict[str, Any]] | None:
    """Cached teams when fresh, else None."""
    row = db.execute(
        select(GithubRepoTeamsCache).where(
            GithubRepoTeamsCache.workspace_id == workspace_id,
            GithubRepoTeamsCache.github_repo_id == repo_id,
        )
    ).scalar_one_or_none()
    if row is None or not is_cache_fresh(row.updated_at, ttl_seconds):
        return None
    return parse_repo_teams(row.teams)


def store_repo_teams(
    db: Session, workspace_id: uuid.UUID, repo_id: int, teams: list[dict[str, Any]]
) -> None:
    row = db.execute(
        select(GithubRepoTeamsCache).where(
            GithubRepoTeamsCache.workspace_id == workspace_id,
            GithubRepoTeamsCache.github_repo_id == repo_id,
        )
    ).scalar_one_or_none()
    if row is None:
        db.add(GithubRepoTeamsCache(workspace_id=workspace_id, github_repo_id=repo_id, teams=teams))
    else:
        row.teams = teams
        row.updated_at = datetime.now(UTC)
    db.flush()


# ── Team → members ───────────────────────────────────────────────────


def get_cached_team_members(
    db: Session, workspace_id: uuid.UUID, team_id: int, ttl_seconds: int
) -> list[int] | None:
    row = db.execute(
        select(GithubTeamMembersCache).where(
            GithubTeamMembersCache.workspace_id == workspace_id,
            GithubTeamMembersCache.github_team_id == team_id,
        )
    ).scalar_one_or_none()
    if row is None or not is_cache_fresh(row.updated_at, ttl_seconds):
        return None
    return _ids(row.members if isinstance(row.members, list) else [])


def store_team_members(
    db: Session, workspace_id: uuid.UUID, team_id: int, member_ids: list[int]
) -> None:
    row = db.execute(
        select(GithubTeamMembersCache).where(
            GithubTeamMembersCache.workspace_id == workspace_id,
            GithubTeamMembersCache.github_team_id == team_id,
        )
    ).scalar_one_or_none()
    if row is None:
        db.add(
            GithubTeamMembersCache(
                workspace_id=workspace_id, github_team_id=team_id, members=member_ids
            )
        )
    else:
        row.members = member_ids
        row.updated_at = datetime.now(UTC)
    db.flush()


# ── Repo → computed permissions ──────────────────────────────────────


def store_repo_permissions(
    db: Session, workspace_id: uuid.UUID, repo_id: int, permissions: dict[int, str]
) -> None:
    """Replace the repo's rows with one per (repo, GitHub user) in ``permissions``."""
    existing = {
        row.github_user_id: row
        for row in db.execute(
            select(GithubPermissionCache).where(
                GithubPermissionCache.workspace_id == workspace_id,
                GithubPermissionCache.github_repo_id == repo_id,
            )
        ).scalars()
    }
    now = datetime.now(UTC)
    for github_user_id, permission in permissions.items():
        row = existing.get(github_user_id)
        if row is None:
            db.add(
                GithubPermissionCache(
                    workspace_id=workspace_id,
                    github_repo_id=repo_id,
                    github_user_id=github_user_id,
                    permission=permission,
                )
            )
        else:
            row.permission = permission
            row.updated_at = now
    for github_user_id, row in existing.items():
        if github_user_id not in permissions:
            db.delete(row)
    db.flush()


# ── Invalidation ─────────────────────────────────────────────────────


def invalidate_repo_teams_cache(
    db: Session, workspace_id: uuid.UUID, repo_ids: Iterable[int | str]
) -> int:
    ids = _ids(repo_ids)
    if not ids:
        return 0
    result = db.execute(
        delete(GithubRepoTeamsCache).where(
            GithubRepoTeamsCache.workspace_id == workspace_id,
            GithubRepoTeamsCache.github_repo_id.in_(ids),
        )
    )
    logger.debug("Invalidated repo-teams cache workspace=%s repos=%s", workspace_id, ids)
    return result.rowcount or 0


def invalidate_team_members_cache(
    db: Session, workspace_id: uuid.UUID, team_ids: Iterable[int | str]
) -> int:
    ids = _ids(team_ids)
    if not ids:
        return 0
    result = db.execute(
        delete(GithubTeamMembersCache).where(
            GithubTeamMembersCache.workspace_id == workspace_id,
            GithubTeamMembersCache.github_team_id.in_(ids),
        )
    )
    logger.debug("Invalidated team-members cache workspace=%s teams=%s", workspace_id, ids)
    return result.rowcount or 0


def invalidate_permission_cache(
    db: Session, workspace_id: uuid.UUID, repo_ids: Iterable[int | str]
) -> int:
    ids = _ids(repo_ids)
    if not ids:
        return 0
    result = db.execute(
        delete(GithubPermissionCache).where(
            GithubPermissionCache.workspace_id == workspace_id,
            GithubPermissionCache.github_repo_id.in_(ids),
        )
    )
    logger.debug("Invalidated permission cache workspace=%s repos=%s", workspace_id, ids)
    return result.rowcount or 0


def find_repo_ids_by_team_id_from_cache(
    db: Session, workspace_id: uuid.UUID, team_id: int | str
) -> list[int]:
    """Repos whose cached team list contains ``team_id``."""
    wanted = _ids([team_id])
    if not wanted:
        return []
    repo_ids: list[int] = []
    rows = db.execute(
        select(GithubRepoTeamsCache).where(GithubRepoTeamsCache.workspace_id == workspace_id)
    ).scalars()
    for row in rows:
        if any(team["team_id"] == wanted[0] for team in parse_repo_teams(row.teams)):
            repo_ids.append(row.github_repo_id)
    return repo_ids


def get_cache_status(db: Session, workspace_id: uuid.UUID) -> dict[str, Any]:
    """Row counts and latest ``updated_at`` per cache table."""
    status: dict[str, Any] = {}
    for name, model in (
        ("repo_teams", GithubRepoTeamsCache),
        ("team_members", GithubTeamMembersCache),
        ("permission", GithubPermissionCache),
    ):
        count, latest = db.execute(
            select(func.count(model.id), func.max(model.updated_at)).where(
                model.workspace_id == workspace_id
            )
        ).one()
        status[f"{name}_cache_count"] = count
        status[f"latest_{name}_cache_at"] = as_utc(latest) if latest is not None else None
    return status
