"""Typed views over GitHub webhook payloads.

``parse_webhook_payload`` turns a raw ``(event_type, payload)`` pair into one
variant per supported event, or ``UnrecognizedPayload`` naming why it could
not. The ``extract_*`` helpers never raise; malformed fields read as
missing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from memory_core.services.identity import normalize_github_repo_id


@dataclass(frozen=True)
class RepoRef:
    repository_id: int
    full_name: str


@dataclass(frozen=True)
class InstallationRepositoriesEvent:
    action: str
    added: tuple[RepoRef, ...] = ()
    removed: tuple[RepoRef, ...] = ()

    @property
    def repo_ids(self) -> list[int]:
        return _unique([repo.repository_id for repo in (*self.added, *self.removed)])

    @property
    def full_names(self) -> list[str]:
        return _unique([repo.full_name for repo in (*self.added, *self.removed)])


@dataclass(frozen=True)
class TeamEvent:
    action: str
    team_id: int | None


@dataclass(frozen=True)
class MembershipEvent:
    action: str
    team_id: int | None


@dataclass(frozen=True)
class RepositoryEvent:
    action: str
    repository_id: int | None
    full_name: str | None
    default_branch: str | None = None
    is_private: bool = False


@dataclass(frozen=True)
class TeamRepoEvent:
    """``team_add`` / ``team_remove``: a team gained or lost access to a repo."""

    event_type: str
    repository_id: int | None
    team_id: int | None


@dataclass(frozen=True)
class UnrecognizedPayload:
    event_type: str
    reason: str
    details: dict[str, Any] = field(default_factory=dict)


WebhookPayload = Union[
    InstallationRepositoriesEvent,
    TeamEvent,
    MembershipEvent,
    RepositoryEvent,
    TeamRepoEvent,
    UnrecognizedPayload,
]


def _unique(values: list) -> list:
    return list(dict.fromkeys(values))


def _record(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def parse_github_id(value: Any) -> int | None:
    """Non-negative int from a JSON number or numeric string."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, float) and value.is_integer() and value >= 0:
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _action(payload: dict[str, Any]) -> str:
    return str(payload.get("action") or "").strip().lower()


def _repo_rows(value: Any) -> tuple[RepoRef, ...]:
    if not isinstance(value, list):
        return ()
    rows = []
    for entry in value:
        record = _record(entry)
        repo_id = parse_github_id(record.get("id"))
        full_name = normalize_github_repo_id(record.get("full_name"))
        if repo_id is not None and full_name:
            rows.append(RepoRef(repo_id, full_name))
    return tuple(rows)


# ── Extractors ───────────────────────────────────────────────────────


def extract_installation_id(payload: Any) -> int | None:
    return parse_github_id(_record(_record(payload).get("installation")).get("id"))


def extract_team_id(payload: Any) -> int | None:
    return parse_github_id(_record(_record(payload).get("team")).get("id"))


def extract_repository_id(payload: Any) -> int | None:
    return parse_github_id(_record(_record(payload).get("repository")).get("id"))


def extract_repo_changes_from_installation_event(payload: Any) -> dict[str, Any]:
    """Affected repo ids and names from ``repositories_added``/``repositories_removed``."""
    root = _record(payload)
    added = _repo_rows(root.get("repositories_added"))
    removed = _repo_rows(root.get("repositories_removed"))
    return {
        "repo_ids": _unique([repo.repository_id for repo in (*added, *removed)]),
        "repo_full_names": _unique([repo.full_name for repo in (*added, *removed)]),
        "added_repo_count": len(added),
        "removed_repo_count": len(removed),
    }


# ── Parser ───────────────────────────────────────────────────────────


def parse_webhook_payload(event_type: str, payload: Any) -> WebhookPayload:
    if not isinstance(payload, dict):
        return UnrecognizedPayload(event_type, "payload is not a JSON object")
    action = _action(payload)

    if event_type == "installation_repositories":
        return InstallationRepositoriesEvent(
            action=action,
            added=_repo_rows(payload.get("repositories_added")),
            removed=_repo_rows(payload.get("repositories_removed")),
        )

    if event_type in ("team", "membership"):
        # without team.id only the cache invalidation is skipped; mappings still apply
        team_id = extract_team_id(payload)
        if event_type == "team":
            return TeamEvent(action=action, team_id=team_id)
        return MembershipEvent(action=action, team_id=team_id)

    if event_type in ("team_add", "team_remove"):
        return TeamRepoEvent(
            event_type=event_type,
            repository_id=extract_repository_id(payload),
            team_id=extract_team_id(payload),
        )

    if event_type == "repository":
        repository = _record(payload.get("repository"))
        if action in ("team_add", "team_remove", "team_removed"):
            return TeamRepoEvent(
                event_type="team_remove" if action != "team_add" else "team_add",
                repository_id=extract_repository_id(payload),
                team_id=extract_team_id(payload),
            )
        return RepositoryEvent(
            action=action,
            repository_id=extract_repository_id(payload),
            full_name=normalize_github_repo_id(repository.get("full_name")),
            default_branch=str(repository.get("default_branch") or "").strip() or None,
            is_private=bool(repository.get("private")),
        )

    return UnrecognizedPayload(event_type, "unsupported event type", {"action": action})
