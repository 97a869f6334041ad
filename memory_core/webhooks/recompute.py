"""Partial permission recompute for the repos a webhook touched.

Bursts of deliveries for one repo (a team edit fans out into several events)
are collapsed by a ``RecomputeThrottle``: a ``(workspace, repo)`` pair is
accepted at most once per window. The default throttle is process-local;
multi-instance deployments can install a shared implementation with
``set_recompute_throttle``.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Iterable
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from memory_core.auth import SYSTEM_WEBHOOK_AUTH
from memory_core.config import get_settings
from memory_core.db.session import unit_of_work
from memory_core.github.client import GithubApi
from memory_core.models.github_repo_link import GithubRepoLink
from memory_core.models.workspace import Workspace
from memory_core.services.audit import record_audit
from memory_core.services.github_permission_sync import sync_github_permissions
from memory_core.services.permission_cache import invalidate_permission_cache
from memory_core.services.workspace_settings import (
    EffectiveWorkspaceSettings,
    get_effective_workspace_settings,
)

logger = logging.getLogger(__name__)

MIN_WINDOW_MS = 1000
DEFAULT_MAX_ENTRIES = 5000


class RecomputeThrottle(Protocol):
    def accept(
        self, workspace_id: uuid.UUID | str, repo_ids: Iterable[int], now_ms: int | None = None
    ) -> list[int]:
        """Subset of ``repo_ids`` allowed to recompute now; records them as seen."""
        ...

    def release(self, workspace_id: uuid.UUID | str, repo_ids: Iterable[int]) -> None:
        """Forget ``repo_ids`` so the next ``accept`` lets them through."""
        ...

    def reset(self) -> None: ...


class InMemoryRecomputeThrottle:
    """Keyed ``ws:repo`` → last accepted timestamp (ms)."""

    def __init__(self, window_ms: int = 8000, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        self.window_ms = max(MIN_WINDOW_MS, int(window_ms))
        self.max_entries = max_entries
        self._seen: dict[str, int] = {}
        self._lock = threading.Lock()

    def accept(
        self, workspace_id: uuid.UUID | str, repo_ids: Iterable[int], now_ms: int | None = None
    ) -> list[int]:
        now = int(time.time() * 1000) if now_ms is None else now_ms
        accepted: list[int] = []
        with self._lock:
            for repo_id in repo_ids:
                key = f"{workspace_id}:{repo_id}"
                last = self._seen.get(key)
                if last is not None and now - last < self.window_ms:
                    continue
                self._seen[key] = now
                if repo_id not in accepted:
                    accepted.append(repo_id)
            if len(self._seen) > self.max_entries:
                cutoff = now - self.window_ms * 4
                self._seen = {key: ts for key, ts in self._seen.items() if ts >= cutoff}
        return accepted

    def release(self, workspace_id: uuid.UUID | str, repo_ids: Iterable[int]) -> None:
        with self._lock:
            for repo_id in repo_ids:
                self._seen.pop(f"{workspace_id}:{repo_id}", None)

    def reset(self) -> None:
        with self._lock:
            self._seen.clear()

    def __len__(self) -> int:
        return len(self._seen)


_default_throttle: RecomputeThrottle | None = None


def get_recompute_throttle() -> RecomputeThrottle:
    global _default_throttle
    if _default_throttle is None:
        _default_throttle = InMemoryRecomputeThrottle(get_settings().webhook_recompute_debounce_ms)
    return _default_throttle


def set_recompute_throttle(throttle: RecomputeThrottle | None) -> None:
    """Replace the process default; None restores the in-memory one on next use."""
    global _default_throttle
    _default_throttle = throttle


async def recompute_github_permissions_for_repos(
    db: Session,
    client: GithubApi,
    workspace_id: uuid.UUID,
    repo_ids: list[int],
    reason: str,
    throttle: RecomputeThrottle | None = None,
    delivery_id: str | None = None,
) -> int:
    """Re-sync permissions for ``repo_ids``; returns how many repos were recomputed."""
    if not repo_ids:
        return 0
    settings = get_effective_workspace_settings(db, workspace_id)
    if not settings.github_permission_sync_enabled:
        return 0

    throttle = throttle or get_recompute_throttle()
    accepted = throttle.accept(workspace_id, repo_ids)
    if not accepted:
        logger.debug("Recompute throttled workspace=%s repos=%s", workspace_id, repo_ids)
        return 0

    try:
        return await _recompute_accepted(
            db, client, workspace_id, accepted, reason, settings, delivery_id
        )
    except Exception:
        # a failed recompute does not count against the window
        throttle.release(workspace_id, accepted)
        raise


async def _recompute_accepted(
    db: Session,
    client: GithubApi,
    workspace_id: uuid.UUID,
    accepted: list[int],
    reason: str,
    settings: EffectiveWorkspaceSettings,
    delivery_id: str | None,
) -> int:
    with unit_of_work(db):
        invalidate_permission_cache(db, workspace_id, accepted)

    full_names = sorted(
        set(
            db.execute(
                select(GithubRepoLink.full_name).where(
                    GithubRepoLink.workspace_id == workspace_id,
                    GithubRepoLink.github_repo_id.in_(accepted),
                    GithubRepoLink.linked_project_id.is_not(None),
                )
            ).scalars()
        )
    )
    if not full_names:
        return 0

    workspace = db.get(Workspace, workspace_id)
    await sync_github_permissions(
        db,
        SYSTEM_WEBHOOK_AUTH,
        workspace.key,
        client,
        repos=full_names,
        mode=settings.github_webhook_sync_mode,
    )
    with unit_of_work(db):
        record_audit(
            db,
            workspace_id,
            "github.permissions.recomputed",
            {
                "workspace_key": workspace.key,
                "delivery_id": delivery_id,
                "reason": reason,
                "repo_count": len(full_names),
                "repos": full_names,
                "mode": settings.github_webhook_sync_mode.value,
            },
            actor_user_id=SYSTEM_WEBHOOK_AUTH.user_id,
        )
    logger.info(
        "Recomputed permissions workspace=%s reason=%s repos=%d", workspace.key, reason, len(full_names)
    )
    return len(full_names)
