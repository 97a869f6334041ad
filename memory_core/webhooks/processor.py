"""Webhook queue processor.

Claims ``queued`` rows one at a time with a conditional UPDATE, so several
workers can drain the same queue without double-processing a delivery. Each
event gets up to three attempts; the row ends ``done`` (with the number of
repos recomputed) or ``failed`` (with the last error).
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from memory_core.auth import SYSTEM_WEBHOOK_AUTH
from memory_core.db.session import unit_of_work
from memory_core.github.client import GithubApi
from memory_core.models.enums import WebhookEventStatus
from memory_core.models.github_repo_link import GithubRepoLink
from memory_core.models.github_webhook_event import GithubWebhookEvent
from memory_core.models.workspace import Workspace
from memory_core.services.audit import record_audit
from memory_core.services.github_repo_sync import sync_github_repos
from memory_core.services.github_team_mappings import apply_github_team_mappings
from memory_core.services.permission_cache import (
    find_repo_ids_by_team_id_from_cache,
    invalidate_repo_teams_cache,
    invalidate_team_members_cache,
)
from memory_core.services.workspace_settings import (
    EffectiveWorkspaceSettings,
    get_effective_workspace_settings,
)
from memory_core.webhooks.payloads import (
    InstallationRepositoriesEvent,
    MembershipEvent,
    RepositoryEvent,
    TeamEvent,
    TeamRepoEvent,
    UnrecognizedPayload,
    parse_webhook_payload,
)
from memory_core.webhooks.recompute import (
    RecomputeThrottle,
    recompute_github_permissions_for_repos,
)

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
DEFAULT_BATCH_SIZE = 20
MAX_BATCH_SIZE = 200
_MAX_ERROR_LENGTH = 2000


def _claim(db: Session, event_id: uuid.UUID) -> bool:
    result = db.execute(
        update(GithubWebhookEvent)
        .where(
            GithubWebhookEvent.id == event_id,
            GithubWebhookEvent.status == WebhookEventStatus.queued.value,
        )
        .values(status=WebhookEventStatus.processing.value, updated_at=datetime.now(UTC))
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def _finish(
    db: Session,
    event_id: uuid.UUID,
    status: WebhookEventStatus,
    attempts: int,
    affected: int | None = None,
    error: str | None = None,
) -> None:
    db.execute(
        update(GithubWebhookEvent)
        .where(GithubWebhookEvent.id == event_id)
        .values(
            status=status.value,
            attempt_count=attempts,
            affected_repos_count=affected,
            error=error[:_MAX_ERROR_LENGTH] if error else None,
            updated_at=datetime.now(UTC),
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()


async def process_github_webhook_queue(
    db: Session,
    client: GithubApi,
    batch_size: int = DEFAULT_BATCH_SIZE,
    throttle: RecomputeThrottle | None = None,
) -> dict[str, int]:
    """Drain up to ``batch_size`` queued deliveries, oldest first."""
    batch_size = min(max(int(batch_size), 1), MAX_BATCH_SIZE)
    event_ids = list(
        db.execute(
            select(GithubWebhookEvent.id)
            .where(GithubWebhookEvent.status == WebhookEventStatus.queued.value)
            .order_by(GithubWebhookEvent.created_at.asc())
            .limit(batch_size)
        ).scalars()
    )

    processed = 0
    failed = 0
    for event_id in event_ids:
        if not _claim(db, event_id):
            continue
        event = db.get(GithubWebhookEvent, event_id, populate_existing=True)
        attempts = event.attempt_count
        last_error: str | None = None
        affected: int | None = None
        for _ in range(MAX_ATTEMPTS):
            attempts += 1
            try:
                affected = await process_single_event(db, client, event, throttle)
                last_error = None
                break
            except Exception as exc:
                db.rollback()
                last_error = str(exc) or exc.__class__.__name__
                logger.warning(
                    "Webhook delivery=%s attempt %d failed: %s", event.delivery_id, attempts, exc
                )
                event = db.get(GithubWebhookEvent, event_id)

        if last_error is None:
            _finish(db, event_id, WebhookEventStatus.done, attempts, affected=affected or 0)
            processed += 1
        else:
            _finish(db, event_id, WebhookEventStatus.failed, attempts, error=last_error)
            logger.error("Webhook delivery=%s failed after %d attempts", event.delivery_id, attempts)
            failed += 1

    logger.info("Webhook queue batch done processed=%d failed=%d", processed, failed)
    return {"processed": processed, "failed": failed}


# ── Per-event dispatch ───────────────────────────────────────────────


async def process_single_event(
    db: Session,
    client: GithubApi,
    event: GithubWebhookEvent,
    throttle: RecomputeThrottle | None = None,
) -> int:
    """Apply one delivery; returns the number of repos whose permissions were recomputed."""
    if event.workspace_id is None:
        return 0
    workspace = db.get(Workspace, event.workspace_id)
    if workspace is None:
        return 0
    settings = get_effective_workspace_settings(db, workspace.id)
    if not settings.github_webhook_enabled:
        return 0

    parsed = parse_webhook_payload(event.event_type, event.payload)
    repo_ids: list[int] = []
    reason: str | None = None

    if isinstance(parsed, InstallationRepositoriesEvent):
        if parsed.full_names:
            await sync_github_repos(
                db, SYSTEM_WEBHOOK_AUTH, workspace.key, client, repos=parsed.full_names
            )
        with unit_of_work(db):
            invalidate_repo_teams_cache(db, workspace.id, parsed.repo_ids)
            record_audit(
                db,
                workspace.id,
                "github.repos.synced.webhook",
                {
                    "installation_id": str(event.installation_id),
                    "delivery_id": event.delivery_id,
                    "added_repo_count": len(parsed.added),
                    "removed_repo_count": len(parsed.removed),
                    "repos": parsed.full_names,
                },
                actor_user_id=SYSTEM_WEBHOOK_AUTH.user_id,
            )
        repo_ids, reason = parsed.repo_ids, "installation_update"

    elif isinstance(parsed, RepositoryEvent):
        if parsed.action in ("", "renamed") and parsed.repository_id is not None:
            _apply_repository_rename(db, event, workspace, parsed)
            repo_ids, reason = [parsed.repository_id], "repository_renamed"

    elif isinstance(parsed, (TeamEvent, MembershipEvent)):
        repo_ids = await _handle_team_change(db, client, event, workspace.id, parsed, settings)
        reason = "membership_change" if isinstance(parsed, MembershipEvent) else "team_change"

    elif isinstance(parsed, TeamRepoEvent):
        with unit_of_work(db):
            if parsed.repository_id is not None:
                invalidate_repo_teams_cache(db, workspace.id, [parsed.repository_id])
            if parsed.team_id is not None:
                invalidate_team_members_cache(db, workspace.id, [parsed.team_id])
        repo_ids = [parsed.repository_id] if parsed.repository_id is not None else []
        reason = "team_repo_change"

    elif isinstance(parsed, UnrecognizedPayload):
        logger.info(
            "Ignoring webhook delivery=%s event=%s: %s",
            event.delivery_id,
            parsed.event_type,
            parsed.reason,
        )
        return 0

    if reason is None or not repo_ids:
        return 0
    return await recompute_github_permissions_for_repos(
        db, client, workspace.id, repo_ids, reason, throttle, delivery_id=event.delivery_id
    )


def _apply_repository_rename(
    db: Session, event: GithubWebhookEvent, workspace: Workspace, parsed: RepositoryEvent
) -> None:
    if not parsed.full_name:
        return
    owner, _, name = parsed.full_name.partition("/")
    with unit_of_work(db):
        db.execute(
            update(GithubRepoLink)
            .where(
                GithubRepoLink.workspace_id == workspace.id,
                GithubRepoLink.github_repo_id == parsed.repository_id,
            )
            .values(
                full_name=parsed.full_name,
                owner_login=owner,
                repo_name=name,
                default_branch=parsed.default_branch,
                is_private=parsed.is_private,
                is_active=True,
                updated_at=datetime.now(UTC),
            )
            .execution_options(synchronize_session="fetch")
        )
        record_audit(
            db,
            workspace.id,
            "github.repo.updated.webhook",
            {
                "installation_id": str(event.installation_id),
                "delivery_id": event.delivery_id,
                "github_repo_id": str(parsed.repository_id),
                "full_name": parsed.full_name,
            },
            actor_user_id=SYSTEM_WEBHOOK_AUTH.user_id,
        )


async def _handle_team_change(
    db: Session,
    client: GithubApi,
    event: GithubWebhookEvent,
    workspace_id: uuid.UUID,
    parsed: TeamEvent | MembershipEvent,
    settings: EffectiveWorkspaceSettings,
) -> list[int]:
    repo_ids: list[int] = []
    if parsed.team_id is not None:
        with unit_of_work(db):
            invalidate_team_members_cache(db, workspace_id, [parsed.team_id])
        repo_ids = find_repo_ids_by_team_id_from_cache(db, workspace_id, parsed.team_id)
    if settings.github_team_mapping_enabled:
        await apply_github_team_mappings(
            db,
            client,
            workspace_id,
            event.installation_id,
            actor_user_id=SYSTEM_WEBHOOK_AUTH.user_id,
        )
    return repo_ids
