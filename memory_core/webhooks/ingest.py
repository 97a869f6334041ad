"""GitHub webhook ingestion: verify, dedupe, queue.

Nothing heavy runs in the request path. A verified delivery becomes a
``queued`` GithubWebhookEvent row and the queue processor does the rest.
``delivery_id`` is unique, so GitHub redeliveries (or two instances
receiving the same delivery) collapse into one row.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from memory_core.auth import AuthContext
from memory_core.config import get_settings
from memory_core.db.session import unit_of_work
from memory_core.errors import AuthenticationError, ValidationError
from memory_core.models.enums import WebhookEventStatus
from memory_core.models.github_installation import GithubInstallation
from memory_core.models.github_webhook_event import GithubWebhookEvent
from memory_core.models.workspace import Workspace
from memory_core.services.access_control import assert_workspace_admin
from memory_core.services.audit import record_audit
from memory_core.services.workspaces import get_workspace_by_key
from memory_core.webhooks.payloads import extract_installation_id

logger = logging.getLogger(__name__)

_SIGNATURE_PREFIX = "sha256="
DEFAULT_EVENT_LIST_LIMIT = 50
MAX_EVENT_LIST_LIMIT = 200


def verify_github_webhook_signature(
    raw_body: bytes, signature_header: str | None, secret: str | None
) -> bool:
    """Constant-time check of ``X-Hub-Signature-256``."""
    secret = (secret or "").strip()
    provided = (signature_header or "").strip()
    if not secret or not provided.startswith(_SIGNATURE_PREFIX):
        return False
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(f"{_SIGNATURE_PREFIX}{digest}", provided)


def _installation_for(db: Session, installation_id: int) -> GithubInstallation | None:
    return db.execute(
        select(GithubInstallation).where(GithubInstallation.installation_id == installation_id)
    ).scalar_one_or_none()


def enqueue_github_webhook(
    db: Session,
    event_type: str | None,
    delivery_id: str | None,
    signature: str | None,
    raw_body: bytes,
) -> dict[str, Any]:
    event_type = (event_type or "").strip()
    delivery_id = (delivery_id or "").strip()
    if not event_type:
        raise ValidationError("Missing X-GitHub-Event header.")
    if not delivery_id:
        raise ValidationError("Missing X-GitHub-Delivery header.")

    try:
        payload = json.loads(raw_body or b"")
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValidationError("Webhook body must be valid JSON.") from exc

    installation_id = extract_installation_id(payload)
    if installation_id is None:
        raise ValidationError("Webhook payload is missing installation.id.")

    installation = _installation_for(db, installation_id)
    workspace = db.get(Workspace, installation.workspace_id) if installation else None
    secret = (installation.webhook_secret if installation else None) or (
        get_settings().github_webhook_secret
    )

    if not verify_github_webhook_signature(raw_body, signature, secret):
        logger.warning(
            "Webhook signature mismatch delivery=%s installation=%s", delivery_id, installation_id
        )
        if workspace is not None:
            with unit_of_work(db):
                record_audit(
                    db,
                    workspace.id,
                    "github.webhook.signature_failed",
                    {
                        "installation_id": str(installation_id),
                        "delivery_id": delivery_id,
                        "event_type": event_type,
                    },
                    actor_user_id="system:github-webhook",
                )
        raise AuthenticationError("Invalid GitHub webhook signature.")

    event = GithubWebhookEvent(
        workspace_id=workspace.id if workspace else None,
        installation_id=installation_id,
        event_type=event_type,
        delivery_id=delivery_id,
        payload=payload,
        status=WebhookEventStatus.queued.value,
    )
    duplicate = False
    with unit_of_work(db):
        try:
            with db.begin_nested():
                db.add(event)
        except IntegrityError:
            duplicate = True
        if not duplicate and workspace is not None:
            record_audit(
                db,
                workspace.id,
                "github.webhook.received",
                {
                    "installation_id": str(installation_id),
                    "delivery_id": delivery_id,
                    "event_type": event_type,
                },
                actor_user_id="system:github-webhook",
            )

    if duplicate:
        logger.info("Duplicate webhook delivery=%s ignored", delivery_id)
    else:
        logger.info("Queued webhook delivery=%s event=%s", delivery_id, event_type)
    return {
        "ok": True,
        "delivery_id": delivery_id,
        "event_type": event_type,
        "queued": not duplicate,
        "duplicate": duplicate,
        "workspace_key": workspace.key if workspace else None,
    }


def list_github_webhook_events(
    db: Session,
    auth: AuthContext,
    workspace_key: str,
    status: WebhookEventStatus | str | None = None,
    limit: int = DEFAULT_EVENT_LIST_LIMIT,
) -> list[GithubWebhookEvent]:
    workspace = get_workspace_by_key(db, workspace_key)
    assert_workspace_admin(db, auth, workspace.id)
    limit = min(max(int(limit), 1), MAX_EVENT_LIST_LIMIT)
    stmt = select(GithubWebhookEvent).where(GithubWebhookEvent.workspace_id == workspace.id)
    if status:
        stmt = stmt.where(GithubWebhookEvent.status == WebhookEventStatus(status).value)
    stmt = stmt.order_by(GithubWebhookEvent.created_at.desc()).limit(limit)
    return list(db.execute(stmt).scalars())
