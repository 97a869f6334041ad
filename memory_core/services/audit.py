"""Audit sink.

``record_audit`` adds a row to the caller's session and never commits on its
own; the entry lands (or rolls back) with the surrounding transaction.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy.orm import Session

from memory_core.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


def record_audit(
    db: Session,
    workspace_id: uuid.UUID | None,
    action: str,
    target: dict[str, Any] | None = None,
    actor_user_id: str | None = None,
    project_id: uuid.UUID | None = None,
) -> None:
    db.add(
        AuditLog(
            workspace_id=workspace_id,
            project_id=project_id,
            actor_user_id=actor_user_id,
            action=action,
            target=target or {},
        )
    )
    logger.debug("audit action=%s workspace_id=%s target=%s", action, workspace_id, target)
