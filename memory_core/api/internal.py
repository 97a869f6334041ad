"""Internal job endpoints for cron/scripts.

These endpoints are secured with a static token (X-Internal-Token header),
not bearer auth. They are meant for automated triggers only.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from memory_core.api.deps import get_db, get_github_client, require_internal_token
from memory_core.config import get_settings
from memory_core.github.client import GithubApi
from memory_core.schemas.github import ProcessWebhooksRequest, ProcessWebhooksResponse
from memory_core.webhooks.processor import process_github_webhook_queue

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/internal", include_in_schema=False)


@router.post("/github/process-webhooks", response_model=ProcessWebhooksResponse)
async def process_webhooks(
    data: ProcessWebhooksRequest | None = None,
    db: Session = Depends(get_db),
    _token: None = Depends(require_internal_token),
    client: GithubApi = Depends(get_github_client),
) -> ProcessWebhooksResponse:
    """Drain one batch of queued GitHub deliveries."""
    batch_size = (data.batch_size if data else None) or get_settings().webhook_queue_batch_size
    result = await process_github_webhook_queue(db, client, batch_size=batch_size)
    return ProcessWebhooksResponse(**result)
