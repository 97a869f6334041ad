"""GitHub webhook receiver.

Reads the raw body (the HMAC covers exact bytes) and only queues the
delivery; processing happens in ``/internal/github/process-webhooks``.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.orm import Session

from memory_core.api.deps import get_db
from memory_core.schemas.github import WebhookEnqueueResponse
from memory_core.webhooks.ingest import enqueue_github_webhook

router = APIRouter()


@router.post("/github", response_model=WebhookEnqueueResponse)
async def receive_github_webhook(
    request: Request,
    db: Session = Depends(get_db),
    x_github_event: str | None = Header(None),
    x_github_delivery: str | None = Header(None),
    x_hub_signature_256: str | None = Header(None),
) -> WebhookEnqueueResponse:
    raw_body = await request.body()
    result = enqueue_github_webhook(
        db, x_github_event, x_github_delivery, x_hub_signature_256, raw_body
    )
    return WebhookEnqueueResponse(**result)
