"""
api/routes/v1/webhooks.py -- Inbound integration events.

Routes:
  POST /api/webhooks   -- append a synthesized "note" update (public, HMAC-checked)

Source detection, in order: ?source= query param, X-GitHub-Event header
(github), Linear-Event header (linear), else "unknown".

When WEBHOOK_SECRET is set the raw body must carry a valid
X-Hub-Signature-256 ("sha256=<hex>") header, else 401. A body that is not
JSON is still accepted: it is summarized as raw text.
"""

import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from starlette.concurrency import run_in_threadpool

from api.models import WebhookAccepted
from auth.tokens import verify_webhook_signature
from portal.store import ConflictError, PortalStore
from portal.webhooks import synthesize_update

logger = logging.getLogger("gateway.api.webhooks")

_MAX_BODY_BYTES = 256 * 1024

# Auth policy:
# - POST /api/webhooks: public; authenticated by HMAC signature when configured
router = APIRouter()


def _detect_source(request: Request, source: Optional[str]) -> tuple[str, Optional[str]]:
    github_event = request.headers.get("X-GitHub-Event")
    if source:
        return source, github_event or request.headers.get("Linear-Event")
    if github_event:
        return "github", github_event
    linear_event = request.headers.get("Linear-Event")
    if linear_event:
        return "linear", linear_event
    return "unknown", None


@router.post("/webhooks", response_model=WebhookAccepted, status_code=202)
async def ingest_webhook(request: Request, source: Optional[str] = Query(default=None, max_length=32)) -> WebhookAccepted:
    """Verify, summarize and store one inbound event."""
    body = await request.body()
    if len(body) > _MAX_BODY_BYTES:
        raise HTTPException(
            status_code=400,
            detail={"code": "validation_error", "message": "Webhook payload too large."},
        )

    secret = request.app.state.settings.webhook_secret
    if secret and not verify_webhook_signature(secret, body, request.headers.get("X-Hub-Signature-256", "")):
        logger.warning("Rejected webhook with bad signature from %s", request.client.host if request.client else "unknown")
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Invalid webhook signature."},
        )

    try:
        payload: Any = json.loads(body) if body else {}
    except (UnicodeDecodeError, ValueError):
        payload = body.decode("utf-8", errors="replace")

    src, event = _detect_source(request, source)
    record = synthesize_update(src, event, payload)

    store: PortalStore = request.app.state.portal
    try:
        created = await run_in_threadpool(store.append_update, record)
    except ConflictError as e:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "Update list changed concurrently. Retry.", "detail": str(e)},
        ) from e
    logger.info("Webhook from %s stored as update %s", created.author, created.id)
    return WebhookAccepted(id=created.id)
