from __future__ import annotations

import logging

from fastapi import APIRouter, Header, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from storefront.core.config import get_settings
from storefront.domain.orders.reconciliation import WebhookReconciler
from storefront.errors import StoreError
from storefront.payments.webhooks import parse_webhook

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])


@router.post("/api/webhooks/stripe")
async def stripe_webhook(request: Request, stripe_signature: str | None = Header(default=None)):
    settings = get_settings()
    if not settings.stripe_webhook_secret:
        logger.error("webhook secret is not configured")
        return JSONResponse(status_code=500, content={"error": "Webhook secret not configured"})

    payload = await request.body()
    try:
        event = parse_webhook(
            payload,
            stripe_signature,
            settings.stripe_webhook_secret,
            tolerance=settings.stripe_webhook_tolerance_seconds,
        )
    except StoreError as exc:
        logger.error("webhook rejected: %s", exc.message)
        return JSONResponse(status_code=400, content={"error": exc.message})

    try:
        outcome = await run_in_threadpool(WebhookReconciler().handle, event)
    except Exception:
        logger.exception("failed processing webhook event %s (%s)", event.id, event.type)
        return JSONResponse(status_code=500, content={"error": "Webhook processing failed"})

    logger.info("webhook event %s processed: %s", event.id, outcome.value)
    return {"received": True}
