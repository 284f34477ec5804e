from __future__ import annotations

import logging
from typing import Any

import stripe
from fastapi import APIRouter, Body, Depends, Header, Query
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.orm import Session

from storefront.core.config import get_settings
from storefront.domain.orders.checkout import CheckoutService, parse_checkout_items, resolve_base_url
from storefront.errors import StoreError
from storefront.payments.gateway import PaymentGateway, get_optional_payment_gateway, get_payment_gateway
from storefront.persistence.pg import get_session

logger = logging.getLogger(__name__)

router = APIRouter(tags=["checkout"])

CHECKOUT_FAILED_MESSAGE = "Checkout failed"


@router.post("/api/checkout")
def create_checkout(
    body: Any = Body(default=None),
    origin: str | None = Header(default=None),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    session: Session = Depends(get_session),
):
    settings = get_settings()
    items = parse_checkout_items(body)
    service = CheckoutService(session, gateway, currency=settings.currency)
    try:
        result = service.start(items, base_url=resolve_base_url(origin, settings.site_url))
    except StoreError:
        raise
    except Exception:
        logger.exception("unexpected checkout failure")
        session.rollback()
        return JSONResponse(status_code=500, content={"error": CHECKOUT_FAILED_MESSAGE})
    return {"url": result.url}


@router.get("/success")
def checkout_success(
    session_id: str | None = Query(default=None),
    gateway: PaymentGateway | None = Depends(get_optional_payment_gateway),
):
    if not session_id:
        return RedirectResponse("/", status_code=303)
    if gateway is None:
        logger.warning("payment processor not configured, cannot verify session %s", session_id)
        return RedirectResponse("/", status_code=303)
    try:
        status = gateway.retrieve_session(session_id)
    except (stripe.StripeError, LookupError) as exc:
        logger.warning("could not verify checkout session %s: %s", session_id, exc)
        return RedirectResponse("/", status_code=303)
    if not status.is_paid:
        return RedirectResponse("/", status_code=303)
    return {
        "status": "paid",
        "order_id": status.order_id,
        "amount_total": status.amount_total,
        "currency": status.currency,
    }
