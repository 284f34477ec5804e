"""Verification and decoding of payment processor webhook deliveries.

Raw bodies are only trusted after the ``Stripe-Signature`` header has been
checked against the configured endpoint secret. Verified bodies are then
decoded into one of the event models below, keyed by the event ``type``;
event kinds this service does not act on decode to :class:`UnhandledEvent`.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Union

import stripe
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from storefront.errors import InvalidInput, SignatureInvalid


class EventKind(str, Enum):
    CHECKOUT_COMPLETED = "checkout.session.completed"
    CHECKOUT_EXPIRED = "checkout.session.expired"
    OTHER = "other"


class CheckoutSessionObject(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    payment_status: str | None = None
    metadata: dict[str, str] | None = None

    @property
    def order_id(self) -> str | None:
        return (self.metadata or {}).get("order_id") or None


class CheckoutSessionData(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    session: CheckoutSessionObject = Field(alias="object")


class _EventBase(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    type: str


class CheckoutSessionCompletedEvent(_EventBase):
    kind: EventKind = EventKind.CHECKOUT_COMPLETED
    data: CheckoutSessionData


class CheckoutSessionExpiredEvent(_EventBase):
    kind: EventKind = EventKind.CHECKOUT_EXPIRED
    data: CheckoutSessionData


class UnhandledEvent(_EventBase):
    kind: EventKind = EventKind.OTHER


WebhookEvent = Union[CheckoutSessionCompletedEvent, CheckoutSessionExpiredEvent, UnhandledEvent]

EVENT_MODELS: dict[str, type[_EventBase]] = {
    EventKind.CHECKOUT_COMPLETED.value: CheckoutSessionCompletedEvent,
    EventKind.CHECKOUT_EXPIRED.value: CheckoutSessionExpiredEvent,
}


def verify_signature(payload: bytes, signature: str | None, secret: str, tolerance: int) -> None:
    if not signature:
        raise SignatureInvalid("Missing stripe-signature header")
    try:
        stripe.WebhookSignature.verify_header(payload.decode("utf-8"), signature, secret, tolerance)
    except (stripe.SignatureVerificationError, UnicodeDecodeError) as exc:
        raise SignatureInvalid(f"Webhook signature verification failed: {exc}") from exc


def decode_event(raw: dict[str, Any]) -> WebhookEvent:
    try:
        envelope = _EventBase.model_validate(raw)
        model = EVENT_MODELS.get(envelope.type, UnhandledEvent)
        return model.model_validate(raw)
    except ValidationError as exc:
        raise InvalidInput(f"unrecognised webhook payload: {exc.error_count()} error(s)") from exc


def parse_webhook(payload: bytes, signature: str | None, secret: str, tolerance: int = 300) -> WebhookEvent:
    verify_signature(payload, signature, secret, tolerance)
    try:
        raw = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise InvalidInput("Invalid request") from exc
    if not isinstance(raw, dict):
        raise InvalidInput("Invalid request")
    return decode_event(raw)
