from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Protocol

import stripe

from storefront.core.config import get_settings
from storefront.domain.orders.aggregates import LineItem
from storefront.errors import CheckoutSessionFailed, ConfigurationMissing

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HostedCheckoutSession:
    session_id: str
    url: str | None


@dataclass(frozen=True)
class SessionStatus:
    session_id: str
    payment_status: str | None
    order_id: str | None
    amount_total: int | None
    currency: str | None

    @property
    def is_paid(self) -> bool:
        return self.payment_status == "paid"


class PaymentGateway(Protocol):
    backend: str

    def create_checkout_session(
        self,
        order_id: str,
        line_items: list[LineItem],
        currency: str,
        success_url: str,
        cancel_url: str,
    ) -> HostedCheckoutSession:
        ...

    def retrieve_session(self, session_id: str) -> SessionStatus:
        ...


def _stripe_line_item(item: LineItem, currency: str) -> dict:
    return {
        "quantity": item.quantity,
        "price_data": {
            "currency": currency,
            "unit_amount": item.price,
            "product_data": {
                "name": item.display_name,
                "metadata": {
                    "product_id": item.product_id,
                    "size": item.size,
                    "quantity": str(item.quantity),
                },
            },
        },
    }


class StripePaymentGateway:
    backend = "stripe"

    def __init__(self, secret_key: str):
        self.secret_key = secret_key

    def create_checkout_session(
        self,
        order_id: str,
        line_items: list[LineItem],
        currency: str,
        success_url: str,
        cancel_url: str,
    ) -> HostedCheckoutSession:
        try:
            session = stripe.checkout.Session.create(
                api_key=self.secret_key,
                mode="payment",
                line_items=[_stripe_line_item(item, currency) for item in line_items],
                metadata={"order_id": order_id},
                client_reference_id=order_id,
                success_url=success_url,
                cancel_url=cancel_url,
            )
        except stripe.StripeError as exc:
            raise CheckoutSessionFailed(exc.user_message or str(exc)) from exc
        return HostedCheckoutSession(session_id=session.id, url=session.url)

    def retrieve_session(self, session_id: str) -> SessionStatus:
        session = stripe.checkout.Session.retrieve(session_id, api_key=self.secret_key)
        metadata = session.metadata or {}
        return SessionStatus(
            session_id=session.id,
            payment_status=session.payment_status,
            order_id=metadata["order_id"] if "order_id" in metadata else None,
            amount_total=session.amount_total,
            currency=session.currency,
        )


@dataclass
class _FakeSession:
    order_id: str
    amount_total: int
    currency: str
    payment_status: str = "unpaid"


@dataclass
class FakePaymentGateway:
    """In-memory processor used for local runs and tests."""

    backend: str = "fake"
    base_url: str = "https://checkout.fake.local/pay"
    sessions: dict[str, _FakeSession] = field(default_factory=dict)

    def create_checkout_session(
        self,
        order_id: str,
        line_items: list[LineItem],
        currency: str,
        success_url: str,
        cancel_url: str,
    ) -> HostedCheckoutSession:
        session_id = f"cs_fake_{uuid.uuid4().hex}"
        self.sessions[session_id] = _FakeSession(
            order_id=order_id,
            amount_total=sum(item.subtotal for item in line_items),
            currency=currency,
        )
        return HostedCheckoutSession(session_id=session_id, url=f"{self.base_url}/{session_id}")

    def retrieve_session(self, session_id: str) -> SessionStatus:
        fake = self.sessions.get(session_id)
        if fake is None:
            raise LookupError(f"unknown checkout session: {session_id}")
        return SessionStatus(
            session_id=session_id,
            payment_status=fake.payment_status,
            order_id=fake.order_id,
            amount_total=fake.amount_total,
            currency=fake.currency,
        )

    def mark_paid(self, session_id: str) -> None:
        self.sessions[session_id].payment_status = "paid"


@lru_cache(maxsize=1)
def _fake_gateway() -> FakePaymentGateway:
    return FakePaymentGateway()


def get_payment_gateway() -> PaymentGateway:
    settings = get_settings()
    if settings.payment_backend == "fake":
        return _fake_gateway()
    if settings.payment_backend != "stripe":
        raise ConfigurationMissing(f"unsupported payment backend: {settings.payment_backend}")
    if not settings.stripe_secret_key:
        logger.error("stripe secret key is not configured")
        raise ConfigurationMissing("Missing STRIPE_SECRET_KEY")
    return StripePaymentGateway(settings.stripe_secret_key)


def get_optional_payment_gateway() -> PaymentGateway | None:
    try:
        return get_payment_gateway()
    except ConfigurationMissing:
        return None
