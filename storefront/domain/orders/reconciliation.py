"""Settlement of orders from verified payment processor events.

Deliveries are at-least-once and may arrive out of order, so every branch is
safe to replay:

* ``checkout.session.completed`` reads the order once outside a transaction
  and short-circuits when it is already settled. Otherwise it opens one
  transaction that re-reads the order (row-locked where the database supports
  it), claims it with a conditional ``pending -> paid`` update and decrements
  the stock of every line item's variant, floored at zero. Either all of that
  commits or none of it does.
* ``checkout.session.expired`` flips a ``pending`` order to ``failed`` with the
  same conditional update, so it can never undo a payment.
* Every other event kind is acknowledged and ignored.
"""

from __future__ import annotations

import logging
from contextlib import AbstractContextManager
from enum import Enum
from typing import Callable

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from storefront.core.clock import Clock, now_utc
from storefront.domain.orders.aggregates import LineItem, OrderStatus, can_transition
from storefront.errors import MissingOrderReference, OrderNotFound, VariantNotFound
from storefront.payments.webhooks import (
    CheckoutSessionCompletedEvent,
    CheckoutSessionExpiredEvent,
    WebhookEvent,
)
from storefront.persistence import pg
from storefront.persistence.models import OrderModel, ProductVariantModel

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractContextManager[Session]]


class Outcome(str, Enum):
    PAID = "paid"
    FAILED = "failed"
    ALREADY_SETTLED = "already_settled"
    PAYMENT_INCOMPLETE = "payment_incomplete"
    NOT_PENDING = "not_pending"
    ORDER_UNKNOWN = "order_unknown"
    IGNORED = "ignored"


class WebhookReconciler:
    def __init__(self, session_factory: SessionFactory | None = None, clock: Clock = now_utc):
        self.session_factory = session_factory or pg.session_scope
        self.clock = clock

    def handle(self, event: WebhookEvent) -> Outcome:
        logger.info("webhook event received: id=%s type=%s", event.id, event.type)
        if isinstance(event, CheckoutSessionCompletedEvent):
            return self.settle_paid(event)
        if isinstance(event, CheckoutSessionExpiredEvent):
            return self.mark_expired(event)
        logger.info("unhandled webhook event type %s", event.type)
        return Outcome.IGNORED

    def settle_paid(self, event: CheckoutSessionCompletedEvent) -> Outcome:
        checkout = event.data.session
        order_id = checkout.order_id
        if not order_id:
            raise MissingOrderReference(f"missing order_id in session metadata: session={checkout.id}")

        with self.session_factory() as session:
            order = session.get(OrderModel, order_id)
            if order is None:
                raise OrderNotFound(f"order not found for completed session: order_id={order_id}")
            status = order.status

        if checkout.payment_status != "paid":
            logger.info("payment not completed for order %s: %s", order_id, checkout.payment_status)
            return Outcome.PAYMENT_INCOMPLETE
        if status == OrderStatus.PAID.value:
            logger.info("order %s already paid, skipping", order_id)
            return Outcome.ALREADY_SETTLED
        if not can_transition(status, OrderStatus.PAID.value):
            logger.warning("payment completed for order %s in status %s, skipping", order_id, status)
            return Outcome.NOT_PENDING

        with self.session_factory() as session:
            return self._settle_in_transaction(session, order_id)

    def _settle_in_transaction(self, session: Session, order_id: str) -> Outcome:
        order = session.scalar(select(OrderModel).where(OrderModel.id == order_id).with_for_update())
        if order is None:
            raise OrderNotFound(f"order disappeared during settlement: order_id={order_id}")
        if not can_transition(order.status, OrderStatus.PAID.value):
            logger.info("order %s already %s inside transaction, skipping", order_id, order.status)
            return Outcome.ALREADY_SETTLED

        claimed = session.execute(
            update(OrderModel)
            .where(OrderModel.id == order_id)
            .where(OrderModel.status == OrderStatus.PENDING.value)
            .values(status=OrderStatus.PAID.value, paid_at=self.clock())
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            logger.info("order %s settled by a concurrent delivery, skipping", order_id)
            return Outcome.ALREADY_SETTLED

        for item in (LineItem.from_dict(raw) for raw in order.items):
            variant = session.scalar(
                select(ProductVariantModel)
                .where(ProductVariantModel.product_id == item.product_id)
                .where(ProductVariantModel.size == item.size)
                .with_for_update()
            )
            if variant is None:
                raise VariantNotFound(
                    f"variant not found: product_id={item.product_id!r} size={item.size!r}"
                )
            variant.stock = max(0, variant.stock - item.quantity)

        session.flush()
        logger.info("order %s marked as paid", order_id)
        return Outcome.PAID

    def mark_expired(self, event: CheckoutSessionExpiredEvent) -> Outcome:
        order_id = event.data.session.order_id
        if not order_id:
            logger.info("missing order_id in expired session metadata: session=%s", event.data.session.id)
            return Outcome.ORDER_UNKNOWN

        with self.session_factory() as session:
            order = session.get(OrderModel, order_id)
            if order is None:
                logger.info("order %s not found for expired session", order_id)
                return Outcome.ORDER_UNKNOWN
            if not can_transition(order.status, OrderStatus.FAILED.value):
                logger.info("order %s not pending, skipping", order_id)
                return Outcome.NOT_PENDING
            result = session.execute(
                update(OrderModel)
                .where(OrderModel.id == order_id)
                .where(OrderModel.status == OrderStatus.PENDING.value)
                .values(status=OrderStatus.FAILED.value)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return Outcome.NOT_PENDING

        logger.info("order %s marked as failed", order_id)
        return Outcome.FAILED
