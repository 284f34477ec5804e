from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from storefront.domain.catalog.queries import get_variant
from storefront.domain.orders.aggregates import LineItem, OrderStatus, order_total
from storefront.errors import (
    CheckoutSessionFailed,
    InsufficientStock,
    InvalidInput,
    ProductInactive,
    ProductNotFound,
    SizeUnavailable,
)
from storefront.payments.gateway import PaymentGateway
from storefront.persistence.models import PLACEHOLDER_SESSION_ID, OrderModel, ProductModel

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:3000"


class CheckoutItem(BaseModel):
    """One untrusted cart line as sent by the browser.

    Display fields the cart keeps locally (name, price, image) are dropped.
    """

    model_config = ConfigDict(extra="ignore")

    product_id: StrictStr = Field(min_length=1)
    size: StrictStr = Field(min_length=1)
    quantity: StrictInt = Field(ge=1)


class CheckoutRequest(BaseModel):
    items: list[CheckoutItem] = Field(min_length=1)


@dataclass(frozen=True)
class CheckoutResult:
    order_id: str
    session_id: str
    url: str
    total: int


def parse_checkout_items(body: Any) -> list[CheckoutItem]:
    if not isinstance(body, dict) or not body.get("items"):
        raise InvalidInput("Cart is empty")
    try:
        return CheckoutRequest.model_validate(body).items
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise InvalidInput(f"Invalid cart item at {location}: {first['msg']}") from exc


def resolve_base_url(origin: str | None, site_url: str | None) -> str:
    for candidate in (origin, site_url):
        if candidate and candidate.startswith("http"):
            return candidate.rstrip("/")
    return DEFAULT_BASE_URL


class CheckoutService:
    def __init__(self, session: Session, gateway: PaymentGateway, currency: str = "usd"):
        self.session = session
        self.gateway = gateway
        self.currency = currency

    def _load_products(self, items: list[CheckoutItem]) -> dict[str, ProductModel]:
        product_ids = sorted({item.product_id for item in items})
        products = {
            product.id: product
            for product in self.session.scalars(
                select(ProductModel)
                .where(ProductModel.id.in_(product_ids))
                .options(selectinload(ProductModel.images))
            ).all()
        }
        for product_id in product_ids:
            product = products.get(product_id)
            if product is None:
                raise ProductNotFound(f"Product not found: {product_id}", status_code=400)
            if not product.is_active:
                raise ProductInactive(f"Product is not available: {product.name}")
        return products

    def _check_stock(self, items: list[CheckoutItem], products: dict[str, ProductModel]) -> None:
        # Split lines for the same variant draw on one stock count.
        requested: Counter[tuple[str, str]] = Counter()
        for item in items:
            requested[(item.product_id, item.size)] += item.quantity

        for (product_id, size), quantity in requested.items():
            product = products[product_id]
            variant = get_variant(self.session, product_id, size)
            if variant is None:
                raise SizeUnavailable(f"Size {size} is not available for {product.name}")
            if variant.stock < quantity:
                raise InsufficientStock(
                    f"Insufficient stock for {product.name} (Size: {size}): "
                    f"requested {quantity}, available {variant.stock}"
                )

    def build_line_items(self, items: list[CheckoutItem]) -> list[LineItem]:
        products = self._load_products(items)
        self._check_stock(items, products)
        line_items: list[LineItem] = []
        for item in items:
            product = products[item.product_id]
            line_items.append(
                LineItem(
                    product_id=product.id,
                    name=product.name,
                    size=item.size,
                    quantity=item.quantity,
                    price=product.price,
                    image_url=product.cover_image_url,
                )
            )
        return line_items

    def _create_pending_order(self, line_items: list[LineItem]) -> OrderModel:
        order = OrderModel(
            status=OrderStatus.PENDING.value,
            items=[item.to_dict() for item in line_items],
            total=order_total(line_items),
            currency=self.currency,
            stripe_session_id=PLACEHOLDER_SESSION_ID,
        )
        self.session.add(order)
        # Committed before the processor call so the order survives a
        # processor failure.
        self.session.commit()
        logger.info("pending order created: order_id=%s total=%s", order.id, order.total)
        return order

    def start(self, items: list[CheckoutItem], base_url: str) -> CheckoutResult:
        line_items = self.build_line_items(items)
        order = self._create_pending_order(line_items)

        try:
            hosted = self.gateway.create_checkout_session(
                order_id=order.id,
                line_items=line_items,
                currency=self.currency,
                success_url=f"{base_url}/success?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{base_url}/cart",
            )
        except CheckoutSessionFailed:
            logger.exception("checkout session creation failed: order_id=%s", order.id)
            raise

        order.stripe_session_id = hosted.session_id
        self.session.commit()

        if not hosted.url:
            logger.error("processor returned no checkout url: order_id=%s", order.id)
            raise CheckoutSessionFailed("Stripe session URL not returned")

        return CheckoutResult(
            order_id=order.id,
            session_id=hosted.session_id,
            url=hosted.url,
            total=order.total,
        )
