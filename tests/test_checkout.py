from __future__ import annotations

import pytest
from sqlalchemy import func, select

import storefront.persistence.pg as pg
from storefront.core.config import get_settings
from storefront.domain.orders.checkout import CheckoutItem, CheckoutService, resolve_base_url
from storefront.errors import CheckoutSessionFailed, InsufficientStock
from storefront.payments.gateway import HostedCheckoutSession, get_payment_gateway
from storefront.persistence.models import PLACEHOLDER_SESSION_ID, OrderModel


def _order_count() -> int:
    with pg.session_scope() as s:
        return s.scalar(select(func.count()).select_from(OrderModel))


def _only_order() -> OrderModel:
    with pg.session_scope() as s:
        orders = list(s.scalars(select(OrderModel)).all())
    assert len(orders) == 1
    return orders[0]


def test_checkout_creates_pending_order_and_returns_hosted_url(client, make_product, gateway):
    product_id = make_product(price=4900, stock={"M": 5})

    resp = client.post("/api/checkout", json={"items": [{"product_id": product_id, "size": "M", "quantity": 2}]})

    assert resp.status_code == 200
    url = resp.json()["url"]
    assert url.startswith("https://checkout.fake.local/pay/cs_fake_")

    order = _only_order()
    assert order.status == "pending"
    assert order.total == 9800
    assert order.currency == "usd"
    assert order.stripe_session_id != PLACEHOLDER_SESSION_ID
    assert url.endswith(order.stripe_session_id)
    assert order.items == [
        {
            "product_id": product_id,
            "name": "Heavyweight Tee",
            "size": "M",
            "quantity": 2,
            "price": 4900,
            "image_url": None,
        }
    ]
    assert gateway.sessions[order.stripe_session_id].order_id == order.id


def test_client_supplied_price_is_ignored(client, make_product):
    product_id = make_product(price=4900, stock={"M": 5, "L": 3})

    resp = client.post(
        "/api/checkout",
        json={
            "items": [
                {"product_id": product_id, "size": "M", "quantity": 1, "price": 1, "name": "cheap"},
                {"product_id": product_id, "size": "L", "quantity": 2, "price": 1},
            ]
        },
    )

    assert resp.status_code == 200
    order = _only_order()
    assert order.total == 3 * 4900
    assert [item["price"] for item in order.items] == [4900, 4900]
    assert order.items[0]["name"] == "Heavyweight Tee"


def test_insufficient_stock_rejects_without_persisting_order(client, make_product):
    product_id = make_product(price=4900, stock={"M": 1})

    resp = client.post("/api/checkout", json={"items": [{"product_id": product_id, "size": "M", "quantity": 2}]})

    assert resp.status_code == 400
    assert "Insufficient stock" in resp.json()["error"]
    assert _order_count() == 0


def test_split_lines_for_one_variant_share_its_stock(client, make_product):
    product_id = make_product(price=4900, stock={"M": 5})
    line = {"product_id": product_id, "size": "M", "quantity": 3}

    resp = client.post("/api/checkout", json={"items": [line, dict(line)]})

    assert resp.status_code == 400
    assert "requested 6, available 5" in resp.json()["error"]
    assert _order_count() == 0


def test_split_lines_within_stock_are_accepted(client, make_product):
    product_id = make_product(price=4900, stock={"M": 5})
    line = {"product_id": product_id, "size": "M", "quantity": 2}

    resp = client.post("/api/checkout", json={"items": [line, dict(line)]})

    assert resp.status_code == 200
    assert [item["quantity"] for item in _only_order().items] == [2, 2]


def test_inactive_product_rejected(client, make_product):
    product_id = make_product(is_active=False)

    resp = client.post("/api/checkout", json={"items": [{"product_id": product_id, "size": "M", "quantity": 1}]})

    assert resp.status_code == 400
    assert "not available" in resp.json()["error"]
    assert _order_count() == 0


def test_unknown_product_and_size_rejected(client, make_product):
    product_id = make_product(stock={"M": 5})

    missing = client.post("/api/checkout", json={"items": [{"product_id": "nope", "size": "M", "quantity": 1}]})
    assert missing.status_code == 400
    assert "Product not found" in missing.json()["error"]

    no_size = client.post("/api/checkout", json={"items": [{"product_id": product_id, "size": "XL", "quantity": 1}]})
    assert no_size.status_code == 400
    assert "Size XL" in no_size.json()["error"]

    assert _order_count() == 0


@pytest.mark.parametrize(
    "body",
    [
        {"items": []},
        {},
        {"items": [{"product_id": "p1", "size": "M", "quantity": 0}]},
        {"items": [{"product_id": "p1", "quantity": 1}]},
        {"items": "p1"},
        {"items": [{"product_id": "p1", "size": "M", "quantity": True}]},
        {"items": [{"product_id": "p1", "size": "M", "quantity": "2"}]},
        {"items": [{"product_id": "p1", "size": "M", "quantity": 1.0}]},
        {"items": [{"product_id": 7, "size": "M", "quantity": 1}]},
        {"items": [{"product_id": "p1", "size": 42, "quantity": 1}]},
    ],
)
def test_malformed_cart_rejected(client, body):
    resp = client.post("/api/checkout", json=body)
    assert resp.status_code == 400
    assert "error" in resp.json()
    assert _order_count() == 0


def test_non_json_body_rejected(client):
    resp = client.post("/api/checkout", content=b"not json", headers={"Content-Type": "application/json"})
    assert resp.status_code == 400


def test_redirect_urls_follow_request_origin(client, make_product, gateway, monkeypatch):
    product_id = make_product()
    seen: dict = {}
    original = gateway.create_checkout_session

    def capture(**kwargs):
        seen.update(kwargs)
        return original(**kwargs)

    monkeypatch.setattr(gateway, "create_checkout_session", capture)

    resp = client.post(
        "/api/checkout",
        json={"items": [{"product_id": product_id, "size": "M", "quantity": 1}]},
        headers={"Origin": "https://shop.example.com/"},
    )

    assert resp.status_code == 200
    assert seen["success_url"] == "https://shop.example.com/success?session_id={CHECKOUT_SESSION_ID}"
    assert seen["cancel_url"] == "https://shop.example.com/cart"


def test_resolve_base_url_fallbacks():
    assert resolve_base_url("https://a.example/", "https://b.example") == "https://a.example"
    assert resolve_base_url(None, "https://b.example//") == "https://b.example"
    assert resolve_base_url("null", None) == "http://localhost:3000"
    assert resolve_base_url(None, None) == "http://localhost:3000"


class FailingGateway:
    backend = "failing"

    def create_checkout_session(self, **kwargs):
        raise CheckoutSessionFailed("card processor unavailable")

    def retrieve_session(self, session_id):  # pragma: no cover - unused
        raise LookupError(session_id)


class BrokenGateway:
    backend = "broken"

    def create_checkout_session(self, **kwargs):
        raise RuntimeError("connection reset by peer")

    def retrieve_session(self, session_id):  # pragma: no cover - unused
        raise LookupError(session_id)


class UrlLessGateway:
    backend = "urlless"

    def create_checkout_session(self, **kwargs):
        return HostedCheckoutSession(session_id="cs_no_url", url=None)

    def retrieve_session(self, session_id):  # pragma: no cover - unused
        raise LookupError(session_id)


def test_processor_failure_keeps_pending_order(client, make_product):
    from storefront.main import app

    product_id = make_product()
    app.dependency_overrides[get_payment_gateway] = lambda: FailingGateway()

    resp = client.post("/api/checkout", json={"items": [{"product_id": product_id, "size": "M", "quantity": 1}]})

    assert resp.status_code == 500
    assert resp.json()["error"] == "card processor unavailable"
    order = _only_order()
    assert order.status == "pending"
    assert order.stripe_session_id == PLACEHOLDER_SESSION_ID


def test_missing_session_url_is_an_error_but_session_id_is_kept(client, make_product):
    from storefront.main import app

    product_id = make_product()
    app.dependency_overrides[get_payment_gateway] = lambda: UrlLessGateway()

    resp = client.post("/api/checkout", json={"items": [{"product_id": product_id, "size": "M", "quantity": 1}]})

    assert resp.status_code == 500
    assert resp.json()["error"] == "Stripe session URL not returned"
    assert _only_order().stripe_session_id == "cs_no_url"


def test_missing_stripe_key_is_a_configuration_error(client, make_product):
    product_id = make_product()
    settings = get_settings()
    prev_backend, prev_key = settings.payment_backend, settings.stripe_secret_key
    settings.payment_backend = "stripe"
    settings.stripe_secret_key = None
    try:
        resp = client.post("/api/checkout", json={"items": [{"product_id": product_id, "size": "M", "quantity": 1}]})
    finally:
        settings.payment_backend = prev_backend
        settings.stripe_secret_key = prev_key

    assert resp.status_code == 500
    assert resp.json()["error"] == "Missing STRIPE_SECRET_KEY"


def test_service_builds_line_items_from_server_prices(session, make_product, gateway):
    tee = make_product(name="Tee", price=4900, stock={"M": 5})
    hoodie = make_product(name="Hoodie", price=9500, stock={"L": 1})

    service = CheckoutService(session, gateway)
    items = service.build_line_items(
        [
            CheckoutItem(product_id=tee, size="M", quantity=2),
            CheckoutItem(product_id=hoodie, size="L", quantity=1),
        ]
    )

    assert [(i.name, i.size, i.quantity, i.price) for i in items] == [
        ("Tee", "M", 2, 4900),
        ("Hoodie", "L", 1, 9500),
    ]
    assert sum(i.subtotal for i in items) == 19300

    with pytest.raises(InsufficientStock):
        service.build_line_items([CheckoutItem(product_id=hoodie, size="L", quantity=2)])

    with pytest.raises(InsufficientStock):
        service.build_line_items(
            [
                CheckoutItem(product_id=tee, size="M", quantity=3),
                CheckoutItem(product_id=tee, size="M", quantity=3),
            ]
        )


def test_unexpected_processor_error_returns_json_error(client, make_product):
    from storefront.main import app

    product_id = make_product()
    app.dependency_overrides[get_payment_gateway] = lambda: BrokenGateway()

    resp = client.post("/api/checkout", json={"items": [{"product_id": product_id, "size": "M", "quantity": 1}]})

    assert resp.status_code == 500
    assert resp.json() == {"error": "Checkout failed"}
    assert _only_order().status == "pending"
