from __future__ import annotations

import hmac
import json
import time
import uuid
from hashlib import sha256
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import storefront.persistence.pg as pg
from storefront.core.config import get_settings
from storefront.domain.catalog import commands
from storefront.payments.gateway import get_payment_gateway
from storefront.persistence.models import Base

WEBHOOK_SECRET = "whsec_test_secret"
ADMIN_EMAIL = "owner@kasir.test"
ADMIN_PASSWORD = "correct horse battery staple"


@pytest.fixture(scope="session")
def test_db_path(tmp_path_factory: pytest.TempPathFactory) -> Path:
    return tmp_path_factory.mktemp("db") / "test.sqlite"


@pytest.fixture(scope="session", autouse=True)
def configure_test_engine(test_db_path: Path):
    settings = get_settings()
    settings.payment_backend = "fake"
    settings.stripe_webhook_secret = WEBHOOK_SECRET
    settings.image_backend = "local"
    settings.images_dir = test_db_path.parent / "images"
    settings.site_url = None
    settings.admin_email = ADMIN_EMAIL
    settings.admin_password = ADMIN_PASSWORD

    engine = create_engine(
        f"sqlite+pysqlite:///{test_db_path}",
        future=True,
        connect_args={"check_same_thread": False},
    )
    TestSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)

    pg.engine = engine
    pg.SessionLocal = TestSessionLocal

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clean_state(configure_test_engine):
    yield
    with pg.engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
    get_payment_gateway().sessions.clear()


@pytest.fixture()
def client(configure_test_engine):
    from storefront.main import app

    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def admin_client(client):
    resp = client.post("/api/auth/session", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert resp.status_code == 200
    return client


@pytest.fixture()
def session(configure_test_engine):
    with pg.session_scope() as s:
        yield s


@pytest.fixture()
def gateway():
    return get_payment_gateway()


@pytest.fixture()
def make_product():
    def _make(name: str = "Heavyweight Tee", price: int = 4900, stock: dict | None = None, is_active: bool = True):
        with pg.session_scope() as s:
            product = commands.create_product(
                s, commands.CreateProductInput(name=name, price=price, is_active=is_active)
            )
            commands.update_variants_stock(
                s,
                product.id,
                [commands.VariantStockInput(size=size, stock=qty) for size, qty in (stock or {"M": 5}).items()],
            )
            return product.id

    return _make


def _sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    ts = int(time.time()) if timestamp is None else timestamp
    mac = hmac.new(secret.encode("utf-8"), f"{ts}.".encode("utf-8") + payload, sha256).hexdigest()
    return f"t={ts},v1={mac}"


def _checkout_event(
    event_type: str,
    order_id: str | None,
    payment_status: str = "paid",
    session_id: str = "cs_test_123",
    event_id: str | None = None,
) -> dict:
    metadata = {"order_id": order_id} if order_id else {}
    return {
        "id": event_id or f"evt_{uuid.uuid4().hex}",
        "object": "event",
        "type": event_type,
        "data": {
            "object": {
                "id": session_id,
                "object": "checkout.session",
                "payment_status": payment_status,
                "metadata": metadata,
            }
        },
    }


@pytest.fixture()
def post_webhook(client):
    def _post(event: dict, secret: str = WEBHOOK_SECRET):
        body = json.dumps(event).encode("utf-8")
        return client.post(
            "/api/webhooks/stripe",
            content=body,
            headers={"Stripe-Signature": _sign_payload(body, secret), "Content-Type": "application/json"},
        )

    return _post


@pytest.fixture()
def sign_payload():
    return _sign_payload


@pytest.fixture()
def checkout_event():
    return _checkout_event


@pytest.fixture()
def admin_credentials() -> tuple[str, str]:
    return ADMIN_EMAIL, ADMIN_PASSWORD
