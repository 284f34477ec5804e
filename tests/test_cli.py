from __future__ import annotations

import json

from sqlalchemy import func, select

import storefront.persistence.pg as pg
from storefront.cli import DEMO_CATALOG, main
from storefront.persistence.models import ProductModel, ProductVariantModel


def test_seed_demo_is_idempotent(capsys):
    assert main(["seed-demo"]) == 0
    first = json.loads(capsys.readouterr().out)
    assert len(first["created"]) == len(DEMO_CATALOG)

    assert main(["seed-demo"]) == 0
    second = json.loads(capsys.readouterr().out)
    assert second == {"created": [], "skipped": len(DEMO_CATALOG)}

    with pg.session_scope() as s:
        assert s.scalar(select(func.count()).select_from(ProductModel)) == len(DEMO_CATALOG)
        expected_variants = sum(len(entry["stock"]) for entry in DEMO_CATALOG)
        assert s.scalar(select(func.count()).select_from(ProductVariantModel)) == expected_variants


def test_orders_command_prints_json(capsys):
    assert main(["orders", "--status", "pending"]) == 0
    assert json.loads(capsys.readouterr().out) == []


def test_serve_runs_uvicorn_with_configured_address(monkeypatch):
    import storefront.cli as cli

    calls = []
    monkeypatch.setattr(cli.uvicorn, "run", lambda app, **kwargs: calls.append((app, kwargs)))

    assert main(["serve", "--port", "9001"]) == 0
    assert calls[0][0] == "storefront.main:app"
    assert calls[0][1]["port"] == 9001
    assert calls[0][1]["host"] == cli.get_settings().api_host
