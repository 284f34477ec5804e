from __future__ import annotations

import argparse
import json

import uvicorn
from sqlalchemy import select
from sqlalchemy.orm import Session

from storefront.core.config import get_settings
from storefront.core.logging import configure_logging
from storefront.domain.catalog import commands
from storefront.domain.orders.aggregates import OrderStatus
from storefront.persistence.models import OrderModel, ProductModel
from storefront.persistence.pg import init_db, session_scope

DEMO_CATALOG = [
    {
        "name": "Heavyweight Tee",
        "description": "Boxy fit, 280gsm cotton.",
        "price": 4900,
        "stock": {"S": 10, "M": 12, "L": 8, "XL": 4},
    },
    {
        "name": "Logo Hoodie",
        "description": "Brushed fleece with embroidered logo.",
        "price": 9500,
        "stock": {"S": 5, "M": 6, "L": 6, "XL": 2},
    },
    {
        "name": "Work Cap",
        "description": None,
        "price": 3200,
        "stock": {"M": 20},
    },
]


def seed_demo_catalog(session: Session) -> dict:
    existing = set(session.scalars(select(ProductModel.name)).all())
    created: list[str] = []
    for entry in DEMO_CATALOG:
        if entry["name"] in existing:
            continue
        product = commands.create_product(
            session,
            commands.CreateProductInput(
                name=entry["name"],
                description=entry["description"],
                price=entry["price"],
            ),
        )
        commands.update_variants_stock(
            session,
            product.id,
            [commands.VariantStockInput(size=size, stock=qty) for size, qty in entry["stock"].items()],
        )
        created.append(product.id)
    return {"created": created, "skipped": len(DEMO_CATALOG) - len(created)}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="KASIR storefront CLI")
    top = parser.add_subparsers(dest="command", required=True)

    top.add_parser("init-db", help="Create database tables")
    top.add_parser("seed-demo", help="Insert the demo catalog (idempotent)")

    serve = top.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)
    serve.add_argument("--reload", action="store_true")

    orders = top.add_parser("orders", help="List recent orders")
    orders.add_argument("--status", choices=[s.value for s in OrderStatus], default=None)
    orders.add_argument("--limit", type=int, default=20)

    return parser


def _list_orders(args: argparse.Namespace) -> list[dict]:
    with session_scope() as session:
        stmt = select(OrderModel).order_by(OrderModel.created_at.desc()).limit(args.limit)
        if args.status:
            stmt = stmt.where(OrderModel.status == args.status)
        return [
            {
                "id": row.id,
                "status": row.status,
                "total": row.total,
                "currency": row.currency,
                "items": len(row.items),
                "created_at": row.created_at.isoformat(),
            }
            for row in session.scalars(stmt).all()
        ]


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    parser = _build_parser()
    args = parser.parse_args(argv)

    init_db()
    if args.command == "init-db":
        print(json.dumps({"status": "ok"}))
        return 0
    if args.command == "seed-demo":
        with session_scope() as session:
            result = seed_demo_catalog(session)
        print(json.dumps(result, indent=2))
        return 0
    if args.command == "orders":
        print(json.dumps(_list_orders(args), indent=2, ensure_ascii=False))
        return 0
    if args.command == "serve":
        settings = get_settings()
        uvicorn.run(
            "storefront.main:app",
            host=args.host or settings.api_host,
            port=args.port or settings.api_port,
            reload=args.reload,
            log_level=settings.log_level.lower(),
        )
        return 0

    parser.error("unsupported command")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
