from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from storefront.errors import ProductNotFound
from storefront.persistence.models import ProductModel, ProductVariantModel


def _with_children(stmt):
    return stmt.options(selectinload(ProductModel.variants), selectinload(ProductModel.images))


def list_active_products(session: Session) -> list[ProductModel]:
    stmt = (
        select(ProductModel)
        .where(ProductModel.is_active.is_(True))
        .order_by(ProductModel.created_at.desc())
    )
    return list(session.scalars(_with_children(stmt)).all())


def list_all_products(session: Session) -> list[ProductModel]:
    stmt = select(ProductModel).order_by(ProductModel.created_at.desc())
    return list(session.scalars(_with_children(stmt)).all())


def get_product(session: Session, product_id: str, active_only: bool = False) -> ProductModel:
    stmt = select(ProductModel).where(ProductModel.id == product_id)
    if active_only:
        stmt = stmt.where(ProductModel.is_active.is_(True))
    product = session.scalar(_with_children(stmt))
    if product is None:
        raise ProductNotFound(f"Product not found: {product_id}")
    return product


def get_variant(session: Session, product_id: str, size: str) -> ProductVariantModel | None:
    return session.scalar(
        select(ProductVariantModel)
        .where(ProductVariantModel.product_id == product_id)
        .where(ProductVariantModel.size == size)
    )


def serialize_product(product: ProductModel, include_children: bool = True) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": product.id,
        "name": product.name,
        "description": product.description,
        "price": product.price,
        "image_url": product.cover_image_url,
        "is_active": product.is_active,
        "created_at": product.created_at.isoformat(),
        "updated_at": product.updated_at.isoformat(),
    }
    if include_children:
        out["variants"] = [
            {"id": v.id, "size": v.size, "stock": v.stock} for v in product.variants
        ]
        out["images"] = [
            {"id": img.id, "url": img.url, "position": img.position} for img in product.images
        ]
    return out
