from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from storefront.core.security import AdminSession, require_admin
from storefront.domain.catalog import commands
from storefront.domain.catalog.queries import get_product, list_all_products, serialize_product
from storefront.domain.orders.aggregates import OrderStatus
from storefront.errors import InvalidInput
from storefront.persistence.models import OrderModel
from storefront.persistence.pg import get_session
from storefront.storage.images import ImageStore, get_image_store

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


class ToggleActiveRequest(BaseModel):
    is_active: bool


class VariantsStockRequest(BaseModel):
    variants: list[commands.VariantStockInput] = Field(min_length=1)


class ReorderImagesRequest(BaseModel):
    image_ids: list[str]


@router.get("/me")
def whoami(admin: AdminSession = Depends(require_admin)):
    return {"email": admin.email, "issued_at": admin.issued_at}


@router.get("/products")
def admin_list_products(session: Session = Depends(get_session)):
    products = list_all_products(session)
    return {"count": len(products), "products": [serialize_product(p) for p in products]}


@router.post("/products", status_code=201)
def admin_create_product(request: commands.CreateProductInput, session: Session = Depends(get_session)):
    product = commands.create_product(session, request)
    session.commit()
    return serialize_product(get_product(session, product.id))


@router.get("/products/{product_id}")
def admin_get_product(product_id: str, session: Session = Depends(get_session)):
    return serialize_product(get_product(session, product_id))


@router.patch("/products/{product_id}")
def admin_update_product(
    product_id: str,
    request: commands.UpdateProductInput,
    session: Session = Depends(get_session),
):
    product = commands.update_product(session, product_id, request)
    session.commit()
    return serialize_product(product)


@router.post("/products/{product_id}/active")
def admin_toggle_active(
    product_id: str,
    request: ToggleActiveRequest,
    session: Session = Depends(get_session),
):
    product = commands.toggle_product_active(session, product_id, request.is_active)
    session.commit()
    return {"success": True, "id": product.id, "is_active": product.is_active}


@router.delete("/products/{product_id}")
def admin_delete_product(
    product_id: str,
    session: Session = Depends(get_session),
    store: ImageStore = Depends(get_image_store),
):
    commands.delete_product(session, product_id, store=store)
    return {"success": True}


@router.put("/products/{product_id}/variants/{size}")
def admin_upsert_variant(
    product_id: str,
    size: str,
    stock: int = Query(ge=0),
    session: Session = Depends(get_session),
):
    variant = commands.upsert_variant(session, product_id, _variant_input(size, stock))
    session.commit()
    return {"id": variant.id, "product_id": variant.product_id, "size": variant.size, "stock": variant.stock}


def _variant_input(size: str, stock: int) -> commands.VariantStockInput:
    try:
        return commands.VariantStockInput(size=size, stock=stock)
    except ValueError as exc:
        raise InvalidInput(f"unsupported size: {size}") from exc


@router.put("/products/{product_id}/variants")
def admin_update_variants_stock(
    product_id: str,
    request: VariantsStockRequest,
    session: Session = Depends(get_session),
):
    variants = commands.update_variants_stock(session, product_id, request.variants)
    session.commit()
    return {
        "success": True,
        "variants": [{"size": v.size, "stock": v.stock} for v in variants],
    }


@router.post("/products/{product_id}/images", status_code=201)
async def admin_add_image(
    product_id: str,
    request: Request,
    filename: str | None = Query(default=None),
    content_type: str | None = Header(default=None),
    session: Session = Depends(get_session),
    store: ImageStore = Depends(get_image_store),
):
    content = await request.body()
    image = commands.add_product_image(
        session,
        store,
        product_id,
        content,
        content_type or commands.guess_content_type(filename),
    )
    session.commit()
    return {"id": image.id, "url": image.url, "position": image.position}


@router.delete("/images/{image_id}")
def admin_delete_image(
    image_id: str,
    session: Session = Depends(get_session),
    store: ImageStore = Depends(get_image_store),
):
    product_id = commands.delete_product_image(session, image_id, store=store)
    return {"success": True, "product_id": product_id}


@router.put("/products/{product_id}/images/order")
def admin_reorder_images(
    product_id: str,
    request: ReorderImagesRequest,
    session: Session = Depends(get_session),
):
    images = commands.reorder_product_images(session, product_id, request.image_ids)
    session.commit()
    return {"success": True, "images": [{"id": img.id, "position": img.position} for img in images]}


@router.get("/orders")
def admin_list_orders(
    status: OrderStatus | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000),
    session: Session = Depends(get_session),
):
    stmt = select(OrderModel).order_by(OrderModel.created_at.desc()).limit(limit)
    if status is not None:
        stmt = stmt.where(OrderModel.status == status.value)
    rows = list(session.scalars(stmt).all())
    return {
        "count": len(rows),
        "orders": [
            {
                "id": row.id,
                "status": row.status,
                "items": row.items,
                "total": row.total,
                "currency": row.currency,
                "stripe_session_id": row.stripe_session_id,
                "created_at": row.created_at.isoformat(),
                "paid_at": row.paid_at.isoformat() if row.paid_at else None,
            }
            for row in rows
        ],
    }
