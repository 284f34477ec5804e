from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.domain.catalog.queries import get_product, list_active_products, serialize_product
from storefront.persistence.pg import get_session

router = APIRouter(tags=["catalog"])


@router.get("/products")
def list_products(session: Session = Depends(get_session)):
    products = list_active_products(session)
    return {"count": len(products), "products": [serialize_product(p) for p in products]}


@router.get("/products/{product_id}")
def get_active_product(product_id: str, session: Session = Depends(get_session)):
    return serialize_product(get_product(session, product_id, active_only=True))
