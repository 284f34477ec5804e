from __future__ import annotations

import logging
import mimetypes
import secrets
import time

from pydantic import BaseModel, Field, field_validator
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from storefront.domain.catalog.queries import get_product, get_variant
from storefront.errors import ImageNotFound, InvalidInput
from storefront.persistence.models import ProductImageModel, ProductModel, ProductVariantModel
from storefront.storage.images import ImageStore

logger = logging.getLogger(__name__)

AVAILABLE_SIZES = ("S", "M", "L", "XL")
ALLOWED_IMAGE_TYPES = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}
_REQUIRED_PRODUCT_FIELDS = frozenset({"name", "price", "is_active"})


class CreateProductInput(BaseModel):
    name: str = Field(min_length=1)
    description: str | None = None
    price: int = Field(ge=0, description="int cents")
    image_url: str | None = None
    is_active: bool = True


class UpdateProductInput(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    price: int | None = Field(default=None, ge=0, description="int cents")
    image_url: str | None = None
    is_active: bool | None = None


class VariantStockInput(BaseModel):
    size: str
    stock: int = Field(ge=0)

    @field_validator("size")
    @classmethod
    def _known_size(cls, value: str) -> str:
        if value not in AVAILABLE_SIZES:
            raise ValueError(f"unsupported size: {value}")
        return value


def create_product(session: Session, data: CreateProductInput) -> ProductModel:
    product = ProductModel(
        name=data.name,
        description=data.description or None,
        price=data.price,
        image_url=data.image_url or None,
        is_active=data.is_active,
    )
    session.add(product)
    session.flush()
    logger.info("product created: id=%s name=%s", product.id, product.name)
    return product


def update_product(session: Session, product_id: str, data: UpdateProductInput) -> ProductModel:
    product = get_product(session, product_id)
    for key, value in data.model_dump(exclude_unset=True).items():
        if value is None and key in _REQUIRED_PRODUCT_FIELDS:
            continue
        setattr(product, key, value)
    session.flush()
    return product


def toggle_product_active(session: Session, product_id: str, is_active: bool) -> ProductModel:
    product = get_product(session, product_id)
    product.is_active = is_active
    session.flush()
    return product


def delete_product(session: Session, product_id: str, store: ImageStore | None = None) -> None:
    product = get_product(session, product_id)
    session.refresh(product, ["variants", "images"])
    object_keys = [img.object_key for img in product.images if img.object_key]

    # Variants and images cascade from the relationship and are deleted
    # before the product row. Stored objects go only once the rows are gone.
    session.delete(product)
    session.commit()

    if store is not None:
        for key in object_keys:
            _remove_object(store, key)
    logger.info("product deleted: id=%s images_removed=%s", product_id, len(object_keys))


def upsert_variant(session: Session, product_id: str, data: VariantStockInput) -> ProductVariantModel:
    get_product(session, product_id)
    variant = get_variant(session, product_id, data.size)
    if variant is None:
        variant = ProductVariantModel(product_id=product_id, size=data.size, stock=data.stock)
        session.add(variant)
    else:
        variant.stock = data.stock
    session.flush()
    return variant


def update_variants_stock(
    session: Session, product_id: str, variants: list[VariantStockInput]
) -> list[ProductVariantModel]:
    return [upsert_variant(session, product_id, item) for item in variants]


def _object_key(content_type: str) -> str:
    ext = ALLOWED_IMAGE_TYPES[content_type]
    return f"products/{int(time.time() * 1000)}-{secrets.token_hex(4)}.{ext}"


def _remove_object(store: ImageStore, object_key: str) -> None:
    try:
        store.remove(object_key)
    except Exception as exc:
        logger.warning("failed to remove stored image %s: %s", object_key, exc)


def add_product_image(
    session: Session,
    store: ImageStore,
    product_id: str,
    content: bytes,
    content_type: str | None,
) -> ProductImageModel:
    get_product(session, product_id)
    content_type = (content_type or "").split(";", 1)[0].strip().lower()
    if content_type not in ALLOWED_IMAGE_TYPES:
        raise InvalidInput("Invalid file type. Allowed: JPEG, PNG, WebP, GIF")
    if not content:
        raise InvalidInput("No file provided")

    stored = store.put(_object_key(content_type), content, content_type)

    max_position = session.scalar(
        select(func.max(ProductImageModel.position)).where(ProductImageModel.product_id == product_id)
    )
    image = ProductImageModel(
        product_id=product_id,
        url=stored.url,
        object_key=stored.object_key,
        position=0 if max_position is None else max_position + 1,
    )
    session.add(image)
    session.flush()
    return image


def delete_product_image(session: Session, image_id: str, store: ImageStore | None = None) -> str:
    image = session.get(ProductImageModel, image_id)
    if image is None:
        raise ImageNotFound("Image not found")
    product_id = image.product_id
    object_key = image.object_key
    session.delete(image)
    session.commit()
    if store is not None and object_key:
        _remove_object(store, object_key)
    return product_id


def reorder_product_images(session: Session, product_id: str, image_ids: list[str]) -> list[ProductImageModel]:
    product = get_product(session, product_id)
    by_id = {img.id: img for img in product.images}
    unknown = [image_id for image_id in image_ids if image_id not in by_id]
    if unknown:
        raise InvalidInput(f"images do not belong to product {product_id}: {', '.join(unknown)}")
    if len(set(image_ids)) != len(image_ids):
        raise InvalidInput("duplicate image ids in reorder request")

    for position, image_id in enumerate(image_ids):
        by_id[image_id].position = position
    session.flush()
    return sorted(by_id.values(), key=lambda img: img.position)


def guess_content_type(filename: str | None) -> str | None:
    if not filename:
        return None
    return mimetypes.guess_type(filename)[0]
