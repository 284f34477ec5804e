from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from storefront.api.routes_admin import router as admin_router
from storefront.api.routes_auth import router as auth_router
from storefront.api.routes_catalog import router as catalog_router
from storefront.api.routes_checkout import router as checkout_router
from storefront.api.routes_webhooks import router as webhooks_router
from storefront.core.config import get_settings
from storefront.core.logging import configure_logging
from storefront.errors import StoreError
from storefront.persistence.pg import init_db
from storefront.storage.images import ImageStore, LocalImageStore, get_image_store

configure_logging()
logger = logging.getLogger(__name__)
settings = get_settings()

app = FastAPI(title=settings.app_name)


@app.on_event("startup")
def on_startup() -> None:
    init_db()
    logger.info("storefront ready: payment_backend=%s image_backend=%s", settings.payment_backend, settings.image_backend)


@app.exception_handler(StoreError)
async def store_error_handler(_: Request, exc: StoreError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(_: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "detail": jsonable_errors(exc)},
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [{"loc": list(err.get("loc", ())), "msg": err.get("msg", "")} for err in exc.errors()]


@app.get("/healthz")
def healthz() -> dict:
    return {"status": "ok"}


app.include_router(catalog_router)
app.include_router(checkout_router)
app.include_router(webhooks_router)
app.include_router(auth_router)
app.include_router(admin_router)


def mount_media(target: FastAPI, store: ImageStore) -> None:
    # MinIO serves its own URLs; a local store, configured or fallen back to, is served here.
    if not isinstance(store, LocalImageStore):
        return
    store.root.mkdir(parents=True, exist_ok=True)
    target.mount(store.base_url, StaticFiles(directory=store.root), name="media")


mount_media(app, get_image_store())
