from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from storefront.core.clock import Clock, get_clock
from storefront.core.config import get_settings
from storefront.core.security import SESSION_COOKIE_NAME, authenticate_admin, create_session_token

router = APIRouter(tags=["auth"])


class SessionCreateRequest(BaseModel):
    email: str
    password: str


@router.post("/api/auth/session")
def create_admin_session(request: SessionCreateRequest, clock: Clock = Depends(get_clock)):
    settings = get_settings()
    admin = authenticate_admin(request.email, request.password, now=clock())
    response = JSONResponse(content={"success": True, "email": admin.email})
    response.set_cookie(
        SESSION_COOKIE_NAME,
        create_session_token(admin),
        max_age=settings.admin_session_max_seconds,
        httponly=True,
        secure=settings.env.lower() != "dev",
        samesite="lax",
        path="/",
    )
    return response


@router.delete("/api/auth/session")
def delete_admin_session():
    response = JSONResponse(content={"success": True})
    response.delete_cookie(SESSION_COOKIE_NAME, path="/")
    return response
