from __future__ import annotations

import base64
import binascii
import hmac
import json
from datetime import datetime
from hashlib import sha256

from fastapi import Cookie, Depends, Header
from pydantic import BaseModel, ValidationError

from storefront.core.clock import Clock, get_clock
from storefront.core.config import get_settings
from storefront.errors import Unauthorized

SESSION_COOKIE_NAME = "session"


class AdminSession(BaseModel):
    """Signed admin login, carried in the ``session`` cookie."""

    email: str
    issued_at: int

    def age_seconds(self, now: datetime) -> int:
        return int(now.timestamp()) - self.issued_at

    def is_expired(self, now: datetime, max_age_seconds: int) -> bool:
        age = self.age_seconds(now)
        return age < 0 or age > max_age_seconds


def _token_key() -> bytes:
    return get_settings().session_signing_secret.encode("utf-8")


def create_session_token(session: AdminSession) -> str:
    body = json.dumps(session.model_dump(), separators=(",", ":"), sort_keys=True).encode("utf-8")
    mac = hmac.new(_token_key(), body, sha256).digest()
    return base64.urlsafe_b64encode(body + mac).decode("ascii")


def decode_session_token(token: str) -> AdminSession:
    try:
        raw = base64.urlsafe_b64decode(token.encode("ascii"))
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise Unauthorized("invalid session encoding") from exc

    if len(raw) <= 32:
        raise Unauthorized("invalid session body")

    body, mac = raw[:-32], raw[-32:]
    expected = hmac.new(_token_key(), body, sha256).digest()
    if not hmac.compare_digest(mac, expected):
        raise Unauthorized("session signature mismatch")

    try:
        return AdminSession.model_validate_json(body)
    except ValidationError as exc:
        raise Unauthorized("invalid session body") from exc


def verify_admin_session(token: str | None, now: datetime, max_age_seconds: int | None = None) -> AdminSession:
    settings = get_settings()
    if not settings.admin_email:
        raise Unauthorized("admin access is not configured")
    if not token:
        raise Unauthorized("Unauthorized")

    session = decode_session_token(token)
    limit = settings.admin_session_max_seconds if max_age_seconds is None else max_age_seconds
    if session.is_expired(now, limit):
        raise Unauthorized("session expired")
    if not hmac.compare_digest(session.email.lower(), settings.admin_email.lower()):
        raise Unauthorized("Unauthorized")
    return session


def authenticate_admin(email: str, password: str, now: datetime) -> AdminSession:
    settings = get_settings()
    if not settings.admin_email or not settings.admin_password:
        raise Unauthorized("admin access is not configured")
    email_ok = hmac.compare_digest(email.strip().lower(), settings.admin_email.lower())
    password_ok = hmac.compare_digest(password.encode("utf-8"), settings.admin_password.encode("utf-8"))
    if not (email_ok and password_ok):
        raise Unauthorized("invalid credentials")
    return AdminSession(email=settings.admin_email, issued_at=int(now.timestamp()))


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthorized("invalid authorization header")
    return token.strip()


def require_admin(
    session: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
    authorization: str | None = Header(default=None),
    clock: Clock = Depends(get_clock),
) -> AdminSession:
    token = _bearer_token(authorization) or session
    return verify_admin_session(token, now=clock())
