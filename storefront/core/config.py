from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SESSION_SIGNING_SECRET = "kasir-dev-session-secret-change-me"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_prefix="SHOP_", extra="ignore")

    app_name: str = "KASIR Storefront"
    env: str = "dev"
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    log_level: str = "INFO"

    database_url: str = "sqlite+pysqlite:///./storefront.db"
    site_url: str | None = None
    currency: str = "usd"

    # Payment backend: stripe | fake
    payment_backend: str = "stripe"
    stripe_secret_key: str | None = None
    stripe_webhook_secret: str | None = None
    stripe_webhook_tolerance_seconds: int = 300

    admin_email: str | None = None
    admin_password: str | None = None
    session_signing_secret: str = Field(
        default=DEFAULT_SESSION_SIGNING_SECRET,
        description="HMAC key for admin session tokens",
    )
    admin_session_max_hours: int = 24

    # Image backend: minio | local
    image_backend: str = "minio"
    images_dir: Path = Path("/tmp/storefront/images")
    images_base_url: str = "/media"
    minio_endpoint: str = "minio:9000"
    minio_access_key: str = "minioadmin"
    minio_secret_key: str = "minioadmin"
    minio_bucket: str = "kasir-products"
    minio_secure: bool = False
    minio_public_url: str | None = None
    minio_timeout_seconds: float = 3.0

    @property
    def admin_session_max_seconds(self) -> int:
        return self.admin_session_max_hours * 60 * 60

    def model_post_init(self, __context) -> None:
        if self.env.lower() == "dev":
            return
        if self.session_signing_secret == DEFAULT_SESSION_SIGNING_SECRET:
            raise ValueError(
                "insecure default secrets are not allowed outside dev mode; set env vars: "
                "SHOP_SESSION_SIGNING_SECRET"
            )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
