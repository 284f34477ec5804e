from __future__ import annotations

import io
import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

import urllib3
from minio import Minio
from minio.error import S3Error

from storefront.core.config import get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredImage:
    object_key: str
    url: str
    backend: str


class ImageStore:
    backend = "base"

    def put(self, object_key: str, data: bytes, content_type: str) -> StoredImage:  # pragma: no cover - interface
        raise NotImplementedError

    def remove(self, object_key: str) -> None:  # pragma: no cover - interface
        raise NotImplementedError


class LocalImageStore(ImageStore):
    backend = "local"

    def __init__(self, root: Path, base_url: str):
        self.root = root
        self.base_url = base_url.rstrip("/")
        self.root.mkdir(parents=True, exist_ok=True)

    def put(self, object_key: str, data: bytes, content_type: str) -> StoredImage:
        path = self.root / object_key
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return StoredImage(object_key=object_key, url=f"{self.base_url}/{object_key}", backend=self.backend)

    def remove(self, object_key: str) -> None:
        (self.root / object_key).unlink(missing_ok=True)


def _public_read_policy(bucket: str) -> str:
    return json.dumps(
        {
            "Version": "2012-10-17",
            "Statement": [
                {
                    "Effect": "Allow",
                    "Principal": {"AWS": ["*"]},
                    "Action": ["s3:GetObject"],
                    "Resource": [f"arn:aws:s3:::{bucket}/*"],
                }
            ],
        }
    )


class MinioImageStore(ImageStore):
    backend = "minio"

    def __init__(
        self,
        endpoint: str,
        access_key: str,
        secret_key: str,
        bucket: str,
        secure: bool = False,
        public_url: str | None = None,
        timeout_seconds: float = 3.0,
    ):
        # Bounded timeouts and a single retry so an unreachable server fails fast.
        http_client = urllib3.PoolManager(
            timeout=urllib3.Timeout(connect=timeout_seconds, read=timeout_seconds),
            retries=urllib3.Retry(total=1, backoff_factor=0.2),
        )
        self.client = Minio(
            endpoint,
            access_key=access_key,
            secret_key=secret_key,
            secure=secure,
            http_client=http_client,
        )
        self.bucket = bucket
        scheme = "https" if secure else "http"
        self.public_url = (public_url or f"{scheme}://{endpoint}").rstrip("/")
        self._ensure_bucket()

    def _ensure_bucket(self) -> None:
        found = self.client.bucket_exists(self.bucket)
        if not found:
            self.client.make_bucket(self.bucket)
            self.client.set_bucket_policy(self.bucket, _public_read_policy(self.bucket))

    def put(self, object_key: str, data: bytes, content_type: str) -> StoredImage:
        self.client.put_object(
            bucket_name=self.bucket,
            object_name=object_key,
            data=io.BytesIO(data),
            length=len(data),
            content_type=content_type,
        )
        return StoredImage(
            object_key=object_key,
            url=f"{self.public_url}/{self.bucket}/{object_key}",
            backend=self.backend,
        )

    def remove(self, object_key: str) -> None:
        self.client.remove_object(self.bucket, object_key)


def build_image_store() -> ImageStore:
    settings = get_settings()
    if settings.image_backend == "minio":
        try:
            return MinioImageStore(
                endpoint=settings.minio_endpoint,
                access_key=settings.minio_access_key,
                secret_key=settings.minio_secret_key,
                bucket=settings.minio_bucket,
                secure=settings.minio_secure,
                public_url=settings.minio_public_url,
                timeout_seconds=settings.minio_timeout_seconds,
            )
        except S3Error as exc:
            logger.warning("minio bucket setup failed, falling back to local image storage: %s", exc)
        except Exception as exc:
            logger.warning("minio unavailable, falling back to local image storage: %s", exc)
    return LocalImageStore(settings.images_dir, settings.images_base_url)


@lru_cache
def get_image_store() -> ImageStore:
    return build_image_store()
