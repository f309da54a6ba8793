"""Pluggable storage backends.

Document artifacts are written to a blob store and referenced by key.  Two
backends are provided: S3 compatible object storage (AWS S3 or MinIO) and
the local filesystem.  Callers use the module-level ``storage_client`` which
implements the :class:`StorageBackend` interface regardless of the
underlying backend.

Every failure talking to the backend is raised as
:class:`errors.StorageError`.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from errors import StorageError

logger = logging.getLogger(__name__)


def _env(name: str, default: str | None = None) -> str | None:
    """Fetch configuration values using ``storage.foo`` style names.

    Environment variables use ``STORAGE__FOO`` to mirror nested configuration.
    """

    return os.getenv(name.replace(".", "__").upper(), default)


class StorageBackend:
    """Simple interface all storage backends must implement."""

    bucket_main: str | None = None
    signed_url_expire_seconds: int = int(
        _env("storage.signed_url_expire_seconds", "3600") or "3600"
    )
    upload_timeout_seconds: int = int(_env("storage.upload_timeout_seconds", "30") or "30")

    def put(self, key: str, body: bytes, content_type: str | None = None) -> str:  # pragma: no cover - interface only
        """Store ``body`` under ``key`` and return its location."""
        raise NotImplementedError

    def get(self, key: str) -> bytes:  # pragma: no cover - interface only
        raise NotImplementedError

    def delete(self, key: str) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def generate_presigned_url(  # pragma: no cover - interface only
        self, key: str, expires_in: int | None = None
    ) -> str | None:
        raise NotImplementedError


class MinIOBackend(StorageBackend):
    """Storage backend backed by AWS S3, MinIO or any S3 compatible service."""

    def __init__(self) -> None:
        self.endpoint = os.getenv("S3_ENDPOINT")
        self.public_endpoint = os.getenv("S3_PUBLIC_ENDPOINT")
        self.region = os.getenv("S3_REGION") or os.getenv("AWS_REGION")
        self.access_key = os.getenv("S3_ACCESS_KEY") or os.getenv(
            "S3_ACCESS_KEY_ID"
        )
        self.secret_key = os.getenv("S3_SECRET_KEY") or os.getenv(
            "S3_SECRET_ACCESS_KEY"
        )
        self.bucket_main = os.getenv("S3_BUCKET_MAIN") or os.getenv("S3_BUCKET")

        # Uploads must not stall a transition indefinitely.
        config = Config(
            signature_version="s3v4",
            connect_timeout=self.upload_timeout_seconds,
            read_timeout=self.upload_timeout_seconds,
            retries={"max_attempts": 2},
        )
        self.client = boto3.client(
            "s3",
            endpoint_url=self.endpoint,
            region_name=self.region,
            aws_access_key_id=self.access_key,
            aws_secret_access_key=self.secret_key,
            config=config,
        )

        if self.public_endpoint:
            self.public_client = boto3.client(
                "s3",
                endpoint_url=self.public_endpoint,
                region_name=self.region,
                aws_access_key_id=self.access_key,
                aws_secret_access_key=self.secret_key,
                config=config,
            )
        else:
            self.public_client = self.client

        self._ensure_bucket()

    def _ensure_bucket(self) -> None:
        """Create the main bucket on startup if it does not exist."""

        if not self.bucket_main:
            return
        try:
            existing = {
                b["Name"] for b in self.client.list_buckets().get("Buckets", [])
            }
            if self.bucket_main in existing:
                return
            self.client.create_bucket(Bucket=self.bucket_main)
            self.client.put_bucket_versioning(
                Bucket=self.bucket_main,
                VersioningConfiguration={"Status": "Enabled"},
            )
        except (BotoCoreError, ClientError) as exc:
            # A missing permission must not keep the application from starting.
            logger.warning("Could not verify bucket %s: %s", self.bucket_main, exc)

    def location(self, key: str) -> str:
        if self.endpoint:
            return f"{self.endpoint.rstrip('/')}/{self.bucket_main}/{key}"
        return f"https://{self.bucket_main}.s3.{self.region}.amazonaws.com/{key}"

    # -- basic wrappers -------------------------------------------------
    def put(self, key: str, body: bytes, content_type: str | None = None) -> str:
        kwargs: dict[str, Any] = {"Bucket": self.bucket_main, "Key": key, "Body": body}
        if content_type:
            kwargs["ContentType"] = content_type
        try:
            self.client.put_object(**kwargs)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Upload of {key} failed", key=key) from exc
        return self.location(key)

    def get(self, key: str) -> bytes:
        try:
            obj = self.client.get_object(Bucket=self.bucket_main, Key=key)
            return obj["Body"].read()
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Download of {key} failed", key=key) from exc

    def delete(self, key: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket_main, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Delete of {key} failed", key=key) from exc

    def generate_presigned_url(
        self, key: str, expires_in: int | None = None
    ) -> str | None:
        try:
            return self.public_client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket_main, "Key": key},
                ExpiresIn=expires_in or self.signed_url_expire_seconds,
            )
        except NoCredentialsError:
            base = self.public_endpoint or self.endpoint
            if base:
                return f"{base.rstrip('/')}/{self.bucket_main}/{key}"
            return None


class FSBackend(StorageBackend):
    """Filesystem storage served via an Nginx alias."""

    def __init__(self, base_path: str | None = None, public_url: str | None = None) -> None:
        self.base_path = Path(base_path or _env("storage.fs_path", "/tmp/docflow-files")).resolve()
        self.public_url = (public_url or _env("storage.fs_public_url", "/fs")).rstrip("/")
        self.base_path.mkdir(parents=True, exist_ok=True)

    # helper ------------------------------------------------------------
    def _full_path(self, key: str) -> Path:
        path = (self.base_path / key).resolve()
        if self.base_path not in path.parents:
            raise StorageError(f"Invalid storage key {key}", key=key)
        return path

    # -- basic wrappers -------------------------------------------------
    def put(self, key: str, body: bytes, content_type: str | None = None) -> str:
        path = self._full_path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "wb") as f:
                f.write(body)
        except OSError as exc:
            raise StorageError(f"Upload of {key} failed", key=key) from exc
        return f"{self.public_url}/{key}"

    def get(self, key: str) -> bytes:
        try:
            with open(self._full_path(key), "rb") as f:
                return f.read()
        except OSError as exc:
            raise StorageError(f"Download of {key} failed", key=key) from exc

    def delete(self, key: str) -> None:
        path = self._full_path(key)
        try:
            if path.exists():
                path.unlink()
        except OSError as exc:
            raise StorageError(f"Delete of {key} failed", key=key) from exc

    def generate_presigned_url(
        self, key: str, expires_in: int | None = None
    ) -> str | None:
        if not self._full_path(key).exists():
            return None
        return f"{self.public_url}/{key}"


# -- backend loader --------------------------------------------------------
def _load_backend() -> StorageBackend:
    backend_type = (_env("storage.type", "minio") or "minio").lower()
    if backend_type == "fs":
        return FSBackend()
    return MinIOBackend()


# Global instance used throughout the app
storage_client: StorageBackend = _load_backend()


def generate_presigned_url(key: str | None, expires_in: int | None = None) -> str | None:
    if not key:
        return None
    return storage_client.generate_presigned_url(key, expires_in)


__all__ = [
    "StorageBackend",
    "MinIOBackend",
    "FSBackend",
    "storage_client",
    "generate_presigned_url",
]
