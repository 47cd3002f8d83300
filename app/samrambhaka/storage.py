from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import BinaryIO

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    pass


class Storage:
    """
    Media store for avatars, post images and business galleries.
    Keys look like `avatars/<user id>/<millis>-<hex>.png`; `public_url` is what
    ends up in profile.avatar_url / post.image_url / business_images.image_url.
    """

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        raise NotImplementedError

    def open(self, key: str) -> BinaryIO:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def public_url(self, key: str) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class LocalStorage(Storage):
    """Files under `root`, served back by the app at /media/<key>."""

    root: Path
    base_url: str = "/media"

    def _path(self, key: str) -> Path:
        root = self.root.resolve()
        p = (root / key.lstrip("/").replace("\\", "/")).resolve()
        if root not in p.parents:
            raise StorageError(f"Invalid storage key: {key}")
        return p

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        p = self._path(key)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)

    def open(self, key: str) -> BinaryIO:
        return self._path(key).open("rb")

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def public_url(self, key: str) -> str:
        return f"{self.base_url.rstrip('/')}/{key.lstrip('/')}"


@lru_cache(maxsize=4)
def _s3_client(endpoint: str, region: str, access_key_id: str, secret_access_key: str):
    return boto3.client(
        "s3",
        endpoint_url=f"https://{endpoint}" if endpoint else None,
        region_name=region or None,
        aws_access_key_id=access_key_id,
        aws_secret_access_key=secret_access_key,
    )


@dataclass(frozen=True)
class S3Storage(Storage):
    """S3-compatible bucket (DigitalOcean Spaces, AWS). Objects are public-read."""

    endpoint: str
    region: str
    bucket: str
    access_key_id: str
    secret_access_key: str
    public_base_url: str = ""

    def _client(self):
        return _s3_client(self.endpoint, self.region, self.access_key_id, self.secret_access_key)

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        extra: dict[str, object] = {"ACL": "public-read", "CacheControl": "public, max-age=86400"}
        if content_type:
            extra["ContentType"] = content_type
        try:
            self._client().put_object(Bucket=self.bucket, Key=key, Body=data, **extra)
        except (BotoCoreError, ClientError) as e:
            logger.error("S3 put_object failed for key=%s: %s", key, e)
            raise StorageError(f"Upload failed: {e}") from e

    def open(self, key: str) -> BinaryIO:
        try:
            obj = self._client().get_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Read failed: {e}") from e
        return obj["Body"]  # type: ignore[return-value]

    def exists(self, key: str) -> bool:
        try:
            self._client().head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise StorageError(f"Lookup failed: {e}") from e
        return True

    def delete(self, key: str) -> None:
        try:
            self._client().delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            logger.error("S3 delete_object failed for key=%s: %s", key, e)
            raise StorageError(f"Delete failed: {e}") from e

    def public_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/{key.lstrip('/')}"
        return f"https://{self.bucket}.{self.endpoint}/{key.lstrip('/')}"


def storage_from_config(config: dict) -> Storage:
    backend = (config.get("STORAGE_BACKEND") or "local").strip().lower()
    if backend == "s3":
        return S3Storage(
            endpoint=(config.get("S3_ENDPOINT") or "").strip(),
            region=(config.get("S3_REGION") or "nyc3").strip(),
            bucket=(config.get("S3_BUCKET") or "").strip(),
            access_key_id=(config.get("S3_ACCESS_KEY_ID") or "").strip(),
            secret_access_key=(config.get("S3_SECRET_ACCESS_KEY") or "").strip(),
            public_base_url=(config.get("PUBLIC_BASE_URL") or "").strip(),
        )
    root_raw = (config.get("STORAGE_ROOT") or "").strip()
    root = Path(root_raw) if root_raw else Path(os.getcwd()) / "storage"
    return LocalStorage(root=root)
