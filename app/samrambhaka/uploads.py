from __future__ import annotations

import hashlib
import secrets
from datetime import datetime

from flask import current_app
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from app.samrambhaka.constants import ALLOWED_IMAGE_TYPES, MAX_IMAGE_BYTES
from app.samrambhaka.errors import ValidationError
from app.samrambhaka.storage import storage_from_config


def file_digest_and_bytes(file_bytes: bytes) -> tuple[str, int]:
    """Compute SHA256 digest and size."""
    h = hashlib.sha256()
    h.update(file_bytes)
    return (h.hexdigest(), len(file_bytes))


def read_image_upload(file: FileStorage | None) -> tuple[bytes, str, str]:
    """
    Validate an uploaded image. Returns (bytes, content_type, extension).
    """
    if file is None or not (file.filename or "").strip():
        raise ValidationError("No file uploaded.")
    content_type = (file.mimetype or "").lower()
    ext = ALLOWED_IMAGE_TYPES.get(content_type)
    if not ext:
        raise ValidationError("Only JPEG, PNG, GIF or WebP images are allowed.")
    data = file.read()
    if not data:
        raise ValidationError("Uploaded file is empty.")
    if len(data) > MAX_IMAGE_BYTES:
        raise ValidationError("Image must be less than 5MB")
    return data, content_type, ext


def build_image_key(prefix: str, ext: str, now: datetime | None = None) -> str:
    """Key: <prefix>/<epoch millis>-<random hex>.<ext>."""
    now = now or datetime.utcnow()
    millis = int(now.timestamp() * 1000)
    safe_prefix = "/".join(secure_filename(part) or "x" for part in prefix.strip("/").split("/"))
    return f"{safe_prefix}/{millis}-{secrets.token_hex(4)}.{ext}"


def store_image(prefix: str, file: FileStorage | None) -> tuple[str, str]:
    """Validate and store an image upload. Returns (storage_key, public_url)."""
    data, content_type, ext = read_image_upload(file)
    key = build_image_key(prefix, ext)
    storage = storage_from_config(current_app.config)
    storage.put_bytes(key, data, content_type=content_type)
    sha256, size_bytes = file_digest_and_bytes(data)
    current_app.logger.info("Stored image key=%s size=%s sha256=%s", key, size_bytes, sha256[:12])
    return key, storage.public_url(key)
