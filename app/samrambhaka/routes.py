from flask import Blueprint, abort, current_app, send_file

from app.samrambhaka.storage import LocalStorage, StorageError, storage_from_config

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    return {"name": "samrambhaka", "api": "/api", "auth": "/auth", "admin": "/admin"}


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for k8s/DO probes. No DB access, minimal overhead.
    """
    return "ok", 200


@bp.get("/media/<path:key>")
def media(key: str):
    """Serve uploads from the local storage backend (S3 serves its own public URLs)."""
    storage = storage_from_config(current_app.config)
    if not isinstance(storage, LocalStorage):
        abort(404)
    try:
        if not storage.exists(key):
            abort(404)
        return send_file(storage.open(key), download_name=key.rsplit("/", 1)[-1], max_age=86400)
    except StorageError:
        abort(404)
