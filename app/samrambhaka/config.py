import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    storage_backend: str
    storage_root: str
    public_base_url: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str

    csrf_enabled: bool
    email_verification_ttl_hours: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getbool(name: str, default: bool) -> bool:
    raw = _getenv(name)
    if not raw:
        return default
    return raw.lower() in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    env = _getenv("ENV", "development")
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=env,
        database_url=_getenv("DATABASE_URL", "sqlite:///samrambhaka.db"),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        storage_root=_getenv("STORAGE_ROOT", ""),
        public_base_url=_getenv("PUBLIC_BASE_URL", ""),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        # CSRF is off under ENV=test unless explicitly enabled
        csrf_enabled=_getbool("CSRF_ENABLED", env != "test"),
        email_verification_ttl_hours=int(_getenv("EMAIL_VERIFICATION_TTL_HOURS", "24") or 24),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "STORAGE_BACKEND": s.storage_backend,
        "STORAGE_ROOT": s.storage_root,
        "PUBLIC_BASE_URL": s.public_base_url,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        "CSRF_ENABLED": s.csrf_enabled,
        "EMAIL_VERIFICATION_TTL_HOURS": s.email_verification_ttl_hours,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # avatars, gallery images and post images are capped at 5MB each in the handlers
        "MAX_CONTENT_LENGTH": 10 * 1024 * 1024,
    }
