from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any
from urllib.parse import urlparse

from flask import g, request

from app.samrambhaka.models import User

_EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
_USERNAME_RE = re.compile(r"^[a-z0-9_.]{3,30}$")


def current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def optional_user() -> User | None:
    return getattr(g, "current_user", None)


def request_payload() -> dict[str, Any]:
    """JSON body when present, otherwise form fields."""
    if request.is_json:
        data = request.get_json(silent=True)
        return data if isinstance(data, dict) else {}
    return request.form.to_dict()


def clean_str(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def parse_int(value: Any, default: int | None = None) -> int | None:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def parse_bool(value: Any, default: bool = False) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def parse_limit(raw: Any, default: int, maximum: int) -> int:
    n = parse_int(raw, default) or default
    return max(1, min(n, maximum))


def parse_date(s: Any) -> date | None:
    """Parse YYYY-MM-DD; None for blanks. Raises ValueError on junk."""
    if not s:
        return None
    s = str(s).strip()
    if not s:
        return None
    return date.fromisoformat(s)


def isoformat(value: datetime | date | None) -> str | None:
    return value.isoformat() if value else None


LIKE_ESCAPE = "\\"


def contains_pattern(term: str) -> str:
    """Lower-cased `%term%` for `.like(..., escape=LIKE_ESCAPE)`; `%` and `_` in the term match literally."""
    escaped = term.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email or ""))


def is_valid_username(username: str) -> bool:
    return bool(_USERNAME_RE.match(username or ""))


def is_valid_url(url: str) -> bool:
    parsed = urlparse(url or "")
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)
