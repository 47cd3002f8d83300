import secrets

from flask import Request, current_app, jsonify, request, session

CSRF_HEADER = "X-CSRF-Token"
UNGUARDED_PREFIXES = ("/static/", "/health", "/healthz", "/media/")
_MUTATING_METHODS = ("POST", "PUT", "PATCH", "DELETE")


def ensure_csrf_token() -> str:
    """Ensure a CSRF token exists in the session and return it."""
    token = session.get("csrf_token")
    if not token:
        token = secrets.token_urlsafe(32)
        session["csrf_token"] = token
    return token


def validate_csrf(req: Request) -> bool:
    """Validate CSRF token from header, form, or JSON body."""
    token = req.headers.get(CSRF_HEADER) or req.form.get("csrf_token")

    if not token and req.is_json:
        json_data = req.get_json(silent=True) or {}
        if isinstance(json_data, dict):
            token = json_data.get("csrf_token")

    expected = session.get("csrf_token")
    return bool(token and expected and secrets.compare_digest(str(token), str(expected)))


def csrf_guard():
    """
    before_request hook. Every session gets a token; mutating requests must echo it
    unless CSRF_ENABLED is off. Auth endpoints hand the token out, so they pass.
    """
    if request.path.startswith(UNGUARDED_PREFIXES):
        return None
    ensure_csrf_token()
    session.permanent = True
    if not current_app.config.get("CSRF_ENABLED"):
        return None
    if request.method not in _MUTATING_METHODS:
        return None
    if (request.endpoint or "").startswith("auth."):
        return None
    if not validate_csrf(request):
        return jsonify({"error": "CSRF token missing or invalid."}), 400
    return None
