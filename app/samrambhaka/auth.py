from __future__ import annotations

import secrets
import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, jsonify, request, session, url_for
from werkzeug.security import check_password_hash, generate_password_hash

from app.samrambhaka.audit import record_event
from app.samrambhaka.constants import PHONE_SIGNUP_EMAIL_DOMAIN
from app.samrambhaka.db import db_session
from app.samrambhaka.errors import AuthError, ConflictError, ForbiddenError, RateLimitError, ServiceError, ValidationError
from app.samrambhaka.models import User
from app.samrambhaka.modules.moderation.service import active_suspension
from app.samrambhaka.modules.profiles.models import Profile
from app.samrambhaka.modules.profiles.service import ensure_profile, profile_to_dict, username_taken
from app.samrambhaka.rbac import is_admin, require_login, user_permission_keys
from app.samrambhaka.security import ensure_csrf_token
from app.samrambhaka.utils import clean_str, current_user, is_valid_email, is_valid_username, request_payload

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds
_VERIFICATION_RESEND_SECONDS = 60
MIN_PASSWORD_LENGTH = 8


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    Blocked profiles are signed out.
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    if request.path.startswith(("/static/", "/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    try:
        s = db_session()
        user = s.get(User, int(user_id))
        if not user or not user.is_active or (user.profile is not None and user.profile.is_blocked):
            session.pop("user_id", None)
            g.current_user = None
            return
        g.current_user = user
    except Exception as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("user_id", None)
        g.current_user = None


def user_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "profile": profile_to_dict(user.profile, viewer_id=user.id) if user.profile else None,
        "roles": sorted(r.key for r in user.roles),
        "permissions": user_permission_keys(user),
        "is_admin": is_admin(user),
    }


def _is_phone_signup(email: str) -> bool:
    return email.endswith(PHONE_SIGNUP_EMAIL_DOMAIN)


def _verification_link(token: str) -> str:
    return url_for("auth.verify_email_confirm", token=token, _external=True)


def _issue_verification(s, profile: Profile, email: str, actor: User) -> str:
    """Store a fresh verification token for `email` on the profile and return the link."""
    token = secrets.token_urlsafe(32)
    profile.email = email
    profile.email_verified = False
    profile.email_verification_token = token
    profile.email_verification_sent_at = datetime.utcnow()
    link = _verification_link(token)
    current_app.logger.info("Email verification link issued profile_id=%s email=%s link=%s", profile.id, email, link)
    record_event(s, actor=actor, action="auth.verification_sent", entity_type="Profile", entity_id=str(profile.id), metadata={"email": email})
    return link


def _verification_response(link: str) -> dict:
    out: dict = {"success": True, "message": "Verification email sent"}
    if current_app.config.get("ENV") not in ("prod", "production"):
        out["debug_link"] = link
    return out


@bp.get("/csrf")
def csrf():
    return jsonify({"csrf_token": ensure_csrf_token()})


@bp.post("/signup")
def signup():
    payload = request_payload()
    email = (clean_str(payload.get("email")) or "").lower()
    password = payload.get("password") or ""
    full_name = clean_str(payload.get("full_name"))
    username = (clean_str(payload.get("username")) or "").lower() or None

    errors: list[str] = []
    if not is_valid_email(email):
        errors.append("A valid email is required.")
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    if not full_name:
        errors.append("Full name is required.")
    if username and not is_valid_username(username):
        errors.append("Username must be 3-30 characters: lowercase letters, numbers, '_' or '.'.")
    if errors:
        raise ValidationError(errors)

    s = db_session()
    if s.query(User).filter(User.email == email).one_or_none():
        raise ConflictError("An account with this email already exists.")
    if username and username_taken(s, username):
        raise ConflictError("Username is already taken.")

    now = datetime.utcnow()
    user = User(email=email, password_hash=generate_password_hash(password), is_active=True, created_at=now, last_login_at=now)
    s.add(user)
    s.flush()
    profile = Profile(
        id=user.id,
        full_name=full_name,
        username=username,
        phone_number=clean_str(payload.get("phone_number")),
        is_online=True,
        last_seen=now,
        created_at=now,
        updated_at=now,
    )
    s.add(profile)
    s.flush()

    out: dict = {}
    if not _is_phone_signup(email):
        link = _issue_verification(s, profile, email, user)
        if current_app.config.get("ENV") not in ("prod", "production"):
            out["debug_link"] = link
    record_event(s, actor=user, action="auth.signup", entity_type="User", entity_id=str(user.id))
    s.commit()

    session["user_id"] = user.id
    s.refresh(user)
    out.update({"user": user_to_dict(user), "csrf_token": ensure_csrf_token()})
    return jsonify(out), 201


def _authenticate(*, admin_only: bool):
    payload = request_payload()
    email = (clean_str(payload.get("email")) or "").lower()
    password = payload.get("password") or ""
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        raise RateLimitError("Too many login attempts. Please wait 5 minutes.")
    _record_attempt(ip)

    try:
        s = db_session()
        user = s.query(User).filter(User.email == email).one_or_none()
        if not user or not user.is_active or not check_password_hash(user.password_hash, password):
            record_event(
                s,
                actor=None,
                action="auth.login_failed",
                entity_type="User",
                entity_id=email,
                reason="Invalid credentials",
                metadata={"email": email, "admin": admin_only},
            )
            s.commit()
            raise AuthError("Invalid credentials.")

        profile = ensure_profile(s, user)
        if profile.is_blocked:
            s.commit()
            raise ForbiddenError("Your account has been blocked.", details={"reason": profile.blocked_reason})
        suspension = active_suspension(s, user.id)
        if suspension:
            s.commit()
            raise ForbiddenError(
                "Your account is suspended.",
                details={
                    "reason": suspension.reason,
                    "expires_at": suspension.expires_at.isoformat() if suspension.expires_at else None,
                },
            )
        if admin_only and not is_admin(user):
            session.pop("user_id", None)
            record_event(s, actor=user, action="auth.admin_login_denied", entity_type="User", entity_id=str(user.id))
            s.commit()
            raise ForbiddenError("Unauthorized: Admin access required")

        now = datetime.utcnow()
        session["user_id"] = user.id
        _login_attempts[ip].clear()
        user.last_login_at = now
        profile.is_online = True
        profile.last_seen = now
        record_event(s, actor=user, action="auth.admin_login" if admin_only else "auth.login", entity_type="User", entity_id=str(user.id))
        s.commit()
        s.refresh(user)
        return jsonify({"user": user_to_dict(user), "csrf_token": ensure_csrf_token()})
    except ServiceError:
        raise
    except Exception:
        current_app.logger.exception("Login POST crashed (email=%s request_id=%s)", email, getattr(g, "request_id", None))
        raise


@bp.post("/login")
def login_post():
    return _authenticate(admin_only=False)


@bp.post("/admin/login")
def admin_login_post():
    return _authenticate(admin_only=True)


@bp.post("/logout")
def logout():
    s = db_session()
    user = getattr(g, "current_user", None)
    if user:
        if user.profile is not None:
            user.profile.is_online = False
            user.profile.last_seen = datetime.utcnow()
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.pop("user_id", None)
    return jsonify({"success": True})


@bp.get("/me")
@require_login
def me():
    s = db_session()
    user = current_user()
    ensure_profile(s, user)
    s.commit()
    s.refresh(user)
    return jsonify({"user": user_to_dict(user)})


@bp.post("/verify-email/send")
@require_login
def verify_email_send():
    s = db_session()
    user = current_user()
    email = (clean_str(request_payload().get("email")) or "").lower()
    if not is_valid_email(email) or _is_phone_signup(email):
        raise ValidationError("A valid email is required.")

    profile = ensure_profile(s, user)
    taken = (
        s.query(Profile.id)
        .filter(Profile.email == email, Profile.email_verified.is_(True), Profile.id != profile.id)
        .first()
    )
    if taken:
        raise ConflictError("This email is already verified by another account.")
    sent_at = profile.email_verification_sent_at
    if sent_at and datetime.utcnow() - sent_at < timedelta(seconds=_VERIFICATION_RESEND_SECONDS):
        raise RateLimitError("Please wait a minute before requesting another verification email.")

    link = _issue_verification(s, profile, email, user)
    s.commit()
    return jsonify(_verification_response(link))


@bp.get("/verify-email/confirm")
def verify_email_confirm():
    token = (request.args.get("token") or "").strip()
    if not token:
        raise ValidationError("Verification token is required.")
    s = db_session()
    profile = s.query(Profile).filter(Profile.email_verification_token == token).one_or_none()
    if not profile:
        raise ValidationError("Invalid or expired verification link.")
    ttl = timedelta(hours=int(current_app.config.get("EMAIL_VERIFICATION_TTL_HOURS") or 24))
    if not profile.email_verification_sent_at or datetime.utcnow() - profile.email_verification_sent_at > ttl:
        raise ValidationError("Invalid or expired verification link.")

    profile.email_verified = True
    profile.email_verification_token = None
    record_event(s, actor=None, action="auth.email_verified", entity_type="Profile", entity_id=str(profile.id), metadata={"email": profile.email})
    s.commit()
    return jsonify({"success": True, "email": profile.email, "email_verified": True})
