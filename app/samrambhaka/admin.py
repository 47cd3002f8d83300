from __future__ import annotations

from datetime import datetime

from flask import Blueprint, jsonify, request
from sqlalchemy import or_

from app.samrambhaka.audit import event_to_dict, recent_events, record_event
from app.samrambhaka.constants import ADMIN_ROLES, BUSINESS_APPROVAL_STATUSES, ROLE_SUPER_ADMIN
from app.samrambhaka.db import db_session
from app.samrambhaka.errors import ConflictError, NotFoundError, ValidationError
from app.samrambhaka.models import Role, User
from app.samrambhaka.modules.businesses.models import Business
from app.samrambhaka.modules.businesses import service as business_service
from app.samrambhaka.modules.communities.models import Community
from app.samrambhaka.modules.communities import service as community_service
from app.samrambhaka.modules.moderation.models import Report, UserSuspension
from app.samrambhaka.modules.posts.models import Post
from app.samrambhaka.rbac import require_permission, user_permission_keys
from app.samrambhaka.utils import clean_str, current_user, parse_int, request_payload

bp = Blueprint("admin", __name__)

ACTIVITY_LIMIT = 200


@bp.get("/")
@require_permission("admin.view")
def index():
    s = db_session()
    u = current_user()
    now = datetime.utcnow()
    active_suspensions = (
        s.query(UserSuspension)
        .filter(
            UserSuspension.lifted_at.is_(None),
            or_(UserSuspension.is_permanent.is_(True), UserSuspension.expires_at > now),
        )
        .count()
    )
    return jsonify(
        {
            "counts": {
                "users": s.query(User).count(),
                "posts": s.query(Post).count(),
                "hidden_posts": s.query(Post).filter(Post.is_hidden.is_(True)).count(),
                "pending_reports": s.query(Report).filter(Report.status == "pending").count(),
                "pending_businesses": s.query(Business).filter(Business.approval_status == "pending").count(),
                "active_suspensions": active_suspensions,
            },
            "roles": sorted(r.key for r in u.roles),
            "permissions": user_permission_keys(u),
        }
    )


@bp.get("/activity")
@require_permission("activity.view")
def activity():
    s = db_session()
    events = recent_events(
        s,
        action=(request.args.get("action") or "").strip() or None,
        entity_type=(request.args.get("entity_type") or "").strip() or None,
        actor_user_id=parse_int(request.args.get("actor_id")),
        limit=ACTIVITY_LIMIT,
    )
    return jsonify({"events": [event_to_dict(ev) for ev in events]})


# ---------- Roles ----------
def _user_or_404(s, user_id: int) -> User:
    user = s.get(User, user_id)
    if not user:
        raise NotFoundError("User not found.")
    return user


def _roles_payload(user: User) -> dict:
    return {"user_id": user.id, "roles": sorted(r.key for r in user.roles)}


@bp.post("/users/<int:user_id>/roles")
@require_permission("users.roles")
def user_role_grant(user_id: int):
    s = db_session()
    admin = current_user()
    role_key = clean_str(request_payload().get("role")) or ""
    if role_key not in ADMIN_ROLES:
        raise ValidationError(f"Invalid role. Must be one of: {', '.join(ADMIN_ROLES)}")
    role = s.query(Role).filter(Role.key == role_key).one_or_none()
    if not role:
        raise NotFoundError("Role not found. Run scripts/init_db.py to seed roles.")
    user = _user_or_404(s, user_id)
    if role in user.roles:
        raise ConflictError("User already has this role.")
    user.roles.append(role)
    record_event(s, actor=admin, action="grant_role", entity_type="User", entity_id=str(user.id), metadata={"role": role_key})
    s.commit()
    return jsonify(_roles_payload(user))


@bp.delete("/users/<int:user_id>/roles/<role_key>")
@require_permission("users.roles")
def user_role_revoke(user_id: int, role_key: str):
    s = db_session()
    admin = current_user()
    user = _user_or_404(s, user_id)
    role = next((r for r in user.roles if r.key == role_key), None)
    if not role:
        raise NotFoundError("User does not have this role.")
    if user.id == admin.id and role_key == ROLE_SUPER_ADMIN:
        raise ValidationError("You cannot remove your own super_admin role.")
    user.roles.remove(role)
    record_event(s, actor=admin, action="revoke_role", entity_type="User", entity_id=str(user.id), metadata={"role": role_key})
    s.commit()
    return jsonify(_roles_payload(user))


# ---------- Businesses ----------
def _business_or_404(s, business_id: int) -> Business:
    return business_service.get_business(s, business_id)


def _business_json(b: Business):
    return jsonify({"business": business_service.business_to_dict(b)})


@bp.get("/businesses")
@require_permission("businesses.manage")
def businesses_list():
    s = db_session()
    status = (request.args.get("status") or "").strip()
    if status and status not in BUSINESS_APPROVAL_STATUSES:
        raise ValidationError(f"Invalid status. Must be one of: {', '.join(BUSINESS_APPROVAL_STATUSES)}")
    q = s.query(Business)
    if status:
        q = q.filter(Business.approval_status == status)
    rows = q.order_by(Business.created_at.desc(), Business.id.desc()).all()
    return jsonify({"businesses": [business_service.business_to_dict(b) for b in rows]})


@bp.post("/businesses/<int:business_id>/approve")
@require_permission("businesses.manage")
def business_approve(business_id: int):
    s = db_session()
    b = business_service.set_approval(s, _business_or_404(s, business_id), "approved", current_user())
    s.commit()
    return _business_json(b)


@bp.post("/businesses/<int:business_id>/reject")
@require_permission("businesses.manage")
def business_reject(business_id: int):
    s = db_session()
    reason = clean_str(request_payload().get("reason"))
    b = business_service.set_approval(s, _business_or_404(s, business_id), "rejected", current_user(), reason)
    s.commit()
    return _business_json(b)


@bp.post("/businesses/<int:business_id>/disable")
@require_permission("businesses.manage")
def business_disable(business_id: int):
    s = db_session()
    b = business_service.set_disabled(s, _business_or_404(s, business_id), True, current_user(), request_payload().get("reason"))
    s.commit()
    return _business_json(b)


@bp.post("/businesses/<int:business_id>/enable")
@require_permission("businesses.manage")
def business_enable(business_id: int):
    s = db_session()
    b = business_service.set_disabled(s, _business_or_404(s, business_id), False, current_user())
    s.commit()
    return _business_json(b)


@bp.post("/businesses/<int:business_id>/feature")
@require_permission("businesses.manage")
def business_feature(business_id: int):
    s = db_session()
    payload = request_payload()
    b = business_service.set_featured(s, _business_or_404(s, business_id), payload.get("is_featured", True), current_user())
    s.commit()
    return _business_json(b)


# ---------- Communities ----------
@bp.get("/communities")
@require_permission("communities.manage")
def communities_list():
    s = db_session()
    rows = s.query(Community).order_by(Community.created_at.desc(), Community.id.desc()).all()
    return jsonify({"communities": [community_service.community_to_dict(c) for c in rows]})


@bp.post("/communities/<int:community_id>/disable")
@require_permission("communities.manage")
def community_disable(community_id: int):
    s = db_session()
    c = community_service.get_community(s, community_id)
    community_service.set_disabled(s, c, True, current_user(), request_payload().get("reason"))
    s.commit()
    return jsonify({"community": community_service.community_to_dict(c)})


@bp.post("/communities/<int:community_id>/enable")
@require_permission("communities.manage")
def community_enable(community_id: int):
    s = db_session()
    c = community_service.get_community(s, community_id)
    community_service.set_disabled(s, c, False, current_user())
    s.commit()
    return jsonify({"community": community_service.community_to_dict(c)})

