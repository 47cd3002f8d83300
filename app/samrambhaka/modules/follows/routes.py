from __future__ import annotations

from flask import Blueprint, jsonify

from app.samrambhaka.db import db_session
from app.samrambhaka.errors import ForbiddenError, NotFoundError
from app.samrambhaka.modules.follows.service import list_followers, list_following, list_friends, toggle_follow
from app.samrambhaka.modules.profiles.models import Profile
from app.samrambhaka.rbac import require_login
from app.samrambhaka.utils import current_user, optional_user, parse_int, request_payload

bp = Blueprint("follows", __name__)


@bp.post("/toggle")
@require_login
def follow_toggle():
    s = db_session()
    u = current_user()
    payload = request_payload()
    # Acting user always comes from the session
    body_user_id = parse_int(payload.get("user_id"))
    if body_user_id is not None and body_user_id != u.id:
        raise ForbiddenError("user_id does not match the signed-in user.")
    result = toggle_follow(s, u, payload.get("following_id"), payload.get("action"))
    s.commit()
    return jsonify({"success": True, **result})


def _existing_profile(s, user_id: int) -> Profile:
    p = s.get(Profile, user_id)
    if not p:
        raise NotFoundError("User not found.")
    return p


@bp.get("/<int:user_id>/followers")
def followers(user_id: int):
    s = db_session()
    viewer = optional_user()
    _existing_profile(s, user_id)
    return jsonify({"profiles": list_followers(s, user_id, viewer_id=viewer.id if viewer else None)})


@bp.get("/<int:user_id>/following")
def following(user_id: int):
    s = db_session()
    viewer = optional_user()
    _existing_profile(s, user_id)
    return jsonify({"profiles": list_following(s, user_id, viewer_id=viewer.id if viewer else None)})


@bp.get("/friends")
@require_login
def friends():
    s = db_session()
    return jsonify(list_friends(s, current_user().id))
