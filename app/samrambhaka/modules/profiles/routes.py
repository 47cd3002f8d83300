from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.samrambhaka.db import db_session
from app.samrambhaka.modules.profiles.models import UserSkill
from app.samrambhaka.modules.profiles.service import (
    add_skill,
    delete_skill,
    ensure_profile,
    following_ids,
    get_visible_profile,
    nearby_profiles,
    profile_to_dict,
    profile_view,
    search_profiles,
    skill_to_dict,
    update_profile,
    upload_avatar,
)
from app.samrambhaka.rbac import is_admin, require_login
from app.samrambhaka.utils import current_user, optional_user, request_payload

bp = Blueprint("profiles", __name__)


def _with_following(s, profiles, viewer_id: int) -> list[dict]:
    followed = following_ids(s, viewer_id, [p.id for p in profiles])
    out = []
    for p in profiles:
        d = profile_to_dict(p, viewer_id=viewer_id)
        d["is_following"] = p.id in followed
        out.append(d)
    return out


@bp.get("/me")
@require_login
def profile_me():
    s = db_session()
    u = current_user()
    p = ensure_profile(s, u)
    s.commit()
    return jsonify({"profile": profile_view(s, p, viewer_id=u.id, viewer_is_admin=is_admin(u))})


@bp.patch("/me")
@require_login
def profile_me_update():
    s = db_session()
    u = current_user()
    p = ensure_profile(s, u)
    update_profile(s, p, request_payload(), u)
    s.commit()
    return jsonify({"profile": profile_to_dict(p, viewer_id=u.id)})


@bp.post("/me/avatar")
@require_login
def profile_me_avatar():
    s = db_session()
    u = current_user()
    p = ensure_profile(s, u)
    url = upload_avatar(s, p, request.files.get("file"), u)
    s.commit()
    return jsonify({"success": True, "avatar_url": url})


@bp.get("/me/skills")
@require_login
def skills_list():
    s = db_session()
    u = current_user()
    rows = s.query(UserSkill).filter(UserSkill.user_id == u.id).order_by(UserSkill.skill_name.asc()).all()
    return jsonify({"skills": [skill_to_dict(sk) for sk in rows]})


@bp.post("/me/skills")
@require_login
def skills_add():
    s = db_session()
    u = current_user()
    p = ensure_profile(s, u)
    skill = add_skill(s, p, request_payload().get("skill_name"), u)
    s.commit()
    return jsonify({"skill": skill_to_dict(skill)}), 201


@bp.delete("/me/skills/<int:skill_id>")
@require_login
def skills_delete(skill_id: int):
    s = db_session()
    u = current_user()
    p = ensure_profile(s, u)
    delete_skill(s, p, skill_id, u)
    s.commit()
    return jsonify({"success": True})


@bp.get("/search")
@require_login
def profiles_search():
    s = db_session()
    u = current_user()
    rows = search_profiles(s, request.args.get("q") or "", viewer_id=u.id)
    return jsonify({"profiles": _with_following(s, rows, u.id)})


@bp.get("/nearby")
@require_login
def profiles_nearby():
    s = db_session()
    u = current_user()
    me = ensure_profile(s, u)
    s.commit()
    rows = nearby_profiles(s, me)
    return jsonify({"location": me.location, "profiles": _with_following(s, rows, u.id)})


@bp.get("/<int:profile_id>")
def profile_detail(profile_id: int):
    s = db_session()
    viewer = optional_user()
    p = get_visible_profile(s, profile_id, viewer_id=viewer.id if viewer else None, viewer_is_admin=is_admin(viewer))
    return jsonify({"profile": profile_view(s, p, viewer_id=viewer.id if viewer else None, viewer_is_admin=is_admin(viewer))})


@bp.get("/<int:profile_id>/posts")
def profile_posts(profile_id: int):
    from app.samrambhaka.modules.posts.service import list_user_posts, posts_to_dicts

    s = db_session()
    viewer = optional_user()
    get_visible_profile(s, profile_id, viewer_id=viewer.id if viewer else None, viewer_is_admin=is_admin(viewer))
    posts = list_user_posts(s, profile_id, viewer=viewer)
    return jsonify({"posts": posts_to_dicts(s, posts, viewer_id=viewer.id if viewer else None)})
