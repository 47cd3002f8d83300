from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.samrambhaka.db import db_session
from app.samrambhaka.modules.communities.service import (
    add_discussion,
    communities_to_dicts,
    create_community,
    delete_discussion,
    discussion_to_dict,
    get_visible_community,
    join_community,
    leave_community,
    list_communities,
    list_discussions,
    list_members,
)
from app.samrambhaka.rbac import is_admin, require_login
from app.samrambhaka.utils import current_user, optional_user, request_payload

bp = Blueprint("communities", __name__)


def _viewer_community(s, community_id: int):
    return get_visible_community(s, community_id, viewer_is_admin=is_admin(optional_user()))


@bp.get("")
def communities_list():
    s = db_session()
    viewer = optional_user()
    rows = list_communities(s, (request.args.get("q") or "").strip() or None)
    return jsonify({"communities": communities_to_dicts(s, rows, viewer_id=viewer.id if viewer else None)})


@bp.post("")
@require_login
def community_create():
    s = db_session()
    u = current_user()
    c = create_community(s, request_payload(), u)
    s.commit()
    return jsonify({"community": communities_to_dicts(s, [c], viewer_id=u.id)[0]}), 201


@bp.get("/<int:community_id>")
def community_detail(community_id: int):
    s = db_session()
    viewer = optional_user()
    c = _viewer_community(s, community_id)
    return jsonify({"community": communities_to_dicts(s, [c], viewer_id=viewer.id if viewer else None)[0]})


@bp.post("/<int:community_id>/join")
@require_login
def community_join(community_id: int):
    s = db_session()
    join_community(s, _viewer_community(s, community_id), current_user())
    s.commit()
    return jsonify({"success": True, "is_member": True})


@bp.post("/<int:community_id>/leave")
@require_login
def community_leave(community_id: int):
    s = db_session()
    leave_community(s, _viewer_community(s, community_id), current_user())
    s.commit()
    return jsonify({"success": True, "is_member": False})


@bp.get("/<int:community_id>/members")
def community_members(community_id: int):
    s = db_session()
    c = _viewer_community(s, community_id)
    return jsonify({"members": list_members(s, c.id)})


@bp.get("/<int:community_id>/discussions")
def discussions_list(community_id: int):
    s = db_session()
    c = _viewer_community(s, community_id)
    return jsonify({"discussions": [discussion_to_dict(d) for d in list_discussions(s, c.id)]})


@bp.post("/<int:community_id>/discussions")
@require_login
def discussions_add(community_id: int):
    s = db_session()
    d = add_discussion(s, _viewer_community(s, community_id), request_payload().get("content"), current_user())
    s.commit()
    return jsonify({"discussion": discussion_to_dict(d)}), 201


@bp.delete("/<int:community_id>/discussions/<int:discussion_id>")
@require_login
def discussions_delete(community_id: int, discussion_id: int):
    s = db_session()
    delete_discussion(s, _viewer_community(s, community_id), discussion_id, current_user())
    s.commit()
    return jsonify({"success": True})
