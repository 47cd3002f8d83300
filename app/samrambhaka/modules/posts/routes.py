from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.samrambhaka.constants import FEED_DEFAULT_LIMIT, FEED_MAX_LIMIT
from app.samrambhaka.db import db_session
from app.samrambhaka.modules.posts.service import (
    add_comment,
    comment_to_dict,
    create_post,
    delete_comment,
    delete_post,
    feed,
    get_post_for_viewer,
    list_comments,
    posts_to_dicts,
    toggle_like,
    upload_post_image,
)
from app.samrambhaka.rbac import is_admin, require_login
from app.samrambhaka.utils import current_user, optional_user, parse_int, parse_limit, request_payload

bp = Blueprint("posts", __name__)


def _viewer_post(s, post_id: int):
    viewer = optional_user()
    return get_post_for_viewer(s, post_id, viewer=viewer, viewer_is_admin=is_admin(viewer))


@bp.post("")
@require_login
def post_create():
    s = db_session()
    u = current_user()
    post = create_post(s, request_payload(), u)
    s.commit()
    return jsonify({"success": True, "post": posts_to_dicts(s, [post], viewer_id=u.id)[0]}), 201


@bp.post("/image")
@require_login
def post_image_upload():
    s = db_session()
    url = upload_post_image(s, request.files.get("file"), current_user(), request.form.get("business_id"))
    s.commit()
    return jsonify({"url": url}), 201


@bp.get("/feed")
def post_feed():
    s = db_session()
    viewer = optional_user()
    limit = parse_limit(request.args.get("limit"), FEED_DEFAULT_LIMIT, FEED_MAX_LIMIT)
    posts = feed(s, limit=limit, before_id=parse_int(request.args.get("before_id")))
    items = posts_to_dicts(s, posts, viewer_id=viewer.id if viewer else None)
    return jsonify({"posts": items, "next_before_id": items[-1]["id"] if len(items) == limit else None})


@bp.get("/<int:post_id>")
def post_detail(post_id: int):
    s = db_session()
    viewer = optional_user()
    post = _viewer_post(s, post_id)
    out = posts_to_dicts(s, [post], viewer_id=viewer.id if viewer else None)[0]
    out["comments"] = [comment_to_dict(c) for c in list_comments(s, post.id)]
    return jsonify({"post": out})


@bp.delete("/<int:post_id>")
@require_login
def post_delete(post_id: int):
    s = db_session()
    delete_post(s, _viewer_post(s, post_id), current_user())
    s.commit()
    return jsonify({"success": True})


@bp.post("/<int:post_id>/like")
@require_login
def post_like(post_id: int):
    s = db_session()
    result = toggle_like(s, _viewer_post(s, post_id), current_user())
    s.commit()
    return jsonify(result)


@bp.get("/<int:post_id>/comments")
def comments_list(post_id: int):
    s = db_session()
    post = _viewer_post(s, post_id)
    return jsonify({"comments": [comment_to_dict(c) for c in list_comments(s, post.id)]})


@bp.post("/<int:post_id>/comments")
@require_login
def comments_add(post_id: int):
    s = db_session()
    comment = add_comment(s, _viewer_post(s, post_id), request_payload().get("content"), current_user())
    s.commit()
    return jsonify({"comment": comment_to_dict(comment)}), 201


@bp.delete("/<int:post_id>/comments/<int:comment_id>")
@require_login
def comments_delete(post_id: int, comment_id: int):
    s = db_session()
    delete_comment(s, _viewer_post(s, post_id), comment_id, current_user())
    s.commit()
    return jsonify({"success": True})
