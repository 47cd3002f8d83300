from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.samrambhaka.db import db_session
from app.samrambhaka.modules.businesses.models import Business
from app.samrambhaka.modules.businesses.service import (
    add_image,
    businesses_to_dicts,
    create_business,
    delete_image,
    delete_stored_image,
    get_owned_business,
    get_visible_business,
    image_to_dict,
    list_businesses,
    list_images,
    toggle_business_follow,
    update_business,
)
from app.samrambhaka.modules.posts.service import list_business_posts, posts_to_dicts
from app.samrambhaka.rbac import is_admin, require_login
from app.samrambhaka.utils import current_user, optional_user, request_payload

bp = Blueprint("businesses", __name__)


def _viewer_business(s, business_id: int) -> Business:
    viewer = optional_user()
    return get_visible_business(s, business_id, viewer=viewer, viewer_is_admin=is_admin(viewer))


@bp.get("")
def businesses_list():
    s = db_session()
    viewer = optional_user()
    category = (request.args.get("category") or "").strip() or None
    rows = list_businesses(s, category=category, query=(request.args.get("q") or "").strip() or None)
    return jsonify({"businesses": businesses_to_dicts(s, rows, viewer_id=viewer.id if viewer else None)})


@bp.get("/mine")
@require_login
def businesses_mine():
    s = db_session()
    u = current_user()
    rows = s.query(Business).filter(Business.owner_id == u.id).order_by(Business.created_at.desc()).all()
    return jsonify({"businesses": businesses_to_dicts(s, rows, viewer_id=u.id)})


@bp.post("")
@require_login
def business_create():
    s = db_session()
    u = current_user()
    b = create_business(s, request_payload(), u)
    s.commit()
    return jsonify({"business": businesses_to_dicts(s, [b], viewer_id=u.id)[0]}), 201


@bp.get("/<int:business_id>")
def business_detail(business_id: int):
    s = db_session()
    viewer = optional_user()
    viewer_id = viewer.id if viewer else None
    b = _viewer_business(s, business_id)
    out = businesses_to_dicts(s, [b], viewer_id=viewer_id)[0]
    out["is_owner"] = viewer_id is not None and viewer_id == b.owner_id
    out["posts"] = posts_to_dicts(s, list_business_posts(s, b.id), viewer_id=viewer_id)
    out["gallery"] = [image_to_dict(img) for img in list_images(s, b.id)]
    return jsonify({"business": out})


@bp.patch("/<int:business_id>")
@require_login
def business_update(business_id: int):
    s = db_session()
    u = current_user()
    b = update_business(s, get_owned_business(s, business_id, u), request_payload(), u)
    s.commit()
    return jsonify({"business": businesses_to_dicts(s, [b], viewer_id=u.id)[0]})


@bp.post("/<int:business_id>/follow")
@require_login
def business_follow(business_id: int):
    s = db_session()
    result = toggle_business_follow(s, _viewer_business(s, business_id), current_user())
    s.commit()
    return jsonify(result)


@bp.get("/<int:business_id>/images")
def business_images(business_id: int):
    s = db_session()
    b = _viewer_business(s, business_id)
    return jsonify({"images": [image_to_dict(img) for img in list_images(s, b.id)]})


@bp.post("/<int:business_id>/images")
@require_login
def business_image_add(business_id: int):
    s = db_session()
    u = current_user()
    b = get_owned_business(s, business_id, u)
    img = add_image(s, b, request.files.get("file"), request.form.get("caption"), u)
    s.commit()
    return jsonify({"image": image_to_dict(img)}), 201


@bp.delete("/<int:business_id>/images/<int:image_id>")
@require_login
def business_image_delete(business_id: int, image_id: int):
    s = db_session()
    u = current_user()
    storage_key = delete_image(s, get_owned_business(s, business_id, u), image_id, u)
    s.commit()
    delete_stored_image(storage_key)
    return jsonify({"success": True})
