from __future__ import annotations

from flask import Blueprint, jsonify

from app.samrambhaka.db import db_session
from app.samrambhaka.errors import NotFoundError, ValidationError
from app.samrambhaka.modules.content.models import FeaturedContent, PlatformSetting, PromotionalContent
from app.samrambhaka.modules.content.service import (
    create_featured,
    create_promotion,
    delete_featured,
    delete_promotion,
    featured_to_dict,
    promotion_to_dict,
    put_setting,
    setting_to_dict,
    update_promotion,
)
from app.samrambhaka.rbac import require_permission
from app.samrambhaka.utils import current_user, request_payload

bp = Blueprint("content_admin", __name__)


def _promotion_or_404(s, promotion_id: int) -> PromotionalContent:
    p = s.get(PromotionalContent, promotion_id)
    if not p:
        raise NotFoundError("Promotion not found.")
    return p


# ---------- Promotions ----------
@bp.get("/promotions")
@require_permission("content.manage")
def promotions_list():
    s = db_session()
    rows = s.query(PromotionalContent).order_by(PromotionalContent.display_order.asc(), PromotionalContent.id.asc()).all()
    return jsonify({"promotions": [promotion_to_dict(p) for p in rows]})


@bp.post("/promotions")
@require_permission("content.manage")
def promotions_create():
    s = db_session()
    p = create_promotion(s, request_payload(), current_user())
    s.commit()
    return jsonify({"promotion": promotion_to_dict(p)}), 201


@bp.get("/promotions/<int:promotion_id>")
@require_permission("content.manage")
def promotions_detail(promotion_id: int):
    s = db_session()
    return jsonify({"promotion": promotion_to_dict(_promotion_or_404(s, promotion_id))})


@bp.patch("/promotions/<int:promotion_id>")
@require_permission("content.manage")
def promotions_update(promotion_id: int):
    s = db_session()
    p = update_promotion(s, _promotion_or_404(s, promotion_id), request_payload(), current_user())
    s.commit()
    return jsonify({"promotion": promotion_to_dict(p)})


@bp.delete("/promotions/<int:promotion_id>")
@require_permission("content.manage")
def promotions_delete(promotion_id: int):
    s = db_session()
    delete_promotion(s, _promotion_or_404(s, promotion_id), current_user())
    s.commit()
    return jsonify({"success": True})


# ---------- Featured ----------
@bp.get("/featured")
@require_permission("content.manage")
def featured_list():
    s = db_session()
    rows = s.query(FeaturedContent).order_by(FeaturedContent.created_at.desc(), FeaturedContent.id.desc()).all()
    return jsonify({"featured": [featured_to_dict(f) for f in rows]})


@bp.post("/featured")
@require_permission("content.manage")
def featured_create():
    s = db_session()
    f = create_featured(s, request_payload(), current_user())
    s.commit()
    return jsonify({"featured": featured_to_dict(f)}), 201


@bp.delete("/featured/<int:featured_id>")
@require_permission("content.manage")
def featured_delete(featured_id: int):
    s = db_session()
    f = s.get(FeaturedContent, featured_id)
    if not f:
        raise NotFoundError("Featured item not found.")
    delete_featured(s, f, current_user())
    s.commit()
    return jsonify({"success": True})


# ---------- Settings ----------
@bp.get("/settings")
@require_permission("settings.manage")
def settings_list():
    s = db_session()
    rows = s.query(PlatformSetting).order_by(PlatformSetting.key.asc()).all()
    return jsonify({"settings": [setting_to_dict(r) for r in rows]})


@bp.put("/settings/<key>")
@require_permission("settings.manage")
def settings_put(key: str):
    s = db_session()
    payload = request_payload()
    if "value" not in payload:
        raise ValidationError("value is required.")
    row = put_setting(s, key, payload.get("value"), current_user())
    s.commit()
    return jsonify({"setting": setting_to_dict(row)})
