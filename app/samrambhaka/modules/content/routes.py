from __future__ import annotations

from flask import Blueprint, jsonify

from app.samrambhaka.db import db_session
from app.samrambhaka.modules.content.service import discovery, public_setting
from app.samrambhaka.utils import optional_user

bp = Blueprint("content", __name__)


@bp.get("/discover")
def discover():
    s = db_session()
    viewer = optional_user()
    return jsonify(discovery(s, viewer_id=viewer.id if viewer else None))


@bp.get("/settings/<key>")
def setting_public(key: str):
    s = db_session()
    return jsonify({"key": key, "value": public_setting(s, key)})
