from __future__ import annotations

from flask import Blueprint, jsonify

from app.samrambhaka.db import db_session
from app.samrambhaka.modules.moderation.service import create_report, report_to_dict
from app.samrambhaka.modules.profiles.service import ensure_profile
from app.samrambhaka.rbac import require_login
from app.samrambhaka.utils import current_user, request_payload

bp = Blueprint("reports", __name__)


@bp.post("")
@require_login
def report_create():
    s = db_session()
    u = current_user()
    ensure_profile(s, u)
    report = create_report(s, request_payload(), u)
    s.commit()
    return jsonify({"success": True, "report": report_to_dict(report)}), 201
