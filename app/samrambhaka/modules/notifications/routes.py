from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.samrambhaka.db import db_session
from app.samrambhaka.modules.notifications.service import (
    clear_all,
    delete_notification,
    list_notifications,
    mark_all_read,
    mark_read,
    notification_to_dict,
    unread_count,
)
from app.samrambhaka.rbac import require_login
from app.samrambhaka.utils import current_user, parse_int

bp = Blueprint("notifications", __name__)


@bp.get("")
@require_login
def notifications_list():
    s = db_session()
    u = current_user()
    since_id = parse_int(request.args.get("since_id"))
    rows, has_more = list_notifications(s, u.id, since_id=since_id)
    return jsonify(
        {
            "notifications": [notification_to_dict(n) for n in rows],
            "unread_count": unread_count(s, u.id),
            "has_more": has_more,
        }
    )


@bp.post("/<int:notification_id>/read")
@require_login
def notification_read(notification_id: int):
    s = db_session()
    n = mark_read(s, notification_id, current_user().id)
    s.commit()
    return jsonify({"notification": notification_to_dict(n)})


@bp.post("/read-all")
@require_login
def notifications_read_all():
    s = db_session()
    updated = mark_all_read(s, current_user().id)
    s.commit()
    return jsonify({"updated": updated})


@bp.delete("/<int:notification_id>")
@require_login
def notification_delete(notification_id: int):
    s = db_session()
    delete_notification(s, notification_id, current_user().id)
    s.commit()
    return jsonify({"success": True})


@bp.delete("")
@require_login
def notifications_clear():
    s = db_session()
    deleted = clear_all(s, current_user().id)
    s.commit()
    return jsonify({"deleted": deleted})
