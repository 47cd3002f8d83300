from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.samrambhaka.db import db_session
from app.samrambhaka.modules.messaging.service import (
    conversation_to_dict,
    delete_conversation,
    get_conversation_for,
    get_or_create_conversation,
    list_conversations,
    mark_message_read,
    message_to_dict,
    open_conversation,
    send_message,
    total_unread,
)
from app.samrambhaka.rbac import require_login
from app.samrambhaka.utils import current_user, parse_int, request_payload

bp = Blueprint("messaging", __name__)


@bp.get("/conversations")
@require_login
def conversations_list():
    s = db_session()
    return jsonify({"conversations": list_conversations(s, current_user().id)})


@bp.post("/conversations")
@require_login
def conversation_start():
    s = db_session()
    u = current_user()
    conv, created = get_or_create_conversation(s, u, request_payload().get("other_user_id"))
    s.commit()
    return jsonify({"conversation": conversation_to_dict(s, conv, u.id), "created": created}), (201 if created else 200)


@bp.get("/conversations/<int:conversation_id>")
@require_login
def conversation_open(conversation_id: int):
    s = db_session()
    u = current_user()
    conv = get_conversation_for(s, conversation_id, u.id)
    messages = open_conversation(s, conv, u.id, since_id=parse_int(request.args.get("since_id")))
    s.commit()
    return jsonify(
        {
            "conversation": conversation_to_dict(s, conv, u.id),
            "messages": [message_to_dict(m) for m in messages],
        }
    )


@bp.post("/conversations/<int:conversation_id>")
@require_login
def conversation_send(conversation_id: int):
    s = db_session()
    u = current_user()
    conv = get_conversation_for(s, conversation_id, u.id)
    m = send_message(s, conv, request_payload().get("content"), u)
    s.commit()
    return jsonify({"message": message_to_dict(m)}), 201


@bp.delete("/conversations/<int:conversation_id>")
@require_login
def conversation_delete(conversation_id: int):
    s = db_session()
    u = current_user()
    delete_conversation(s, get_conversation_for(s, conversation_id, u.id), u)
    s.commit()
    return jsonify({"success": True})


@bp.post("/<int:message_id>/read")
@require_login
def message_read(message_id: int):
    s = db_session()
    m = mark_message_read(s, message_id, current_user().id)
    s.commit()
    return jsonify({"message": message_to_dict(m)})


@bp.get("/unread-count")
@require_login
def unread_count():
    s = db_session()
    return jsonify({"unread_count": total_unread(s, current_user().id)})
