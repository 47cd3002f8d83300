from __future__ import annotations

from flask import Blueprint, jsonify, request
from sqlalchemy import func, or_

from app.samrambhaka.db import db_session
from app.samrambhaka.errors import NotFoundError, ValidationError
from app.samrambhaka.models import User
from app.samrambhaka.modules.moderation.models import BlockedWord, Report, UserSuspension
from app.samrambhaka.modules.moderation.service import (
    add_blocked_word,
    admin_post_action,
    block_user,
    blocked_word_to_dict,
    delete_blocked_word,
    lift_suspension,
    report_to_dict,
    set_chat_disabled,
    suspend_user,
    suspension_to_dict,
    unblock_user,
    update_blocked_word,
    update_report_status,
)
from app.samrambhaka.modules.profiles.models import Profile
from app.samrambhaka.modules.profiles.service import profile_to_dict
from app.samrambhaka.rbac import require_permission
from app.samrambhaka.utils import LIKE_ESCAPE, contains_pattern, current_user, parse_bool, request_payload

bp = Blueprint("moderation_admin", __name__)


def _profile_or_404(s, user_id: int) -> Profile:
    p = s.get(Profile, user_id)
    if not p:
        raise NotFoundError("User not found.")
    return p


# ---------- Reports ----------
@bp.get("/reports")
@require_permission("reports.manage")
def reports_list():
    s = db_session()
    status = (request.args.get("status") or "").strip().lower()
    q = s.query(Report)
    if status:
        q = q.filter(Report.status == status)
    rows = q.order_by(Report.created_at.desc(), Report.id.desc()).all()
    return jsonify({"reports": [report_to_dict(r) for r in rows]})


@bp.post("/reports/<int:report_id>")
@require_permission("reports.manage")
def report_update(report_id: int):
    s = db_session()
    report = s.get(Report, report_id)
    if not report:
        raise NotFoundError("Report not found.")
    update_report_status(s, report, request_payload(), current_user())
    s.commit()
    return jsonify({"report": report_to_dict(report)})


# ---------- Posts ----------
@bp.post("/posts/actions")
@require_permission("posts.moderate")
def post_actions():
    s = db_session()
    result = admin_post_action(s, request_payload(), current_user())
    s.commit()
    return jsonify(result)


# ---------- Users ----------
@bp.get("/users")
@require_permission("users.moderate")
def users_list():
    s = db_session()
    search = (request.args.get("q") or "").strip().lower()
    q = s.query(Profile).join(User, User.id == Profile.id)
    if search:
        like = contains_pattern(search)
        q = q.filter(
            or_(
                func.lower(Profile.full_name).like(like, escape=LIKE_ESCAPE),
                func.lower(Profile.username).like(like, escape=LIKE_ESCAPE),
                func.lower(User.email).like(like, escape=LIKE_ESCAPE),
            )
        )
    rows = q.order_by(Profile.created_at.desc()).limit(200).all()
    return jsonify({"users": [profile_to_dict(p, full_access=True) for p in rows]})


@bp.post("/users/<int:user_id>/block")
@require_permission("users.moderate")
def user_block(user_id: int):
    s = db_session()
    p = block_user(s, _profile_or_404(s, user_id), request_payload().get("reason"), current_user())
    s.commit()
    return jsonify({"user": profile_to_dict(p, full_access=True)})


@bp.post("/users/<int:user_id>/unblock")
@require_permission("users.moderate")
def user_unblock(user_id: int):
    s = db_session()
    p = unblock_user(s, _profile_or_404(s, user_id), current_user())
    s.commit()
    return jsonify({"user": profile_to_dict(p, full_access=True)})


@bp.post("/users/<int:user_id>/chat")
@require_permission("users.moderate")
def user_chat(user_id: int):
    s = db_session()
    payload = request_payload()
    if "disabled" not in payload:
        raise ValidationError("disabled is required.")
    p = set_chat_disabled(s, _profile_or_404(s, user_id), parse_bool(payload.get("disabled")), current_user())
    s.commit()
    return jsonify({"user": profile_to_dict(p, full_access=True)})


# ---------- Suspensions ----------
@bp.get("/suspensions")
@require_permission("users.moderate")
def suspensions_list():
    s = db_session()
    rows = s.query(UserSuspension).order_by(UserSuspension.created_at.desc()).all()
    return jsonify({"suspensions": [suspension_to_dict(r) for r in rows]})


@bp.post("/users/<int:user_id>/suspend")
@require_permission("users.moderate")
def user_suspend(user_id: int):
    s = db_session()
    row = suspend_user(s, _profile_or_404(s, user_id), request_payload(), current_user())
    s.commit()
    return jsonify({"suspension": suspension_to_dict(row)}), 201


@bp.post("/suspensions/<int:suspension_id>/lift")
@require_permission("users.moderate")
def suspension_lift(suspension_id: int):
    s = db_session()
    row = s.get(UserSuspension, suspension_id)
    if not row:
        raise NotFoundError("Suspension not found.")
    lift_suspension(s, row, current_user())
    s.commit()
    return jsonify({"suspension": suspension_to_dict(row)})


# ---------- Blocked words ----------
@bp.get("/blocked-words")
@require_permission("blocked_words.manage")
def blocked_words_list():
    s = db_session()
    rows = s.query(BlockedWord).order_by(BlockedWord.word.asc()).all()
    return jsonify({"blocked_words": [blocked_word_to_dict(w) for w in rows]})


@bp.post("/blocked-words")
@require_permission("blocked_words.manage")
def blocked_words_add():
    s = db_session()
    w = add_blocked_word(s, request_payload().get("word"), current_user())
    s.commit()
    return jsonify({"blocked_word": blocked_word_to_dict(w)}), 201


def _word_or_404(s, word_id: int) -> BlockedWord:
    w = s.get(BlockedWord, word_id)
    if not w:
        raise NotFoundError("Blocked word not found.")
    return w


@bp.patch("/blocked-words/<int:word_id>")
@require_permission("blocked_words.manage")
def blocked_words_update(word_id: int):
    s = db_session()
    w = update_blocked_word(s, _word_or_404(s, word_id), request_payload(), current_user())
    s.commit()
    return jsonify({"blocked_word": blocked_word_to_dict(w)})


@bp.delete("/blocked-words/<int:word_id>")
@require_permission("blocked_words.manage")
def blocked_words_delete(word_id: int):
    s = db_session()
    delete_blocked_word(s, _word_or_404(s, word_id), current_user())
    s.commit()
    return jsonify({"success": True})
