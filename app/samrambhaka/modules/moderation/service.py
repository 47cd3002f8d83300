from __future__ import annotations

import json
import re
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from app.samrambhaka.audit import record_event
from app.samrambhaka.constants import (
    DEFAULT_DELETE_REASON,
    DEFAULT_HIDE_REASON,
    MAX_SUSPENSION_DAYS,
    REPORT_STATUSES,
    REPORTED_TYPES,
)
from app.samrambhaka.errors import ConflictError, NotFoundError, ValidationError
from app.samrambhaka.modules.moderation.models import BlockedWord, Report, UserSuspension
from app.samrambhaka.modules.notifications.service import notify
from app.samrambhaka.modules.profiles.models import Profile
from app.samrambhaka.modules.profiles.service import profile_summary
from app.samrambhaka.utils import clean_str, is_valid_url, parse_bool, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.samrambhaka.models import User


POST_ACTIONS = ("hide", "unhide", "delete")
MAX_REPORT_REASON_LENGTH = 200
MAX_BLOCKED_WORD_LENGTH = 100


# ---------- Blocked words ----------
def _word_pattern(word: str) -> re.Pattern[str]:
    # Phrases match as a whole; whitespace inside a phrase may vary.
    parts = [re.escape(p) for p in word.split()]
    return re.compile(r"(?<!\w)" + r"\s+".join(parts) + r"(?!\w)", re.IGNORECASE)


def find_blocked_words(s: "Session", text: str | None) -> list[str]:
    if not text:
        return []
    words = s.query(BlockedWord.word).filter(BlockedWord.is_active.is_(True)).all()
    return [w for (w,) in words if w.strip() and _word_pattern(w).search(text)]


def contains_blocked_words(s: "Session", text: str | None) -> bool:
    return bool(find_blocked_words(s, text))


def ensure_clean_text(s: "Session", text: str | None, what: str = "Content") -> None:
    if contains_blocked_words(s, text):
        raise ValidationError(f"{what} contains blocked words.")


def blocked_word_to_dict(w: BlockedWord) -> dict[str, Any]:
    return {
        "id": w.id,
        "word": w.word,
        "is_active": w.is_active,
        "created_at": w.created_at.isoformat() if w.created_at else None,
    }


def _normalized_word(raw: Any) -> str:
    word = " ".join((clean_str(raw) or "").lower().split())
    if not word:
        raise ValidationError("Word is required.")
    if len(word) > MAX_BLOCKED_WORD_LENGTH:
        raise ValidationError(f"Word must be {MAX_BLOCKED_WORD_LENGTH} characters or fewer.")
    return word


def add_blocked_word(s: "Session", raw_word: Any, user: "User") -> BlockedWord:
    word = _normalized_word(raw_word)
    if s.query(BlockedWord).filter(BlockedWord.word == word).one_or_none():
        raise ConflictError("Word is already blocked.")
    w = BlockedWord(word=word, is_active=True, created_by=user.id)
    s.add(w)
    s.flush()
    record_event(s, actor=user, action="blocked_word.create", entity_type="BlockedWord", entity_id=str(w.id), metadata={"word": word})
    return w


def update_blocked_word(s: "Session", w: BlockedWord, payload: dict, user: "User") -> BlockedWord:
    changes: dict[str, Any] = {}
    if "word" in payload:
        word = _normalized_word(payload.get("word"))
        if word != w.word:
            clash = s.query(BlockedWord).filter(BlockedWord.word == word, BlockedWord.id != w.id).one_or_none()
            if clash:
                raise ConflictError("Word is already blocked.")
            changes["word"] = {"old": w.word, "new": word}
            w.word = word
    if "is_active" in payload:
        active = parse_bool(payload.get("is_active"))
        if active != w.is_active:
            changes["is_active"] = {"old": w.is_active, "new": active}
            w.is_active = active
    record_event(s, actor=user, action="blocked_word.edit", entity_type="BlockedWord", entity_id=str(w.id), metadata={"changes": changes})
    return w


def delete_blocked_word(s: "Session", w: BlockedWord, user: "User") -> None:
    record_event(s, actor=user, action="blocked_word.delete", entity_type="BlockedWord", entity_id=str(w.id), metadata={"word": w.word})
    s.delete(w)


# ---------- Suspensions ----------
def active_suspension(s: "Session", user_id: int, now: datetime | None = None) -> UserSuspension | None:
    now = now or datetime.utcnow()
    rows = (
        s.query(UserSuspension)
        .filter(UserSuspension.user_id == user_id, UserSuspension.lifted_at.is_(None))
        .order_by(UserSuspension.created_at.desc())
        .all()
    )
    for row in rows:
        if row.is_active(now):
            return row
    return None


def is_suspended(s: "Session", user_id: int) -> bool:
    return active_suspension(s, user_id) is not None


def suspension_to_dict(row: UserSuspension) -> dict[str, Any]:
    return {
        "id": row.id,
        "user": profile_summary(row.profile),
        "user_id": row.user_id,
        "reason": row.reason,
        "is_permanent": row.is_permanent,
        "expires_at": row.expires_at.isoformat() if row.expires_at else None,
        "lifted_at": row.lifted_at.isoformat() if row.lifted_at else None,
        "is_active": row.is_active(),
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


def suspend_user(s: "Session", target: Profile, payload: dict, admin: "User") -> UserSuspension:
    reason = clean_str(payload.get("reason"))
    if not reason:
        raise ValidationError("Reason is required.")
    if target.id == admin.id:
        raise ValidationError("You cannot suspend yourself.")
    permanent = parse_bool(payload.get("permanent"))
    expires_at = None
    if not permanent:
        days = parse_int(payload.get("days"))
        if not days or days < 1:
            raise ValidationError("Provide days (>= 1) or permanent=true.")
        if days > MAX_SUSPENSION_DAYS:
            raise ValidationError(f"Suspensions longer than {MAX_SUSPENSION_DAYS} days must be permanent.")
        expires_at = datetime.utcnow() + timedelta(days=days)
    row = UserSuspension(
        user_id=target.id,
        suspended_by=admin.id,
        reason=reason,
        is_permanent=permanent,
        expires_at=expires_at,
    )
    s.add(row)
    s.flush()
    record_event(
        s,
        actor=admin,
        action="suspend_user",
        entity_type="Profile",
        entity_id=str(target.id),
        reason=reason,
        metadata={"suspension_id": row.id, "permanent": permanent, "expires_at": expires_at},
    )
    return row


def lift_suspension(s: "Session", row: UserSuspension, admin: "User") -> UserSuspension:
    if row.lifted_at is not None:
        raise ConflictError("Suspension already lifted.")
    row.lifted_at = datetime.utcnow()
    row.lifted_by = admin.id
    record_event(s, actor=admin, action="lift_suspension", entity_type="Profile", entity_id=str(row.user_id), metadata={"suspension_id": row.id})
    return row


# ---------- User moderation ----------
def block_user(s: "Session", target: Profile, reason: str | None, admin: "User") -> Profile:
    if target.id == admin.id:
        raise ValidationError("You cannot block yourself.")
    target.is_blocked = True
    target.blocked_at = datetime.utcnow()
    target.blocked_by = admin.id
    target.blocked_reason = clean_str(reason)
    target.is_online = False
    record_event(s, actor=admin, action="block_user", entity_type="Profile", entity_id=str(target.id), reason=target.blocked_reason)
    return target


def unblock_user(s: "Session", target: Profile, admin: "User") -> Profile:
    target.is_blocked = False
    target.blocked_at = None
    target.blocked_by = None
    target.blocked_reason = None
    record_event(s, actor=admin, action="unblock_user", entity_type="Profile", entity_id=str(target.id))
    return target


def set_chat_disabled(s: "Session", target: Profile, disabled: bool, admin: "User") -> Profile:
    target.chat_disabled = disabled
    record_event(
        s,
        actor=admin,
        action="disable_chat" if disabled else "enable_chat",
        entity_type="Profile",
        entity_id=str(target.id),
    )
    return target


# ---------- Admin post actions ----------
def admin_post_action(s: "Session", payload: dict, admin: "User") -> dict[str, Any]:
    """
    Hide, unhide or delete a post on behalf of an admin.
    Every action lands in the activity log as hide_post / unhide_post / delete_post.
    """
    from app.samrambhaka.modules.posts.models import Post

    action = (clean_str(payload.get("action")) or "").lower()
    post_id = parse_int(payload.get("post_id"))
    if not action or not post_id:
        raise ValidationError("action and post_id are required")
    if action not in POST_ACTIONS:
        raise ValidationError("Invalid action. Use 'hide', 'unhide', or 'delete'")

    post = s.get(Post, post_id)
    if not post:
        raise NotFoundError("Post not found.")
    reason = clean_str(payload.get("reason"))

    if action == "hide":
        reason = reason or DEFAULT_HIDE_REASON
        post.is_hidden = True
        post.hidden_at = datetime.utcnow()
        post.hidden_reason = reason
        notify(
            s,
            user_id=post.user_id,
            type="moderation",
            title="Your post was hidden",
            body=reason,
            data={"post_id": post.id},
            actor_id=admin.id,
        )
        message = "Post hidden successfully"
    elif action == "unhide":
        post.is_hidden = False
        post.hidden_at = None
        post.hidden_reason = None
        message = "Post unhidden successfully"
    else:
        reason = reason or DEFAULT_DELETE_REASON
        s.delete(post)
        message = "Post deleted successfully"

    record_event(
        s,
        actor=admin,
        action=f"{action}_post",
        entity_type="Post",
        entity_id=str(post_id),
        reason=reason,
        metadata={"reason": reason} if reason else None,
    )
    return {"success": True, "message": message}


# ---------- Reports ----------
def validate_report_payload(payload: dict) -> list[str]:
    errors: list[str] = []
    reported_type = (clean_str(payload.get("reported_type")) or "").lower()
    if reported_type not in REPORTED_TYPES:
        errors.append(f"Invalid reported_type. Must be one of: {', '.join(REPORTED_TYPES)}")
    if parse_int(payload.get("reported_id")) is None:
        errors.append("reported_id is required.")
    reason = clean_str(payload.get("reason"))
    if not reason:
        errors.append("Reason is required.")
    elif len(reason) > MAX_REPORT_REASON_LENGTH:
        errors.append(f"Reason must be {MAX_REPORT_REASON_LENGTH} characters or fewer.")
    evidence = payload.get("evidence_urls")
    if evidence is not None:
        if not isinstance(evidence, list) or not all(isinstance(u, str) and is_valid_url(u) for u in evidence):
            errors.append("evidence_urls must be a list of http(s) URLs.")
    return errors


def create_report(s: "Session", payload: dict, user: "User") -> Report:
    errors = validate_report_payload(payload)
    if errors:
        raise ValidationError(errors)
    reported_type = clean_str(payload.get("reported_type")).lower()  # type: ignore[union-attr]
    reported_id = parse_int(payload.get("reported_id"))
    duplicate = (
        s.query(Report)
        .filter(
            Report.reporter_id == user.id,
            Report.reported_type == reported_type,
            Report.reported_id == reported_id,
            Report.status == "pending",
        )
        .first()
    )
    if duplicate:
        raise ConflictError("You have already reported this.")

    evidence = payload.get("evidence_urls") or None
    now = datetime.utcnow()
    report = Report(
        reporter_id=user.id,
        reported_type=reported_type,
        reported_id=reported_id,
        reason=clean_str(payload.get("reason")),
        description=clean_str(payload.get("description")),
        evidence_urls_json=json.dumps(evidence) if evidence else None,
        status="pending",
        created_at=now,
        updated_at=now,
    )
    s.add(report)
    s.flush()
    record_event(
        s,
        actor=user,
        action="report.create",
        entity_type="Report",
        entity_id=str(report.id),
        metadata={"reported_type": reported_type, "reported_id": reported_id},
    )
    return report


def report_to_dict(r: Report) -> dict[str, Any]:
    return {
        "id": r.id,
        "reporter": profile_summary(r.reporter),
        "reported_type": r.reported_type,
        "reported_id": r.reported_id,
        "reason": r.reason,
        "description": r.description,
        "evidence_urls": json.loads(r.evidence_urls_json) if r.evidence_urls_json else [],
        "status": r.status,
        "action_taken": r.action_taken,
        "resolved_by": r.resolved_by,
        "resolved_at": r.resolved_at.isoformat() if r.resolved_at else None,
        "created_at": r.created_at.isoformat() if r.created_at else None,
    }


def update_report_status(s: "Session", report: Report, payload: dict, admin: "User") -> Report:
    status = (clean_str(payload.get("status")) or "").lower()
    if status not in REPORT_STATUSES:
        raise ValidationError(f"Invalid status. Must be one of: {', '.join(REPORT_STATUSES)}")
    old_status = report.status
    report.status = status
    action_taken = clean_str(payload.get("action_taken"))
    if action_taken is not None:
        report.action_taken = action_taken
    if status in ("resolved", "dismissed"):
        report.resolved_by = admin.id
        report.resolved_at = datetime.utcnow()
    else:
        report.resolved_by = None
        report.resolved_at = None
    report.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=admin,
        action="update_report",
        entity_type="Report",
        entity_id=str(report.id),
        reason=action_taken,
        metadata={"status": {"old": old_status, "new": status}},
    )
    return report
