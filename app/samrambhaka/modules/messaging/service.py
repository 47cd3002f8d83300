from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_

from app.samrambhaka.audit import record_event
from app.samrambhaka.constants import MAX_MESSAGE_LENGTH
from app.samrambhaka.errors import ForbiddenError, NotFoundError, ValidationError
from app.samrambhaka.modules.messaging.models import Conversation, Message
from app.samrambhaka.modules.notifications.service import notify
from app.samrambhaka.modules.profiles.models import Profile
from app.samrambhaka.modules.profiles.service import ensure_profile, profile_summary
from app.samrambhaka.utils import clean_str, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.samrambhaka.models import User


def message_to_dict(m: Message) -> dict[str, Any]:
    return {
        "id": m.id,
        "conversation_id": m.conversation_id,
        "sender_id": m.sender_id,
        "content": m.content,
        "is_read": m.is_read,
        "created_at": m.created_at.isoformat() if m.created_at else None,
    }


def _check_chat_allowed(me: Profile, other: Profile) -> None:
    if me.chat_disabled:
        raise ForbiddenError("Chat has been disabled for your account.")
    if other.chat_disabled:
        raise ForbiddenError("This user cannot receive messages.")


def get_or_create_conversation(s: "Session", user: "User", other_user_id: Any) -> tuple[Conversation, bool]:
    """
    Find the conversation between the user and `other_user_id`, creating it on first contact.
    Returns (conversation, created).
    """
    other_id = parse_int(other_user_id)
    if other_id is None:
        raise ValidationError("other_user_id is required.")
    if other_id == user.id:
        raise ValidationError("You cannot message yourself.")
    other = s.get(Profile, other_id)
    if not other or other.is_blocked:
        raise NotFoundError("User not found.")
    me = ensure_profile(s, user)
    _check_chat_allowed(me, other)

    one, two = sorted((me.id, other_id))
    conv = (
        s.query(Conversation)
        .filter(Conversation.participant_one == one, Conversation.participant_two == two)
        .one_or_none()
    )
    if conv:
        return conv, False
    now = datetime.utcnow()
    conv = Conversation(participant_one=one, participant_two=two, last_message_at=now, created_at=now)
    s.add(conv)
    s.flush()
    record_event(s, actor=user, action="conversation.create", entity_type="Conversation", entity_id=str(conv.id), metadata={"other_user_id": other_id})
    return conv, True


def get_conversation_for(s: "Session", conversation_id: int, user_id: int) -> Conversation:
    conv = s.get(Conversation, conversation_id)
    if not conv or not conv.has_participant(user_id):
        raise NotFoundError("Conversation not found.")
    return conv


def _unread_counts(s: "Session", user_id: int, conversation_ids: list[int]) -> dict[int, int]:
    if not conversation_ids:
        return {}
    rows = (
        s.query(Message.conversation_id, func.count(Message.id))
        .filter(
            Message.conversation_id.in_(conversation_ids),
            Message.sender_id != user_id,
            Message.is_read.is_(False),
        )
        .group_by(Message.conversation_id)
        .all()
    )
    return {cid: int(n) for cid, n in rows}


def conversation_to_dict(s: "Session", conv: Conversation, user_id: int, *, unread: int | None = None) -> dict[str, Any]:
    other = s.get(Profile, conv.other_participant(user_id))
    last = (
        s.query(Message)
        .filter(Message.conversation_id == conv.id)
        .order_by(Message.id.desc())
        .first()
    )
    if unread is None:
        unread = _unread_counts(s, user_id, [conv.id]).get(conv.id, 0)
    return {
        "id": conv.id,
        "other_user": profile_summary(other),
        "last_message": message_to_dict(last) if last else None,
        "last_message_at": conv.last_message_at.isoformat() if conv.last_message_at else None,
        "unread_count": unread,
    }


def list_conversations(s: "Session", user_id: int) -> list[dict[str, Any]]:
    rows = (
        s.query(Conversation)
        .filter(or_(Conversation.participant_one == user_id, Conversation.participant_two == user_id))
        .order_by(Conversation.last_message_at.desc(), Conversation.id.desc())
        .all()
    )
    unread = _unread_counts(s, user_id, [c.id for c in rows])
    return [conversation_to_dict(s, c, user_id, unread=unread.get(c.id, 0)) for c in rows]


def open_conversation(s: "Session", conv: Conversation, user_id: int, *, since_id: int | None = None) -> list[Message]:
    """Messages oldest first; the other side's unread messages are marked read."""
    (
        s.query(Message)
        .filter(
            Message.conversation_id == conv.id,
            Message.sender_id != user_id,
            Message.is_read.is_(False),
        )
        .update({Message.is_read: True}, synchronize_session=False)
    )
    q = s.query(Message).filter(Message.conversation_id == conv.id)
    if since_id is not None:
        q = q.filter(Message.id > since_id)
    return q.order_by(Message.id.asc()).all()


def send_message(s: "Session", conv: Conversation, raw_content: Any, user: "User") -> Message:
    content = clean_str(raw_content)
    if not content:
        raise ValidationError("Message cannot be empty.")
    if len(content) > MAX_MESSAGE_LENGTH:
        raise ValidationError(f"Message must be {MAX_MESSAGE_LENGTH} characters or fewer.")
    me = ensure_profile(s, user)
    other = s.get(Profile, conv.other_participant(me.id))
    if other is None:
        raise NotFoundError("User not found.")
    _check_chat_allowed(me, other)

    now = datetime.utcnow()
    m = Message(conversation_id=conv.id, sender_id=me.id, content=content, is_read=False, created_at=now)
    s.add(m)
    conv.last_message_at = now
    s.flush()
    notify(
        s,
        user_id=other.id,
        type="message",
        title=f"New message from {me.full_name or me.username or 'someone'}",
        body=content[:140],
        data={"conversation_id": conv.id},
        actor_id=me.id,
    )
    return m


def delete_conversation(s: "Session", conv: Conversation, user: "User") -> None:
    s.query(Message).filter(Message.conversation_id == conv.id).delete(synchronize_session=False)
    record_event(s, actor=user, action="conversation.delete", entity_type="Conversation", entity_id=str(conv.id))
    s.delete(conv)


def mark_message_read(s: "Session", message_id: int, user_id: int) -> Message:
    m = s.get(Message, message_id)
    if not m:
        raise NotFoundError("Message not found.")
    conv = s.get(Conversation, m.conversation_id)
    if not conv or not conv.has_participant(user_id) or m.sender_id == user_id:
        raise NotFoundError("Message not found.")
    m.is_read = True
    return m


def total_unread(s: "Session", user_id: int) -> int:
    return int(
        s.query(func.count(Message.id))
        .join(Conversation, Conversation.id == Message.conversation_id)
        .filter(
            or_(Conversation.participant_one == user_id, Conversation.participant_two == user_id),
            Message.sender_id != user_id,
            Message.is_read.is_(False),
        )
        .scalar()
        or 0
    )
