from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from app.samrambhaka.constants import NOTIFICATIONS_LIMIT, NOTIFICATION_TYPES
from app.samrambhaka.errors import NotFoundError
from app.samrambhaka.modules.notifications.models import Notification

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


_POST_TYPES = ("like", "comment", "new_post")
_COMMUNITY_TYPES = ("community_discussion", "community_update", "community_join")
_BUSINESS_TYPES = ("business_update", "business_follow", "business_post")


def notify(
    s: "Session",
    *,
    user_id: int,
    type: str,
    title: str,
    body: str | None = None,
    data: dict[str, Any] | None = None,
    actor_id: int | None = None,
) -> Notification | None:
    """
    Queue a notification row for `user_id`.
    Returns None (and writes nothing) when the recipient is the actor.
    """
    if type not in NOTIFICATION_TYPES:
        raise ValueError(f"Unknown notification type: {type}")
    if actor_id is not None and actor_id == user_id:
        return None
    n = Notification(
        user_id=user_id,
        type=type,
        title=title,
        body=body,
        data_json=json.dumps(data, sort_keys=True, default=str) if data else None,
        is_read=False,
    )
    s.add(n)
    return n


def notification_data(n: Notification) -> dict[str, Any]:
    return json.loads(n.data_json) if n.data_json else {}


def notification_link(type: str, data: dict[str, Any] | None) -> str | None:
    """Client route a notification opens, or None when it has no target."""
    data = data or {}
    if type in _POST_TYPES and data.get("post_id"):
        return f"/?post={data['post_id']}"
    if type == "follow" and data.get("follower_id"):
        return f"/user/{data['follower_id']}"
    if type in _COMMUNITY_TYPES and data.get("community_id"):
        return f"/community/{data['community_id']}"
    if type == "message" and data.get("conversation_id"):
        return f"/messages?conversation={data['conversation_id']}"
    if type in _BUSINESS_TYPES and data.get("business_id"):
        return f"/business/{data['business_id']}"
    return None


def notification_to_dict(n: Notification) -> dict[str, Any]:
    data = notification_data(n)
    return {
        "id": n.id,
        "type": n.type,
        "title": n.title,
        "body": n.body,
        "data": data,
        "is_read": n.is_read,
        "link": notification_link(n.type, data),
        "created_at": n.created_at.isoformat() if n.created_at else None,
    }


def list_notifications(
    s: "Session", user_id: int, *, since_id: int | None = None
) -> tuple[list[Notification], bool]:
    """
    Returns (rows, has_more). Without a cursor: the newest page, newest first.
    With `since_id`: rows after the cursor oldest first, so a client that advances
    its cursor to the last id it got never skips a row; `has_more` says poll again.
    """
    q = s.query(Notification).filter(Notification.user_id == user_id)
    if since_id is None:
        q = q.order_by(Notification.id.desc())
    else:
        q = q.filter(Notification.id > since_id).order_by(Notification.id.asc())
    rows = q.limit(NOTIFICATIONS_LIMIT + 1).all()
    return rows[:NOTIFICATIONS_LIMIT], len(rows) > NOTIFICATIONS_LIMIT


def unread_count(s: "Session", user_id: int) -> int:
    return (
        s.query(Notification)
        .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
        .count()
    )


def _owned(s: "Session", notification_id: int, user_id: int) -> Notification:
    n = s.get(Notification, notification_id)
    if not n or n.user_id != user_id:
        raise NotFoundError("Notification not found.")
    return n


def mark_read(s: "Session", notification_id: int, user_id: int) -> Notification:
    n = _owned(s, notification_id, user_id)
    n.is_read = True
    return n


def mark_all_read(s: "Session", user_id: int) -> int:
    return (
        s.query(Notification)
        .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
        .update({Notification.is_read: True}, synchronize_session=False)
    )


def delete_notification(s: "Session", notification_id: int, user_id: int) -> None:
    s.delete(_owned(s, notification_id, user_id))


def clear_all(s: "Session", user_id: int) -> int:
    return s.query(Notification).filter(Notification.user_id == user_id).delete(synchronize_session=False)
