from __future__ import annotations

from typing import TYPE_CHECKING, Any

from app.samrambhaka.audit import record_event
from app.samrambhaka.errors import NotFoundError, ValidationError
from app.samrambhaka.modules.follows.models import Follow
from app.samrambhaka.modules.notifications.service import notify
from app.samrambhaka.modules.profiles.models import Profile
from app.samrambhaka.modules.profiles.service import ensure_profile, follow_counts, following_ids, profile_summary
from app.samrambhaka.utils import clean_str

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.samrambhaka.models import User


FOLLOW_ACTIONS = ("follow", "unfollow")


def _display_name(p: Profile) -> str:
    return p.full_name or p.username or "Someone"


def toggle_follow(s: "Session", user: "User", following_id: Any, action: str | None = None) -> dict[str, Any]:
    """
    Follow or unfollow `following_id`. With no `action` the current state is flipped.
    Returns {"following": bool, "follower_count": int}.
    """
    try:
        target_id = int(following_id)
    except (TypeError, ValueError):
        raise ValidationError("following_id is required.")
    if target_id == user.id:
        raise ValidationError("You cannot follow yourself.")
    action = (clean_str(action) or "").lower() or None
    if action is not None and action not in FOLLOW_ACTIONS:
        raise ValidationError("Invalid action. Use 'follow' or 'unfollow'.")

    target = s.get(Profile, target_id)
    if not target or target.is_blocked:
        raise NotFoundError("User not found.")
    me = ensure_profile(s, user)

    existing = (
        s.query(Follow)
        .filter(Follow.follower_id == me.id, Follow.following_id == target_id)
        .one_or_none()
    )
    if action is None:
        action = "unfollow" if existing else "follow"

    if action == "follow" and not existing:
        s.add(Follow(follower_id=me.id, following_id=target_id))
        notify(
            s,
            user_id=target_id,
            type="follow",
            title="New follower",
            body=f"{_display_name(me)} started following you",
            data={"follower_id": me.id},
            actor_id=me.id,
        )
        record_event(s, actor=user, action="follow.create", entity_type="Profile", entity_id=str(target_id))
    elif action == "unfollow" and existing:
        s.delete(existing)
        record_event(s, actor=user, action="follow.delete", entity_type="Profile", entity_id=str(target_id))
    s.flush()

    return {"following": action == "follow", "follower_count": follow_counts(s, target_id)["follower_count"]}


def _annotated(s: "Session", profiles: list[Profile], viewer_id: int | None) -> list[dict[str, Any]]:
    ids = [p.id for p in profiles]
    i_follow = following_ids(s, viewer_id, ids)
    follows_me: set[int] = set()
    if viewer_id and ids:
        rows = (
            s.query(Follow.follower_id)
            .filter(Follow.following_id == viewer_id, Follow.follower_id.in_(ids))
            .all()
        )
        follows_me = {r[0] for r in rows}
    out = []
    for p in profiles:
        d = profile_summary(p) or {}
        d["is_following"] = p.id in i_follow
        d["is_follower"] = p.id in follows_me
        out.append(d)
    return out


def list_followers(s: "Session", profile_id: int, *, viewer_id: int | None) -> list[dict[str, Any]]:
    profiles = (
        s.query(Profile)
        .join(Follow, Follow.follower_id == Profile.id)
        .filter(Follow.following_id == profile_id, Profile.is_blocked.is_(False))
        .order_by(Follow.created_at.desc())
        .all()
    )
    return _annotated(s, profiles, viewer_id)


def list_following(s: "Session", profile_id: int, *, viewer_id: int | None) -> list[dict[str, Any]]:
    profiles = (
        s.query(Profile)
        .join(Follow, Follow.following_id == Profile.id)
        .filter(Follow.follower_id == profile_id, Profile.is_blocked.is_(False))
        .order_by(Follow.created_at.desc())
        .all()
    )
    return _annotated(s, profiles, viewer_id)


def list_friends(s: "Session", viewer_id: int) -> dict[str, Any]:
    """People the viewer follows, flagged when they follow back."""
    friends = list_following(s, viewer_id, viewer_id=viewer_id)
    return {"friends": friends, "mutual_ids": [f["id"] for f in friends if f["is_follower"]]}
