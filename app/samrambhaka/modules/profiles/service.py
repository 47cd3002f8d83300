from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_

from app.samrambhaka.audit import record_event
from app.samrambhaka.constants import SEARCH_LIMIT
from app.samrambhaka.errors import ConflictError, NotFoundError, ValidationError
from app.samrambhaka.modules.follows.models import Follow
from app.samrambhaka.modules.profiles.models import Profile, UserSkill
from app.samrambhaka.uploads import store_image
from app.samrambhaka.utils import LIKE_ESCAPE, clean_str, contains_pattern, is_valid_username, parse_bool

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from werkzeug.datastructures import FileStorage
    from app.samrambhaka.models import User


MAX_SKILL_LENGTH = 50
_EDITABLE_TEXT_FIELDS = ("full_name", "bio", "location")
_PRIVACY_FLAGS = ("show_email", "show_mobile", "show_location")


def ensure_profile(s: "Session", user: "User") -> Profile:
    """Return the user's profile, creating an empty one if it is missing."""
    profile = s.get(Profile, user.id)
    if profile:
        return profile
    now = datetime.utcnow()
    profile = Profile(id=user.id, full_name=None, created_at=now, updated_at=now)
    s.add(profile)
    s.flush()
    record_event(s, actor=user, action="profile.create", entity_type="Profile", entity_id=str(user.id))
    return profile


def profile_summary(p: Profile | None) -> dict[str, Any] | None:
    """Compact author card used inside posts, comments, members, messages."""
    if p is None:
        return None
    return {
        "id": p.id,
        "full_name": p.full_name,
        "username": p.username,
        "avatar_url": p.avatar_url,
        "is_verified": p.is_verified,
        "is_online": p.is_online,
    }


def profile_to_dict(p: Profile, *, viewer_id: int | None = None, full_access: bool = False) -> dict[str, Any]:
    """
    Public profile view. Contact fields are only included when the owner
    allows it, the viewer is the owner, or `full_access` (admin) is set.
    """
    is_owner = viewer_id is not None and viewer_id == p.id
    see_all = is_owner or full_access
    out = {
        "id": p.id,
        "full_name": p.full_name,
        "username": p.username,
        "bio": p.bio,
        "avatar_url": p.avatar_url,
        "role": p.role,
        "is_verified": p.is_verified,
        "is_online": p.is_online,
        "last_seen": p.last_seen.isoformat() if p.last_seen else None,
        "created_at": p.created_at.isoformat() if p.created_at else None,
        "location": p.location if (see_all or p.show_location) else None,
        "email": p.email if (see_all or p.show_email) else None,
        "phone_number": p.phone_number if (see_all or p.show_mobile) else None,
        "skills": [skill_to_dict(sk) for sk in p.skills],
    }
    if see_all:
        out.update(
            {
                "email_verified": p.email_verified,
                "show_email": p.show_email,
                "show_mobile": p.show_mobile,
                "show_location": p.show_location,
                "chat_disabled": p.chat_disabled,
                "is_blocked": p.is_blocked,
            }
        )
    if full_access:
        out.update(
            {
                "blocked_at": p.blocked_at.isoformat() if p.blocked_at else None,
                "blocked_reason": p.blocked_reason,
            }
        )
    return out


def skill_to_dict(sk: UserSkill) -> dict[str, Any]:
    return {"id": sk.id, "skill_name": sk.skill_name}


def follow_counts(s: "Session", profile_id: int) -> dict[str, int]:
    followers = s.query(func.count(Follow.id)).filter(Follow.following_id == profile_id).scalar() or 0
    following = s.query(func.count(Follow.id)).filter(Follow.follower_id == profile_id).scalar() or 0
    return {"follower_count": int(followers), "following_count": int(following)}


def following_ids(s: "Session", follower_id: int | None, candidate_ids: list[int]) -> set[int]:
    """Subset of `candidate_ids` that `follower_id` follows."""
    if not follower_id or not candidate_ids:
        return set()
    rows = (
        s.query(Follow.following_id)
        .filter(Follow.follower_id == follower_id, Follow.following_id.in_(candidate_ids))
        .all()
    )
    return {r[0] for r in rows}


def get_visible_profile(s: "Session", profile_id: int, *, viewer_id: int | None, viewer_is_admin: bool) -> Profile:
    p = s.get(Profile, profile_id)
    if not p:
        raise NotFoundError("Profile not found.")
    if p.is_blocked and not viewer_is_admin and viewer_id != p.id:
        raise NotFoundError("Profile not found.")
    return p


def profile_view(s: "Session", p: Profile, *, viewer_id: int | None, viewer_is_admin: bool) -> dict[str, Any]:
    from app.samrambhaka.modules.posts.models import Post

    out = profile_to_dict(p, viewer_id=viewer_id, full_access=viewer_is_admin)
    out.update(follow_counts(s, p.id))
    out["post_count"] = int(
        s.query(func.count(Post.id)).filter(Post.user_id == p.id, Post.is_hidden.is_(False)).scalar() or 0
    )
    out["is_following"] = p.id in following_ids(s, viewer_id, [p.id])
    return out


def validate_profile_payload(payload: dict) -> list[str]:
    errors: list[str] = []
    if "username" in payload:
        username = (clean_str(payload.get("username")) or "").lower()
        if username and not is_valid_username(username):
            errors.append("Username must be 3-30 characters: lowercase letters, numbers, '_' or '.'.")
    full_name = clean_str(payload.get("full_name"))
    if full_name and len(full_name) > 255:
        errors.append("Full name is too long.")
    bio = clean_str(payload.get("bio"))
    if bio and len(bio) > 500:
        errors.append("Bio must be 500 characters or fewer.")
    return errors


def username_taken(s: "Session", username: str, *, exclude_id: int | None = None) -> bool:
    q = s.query(Profile.id).filter(func.lower(Profile.username) == username.lower())
    if exclude_id is not None:
        q = q.filter(Profile.id != exclude_id)
    return q.first() is not None


def update_profile(s: "Session", profile: Profile, payload: dict, user: "User") -> Profile:
    errors = validate_profile_payload(payload)
    if errors:
        raise ValidationError(errors)

    changes: dict[str, Any] = {}

    for field in _EDITABLE_TEXT_FIELDS:
        if field not in payload:
            continue
        new = clean_str(payload.get(field))
        old = getattr(profile, field)
        if new != old:
            changes[field] = {"old": old, "new": new}
            setattr(profile, field, new)

    if "username" in payload:
        new_username = (clean_str(payload.get("username")) or "").lower() or None
        if new_username != profile.username:
            if new_username and username_taken(s, new_username, exclude_id=profile.id):
                raise ConflictError("Username is already taken.")
            changes["username"] = {"old": profile.username, "new": new_username}
            profile.username = new_username

    for flag in _PRIVACY_FLAGS:
        if flag not in payload:
            continue
        new_flag = parse_bool(payload.get(flag))
        if new_flag != getattr(profile, flag):
            changes[flag] = {"old": getattr(profile, flag), "new": new_flag}
            setattr(profile, flag, new_flag)

    profile.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="profile.edit",
        entity_type="Profile",
        entity_id=str(profile.id),
        metadata={"changes": changes},
    )
    return profile


def upload_avatar(s: "Session", profile: Profile, file: "FileStorage | None", user: "User") -> str:
    """Store a new avatar image and point the profile at it. Returns the public URL."""
    key, url = store_image(f"avatars/{profile.id}", file)
    profile.avatar_url = url
    profile.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="profile.avatar_upload",
        entity_type="Profile",
        entity_id=str(profile.id),
        metadata={"storage_key": key},
    )
    return url


def _search_base(s: "Session", viewer_id: int | None):
    q = s.query(Profile).filter(Profile.is_blocked.is_(False))
    if viewer_id is not None:
        q = q.filter(Profile.id != viewer_id)
    return q


def search_profiles(s: "Session", query: str, *, viewer_id: int | None) -> list[Profile]:
    query = (query or "").strip()
    if not query:
        return []
    like = contains_pattern(query)
    return (
        _search_base(s, viewer_id)
        .filter(
            or_(
                func.lower(Profile.full_name).like(like, escape=LIKE_ESCAPE),
                func.lower(Profile.username).like(like, escape=LIKE_ESCAPE),
            )
        )
        .order_by(Profile.full_name.asc())
        .limit(SEARCH_LIMIT)
        .all()
    )


def nearby_profiles(s: "Session", viewer: Profile) -> list[Profile]:
    """Profiles whose location mentions the first segment of the viewer's location."""
    area = (viewer.location or "").split(",")[0].strip()
    if not area:
        return []
    like = contains_pattern(area)
    return (
        _search_base(s, viewer.id)
        .filter(func.lower(Profile.location).like(like, escape=LIKE_ESCAPE))
        .order_by(Profile.is_online.desc(), Profile.last_seen.desc())
        .limit(SEARCH_LIMIT)
        .all()
    )


def add_skill(s: "Session", profile: Profile, raw_name: Any, user: "User") -> UserSkill:
    name = clean_str(raw_name)
    if not name:
        raise ValidationError("Skill name is required.")
    if len(name) > MAX_SKILL_LENGTH:
        raise ValidationError(f"Skill name must be {MAX_SKILL_LENGTH} characters or fewer.")
    key = name.lower()
    existing = s.query(UserSkill).filter(UserSkill.user_id == profile.id, UserSkill.skill_key == key).one_or_none()
    if existing:
        raise ConflictError("Skill already added.")
    skill = UserSkill(user_id=profile.id, skill_name=name, skill_key=key)
    s.add(skill)
    s.flush()
    record_event(s, actor=user, action="profile.skill_add", entity_type="UserSkill", entity_id=str(skill.id), metadata={"skill": name})
    return skill


def delete_skill(s: "Session", profile: Profile, skill_id: int, user: "User") -> None:
    skill = s.get(UserSkill, skill_id)
    if not skill or skill.user_id != profile.id:
        raise NotFoundError("Skill not found.")
    record_event(s, actor=user, action="profile.skill_delete", entity_type="UserSkill", entity_id=str(skill.id), metadata={"skill": skill.skill_name})
    s.delete(skill)
