from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_

from app.samrambhaka.audit import record_event
from app.samrambhaka.constants import (
    COMMUNITY_ROLE_ADMIN,
    COMMUNITY_ROLE_MEMBER,
    DISCUSSIONS_LIMIT,
    MAX_DISCUSSION_LENGTH,
)
from app.samrambhaka.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.samrambhaka.modules.businesses.service import get_owned_business
from app.samrambhaka.modules.communities.models import Community, CommunityDiscussion, CommunityMember
from app.samrambhaka.modules.moderation.service import ensure_clean_text
from app.samrambhaka.modules.notifications.service import notify
from app.samrambhaka.modules.profiles.service import ensure_profile, profile_summary
from app.samrambhaka.utils import LIKE_ESCAPE, clean_str, contains_pattern, is_valid_url, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.samrambhaka.models import User


def community_to_dict(c: Community) -> dict[str, Any]:
    return {
        "id": c.id,
        "name": c.name,
        "description": c.description,
        "cover_image_url": c.cover_image_url,
        "business_id": c.business_id,
        "created_by": c.created_by,
        "is_disabled": c.is_disabled,
        "disabled_reason": c.disabled_reason,
        "created_at": c.created_at.isoformat() if c.created_at else None,
    }


def member_counts(s: "Session", community_ids: list[int]) -> dict[int, int]:
    if not community_ids:
        return {}
    rows = (
        s.query(CommunityMember.community_id, func.count(CommunityMember.id))
        .filter(CommunityMember.community_id.in_(community_ids))
        .group_by(CommunityMember.community_id)
        .all()
    )
    return {cid: int(n) for cid, n in rows}


def memberships(s: "Session", user_id: int | None, community_ids: list[int]) -> dict[int, str]:
    """community_id -> role for the communities `user_id` belongs to."""
    if not user_id or not community_ids:
        return {}
    rows = (
        s.query(CommunityMember.community_id, CommunityMember.role)
        .filter(CommunityMember.user_id == user_id, CommunityMember.community_id.in_(community_ids))
        .all()
    )
    return {cid: role for cid, role in rows}


def communities_to_dicts(s: "Session", rows: list[Community], *, viewer_id: int | None) -> list[dict[str, Any]]:
    ids = [c.id for c in rows]
    counts = member_counts(s, ids)
    mine = memberships(s, viewer_id, ids)
    out = []
    for c in rows:
        d = community_to_dict(c)
        d["member_count"] = counts.get(c.id, 0)
        d["is_member"] = c.id in mine
        d["my_role"] = mine.get(c.id)
        out.append(d)
    return out


def list_communities(s: "Session", query: str | None = None) -> list[Community]:
    q = s.query(Community).filter(Community.is_disabled.is_(False))
    if query:
        like = contains_pattern(query)
        q = q.filter(
            or_(
                func.lower(Community.name).like(like, escape=LIKE_ESCAPE),
                func.lower(Community.description).like(like, escape=LIKE_ESCAPE),
            )
        )
    return q.order_by(Community.created_at.desc(), Community.id.desc()).all()


def latest_communities(s: "Session", limit: int) -> list[Community]:
    return (
        s.query(Community)
        .filter(Community.is_disabled.is_(False))
        .order_by(Community.created_at.desc(), Community.id.desc())
        .limit(limit)
        .all()
    )


def get_community(s: "Session", community_id: int) -> Community:
    c = s.get(Community, community_id)
    if not c:
        raise NotFoundError("Community not found.")
    return c


def get_visible_community(s: "Session", community_id: int, *, viewer_is_admin: bool) -> Community:
    c = get_community(s, community_id)
    if c.is_disabled and not viewer_is_admin:
        raise NotFoundError("Community not found.")
    return c


def validate_community_payload(payload: dict) -> list[str]:
    errors: list[str] = []
    name = clean_str(payload.get("name")) or ""
    if not (3 <= len(name) <= 100):
        errors.append("Name must be 3-100 characters.")
    cover = clean_str(payload.get("cover_image_url"))
    if cover and not is_valid_url(cover):
        errors.append("cover_image_url must be an http(s) URL.")
    return errors


def create_community(s: "Session", payload: dict, user: "User") -> Community:
    errors = validate_community_payload(payload)
    if errors:
        raise ValidationError(errors)
    creator = ensure_profile(s, user)
    business_id = parse_int(payload.get("business_id"))
    if business_id is not None:
        get_owned_business(s, business_id, user)
    name = clean_str(payload.get("name"))
    description = clean_str(payload.get("description"))
    ensure_clean_text(s, f"{name} {description or ''}", "Community")

    now = datetime.utcnow()
    c = Community(
        name=name,
        description=description,
        cover_image_url=clean_str(payload.get("cover_image_url")),
        business_id=business_id,
        created_by=creator.id,
        created_at=now,
        updated_at=now,
    )
    s.add(c)
    s.flush()
    s.add(CommunityMember(community_id=c.id, user_id=creator.id, role=COMMUNITY_ROLE_ADMIN))
    record_event(s, actor=user, action="community.create", entity_type="Community", entity_id=str(c.id), metadata={"name": c.name})
    return c


def _membership(s: "Session", community_id: int, user_id: int) -> CommunityMember | None:
    return (
        s.query(CommunityMember)
        .filter(CommunityMember.community_id == community_id, CommunityMember.user_id == user_id)
        .one_or_none()
    )


def join_community(s: "Session", c: Community, user: "User") -> CommunityMember:
    me = ensure_profile(s, user)
    if _membership(s, c.id, me.id):
        raise ConflictError("You are already a member of this community.")
    m = CommunityMember(community_id=c.id, user_id=me.id, role=COMMUNITY_ROLE_MEMBER)
    s.add(m)
    s.flush()
    if c.created_by:
        notify(
            s,
            user_id=c.created_by,
            type="community_join",
            title="New community member",
            body=f"{me.full_name or me.username or 'Someone'} joined {c.name}",
            data={"community_id": c.id, "user_id": me.id},
            actor_id=me.id,
        )
    record_event(s, actor=user, action="community.join", entity_type="Community", entity_id=str(c.id))
    return m


def leave_community(s: "Session", c: Community, user: "User") -> None:
    m = _membership(s, c.id, user.id)
    if not m:
        raise NotFoundError("You are not a member of this community.")
    s.delete(m)
    record_event(s, actor=user, action="community.leave", entity_type="Community", entity_id=str(c.id))


def list_members(s: "Session", community_id: int) -> list[dict[str, Any]]:
    rows = (
        s.query(CommunityMember)
        .filter(CommunityMember.community_id == community_id)
        .order_by(CommunityMember.joined_at.asc(), CommunityMember.id.asc())
        .all()
    )
    return [
        {
            "user": profile_summary(m.profile),
            "role": m.role,
            "joined_at": m.joined_at.isoformat() if m.joined_at else None,
        }
        for m in rows
    ]


def discussion_to_dict(d: CommunityDiscussion) -> dict[str, Any]:
    return {
        "id": d.id,
        "community_id": d.community_id,
        "user_id": d.user_id,
        "content": d.content,
        "author": profile_summary(d.author),
        "created_at": d.created_at.isoformat() if d.created_at else None,
    }


def list_discussions(s: "Session", community_id: int) -> list[CommunityDiscussion]:
    return (
        s.query(CommunityDiscussion)
        .filter(CommunityDiscussion.community_id == community_id)
        .order_by(CommunityDiscussion.created_at.desc(), CommunityDiscussion.id.desc())
        .limit(DISCUSSIONS_LIMIT)
        .all()
    )


def add_discussion(s: "Session", c: Community, raw_content: Any, user: "User") -> CommunityDiscussion:
    if not _membership(s, c.id, user.id):
        raise ForbiddenError("Only members can post in this community.")
    content = clean_str(raw_content)
    if not content:
        raise ValidationError("Message cannot be empty.")
    if len(content) > MAX_DISCUSSION_LENGTH:
        raise ValidationError(f"Message must be {MAX_DISCUSSION_LENGTH} characters or fewer.")
    ensure_clean_text(s, content, "Message")

    me = ensure_profile(s, user)
    now = datetime.utcnow()
    d = CommunityDiscussion(community_id=c.id, user_id=me.id, content=content, created_at=now, updated_at=now)
    s.add(d)
    s.flush()

    member_ids = [
        r[0]
        for r in s.query(CommunityMember.user_id)
        .filter(CommunityMember.community_id == c.id, CommunityMember.user_id != me.id)
        .all()
    ]
    for member_id in member_ids:
        notify(
            s,
            user_id=member_id,
            type="community_discussion",
            title=f"New discussion in {c.name}",
            body=content[:140],
            data={"community_id": c.id, "discussion_id": d.id},
            actor_id=me.id,
        )
    record_event(s, actor=user, action="discussion.create", entity_type="CommunityDiscussion", entity_id=str(d.id), metadata={"community_id": c.id})
    return d


def delete_discussion(s: "Session", c: Community, discussion_id: int, user: "User") -> None:
    d = s.get(CommunityDiscussion, discussion_id)
    if not d or d.community_id != c.id:
        raise NotFoundError("Discussion not found.")
    m = _membership(s, c.id, user.id)
    if d.user_id != user.id and not (m and m.role == COMMUNITY_ROLE_ADMIN):
        raise ForbiddenError("You cannot delete this discussion.")
    record_event(s, actor=user, action="discussion.delete", entity_type="CommunityDiscussion", entity_id=str(d.id), metadata={"community_id": c.id})
    s.delete(d)


def set_disabled(s: "Session", c: Community, disabled: bool, admin: "User", reason: str | None = None) -> Community:
    c.is_disabled = disabled
    c.disabled_at = datetime.utcnow() if disabled else None
    c.disabled_reason = clean_str(reason) if disabled else None
    c.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=admin,
        action="disable_community" if disabled else "enable_community",
        entity_type="Community",
        entity_id=str(c.id),
        reason=c.disabled_reason,
    )
    return c
