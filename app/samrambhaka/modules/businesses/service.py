from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from flask import current_app
from sqlalchemy import func, or_

from app.samrambhaka.audit import record_event
from app.samrambhaka.constants import BUSINESS_CATEGORIES
from app.samrambhaka.errors import ForbiddenError, NotFoundError, ValidationError
from app.samrambhaka.modules.businesses.models import Business, BusinessFollow, BusinessImage
from app.samrambhaka.modules.notifications.service import notify
from app.samrambhaka.modules.profiles.service import ensure_profile, profile_summary
from app.samrambhaka.storage import storage_from_config
from app.samrambhaka.uploads import store_image
from app.samrambhaka.utils import LIKE_ESCAPE, clean_str, contains_pattern, is_valid_url, parse_bool

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from werkzeug.datastructures import FileStorage
    from app.samrambhaka.models import User


_TEXT_FIELDS = ("description", "location")
_URL_FIELDS = ("logo_url", "cover_image_url", "website_url", "instagram_link", "youtube_link")
MAX_CAPTION_LENGTH = 255


def business_summary(b: Business | None) -> dict[str, Any] | None:
    if b is None:
        return None
    return {"id": b.id, "name": b.name, "category": b.category, "logo_url": b.logo_url}


def business_to_dict(b: Business) -> dict[str, Any]:
    return {
        "id": b.id,
        "owner_id": b.owner_id,
        "owner": profile_summary(b.owner),
        "name": b.name,
        "category": b.category,
        "description": b.description,
        "location": b.location,
        "logo_url": b.logo_url,
        "cover_image_url": b.cover_image_url,
        "website_url": b.website_url,
        "instagram_link": b.instagram_link,
        "youtube_link": b.youtube_link,
        "approval_status": b.approval_status,
        "is_featured": b.is_featured,
        "is_disabled": b.is_disabled,
        "disabled_reason": b.disabled_reason,
        "created_at": b.created_at.isoformat() if b.created_at else None,
        "updated_at": b.updated_at.isoformat() if b.updated_at else None,
    }


def image_to_dict(img: BusinessImage) -> dict[str, Any]:
    return {
        "id": img.id,
        "business_id": img.business_id,
        "image_url": img.image_url,
        "caption": img.caption,
        "created_at": img.created_at.isoformat() if img.created_at else None,
    }


def get_business(s: "Session", business_id: int) -> Business:
    b = s.get(Business, business_id)
    if not b:
        raise NotFoundError("Business not found")
    return b


def get_owned_business(s: "Session", business_id: int, user: "User", *, message: str | None = None) -> Business:
    b = get_business(s, business_id)
    if b.owner_id != user.id:
        raise ForbiddenError(message or "You don't own this business.")
    return b


def get_visible_business(s: "Session", business_id: int, *, viewer: "User | None", viewer_is_admin: bool) -> Business:
    b = get_business(s, business_id)
    if b.is_disabled and not viewer_is_admin and not (viewer and viewer.id == b.owner_id):
        raise NotFoundError("Business not found")
    return b


def follower_counts(s: "Session", business_ids: list[int]) -> dict[int, int]:
    if not business_ids:
        return {}
    rows = (
        s.query(BusinessFollow.business_id, func.count(BusinessFollow.id))
        .filter(BusinessFollow.business_id.in_(business_ids))
        .group_by(BusinessFollow.business_id)
        .all()
    )
    return {bid: int(n) for bid, n in rows}


def followed_business_ids(s: "Session", user_id: int | None, business_ids: list[int]) -> set[int]:
    if not user_id or not business_ids:
        return set()
    rows = (
        s.query(BusinessFollow.business_id)
        .filter(BusinessFollow.user_id == user_id, BusinessFollow.business_id.in_(business_ids))
        .all()
    )
    return {r[0] for r in rows}


def businesses_to_dicts(s: "Session", rows: list[Business], *, viewer_id: int | None) -> list[dict[str, Any]]:
    ids = [b.id for b in rows]
    counts = follower_counts(s, ids)
    followed = followed_business_ids(s, viewer_id, ids)
    out = []
    for b in rows:
        d = business_to_dict(b)
        d["follower_count"] = counts.get(b.id, 0)
        d["is_following"] = b.id in followed
        out.append(d)
    return out


def list_businesses(s: "Session", *, category: str | None = None, query: str | None = None) -> list[Business]:
    q = s.query(Business).filter(Business.is_disabled.is_(False))
    if category:
        q = q.filter(Business.category == category)
    if query:
        like = contains_pattern(query)
        q = q.filter(
            or_(
                func.lower(Business.name).like(like, escape=LIKE_ESCAPE),
                func.lower(Business.description).like(like, escape=LIKE_ESCAPE),
            )
        )
    return q.order_by(Business.is_featured.desc(), Business.created_at.desc(), Business.id.desc()).all()


def latest_businesses(s: "Session", limit: int) -> list[Business]:
    return (
        s.query(Business)
        .filter(Business.is_disabled.is_(False))
        .order_by(Business.created_at.desc(), Business.id.desc())
        .limit(limit)
        .all()
    )


def validate_business_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors: list[str] = []
    if not partial or "name" in payload:
        name = clean_str(payload.get("name")) or ""
        if not (2 <= len(name) <= 120):
            errors.append("Name must be 2-120 characters.")
    if not partial or "category" in payload:
        category = clean_str(payload.get("category")) or "other"
        if category not in BUSINESS_CATEGORIES:
            errors.append(f"Invalid category. Must be one of: {', '.join(BUSINESS_CATEGORIES)}")
    for field in _URL_FIELDS:
        value = clean_str(payload.get(field))
        if value and not is_valid_url(value):
            errors.append(f"{field} must be an http(s) URL.")
    return errors


def create_business(s: "Session", payload: dict, user: "User") -> Business:
    errors = validate_business_payload(payload)
    if errors:
        raise ValidationError(errors)
    owner = ensure_profile(s, user)
    now = datetime.utcnow()
    b = Business(
        owner_id=owner.id,
        name=clean_str(payload.get("name")),
        category=clean_str(payload.get("category")) or "other",
        approval_status="pending",
        created_at=now,
        updated_at=now,
    )
    for field in _TEXT_FIELDS + _URL_FIELDS:
        setattr(b, field, clean_str(payload.get(field)))
    s.add(b)
    s.flush()
    record_event(
        s,
        actor=user,
        action="business.create",
        entity_type="Business",
        entity_id=str(b.id),
        metadata={"name": b.name, "category": b.category},
    )
    return b


def update_business(s: "Session", b: Business, payload: dict, user: "User") -> Business:
    errors = validate_business_payload(payload, partial=True)
    if errors:
        raise ValidationError(errors)
    changes: dict[str, Any] = {}
    for field in ("name", "category") + _TEXT_FIELDS + _URL_FIELDS:
        if field not in payload:
            continue
        new = clean_str(payload.get(field))
        if field == "category":
            new = new or "other"
        old = getattr(b, field)
        if new != old:
            changes[field] = {"old": old, "new": new}
            setattr(b, field, new)
    b.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="business.edit", entity_type="Business", entity_id=str(b.id), metadata={"changes": changes})
    return b


def toggle_business_follow(s: "Session", b: Business, user: "User") -> dict[str, Any]:
    if b.owner_id == user.id:
        raise ValidationError("You cannot follow your own business.")
    me = ensure_profile(s, user)
    existing = (
        s.query(BusinessFollow)
        .filter(BusinessFollow.business_id == b.id, BusinessFollow.user_id == me.id)
        .one_or_none()
    )
    if existing:
        s.delete(existing)
        following = False
    else:
        s.add(BusinessFollow(business_id=b.id, user_id=me.id))
        following = True
        if b.owner_id:
            notify(
                s,
                user_id=b.owner_id,
                type="business_follow",
                title="New business follower",
                body=f"{me.full_name or me.username or 'Someone'} started following {b.name}",
                data={"business_id": b.id, "follower_id": me.id},
                actor_id=me.id,
            )
    s.flush()
    record_event(
        s,
        actor=user,
        action="business.follow" if following else "business.unfollow",
        entity_type="Business",
        entity_id=str(b.id),
    )
    return {"following": following, "follower_count": follower_counts(s, [b.id]).get(b.id, 0)}


# ---------- Gallery ----------
def list_images(s: "Session", business_id: int) -> list[BusinessImage]:
    return (
        s.query(BusinessImage)
        .filter(BusinessImage.business_id == business_id)
        .order_by(BusinessImage.created_at.desc(), BusinessImage.id.desc())
        .all()
    )


def add_image(s: "Session", b: Business, file: "FileStorage | None", caption: Any, user: "User") -> BusinessImage:
    caption = clean_str(caption)
    if caption and len(caption) > MAX_CAPTION_LENGTH:
        raise ValidationError(f"Caption must be {MAX_CAPTION_LENGTH} characters or fewer.")
    key, url = store_image(f"businesses/{b.id}/gallery", file)
    img = BusinessImage(business_id=b.id, image_url=url, storage_key=key, caption=caption)
    s.add(img)
    s.flush()
    record_event(
        s,
        actor=user,
        action="business.image_upload",
        entity_type="BusinessImage",
        entity_id=str(img.id),
        metadata={"business_id": b.id, "storage_key": key},
    )
    return img


def delete_image(s: "Session", b: Business, image_id: int, user: "User") -> str | None:
    """
    Removes the gallery row and returns its storage key. The stored object is left
    alone; call `delete_stored_image` once the row deletion is committed.
    """
    img = s.get(BusinessImage, image_id)
    if not img or img.business_id != b.id:
        raise NotFoundError("Image not found.")
    record_event(
        s,
        actor=user,
        action="business.image_delete",
        entity_type="BusinessImage",
        entity_id=str(img.id),
        metadata={"business_id": b.id, "storage_key": img.storage_key},
    )
    s.delete(img)
    return img.storage_key


def delete_stored_image(storage_key: str | None) -> None:
    if storage_key:
        storage_from_config(current_app.config).delete(storage_key)


# ---------- Admin ----------
def set_approval(s: "Session", b: Business, status: str, admin: "User", reason: str | None = None) -> Business:
    b.approval_status = status
    b.updated_at = datetime.utcnow()
    if b.owner_id:
        verdict = "approved" if status == "approved" else "rejected"
        notify(
            s,
            user_id=b.owner_id,
            type="business_update",
            title=f"Your business was {verdict}",
            body=reason or f"{b.name} has been {verdict}.",
            data={"business_id": b.id},
            actor_id=admin.id,
        )
    record_event(
        s,
        actor=admin,
        action="approve_business" if status == "approved" else "reject_business",
        entity_type="Business",
        entity_id=str(b.id),
        reason=reason,
    )
    return b


def set_disabled(s: "Session", b: Business, disabled: bool, admin: "User", reason: str | None = None) -> Business:
    b.is_disabled = disabled
    b.disabled_reason = clean_str(reason) if disabled else None
    b.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=admin,
        action="disable_business" if disabled else "enable_business",
        entity_type="Business",
        entity_id=str(b.id),
        reason=b.disabled_reason,
    )
    return b


def set_featured(s: "Session", b: Business, featured: Any, admin: "User") -> Business:
    b.is_featured = parse_bool(featured)
    b.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=admin,
        action="feature_business" if b.is_featured else "unfeature_business",
        entity_type="Business",
        entity_id=str(b.id),
    )
    return b
