from __future__ import annotations

import json
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from app.samrambhaka.audit import record_event
from app.samrambhaka.constants import DISCOVERY_LIMIT, FEATURED_CONTENT_TYPES, PROMOTION_CONTENT_TYPES
from app.samrambhaka.errors import NotFoundError, ValidationError
from app.samrambhaka.modules.businesses.models import Business
from app.samrambhaka.modules.businesses.service import businesses_to_dicts, latest_businesses
from app.samrambhaka.modules.communities.models import Community
from app.samrambhaka.modules.communities.service import communities_to_dicts, latest_communities
from app.samrambhaka.modules.content.models import FeaturedContent, PlatformSetting, PromotionalContent
from app.samrambhaka.modules.posts.models import Post
from app.samrambhaka.utils import clean_str, is_valid_url, isoformat, parse_bool, parse_date, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.samrambhaka.models import User


PUBLIC_KEYS_SETTING = "public_keys"
_PROMO_TEXT_FIELDS = ("description", "link_text")
_PROMO_URL_FIELDS = ("image_url", "video_url", "link_url")


# ---------- Promotions ----------
def promotion_to_dict(p: PromotionalContent) -> dict[str, Any]:
    return {
        "id": p.id,
        "title": p.title,
        "description": p.description,
        "content_type": p.content_type,
        "image_url": p.image_url,
        "video_url": p.video_url,
        "link_url": p.link_url,
        "link_text": p.link_text,
        "display_order": p.display_order,
        "is_active": p.is_active,
        "start_date": isoformat(p.start_date),
        "end_date": isoformat(p.end_date),
        "is_live": p.is_live(),
    }


def _parse_window(payload: dict, errors: list[str]) -> tuple[date | None, date | None]:
    try:
        start = parse_date(payload.get("start_date"))
        end = parse_date(payload.get("end_date"))
    except ValueError:
        errors.append("Dates must be YYYY-MM-DD.")
        return None, None
    if start and end and end < start:
        errors.append("end_date must be on or after start_date.")
    return start, end


def validate_promotion_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors: list[str] = []
    if not partial or "title" in payload:
        if not clean_str(payload.get("title")):
            errors.append("Title is required.")
    if not partial or "content_type" in payload:
        content_type = clean_str(payload.get("content_type")) or "banner"
        if content_type not in PROMOTION_CONTENT_TYPES:
            errors.append(f"Invalid content_type. Must be one of: {', '.join(PROMOTION_CONTENT_TYPES)}")
    for field in _PROMO_URL_FIELDS:
        value = clean_str(payload.get(field))
        if value and not is_valid_url(value):
            errors.append(f"{field} must be an http(s) URL.")
    if payload.get("display_order") not in (None, "") and parse_int(payload.get("display_order")) is None:
        errors.append("display_order must be an integer.")
    _parse_window(payload, errors)
    return errors


def _apply_promotion(p: PromotionalContent, payload: dict, *, partial: bool) -> dict[str, Any]:
    changes: dict[str, Any] = {}

    def _set(field: str, value: Any) -> None:
        old = getattr(p, field)
        if old != value:
            changes[field] = {"old": old, "new": value}
            setattr(p, field, value)

    if not partial or "title" in payload:
        _set("title", clean_str(payload.get("title")))
    if not partial or "content_type" in payload:
        _set("content_type", clean_str(payload.get("content_type")) or "banner")
    for field in _PROMO_TEXT_FIELDS + _PROMO_URL_FIELDS:
        if not partial or field in payload:
            _set(field, clean_str(payload.get(field)))
    if not partial or "display_order" in payload:
        _set("display_order", parse_int(payload.get("display_order"), 0))
    if not partial or "is_active" in payload:
        _set("is_active", parse_bool(payload.get("is_active"), True))
    if not partial or "start_date" in payload:
        _set("start_date", parse_date(payload.get("start_date")))
    if not partial or "end_date" in payload:
        _set("end_date", parse_date(payload.get("end_date")))
    return changes


def create_promotion(s: "Session", payload: dict, user: "User") -> PromotionalContent:
    errors = validate_promotion_payload(payload)
    if errors:
        raise ValidationError(errors)
    now = datetime.utcnow()
    p = PromotionalContent(created_by=user.id, created_at=now, updated_at=now)
    _apply_promotion(p, payload, partial=False)
    s.add(p)
    s.flush()
    record_event(s, actor=user, action="promotion.create", entity_type="PromotionalContent", entity_id=str(p.id), metadata={"title": p.title})
    return p


def update_promotion(s: "Session", p: PromotionalContent, payload: dict, user: "User") -> PromotionalContent:
    errors = validate_promotion_payload(payload, partial=True)
    if errors:
        raise ValidationError(errors)
    changes = _apply_promotion(p, payload, partial=True)
    if p.start_date and p.end_date and p.end_date < p.start_date:
        raise ValidationError("end_date must be on or after start_date.")
    p.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="promotion.edit", entity_type="PromotionalContent", entity_id=str(p.id), metadata={"changes": changes})
    return p


def delete_promotion(s: "Session", p: PromotionalContent, user: "User") -> None:
    record_event(s, actor=user, action="promotion.delete", entity_type="PromotionalContent", entity_id=str(p.id), metadata={"title": p.title})
    s.delete(p)


def active_promotions(s: "Session", today: date | None = None) -> list[PromotionalContent]:
    today = today or date.today()
    rows = (
        s.query(PromotionalContent)
        .filter(PromotionalContent.is_active.is_(True))
        .order_by(PromotionalContent.display_order.asc(), PromotionalContent.id.asc())
        .all()
    )
    return [p for p in rows if p.is_live(today)]


# ---------- Featured ----------
def _featured_target_model(content_type: str):
    return {"post": Post, "business": Business, "community": Community}[content_type]


def featured_to_dict(f: FeaturedContent) -> dict[str, Any]:
    return {
        "id": f.id,
        "content_type": f.content_type,
        "content_id": f.content_id,
        "placement": f.placement,
        "start_date": isoformat(f.start_date),
        "end_date": isoformat(f.end_date),
        "is_live": f.is_live(),
    }


def create_featured(s: "Session", payload: dict, user: "User") -> FeaturedContent:
    errors: list[str] = []
    content_type = (clean_str(payload.get("content_type")) or "").lower()
    if content_type not in FEATURED_CONTENT_TYPES:
        errors.append(f"Invalid content_type. Must be one of: {', '.join(FEATURED_CONTENT_TYPES)}")
    content_id = parse_int(payload.get("content_id"))
    if content_id is None:
        errors.append("content_id is required.")
    start, end = _parse_window(payload, errors)
    if errors:
        raise ValidationError(errors)
    if s.get(_featured_target_model(content_type), content_id) is None:
        raise NotFoundError(f"{content_type.capitalize()} not found.")

    f = FeaturedContent(
        content_type=content_type,
        content_id=content_id,
        placement=clean_str(payload.get("placement")) or "home",
        start_date=start,
        end_date=end,
        created_by=user.id,
    )
    s.add(f)
    s.flush()
    record_event(
        s,
        actor=user,
        action="featured.create",
        entity_type="FeaturedContent",
        entity_id=str(f.id),
        metadata={"content_type": content_type, "content_id": content_id},
    )
    return f


def delete_featured(s: "Session", f: FeaturedContent, user: "User") -> None:
    record_event(
        s,
        actor=user,
        action="featured.delete",
        entity_type="FeaturedContent",
        entity_id=str(f.id),
        metadata={"content_type": f.content_type, "content_id": f.content_id},
    )
    s.delete(f)


def live_featured(s: "Session", today: date | None = None) -> list[FeaturedContent]:
    today = today or date.today()
    rows = s.query(FeaturedContent).order_by(FeaturedContent.created_at.desc(), FeaturedContent.id.desc()).all()
    return [f for f in rows if f.is_live(today)]


# ---------- Settings ----------
def setting_value(row: PlatformSetting | None) -> Any:
    if row is None:
        return None
    return json.loads(row.value_json) if row.value_json else None


def get_setting(s: "Session", key: str) -> Any:
    return setting_value(s.query(PlatformSetting).filter(PlatformSetting.key == key).one_or_none())


def setting_to_dict(row: PlatformSetting) -> dict[str, Any]:
    return {"key": row.key, "value": setting_value(row), "updated_at": isoformat(row.updated_at)}


def put_setting(s: "Session", key: str, value: Any, user: "User") -> PlatformSetting:
    key = (key or "").strip()
    if not key:
        raise ValidationError("Setting key is required.")
    if key == PUBLIC_KEYS_SETTING and not (isinstance(value, list) and all(isinstance(k, str) for k in value)):
        raise ValidationError("public_keys must be a list of setting keys.")
    row = s.query(PlatformSetting).filter(PlatformSetting.key == key).one_or_none()
    old = setting_value(row)
    if row is None:
        row = PlatformSetting(key=key)
        s.add(row)
    row.value_json = json.dumps(value, default=str)
    row.updated_by = user.id
    row.updated_at = datetime.utcnow()
    s.flush()
    record_event(
        s,
        actor=user,
        action="update_setting",
        entity_type="PlatformSetting",
        entity_id=key,
        metadata={"old": old, "new": value},
    )
    return row


def public_setting(s: "Session", key: str) -> Any:
    """Value of `key` when it is listed in the public_keys setting; otherwise 404."""
    public_keys = get_setting(s, PUBLIC_KEYS_SETTING) or []
    if key not in public_keys:
        raise NotFoundError("Setting not found.")
    row = s.query(PlatformSetting).filter(PlatformSetting.key == key).one_or_none()
    if row is None:
        raise NotFoundError("Setting not found.")
    return setting_value(row)


# ---------- Discovery ----------
def discovery(s: "Session", *, viewer_id: int | None) -> dict[str, Any]:
    return {
        "communities": communities_to_dicts(s, latest_communities(s, DISCOVERY_LIMIT), viewer_id=viewer_id),
        "businesses": businesses_to_dicts(s, latest_businesses(s, DISCOVERY_LIMIT), viewer_id=viewer_id),
        "promotions": [promotion_to_dict(p) for p in active_promotions(s)],
        "featured": [featured_to_dict(f) for f in live_featured(s)],
    }
