import json
from typing import Any

from flask import g, has_request_context, request
from sqlalchemy.orm import Session

from app.samrambhaka.models import AuditEvent, User


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditEvent:
    """
    Append-only audit event helper.
    """
    in_request = has_request_context()
    rid = request_id or (getattr(g, "request_id", None) if in_request else None)
    ev = AuditEvent(
        request_id=rid,
        actor_user_id=actor.id if actor else None,
        actor_user_email=actor.email if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
        metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
        client_ip=request.remote_addr if in_request else None,
    )
    s.add(ev)
    return ev


def event_to_dict(ev: AuditEvent) -> dict:
    return {
        "id": ev.id,
        "created_at": ev.created_at.isoformat() if ev.created_at else None,
        "actor_user_id": ev.actor_user_id,
        "actor_user_email": ev.actor_user_email,
        "action": ev.action,
        "entity_type": ev.entity_type,
        "entity_id": ev.entity_id,
        "reason": ev.reason,
        "metadata": json.loads(ev.metadata_json) if ev.metadata_json else None,
    }


def recent_events(
    s: Session,
    *,
    action: str | None = None,
    entity_type: str | None = None,
    actor_user_id: int | None = None,
    limit: int = 200,
) -> list[AuditEvent]:
    """Newest-first slice of the trail; this is the admin activity log."""
    q = s.query(AuditEvent)
    if action:
        q = q.filter(AuditEvent.action == action)
    if entity_type:
        q = q.filter(AuditEvent.entity_type == entity_type)
    if actor_user_id is not None:
        q = q.filter(AuditEvent.actor_user_id == actor_user_id)
    return q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(limit).all()
