"""
Append-only audit trail.

Every mutation and auth event writes one `AuditEvent` in the caller's
session, so the row commits (or rolls back) together with the change it
describes.
"""
from __future__ import annotations

import json
import logging
from typing import Any

from flask import g, has_request_context, request
from sqlalchemy.orm import Session

from app.incubator.models import AuditEvent, User

logger = logging.getLogger(__name__)

REASON_MAX = 512
ENTITY_ID_MAX = 128


def _clip(value: str | None, limit: int) -> str | None:
    if value is None:
        return None
    return value if len(value) <= limit else value[: limit - 3] + "..."


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> AuditEvent:
    in_request = has_request_context()
    ev = AuditEvent(
        request_id=getattr(g, "request_id", None) if in_request else None,
        actor_user_id=actor.id if actor else None,
        actor_user_email=actor.email if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=_clip(entity_id, ENTITY_ID_MAX),
        reason=_clip(reason, REASON_MAX),
        metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
        client_ip=request.remote_addr if in_request else None,
    )
    s.add(ev)
    logger.debug("audit %s %s:%s actor=%s", action, entity_type, entity_id, ev.actor_user_id)
    return ev


def events_for(s: Session, entity_type: str, entity_id: Any) -> list[AuditEvent]:
    """Trail for one entity, oldest first."""
    return (
        s.query(AuditEvent)
        .filter(AuditEvent.entity_type == entity_type, AuditEvent.entity_id == str(entity_id))
        .order_by(AuditEvent.created_at.asc(), AuditEvent.id.asc())
        .all()
    )


def event_metadata(ev: AuditEvent) -> dict[str, Any]:
    return json.loads(ev.metadata_json) if ev.metadata_json else {}
