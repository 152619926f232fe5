from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from app.incubator.audit import record_event
from app.incubator.errors import NotFound, ValidationError, raise_for_errors
from app.incubator.modules.deliverables.models import Deliverable
from app.incubator.modules.milestones.models import Milestone
from app.incubator.policy import CREATE, DELETE, READ, UPDATE, Identity, authorize
from app.incubator.scoping import scope_to_department
from app.incubator.utils import check_date, check_int, clean_str, iso, parse_bool, parse_date, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from app.incubator.models import User


TITLE_MAX = 200


def validate_deliverable_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors = []
    title = clean_str(payload.get("title"))
    if not partial or "title" in payload:
        if not title:
            errors.append("Title is required.")
        elif len(title) > TITLE_MAX:
            errors.append(f"Title cannot be more than {TITLE_MAX} characters.")
    check_date(errors, payload, "due_date", "Due date")
    if not partial:
        if payload.get("milestone_id") in (None, ""):
            errors.append("Milestone reference is required.")
        else:
            check_int(errors, payload, "milestone_id", "Milestone")
    return errors


def serialize_deliverable(d: Deliverable) -> dict:
    return {
        "id": d.id,
        "title": d.title,
        "description": d.description,
        "due_date": iso(d.due_date),
        "is_completed": d.is_completed,
        "milestone_id": d.milestone_id,
        "department_id": d.milestone.department_id if d.milestone else None,
        "created_at": iso(d.created_at),
        "updated_at": iso(d.updated_at),
    }


def _milestone_or_404(s: "Session", milestone_id: int | None) -> Milestone:
    m = s.get(Milestone, milestone_id) if milestone_id is not None else None
    if not m:
        raise NotFound("Milestone not found")
    return m


def get_deliverable(s: "Session", identity: Identity, deliverable_id: int) -> Deliverable:
    d = s.get(Deliverable, deliverable_id)
    if not d:
        raise NotFound("Deliverable not found")
    authorize(identity, READ, d.milestone.department_id, "Not authorized to access this deliverable")
    return d


def list_deliverables(s: "Session", identity: Identity, *, milestone=None) -> list[Deliverable]:
    q = s.query(Deliverable).join(Milestone, Deliverable.milestone_id == Milestone.id)
    q = scope_to_department(q, Milestone.department_id, identity)
    if milestone not in (None, ""):
        try:
            milestone_id = parse_int(milestone)
        except (TypeError, ValueError):
            raise ValidationError("Invalid milestone ID format", details=["The provided milestone ID is not valid."])
        q = q.filter(Deliverable.milestone_id == milestone_id)
    return q.order_by(Deliverable.created_at.desc(), Deliverable.id.desc()).all()


def list_milestone_deliverables(s: "Session", identity: Identity, milestone_id: int) -> list[Deliverable]:
    m = _milestone_or_404(s, milestone_id)
    authorize(identity, READ, m.department_id, "Not authorized to view deliverables for this milestone")
    return (
        s.query(Deliverable)
        .filter(Deliverable.milestone_id == m.id)
        .order_by(Deliverable.created_at.desc(), Deliverable.id.desc())
        .all()
    )


def create_deliverable(s: "Session", identity: Identity, payload: dict, user: "User") -> Deliverable:
    raise_for_errors(validate_deliverable_payload(payload))
    m = _milestone_or_404(s, parse_int(payload["milestone_id"]))
    authorize(identity, CREATE, m.department_id, "Not authorized to add deliverables to this milestone")

    now = datetime.utcnow()
    d = Deliverable(
        title=clean_str(payload["title"]),
        description=clean_str(payload.get("description")),
        due_date=parse_date(payload.get("due_date")),
        is_completed=False,
        milestone_id=m.id,
        created_by_user_id=user.id,
        created_at=now,
        updated_at=now,
    )
    d.milestone = m
    s.add(d)
    s.flush()
    record_event(
        s,
        actor=user,
        action="deliverable.create",
        entity_type="Deliverable",
        entity_id=str(d.id),
        metadata={"title": d.title, "milestone_id": m.id},
    )
    return d


def update_deliverable(s: "Session", identity: Identity, d: Deliverable, payload: dict, user: "User") -> Deliverable:
    authorize(identity, UPDATE, d.milestone.department_id, "Not authorized to update this deliverable")
    raise_for_errors(validate_deliverable_payload(payload, partial=True))
    changes = {}

    new_title = clean_str(payload.get("title"))
    if new_title and new_title != d.title:
        changes["title"] = {"old": d.title, "new": new_title}
        d.title = new_title

    if "description" in payload:
        new_description = clean_str(payload.get("description"))
        if new_description != d.description:
            changes["description"] = {"old": d.description, "new": new_description}
            d.description = new_description

    if "due_date" in payload:
        new_due = parse_date(payload.get("due_date"))
        if new_due != d.due_date:
            changes["due_date"] = {"old": iso(d.due_date), "new": iso(new_due)}
            d.due_date = new_due

    if "is_completed" in payload:
        new_completed = parse_bool(payload.get("is_completed"))
        if new_completed != d.is_completed:
            changes["is_completed"] = {"old": d.is_completed, "new": new_completed}
            d.is_completed = new_completed

    if changes:
        d.updated_at = datetime.utcnow()
        record_event(
            s,
            actor=user,
            action="deliverable.update",
            entity_type="Deliverable",
            entity_id=str(d.id),
            metadata={"changes": changes},
        )
    return d


def delete_deliverable(s: "Session", identity: Identity, d: Deliverable, user: "User") -> None:
    authorize(identity, DELETE, d.milestone.department_id, "Not authorized to delete this deliverable")
    record_event(
        s,
        actor=user,
        action="deliverable.delete",
        entity_type="Deliverable",
        entity_id=str(d.id),
        metadata={"title": d.title, "milestone_id": d.milestone_id},
    )
    s.delete(d)
