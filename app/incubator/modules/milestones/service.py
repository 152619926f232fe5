from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import func

from app.incubator.audit import record_event
from app.incubator.errors import NotFound, ValidationError, raise_for_errors
from app.incubator.models import User
from app.incubator.modules.milestones.models import Milestone, MilestoneComment
from app.incubator.policy import (
    COMMENT,
    CREATE,
    DELETE,
    READ,
    UPDATE,
    Identity,
    authorize,
    authorize_department_move,
)
from app.incubator.scoping import check_department_listing, get_department_or_404, scope_to_department
from app.incubator.utils import check_date, check_int, clean_str, iso, parse_date, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


STATUS_NOT_STARTED = "Not Started"
STATUS_IN_PROGRESS = "In Progress"
STATUS_COMPLETED = "Completed"
STATUS_ON_HOLD = "On Hold"
STATUS_ABANDONED = "Abandoned"
VALID_STATUSES = (STATUS_NOT_STARTED, STATUS_IN_PROGRESS, STATUS_COMPLETED, STATUS_ON_HOLD, STATUS_ABANDONED)
OPEN_STATUSES = (STATUS_NOT_STARTED, STATUS_IN_PROGRESS)

TITLE_MAX = 100
DESCRIPTION_MAX = 1000

UPCOMING_WINDOW = timedelta(days=7)
RECENT_WINDOW = timedelta(days=30)
SUMMARY_LIMIT = 5


def validate_milestone_payload(payload: dict, *, partial: bool = False, today: date | None = None) -> list[str]:
    errors = []
    title = clean_str(payload.get("title"))
    if not partial or "title" in payload:
        if not title:
            errors.append("Title is required.")
        elif len(title) > TITLE_MAX:
            errors.append(f"Title cannot be more than {TITLE_MAX} characters.")
    description = clean_str(payload.get("description"))
    if description and len(description) > DESCRIPTION_MAX:
        errors.append(f"Description cannot be more than {DESCRIPTION_MAX} characters.")
    status = clean_str(payload.get("status"))
    if status and status not in VALID_STATUSES:
        errors.append(f"{status} is not a valid status. Must be one of: {', '.join(VALID_STATUSES)}")
    check_date(errors, payload, "due_date", "Due date")
    if not errors:
        due = parse_date(payload.get("due_date"))
        if due is not None and due < (today or date.today()):
            errors.append("Due date must be in the future.")
    if not partial:
        if payload.get("department_id") in (None, ""):
            errors.append("Department reference is required.")
        else:
            check_int(errors, payload, "department_id", "Department")
    return errors


def apply_status_transition(milestone: Milestone, new_status: str, now: datetime) -> None:
    """
    Set the status and keep completed_at consistent with it.

    Entering Completed stamps completed_at once (re-completing keeps the first
    stamp); leaving Completed clears it.
    """
    if new_status not in VALID_STATUSES:
        raise ValidationError("Validation failed", details=[f"{new_status} is not a valid status."])
    if new_status == STATUS_COMPLETED:
        if milestone.status != STATUS_COMPLETED or milestone.completed_at is None:
            milestone.completed_at = now
    else:
        milestone.completed_at = None
    milestone.status = new_status


def _user_brief(s: "Session", user_id: int | None) -> dict | None:
    if user_id is None:
        return None
    u = s.get(User, user_id)
    if not u:
        return None
    return {"id": u.id, "full_name": u.full_name, "email": u.email}


def serialize_milestone(s: "Session", m: Milestone) -> dict:
    return {
        "id": m.id,
        "title": m.title,
        "description": m.description,
        "status": m.status,
        "due_date": iso(m.due_date),
        "is_overdue": bool(m.due_date and m.status != STATUS_COMPLETED and m.due_date < date.today()),
        "department_id": m.department_id,
        "created_by": _user_brief(s, m.created_by_user_id),
        "completed_at": iso(m.completed_at),
        "created_at": iso(m.created_at),
        "updated_at": iso(m.updated_at),
    }


def serialize_comment(s: "Session", c: MilestoneComment) -> dict:
    return {
        "id": c.id,
        "milestone_id": c.milestone_id,
        "text": c.text,
        "author": _user_brief(s, c.author_user_id),
        "created_at": iso(c.created_at),
    }


def get_milestone(s: "Session", identity: Identity, milestone_id: int) -> Milestone:
    m = s.get(Milestone, milestone_id)
    if not m:
        raise NotFound("Milestone not found")
    authorize(identity, READ, m.department_id, "Not authorized to access this milestone")
    return m


def _ordered(q):
    # Undated milestones sort last.
    return q.order_by(Milestone.due_date.is_(None), Milestone.due_date.asc(), Milestone.status.asc(), Milestone.id.asc())


def list_milestones(s: "Session", identity: Identity, *, department=None, status: str | None = None) -> list[Milestone]:
    q = scope_to_department(s.query(Milestone), Milestone.department_id, identity)
    if department not in (None, ""):
        try:
            department_id = parse_int(department)
        except (TypeError, ValueError):
            raise ValidationError("Invalid department ID format", details=["The provided department ID is not valid."])
        q = q.filter(Milestone.department_id == department_id)
    if clean_str(status):
        q = q.filter(Milestone.status == clean_str(status))
    return _ordered(q).all()


def list_department_milestones(s: "Session", identity: Identity, department_id: int) -> list[Milestone]:
    check_department_listing(s, identity, department_id, "milestones")
    q = s.query(Milestone).filter(Milestone.department_id == department_id)
    q = scope_to_department(q, Milestone.department_id, identity)
    return _ordered(q).all()


def milestone_summary(s: "Session", identity: Identity, department_id: int, now: datetime | None = None) -> dict:
    """Dashboard rollup: counts by status, upcoming work, recent completions."""
    check_department_listing(s, identity, department_id, "milestones")
    now = now or datetime.utcnow()
    today = now.date()

    base = scope_to_department(
        s.query(Milestone).filter(Milestone.department_id == department_id),
        Milestone.department_id,
        identity,
    )

    counts = (
        base.with_entities(Milestone.status, func.count(Milestone.id))
        .group_by(Milestone.status)
        .all()
    )
    upcoming = (
        base.filter(
            Milestone.due_date.isnot(None),
            Milestone.due_date >= today,
            Milestone.due_date <= (now + UPCOMING_WINDOW).date(),
            Milestone.status.in_(OPEN_STATUSES),
        )
        .order_by(Milestone.due_date.asc(), Milestone.id.asc())
        .limit(SUMMARY_LIMIT)
        .all()
    )
    recently_completed = (
        base.filter(
            Milestone.status == STATUS_COMPLETED,
            Milestone.completed_at.isnot(None),
            Milestone.completed_at >= now - RECENT_WINDOW,
        )
        .order_by(Milestone.completed_at.desc(), Milestone.id.desc())
        .limit(SUMMARY_LIMIT)
        .all()
    )
    return {
        "status": {status: count for status, count in counts},
        "upcoming": [serialize_milestone(s, m) for m in upcoming],
        "recently_completed": [serialize_milestone(s, m) for m in recently_completed],
    }


def create_milestone(s: "Session", identity: Identity, payload: dict, user: User) -> Milestone:
    raise_for_errors(validate_milestone_payload(payload))
    department = get_department_or_404(s, parse_int(payload["department_id"]))  # type: ignore[arg-type]
    authorize(identity, CREATE, department.id, "Not authorized to add milestones to this department")

    now = datetime.utcnow()
    m = Milestone(
        title=clean_str(payload["title"]),
        description=clean_str(payload.get("description")),
        status=STATUS_NOT_STARTED,
        due_date=parse_date(payload.get("due_date")),
        department_id=department.id,
        created_by_user_id=user.id,
        created_at=now,
        updated_at=now,
    )
    apply_status_transition(m, clean_str(payload.get("status")) or STATUS_NOT_STARTED, now)
    s.add(m)
    s.flush()
    record_event(
        s,
        actor=user,
        action="milestone.create",
        entity_type="Milestone",
        entity_id=str(m.id),
        metadata={"title": m.title, "status": m.status, "department_id": m.department_id},
    )
    return m


def update_milestone(s: "Session", identity: Identity, m: Milestone, payload: dict, user: User) -> Milestone:
    authorize(identity, UPDATE, m.department_id, "Not authorized to update this milestone")
    new_department = authorize_department_move(identity, m.department_id, payload.get("department_id"), "milestones")
    raise_for_errors(validate_milestone_payload(payload, partial=True))
    now = datetime.utcnow()
    changes = {}

    if new_department != m.department_id:
        get_department_or_404(s, new_department)  # type: ignore[arg-type]
        changes["department_id"] = {"old": m.department_id, "new": new_department}
        m.department_id = new_department  # type: ignore[assignment]

    new_title = clean_str(payload.get("title"))
    if new_title and new_title != m.title:
        changes["title"] = {"old": m.title, "new": new_title}
        m.title = new_title

    if "description" in payload:
        new_description = clean_str(payload.get("description"))
        if new_description != m.description:
            changes["description"] = {"old": m.description, "new": new_description}
            m.description = new_description

    if "due_date" in payload:
        new_due = parse_date(payload.get("due_date"))
        if new_due != m.due_date:
            changes["due_date"] = {"old": iso(m.due_date), "new": iso(new_due)}
            m.due_date = new_due

    new_status = clean_str(payload.get("status"))
    if new_status:
        old_status = m.status
        apply_status_transition(m, new_status, now)
        if new_status != old_status:
            changes["status"] = {"old": old_status, "new": new_status}

    if changes:
        m.updated_at = now
        record_event(
            s,
            actor=user,
            action="milestone.update",
            entity_type="Milestone",
            entity_id=str(m.id),
            metadata={"changes": changes},
        )
    return m


def delete_milestone(s: "Session", identity: Identity, m: Milestone, user: User) -> None:
    authorize(identity, DELETE, m.department_id, "Not authorized to delete this milestone")
    record_event(
        s,
        actor=user,
        action="milestone.delete",
        entity_type="Milestone",
        entity_id=str(m.id),
        metadata={"title": m.title, "department_id": m.department_id},
    )
    s.delete(m)


def list_comments(s: "Session", identity: Identity, m: Milestone) -> list[MilestoneComment]:
    authorize(identity, COMMENT, m.department_id, "Not authorized to view comments for this milestone")
    return list(m.comments)


def add_comment(s: "Session", identity: Identity, m: Milestone, payload: dict, user: User) -> MilestoneComment:
    text = payload.get("text")
    if not isinstance(text, str) or not text.strip():
        raise ValidationError("Validation failed", details=["Please provide valid comment text."])
    authorize(identity, COMMENT, m.department_id, "Not authorized to comment on this milestone")

    c = MilestoneComment(milestone_id=m.id, author_user_id=user.id, text=text.strip(), created_at=datetime.utcnow())
    s.add(c)
    s.flush()
    record_event(
        s,
        actor=user,
        action="milestone.comment",
        entity_type="MilestoneComment",
        entity_id=str(c.id),
        metadata={"milestone_id": m.id},
    )
    return c
