from __future__ import annotations

import re
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func

from app.incubator.audit import record_event
from app.incubator.errors import Conflict, NotFound, raise_for_errors
from app.incubator.models import Department, User
from app.incubator.modules.meetings.models import Meeting
from app.incubator.modules.milestones.models import Milestone
from app.incubator.modules.resources.models import Resource
from app.incubator.modules.startups.models import Startup
from app.incubator.utils import check_int, clean_str, parse_bool, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


NAME_MAX = 100
DESCRIPTION_MAX = 500
CASCADED = ((Milestone, "Milestone"), (Meeting, "Meeting"), (Resource, "Resource"))


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or "department"


def unique_slug(s: "Session", name: str, *, exclude_id: int | None = None) -> str:
    """Slug derived from name; `-2`, `-3`, ... appended on collision."""
    base = slugify(name)
    candidate = base
    n = 1
    while True:
        q = s.query(Department.id).filter(Department.slug == candidate)
        if exclude_id is not None:
            q = q.filter(Department.id != exclude_id)
        if q.first() is None:
            return candidate
        n += 1
        candidate = f"{base}-{n}"


def validate_department_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors = []
    name = clean_str(payload.get("name"))
    description = clean_str(payload.get("description"))
    if not partial or "name" in payload:
        if not name:
            errors.append("Department name is required.")
        elif len(name) > NAME_MAX:
            errors.append(f"Department name cannot be more than {NAME_MAX} characters.")
    if not partial or "description" in payload:
        if not description:
            errors.append("Department description is required.")
        elif len(description) > DESCRIPTION_MAX:
            errors.append(f"Description cannot be more than {DESCRIPTION_MAX} characters.")
    check_int(errors, payload, "head_user_id", "Department head")
    return errors


def serialize_department(d: Department, *, brief: bool = False) -> dict:
    if brief:
        return {"id": d.id, "name": d.name, "slug": d.slug}
    return {
        "id": d.id,
        "name": d.name,
        "slug": d.slug,
        "description": d.description,
        "head_user_id": d.head_user_id,
        "is_active": d.is_active,
        "member_count": len(d.members),
        "created_at": d.created_at.isoformat() if d.created_at else None,
        "updated_at": d.updated_at.isoformat() if d.updated_at else None,
    }


def _ensure_name_free(s: "Session", name: str, *, exclude_id: int | None = None) -> None:
    q = s.query(Department.id).filter(func.lower(Department.name) == name.lower())
    if exclude_id is not None:
        q = q.filter(Department.id != exclude_id)
    if q.first() is not None:
        raise Conflict("Department with this name already exists.")


def _resolve_head(s: "Session", raw) -> int | None:
    head_id = parse_int(raw)
    if head_id is not None and s.get(User, head_id) is None:
        raise NotFound("Department head user not found")
    return head_id


def list_departments(s: "Session") -> list[Department]:
    return s.query(Department).order_by(Department.name.asc()).all()


def get_department(s: "Session", department_id: int) -> Department:
    d = s.get(Department, department_id)
    if not d:
        raise NotFound("Department not found")
    return d


def create_department(s: "Session", payload: dict, user: User) -> Department:
    raise_for_errors(validate_department_payload(payload))
    name = clean_str(payload["name"])
    _ensure_name_free(s, name)  # type: ignore[arg-type]

    now = datetime.utcnow()
    d = Department(
        name=name,
        description=clean_str(payload["description"]),
        slug=unique_slug(s, name),  # type: ignore[arg-type]
        head_user_id=_resolve_head(s, payload.get("head_user_id")),
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    s.add(d)
    s.flush()
    record_event(
        s,
        actor=user,
        action="department.create",
        entity_type="Department",
        entity_id=str(d.id),
        metadata={"name": d.name, "slug": d.slug},
    )
    return d


def update_department(s: "Session", d: Department, payload: dict, user: User) -> Department:
    raise_for_errors(validate_department_payload(payload, partial=True))
    changes = {}

    new_name = clean_str(payload.get("name"))
    if new_name and new_name != d.name:
        _ensure_name_free(s, new_name, exclude_id=d.id)
        changes["name"] = {"old": d.name, "new": new_name}
        d.name = new_name
        d.slug = unique_slug(s, new_name, exclude_id=d.id)

    new_description = clean_str(payload.get("description"))
    if new_description and new_description != d.description:
        changes["description"] = {"old": d.description, "new": new_description}
        d.description = new_description

    if "head_user_id" in payload:
        new_head = _resolve_head(s, payload.get("head_user_id"))
        if new_head != d.head_user_id:
            changes["head_user_id"] = {"old": d.head_user_id, "new": new_head}
            d.head_user_id = new_head

    if "is_active" in payload:
        is_active = parse_bool(payload.get("is_active"), default=d.is_active)
        if is_active != d.is_active:
            changes["is_active"] = {"old": d.is_active, "new": is_active}
            d.is_active = is_active

    if changes:
        d.updated_at = datetime.utcnow()
        record_event(
            s,
            actor=user,
            action="department.update",
            entity_type="Department",
            entity_id=str(d.id),
            metadata={"changes": changes},
        )
    return d


def delete_department(s: "Session", d: Department, user: User) -> list[str]:
    """
    Refuses while any startup still belongs to the department.

    Milestones, meetings and resources go with the department; each gets its
    own delete event. Returns the stored file keys of the removed resources
    for the caller to remove after commit.
    """
    startup_count = s.query(func.count(Startup.id)).filter(Startup.department_id == d.id).scalar() or 0
    if startup_count:
        raise Conflict(
            "Cannot delete department with associated startups. Please reassign or delete the startups first.",
            details={"startup_count": startup_count},
        )
    record_event(
        s,
        actor=user,
        action="department.delete",
        entity_type="Department",
        entity_id=str(d.id),
        metadata={"name": d.name},
    )
    storage_keys: list[str] = []
    for model, entity_type in CASCADED:
        for child in s.query(model).filter(model.department_id == d.id).order_by(model.id.asc()).all():
            record_event(
                s,
                actor=user,
                action=f"{entity_type.lower()}.delete",
                entity_type=entity_type,
                entity_id=str(child.id),
                reason="department deleted",
                metadata={"title": child.title, "department_id": d.id},
            )
            if getattr(child, "storage_key", None):
                storage_keys.append(child.storage_key)
    s.delete(d)
    return storage_keys
