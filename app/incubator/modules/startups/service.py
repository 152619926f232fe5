from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func

from app.incubator.audit import record_event
from app.incubator.errors import Conflict, NotFound, ValidationError, raise_for_errors
from app.incubator.models import Department
from app.incubator.modules.startups.models import Startup
from app.incubator.policy import CREATE, DELETE, READ, UPDATE, Identity, authorize, authorize_department_move
from app.incubator.scoping import scope_to_department
from app.incubator.utils import clean_str, iso, parse_bool, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from app.incubator.models import User


VALID_COHORTS = ("I", "II", "III")
NAME_MAX = 100
DESCRIPTION_MAX = 1000


def validate_startup_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors = []
    name = clean_str(payload.get("name"))
    description = clean_str(payload.get("description"))
    cohort = clean_str(payload.get("cohort"))
    if not partial or "name" in payload:
        if not name:
            errors.append("Name is required.")
        elif len(name) > NAME_MAX:
            errors.append(f"Name cannot be more than {NAME_MAX} characters.")
    if not partial or "description" in payload:
        if not description:
            errors.append("Description is required.")
        elif len(description) > DESCRIPTION_MAX:
            errors.append(f"Description cannot be more than {DESCRIPTION_MAX} characters.")
    if not partial or "cohort" in payload:
        if not cohort:
            errors.append("Cohort is required.")
        elif cohort not in VALID_COHORTS:
            errors.append(f"Cohort must be one of: {', '.join(VALID_COHORTS)}")
    return errors


def serialize_startup(st: Startup, department: Department | None = None) -> dict:
    return {
        "id": st.id,
        "name": st.name,
        "description": st.description,
        "cohort": st.cohort,
        "department_id": st.department_id,
        "department": {"id": department.id, "name": department.name} if department else None,
        "is_active": st.is_active,
        "created_at": iso(st.created_at),
        "updated_at": iso(st.updated_at),
    }


def _ensure_name_free(s: "Session", name: str, *, exclude_id: int | None = None) -> None:
    q = s.query(Startup.id).filter(func.lower(Startup.name) == name.lower())
    if exclude_id is not None:
        q = q.filter(Startup.id != exclude_id)
    if q.first() is not None:
        raise Conflict("A startup with this name already exists.")


def _parse_department_filter(raw) -> int | None:
    try:
        return parse_int(raw)
    except (TypeError, ValueError):
        raise ValidationError("Invalid department ID format", details=["The provided department ID is not valid."])


def _require_department(s: "Session", department_id: int | None) -> None:
    if department_id is not None and s.get(Department, department_id) is None:
        raise NotFound("Department not found")


def list_startups(s: "Session", identity: Identity, *, cohort: str | None = None, department=None) -> list[Startup]:
    q = s.query(Startup)
    q = scope_to_department(q, Startup.department_id, identity, include_unassigned=True)
    if clean_str(cohort):
        q = q.filter(Startup.cohort == clean_str(cohort))
    department_id = _parse_department_filter(department)
    if department_id is not None:
        q = q.filter(Startup.department_id == department_id)
    return q.order_by(Startup.created_at.desc(), Startup.id.desc()).all()


def get_startup(s: "Session", identity: Identity, startup_id: int) -> Startup:
    st = s.get(Startup, startup_id)
    if not st:
        raise NotFound("Startup not found")
    authorize(identity, READ, st.department_id, "Not authorized to view this startup")
    return st


def create_startup(s: "Session", identity: Identity, payload: dict, user: "User") -> Startup:
    raise_for_errors(validate_startup_payload(payload))
    department_id = _parse_department_filter(payload.get("department_id"))
    if department_id is None and identity.is_editor:
        department_id = identity.department_id
    _require_department(s, department_id)
    authorize(identity, CREATE, department_id, "Not authorized to create startups for this department")

    name = clean_str(payload["name"])
    _ensure_name_free(s, name)  # type: ignore[arg-type]

    now = datetime.utcnow()
    st = Startup(
        name=name,
        description=clean_str(payload["description"]),
        cohort=clean_str(payload["cohort"]),
        department_id=department_id,
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    s.add(st)
    s.flush()
    record_event(
        s,
        actor=user,
        action="startup.create",
        entity_type="Startup",
        entity_id=str(st.id),
        metadata={"name": st.name, "cohort": st.cohort, "department_id": st.department_id},
    )
    return st


def update_startup(s: "Session", identity: Identity, st: Startup, payload: dict, user: "User") -> Startup:
    authorize(identity, UPDATE, st.department_id, "Not authorized to update this startup")
    raise_for_errors(validate_startup_payload(payload, partial=True))
    changes = {}

    if "department_id" in payload:
        new_department = authorize_department_move(identity, st.department_id, payload.get("department_id"), "startups")
        _require_department(s, new_department)
        if new_department != st.department_id:
            changes["department_id"] = {"old": st.department_id, "new": new_department}
            st.department_id = new_department

    new_name = clean_str(payload.get("name"))
    if new_name and new_name != st.name:
        _ensure_name_free(s, new_name, exclude_id=st.id)
        changes["name"] = {"old": st.name, "new": new_name}
        st.name = new_name

    new_description = clean_str(payload.get("description"))
    if new_description and new_description != st.description:
        changes["description"] = {"old": st.description, "new": new_description}
        st.description = new_description

    new_cohort = clean_str(payload.get("cohort"))
    if new_cohort and new_cohort != st.cohort:
        changes["cohort"] = {"old": st.cohort, "new": new_cohort}
        st.cohort = new_cohort

    if "is_active" in payload:
        is_active = parse_bool(payload.get("is_active"), default=st.is_active)
        if is_active != st.is_active:
            changes["is_active"] = {"old": st.is_active, "new": is_active}
            st.is_active = is_active

    if changes:
        st.updated_at = datetime.utcnow()
        record_event(
            s,
            actor=user,
            action="startup.update",
            entity_type="Startup",
            entity_id=str(st.id),
            metadata={"changes": changes},
        )
    return st


def delete_startup(s: "Session", identity: Identity, st: Startup, user: "User") -> None:
    authorize(identity, DELETE, st.department_id, "Not authorized to delete this startup")
    record_event(
        s,
        actor=user,
        action="startup.delete",
        entity_type="Startup",
        entity_id=str(st.id),
        metadata={"name": st.name},
    )
    s.delete(st)
