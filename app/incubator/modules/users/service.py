from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from werkzeug.security import generate_password_hash

from app.incubator.audit import record_event
from app.incubator.errors import Conflict, NotFound, ValidationError, raise_for_errors
from app.incubator.models import Department, User
from app.incubator.modules.startups.models import Startup
from app.incubator.policy import VALID_ROLES, normalize_role
from app.incubator.utils import check_int, clean_str, parse_bool, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


MIN_PASSWORD_LENGTH = 6


def validate_profile_payload(payload: dict) -> list[str]:
    errors = []
    if "full_name" in payload and not clean_str(payload.get("full_name")):
        errors.append("Full name cannot be empty.")
    email = clean_str(payload.get("email"))
    if "email" in payload and (not email or "@" not in email):
        errors.append("A valid email is required.")
    password = payload.get("password")
    if password is not None and not isinstance(password, str):
        errors.append("Password must be a string.")
    elif password and len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    return errors


def validate_admin_user_payload(payload: dict) -> list[str]:
    errors = validate_profile_payload(payload)
    if "role" in payload and normalize_role(payload.get("role")) is None:
        errors.append(f"Role must be one of: {', '.join(VALID_ROLES)}")
    check_int(errors, payload, "department_id", "Department")
    check_int(errors, payload, "startup_id", "Startup")
    return errors


def get_user(s: "Session", user_id: int) -> User:
    u = s.get(User, user_id)
    if not u:
        raise NotFound("User not found")
    return u


def list_users(s: "Session") -> list[User]:
    return s.query(User).order_by(User.full_name.asc(), User.id.asc()).all()


def _apply_common(s: "Session", u: User, payload: dict, changes: dict) -> None:
    new_name = clean_str(payload.get("full_name"))
    if new_name and new_name != u.full_name:
        changes["full_name"] = {"old": u.full_name, "new": new_name}
        u.full_name = new_name

    new_email = (clean_str(payload.get("email")) or "").lower()
    if new_email and new_email != u.email:
        taken = s.query(User.id).filter(User.email == new_email, User.id != u.id).first()
        if taken:
            raise Conflict("User with this email already exists.")
        changes["email"] = {"old": u.email, "new": new_email}
        u.email = new_email

    if payload.get("password"):
        u.password_hash = generate_password_hash(payload["password"])
        changes["password"] = "changed"


def update_profile(s: "Session", u: User, payload: dict) -> User:
    """Self-service update: name, email, password. Role and affiliation are admin-only."""
    raise_for_errors(validate_profile_payload(payload))
    changes: dict = {}
    _apply_common(s, u, payload, changes)
    if changes:
        u.updated_at = datetime.utcnow()
        record_event(
            s,
            actor=u,
            action="user.profile_update",
            entity_type="User",
            entity_id=str(u.id),
            metadata={"fields": sorted(changes)},
        )
    return u


def update_user(s: "Session", u: User, payload: dict, actor: User) -> User:
    raise_for_errors(validate_admin_user_payload(payload))
    changes: dict = {}
    _apply_common(s, u, payload, changes)

    if "role" in payload:
        new_role = normalize_role(payload.get("role"))
        if new_role != u.role:
            changes["role"] = {"old": u.role, "new": new_role}
            u.role = new_role  # type: ignore[assignment]

    if "department_id" in payload:
        department_id = parse_int(payload.get("department_id"))
        if department_id is not None and s.get(Department, department_id) is None:
            raise ValidationError("Validation failed", details=["Department does not exist."])
        if department_id != u.department_id:
            changes["department_id"] = {"old": u.department_id, "new": department_id}
            u.department_id = department_id

    if "startup_id" in payload:
        startup_id = parse_int(payload.get("startup_id"))
        if startup_id is not None and s.get(Startup, startup_id) is None:
            raise ValidationError("Validation failed", details=["Startup does not exist."])
        if startup_id != u.startup_id:
            changes["startup_id"] = {"old": u.startup_id, "new": startup_id}
            u.startup_id = startup_id

    if "is_active" in payload:
        is_active = parse_bool(payload.get("is_active"), default=u.is_active)
        if is_active != u.is_active:
            changes["is_active"] = {"old": u.is_active, "new": is_active}
            u.is_active = is_active

    if changes:
        u.updated_at = datetime.utcnow()
        if "password" in changes:
            changes["password"] = "reset"
        record_event(
            s,
            actor=actor,
            action="user.update",
            entity_type="User",
            entity_id=str(u.id),
            metadata={"changes": changes},
        )
    return u


def delete_user(s: "Session", u: User, actor: User) -> None:
    if u.id == actor.id:
        raise ValidationError("You cannot delete your own account.")
    record_event(
        s,
        actor=actor,
        action="user.delete",
        entity_type="User",
        entity_id=str(u.id),
        metadata={"email": u.email},
    )
    s.delete(u)
