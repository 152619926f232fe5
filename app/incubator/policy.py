"""
Role policy: who may do what to which department's data.

Every entity service funnels its permission decisions through `can` /
`authorize`; routes are additionally guarded by `require_role`.
"""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from functools import wraps
from typing import TYPE_CHECKING, Any

from flask import g

from app.incubator.errors import Forbidden, Unauthenticated, ValidationError

if TYPE_CHECKING:
    from app.incubator.models import User


ROLE_VIEWER = "viewer"
ROLE_EDITOR = "editor"
ROLE_ADMIN = "admin"
VALID_ROLES = (ROLE_VIEWER, ROLE_EDITOR, ROLE_ADMIN)

# Older clients send "user" for the read-only role.
ROLE_ALIASES = {"user": ROLE_VIEWER}

READ = "read"
CREATE = "create"
UPDATE = "update"
DELETE = "delete"
COMMENT = "comment"
ACTIONS = (READ, CREATE, UPDATE, DELETE, COMMENT)

_VIEWER_ACTIONS = frozenset({READ, COMMENT})


def normalize_role(role: str | None) -> str | None:
    if not isinstance(role, str):
        return None
    r = role.strip().lower()
    r = ROLE_ALIASES.get(r, r)
    return r if r in VALID_ROLES else None


@dataclass(frozen=True)
class Identity:
    id: int
    email: str
    role: str
    department_id: int | None = None

    @classmethod
    def from_user(cls, user: "User") -> "Identity":
        return cls(
            id=user.id,
            email=user.email,
            role=normalize_role(user.role) or ROLE_VIEWER,
            department_id=user.department_id,
        )

    @property
    def user_id(self) -> int:
        return self.id

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_editor(self) -> bool:
        return self.role == ROLE_EDITOR


def can(identity: Identity | None, action: str, resource_department_id: int | None) -> bool:
    if identity is None:
        return False
    if action not in ACTIONS:
        raise ValueError(f"Unknown action: {action!r}")
    if identity.is_admin:
        return True
    # Department-less records: readable by everyone, writable by admins only.
    if resource_department_id is None:
        return action == READ
    if identity.department_id is None or identity.department_id != resource_department_id:
        return False
    if identity.is_editor:
        return True
    return action in _VIEWER_ACTIONS


def authorize(
    identity: Identity | None,
    action: str,
    resource_department_id: int | None,
    message: str | None = None,
) -> None:
    """Raise Forbidden unless `can` allows the action."""
    if identity is None:
        raise Unauthenticated()
    if not can(identity, action, resource_department_id):
        raise Forbidden(message or f"Not authorized to {action} this department's data")


def authorize_department_move(identity: Identity, current_department_id: int | None, requested: Any, kind: str) -> int | None:
    """
    Resolve a requested department change on update.

    Returns the new department id (or the current one when unchanged). Only
    admins may move an entity between departments.
    """
    if requested is None or requested == "":
        return current_department_id
    try:
        new_id = int(requested)
    except (TypeError, ValueError):
        raise ValidationError("Validation failed", details=["Department id must be an integer."])
    if new_id != current_department_id and not identity.is_admin:
        raise Forbidden(f"Not authorized to move {kind} between departments")
    return new_id


def current_identity() -> Identity | None:
    return getattr(g, "identity", None)


def require_identity() -> Identity:
    ident = current_identity()
    if ident is None:
        raise Unauthenticated(getattr(g, "auth_error", None))
    return ident


def require_role(*roles: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Route guard: 401 without a valid identity, 403 when the caller's role is not listed.
    With no roles, any authenticated caller passes.
    """
    allowed = {normalize_role(r) for r in roles}
    if None in allowed:
        raise ValueError(f"Unknown role in {roles!r}")

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            ident = require_identity()
            if allowed and ident.role not in allowed:
                raise Forbidden(
                    "Forbidden: You do not have permission to perform this action",
                    details={"required_roles": sorted(allowed), "your_role": ident.role},
                )
            return fn(*args, **kwargs)

        return wrapped

    return decorator
