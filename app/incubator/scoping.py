"""
Department-scoping filter for list queries.

Applied to every list endpoint so that editors only see their department and
viewers only see their department plus whatever the entity marks as public.
Single-entity reads/writes go through `policy.authorize` instead.
"""
from __future__ import annotations

from typing import Any

from sqlalchemy import ColumnElement, false, or_
from sqlalchemy.orm import Query, Session

from app.incubator.errors import Forbidden, NotFound
from app.incubator.models import Department
from app.incubator.policy import Identity


def department_clause(
    column: Any,
    identity: Identity,
    *,
    public_clause: ColumnElement[bool] | None = None,
    include_unassigned: bool = False,
) -> ColumnElement[bool] | None:
    """
    Build the WHERE clause restricting `column` (a department_id column) for `identity`.
    Returns None when no restriction applies (admins).
    """
    if identity.is_admin:
        return None

    clauses: list[ColumnElement[bool]] = []
    if identity.department_id is not None:
        clauses.append(column == identity.department_id)
    if include_unassigned:
        clauses.append(column.is_(None))
    if not identity.is_editor and public_clause is not None:
        clauses.append(public_clause)

    if not clauses:
        return false()
    if len(clauses) == 1:
        return clauses[0]
    return or_(*clauses)


def scope_to_department(
    q: Query,
    column: Any,
    identity: Identity,
    *,
    public_clause: ColumnElement[bool] | None = None,
    include_unassigned: bool = False,
) -> Query:
    clause = department_clause(
        column,
        identity,
        public_clause=public_clause,
        include_unassigned=include_unassigned,
    )
    if clause is None:
        return q
    return q.filter(clause)


def get_department_or_404(s: Session, department_id: int) -> Department:
    department = s.get(Department, department_id)
    if not department:
        raise NotFound("Department not found")
    return department


def check_department_listing(s: Session, identity: Identity, department_id: int, kind: str) -> Department:
    """
    Gate for `/departments/<id>/...` listings: 404 for an unknown department,
    403 for an editor of another department. Viewers pass and are narrowed by
    the scope filter afterwards.
    """
    department = get_department_or_404(s, department_id)
    if identity.is_editor and identity.department_id != department.id:
        raise Forbidden(f"Not authorized to view {kind} for this department")
    return department
