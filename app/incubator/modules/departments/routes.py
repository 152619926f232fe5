from __future__ import annotations

from flask import Blueprint, current_app, g

from app.incubator.db import db_session
from app.incubator.modules.departments.service import (
    create_department,
    delete_department,
    get_department,
    list_departments,
    serialize_department,
    update_department,
)
from app.incubator.policy import ROLE_ADMIN, require_role
from app.incubator.storage import storage_from_config
from app.incubator.utils import json_payload, ok, ok_list

bp = Blueprint("departments", __name__)


@bp.get("/departments")
def departments_list():
    s = db_session()
    return ok_list([serialize_department(d, brief=True) for d in list_departments(s)])


@bp.get("/departments/<int:department_id>")
def departments_get(department_id: int):
    s = db_session()
    return ok(serialize_department(get_department(s, department_id)))


@bp.post("/departments")
@require_role(ROLE_ADMIN)
def departments_create():
    s = db_session()
    d = create_department(s, json_payload(), g.current_user)
    s.commit()
    return ok(serialize_department(d), 201, message="Department created successfully")


@bp.put("/departments/<int:department_id>")
@require_role(ROLE_ADMIN)
def departments_update(department_id: int):
    s = db_session()
    d = get_department(s, department_id)
    update_department(s, d, json_payload(), g.current_user)
    s.commit()
    return ok(serialize_department(d), message="Department updated successfully")


@bp.delete("/departments/<int:department_id>")
@require_role(ROLE_ADMIN)
def departments_delete(department_id: int):
    s = db_session()
    d = get_department(s, department_id)
    storage_keys = delete_department(s, d, g.current_user)
    s.commit()
    if storage_keys:
        storage = storage_from_config(current_app.config)
        for key in storage_keys:
            storage.remove(key)
    return ok(None, message="Department removed")
