from __future__ import annotations

from flask import Blueprint, g, request

from app.incubator.db import db_session
from app.incubator.models import Department
from app.incubator.modules.startups.service import (
    create_startup,
    delete_startup,
    get_startup,
    list_startups,
    serialize_startup,
    update_startup,
)
from app.incubator.policy import ROLE_ADMIN, ROLE_EDITOR, require_identity, require_role
from app.incubator.utils import json_payload, ok, ok_list

bp = Blueprint("startups", __name__)


def _serialize(s, st) -> dict:
    department = s.get(Department, st.department_id) if st.department_id else None
    return serialize_startup(st, department)


@bp.get("/startups")
@require_role()
def startups_list():
    s = db_session()
    startups = list_startups(
        s,
        require_identity(),
        cohort=request.args.get("cohort"),
        department=request.args.get("department"),
    )
    return ok_list([_serialize(s, st) for st in startups])


@bp.get("/startups/<int:startup_id>")
@require_role()
def startups_get(startup_id: int):
    s = db_session()
    return ok(_serialize(s, get_startup(s, require_identity(), startup_id)))


@bp.post("/startups")
@require_role(ROLE_ADMIN, ROLE_EDITOR)
def startups_create():
    s = db_session()
    st = create_startup(s, require_identity(), json_payload(), g.current_user)
    s.commit()
    return ok(_serialize(s, st), 201, message="Startup created successfully")


@bp.put("/startups/<int:startup_id>")
@require_role(ROLE_ADMIN, ROLE_EDITOR)
def startups_update(startup_id: int):
    s = db_session()
    identity = require_identity()
    st = get_startup(s, identity, startup_id)
    update_startup(s, identity, st, json_payload(), g.current_user)
    s.commit()
    return ok(_serialize(s, st), message="Startup updated successfully")


@bp.delete("/startups/<int:startup_id>")
@require_role(ROLE_ADMIN)
def startups_delete(startup_id: int):
    s = db_session()
    identity = require_identity()
    st = get_startup(s, identity, startup_id)
    delete_startup(s, identity, st, g.current_user)
    s.commit()
    return ok(None, message="Startup removed")
