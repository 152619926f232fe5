from __future__ import annotations

from flask import Blueprint, g, request

from app.incubator.db import db_session
from app.incubator.modules.deliverables.service import (
    create_deliverable,
    delete_deliverable,
    get_deliverable,
    list_deliverables,
    list_milestone_deliverables,
    serialize_deliverable,
    update_deliverable,
)
from app.incubator.policy import ROLE_ADMIN, ROLE_EDITOR, require_identity, require_role
from app.incubator.utils import json_payload, ok, ok_list

bp = Blueprint("deliverables", __name__)


@bp.get("/deliverables")
@require_role()
def deliverables_list():
    s = db_session()
    items = list_deliverables(s, require_identity(), milestone=request.args.get("milestone"))
    return ok_list([serialize_deliverable(d) for d in items])


@bp.get("/milestones/<int:milestone_id>/deliverables")
@require_role()
def milestone_deliverables(milestone_id: int):
    s = db_session()
    items = list_milestone_deliverables(s, require_identity(), milestone_id)
    return ok_list([serialize_deliverable(d) for d in items])


@bp.get("/deliverables/<int:deliverable_id>")
@require_role()
def deliverables_get(deliverable_id: int):
    s = db_session()
    return ok(serialize_deliverable(get_deliverable(s, require_identity(), deliverable_id)))


@bp.post("/deliverables")
@require_role(ROLE_ADMIN, ROLE_EDITOR)
def deliverables_create():
    s = db_session()
    d = create_deliverable(s, require_identity(), json_payload(), g.current_user)
    s.commit()
    return ok(serialize_deliverable(d), 201)


@bp.put("/deliverables/<int:deliverable_id>")
@require_role(ROLE_ADMIN, ROLE_EDITOR)
def deliverables_update(deliverable_id: int):
    s = db_session()
    identity = require_identity()
    d = get_deliverable(s, identity, deliverable_id)
    update_deliverable(s, identity, d, json_payload(), g.current_user)
    s.commit()
    return ok(serialize_deliverable(d))


@bp.delete("/deliverables/<int:deliverable_id>")
@require_role(ROLE_ADMIN, ROLE_EDITOR)
def deliverables_delete(deliverable_id: int):
    s = db_session()
    identity = require_identity()
    d = get_deliverable(s, identity, deliverable_id)
    delete_deliverable(s, identity, d, g.current_user)
    s.commit()
    return ok(None, message="Deliverable removed")
