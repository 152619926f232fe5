from __future__ import annotations

from flask import Blueprint, g, request

from app.incubator.db import db_session
from app.incubator.modules.milestones.service import (
    add_comment,
    create_milestone,
    delete_milestone,
    get_milestone,
    list_comments,
    list_department_milestones,
    list_milestones,
    milestone_summary,
    serialize_comment,
    serialize_milestone,
    update_milestone,
)
from app.incubator.policy import ROLE_ADMIN, ROLE_EDITOR, require_identity, require_role
from app.incubator.utils import json_payload, ok, ok_list

bp = Blueprint("milestones", __name__)


@bp.get("/milestones")
@require_role()
def milestones_list():
    s = db_session()
    milestones = list_milestones(
        s,
        require_identity(),
        department=request.args.get("department"),
        status=request.args.get("status"),
    )
    return ok_list([serialize_milestone(s, m) for m in milestones])


@bp.get("/departments/<int:department_id>/milestones")
@require_role()
def department_milestones(department_id: int):
    s = db_session()
    milestones = list_department_milestones(s, require_identity(), department_id)
    return ok_list([serialize_milestone(s, m) for m in milestones])


@bp.get("/departments/<int:department_id>/milestones/summary")
@require_role()
def department_milestones_summary(department_id: int):
    s = db_session()
    return ok(milestone_summary(s, require_identity(), department_id))


@bp.get("/milestones/<int:milestone_id>")
@require_role()
def milestones_get(milestone_id: int):
    s = db_session()
    return ok(serialize_milestone(s, get_milestone(s, require_identity(), milestone_id)))


@bp.post("/milestones")
@require_role(ROLE_ADMIN, ROLE_EDITOR)
def milestones_create():
    s = db_session()
    m = create_milestone(s, require_identity(), json_payload(), g.current_user)
    s.commit()
    return ok(serialize_milestone(s, m), 201)


@bp.put("/milestones/<int:milestone_id>")
@require_role(ROLE_ADMIN, ROLE_EDITOR)
def milestones_update(milestone_id: int):
    s = db_session()
    identity = require_identity()
    m = get_milestone(s, identity, milestone_id)
    update_milestone(s, identity, m, json_payload(), g.current_user)
    s.commit()
    return ok(serialize_milestone(s, m))


@bp.delete("/milestones/<int:milestone_id>")
@require_role(ROLE_ADMIN, ROLE_EDITOR)
def milestones_delete(milestone_id: int):
    s = db_session()
    identity = require_identity()
    m = get_milestone(s, identity, milestone_id)
    delete_milestone(s, identity, m, g.current_user)
    s.commit()
    return ok({})


@bp.get("/milestones/<int:milestone_id>/comments")
@require_role()
def milestone_comments(milestone_id: int):
    s = db_session()
    identity = require_identity()
    m = get_milestone(s, identity, milestone_id)
    return ok_list([serialize_comment(s, c) for c in list_comments(s, identity, m)])


@bp.post("/milestones/<int:milestone_id>/comments")
@require_role()
def milestone_comment_add(milestone_id: int):
    s = db_session()
    identity = require_identity()
    m = get_milestone(s, identity, milestone_id)
    c = add_comment(s, identity, m, json_payload(), g.current_user)
    s.commit()
    return ok(serialize_comment(s, c), 201)
