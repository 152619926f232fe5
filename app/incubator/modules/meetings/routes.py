from __future__ import annotations

from flask import Blueprint, g, request

from app.incubator.db import db_session
from app.incubator.modules.meetings.service import (
    create_meeting,
    delete_meeting,
    get_meeting,
    list_department_meetings,
    list_meetings,
    list_my_meetings,
    meeting_stats,
    rsvp,
    serialize_meeting,
    update_meeting,
)
from app.incubator.policy import ROLE_ADMIN, ROLE_EDITOR, require_identity, require_role
from app.incubator.utils import json_payload, ok, ok_list

bp = Blueprint("meetings", __name__)


def _filters() -> dict:
    return {
        "status": request.args.get("status"),
        "start_date": request.args.get("start_date"),
        "end_date": request.args.get("end_date"),
    }


@bp.get("/meetings")
@require_role()
def meetings_list():
    s = db_session()
    meetings = list_meetings(s, require_identity(), **_filters())
    return ok_list([serialize_meeting(s, m) for m in meetings])


@bp.get("/meetings/mine")
@require_role()
def meetings_mine():
    s = db_session()
    meetings = list_my_meetings(s, require_identity(), **_filters())
    return ok_list([serialize_meeting(s, m) for m in meetings])


@bp.get("/departments/<int:department_id>/meetings")
@require_role()
def department_meetings(department_id: int):
    s = db_session()
    meetings = list_department_meetings(s, require_identity(), department_id, **_filters())
    return ok_list([serialize_meeting(s, m) for m in meetings])


@bp.get("/departments/<int:department_id>/meetings/stats")
@require_role()
def department_meeting_stats(department_id: int):
    s = db_session()
    return ok(meeting_stats(s, require_identity(), department_id))


@bp.get("/meetings/<int:meeting_id>")
@require_role()
def meetings_get(meeting_id: int):
    s = db_session()
    return ok(serialize_meeting(s, get_meeting(s, require_identity(), meeting_id)))


@bp.post("/meetings")
@require_role(ROLE_ADMIN, ROLE_EDITOR)
def meetings_create():
    s = db_session()
    m = create_meeting(s, require_identity(), json_payload(), g.current_user)
    s.commit()
    return ok(serialize_meeting(s, m), 201)


# Organizers may be viewers, so update/delete check permissions in the service.
@bp.put("/meetings/<int:meeting_id>")
@require_role()
def meetings_update(meeting_id: int):
    s = db_session()
    identity = require_identity()
    m = get_meeting(s, identity, meeting_id)
    update_meeting(s, identity, m, json_payload(), g.current_user)
    s.commit()
    return ok(serialize_meeting(s, m))


@bp.delete("/meetings/<int:meeting_id>")
@require_role()
def meetings_delete(meeting_id: int):
    s = db_session()
    identity = require_identity()
    m = get_meeting(s, identity, meeting_id)
    delete_meeting(s, identity, m, g.current_user)
    s.commit()
    return ok({})


@bp.patch("/meetings/<int:meeting_id>/rsvp")
@require_role()
def meetings_rsvp(meeting_id: int):
    s = db_session()
    result = rsvp(s, require_identity(), meeting_id, json_payload(), g.current_user)
    s.commit()
    return ok(result)
