from __future__ import annotations

from flask import Blueprint, g

from app.incubator.auth import serialize_user
from app.incubator.db import db_session
from app.incubator.modules.users.service import delete_user, get_user, list_users, update_profile, update_user
from app.incubator.policy import ROLE_ADMIN, require_role
from app.incubator.utils import json_payload, ok, ok_list

bp = Blueprint("users", __name__)


@bp.get("/users/profile")
@bp.get("/users/me")
@require_role()
def profile_get():
    return ok(serialize_user(g.current_user))


@bp.put("/users/profile")
@require_role()
def profile_update():
    s = db_session()
    u = update_profile(s, g.current_user, json_payload())
    s.commit()
    return ok(serialize_user(u))


@bp.get("/users")
@require_role(ROLE_ADMIN)
def users_list():
    s = db_session()
    return ok_list([serialize_user(u) for u in list_users(s)])


@bp.get("/users/<int:user_id>")
@require_role(ROLE_ADMIN)
def users_get(user_id: int):
    s = db_session()
    return ok(serialize_user(get_user(s, user_id)))


@bp.put("/users/<int:user_id>")
@require_role(ROLE_ADMIN)
def users_update(user_id: int):
    s = db_session()
    u = update_user(s, get_user(s, user_id), json_payload(), g.current_user)
    s.commit()
    return ok(serialize_user(u))


@bp.delete("/users/<int:user_id>")
@require_role(ROLE_ADMIN)
def users_delete(user_id: int):
    s = db_session()
    delete_user(s, get_user(s, user_id), g.current_user)
    s.commit()
    return ok(None, message="User removed")
