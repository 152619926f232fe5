from __future__ import annotations

from flask import Blueprint, current_app, g, request, send_file

from app.incubator.db import db_session
from app.incubator.errors import ValidationError
from app.incubator.modules.resources.service import (
    create_resource,
    delete_resource,
    get_resource,
    list_department_resources,
    list_resources,
    resource_file,
    resource_stats,
    serialize_resource,
    update_resource,
    upload_resource_file,
)
from app.incubator.policy import ROLE_ADMIN, ROLE_EDITOR, require_identity, require_role
from app.incubator.storage import storage_from_config
from app.incubator.utils import json_payload, ok, ok_list

bp = Blueprint("resources", __name__)


@bp.get("/resources")
@require_role()
def resources_list():
    s = db_session()
    items = list_resources(s, require_identity(), rtype=request.args.get("type"), tag=request.args.get("tag"))
    return ok_list([serialize_resource(s, r) for r in items])


@bp.get("/departments/<int:department_id>/resources")
@require_role()
def department_resources(department_id: int):
    s = db_session()
    items = list_department_resources(
        s,
        require_identity(),
        department_id,
        rtype=request.args.get("type"),
        tag=request.args.get("tag"),
    )
    return ok_list([serialize_resource(s, r) for r in items])


@bp.get("/departments/<int:department_id>/resources/stats")
@require_role()
def department_resource_stats(department_id: int):
    s = db_session()
    return ok(resource_stats(s, require_identity(), department_id))


@bp.get("/resources/<int:resource_id>")
@require_role()
def resources_get(resource_id: int):
    s = db_session()
    return ok(serialize_resource(s, get_resource(s, require_identity(), resource_id)))


@bp.post("/resources")
@require_role(ROLE_ADMIN, ROLE_EDITOR)
def resources_create():
    s = db_session()
    r = create_resource(s, require_identity(), json_payload(), g.current_user)
    s.commit()
    return ok(serialize_resource(s, r), 201)


@bp.put("/resources/<int:resource_id>")
@require_role(ROLE_ADMIN, ROLE_EDITOR)
def resources_update(resource_id: int):
    s = db_session()
    identity = require_identity()
    r = get_resource(s, identity, resource_id)
    update_resource(s, identity, r, json_payload(), g.current_user)
    s.commit()
    return ok(serialize_resource(s, r))


@bp.delete("/resources/<int:resource_id>")
@require_role(ROLE_ADMIN, ROLE_EDITOR)
def resources_delete(resource_id: int):
    s = db_session()
    identity = require_identity()
    r = get_resource(s, identity, resource_id)
    storage_key = delete_resource(s, identity, r, g.current_user)
    s.commit()
    if storage_key:
        storage_from_config(current_app.config).remove(storage_key)
    return ok({})


@bp.post("/resources/<int:resource_id>/file")
@require_role(ROLE_ADMIN, ROLE_EDITOR)
def resources_upload(resource_id: int):
    s = db_session()
    identity = require_identity()
    r = get_resource(s, identity, resource_id)
    f = request.files.get("file")
    if not f or not f.filename:
        raise ValidationError("Validation failed", details=["A file is required."])
    storage = storage_from_config(current_app.config)
    stale_key = upload_resource_file(
        s,
        identity,
        r,
        storage,
        f.read(),
        f.filename,
        f.mimetype,
        g.current_user,
    )
    s.commit()
    if stale_key:
        storage.remove(stale_key)
    return ok(serialize_resource(s, r), message="File uploaded")


@bp.get("/resources/<int:resource_id>/download")
@require_role()
def resources_download(resource_id: int):
    s = db_session()
    identity = require_identity()
    r = get_resource(s, identity, resource_id)
    fobj = resource_file(s, identity, r, storage_from_config(current_app.config), g.current_user)
    s.commit()
    return send_file(
        fobj,
        mimetype=r.file_type or "application/octet-stream",
        as_attachment=True,
        download_name=r.file_name or "download.bin",
        max_age=0,
    )
