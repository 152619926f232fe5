from __future__ import annotations

from collections import Counter
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import and_, func, or_
from werkzeug.utils import secure_filename

from app.incubator.audit import record_event
from app.incubator.errors import Forbidden, NotFound, ValidationError, raise_for_errors
from app.incubator.models import User
from app.incubator.modules.resources.models import Resource, ResourceAccess
from app.incubator.policy import CREATE, DELETE, UPDATE, Identity, authorize, authorize_department_move
from app.incubator.scoping import check_department_listing, get_department_or_404, scope_to_department
from app.incubator.utils import check_int, clean_str, is_valid_url, iso, parse_bool, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from app.incubator.storage import Storage


TYPE_LINK = "Link"
TYPE_FILE = "File"
TYPE_DOCUMENT = "Document"
VALID_TYPES = (TYPE_LINK, TYPE_FILE, TYPE_DOCUMENT)

ACCESS_PUBLIC = "public"
ACCESS_DEPARTMENT = "department"
ACCESS_RESTRICTED = "restricted"
ACCESS_LEVELS = (ACCESS_PUBLIC, ACCESS_DEPARTMENT, ACCESS_RESTRICTED)

TITLE_MAX = 200
DESCRIPTION_MAX = 1000
TOP_TAGS = 10
RECENT_LIMIT = 5


def normalize_tags(raw) -> list[str]:
    """Lower-case, strip, drop empties and duplicates (first occurrence wins)."""
    tags: list[str] = []
    for t in raw or []:
        tag = (clean_str(t) or "").lower()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def validate_resource_payload(payload: dict, *, partial: bool = False, current_type: str | None = None) -> list[str]:
    errors = []
    title = clean_str(payload.get("title"))
    if not partial or "title" in payload:
        if not title:
            errors.append("Title is required.")
        elif len(title) > TITLE_MAX:
            errors.append(f"Title cannot be more than {TITLE_MAX} characters.")
    description = clean_str(payload.get("description"))
    if description and len(description) > DESCRIPTION_MAX:
        errors.append(f"Description cannot be more than {DESCRIPTION_MAX} characters.")

    rtype = clean_str(payload.get("type"))
    if rtype and rtype not in VALID_TYPES:
        errors.append(f"{rtype} is not a valid resource type")
    effective_type = rtype or current_type or TYPE_LINK
    link = clean_str(payload.get("link"))
    if effective_type == TYPE_LINK and (not partial or "link" in payload or rtype):
        if not link:
            errors.append('Link is required for resource type "Link"')
        elif not is_valid_url(link):
            errors.append(f"'{link}' is not a valid URL")

    access_level = clean_str(payload.get("access_level"))
    if access_level and access_level not in ACCESS_LEVELS:
        errors.append(f"Access level must be one of: {', '.join(ACCESS_LEVELS)}")
    tags = payload.get("tags")
    if tags is not None and (not isinstance(tags, list) or not all(isinstance(t, str) for t in tags)):
        errors.append("Tags must be a list of strings.")
    access_list = payload.get("access_list")
    if access_list is not None:
        if not isinstance(access_list, list):
            errors.append("Access list must be a list of user ids.")
        else:
            try:
                [parse_int(u) for u in access_list]
            except (TypeError, ValueError):
                errors.append("Access list must be a list of user ids.")

    if not partial:
        if payload.get("department_id") in (None, ""):
            errors.append("Department reference is required.")
        else:
            check_int(errors, payload, "department_id", "Department")
    return errors


def is_public(r: Resource) -> bool:
    return r.is_public or r.access_level == ACCESS_PUBLIC


def can_view_resource(identity: Identity, r: Resource) -> bool:
    if identity.is_admin:
        return True
    if identity.is_editor and identity.department_id == r.department_id:
        return True
    if is_public(r):
        return True
    if r.access_level == ACCESS_DEPARTMENT:
        return identity.department_id is not None and identity.department_id == r.department_id
    if r.access_level == ACCESS_RESTRICTED:
        return identity.id in r.access_list
    return False


def _visibility_clause(identity: Identity):
    clauses = [
        Resource.is_public.is_(True),
        Resource.access_level == ACCESS_PUBLIC,
        and_(Resource.access_level == ACCESS_RESTRICTED, Resource.access_entries.any(ResourceAccess.user_id == identity.id)),
    ]
    if identity.department_id is not None:
        clauses.append(and_(Resource.department_id == identity.department_id, Resource.access_level == ACCESS_DEPARTMENT))
    return or_(*clauses)


def _visible(q, identity: Identity):
    visible = _visibility_clause(identity)
    q = scope_to_department(q, Resource.department_id, identity, public_clause=visible)
    if not identity.is_admin and not identity.is_editor:
        q = q.filter(visible)
    return q


def _user_brief(s: "Session", user_id: int | None) -> dict | None:
    if user_id is None:
        return None
    u = s.get(User, user_id)
    if not u:
        return None
    return {"id": u.id, "full_name": u.full_name, "email": u.email}


def serialize_resource(s: "Session", r: Resource) -> dict:
    return {
        "id": r.id,
        "title": r.title,
        "description": r.description,
        "type": r.resource_type,
        "link": r.link,
        "file_name": r.file_name,
        "file_size": r.file_size,
        "file_type": r.file_type,
        "file_url": f"/resources/{r.id}/download" if r.resource_type == TYPE_FILE and r.storage_key else None,
        "department_id": r.department_id,
        "created_by": _user_brief(s, r.created_by_user_id),
        "tags": list(r.tags or []),
        "is_public": r.is_public,
        "access_level": r.access_level,
        "access_list": r.access_list,
        "created_at": iso(r.created_at),
        "updated_at": iso(r.updated_at),
    }


def _resolve_access_list(s: "Session", raw) -> list[int]:
    ids: list[int] = []
    for u in raw or []:
        user_id = parse_int(u)
        if user_id is not None and user_id not in ids:
            ids.append(user_id)
    if ids:
        found = s.query(func.count(User.id)).filter(User.id.in_(ids)).scalar() or 0
        if found != len(ids):
            raise ValidationError("One or more users in the access list were not found")
    return ids


def _apply_visibility(s: "Session", r: Resource, payload: dict) -> None:
    """
    Apply is_public / access_level / access_list from a payload, keeping
    is_public and access_level == "public" in agreement.
    """
    access_level = clean_str(payload.get("access_level"))
    if access_level:
        r.access_level = access_level
    if "is_public" in payload:
        if parse_bool(payload.get("is_public")):
            r.access_level = ACCESS_PUBLIC
        elif r.access_level == ACCESS_PUBLIC and not access_level:
            r.access_level = ACCESS_DEPARTMENT
    r.is_public = r.access_level == ACCESS_PUBLIC

    if r.access_level != ACCESS_RESTRICTED:
        r.access_entries = []
    elif payload.get("access_list") is not None:
        existing = {a.user_id: a for a in r.access_entries}
        r.access_entries = [
            existing.get(uid) or ResourceAccess(user_id=uid)
            for uid in _resolve_access_list(s, payload["access_list"])
        ]


def get_resource(s: "Session", identity: Identity, resource_id: int) -> Resource:
    r = s.get(Resource, resource_id)
    if not r:
        raise NotFound("Resource not found")
    if not can_view_resource(identity, r):
        raise Forbidden("Not authorized to access this resource")
    return r


def _filter_by_tag(resources: list[Resource], tag: str | None) -> list[Resource]:
    tag = (clean_str(tag) or "").lower()
    if not tag:
        return resources
    return [r for r in resources if tag in (r.tags or [])]


def list_resources(s: "Session", identity: Identity, *, rtype: str | None = None, tag: str | None = None) -> list[Resource]:
    q = _visible(s.query(Resource), identity)
    if clean_str(rtype):
        q = q.filter(Resource.resource_type == clean_str(rtype))
    return _filter_by_tag(q.order_by(Resource.created_at.desc(), Resource.id.desc()).all(), tag)


def list_department_resources(
    s: "Session",
    identity: Identity,
    department_id: int,
    *,
    rtype: str | None = None,
    tag: str | None = None,
) -> list[Resource]:
    check_department_listing(s, identity, department_id, "resources")
    q = _visible(s.query(Resource).filter(Resource.department_id == department_id), identity)
    if clean_str(rtype):
        q = q.filter(Resource.resource_type == clean_str(rtype))
    return _filter_by_tag(q.order_by(Resource.created_at.desc(), Resource.id.desc()).all(), tag)


def resource_stats(s: "Session", identity: Identity, department_id: int) -> dict:
    check_department_listing(s, identity, department_id, "resources")
    resources = (
        _visible(s.query(Resource).filter(Resource.department_id == department_id), identity)
        .order_by(Resource.created_at.desc(), Resource.id.desc())
        .all()
    )
    by_type = Counter(r.resource_type for r in resources)
    by_tag = Counter(tag for r in resources for tag in (r.tags or []))
    return {
        "by_type": [{"type": t, "count": c} for t, c in by_type.most_common()],
        "by_tag": [{"tag": t, "count": c} for t, c in by_tag.most_common(TOP_TAGS)],
        "recent_uploads": [
            {
                "id": r.id,
                "title": r.title,
                "type": r.resource_type,
                "created_at": iso(r.created_at),
                "file_size": r.file_size,
            }
            for r in resources[:RECENT_LIMIT]
        ],
        "total_count": len(resources),
        "total_size": sum(r.file_size or 0 for r in resources),
    }


def create_resource(s: "Session", identity: Identity, payload: dict, user: User) -> Resource:
    raise_for_errors(validate_resource_payload(payload))
    department = get_department_or_404(s, parse_int(payload["department_id"]))  # type: ignore[arg-type]
    authorize(identity, CREATE, department.id, "Not authorized to add resources to this department")

    now = datetime.utcnow()
    rtype = clean_str(payload.get("type")) or TYPE_LINK
    r = Resource(
        title=clean_str(payload["title"]),
        description=clean_str(payload.get("description")),
        resource_type=rtype,
        link=clean_str(payload.get("link")),
        department_id=department.id,
        created_by_user_id=user.id,
        tags=normalize_tags(payload.get("tags")),
        access_level=ACCESS_DEPARTMENT,
        is_public=False,
        created_at=now,
        updated_at=now,
    )
    _apply_visibility(s, r, payload)
    s.add(r)
    s.flush()
    record_event(
        s,
        actor=user,
        action="resource.create",
        entity_type="Resource",
        entity_id=str(r.id),
        metadata={"title": r.title, "type": r.resource_type, "access_level": r.access_level},
    )
    return r


def update_resource(s: "Session", identity: Identity, r: Resource, payload: dict, user: User) -> Resource:
    authorize(identity, UPDATE, r.department_id, "Not authorized to update this resource")
    new_department = authorize_department_move(identity, r.department_id, payload.get("department_id"), "resources")
    raise_for_errors(validate_resource_payload(payload, partial=True, current_type=r.resource_type))
    changes: dict = {}

    if new_department != r.department_id:
        get_department_or_404(s, new_department)  # type: ignore[arg-type]
        changes["department_id"] = {"old": r.department_id, "new": new_department}
        r.department_id = new_department  # type: ignore[assignment]

    new_title = clean_str(payload.get("title"))
    if new_title and new_title != r.title:
        changes["title"] = {"old": r.title, "new": new_title}
        r.title = new_title

    for key in ("description", "link"):
        if key in payload:
            value = clean_str(payload.get(key))
            if value != getattr(r, key):
                changes[key] = {"old": getattr(r, key), "new": value}
                setattr(r, key, value)

    new_type = clean_str(payload.get("type"))
    if new_type and new_type != r.resource_type:
        changes["type"] = {"old": r.resource_type, "new": new_type}
        r.resource_type = new_type

    if payload.get("tags") is not None:
        new_tags = normalize_tags(payload.get("tags"))
        if new_tags != list(r.tags or []):
            changes["tags"] = {"old": list(r.tags or []), "new": new_tags}
            r.tags = new_tags

    before = (r.access_level, r.is_public, r.access_list)
    _apply_visibility(s, r, payload)
    after = (r.access_level, r.is_public, r.access_list)
    if before != after:
        changes["visibility"] = {"old": before, "new": after}

    if changes:
        r.updated_at = datetime.utcnow()
        record_event(
            s,
            actor=user,
            action="resource.update",
            entity_type="Resource",
            entity_id=str(r.id),
            metadata={"changes": changes},
        )
    return r


def delete_resource(s: "Session", identity: Identity, r: Resource, user: User) -> str | None:
    """Delete the row; returns the stored file key (if any) for the caller to remove after commit."""
    authorize(identity, DELETE, r.department_id, "Not authorized to delete this resource")
    record_event(
        s,
        actor=user,
        action="resource.delete",
        entity_type="Resource",
        entity_id=str(r.id),
        metadata={"title": r.title, "department_id": r.department_id},
    )
    storage_key = r.storage_key
    s.delete(r)
    return storage_key


def build_resource_storage_key(resource_id: int, filename: str) -> str:
    safe = secure_filename(filename) or "upload.bin"
    return f"resources/{resource_id}/{safe}"


def upload_resource_file(
    s: "Session",
    identity: Identity,
    r: Resource,
    storage: "Storage",
    file_bytes: bytes,
    filename: str,
    content_type: str | None,
    user: User,
) -> str | None:
    """
    Store the upload and point the resource at it. Returns the superseded
    file key, if any, for the caller to remove after commit.
    """
    authorize(identity, UPDATE, r.department_id, "Not authorized to update this resource")
    if not file_bytes:
        raise ValidationError("Validation failed", details=["Uploaded file is empty."])

    stored = storage.save(build_resource_storage_key(r.id, filename), file_bytes, content_type=content_type)
    previous_key = r.storage_key

    r.storage_key = stored.key
    r.file_name = stored.key.rsplit("/", 1)[-1]
    r.file_size = stored.size
    r.file_type = stored.content_type
    r.resource_type = TYPE_FILE
    r.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="resource.file_upload",
        entity_type="Resource",
        entity_id=str(r.id),
        metadata={
            "filename": r.file_name,
            "size_bytes": r.file_size,
            "sha256": stored.sha256,
        },
    )
    if previous_key and previous_key != stored.key:
        return previous_key
    return None


def resource_file(s: "Session", identity: Identity, r: Resource, storage: "Storage", user: User):
    """Open the stored file for download; viewing rules apply."""
    if not can_view_resource(identity, r):
        raise Forbidden("Not authorized to access this resource")
    if not r.storage_key or not storage.exists(r.storage_key):
        raise NotFound("No file uploaded for this resource")
    record_event(
        s,
        actor=user,
        action="resource.file_download",
        entity_type="Resource",
        entity_id=str(r.id),
        metadata={"filename": r.file_name},
    )
    return storage.open(r.storage_key)
