import io
from datetime import date, datetime, timedelta
from pathlib import Path

from app.incubator.audit import event_metadata, events_for
from app.incubator.db import session_scope
from app.incubator.models import Department
from app.incubator.modules.departments.service import slugify
from app.incubator.modules.startups.models import Startup


def test_list_departments_is_public(client):
    r = client.get("/departments")
    assert r.status_code == 200
    assert r.json["count"] == 2
    assert [d["name"] for d in r.json["data"]] == ["Engineering", "Marketing"]
    assert set(r.json["data"][0]) == {"id", "name", "slug"}


def test_get_department_is_public(client, ids):
    r = client.get(f"/departments/{ids['dept_a']}")
    assert r.status_code == 200
    assert r.json["data"]["slug"] == "engineering"


def test_get_missing_department_404(client):
    r = client.get("/departments/999")
    assert r.status_code == 404


def test_create_department_admin_only(client, auth):
    payload = {"name": "Research & Development", "description": "Long bets"}
    r = client.post("/departments", json=payload, headers=auth("editor_a"))
    assert r.status_code == 403
    assert r.json["details"]["your_role"] == "editor"

    r = client.post("/departments", json=payload, headers=auth("admin"))
    assert r.status_code == 201
    assert r.json["data"]["slug"] == "research-development"


def test_create_department_requires_auth(client):
    r = client.post("/departments", json={"name": "X", "description": "Y"})
    assert r.status_code == 401


def test_duplicate_department_name_conflicts(client, auth):
    r = client.post("/departments", json={"name": "engineering", "description": "dup"}, headers=auth("admin"))
    assert r.status_code == 409


def test_slug_collision_gets_suffix(app, client, auth):
    now = datetime.utcnow()
    with session_scope(app) as s:
        s.add(Department(name="Ops Legacy", description="old", slug="ops", created_at=now, updated_at=now))
    r = client.post("/departments", json={"name": "Ops", "description": "new"}, headers=auth("admin"))
    assert r.status_code == 201
    assert r.json["data"]["slug"] == "ops-2"


def test_create_department_validation(client, auth):
    r = client.post("/departments", json={"name": "x" * 101}, headers=auth("admin"))
    assert r.status_code == 400
    assert len(r.json["details"]) == 2


def test_update_department_renames_and_reslugs(client, auth, ids):
    r = client.put(f"/departments/{ids['dept_b']}", json={"name": "Growth"}, headers=auth("admin"))
    assert r.status_code == 200
    assert r.json["data"]["name"] == "Growth"
    assert r.json["data"]["slug"] == "growth"
    assert r.json["data"]["description"] == "Sells things"


def test_delete_department_blocked_by_startups(app, client, auth, ids):
    now = datetime.utcnow()
    with session_scope(app) as s:
        s.add(Startup(name="Acme", description="Rockets", cohort="I", department_id=ids["dept_a"], created_at=now, updated_at=now))

    r = client.delete(f"/departments/{ids['dept_a']}", headers=auth("admin"))
    assert r.status_code == 409
    assert r.json["details"]["startup_count"] == 1
    assert client.get(f"/departments/{ids['dept_a']}").status_code == 200

    with session_scope(app) as s:
        acme = s.query(Startup).filter_by(name="Acme").one()
        assert acme.department_id == ids["dept_a"]


def test_delete_department_unassigns_members(app, client, auth, ids):
    r = client.delete(f"/departments/{ids['dept_b']}", headers=auth("admin"))
    assert r.status_code == 200
    assert client.get(f"/departments/{ids['dept_b']}").status_code == 404

    r = client.get(f"/users/{ids['editor_b']}", headers=auth("admin"))
    assert r.json["data"]["department_id"] is None


def test_slugify():
    assert slugify("  Sales & Marketing ") == "sales-marketing"
    assert slugify("!!!") == "department"


def test_update_department_is_active_string(client, auth, ids):
    r = client.put(f"/departments/{ids['dept_b']}", json={"is_active": "false"}, headers=auth("admin"))
    assert r.status_code == 200
    assert r.json["data"]["is_active"] is False


def test_delete_department_removes_children_and_files(app, client, auth, ids):
    admin = auth("admin")
    due = (date.today() + timedelta(days=10)).isoformat()
    r = client.post(
        "/milestones",
        json={"title": "Launch", "description": "Go live", "due_date": due, "department_id": ids["dept_b"]},
        headers=admin,
    )
    assert r.status_code == 201
    mid = r.json["data"]["id"]

    r = client.post(
        "/resources",
        json={"title": "Brand kit", "description": "Logos", "type": "Document", "department_id": ids["dept_b"]},
        headers=admin,
    )
    assert r.status_code == 201
    rid = r.json["data"]["id"]
    r = client.post(
        f"/resources/{rid}/file",
        data={"file": (io.BytesIO(b"logo bytes"), "logo.png", "image/png")},
        content_type="multipart/form-data",
        headers=admin,
    )
    assert r.status_code == 200
    stored = Path(app.config["STORAGE_LOCAL_ROOT"]) / "resources" / str(rid) / "logo.png"
    assert stored.exists()

    r = client.delete(f"/departments/{ids['dept_b']}", headers=admin)
    assert r.status_code == 200
    assert not stored.exists()
    assert client.get(f"/resources/{rid}", headers=admin).status_code == 404
    assert client.get(f"/milestones/{mid}", headers=admin).status_code == 404

    with session_scope(app) as s:
        res_delete = [e for e in events_for(s, "Resource", rid) if e.action == "resource.delete"]
        assert len(res_delete) == 1
        assert res_delete[0].reason == "department deleted"
        assert event_metadata(res_delete[0])["department_id"] == ids["dept_b"]
        assert [e.action for e in events_for(s, "Milestone", mid)][-1] == "milestone.delete"
