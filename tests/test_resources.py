import hashlib
import io
from pathlib import Path

import pytest

from app.incubator.audit import event_metadata, events_for
from app.incubator.db import session_scope
from app.incubator.models import User
from app.incubator.modules.resources.models import Resource
from app.incubator.modules.resources.service import can_view_resource, normalize_tags, upload_resource_file
from app.incubator.policy import Identity
from app.incubator.storage import storage_from_config


@pytest.fixture()
def create(client, auth, ids):
    def _create(who="editor_a", **overrides):
        payload = {
            "title": "Fundraising guide",
            "description": "How to run a seed round",
            "type": "Link",
            "link": "https://example.com/guide",
            "department_id": ids["dept_a"],
        }
        payload.update(overrides)
        return client.post("/resources", json=payload, headers=auth(who))

    return _create


def test_create_link_resource(create, ids):
    r = create(tags=["Finance", " finance ", "Seed"])
    assert r.status_code == 201
    data = r.json["data"]
    assert data["type"] == "Link"
    assert data["access_level"] == "department"
    assert data["is_public"] is False
    assert data["tags"] == ["finance", "seed"]
    assert data["file_url"] is None
    assert data["created_by"]["id"] == ids["editor_a"]


def test_link_required_for_link_type(create):
    r = create(link=None)
    assert r.status_code == 400
    assert 'Link is required for resource type "Link"' in r.json["details"]

    r = create(link="ftp//nope")
    assert r.status_code == 400


def test_document_without_link(create):
    r = create(type="Document", link=None)
    assert r.status_code == 201


def test_is_public_and_access_level_agree(client, auth, create):
    data = create(is_public=True).json["data"]
    assert data["access_level"] == "public"
    assert data["is_public"] is True

    r = client.put(f"/resources/{data['id']}", json={"access_level": "department"}, headers=auth("editor_a"))
    assert r.json["data"]["is_public"] is False

    r = client.put(f"/resources/{data['id']}", json={"access_level": "public"}, headers=auth("editor_a"))
    assert r.json["data"]["is_public"] is True

    r = client.put(f"/resources/{data['id']}", json={"is_public": False}, headers=auth("editor_a"))
    assert r.json["data"]["access_level"] == "department"


def test_visibility_rules(client, auth, create, ids):
    department_only = create(title="Dept").json["data"]["id"]
    public = create(title="Public", access_level="public").json["data"]["id"]
    restricted = create(title="Restricted", access_level="restricted", access_list=[ids["viewer_b"]]).json["data"]["id"]

    def status(who, rid):
        return client.get(f"/resources/{rid}", headers=auth(who)).status_code

    assert status("viewer_a", department_only) == 200
    assert status("viewer_b", department_only) == 403
    assert status("loner", public) == 200
    assert status("viewer_b", restricted) == 200
    assert status("viewer_a", restricted) == 403
    assert status("editor_a", restricted) == 200
    assert status("editor_b", restricted) == 403
    assert status("admin", restricted) == 200

    def titles(who):
        return sorted(x["title"] for x in client.get("/resources", headers=auth(who)).json["data"])

    assert titles("viewer_a") == ["Dept", "Public"]
    assert titles("viewer_b") == ["Public", "Restricted"]
    assert titles("loner") == ["Public"]
    assert titles("editor_a") == ["Dept", "Public", "Restricted"]


def test_access_list_cleared_unless_restricted(client, auth, create, ids):
    rid = create(access_level="restricted", access_list=[ids["viewer_b"], ids["viewer_b"]]).json["data"]["id"]
    assert client.get(f"/resources/{rid}", headers=auth("admin")).json["data"]["access_list"] == [ids["viewer_b"]]

    r = client.put(f"/resources/{rid}", json={"access_level": "department"}, headers=auth("editor_a"))
    assert r.json["data"]["access_list"] == []


def test_unknown_access_list_user(create):
    r = create(access_level="restricted", access_list=[999])
    assert r.status_code == 400


def test_can_view_resource_precedence():
    r = Resource(title="t", department_id=1, access_level="restricted", is_public=False, resource_type="Link")
    assert can_view_resource(Identity(id=1, email="a", role="admin"), r)
    assert can_view_resource(Identity(id=2, email="e", role="editor", department_id=1), r)
    assert not can_view_resource(Identity(id=3, email="v", role="viewer", department_id=1), r)
    r.is_public = True
    assert can_view_resource(Identity(id=4, email="o", role="viewer", department_id=2), r)


def test_tag_and_type_filters(client, auth, create):
    create(title="A", tags=["pitch"])
    create(title="B", tags=["legal"], type="Document", link=None)

    r = client.get("/resources?tag=PITCH", headers=auth("editor_a"))
    assert [x["title"] for x in r.json["data"]] == ["A"]

    r = client.get("/resources?type=Document", headers=auth("editor_a"))
    assert [x["title"] for x in r.json["data"]] == ["B"]


def test_department_listing(client, auth, create, ids):
    create()
    assert client.get(f"/departments/{ids['dept_a']}/resources", headers=auth("viewer_a")).json["count"] == 1
    assert client.get(f"/departments/{ids['dept_a']}/resources", headers=auth("viewer_b")).json["count"] == 0
    assert client.get(f"/departments/{ids['dept_a']}/resources", headers=auth("editor_b")).status_code == 403
    assert client.get("/departments/999/resources", headers=auth("admin")).status_code == 404


def test_editor_permissions(client, auth, create, ids):
    assert create(who="editor_b").status_code == 403
    assert create(who="viewer_a").status_code == 403

    rid = create(access_level="public").json["data"]["id"]
    r = client.put(f"/resources/{rid}", json={"title": "Mine now"}, headers=auth("editor_b"))
    assert r.status_code == 403
    r = client.put(f"/resources/{rid}", json={"department_id": ids["dept_b"]}, headers=auth("editor_a"))
    assert r.status_code == 403


def test_upload_download_and_delete(app, client, auth, create):
    rid = create(type="Document", link=None).json["data"]["id"]

    r = client.get(f"/resources/{rid}/download", headers=auth("viewer_a"))
    assert r.status_code == 404

    r = client.post(
        f"/resources/{rid}/file",
        data={"file": (io.BytesIO(b"%PDF-1.4 deck"), "Pitch Deck.pdf", "application/pdf")},
        content_type="multipart/form-data",
        headers=auth("editor_a"),
    )
    assert r.status_code == 200
    assert r.json["message"] == "File uploaded"
    data = r.json["data"]
    assert data["type"] == "File"
    assert data["file_name"] == "Pitch_Deck.pdf"
    assert data["file_size"] == len(b"%PDF-1.4 deck")
    assert data["file_url"] == f"/resources/{rid}/download"

    stored = Path(app.config["STORAGE_LOCAL_ROOT"]) / "resources" / str(rid) / "Pitch_Deck.pdf"
    assert stored.exists()

    with session_scope(app) as s:
        upload = [e for e in events_for(s, "Resource", rid) if e.action == "resource.file_upload"][0]
        assert event_metadata(upload)["sha256"] == hashlib.sha256(b"%PDF-1.4 deck").hexdigest()

    r = client.get(f"/resources/{rid}/download", headers=auth("viewer_a"))
    assert r.status_code == 200
    assert r.data == b"%PDF-1.4 deck"
    assert "attachment" in r.headers["Content-Disposition"]
    r.close()

    assert client.get(f"/resources/{rid}/download", headers=auth("viewer_b")).status_code == 403

    assert client.delete(f"/resources/{rid}", headers=auth("editor_a")).status_code == 200
    assert not stored.exists()


def test_upload_requires_file(client, auth, create):
    rid = create().json["data"]["id"]
    r = client.post(f"/resources/{rid}/file", data={}, content_type="multipart/form-data", headers=auth("editor_a"))
    assert r.status_code == 400


def test_stats(client, auth, create, ids):
    create(title="One", tags=["pitch", "seed"])
    create(title="Two", tags=["pitch"])
    create(title="Three", type="Document", link=None)

    r = client.get(f"/departments/{ids['dept_a']}/resources/stats", headers=auth("admin"))
    data = r.json["data"]
    assert data["total_count"] == 3
    assert data["total_size"] == 0
    assert data["by_type"][0] == {"type": "Link", "count": 2}
    assert data["by_tag"][0] == {"tag": "pitch", "count": 2}
    assert len(data["recent_uploads"]) == 3


def test_normalize_tags():
    assert normalize_tags([" A ", "a", "", "b"]) == ["a", "b"]
    assert normalize_tags(None) == []


def _upload(client, headers, rid, body, filename):
    return client.post(
        f"/resources/{rid}/file",
        data={"file": (io.BytesIO(body), filename, "application/pdf")},
        content_type="multipart/form-data",
        headers=headers,
    )


def test_reupload_removes_previous_file_after_commit(app, client, auth, create):
    rid = create(type="Document", link=None).json["data"]["id"]
    root = Path(app.config["STORAGE_LOCAL_ROOT"]) / "resources" / str(rid)

    assert _upload(client, auth("editor_a"), rid, b"v1", "a.pdf").status_code == 200
    assert _upload(client, auth("editor_a"), rid, b"v2", "b.pdf").status_code == 200
    assert not (root / "a.pdf").exists()
    assert (root / "b.pdf").read_bytes() == b"v2"


def test_upload_service_leaves_previous_file_to_caller(app, client, auth, create, ids):
    rid = create(type="Document", link=None).json["data"]["id"]
    assert _upload(client, auth("editor_a"), rid, b"v1", "a.pdf").status_code == 200
    old = Path(app.config["STORAGE_LOCAL_ROOT"]) / "resources" / str(rid) / "a.pdf"

    with app.app_context():
        storage = storage_from_config(app.config)
        with session_scope(app) as s:
            user = s.get(User, ids["editor_a"])
            r = s.get(Resource, rid)
            identity = Identity.from_user(user)
            stale = upload_resource_file(s, identity, r, storage, b"v2", "b.pdf", "application/pdf", user)
            assert stale == f"resources/{rid}/a.pdf"
            s.rollback()
    assert old.exists()
