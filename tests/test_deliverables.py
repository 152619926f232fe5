from datetime import date, timedelta

import pytest


@pytest.fixture()
def milestones(client, auth, ids):
    due = (date.today() + timedelta(days=14)).isoformat()
    out = {}
    for key, editor in (("a", "editor_a"), ("b", "editor_b")):
        r = client.post(
            "/milestones",
            json={"title": f"Milestone {key}", "due_date": due, "department_id": ids[f"dept_{key}"]},
            headers=auth(editor),
        )
        out[key] = r.json["data"]["id"]
    return out


def _create(client, headers, milestone_id, **overrides):
    payload = {"title": "Pitch deck", "description": "Ten slides", "milestone_id": milestone_id}
    payload.update(overrides)
    return client.post("/deliverables", json=payload, headers=headers)


def test_create_deliverable(client, auth, ids, milestones):
    r = _create(client, auth("editor_a"), milestones["a"], due_date="2030-05-01")
    assert r.status_code == 201
    data = r.json["data"]
    assert data["is_completed"] is False
    assert data["due_date"] == "2030-05-01"
    assert data["department_id"] == ids["dept_a"]


def test_create_requires_milestone(client, auth, milestones):
    r = client.post("/deliverables", json={"title": "Loose"}, headers=auth("admin"))
    assert r.status_code == 400
    assert "Milestone reference is required." in r.json["details"]

    r = _create(client, auth("admin"), 999)
    assert r.status_code == 404
    assert r.json["message"] == "Milestone not found"


def test_permissions_follow_milestone_department(client, auth, milestones):
    assert _create(client, auth("editor_a"), milestones["b"]).status_code == 403
    assert _create(client, auth("viewer_a"), milestones["a"]).status_code == 403

    deliverable_id = _create(client, auth("editor_b"), milestones["b"]).json["data"]["id"]
    assert client.get(f"/deliverables/{deliverable_id}", headers=auth("viewer_b")).status_code == 200
    assert client.get(f"/deliverables/{deliverable_id}", headers=auth("viewer_a")).status_code == 403
    r = client.put(f"/deliverables/{deliverable_id}", json={"is_completed": True}, headers=auth("editor_a"))
    assert r.status_code == 403


def test_list_is_scoped_and_filterable(client, auth, milestones):
    _create(client, auth("editor_a"), milestones["a"], title="A1")
    _create(client, auth("editor_b"), milestones["b"], title="B1")

    r = client.get("/deliverables", headers=auth("viewer_a"))
    assert [d["title"] for d in r.json["data"]] == ["A1"]

    r = client.get("/deliverables", headers=auth("admin"))
    assert r.json["count"] == 2

    r = client.get(f"/deliverables?milestone={milestones['b']}", headers=auth("admin"))
    assert [d["title"] for d in r.json["data"]] == ["B1"]

    assert client.get("/deliverables?milestone=x", headers=auth("admin")).status_code == 400


def test_milestone_deliverables(client, auth, milestones):
    _create(client, auth("editor_a"), milestones["a"])
    r = client.get(f"/milestones/{milestones['a']}/deliverables", headers=auth("viewer_a"))
    assert r.status_code == 200
    assert r.json["count"] == 1

    assert client.get(f"/milestones/{milestones['a']}/deliverables", headers=auth("viewer_b")).status_code == 403
    assert client.get("/milestones/999/deliverables", headers=auth("admin")).status_code == 404


def test_update_and_delete(client, auth, milestones):
    deliverable_id = _create(client, auth("editor_a"), milestones["a"]).json["data"]["id"]

    r = client.put(f"/deliverables/{deliverable_id}", json={"is_completed": True, "title": "Final deck"}, headers=auth("editor_a"))
    assert r.status_code == 200
    assert r.json["data"]["is_completed"] is True
    assert r.json["data"]["title"] == "Final deck"

    r = client.delete(f"/deliverables/{deliverable_id}", headers=auth("editor_a"))
    assert r.status_code == 200
    assert r.json["message"] == "Deliverable removed"
    assert client.get(f"/deliverables/{deliverable_id}", headers=auth("admin")).status_code == 404


def test_deleting_milestone_removes_deliverables(client, auth, milestones):
    deliverable_id = _create(client, auth("editor_a"), milestones["a"]).json["data"]["id"]
    assert client.delete(f"/milestones/{milestones['a']}", headers=auth("admin")).status_code == 200
    assert client.get(f"/deliverables/{deliverable_id}", headers=auth("admin")).status_code == 404
