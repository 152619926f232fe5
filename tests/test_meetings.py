from datetime import datetime, timedelta

import pytest

from app.incubator.modules.meetings.models import Meeting
from app.incubator.modules.meetings.service import apply_schedule_status, validate_meeting_payload


def _when(**delta) -> str:
    return (datetime.utcnow() + timedelta(**delta)).replace(microsecond=0).isoformat()


@pytest.fixture()
def create(client, auth, ids):
    def _create(who="editor_a", **overrides):
        payload = {
            "title": "Weekly sync",
            "meeting_date": _when(days=2),
            "meeting_type": "virtual",
            "meeting_link": "https://meet.example.com/weekly",
            "department_id": ids["dept_a"],
            "attendees": [ids["viewer_a"], ids["viewer_b"]],
        }
        payload.update(overrides)
        return client.post("/meetings", json=payload, headers=auth(who))

    return _create


def _statuses(meeting: dict) -> dict:
    return {a["user"]["id"]: a["status"] for a in meeting["attendees"]}


def test_create_meeting(create, ids):
    r = create()
    assert r.status_code == 201
    data = r.json["data"]
    assert data["status"] == "scheduled"
    assert data["duration"] == 60
    assert data["organizer"]["id"] == ids["editor_a"]
    assert data["meeting_link"] == "https://meet.example.com/weekly"
    assert _statuses(data) == {ids["viewer_a"]: "pending", ids["viewer_b"]: "pending"}


def test_duplicate_attendees_collapse(create, ids):
    r = create(attendees=[ids["viewer_a"], ids["viewer_a"], str(ids["viewer_a"])])
    assert r.status_code == 201
    assert len(r.json["data"]["attendees"]) == 1


def test_unknown_attendee_rejected(create):
    r = create(attendees=[999])
    assert r.status_code == 400
    assert r.json["message"] == "One or more attendees not found"


def test_link_dropped_for_in_person(create):
    r = create(meeting_type="in_person", location="Room 4")
    assert r.status_code == 201
    assert r.json["data"]["meeting_link"] is None


def test_validation_errors(create):
    r = create(duration=2, meeting_type="carrier-pigeon", meeting_link="not a url")
    assert r.status_code == 400
    details = r.json["details"]
    assert "Duration must be between 5 and 1440 minutes." in details
    assert "Meeting type must be one of: in_person, virtual, hybrid" in details
    assert "'not a url' is not a valid URL" in details


def test_fractional_duration_rejected(create):
    r = create(duration=30.5)
    assert r.status_code == 400
    assert "Duration must be an integer number of minutes." in r.json["details"]


def test_recurrence_validation():
    base = {"title": "t", "meeting_date": "2030-01-10T10:00:00", "meeting_type": "virtual", "department_id": 1}
    errors = validate_meeting_payload({**base, "recurring": {"is_recurring": True, "frequency": "weekly"}})
    assert errors == ["Recurring meetings need an end date or a number of occurrences."]

    errors = validate_meeting_payload({**base, "recurring": {"is_recurring": True, "frequency": "weekly", "end_date": "2030-01-01"}})
    assert errors == ["Recurrence end date must be after the meeting start date."]

    assert validate_meeting_payload({**base, "recurring": {"is_recurring": True, "frequency": "monthly", "occurrences": 6}}) == []


def test_viewer_cannot_create(create):
    assert create(who="viewer_a").status_code == 403


def test_editor_cannot_create_in_other_department(create, ids):
    assert create(who="editor_b").status_code == 403


def test_status_follows_schedule(create):
    assert create(meeting_date=_when(days=-2)).json["data"]["status"] == "completed"
    assert create(meeting_date=_when(minutes=-10)).json["data"]["status"] == "in_progress"
    assert create(meeting_date=_when(days=-2), status="canceled").json["data"]["status"] == "canceled"


def test_apply_schedule_status_unit():
    start = datetime(2030, 1, 1, 9, 0)
    m = Meeting(title="t", meeting_date=start, duration=30, meeting_type="virtual", status="scheduled", department_id=1)
    apply_schedule_status(m, start - timedelta(minutes=1))
    assert m.status == "scheduled"
    apply_schedule_status(m, start + timedelta(minutes=15))
    assert m.status == "in_progress"
    m.status = "scheduled"
    apply_schedule_status(m, start + timedelta(minutes=31))
    assert m.status == "completed"


def test_private_meeting_visibility(client, auth, create, ids):
    meeting_id = create(is_private=True, attendees=[ids["viewer_b"]]).json["data"]["id"]

    assert client.get(f"/meetings/{meeting_id}", headers=auth("viewer_a")).status_code == 403
    assert client.get(f"/meetings/{meeting_id}", headers=auth("viewer_b")).status_code == 200
    assert client.get(f"/meetings/{meeting_id}", headers=auth("editor_a")).status_code == 200
    assert client.get(f"/meetings/{meeting_id}", headers=auth("editor_b")).status_code == 403

    assert client.get("/meetings", headers=auth("viewer_a")).json["count"] == 0
    assert [m["id"] for m in client.get("/meetings", headers=auth("viewer_b")).json["data"]] == [meeting_id]


def test_department_listing_and_date_filters(client, auth, create, ids):
    create(title="Soon", meeting_date=_when(days=1))
    create(title="Later", meeting_date=_when(days=20))

    r = client.get(f"/departments/{ids['dept_a']}/meetings", headers=auth("viewer_a"))
    assert [m["title"] for m in r.json["data"]] == ["Soon", "Later"]

    end = (datetime.utcnow() + timedelta(days=5)).date().isoformat()
    r = client.get(f"/departments/{ids['dept_a']}/meetings?end_date={end}", headers=auth("viewer_a"))
    assert [m["title"] for m in r.json["data"]] == ["Soon"]

    assert client.get(f"/departments/{ids['dept_a']}/meetings", headers=auth("editor_b")).status_code == 403
    assert client.get("/departments/999/meetings", headers=auth("admin")).status_code == 404
    assert client.get("/meetings?start_date=yesterday", headers=auth("admin")).status_code == 400


def test_my_meetings(client, auth, create, ids):
    create(title="Invited", attendees=[ids["loner"]])
    create(title="Not invited", attendees=[])

    r = client.get("/meetings/mine", headers=auth("loner"))
    assert [m["title"] for m in r.json["data"]] == ["Invited"]

    r = client.get("/meetings/mine", headers=auth("editor_a"))
    assert r.json["count"] == 2


def test_rsvp(client, auth, create, ids):
    meeting_id = create().json["data"]["id"]

    r = client.patch(f"/meetings/{meeting_id}/rsvp", json={"status": "accepted"}, headers=auth("viewer_b"))
    assert r.status_code == 200
    assert r.json["data"] == {"meeting_id": meeting_id, "user_id": ids["viewer_b"], "status": "accepted"}

    r = client.patch(f"/meetings/{meeting_id}/rsvp", json={"status": "maybe"}, headers=auth("viewer_b"))
    assert r.status_code == 400

    r = client.patch(f"/meetings/{meeting_id}/rsvp", json={"status": "declined"}, headers=auth("loner"))
    assert r.status_code == 403

    r = client.patch("/meetings/999/rsvp", json={"status": "declined"}, headers=auth("viewer_b"))
    assert r.status_code == 404

    data = client.get(f"/meetings/{meeting_id}", headers=auth("editor_a")).json["data"]
    assert _statuses(data)[ids["viewer_b"]] == "accepted"


def test_update_keeps_existing_rsvps(client, auth, create, ids):
    meeting_id = create(attendees=[ids["viewer_b"]]).json["data"]["id"]
    client.patch(f"/meetings/{meeting_id}/rsvp", json={"status": "tentative"}, headers=auth("viewer_b"))

    r = client.put(
        f"/meetings/{meeting_id}",
        json={"attendees": [ids["viewer_b"], ids["viewer_a"]], "title": "Weekly sync (moved)"},
        headers=auth("editor_a"),
    )
    assert r.status_code == 200
    assert r.json["data"]["title"] == "Weekly sync (moved)"
    assert _statuses(r.json["data"]) == {ids["viewer_b"]: "tentative", ids["viewer_a"]: "pending"}


def test_changing_type_clears_link(client, auth, create):
    meeting_id = create().json["data"]["id"]
    r = client.put(f"/meetings/{meeting_id}", json={"meeting_type": "in_person"}, headers=auth("editor_a"))
    assert r.json["data"]["meeting_link"] is None


def test_organizer_rules(client, auth, create, ids):
    meeting_id = create().json["data"]["id"]

    r = client.put(f"/meetings/{meeting_id}", json={"notes": "hi"}, headers=auth("viewer_a"))
    assert r.status_code == 403

    r = client.put(f"/meetings/{meeting_id}", json={"organizer_user_id": ids["viewer_a"]}, headers=auth("editor_a"))
    assert r.status_code == 403

    r = client.put(f"/meetings/{meeting_id}", json={"organizer_user_id": ids["viewer_a"]}, headers=auth("admin"))
    assert r.status_code == 200
    assert r.json["data"]["organizer"]["id"] == ids["viewer_a"]

    r = client.put(f"/meetings/{meeting_id}", json={"notes": "Bring numbers"}, headers=auth("viewer_a"))
    assert r.status_code == 200
    assert r.json["data"]["notes"] == "Bring numbers"

    r = client.put(f"/meetings/{meeting_id}", json={"department_id": ids["dept_b"]}, headers=auth("viewer_a"))
    assert r.status_code == 403


def test_delete_meeting(client, auth, create):
    meeting_id = create().json["data"]["id"]
    assert client.delete(f"/meetings/{meeting_id}", headers=auth("viewer_b")).status_code == 403
    assert client.delete(f"/meetings/{meeting_id}", headers=auth("editor_a")).status_code == 200
    assert client.get(f"/meetings/{meeting_id}", headers=auth("admin")).status_code == 404


def test_stats(client, auth, create, ids):
    create(title="Past", meeting_date=_when(days=-3))
    create(title="Next", meeting_date=_when(days=3), meeting_type="hybrid")
    create(title="Later", meeting_date=_when(days=9), meeting_type="in_person")

    r = client.get(f"/departments/{ids['dept_a']}/meetings/stats", headers=auth("editor_a"))
    assert r.status_code == 200
    data = r.json["data"]
    assert data["by_status"] == {"completed": 1, "scheduled": 2}
    assert data["by_type"] == {"virtual": 1, "hybrid": 1, "in_person": 1}
    assert data["upcoming_count"] == 2
    assert len(data["recent_meetings"]) == 3
