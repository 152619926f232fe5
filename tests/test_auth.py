import time

from itsdangerous.timed import TimestampSigner

from app.incubator.db import session_scope
from app.incubator.models import AuditEvent, User
from app.incubator.tokens import issue_token

PASSWORD = "password123"


def _signup(client, **overrides):
    payload = {
        "full_name": "New Person",
        "email": "New.Person@Example.com",
        "password": "secret12",
    }
    payload.update(overrides)
    return client.post("/auth/signup", json=payload)


def test_signup_creates_viewer_and_returns_token(client):
    r = _signup(client)
    assert r.status_code == 201
    data = r.json["data"]
    assert data["user"]["email"] == "new.person@example.com"
    assert data["user"]["role"] == "viewer"
    assert data["token"]
    assert "token=" in r.headers.get("Set-Cookie", "")

    r = client.get("/users/profile", headers={"Authorization": f"Bearer {data['token']}"})
    assert r.status_code == 200
    assert r.json["data"]["email"] == "new.person@example.com"


def test_signup_normalizes_legacy_user_role(client):
    r = _signup(client, role="user")
    assert r.status_code == 201
    assert r.json["data"]["user"]["role"] == "viewer"


def test_signup_cannot_self_promote_to_admin(client):
    r = _signup(client, role="admin")
    assert r.status_code == 400
    assert any("Role must be one of" in d for d in r.json["details"])


def test_signup_duplicate_email_conflicts(client):
    r = _signup(client, email="viewer_a@example.com")
    assert r.status_code == 409


def test_signup_validation_lists_every_problem(client):
    r = client.post("/auth/signup", json={"email": "nope", "password": "x"})
    assert r.status_code == 400
    assert len(r.json["details"]) == 3


def test_signup_non_string_password_is_400(client):
    r = _signup(client, password=12345678)
    assert r.status_code == 400
    assert "Password must be a string." in r.json["details"]


def test_signup_links_existing_department(client, ids):
    r = _signup(client, role="editor", affiliation_type="department", affiliation_name="engineering")
    assert r.status_code == 201
    assert r.json["data"]["user"]["department_id"] == ids["dept_a"]


def test_signup_unknown_affiliation_rejected(client):
    r = _signup(client, affiliation_type="startup", affiliation_name="Ghost Co")
    assert r.status_code == 400


def test_login_success_sets_cookie_session(client):
    r = client.post("/auth/login", json={"email": "EDITOR_A@example.com", "password": PASSWORD})
    assert r.status_code == 200
    assert r.json["data"]["user"]["role"] == "editor"

    # Cookie alone authenticates follow-up requests.
    r = client.get("/users/profile")
    assert r.status_code == 200
    assert r.json["data"]["email"] == "editor_a@example.com"


def test_login_bad_password_is_401_and_audited(app, client):
    r = client.post("/auth/login", json={"email": "admin@example.com", "password": "wrong"})
    assert r.status_code == 401
    assert r.json["message"] == "Invalid email or password."
    with session_scope(app) as s:
        assert s.query(AuditEvent).filter(AuditEvent.action == "auth.login_failed").count() == 1


def test_login_non_string_password_is_401(client):
    r = client.post("/auth/login", json={"email": "admin@example.com", "password": 12345678})
    assert r.status_code == 401
    assert r.json["message"] == "Invalid email or password."


def test_logout_clears_cookie(client):
    client.post("/auth/login", json={"email": "viewer_a@example.com", "password": PASSWORD})
    r = client.post("/auth/logout")
    assert r.status_code == 200
    assert r.json["message"] == "Logged out successfully"
    r = client.get("/users/profile")
    assert r.status_code == 401


def test_missing_token_is_401(client):
    r = client.get("/startups")
    assert r.status_code == 401
    assert r.json["success"] is False


def test_garbage_token_is_401(client):
    r = client.get("/startups", headers={"Authorization": "Bearer not-a-token"})
    assert r.status_code == 401
    assert r.json["message"] == "Invalid token"


def test_token_signed_with_other_secret_is_401(client, ids):
    token = issue_token("some-other-secret", ids["admin"])
    r = client.get("/startups", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 401


def test_expired_token_is_401(client, auth, monkeypatch):
    headers = auth("admin")
    later = int(time.time()) + 31 * 24 * 60 * 60
    monkeypatch.setattr(TimestampSigner, "get_timestamp", lambda self: later)
    r = client.get("/startups", headers=headers)
    assert r.status_code == 401
    assert "expired" in r.json["message"].lower()


def test_token_for_deleted_user_is_401(app, client, auth, ids):
    headers = auth("viewer_b")
    with session_scope(app) as s:
        s.delete(s.get(User, ids["viewer_b"]))
    r = client.get("/startups", headers=headers)
    assert r.status_code == 401


def test_token_for_deactivated_user_is_401(app, client, auth, ids):
    headers = auth("viewer_a")
    with session_scope(app) as s:
        s.get(User, ids["viewer_a"]).is_active = False
    r = client.get("/startups", headers=headers)
    assert r.status_code == 401
