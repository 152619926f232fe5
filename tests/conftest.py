from datetime import datetime

import pytest
from werkzeug.security import generate_password_hash

from app.incubator import create_app
from app.incubator.db import session_scope
from app.incubator.models import Base, Department, User
from app.incubator.tokens import issue_token

PASSWORD = "password123"


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_LOCAL_ROOT", str(tmp_path / "storage"))
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY", "TOKEN_TTL_DAYS", "ALLOWED_ORIGINS"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    app.config["TESTING"] = True
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    return app


@pytest.fixture()
def ids(app):
    """
    Two departments and one user per role/department combination:
    admin, editor_a/viewer_a (Engineering), editor_b/viewer_b (Marketing),
    and a viewer with no department.
    """
    now = datetime.utcnow()
    out: dict[str, int] = {}
    with session_scope(app) as s:
        eng = Department(name="Engineering", description="Builds things", slug="engineering", created_at=now, updated_at=now)
        mkt = Department(name="Marketing", description="Sells things", slug="marketing", created_at=now, updated_at=now)
        s.add_all([eng, mkt])
        s.flush()
        out["dept_a"] = eng.id
        out["dept_b"] = mkt.id

        def user(key: str, role: str, department_id):
            u = User(
                full_name=key.replace("_", " ").title(),
                email=f"{key}@example.com",
                password_hash=generate_password_hash(PASSWORD),
                role=role,
                is_active=True,
                department_id=department_id,
                created_at=now,
                updated_at=now,
            )
            s.add(u)
            s.flush()
            out[key] = u.id

        user("admin", "admin", None)
        user("editor_a", "editor", eng.id)
        user("viewer_a", "viewer", eng.id)
        user("editor_b", "editor", mkt.id)
        user("viewer_b", "viewer", mkt.id)
        user("loner", "viewer", None)
    return out


@pytest.fixture()
def client(app, ids):
    return app.test_client()


@pytest.fixture()
def auth(app, ids):
    """auth("editor_a") -> Authorization header for that seeded user."""

    def _headers(key: str) -> dict:
        return {"Authorization": f"Bearer {issue_token(app.config['SECRET_KEY'], ids[key])}"}

    return _headers
