import os
import sys
from datetime import datetime
from pathlib import Path

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.incubator.models import Base, User  # noqa: E402
from app.incubator.db import build_engine  # noqa: E402
from scripts._db_utils import script_session  # noqa: E402


def create_schema(database_url: str) -> None:
    """Local development shortcut: create tables directly from the models (no Alembic)."""
    engine = build_engine(database_url, pooled=False)
    try:
        Base.metadata.create_all(engine)
    finally:
        engine.dispose()


def seed_only(*, database_url: str | None = None) -> None:
    """
    Ensure an admin account exists.
    Idempotent; never overwrites an existing user's password. An existing
    account with the admin email is promoted to admin.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@incubator.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"
    admin_name = (os.environ.get("ADMIN_NAME") or "Administrator").strip()

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///incubator.db").strip()

    with script_session(db_url) as s:
        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            now = datetime.utcnow()
            user = User(
                full_name=admin_name,
                email=admin_email,
                password_hash=generate_password_hash(admin_password),
                role="admin",
                is_active=True,
                created_at=now,
                updated_at=now,
            )
            s.add(user)
        elif user.role != "admin":
            user.role = "admin"
            user.updated_at = datetime.utcnow()

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    db_url = (os.environ.get("DATABASE_URL") or "sqlite:///incubator.db").strip()
    if "--create-all" in sys.argv[1:]:
        create_schema(db_url)
    seed_only(database_url=db_url)


if __name__ == "__main__":
    main()
