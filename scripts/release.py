"""
Release phase: migrate, prepare storage, seed the admin account.

Refuses sqlite in production and a missing DATABASE_URL. Every step is
idempotent, so it runs on each deploy.

Usage:
  python scripts/release.py [--skip-seed]
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.incubator.config import is_production  # noqa: E402
from app.incubator.db import normalize_database_url  # noqa: E402


def check_database_url() -> str:
    db_url = (os.environ.get("DATABASE_URL") or "").strip()
    if not db_url:
        raise RuntimeError("Missing required environment variable DATABASE_URL.")
    if is_production(os.environ.get("ENV")) and db_url.startswith("sqlite"):
        raise RuntimeError("Refusing to release against sqlite in production. Point DATABASE_URL at Postgres.")
    return normalize_database_url(db_url)


def migrate(db_url: str) -> None:
    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    command.upgrade(cfg, "head")


def prepare_storage() -> str:
    backend = (os.environ.get("STORAGE_BACKEND") or "local").strip().lower()
    if backend == "local":
        root = Path(os.environ.get("STORAGE_LOCAL_ROOT") or ROOT / "storage")
        root.mkdir(parents=True, exist_ok=True)
        return f"local ({root})"
    return backend


def run_release(*, seed: bool = True) -> None:
    db_url = check_database_url()
    print("=== Incubator Hub release ===", flush=True)
    print(f"ENV={os.environ.get('ENV') or '(unset)'}", flush=True)

    print("[1/3] alembic upgrade head", flush=True)
    migrate(db_url)

    print(f"[2/3] storage: {prepare_storage()}", flush=True)

    if seed:
        print("[3/3] seeding admin account", flush=True)
        from scripts import init_db

        init_db.seed_only(database_url=db_url)
    else:
        print("[3/3] seed skipped", flush=True)
    print("=== release done ===", flush=True)


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--skip-seed", action="store_true", help="run migrations only")
    args = parser.parse_args()
    run_release(seed=not args.skip_seed)


if __name__ == "__main__":
    main()
