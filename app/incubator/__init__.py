import logging
import os

from dotenv import load_dotenv
from flask import Flask
from flask_cors import CORS

from app.incubator.auth import bp as auth_bp, load_current_user
from app.incubator.config import is_production, load_config
from app.incubator.db import init_db, teardown_db_session
from app.incubator.errors import register_error_handlers
from app.incubator.modules.deliverables.routes import bp as deliverables_bp
from app.incubator.modules.departments.routes import bp as departments_bp
from app.incubator.modules.meetings.routes import bp as meetings_bp
from app.incubator.modules.milestones.routes import bp as milestones_bp
from app.incubator.modules.resources.routes import bp as resources_bp
from app.incubator.modules.startups.routes import bp as startups_bp
from app.incubator.modules.users.routes import bp as users_bp
from app.incubator.routes import bp as routes_bp

logger = logging.getLogger(__name__)

ENTITY_BLUEPRINTS = (
    departments_bp,
    startups_bp,
    milestones_bp,
    deliverables_bp,
    meetings_bp,
    resources_bp,
    users_bp,
)
S3_REQUIRED = ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")


def _check_production(config: dict) -> None:
    """Refuse to boot a production app on sqlite or the default secret."""
    if not is_production(config.get("ENV")):
        return
    db_url = str(config.get("DATABASE_URL") or "").strip()
    if not db_url:
        raise RuntimeError("DATABASE_URL is required in production.")
    if db_url.startswith("sqlite"):
        raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
    if str(config.get("SECRET_KEY") or "") in ("", "change-me"):
        raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")


def _dispose_engine_after_fork(app: Flask) -> None:
    # gunicorn --preload forks after the engine exists; children must not share its pool.
    if not hasattr(os, "register_at_fork"):
        return

    def _after_fork_child() -> None:
        engine = app.extensions.get("sqlalchemy_engine")
        if engine is not None:
            engine.dispose(close=False)

    os.register_at_fork(after_in_child=_after_fork_child)


def _check_storage(app: Flask) -> None:
    if app.config.get("STORAGE_BACKEND") != "s3":
        return
    missing = [k for k in S3_REQUIRED if not app.config.get(k)]
    if missing:
        app.logger.error("S3 storage selected but %s unset; resource uploads will fail", ", ".join(missing))


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.json.sort_keys = False  # type: ignore[attr-defined]
    app.logger.setLevel(app.config.get("LOG_LEVEL") or "INFO")

    _check_production(app.config)
    init_db(app)
    _dispose_engine_after_fork(app)
    _check_storage(app)

    CORS(app, origins=app.config["ALLOWED_ORIGINS"], supports_credentials=True)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    for bp in ENTITY_BLUEPRINTS:
        app.register_blueprint(bp)

    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)
    register_error_handlers(app)

    logger.info("Incubator Hub ready (env=%s, storage=%s)", app.config.get("ENV"), app.config.get("STORAGE_BACKEND"))
    return app
