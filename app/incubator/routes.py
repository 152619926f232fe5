from flask import Blueprint, current_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.incubator.db import db_session

bp = Blueprint("routes", __name__)

API_RESOURCES = ("auth", "users", "departments", "startups", "milestones", "deliverables", "meetings", "resources")


@bp.get("/")
def index():
    return {"success": True, "message": "Incubator Hub API", "resources": [f"/{r}" for r in API_RESOURCES]}


@bp.get("/health")
def health():
    """Readiness: the API answers and the database accepts a trivial query."""
    try:
        db_session().execute(text("SELECT 1"))
    except SQLAlchemyError:
        current_app.logger.exception("Health check: database unreachable")
        return {"success": False, "status": "degraded", "database": "unreachable"}, 503
    return {"success": True, "status": "ok", "database": "ok"}


@bp.get("/healthz")
def healthz():
    """Liveness check. No DB access."""
    return "ok", 200
