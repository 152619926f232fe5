from __future__ import annotations

import uuid
from datetime import datetime

from flask import Blueprint, current_app, g, request
from sqlalchemy import func
from werkzeug.security import check_password_hash, generate_password_hash

from app.incubator.audit import record_event
from app.incubator.db import db_session
from app.incubator.errors import Conflict, Unauthenticated, ValidationError, raise_for_errors
from app.incubator.models import Department, User
from app.incubator.modules.startups.models import Startup
from app.incubator.policy import Identity, normalize_role
from app.incubator.tokens import issue_token, resolve_identity, token_from_request
from app.incubator.utils import clean_str, json_payload, ok

bp = Blueprint("auth", __name__)

SIGNUP_ROLES = ("viewer", "editor")
AFFILIATION_TYPES = ("startup", "department")
MIN_PASSWORD_LENGTH = 6


def load_current_user() -> None:
    """
    Resolves g.current_user / g.identity from the bearer token or auth cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    An invalid token leaves the request anonymous; protected routes turn that into 401.
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    g.current_user = None
    g.identity = None
    g.auth_error = None
    if request.path.startswith(("/static/", "/health", "/healthz")):
        return

    token = token_from_request(request, current_app.config["TOKEN_COOKIE_NAME"])
    if not token:
        return
    try:
        user, identity = resolve_identity(
            db_session(),
            token,
            secret_key=current_app.config["SECRET_KEY"],
            max_age=current_app.config["TOKEN_TTL_SECONDS"],
        )
    except Unauthenticated as e:
        current_app.logger.info("Rejected token (request_id=%s): %s", g.request_id, e.message)
        g.auth_error = e.message
        return
    g.current_user = user
    g.identity = identity


def serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "full_name": user.full_name,
        "email": user.email,
        "role": user.role,
        "department_id": user.department_id,
        "startup_id": user.startup_id,
        "is_active": user.is_active,
    }


def _set_token_cookie(resp, token: str) -> None:
    cfg = current_app.config
    resp.set_cookie(
        cfg["TOKEN_COOKIE_NAME"],
        token,
        max_age=cfg["TOKEN_TTL_SECONDS"],
        httponly=True,
        secure=cfg["TOKEN_COOKIE_SECURE"],
        samesite="Lax",
        path="/",
    )


def _auth_response(user: User, status: int):
    token = issue_token(current_app.config["SECRET_KEY"], user.id)
    resp, code = ok({"user": serialize_user(user), "token": token}, status)
    _set_token_cookie(resp, token)
    return resp, code


def validate_signup_payload(payload: dict) -> list[str]:
    errors = []
    if not clean_str(payload.get("full_name")):
        errors.append("Full name is required.")
    email = (clean_str(payload.get("email")) or "").lower()
    if not email or "@" not in email:
        errors.append("A valid email is required.")
    password = payload.get("password") or ""
    if not isinstance(password, str):
        errors.append("Password must be a string.")
    elif len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    role = normalize_role(payload.get("role") or "viewer")
    if role not in SIGNUP_ROLES:
        errors.append(f"Role must be one of: {', '.join(SIGNUP_ROLES)}")
    affiliation_type = clean_str(payload.get("affiliation_type"))
    if affiliation_type and affiliation_type not in AFFILIATION_TYPES:
        errors.append(f"Affiliation type must be one of: {', '.join(AFFILIATION_TYPES)}")
    if affiliation_type and not clean_str(payload.get("affiliation_name")):
        errors.append("Affiliation name is required when an affiliation type is given.")
    return errors


@bp.post("/signup")
def signup():
    s = db_session()
    payload = json_payload()
    raise_for_errors(validate_signup_payload(payload))

    email = clean_str(payload["email"]).lower()  # type: ignore[union-attr]
    if s.query(User).filter(User.email == email).one_or_none():
        raise Conflict("User with this email already exists.")

    now = datetime.utcnow()
    user = User(
        full_name=clean_str(payload["full_name"]),
        email=email,
        password_hash=generate_password_hash(payload["password"]),
        role=normalize_role(payload.get("role") or "viewer"),
        is_active=True,
        created_at=now,
        updated_at=now,
    )

    affiliation_type = clean_str(payload.get("affiliation_type"))
    affiliation_name = clean_str(payload.get("affiliation_name"))
    if affiliation_type == "department":
        department = s.query(Department).filter(func.lower(Department.name) == affiliation_name.lower()).one_or_none()  # type: ignore[union-attr]
        if not department:
            raise ValidationError("Validation failed", details=[f"Department '{affiliation_name}' does not exist."])
        user.department_id = department.id
    elif affiliation_type == "startup":
        startup = s.query(Startup).filter(func.lower(Startup.name) == affiliation_name.lower()).one_or_none()  # type: ignore[union-attr]
        if not startup:
            raise ValidationError("Validation failed", details=[f"Startup '{affiliation_name}' does not exist."])
        user.startup_id = startup.id

    s.add(user)
    s.flush()
    record_event(s, actor=user, action="auth.signup", entity_type="User", entity_id=str(user.id), metadata={"role": user.role})
    s.commit()
    current_app.logger.info("User signed up: user_id=%s role=%s", user.id, user.role)
    return _auth_response(user, 201)


@bp.post("/login")
def login():
    s = db_session()
    payload = json_payload()
    email = (clean_str(payload.get("email")) or "").lower()
    password = payload.get("password")
    if not isinstance(password, str):
        password = ""

    user = s.query(User).filter(User.email == email).one_or_none() if email else None
    if not user or not user.is_active or not check_password_hash(user.password_hash, password):
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="User",
            entity_id=email or None,
            reason="Invalid credentials",
            metadata={"email": email},
        )
        s.commit()
        raise Unauthenticated("Invalid email or password.")

    record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
    s.commit()
    return _auth_response(user, 200)


@bp.post("/logout")
def logout():
    identity: Identity | None = getattr(g, "identity", None)
    if identity is not None:
        s = db_session()
        record_event(s, actor=g.current_user, action="auth.logout", entity_type="User", entity_id=str(identity.id))
        s.commit()
    resp, code = ok(None, message="Logged out successfully")
    resp.delete_cookie(current_app.config["TOKEN_COOKIE_NAME"], path="/")
    return resp, code

