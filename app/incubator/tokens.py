"""
Signed, stateless auth tokens and the identity resolver.

A token is an itsdangerous timed signature over the subject user id. Nothing is
stored server-side; expiry is enforced at decode time via `max_age`.
"""
from __future__ import annotations

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy.orm import Session

from app.incubator.errors import Unauthenticated
from app.incubator.models import User
from app.incubator.policy import Identity

TOKEN_SALT = "incubator-auth-token-v1"


def _serializer(secret_key: str) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret_key=secret_key, salt=TOKEN_SALT)


def issue_token(secret_key: str, user_id: int) -> str:
    return _serializer(secret_key).dumps({"sub": int(user_id)})


def decode_token(secret_key: str, token: str | None, *, max_age: int) -> int:
    """Return the subject user id, or raise Unauthenticated."""
    if not token:
        raise Unauthenticated("Not authorized, no token provided")
    try:
        data = _serializer(secret_key).loads(token, max_age=max_age)
    except SignatureExpired:
        raise Unauthenticated("Session expired. Please log in again.")
    except BadSignature:
        raise Unauthenticated("Invalid token")
    sub = data.get("sub") if isinstance(data, dict) else None
    if not isinstance(sub, int):
        raise Unauthenticated("Invalid token format")
    return sub


def resolve_identity(s: Session, token: str | None, *, secret_key: str, max_age: int) -> tuple[User, Identity]:
    user_id = decode_token(secret_key, token, max_age=max_age)
    user = s.get(User, user_id)
    if not user or not user.is_active:
        raise Unauthenticated("Not authorized, user not found")
    return user, Identity.from_user(user)


def token_from_request(req, cookie_name: str) -> str | None:
    """Bearer header first, then the auth cookie."""
    header = (req.headers.get("Authorization") or "").strip()
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return req.cookies.get(cookie_name) or None
