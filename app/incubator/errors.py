"""
Error taxonomy shared by services and routes.

Services raise these and never build responses themselves; the single handler
registered in `register_error_handlers` turns them into the JSON envelope.
"""
from __future__ import annotations

import traceback
from typing import Any

from flask import Flask, current_app, g, jsonify, request
from werkzeug.exceptions import HTTPException

from app.incubator.config import is_production


class AppError(RuntimeError):
    """Base application-level error."""

    status_code = 500
    default_message = "An error occurred"

    def __init__(self, message: str | None = None, *, details: Any = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details


class Unauthenticated(AppError):
    """Missing, malformed, expired or orphaned token."""

    status_code = 401
    default_message = "Not authorized, no valid token"


class Forbidden(AppError):
    """Authenticated, but the role policy denies the action."""

    status_code = 403
    default_message = "Forbidden: You do not have permission to perform this action"


class NotFound(AppError):
    status_code = 404
    default_message = "Resource not found"


class ValidationError(AppError):
    """Input validation failure. `details` carries the list of messages."""

    status_code = 400
    default_message = "Validation failed"


class Conflict(AppError):
    """Duplicate unique value, or a delete blocked by dependents."""

    status_code = 409
    default_message = "Conflict"


class ServerError(AppError):
    status_code = 500
    default_message = "Server error"


def raise_for_errors(errors: list[str]) -> None:
    if errors:
        raise ValidationError("Validation failed", details=errors)


def _envelope(status: int, message: str, *, details: Any = None, exc: BaseException | None = None):
    body: dict[str, Any] = {"success": False, "message": message}
    if details:
        body["details"] = details
    if exc is not None and not is_production(current_app.config.get("ENV")):
        body["type"] = type(exc).__name__
        body["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return jsonify(body), status


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(AppError)
    def _app_error(e: AppError):
        if e.status_code == 403:
            app.logger.warning(
                "Forbidden: %s %s user_id=%s request_id=%s: %s",
                request.method,
                request.path,
                getattr(getattr(g, "identity", None), "user_id", None),
                getattr(g, "request_id", None),
                e.message,
            )
        if e.status_code >= 500:
            app.logger.exception("Server error (request_id=%s)", getattr(g, "request_id", None))
            return _envelope(e.status_code, e.message, details=e.details, exc=e)
        return _envelope(e.status_code, e.message, details=e.details)

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):
        code = e.code or 500
        if code == 404:
            return _envelope(404, f"Route not found: {request.path}")
        if code == 400:
            return _envelope(400, "Malformed request body")
        if code == 413:
            return _envelope(413, "File too large")
        return _envelope(code, e.description or e.name)

    @app.errorhandler(Exception)
    def _unhandled(e: Exception):
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return _envelope(500, "Server error", exc=e)
