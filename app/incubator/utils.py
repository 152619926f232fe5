from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any
from urllib.parse import urlparse

from flask import jsonify, request

from app.incubator.errors import ValidationError


def json_payload() -> dict:
    """Request body as a dict. Empty bodies become {}."""
    data = request.get_json(silent=True)
    if data is None:
        if request.get_data(cache=True):
            raise ValidationError("Request body must be valid JSON")
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def ok(data: Any = None, status: int = 200, **extra: Any):
    body: dict[str, Any] = {"success": True, "data": data}
    body.update(extra)
    return jsonify(body), status


def ok_list(items: list, status: int = 200, **extra: Any):
    return ok(items, status, count=len(items), **extra)


def clean_str(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def parse_date(value: Any) -> date | None:
    """Parse YYYY-MM-DD (or a full ISO timestamp, keeping the date)."""
    s = clean_str(value)
    if not s:
        return None
    if "T" in s:
        return parse_datetime(s).date()  # type: ignore[union-attr]
    return date.fromisoformat(s)


def parse_datetime(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp. Timezone-aware values are converted to naive UTC."""
    s = clean_str(value)
    if not s:
        return None
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def parse_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError("boolean is not an integer")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"{value!r} is not an integer")
        return int(value)
    return int(value)


def parse_bool(value: Any, default: bool = False) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "y", "on")


def is_valid_url(value: str | None) -> bool:
    if not value:
        return False
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def check_date(errors: list[str], payload: dict, key: str, label: str) -> None:
    try:
        parse_date(payload.get(key))
    except ValueError:
        errors.append(f"{label} must be a date (YYYY-MM-DD).")


def check_int(errors: list[str], payload: dict, key: str, label: str) -> None:
    try:
        parse_int(payload.get(key))
    except (TypeError, ValueError):
        errors.append(f"{label} must be an integer.")
