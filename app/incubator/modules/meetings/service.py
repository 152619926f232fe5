from __future__ import annotations

from datetime import datetime, time
from typing import TYPE_CHECKING

from sqlalchemy import func, or_

from app.incubator.audit import record_event
from app.incubator.errors import Forbidden, NotFound, ValidationError, raise_for_errors
from app.incubator.models import User
from app.incubator.modules.meetings.models import Meeting, MeetingAttendee
from app.incubator.policy import CREATE, READ, UPDATE, Identity, authorize, authorize_department_move, can
from app.incubator.scoping import check_department_listing, get_department_or_404, scope_to_department
from app.incubator.utils import (
    check_date,
    check_int,
    clean_str,
    is_valid_url,
    iso,
    parse_bool,
    parse_date,
    parse_datetime,
    parse_int,
)

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


MEETING_TYPES = ("in_person", "virtual", "hybrid")
LINK_MEETING_TYPES = ("virtual", "hybrid")
STATUS_SCHEDULED = "scheduled"
STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"
STATUS_CANCELED = "canceled"
VALID_STATUSES = (STATUS_SCHEDULED, STATUS_IN_PROGRESS, STATUS_COMPLETED, STATUS_CANCELED)
RSVP_PENDING = "pending"
RSVP_STATUSES = ("accepted", "declined", "tentative")
RECURRENCE_FREQUENCIES = ("daily", "weekly", "biweekly", "monthly")

DEFAULT_DURATION = 60
MIN_DURATION = 5
MAX_DURATION = 1440
RECENT_LIMIT = 5

_TEXT_LIMITS = (
    ("title", "Title", 200),
    ("description", "Description", 2000),
    ("agenda", "Agenda", 5000),
    ("location", "Location", 500),
    ("notes", "Notes", 10000),
)


def _validate_recurrence(errors: list[str], raw, meeting_date: datetime | None) -> None:
    if raw is None:
        return
    if not isinstance(raw, dict):
        errors.append("Recurrence must be an object.")
        return
    if not parse_bool(raw.get("is_recurring")):
        return
    frequency = clean_str(raw.get("frequency"))
    if frequency not in RECURRENCE_FREQUENCIES:
        errors.append(f"Recurrence frequency must be one of: {', '.join(RECURRENCE_FREQUENCIES)}")
    check_date(errors, raw, "end_date", "Recurrence end date")
    check_int(errors, raw, "occurrences", "Recurrence occurrences")
    try:
        end_date = parse_date(raw.get("end_date"))
        occurrences = parse_int(raw.get("occurrences"))
    except (TypeError, ValueError):
        return
    if end_date is None and occurrences is None:
        errors.append("Recurring meetings need an end date or a number of occurrences.")
    if occurrences is not None and occurrences < 1:
        errors.append("Recurrence occurrences must be at least 1.")
    if end_date is not None and meeting_date is not None and end_date <= meeting_date.date():
        errors.append("Recurrence end date must be after the meeting start date.")


def validate_meeting_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors = []
    for key, label, limit in _TEXT_LIMITS:
        value = clean_str(payload.get(key))
        if value and len(value) > limit:
            errors.append(f"{label} cannot be more than {limit} characters.")
    if (not partial or "title" in payload) and not clean_str(payload.get("title")):
        errors.append("Meeting title is required.")

    meeting_date = None
    if not partial or "meeting_date" in payload:
        if not clean_str(payload.get("meeting_date")):
            errors.append("Meeting date and time are required.")
        else:
            try:
                meeting_date = parse_datetime(payload.get("meeting_date"))
            except ValueError:
                errors.append("Meeting date must be an ISO-8601 date/time.")

    if payload.get("duration") not in (None, ""):
        try:
            duration = parse_int(payload.get("duration"))
        except (TypeError, ValueError):
            errors.append("Duration must be an integer number of minutes.")
        else:
            if duration is not None and not MIN_DURATION <= duration <= MAX_DURATION:
                errors.append(f"Duration must be between {MIN_DURATION} and {MAX_DURATION} minutes.")

    meeting_type = clean_str(payload.get("meeting_type"))
    if not partial or "meeting_type" in payload:
        if meeting_type not in MEETING_TYPES:
            errors.append(f"Meeting type must be one of: {', '.join(MEETING_TYPES)}")

    link = clean_str(payload.get("meeting_link"))
    if link and not is_valid_url(link):
        errors.append(f"'{link}' is not a valid URL")

    status = clean_str(payload.get("status"))
    if status and status not in VALID_STATUSES:
        errors.append(f"Status must be one of: {', '.join(VALID_STATUSES)}")

    attendees = payload.get("attendees")
    if attendees is not None:
        if not isinstance(attendees, list):
            errors.append("Attendees must be a list of user ids.")
        else:
            try:
                [parse_int(a) for a in attendees]
            except (TypeError, ValueError):
                errors.append("Attendees must be a list of user ids.")

    if not partial:
        if payload.get("department_id") in (None, ""):
            errors.append("Department reference is required.")
        else:
            check_int(errors, payload, "department_id", "Department")

    _validate_recurrence(errors, payload.get("recurring"), meeting_date)
    return errors


def apply_schedule_status(meeting: Meeting, now: datetime) -> None:
    """
    Advance a scheduled meeting to in_progress/completed based on its time window.
    Explicit in_progress/completed/canceled statuses are left alone.
    """
    if meeting.status != STATUS_SCHEDULED:
        return
    if now > meeting.end_time:
        meeting.status = STATUS_COMPLETED
    elif meeting.meeting_date <= now <= meeting.end_time:
        meeting.status = STATUS_IN_PROGRESS


def _user_brief(s: "Session", user_id: int | None) -> dict | None:
    if user_id is None:
        return None
    u = s.get(User, user_id)
    if not u:
        return None
    return {"id": u.id, "full_name": u.full_name, "email": u.email}


def serialize_meeting(s: "Session", m: Meeting) -> dict:
    return {
        "id": m.id,
        "title": m.title,
        "description": m.description,
        "agenda": m.agenda,
        "meeting_date": iso(m.meeting_date),
        "end_time": iso(m.end_time),
        "duration": m.duration,
        "location": m.location,
        "meeting_link": m.meeting_link,
        "meeting_type": m.meeting_type,
        "status": m.status,
        "department_id": m.department_id,
        "created_by": _user_brief(s, m.created_by_user_id),
        "organizer": _user_brief(s, m.organizer_user_id),
        "attendees": [
            {
                "user": _user_brief(s, a.user_id),
                "status": a.status,
                "response_date": iso(a.response_date),
            }
            for a in m.attendees
        ],
        "recurring": {
            "is_recurring": m.is_recurring,
            "frequency": m.recurrence_frequency,
            "end_date": iso(m.recurrence_end_date),
            "occurrences": m.recurrence_occurrences,
        },
        "notes": m.notes,
        "is_private": m.is_private,
        "created_at": iso(m.created_at),
        "updated_at": iso(m.updated_at),
    }


def _resolve_attendees(s: "Session", raw: list) -> list[int]:
    ids: list[int] = []
    for a in raw:
        user_id = parse_int(a)
        if user_id is not None and user_id not in ids:
            ids.append(user_id)
    if ids:
        found = s.query(func.count(User.id)).filter(User.id.in_(ids)).scalar() or 0
        if found != len(ids):
            raise ValidationError("One or more attendees not found")
    return ids


def _involvement_clause(identity: Identity):
    return or_(
        Meeting.organizer_user_id == identity.id,
        Meeting.attendees.any(MeetingAttendee.user_id == identity.id),
    )


def _visible(q, identity: Identity):
    """Department scope, plus meetings the caller organizes or attends; private meetings only to those involved."""
    involved = _involvement_clause(identity)
    q = scope_to_department(q, Meeting.department_id, identity, public_clause=involved)
    if not identity.is_admin and not identity.is_editor:
        q = q.filter(or_(Meeting.is_private.is_(False), involved))
    return q


def _is_involved(identity: Identity, m: Meeting) -> bool:
    return m.organizer_user_id == identity.id or m.attendee_for(identity.id) is not None


def _can_manage(identity: Identity, m: Meeting) -> bool:
    return m.organizer_user_id == identity.id or can(identity, UPDATE, m.department_id)


def _apply_date_range(q, start_date=None, end_date=None):
    try:
        start = parse_date(start_date)
        end = parse_date(end_date)
    except ValueError:
        raise ValidationError("Validation failed", details=["Date filters must be dates (YYYY-MM-DD)."])
    if start is not None:
        q = q.filter(Meeting.meeting_date >= datetime.combine(start, time.min))
    if end is not None:
        q = q.filter(Meeting.meeting_date <= datetime.combine(end, time.max))
    return q


def get_meeting(s: "Session", identity: Identity, meeting_id: int) -> Meeting:
    m = s.get(Meeting, meeting_id)
    if not m:
        raise NotFound("Meeting not found")
    if _is_involved(identity, m) or identity.is_admin:
        return m
    if can(identity, UPDATE, m.department_id):
        return m
    if m.is_private or not can(identity, READ, m.department_id):
        raise Forbidden("Not authorized to access this meeting")
    return m


def list_meetings(s: "Session", identity: Identity, *, status: str | None = None, start_date=None, end_date=None) -> list[Meeting]:
    q = _visible(s.query(Meeting), identity)
    q = _apply_date_range(q, start_date, end_date)
    if clean_str(status):
        q = q.filter(Meeting.status == clean_str(status))
    return q.order_by(Meeting.meeting_date.asc(), Meeting.id.asc()).all()


def list_department_meetings(
    s: "Session",
    identity: Identity,
    department_id: int,
    *,
    status: str | None = None,
    start_date=None,
    end_date=None,
) -> list[Meeting]:
    check_department_listing(s, identity, department_id, "meetings")
    q = _visible(s.query(Meeting).filter(Meeting.department_id == department_id), identity)
    q = _apply_date_range(q, start_date, end_date)
    if clean_str(status):
        q = q.filter(Meeting.status == clean_str(status))
    return q.order_by(Meeting.meeting_date.asc(), Meeting.id.asc()).all()


def list_my_meetings(s: "Session", identity: Identity, *, status: str | None = None, start_date=None, end_date=None) -> list[Meeting]:
    q = s.query(Meeting).filter(_involvement_clause(identity))
    q = _apply_date_range(q, start_date, end_date)
    if clean_str(status):
        q = q.filter(Meeting.status == clean_str(status))
    return q.order_by(Meeting.meeting_date.asc(), Meeting.id.asc()).all()


def meeting_stats(s: "Session", identity: Identity, department_id: int, now: datetime | None = None) -> dict:
    check_department_listing(s, identity, department_id, "meetings")
    now = now or datetime.utcnow()
    base = _visible(s.query(Meeting).filter(Meeting.department_id == department_id), identity)

    by_status = base.with_entities(Meeting.status, func.count(Meeting.id)).group_by(Meeting.status).all()
    by_type = base.with_entities(Meeting.meeting_type, func.count(Meeting.id)).group_by(Meeting.meeting_type).all()
    upcoming_count = base.filter(Meeting.meeting_date >= now).count()
    recent = base.order_by(Meeting.created_at.desc(), Meeting.id.desc()).limit(RECENT_LIMIT).all()
    return {
        "by_status": {k: v for k, v in by_status},
        "by_type": {k: v for k, v in by_type},
        "upcoming_count": upcoming_count,
        "recent_meetings": [
            {
                "id": m.id,
                "title": m.title,
                "meeting_date": iso(m.meeting_date),
                "status": m.status,
                "meeting_type": m.meeting_type,
            }
            for m in recent
        ],
    }


def _apply_recurrence(m: Meeting, raw: dict | None) -> None:
    if raw is None:
        return
    if not parse_bool(raw.get("is_recurring")):
        m.is_recurring = False
        m.recurrence_frequency = None
        m.recurrence_end_date = None
        m.recurrence_occurrences = None
        return
    m.is_recurring = True
    m.recurrence_frequency = clean_str(raw.get("frequency"))
    m.recurrence_end_date = parse_date(raw.get("end_date"))
    m.recurrence_occurrences = parse_int(raw.get("occurrences"))


def _link_for(meeting_type: str, link: str | None) -> str | None:
    return link if meeting_type in LINK_MEETING_TYPES else None


def create_meeting(s: "Session", identity: Identity, payload: dict, user: User, now: datetime | None = None) -> Meeting:
    raise_for_errors(validate_meeting_payload(payload))
    department = get_department_or_404(s, parse_int(payload["department_id"]))  # type: ignore[arg-type]
    authorize(identity, CREATE, department.id, "Not authorized to create meetings for this department")
    attendee_ids = _resolve_attendees(s, payload.get("attendees") or [])

    now = now or datetime.utcnow()
    meeting_type = clean_str(payload["meeting_type"])
    m = Meeting(
        title=clean_str(payload["title"]),
        description=clean_str(payload.get("description")),
        agenda=clean_str(payload.get("agenda")),
        meeting_date=parse_datetime(payload["meeting_date"]),
        duration=parse_int(payload.get("duration")) or DEFAULT_DURATION,
        location=clean_str(payload.get("location")),
        meeting_link=_link_for(meeting_type, clean_str(payload.get("meeting_link"))),  # type: ignore[arg-type]
        meeting_type=meeting_type,
        status=clean_str(payload.get("status")) or STATUS_SCHEDULED,
        department_id=department.id,
        created_by_user_id=user.id,
        organizer_user_id=user.id,
        notes=clean_str(payload.get("notes")),
        is_private=parse_bool(payload.get("is_private")),
        created_at=now,
        updated_at=now,
    )
    _apply_recurrence(m, payload.get("recurring"))
    m.attendees = [MeetingAttendee(user_id=uid, status=RSVP_PENDING, response_date=now) for uid in attendee_ids]
    apply_schedule_status(m, now)
    s.add(m)
    s.flush()
    record_event(
        s,
        actor=user,
        action="meeting.create",
        entity_type="Meeting",
        entity_id=str(m.id),
        metadata={"title": m.title, "department_id": m.department_id, "attendees": attendee_ids},
    )
    return m


def update_meeting(s: "Session", identity: Identity, m: Meeting, payload: dict, user: User, now: datetime | None = None) -> Meeting:
    if not _can_manage(identity, m):
        raise Forbidden("Not authorized to update this meeting")
    new_department = authorize_department_move(identity, m.department_id, payload.get("department_id"), "meetings")
    if "organizer_user_id" in payload:
        try:
            new_organizer = parse_int(payload.get("organizer_user_id"))
        except (TypeError, ValueError):
            raise ValidationError("Validation failed", details=["Organizer must be a user id."])
        if new_organizer != m.organizer_user_id and not identity.is_admin:
            raise Forbidden("Only admins can change the meeting organizer")
    else:
        new_organizer = m.organizer_user_id
    raise_for_errors(validate_meeting_payload(payload, partial=True))

    now = now or datetime.utcnow()
    changes: dict = {}

    if new_department != m.department_id:
        get_department_or_404(s, new_department)  # type: ignore[arg-type]
        changes["department_id"] = {"old": m.department_id, "new": new_department}
        m.department_id = new_department  # type: ignore[assignment]

    if new_organizer != m.organizer_user_id:
        if new_organizer is not None and s.get(User, new_organizer) is None:
            raise ValidationError("Organizer not found")
        changes["organizer_user_id"] = {"old": m.organizer_user_id, "new": new_organizer}
        m.organizer_user_id = new_organizer

    for key in ("title", "description", "agenda", "location", "notes"):
        if key in payload:
            value = clean_str(payload.get(key))
            if value != getattr(m, key):
                changes[key] = {"old": getattr(m, key), "new": value}
                setattr(m, key, value)

    if "meeting_date" in payload:
        new_date = parse_datetime(payload.get("meeting_date"))
        if new_date != m.meeting_date:
            changes["meeting_date"] = {"old": iso(m.meeting_date), "new": iso(new_date)}
            m.meeting_date = new_date  # type: ignore[assignment]

    if payload.get("duration") not in (None, ""):
        new_duration = parse_int(payload.get("duration"))
        if new_duration != m.duration:
            changes["duration"] = {"old": m.duration, "new": new_duration}
            m.duration = new_duration  # type: ignore[assignment]

    new_type = clean_str(payload.get("meeting_type")) or m.meeting_type
    if new_type != m.meeting_type:
        changes["meeting_type"] = {"old": m.meeting_type, "new": new_type}
        m.meeting_type = new_type
    requested_link = clean_str(payload.get("meeting_link")) if "meeting_link" in payload else m.meeting_link
    new_link = _link_for(m.meeting_type, requested_link)
    if new_link != m.meeting_link:
        changes["meeting_link"] = {"old": m.meeting_link, "new": new_link}
        m.meeting_link = new_link

    new_status = clean_str(payload.get("status"))
    if new_status and new_status != m.status:
        changes["status"] = {"old": m.status, "new": new_status}
        m.status = new_status

    if "is_private" in payload and parse_bool(payload.get("is_private")) != m.is_private:
        changes["is_private"] = {"old": m.is_private, "new": parse_bool(payload.get("is_private"))}
        m.is_private = parse_bool(payload.get("is_private"))

    if "recurring" in payload:
        _apply_recurrence(m, payload.get("recurring"))
        changes["recurring"] = payload.get("recurring")

    if payload.get("attendees") is not None:
        attendee_ids = _resolve_attendees(s, payload["attendees"])
        existing = {a.user_id: a for a in m.attendees}
        if attendee_ids != [a.user_id for a in m.attendees]:
            changes["attendees"] = {"old": list(existing), "new": attendee_ids}
        # Keep RSVP state for attendees that stay on the invite.
        m.attendees = [
            existing.get(uid) or MeetingAttendee(user_id=uid, status=RSVP_PENDING, response_date=now)
            for uid in attendee_ids
        ]

    apply_schedule_status(m, now)
    if changes:
        m.updated_at = now
        record_event(
            s,
            actor=user,
            action="meeting.update",
            entity_type="Meeting",
            entity_id=str(m.id),
            metadata={"changes": changes},
        )
    return m


def delete_meeting(s: "Session", identity: Identity, m: Meeting, user: User) -> None:
    if not _can_manage(identity, m):
        raise Forbidden("Not authorized to delete this meeting")
    record_event(
        s,
        actor=user,
        action="meeting.delete",
        entity_type="Meeting",
        entity_id=str(m.id),
        metadata={"title": m.title, "department_id": m.department_id},
    )
    s.delete(m)


def rsvp(s: "Session", identity: Identity, meeting_id: int, payload: dict, user: User, now: datetime | None = None) -> dict:
    status = clean_str(payload.get("status"))
    if status not in RSVP_STATUSES:
        raise ValidationError(f"Invalid status. Must be one of: {', '.join(RSVP_STATUSES)}")
    m = s.get(Meeting, meeting_id)
    if not m:
        raise NotFound("Meeting not found")
    attendee = m.attendee_for(identity.id)
    if attendee is None:
        raise Forbidden("You are not an attendee of this meeting")

    attendee.status = status  # type: ignore[assignment]
    attendee.response_date = now or datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="meeting.rsvp",
        entity_type="Meeting",
        entity_id=str(m.id),
        metadata={"status": status},
    )
    return {"meeting_id": m.id, "user_id": identity.id, "status": status}
