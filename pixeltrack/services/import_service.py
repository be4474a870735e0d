"""
pixeltrack.services.import_service — Document Export → Tables
==============================================================

One-shot loader for a JSON export of the old document store::

    {
      "users":      {"<id>": {...}, ...},
      "events":     {"<id>": {..., "attendees": [...],
                               "excused_absences": {"<id>": {...}}}, ...},
      "activities": {"<id>": {..., "multipliers": {"<member>": n}}, ...},
      "settings":   {"global": {"currentSemesterId": ..., "isLeadershipOn": ...}}
    }

Collections may also be lists of documents carrying an ``"id"`` key.
User documents go through :class:`MemberRecord` so legacy field names land
in the canonical columns; the raw legacy values are kept alongside.

Re-importing the same file is safe: rows are upserted by ID and child
collections replaced.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import Engine

from pixeltrack.database.engine import get_session
from pixeltrack.database.models import (
    Activity,
    ActivityMultiplier,
    Event,
    EventAttendee,
    ExcusedAbsence,
    ExcusedStatus,
    Member,
    Setting,
)
from pixeltrack.database.seed import CURRENT_SEMESTER_KEY, LEADERBOARD_KEY
from pixeltrack.engine.schema import MemberRecord, coerce_int

logger = logging.getLogger(__name__)

GLOBAL_SETTING_KEYS: dict[str, str] = {
    "currentSemesterId": CURRENT_SEMESTER_KEY,
    "isLeadershipOn": LEADERBOARD_KEY,
}


class InvalidExportError(ValueError):
    """Raised when the payload is not a document export."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _documents(collection: Any) -> Iterator[tuple[str, dict]]:
    """Yield ``(id, doc)`` from either a mapping or a list of documents."""
    if not collection:
        return
    if isinstance(collection, dict):
        for doc_id, doc in collection.items():
            yield str(doc_id), dict(doc or {})
    elif isinstance(collection, list):
        for doc in collection:
            doc = dict(doc or {})
            doc_id = doc.pop("id", None)
            if doc_id:
                yield str(doc_id), doc
    else:
        raise InvalidExportError(f"Expected a mapping or list, got {type(collection).__name__}")


def parse_timestamp(value: Any) -> datetime | None:
    """Accept ISO strings, epoch millis/seconds and exported Timestamp maps."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, dict):
        seconds = value.get("_seconds", value.get("seconds"))
        if seconds is None:
            return None
        dt = datetime.fromtimestamp(int(seconds), UTC)
    elif isinstance(value, (int, float)):
        # Millisecond epochs are 13 digits for any date after 2001
        seconds = value / 1000 if abs(value) > 10**11 else value
        dt = datetime.fromtimestamp(seconds, UTC)
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


# ---------------------------------------------------------------------------
# Per-collection loaders
# ---------------------------------------------------------------------------
def _semester_delta(member_id: str, doc: dict, semester_id: str | None) -> int | None:
    """The per-semester adjustment for *semester_id*, if the document has one.

    Entries for other semesters have no column to land in and are dropped.
    """
    by_semester = doc.get("pixelDeltaBySemester") or {}
    if not isinstance(by_semester, dict):
        return None
    dropped = sorted(str(k) for k in by_semester if k != semester_id)
    if dropped:
        logger.warning(
            "User %s: ignoring pixelDeltaBySemester for %s", member_id, ", ".join(dropped)
        )
    if semester_id is None or by_semester.get(semester_id) is None:
        return None
    return coerce_int(by_semester[semester_id])


def _import_user(
    session, member_id: str, doc: dict, semester_id: str | None = None
) -> None:
    record = MemberRecord.from_document(member_id, doc)
    semester_delta = _semester_delta(member_id, doc, semester_id)
    row = session.get(Member, member_id)
    if row is None:
        row = Member(id=member_id)
        session.add(row)
    row.first_name = record.first_name
    row.last_name = record.last_name
    row.email = record.email.strip().lower()
    row.slack_id = record.slack_id
    row.slack_email = doc.get("slackEmail")
    row.is_admin = record.is_admin
    row.pixel_delta = semester_delta if semester_delta is not None else record.pixel_delta
    row.pixeldelta = doc.get("pixeldelta")
    row.pixel_cached = record.pixel_cached
    row.pixels = coerce_int(doc.get("pixels")) if doc.get("pixels") is not None else None
    created = parse_timestamp(doc.get("createdAt"))
    if created is not None:
        row.created_at = created
    row.last_login = parse_timestamp(doc.get("lastLogin"))


def _import_event(session, event_id: str, doc: dict) -> int:
    """Load one event; returns the number of excused absences imported."""
    event = session.get(Event, event_id)
    if event is None:
        event = Event(id=event_id)
        session.add(event)
    event.name = doc.get("name") or "Event"
    event.date = parse_timestamp(doc.get("date")) or datetime.now(UTC)
    event.type = doc.get("type") or ""
    event.pixels = max(coerce_int(doc.get("pixels")), 0)
    event.semester_id = doc.get("semesterId")

    attendees = sorted({str(a) for a in doc.get("attendees") or () if a})
    event.attendees = [a for a in event.attendees if a.member_id in attendees]
    present = {a.member_id for a in event.attendees}
    for member_id in attendees:
        if member_id not in present:
            event.attendees.append(EventAttendee(member_id=member_id))

    absences = list(_documents(doc.get("excused_absences")))
    event.excused_absences = []
    session.flush()
    for absence_id, absence in absences:
        status = absence.get("status") or ExcusedStatus.PENDING.value
        event.excused_absences.append(ExcusedAbsence(
            id=absence_id,
            user_id=str(absence.get("userId") or ""),
            reason=absence.get("reason") or "",
            status=status,
            created_at=parse_timestamp(absence.get("createdAt")) or datetime.now(UTC),
        ))
    return len(absences)


def _import_activity(session, activity_id: str, doc: dict) -> None:
    activity = session.get(Activity, activity_id)
    if activity is None:
        activity = Activity(id=activity_id)
        session.add(activity)
    activity.name = doc.get("name") or "Activity"
    activity.type = doc.get("type") or "other"
    activity.pixels = coerce_int(doc.get("pixels"))
    activity.semester_id = doc.get("semesterId")
    created = parse_timestamp(doc.get("createdAt"))
    if created is not None:
        activity.created_at = created

    multipliers = {}
    for uid, value in (doc.get("multipliers") or {}).items():
        value = coerce_int(value)
        if value > 0:
            multipliers[str(uid)] = value
        else:
            logger.info("Activity %s: skipping multiplier %s for %s", activity_id, value, uid)
    activity.multipliers = []
    session.flush()
    for member_id, value in sorted(multipliers.items()):
        activity.multipliers.append(
            ActivityMultiplier(member_id=member_id, multiplier=value)
        )


def _import_settings(session, global_doc: dict) -> int:
    written = 0
    for doc_key, key in GLOBAL_SETTING_KEYS.items():
        if doc_key not in global_doc:
            continue
        value = global_doc[doc_key]
        if key == LEADERBOARD_KEY:
            value = bool(value)
        row = session.get(Setting, key)
        if row is None:
            session.add(Setting(key=key, value_json=json.dumps(value), category="global"))
        else:
            row.value_json = json.dumps(value)
        written += 1
    return written


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------
def import_documents(engine: Engine, payload: dict, *, dry_run: bool = False) -> dict:
    """Load a document export.  Cached totals are taken as-is; run a
    recalculation afterwards to re-derive them.

    Returns:
        ``{"users": N, "events": N, "excused_absences": N,
        "activities": N, "settings": N}``
    """
    if not isinstance(payload, dict):
        raise InvalidExportError("Export must be a JSON object")

    counts = dict.fromkeys(
        ("users", "events", "excused_absences", "activities", "settings"), 0
    )
    global_doc = (payload.get("settings") or {}).get("global") or {}
    semester_id = global_doc.get("currentSemesterId") or None
    with get_session(engine) as session:
        for member_id, doc in _documents(payload.get("users")):
            _import_user(session, member_id, doc, semester_id)
            counts["users"] += 1
        for event_id, doc in _documents(payload.get("events")):
            counts["excused_absences"] += _import_event(session, event_id, doc)
            counts["events"] += 1
        for activity_id, doc in _documents(payload.get("activities")):
            _import_activity(session, activity_id, doc)
            counts["activities"] += 1
        counts["settings"] = _import_settings(session, global_doc)

        if dry_run:
            session.rollback()
            logger.info("Dry run, nothing written: %s", counts)
            return counts

    logger.info("Import complete: %s", counts)
    return counts
