"""
pixeltrack.services.admin_service — Admin Mutation Service Layer
=================================================================

Every admin write follows the pattern:
  1. Begin transaction
  2. Read "before" snapshot
  3. Apply change
  4. Write admin_log with before/after JSON
  5. Commit
  6. Hand the before/after snapshots back as :class:`DocumentWrite` records

Step 6 is the trigger hook: callers pass ``Mutation.writes`` to
:func:`pixeltrack.services.pixel_service.apply_writes` once the commit has
succeeded, which recomputes every affected member.  The audit snapshot and
the trigger snapshot are the same dict, so what the log shows is exactly
what recomputation saw.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from pixeltrack.database.models import (
    Activity,
    ActivityMultiplier,
    AdminLog,
    Event,
    EventAttendee,
    ExcusedAbsence,
    ExcusedStatus,
    Member,
)
from pixeltrack.engine.schema import MemberRecord
from pixeltrack.engine.triggers import (
    ACTIVITIES,
    EVENTS,
    EXCUSED_ABSENCES,
    DocumentWrite,
)
from pixeltrack.services.settings_service import GlobalSettings

logger = logging.getLogger(__name__)

ATTENDANCE_STATUSES = ("present", "excused", "absent")
ADMIN_EXCUSE_REASON = "Marked excused by admin"


@dataclass
class Mutation:
    """Result of an admin write.

    ``value`` is the plain-dict view of the written record (or ``True`` for
    deletes), ``writes`` the trigger payloads, and ``members`` any member
    IDs that need recomputation without a watched-collection write (e.g. a
    pixel delta change).
    """

    value: Any
    writes: list[DocumentWrite] = field(default_factory=list)
    members: set[str] = field(default_factory=set)


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------
def _row_to_dict(obj: Any) -> dict | None:
    """Convert a model instance to a JSON-serializable dict."""
    if obj is None:
        return None
    result = {}
    for col in obj.__table__.columns:
        val = getattr(obj, col.key, None)
        if isinstance(val, datetime):
            val = val.isoformat()
        result[col.name] = val
    return result


def event_dict(event: Event | None) -> dict | None:
    data = _row_to_dict(event)
    if data is not None:
        data["attendees"] = event.attendee_ids
    return data


def activity_dict(activity: Activity | None) -> dict | None:
    data = _row_to_dict(activity)
    if data is not None:
        data["multipliers"] = dict(sorted(activity.multiplier_map.items()))
    return data


def excused_dict(absence: ExcusedAbsence | None) -> dict | None:
    return _row_to_dict(absence)


def member_dict(member: Member | None) -> dict | None:
    return _row_to_dict(member)


# ---------------------------------------------------------------------------
# Audit helper
# ---------------------------------------------------------------------------
def _log_admin_action(
    session: Session,
    *,
    actor_id: str,
    action_type: str,
    target_table: str,
    target_id: str | None,
    before: dict | None,
    after: dict | None,
    reason: str | None = None,
) -> None:
    """Insert a row into admin_log within the current transaction."""
    session.add(AdminLog(
        actor_id=actor_id,
        action_type=action_type,
        target_table=target_table,
        target_id=target_id,
        before_snapshot=before,
        after_snapshot=after,
        reason=reason,
    ))


def _action_for(before: dict | None, after: dict | None) -> str:
    if before is None:
        return "CREATE"
    if after is None:
        return "DELETE"
    return "UPDATE"


def record_write(
    session: Session,
    writes: list[DocumentWrite],
    collection: str,
    before: dict | None,
    after: dict | None,
    *,
    actor_id: str,
    reason: str | None = None,
) -> None:
    """Log one record change and queue its trigger payload."""
    if before == after:
        return
    target = (after or before or {}).get("id")
    _log_admin_action(
        session,
        actor_id=actor_id,
        action_type=_action_for(before, after),
        target_table=collection,
        target_id=str(target) if target is not None else None,
        before=before,
        after=after,
        reason=reason,
    )
    writes.append(DocumentWrite(collection, before, after))


# Columns an update may clear with an explicit None
CLEARABLE_FIELDS = frozenset({"semester_id", "slack_id"})


def _apply_fields(obj: Any, fields: dict[str, Any], allowed: Iterable[str]) -> None:
    """Copy *allowed* keys onto *obj*.  ``None`` means "leave as is" except
    for :data:`CLEARABLE_FIELDS`, where it clears the column."""
    allowed = set(allowed)
    for key, value in fields.items():
        if key not in allowed:
            continue
        if value is not None or key in CLEARABLE_FIELDS:
            setattr(obj, key, value)


def replace_attendees(event: Event, member_ids: Iterable[str]) -> None:
    """Replace the attendee set, keeping rows that survive."""
    wanted = {m for m in member_ids if m}
    event.attendees = [a for a in event.attendees if a.member_id in wanted]
    present = {a.member_id for a in event.attendees}
    for member_id in sorted(wanted - present):
        event.attendees.append(EventAttendee(member_id=member_id))


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------
EVENT_FIELDS = ("name", "date", "type", "pixels", "semester_id")


def create_event(
    engine,
    *,
    name: str,
    date: datetime,
    type: str,
    pixels: int = 0,
    semester_id: str | None = None,
    attendees: Iterable[str] = (),
    actor_id: str,
) -> Mutation:
    """Create an event.  Without *semester_id* it joins the active semester."""
    writes: list[DocumentWrite] = []
    with Session(engine) as session:
        if semester_id is None:
            semester_id = GlobalSettings(session).active_semester()
        event = Event(
            name=name, date=date, type=type,
            pixels=max(int(pixels), 0), semester_id=semester_id,
        )
        replace_attendees(event, attendees)
        session.add(event)
        session.flush()
        after = event_dict(event)
        record_write(session, writes, EVENTS, None, after, actor_id=actor_id)
        session.commit()
    logger.info("Event %s created (%s)", after["id"], name)
    return Mutation(after, writes)


def update_event(
    engine,
    event_id: str,
    *,
    actor_id: str,
    attendees: Iterable[str] | None = None,
    **fields: Any,
) -> Mutation | None:
    """Update event fields (and optionally replace the attendee set).

    Returns ``None`` if the event does not exist.
    """
    writes: list[DocumentWrite] = []
    with Session(engine) as session:
        event = session.get(Event, event_id)
        if event is None:
            return None
        before = event_dict(event)
        if fields.get("pixels") is not None:
            fields["pixels"] = max(int(fields["pixels"]), 0)
        _apply_fields(event, fields, EVENT_FIELDS)
        if attendees is not None:
            replace_attendees(event, attendees)
        session.flush()
        after = event_dict(event)
        record_write(session, writes, EVENTS, before, after, actor_id=actor_id)
        session.commit()
    return Mutation(after, writes)


def list_events(engine, *, semester_id: str | None = None) -> list[dict]:
    """Events newest first, optionally scoped to one semester."""
    with Session(engine) as session:
        query = (
            select(Event)
            .options(selectinload(Event.attendees))
            .order_by(Event.date.desc(), Event.id.desc())
        )
        if semester_id is not None:
            query = query.where(Event.semester_id == semester_id)
        return [event_dict(e) for e in session.scalars(query).all()]


def delete_event(engine, event_id: str, *, actor_id: str) -> Mutation | None:
    """Delete an event and its excused absences."""
    writes: list[DocumentWrite] = []
    with Session(engine) as session:
        event = session.get(Event, event_id)
        if event is None:
            return None
        before = event_dict(event)
        for absence in event.excused_absences:
            record_write(
                session, writes, EXCUSED_ABSENCES, excused_dict(absence), None,
                actor_id=actor_id,
            )
        record_write(session, writes, EVENTS, before, None, actor_id=actor_id)
        session.delete(event)
        session.commit()
    logger.info("Event %s deleted", event_id)
    return Mutation(True, writes)


def add_attendees(
    engine, event_id: str, member_ids: Iterable[str], *, actor_id: str
) -> Mutation | None:
    writes: list[DocumentWrite] = []
    with Session(engine) as session:
        event = session.get(Event, event_id)
        if event is None:
            return None
        before = event_dict(event)
        replace_attendees(event, set(before["attendees"]) | set(member_ids))
        session.flush()
        after = event_dict(event)
        record_write(session, writes, EVENTS, before, after, actor_id=actor_id)
        session.commit()
    return Mutation(after, writes)


def remove_attendee(
    engine, event_id: str, member_id: str, *, actor_id: str
) -> Mutation | None:
    writes: list[DocumentWrite] = []
    with Session(engine) as session:
        event = session.get(Event, event_id)
        if event is None:
            return None
        before = event_dict(event)
        replace_attendees(event, set(before["attendees"]) - {member_id})
        session.flush()
        after = event_dict(event)
        record_write(session, writes, EVENTS, before, after, actor_id=actor_id)
        session.commit()
    return Mutation(after, writes)


def add_attendees_by_email(
    engine, event_id: str, emails: Iterable[str], *, actor_id: str
) -> tuple[Mutation | None, list[str]]:
    """Resolve *emails* (case-insensitive) to members and add them.

    Returns ``(mutation, found_member_ids)``.  Unknown emails are ignored.
    """
    wanted = sorted({e.strip().lower() for e in emails if e and e.strip()})
    if not wanted:
        return None, []
    with Session(engine) as session:
        found = list(session.scalars(
            select(Member.id).where(func.lower(Member.email).in_(wanted))
        ).all())
    if not found:
        return None, []
    return add_attendees(engine, event_id, found, actor_id=actor_id), sorted(found)


def set_attendance_status(
    engine,
    event_id: str,
    member_id: str,
    status: str,
    *,
    actor_id: str,
) -> Mutation | None:
    """Mark a member present, excused or absent for one event.

    * present — add to attendees, drop any excused-absence records
    * excused — remove from attendees, approve (or create) an excuse
    * absent  — remove from attendees, drop any excused-absence records
    """
    if status not in ATTENDANCE_STATUSES:
        raise ValueError(f"Unknown attendance status: {status!r}")

    writes: list[DocumentWrite] = []
    with Session(engine) as session:
        event = session.get(Event, event_id)
        if event is None:
            return None
        before = event_dict(event)
        attendees = set(before["attendees"])
        if status == "present":
            attendees.add(member_id)
        else:
            attendees.discard(member_id)
        replace_attendees(event, attendees)

        existing = session.scalars(
            select(ExcusedAbsence).where(
                ExcusedAbsence.event_id == event_id,
                ExcusedAbsence.user_id == member_id,
            )
        ).all()
        if status == "excused":
            if not existing:
                absence = ExcusedAbsence(
                    event_id=event_id,
                    user_id=member_id,
                    reason=ADMIN_EXCUSE_REASON,
                    status=ExcusedStatus.APPROVED.value,
                    created_at=datetime.now(UTC),
                )
                session.add(absence)
                session.flush()
                record_write(
                    session, writes, EXCUSED_ABSENCES, None, excused_dict(absence),
                    actor_id=actor_id,
                )
            for absence in existing:
                prior = excused_dict(absence)
                absence.status = ExcusedStatus.APPROVED.value
                record_write(
                    session, writes, EXCUSED_ABSENCES, prior, excused_dict(absence),
                    actor_id=actor_id,
                )
        else:
            for absence in existing:
                record_write(
                    session, writes, EXCUSED_ABSENCES, excused_dict(absence), None,
                    actor_id=actor_id,
                )
                session.delete(absence)

        session.flush()
        after = event_dict(event)
        record_write(session, writes, EVENTS, before, after, actor_id=actor_id)
        session.commit()
    return Mutation(after, writes)


# ---------------------------------------------------------------------------
# Excused absences
# ---------------------------------------------------------------------------
def create_excused_absence(
    engine,
    event_id: str,
    *,
    user_id: str,
    reason: str = "",
    status: str = ExcusedStatus.PENDING.value,
    actor_id: str,
) -> Mutation | None:
    """File an absence request under *event_id* (members file their own)."""
    ExcusedStatus(status)
    writes: list[DocumentWrite] = []
    with Session(engine) as session:
        if session.get(Event, event_id) is None:
            return None
        absence = ExcusedAbsence(
            event_id=event_id,
            user_id=user_id,
            reason=reason,
            status=status,
            created_at=datetime.now(UTC),
        )
        session.add(absence)
        session.flush()
        after = excused_dict(absence)
        record_write(session, writes, EXCUSED_ABSENCES, None, after, actor_id=actor_id)
        session.commit()
    return Mutation(after, writes)


def set_excused_status(
    engine, absence_id: str, status: str, *, actor_id: str
) -> Mutation | None:
    """Approve / deny / reset an absence request."""
    status = ExcusedStatus(status).value
    writes: list[DocumentWrite] = []
    with Session(engine) as session:
        absence = session.get(ExcusedAbsence, absence_id)
        if absence is None:
            return None
        before = excused_dict(absence)
        absence.status = status
        session.flush()
        after = excused_dict(absence)
        record_write(session, writes, EXCUSED_ABSENCES, before, after, actor_id=actor_id)
        session.commit()
    return Mutation(after, writes)


def list_excused_absences(
    engine, *, event_id: str | None = None, status: str | None = None
) -> list[dict]:
    with Session(engine) as session:
        query = select(ExcusedAbsence).order_by(ExcusedAbsence.created_at.desc())
        if event_id is not None:
            query = query.where(ExcusedAbsence.event_id == event_id)
        if status is not None:
            query = query.where(ExcusedAbsence.status == status)
        return [excused_dict(a) for a in session.scalars(query).all()]


# ---------------------------------------------------------------------------
# Activities
# ---------------------------------------------------------------------------
ACTIVITY_FIELDS = ("name", "type", "pixels", "semester_id")


def create_activity(
    engine,
    *,
    name: str,
    type: str,
    pixels: int = 0,
    semester_id: str | None = None,
    multipliers: dict[str, int] | None = None,
    actor_id: str,
) -> Mutation:
    writes: list[DocumentWrite] = []
    with Session(engine) as session:
        if semester_id is None:
            semester_id = GlobalSettings(session).active_semester()
        activity = Activity(
            name=name, type=type, pixels=int(pixels), semester_id=semester_id,
            created_at=datetime.now(UTC),
        )
        for member_id, value in sorted((multipliers or {}).items()):
            if int(value) > 0:
                activity.multipliers.append(
                    ActivityMultiplier(member_id=member_id, multiplier=int(value))
                )
        session.add(activity)
        session.flush()
        after = activity_dict(activity)
        record_write(session, writes, ACTIVITIES, None, after, actor_id=actor_id)
        session.commit()
    logger.info("Activity %s created (%s)", after["id"], name)
    return Mutation(after, writes)


def list_activities(engine, *, semester_id: str | None = None) -> list[dict]:
    with Session(engine) as session:
        query = (
            select(Activity)
            .options(selectinload(Activity.multipliers))
            .order_by(Activity.name, Activity.id)
        )
        if semester_id is not None:
            query = query.where(Activity.semester_id == semester_id)
        return [activity_dict(a) for a in session.scalars(query).all()]


def update_activity(
    engine, activity_id: str, *, actor_id: str, **fields: Any
) -> Mutation | None:
    writes: list[DocumentWrite] = []
    with Session(engine) as session:
        activity = session.get(Activity, activity_id)
        if activity is None:
            return None
        before = activity_dict(activity)
        _apply_fields(activity, fields, ACTIVITY_FIELDS)
        session.flush()
        after = activity_dict(activity)
        record_write(session, writes, ACTIVITIES, before, after, actor_id=actor_id)
        session.commit()
    return Mutation(after, writes)


def delete_activity(engine, activity_id: str, *, actor_id: str) -> Mutation | None:
    writes: list[DocumentWrite] = []
    with Session(engine) as session:
        activity = session.get(Activity, activity_id)
        if activity is None:
            return None
        record_write(
            session, writes, ACTIVITIES, activity_dict(activity), None,
            actor_id=actor_id,
        )
        session.delete(activity)
        session.commit()
    return Mutation(True, writes)


def set_activity_multiplier(
    engine, activity_id: str, member_id: str, multiplier: int, *, actor_id: str
) -> Mutation | None:
    """Set one member's multiplier.  Zero or less removes the entry."""
    multiplier = int(multiplier)
    writes: list[DocumentWrite] = []
    with Session(engine) as session:
        activity = session.get(Activity, activity_id)
        if activity is None:
            return None
        before = activity_dict(activity)
        entry = session.get(ActivityMultiplier, (activity_id, member_id))
        if multiplier <= 0:
            if entry is not None:
                activity.multipliers.remove(entry)
        elif entry is None:
            activity.multipliers.append(
                ActivityMultiplier(member_id=member_id, multiplier=multiplier)
            )
        else:
            entry.multiplier = multiplier
        session.flush()
        after = activity_dict(activity)
        record_write(session, writes, ACTIVITIES, before, after, actor_id=actor_id)
        session.commit()
    return Mutation(after, writes)


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------
MEMBER_FIELDS = ("first_name", "last_name", "email", "slack_id")


def record_member_change(
    session: Session,
    *,
    actor_id: str,
    before: dict | None,
    after: dict | None,
    reason: str | None = None,
) -> None:
    if before == after:
        return
    _log_admin_action(
        session,
        actor_id=actor_id,
        action_type=_action_for(before, after),
        target_table="members",
        target_id=(after or before)["id"],
        before=before,
        after=after,
        reason=reason,
    )


def create_member(
    engine,
    *,
    member_id: str,
    first_name: str,
    last_name: str,
    email: str,
    slack_id: str | None = None,
    actor_id: str,
) -> Mutation | None:
    """Add a member by hand.  Returns ``None`` if the ID is taken."""
    with Session(engine) as session:
        if session.get(Member, member_id) is not None:
            return None
        member = Member(
            id=member_id,
            first_name=first_name,
            last_name=last_name,
            email=email.strip().lower(),
            slack_id=slack_id,
            is_admin=False,
            pixel_delta=0,
            pixel_cached=0,
            pixels=0,
        )
        session.add(member)
        session.flush()
        after = member_dict(member)
        record_member_change(session, actor_id=actor_id, before=None, after=after)
        session.commit()
    return Mutation(after, members={member_id})


def update_member(
    engine, member_id: str, *, actor_id: str, **fields: Any
) -> Mutation | None:
    with Session(engine) as session:
        member = session.get(Member, member_id)
        if member is None:
            return None
        before = member_dict(member)
        if fields.get("email"):
            fields["email"] = fields["email"].strip().lower()
        _apply_fields(member, fields, MEMBER_FIELDS)
        session.flush()
        after = member_dict(member)
        record_member_change(session, actor_id=actor_id, before=before, after=after)
        session.commit()
    return Mutation(after)


def delete_member(engine, member_id: str, *, actor_id: str) -> Mutation | None:
    """Hard-delete a member row.  Attendee and multiplier entries remain;
    recomputation for the missing ID is a no-op."""
    with Session(engine) as session:
        member = session.get(Member, member_id)
        if member is None:
            return None
        record_member_change(
            session, actor_id=actor_id, before=member_dict(member), after=None
        )
        session.delete(member)
        session.commit()
    return Mutation(True)


def set_pixel_delta(
    engine, member_id: str, pixel_delta: int, *, actor_id: str, reason: str | None = None
) -> Mutation | None:
    """Set the manual adjustment.  The member must be recomputed afterwards."""
    with Session(engine) as session:
        member = session.get(Member, member_id)
        if member is None:
            return None
        before = member_dict(member)
        member.pixel_delta = int(pixel_delta)
        member.pixeldelta = None
        session.flush()
        after = member_dict(member)
        record_member_change(
            session, actor_id=actor_id, before=before, after=after, reason=reason
        )
        session.commit()
    return Mutation(after, members={member_id})


def set_admin_by_email(
    engine, email: str, is_admin: bool, *, actor_id: str
) -> list[str]:
    """Grant or revoke admin on every member matching *email*.

    Matches the canonical and the legacy Slack email.  Returns the matched
    member IDs; raises ``LookupError`` when none match.
    """
    normalized = email.strip().lower()
    with Session(engine) as session:
        matches = session.scalars(
            select(Member).where(
                (func.lower(Member.email) == normalized)
                | (func.lower(Member.slack_email) == normalized)
            )
        ).all()
        if not matches:
            raise LookupError(f"No member found with email {normalized!r}")
        for member in matches:
            before = member_dict(member)
            member.is_admin = bool(is_admin)
            session.flush()
            record_member_change(
                session, actor_id=actor_id, before=before, after=member_dict(member)
            )
        ids = sorted(m.id for m in matches)
        session.commit()
    return ids


def list_members(engine) -> list[dict]:
    """Every member, ordered by displayed total (desc) then name."""
    with Session(engine) as session:
        rows = session.scalars(select(Member)).all()
        records = [MemberRecord.from_row(r) for r in rows]
    records.sort(key=lambda r: (-(r.pixel_cached or 0), r.display_name.lower()))
    return [
        {
            "id": r.id,
            "first_name": r.first_name,
            "last_name": r.last_name,
            "email": r.email,
            "is_admin": r.is_admin,
            "pixels": r.pixel_cached or 0,
            "pixel_delta": r.pixel_delta,
            "slack_id": r.slack_id,
        }
        for r in records
    ]


def get_audit_log(engine, *, limit: int = 100, target_table: str | None = None) -> list[dict]:
    with Session(engine) as session:
        query = select(AdminLog).order_by(AdminLog.timestamp.desc(), AdminLog.id.desc())
        if target_table:
            query = query.where(AdminLog.target_table == target_table)
        rows = session.scalars(query.limit(limit)).all()
        return [
            {
                "id": r.id,
                "actor_id": r.actor_id,
                "action_type": r.action_type,
                "target_table": r.target_table,
                "target_id": r.target_id,
                "before": r.before_snapshot,
                "after": r.after_snapshot,
                "reason": r.reason,
                "timestamp": r.timestamp.isoformat() if r.timestamp else None,
            }
            for r in rows
        ]
