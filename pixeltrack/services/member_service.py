"""
pixeltrack.services.member_service — Member Identity & Merge
=============================================================

* ``upsert_from_profile`` — called by the Slack callback on every login.
* ``find_member_row`` — find a member by any of their known identifiers.
* ``merge_members`` — fold a duplicate member into a surviving one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from pixeltrack.database.engine import get_session
from pixeltrack.database.models import (
    Activity,
    ActivityMultiplier,
    Event,
    EventAttendee,
    ExcusedAbsence,
    Member,
)
from pixeltrack.engine.schema import MemberRecord
from pixeltrack.engine.triggers import ACTIVITIES, EVENTS, EXCUSED_ABSENCES, DocumentWrite
from pixeltrack.services.admin_service import (
    Mutation,
    activity_dict,
    event_dict,
    excused_dict,
    member_dict,
    record_member_change,
    record_write,
    replace_attendees,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SlackProfile:
    """Identity fields read from Slack ``users.info``."""

    external_id: str
    email: str
    first_name: str
    last_name: str
    team_id: str | None = None


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------
def upsert_from_profile(engine, profile: SlackProfile) -> MemberRecord:
    """Create or refresh the member keyed by the Slack user ID.

    New members start with no admin rights and zero pixels.  Existing
    members keep their admin flag and pixel fields; only names, email and
    ``last_login`` are refreshed.
    """
    email = profile.email.strip().lower()
    now = datetime.now(UTC)
    with get_session(engine) as session:
        row = session.get(Member, profile.external_id)
        if row is None:
            row = Member(
                id=profile.external_id,
                first_name=profile.first_name,
                last_name=profile.last_name,
                email=email,
                slack_id=profile.external_id,
                is_admin=False,
                pixel_delta=0,
                pixel_cached=0,
                pixels=0,
                last_login=now,
            )
            session.add(row)
            logger.info("New member %s (%s) signed in", row.id, email)
        else:
            row.first_name = profile.first_name
            row.last_name = profile.last_name
            row.email = email
            row.last_login = now
        session.flush()
        return MemberRecord.from_row(row)


def find_member_row(
    session: Session, identifier: str, email: str | None = None
) -> Member | None:
    """Look a member up by ID, then Slack ID, then email.

    The email match is case-insensitive and also checks the legacy Slack
    email.  *email* defaults to *identifier* itself.
    """
    identifier = (identifier or "").strip()
    if identifier:
        row = session.get(Member, identifier)
        if row is not None:
            return row
        row = session.scalars(
            select(Member).where(Member.slack_id == identifier).limit(1)
        ).first()
        if row is not None:
            return row
    lowered = (email or identifier).strip().lower()
    if not lowered:
        return None
    return session.scalars(
        select(Member)
        .where(or_(
            func.lower(Member.email) == lowered,
            func.lower(Member.slack_email) == lowered,
        ))
        .order_by(Member.id)
        .limit(1)
    ).first()


def get_member(engine, member_id: str) -> MemberRecord | None:
    with Session(engine) as session:
        row = session.get(Member, member_id)
        return MemberRecord.from_row(row) if row is not None else None


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------
def merge_members(
    engine, source_id: str, dest_id: str, *, actor_id: str
) -> Mutation | None:
    """Fold *source_id* into *dest_id* and delete the source.

    * attendance moves to the destination (sets, so no double counting)
    * excused absences are reassigned
    * activity multipliers are summed
    * pixel deltas are summed; admin is kept if either had it

    Returns ``None`` when either member is missing.  Raises ``ValueError``
    when both IDs are the same.
    """
    if source_id == dest_id:
        raise ValueError("Cannot merge a member into itself")

    writes: list[DocumentWrite] = []
    with Session(engine) as session:
        source = session.get(Member, source_id)
        dest = session.get(Member, dest_id)
        if source is None or dest is None:
            return None

        events = session.scalars(
            select(Event)
            .join(EventAttendee)
            .where(EventAttendee.member_id == source_id)
            .order_by(Event.id)
        ).unique().all()
        for event in events:
            before = event_dict(event)
            attendees = set(before["attendees"]) - {source_id} | {dest_id}
            replace_attendees(event, attendees)
            session.flush()
            record_write(session, writes, EVENTS, before, event_dict(event), actor_id=actor_id)

        absences = session.scalars(
            select(ExcusedAbsence).where(ExcusedAbsence.user_id == source_id)
        ).all()
        for absence in absences:
            before = excused_dict(absence)
            absence.user_id = dest_id
            record_write(
                session, writes, EXCUSED_ABSENCES, before, excused_dict(absence),
                actor_id=actor_id,
            )

        activities = session.scalars(
            select(Activity)
            .join(ActivityMultiplier)
            .where(ActivityMultiplier.member_id == source_id)
            .order_by(Activity.id)
        ).unique().all()
        for activity in activities:
            before = activity_dict(activity)
            entries = {m.member_id: m for m in activity.multipliers}
            moved = entries.pop(source_id)
            activity.multipliers.remove(moved)
            if dest_id in entries:
                entries[dest_id].multiplier += moved.multiplier
            else:
                activity.multipliers.append(
                    ActivityMultiplier(member_id=dest_id, multiplier=moved.multiplier)
                )
            session.flush()
            record_write(
                session, writes, ACTIVITIES, before, activity_dict(activity),
                actor_id=actor_id,
            )

        source_record = MemberRecord.from_row(source)
        dest_record = MemberRecord.from_row(dest)
        dest_before = member_dict(dest)
        dest.pixel_delta = dest_record.pixel_delta + source_record.pixel_delta
        dest.pixeldelta = None
        dest.is_admin = dest_record.is_admin or source_record.is_admin
        if not dest.email and source_record.email:
            dest.email = source_record.email
        if not dest.slack_id and source.slack_id:
            dest.slack_id = source.slack_id
        session.flush()
        dest_after = member_dict(dest)

        record_member_change(
            session, actor_id=actor_id, before=member_dict(source), after=None,
            reason=f"merged into {dest_id}",
        )
        record_member_change(
            session, actor_id=actor_id, before=dest_before, after=dest_after,
            reason=f"merged from {source_id}",
        )
        session.delete(source)
        session.commit()

    logger.info(
        "Merged member %s into %s (%d events, %d absences, %d activities)",
        source_id, dest_id, len(events), len(absences), len(activities),
    )
    return Mutation(dest_after, writes, members={dest_id})
