"""
pixeltrack.services.pixel_service — Pixel Aggregation & Recomputation
======================================================================

Loads the inputs of the pure pipeline in :mod:`pixeltrack.engine.aggregate`,
runs it, and persists the result on the member row.

``recalculate_member`` is the entry point invoked by the trigger router.
It is idempotent: the total it writes is derived from stored state at call
time, never incremented, so concurrent or repeated runs converge.

Two guards keep good data from being clobbered:

* a member ID that no longer exists is a silent no-op;
* with no active semester, nothing is written at all.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from pixeltrack.database.engine import get_session, run_db
from pixeltrack.database.models import (
    Activity,
    Event,
    ExcusedAbsence,
    ExcusedStatus,
    Member,
)
from pixeltrack.engine.activities import ActivitySnapshot
from pixeltrack.engine.aggregate import (
    AggregationOutcome,
    AggregationStatus,
    PixelBreakdown,
    compute_breakdown,
)
from pixeltrack.engine.attendance import EventSnapshot
from pixeltrack.engine.schema import MemberRecord
from pixeltrack.engine.triggers import DocumentWrite, FanoutReport, TriggerRouter
from pixeltrack.services.settings_service import GlobalSettings

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


class SettingsReader(Protocol):
    def active_semester(self) -> str | None: ...


# ---------------------------------------------------------------------------
# Snapshot loading
# ---------------------------------------------------------------------------
def event_snapshot(event: Event) -> EventSnapshot:
    return EventSnapshot(
        id=event.id,
        name=event.name or "Event",
        type=event.type or "",
        pixels=event.pixels or 0,
        attendees=frozenset(a.member_id for a in event.attendees),
        date=event.date,
    )


def activity_snapshot(activity: Activity) -> ActivitySnapshot:
    return ActivitySnapshot(
        id=activity.id,
        name=activity.name or "Activity",
        type=activity.type or "other",
        pixels=activity.pixels or 0,
        multipliers=activity.multiplier_map,
    )


def load_semester_events(session: Session, semester_id: str | None) -> list[EventSnapshot]:
    """Events of *semester_id*, newest first (ties broken by ID, descending).

    ``None`` loads every event regardless of semester.
    """
    query = select(Event).options(selectinload(Event.attendees))
    if semester_id is not None:
        query = query.where(Event.semester_id == semester_id)
    rows = session.scalars(query.order_by(Event.date.desc(), Event.id.desc())).all()
    return [event_snapshot(e) for e in rows]


def load_semester_activities(
    session: Session, semester_id: str | None
) -> list[ActivitySnapshot]:
    query = select(Activity).options(selectinload(Activity.multipliers))
    if semester_id is not None:
        query = query.where(Activity.semester_id == semester_id)
    rows = session.scalars(query.order_by(Activity.name, Activity.id)).all()
    return [activity_snapshot(a) for a in rows]


# ---------------------------------------------------------------------------
# Excused-Absence Index
# ---------------------------------------------------------------------------
def get_excused_event_ids(session: Session, member_id: str) -> set[str]:
    """IDs of every event where *member_id* holds an approved excuse.

    Queried fresh on each call; approvals change independently of event
    writes, so there is nothing safe to cache.
    """
    rows = session.scalars(
        select(ExcusedAbsence.event_id).where(
            ExcusedAbsence.user_id == member_id,
            ExcusedAbsence.status == ExcusedStatus.APPROVED.value,
        )
    ).all()
    return set(rows)


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------
def build_breakdown(
    session: Session, member: MemberRecord, semester_id: str | None
) -> PixelBreakdown:
    """Gather every input for *member* in *semester_id* and run the pipeline.

    With no semester every event and activity counts.
    """
    return compute_breakdown(
        member.id,
        pixel_delta=member.pixel_delta,
        events=load_semester_events(session, semester_id),
        activities=load_semester_activities(session, semester_id),
        excused_event_ids=get_excused_event_ids(session, member.id),
    )


def recalculate_member(
    engine: Engine,
    member_id: str,
    *,
    settings: SettingsReader | None = None,
) -> AggregationOutcome:
    """Re-derive *member_id*'s total and write it to the member row.

    Exactly one update per successful call (``pixel_cached`` and its legacy
    mirror ``pixels``).  Store errors propagate to the caller; the session
    is rolled back and no partial write remains.
    """
    with get_session(engine) as session:
        row = session.get(Member, member_id)
        if row is None:
            logger.debug("Skipping recalculation: member %s not found", member_id)
            return AggregationOutcome(member_id, AggregationStatus.MEMBER_NOT_FOUND)

        member = MemberRecord.from_row(row)
        reader = settings if settings is not None else GlobalSettings(session)
        semester_id = reader.active_semester()
        if semester_id is None:
            logger.info("No current semester set; leaving member %s untouched", member_id)
            return AggregationOutcome(member_id, AggregationStatus.SEMESTER_UNSET)

        breakdown = build_breakdown(session, member, semester_id)
        total = breakdown.total
        row.pixel_cached = total
        row.pixels = total

    logger.debug(
        "Member %s → %d pixels (delta=%d, events=%d, activities=%d)",
        member_id, total, breakdown.pixel_delta,
        breakdown.event_pixels, breakdown.activity_pixels,
    )
    return AggregationOutcome(member_id, AggregationStatus.UPDATED, total)


# ---------------------------------------------------------------------------
# Trigger wiring
# ---------------------------------------------------------------------------
def make_router(engine: Engine) -> TriggerRouter:
    """A router whose aggregations run on worker threads via ``run_db``."""

    async def _aggregate(member_id: str) -> AggregationOutcome:
        return await run_db(recalculate_member, engine, member_id)

    return TriggerRouter(_aggregate)


async def apply_writes(
    engine: Engine,
    writes: Iterable[DocumentWrite],
    *,
    extra_members: Iterable[str] = (),
) -> FanoutReport:
    """Fire recomputation for writes that have already been committed."""
    return await make_router(engine).dispatch_many(writes, extra_members)


async def recalculate_members(engine: Engine, member_ids: Iterable[str]) -> FanoutReport:
    return await make_router(engine).fan_out(member_ids)


def list_member_ids(engine: Engine) -> list[str]:
    with Session(engine) as session:
        return list(session.scalars(select(Member.id).order_by(Member.id)).all())


async def recalculate_all(engine: Engine) -> FanoutReport:
    """Recompute every member (admin "recalculate all" action)."""
    member_ids = await run_db(list_member_ids, engine)
    logger.info("Recalculating all %d members", len(member_ids))
    return await recalculate_members(engine, member_ids)
