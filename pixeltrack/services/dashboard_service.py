"""
pixeltrack.services.dashboard_service — Member Dashboard Read Model
====================================================================

Everything a signed-in member sees: their total, the pixel log (one row per
event of the active semester), their activities, the leaderboard and their
rank.  Read-only; totals come from the cached column and fall back to an
on-the-fly computation for members that were never aggregated.
"""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from pixeltrack.database.models import Event, Member
from pixeltrack.engine.activities import accumulate_activities
from pixeltrack.engine.attendance import resolve_attendance
from pixeltrack.engine.schema import MemberRecord
from pixeltrack.services.member_service import find_member_row
from pixeltrack.services.pixel_service import (
    build_breakdown,
    event_snapshot,
    get_excused_event_ids,
    load_semester_activities,
)
from pixeltrack.services.settings_service import GlobalSettings

logger = logging.getLogger(__name__)

PIXEL_LOG_PAGE_SIZE = 25
LEADERBOARD_PAGE_SIZE = 10


@dataclass(frozen=True, slots=True)
class Page:
    rows: list[dict]
    page: int
    page_size: int
    total: int

    @property
    def has_next(self) -> bool:
        return self.page * self.page_size < self.total

    def to_dict(self) -> dict:
        return {
            "rows": self.rows,
            "page": self.page,
            "page_size": self.page_size,
            "total": self.total,
            "has_next": self.has_next,
        }


# ---------------------------------------------------------------------------
# Totals
# ---------------------------------------------------------------------------
def displayed_total(session: Session, member: MemberRecord, semester_id: str | None) -> int:
    """Cached total, else the on-the-fly computation.

    Without an active semester the computation spans every event and
    activity, matching the pixel log.
    """
    if member.pixel_cached is not None:
        return member.pixel_cached
    return build_breakdown(session, member, semester_id).total


def compute_rank(session: Session, total: int) -> int:
    """1 + number of members whose displayed total is strictly greater."""
    shown = func.coalesce(Member.pixel_cached, Member.pixels, 0)
    above = session.scalar(
        select(func.count()).select_from(Member).where(shown > total)
    ) or 0
    return above + 1


# ---------------------------------------------------------------------------
# Pixel log
# ---------------------------------------------------------------------------
def pixel_log_page(
    session: Session,
    member_id: str,
    semester_id: str | None,
    *,
    page: int = 1,
    page_size: int = PIXEL_LOG_PAGE_SIZE,
) -> Page:
    """One page of the member's pixel log, newest event first.

    Without an active semester every event is listed.
    """
    base = select(Event)
    count = select(func.count()).select_from(Event)
    if semester_id is not None:
        base = base.where(Event.semester_id == semester_id)
        count = count.where(Event.semester_id == semester_id)

    total = session.scalar(count) or 0
    rows = session.scalars(
        base.options(selectinload(Event.attendees))
        .order_by(Event.date.desc(), Event.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    ).all()

    resolved = resolve_attendance(
        member_id,
        [event_snapshot(e) for e in rows],
        get_excused_event_ids(session, member_id),
    )
    return Page(
        rows=[
            {
                "event_id": r.event.id,
                "date": r.event.date.isoformat() if r.event.date else None,
                "name": r.event.name,
                "type": r.event.type or "event",
                "attendance": r.attendance.value,
                "pixels_allocated": r.pixels_allocated,
                "pixels_earned": r.pixels_earned,
            }
            for r in resolved
        ],
        page=page,
        page_size=page_size,
        total=total,
    )


def activity_rows(session: Session, member_id: str, semester_id: str | None) -> list[dict]:
    return [
        {
            "id": c.activity.id,
            "name": c.activity.name,
            "type": c.activity.type,
            "pixels_per": c.pixels_per,
            "multiplier": c.multiplier,
            "total": c.total,
        }
        for c in accumulate_activities(
            member_id, load_semester_activities(session, semester_id)
        )
    ]


# ---------------------------------------------------------------------------
# Leaderboard
# ---------------------------------------------------------------------------
def leaderboard_page(
    session: Session, *, page: int = 1, page_size: int = LEADERBOARD_PAGE_SIZE
) -> Page:
    """Members by displayed total (desc), ties broken by ID (desc)."""
    shown = func.coalesce(Member.pixel_cached, Member.pixels, 0)
    total = session.scalar(select(func.count()).select_from(Member)) or 0
    rows = session.scalars(
        select(Member)
        .order_by(shown.desc(), Member.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    ).all()
    offset = (page - 1) * page_size
    records = [MemberRecord.from_row(r) for r in rows]
    return Page(
        rows=[
            {
                "id": r.id,
                "name": r.display_name,
                "pixels": r.pixel_cached or 0,
                "position": offset + i + 1,
            }
            for i, r in enumerate(records)
        ],
        page=page,
        page_size=page_size,
        total=total,
    )


def get_leaderboard(engine, *, page: int = 1) -> dict:
    with Session(engine) as session:
        if not GlobalSettings(session).leaderboard_enabled():
            return {"enabled": False, **Page([], page, LEADERBOARD_PAGE_SIZE, 0).to_dict()}
        return {"enabled": True, **leaderboard_page(session, page=page).to_dict()}


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------
def get_dashboard(
    engine, member_id: str, *, email: str | None = None, page: int = 1
) -> dict | None:
    """The full dashboard payload, or ``None`` for an unknown member."""
    with Session(engine) as session:
        row = find_member_row(session, member_id, email)
        if row is None:
            return None
        member = MemberRecord.from_row(row)
        settings = GlobalSettings(session)
        semester_id = settings.active_semester()
        leaderboard_on = settings.leaderboard_enabled()
        total = displayed_total(session, member, semester_id)

        payload = {
            "member_id": member.id,
            "name": member.display_name,
            "email": member.email,
            "is_admin": member.is_admin,
            "pixel_total": total,
            "pixel_delta": member.pixel_delta,
            "current_semester_id": semester_id,
            "pixel_log": pixel_log_page(session, member.id, semester_id, page=page).to_dict(),
            "activities": activity_rows(session, member.id, semester_id),
            "leaderboard_enabled": leaderboard_on,
            "leaderboard": None,
            "rank": None,
        }
        if leaderboard_on:
            payload["leaderboard"] = leaderboard_page(session).to_dict()
            payload["rank"] = compute_rank(session, total)
        return payload


def get_pixel_log(engine, member_id: str, *, page: int = 1) -> dict | None:
    with Session(engine) as session:
        if session.get(Member, member_id) is None:
            return None
        semester_id = GlobalSettings(session).active_semester()
        return pixel_log_page(session, member_id, semester_id, page=page).to_dict()


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------
CSV_COLUMNS = ("id", "first_name", "last_name", "email", "pixels", "pixel_delta", "is_admin")


def export_members_csv(engine) -> str:
    """All members as CSV, highest displayed total first."""
    with Session(engine) as session:
        records = [MemberRecord.from_row(r) for r in session.scalars(select(Member)).all()]
    records.sort(key=lambda r: (-(r.pixel_cached or 0), r.id))

    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(CSV_COLUMNS)
    for r in records:
        writer.writerow([
            r.id, r.first_name, r.last_name, r.email,
            r.pixel_cached or 0, r.pixel_delta, "yes" if r.is_admin else "no",
        ])
    logger.info("Exported %d members to CSV", len(records))
    return buf.getvalue()
