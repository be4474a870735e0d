"""
pixeltrack.engine.attendance — Attendance Resolver
===================================================

Pure classification of a member's relationship to each event.
No DB I/O inside the resolver.

Checks are applied in a fixed order::

    attended → excused → mandatory-unexcused → no-show

A member who is in the attendee set is "Attended" even when an approved
excuse also exists for that event; an excuse only matters when absent.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from pixeltrack.database.models import MANDATORY_EVENT_TYPES
from pixeltrack.engine.schema import coerce_int

__all__ = [
    "Attendance",
    "EventSnapshot",
    "ResolvedEvent",
    "classify_attendance",
    "earned_pixels",
    "resolve_attendance",
    "total_event_pixels",
]


class Attendance(enum.StrEnum):
    ATTENDED = "Attended"
    EXCUSED = "Excused"
    UNEXCUSED = "Unexcused"
    NO_SHOW = "No Show"


@dataclass(frozen=True, slots=True)
class EventSnapshot:
    """The fields of an event the resolver needs."""

    id: str
    name: str = "Event"
    type: str = ""
    pixels: int = 0
    attendees: frozenset[str] = field(default_factory=frozenset)
    date: datetime | None = None


@dataclass(frozen=True, slots=True)
class ResolvedEvent:
    """One row of a member's pixel log."""

    event: EventSnapshot
    attendance: Attendance
    pixels_earned: int

    @property
    def pixels_allocated(self) -> int:
        return coerce_int(self.event.pixels)


def classify_attendance(
    member_id: str, event: EventSnapshot, excused_event_ids: set[str] | frozenset[str]
) -> Attendance:
    if member_id in event.attendees:
        return Attendance.ATTENDED
    if event.id in excused_event_ids:
        return Attendance.EXCUSED
    if event.type in MANDATORY_EVENT_TYPES:
        return Attendance.UNEXCUSED
    return Attendance.NO_SHOW


def earned_pixels(event: EventSnapshot, attendance: Attendance) -> int:
    """Points earned: the event's pixels when attended, otherwise 0."""
    pixels = coerce_int(event.pixels)
    if attendance is Attendance.ATTENDED and pixels > 0:
        return pixels
    return 0


def resolve_attendance(
    member_id: str,
    events: Iterable[EventSnapshot],
    excused_event_ids: set[str] | frozenset[str],
) -> list[ResolvedEvent]:
    """Classify every event for *member_id*, preserving input order."""
    resolved: list[ResolvedEvent] = []
    for event in events:
        attendance = classify_attendance(member_id, event, excused_event_ids)
        resolved.append(ResolvedEvent(
            event=event,
            attendance=attendance,
            pixels_earned=earned_pixels(event, attendance),
        ))
    return resolved


def total_event_pixels(resolved: Sequence[ResolvedEvent]) -> int:
    return sum(row.pixels_earned for row in resolved)
