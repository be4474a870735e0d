"""
pixeltrack.engine.aggregate — Pixel Aggregation Pipeline
=========================================================

Pure calculation pipeline.  No DB I/O inside the engine; loading and
persisting live in :mod:`pixeltrack.services.pixel_service`.

Pipeline stages:
  pixel delta → Attendance Resolver → Activity Accumulator → PixelBreakdown
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from pixeltrack.engine.activities import (
    ActivityContribution,
    ActivitySnapshot,
    accumulate_activities,
)
from pixeltrack.engine.attendance import (
    EventSnapshot,
    ResolvedEvent,
    resolve_attendance,
    total_event_pixels,
)

logger = logging.getLogger(__name__)

__all__ = [
    "AggregationOutcome",
    "AggregationStatus",
    "PixelBreakdown",
    "compute_breakdown",
]


# ---------------------------------------------------------------------------
# PixelBreakdown — output of the pipeline
# ---------------------------------------------------------------------------
@dataclass
class PixelBreakdown:
    """Every input that went into a member's total."""

    pixel_delta: int = 0
    events: list[ResolvedEvent] = field(default_factory=list)
    activities: list[ActivityContribution] = field(default_factory=list)

    @property
    def event_pixels(self) -> int:
        return total_event_pixels(self.events)

    @property
    def activity_pixels(self) -> int:
        return sum(c.total for c in self.activities)

    @property
    def total(self) -> int:
        return self.pixel_delta + self.event_pixels + self.activity_pixels


def compute_breakdown(
    member_id: str,
    *,
    pixel_delta: int,
    events: Iterable[EventSnapshot],
    activities: Iterable[ActivitySnapshot],
    excused_event_ids: set[str] | frozenset[str],
) -> PixelBreakdown:
    """Run the full pipeline for one member.

    Parameters
    ----------
    member_id : the member being aggregated
    pixel_delta : canonical manual adjustment (see ``MemberRecord``)
    events : events already scoped to the active semester
    activities : activities already scoped to the active semester
    excused_event_ids : event IDs with an approved excuse for this member
    """
    return PixelBreakdown(
        pixel_delta=pixel_delta,
        events=resolve_attendance(member_id, events, excused_event_ids),
        activities=accumulate_activities(member_id, activities),
    )


# ---------------------------------------------------------------------------
# Aggregation outcome — what one recomputation did
# ---------------------------------------------------------------------------
class AggregationStatus(enum.StrEnum):
    UPDATED = "updated"
    MEMBER_NOT_FOUND = "member_not_found"
    SEMESTER_UNSET = "semester_unset"


@dataclass(frozen=True, slots=True)
class AggregationOutcome:
    member_id: str
    status: AggregationStatus
    total: int | None = None

    @property
    def updated(self) -> bool:
        return self.status is AggregationStatus.UPDATED
