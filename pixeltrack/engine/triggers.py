"""
pixeltrack.engine.triggers — Recomputation Trigger Router
==========================================================

Every write to a collection that feeds the pixel total is described by a
:class:`DocumentWrite` (collection name plus before/after snapshots, either
of which may be ``None`` for a create or delete).  The router asks the
collection's handler which members the write touches, then runs one
aggregation per member **concurrently**:

    DocumentWrite → handler(before, after) → {member IDs} → gather(aggregate)

Each aggregation is isolated.  One member failing is logged and recorded in
the :class:`FanoutReport`; its siblings still complete.  Nothing is retried:
the next write that touches the member re-fires recomputation.

Snapshot keys read by the handlers:

* ``events``            — ``attendees`` (list of member IDs)
* ``excused_absences``  — ``user_id``
* ``activities``        — ``multipliers`` (member ID → multiplier)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from pixeltrack.engine.aggregate import AggregationOutcome

logger = logging.getLogger(__name__)

__all__ = [
    "DocumentWrite",
    "FanoutReport",
    "TriggerRouter",
    "WRITE_HANDLERS",
    "affected_by_activity_write",
    "affected_by_event_write",
    "affected_by_excused_write",
]

Snapshot = Mapping[str, Any] | None
WriteHandler = Callable[[Snapshot, Snapshot], set[str]]
Aggregate = Callable[[str], Awaitable[AggregationOutcome]]

EVENTS = "events"
EXCUSED_ABSENCES = "excused_absences"
ACTIVITIES = "activities"


@dataclass(frozen=True, slots=True)
class DocumentWrite:
    """A single create / update / delete on a watched collection."""

    collection: str
    before: Snapshot = None
    after: Snapshot = None

    @property
    def kind(self) -> str:
        if self.before is None:
            return "create"
        if self.after is None:
            return "delete"
        return "update"


# ---------------------------------------------------------------------------
# Per-collection handlers: (before, after) → affected member IDs
# ---------------------------------------------------------------------------
def affected_by_event_write(before: Snapshot, after: Snapshot) -> set[str]:
    """Attendees before ∪ attendees after.

    Removed attendees lose the points, added ones gain them, and a deleted
    event's attendees are recomputed without it.
    """
    affected: set[str] = set()
    for snap in (before, after):
        if snap:
            affected.update(uid for uid in snap.get("attendees") or () if uid)
    return affected


def affected_by_excused_write(before: Snapshot, after: Snapshot) -> set[str]:
    """The request's owner, before and after (covers a reassigned request)."""
    return {
        snap["user_id"]
        for snap in (before, after)
        if snap and snap.get("user_id")
    }


def affected_by_activity_write(before: Snapshot, after: Snapshot) -> set[str]:
    """Keys of the multiplier map, before ∪ after."""
    affected: set[str] = set()
    for snap in (before, after):
        if snap:
            affected.update(uid for uid in (snap.get("multipliers") or {}) if uid)
    return affected


WRITE_HANDLERS: dict[str, WriteHandler] = {
    EVENTS: affected_by_event_write,
    EXCUSED_ABSENCES: affected_by_excused_write,
    ACTIVITIES: affected_by_activity_write,
}


# ---------------------------------------------------------------------------
# FanoutReport — result of one dispatch
# ---------------------------------------------------------------------------
@dataclass
class FanoutReport:
    outcomes: dict[str, AggregationOutcome] = field(default_factory=dict)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def recalculated(self) -> list[str]:
        return sorted(uid for uid, o in self.outcomes.items() if o.updated)

    @property
    def skipped(self) -> list[str]:
        return sorted(uid for uid, o in self.outcomes.items() if not o.updated)

    @property
    def members(self) -> list[str]:
        return sorted(set(self.outcomes) | set(self.failed))

    def to_dict(self) -> dict:
        return {
            "recalculated": self.recalculated,
            "skipped": self.skipped,
            "failed": dict(sorted(self.failed.items())),
        }


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------
class TriggerRouter:
    """Maps writes to affected members and fans out aggregations.

    Usage::

        router = TriggerRouter(lambda uid: run_db(recalculate_member, engine, uid))
        report = await router.dispatch(DocumentWrite("events", before, after))
    """

    def __init__(
        self,
        aggregate: Aggregate,
        handlers: Mapping[str, WriteHandler] | None = None,
    ) -> None:
        self._aggregate = aggregate
        self._handlers = dict(handlers if handlers is not None else WRITE_HANDLERS)

    def affected_members(self, write: DocumentWrite) -> set[str]:
        handler = self._handlers.get(write.collection)
        if handler is None:
            return set()
        return handler(write.before, write.after)

    async def dispatch(self, write: DocumentWrite) -> FanoutReport:
        """Recompute every member touched by *write*."""
        return await self.dispatch_many([write])

    async def dispatch_many(
        self,
        writes: Iterable[DocumentWrite],
        extra_members: Iterable[str] = (),
    ) -> FanoutReport:
        """Recompute the deduplicated union of members touched by *writes*.

        Used by mutations that write several records at once (e.g. marking
        attendance updates the event and its excused absences).
        *extra_members* are folded in as-is.
        """
        member_ids: set[str] = {uid for uid in extra_members if uid}
        for write in writes:
            affected = self.affected_members(write)
            logger.debug(
                "%s %s touches %d member(s)", write.collection, write.kind, len(affected)
            )
            member_ids |= affected
        return await self.fan_out(member_ids)

    async def fan_out(self, member_ids: Iterable[str]) -> FanoutReport:
        """Aggregate each member concurrently; failures stay isolated."""
        ordered = sorted(set(member_ids))
        report = FanoutReport()
        if not ordered:
            return report

        results = await asyncio.gather(
            *(self._aggregate(uid) for uid in ordered),
            return_exceptions=True,
        )
        for uid, result in zip(ordered, results):
            if isinstance(result, Exception):
                logger.error(
                    "Recalculation failed for member %s", uid, exc_info=result
                )
                report.failed[uid] = f"{type(result).__name__}: {result}"
            elif isinstance(result, BaseException):
                raise result
            else:
                report.outcomes[uid] = result

        if report.failed:
            logger.warning(
                "Fan-out finished with %d failure(s) out of %d member(s)",
                len(report.failed), len(ordered),
            )
        else:
            logger.info("Fan-out recalculated %d member(s)", len(ordered))
        return report
