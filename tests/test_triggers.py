"""
tests/test_triggers.py — Recomputation Trigger Router
======================================================
Handlers map before/after snapshots to affected members; the router fans
out one aggregation per member and isolates failures.
"""

from __future__ import annotations

import asyncio

import pytest
from conftest import run_async

from pixeltrack.engine.aggregate import AggregationOutcome, AggregationStatus
from pixeltrack.engine.triggers import (
    DocumentWrite,
    TriggerRouter,
    affected_by_activity_write,
    affected_by_event_write,
    affected_by_excused_write,
)


class _Recorder:
    """Fake aggregate that records calls and can fail for chosen IDs."""

    def __init__(self, fail: set[str] = frozenset()):
        self.calls: list[str] = []
        self.fail = set(fail)

    async def __call__(self, member_id: str) -> AggregationOutcome:
        self.calls.append(member_id)
        await asyncio.sleep(0)
        if member_id in self.fail:
            raise RuntimeError(f"boom {member_id}")
        return AggregationOutcome(member_id, AggregationStatus.UPDATED, 1)


class TestHandlers:
    def test_event_union_of_attendees(self):
        before = {"attendees": ["A", "B"]}
        after = {"attendees": ["B", "C"]}
        assert affected_by_event_write(before, after) == {"A", "B", "C"}

    def test_event_create_and_delete(self):
        assert affected_by_event_write(None, {"attendees": ["A"]}) == {"A"}
        assert affected_by_event_write({"attendees": ["A"]}, None) == {"A"}

    def test_event_without_attendees(self):
        assert affected_by_event_write({"name": "x"}, {"attendees": None}) == set()

    def test_excused_owner_before_and_after(self):
        assert affected_by_excused_write({"user_id": "A"}, {"user_id": "B"}) == {"A", "B"}
        assert affected_by_excused_write(None, {"user_id": "A"}) == {"A"}

    def test_activity_multiplier_keys(self):
        before = {"multipliers": {"A": 1}}
        after = {"multipliers": {"B": 2}}
        assert affected_by_activity_write(before, after) == {"A", "B"}


class TestDocumentWrite:
    def test_kind(self):
        assert DocumentWrite("events", None, {}).kind == "create"
        assert DocumentWrite("events", {}, None).kind == "delete"
        assert DocumentWrite("events", {}, {}).kind == "update"


class TestRouter:
    def test_removing_attendee_recomputes_only_that_member(self):
        agg = _Recorder()
        router = TriggerRouter(agg)
        write = DocumentWrite(
            "events", {"attendees": ["A", "B"]}, {"attendees": ["A", "B"]}
        )
        # Unchanged attendee set still recomputes the set (idempotent rewrite)
        run_async(router.dispatch(write))
        assert sorted(agg.calls) == ["A", "B"]

        agg.calls.clear()
        removal = DocumentWrite("events", {"attendees": ["B"]}, {"attendees": []})
        report = run_async(router.dispatch(removal))
        assert agg.calls == ["B"]
        assert report.recalculated == ["B"]

    def test_unknown_collection_is_ignored(self):
        agg = _Recorder()
        report = run_async(TriggerRouter(agg).dispatch(DocumentWrite("settings", {}, {})))
        assert agg.calls == []
        assert report.members == []

    def test_dispatch_many_deduplicates(self):
        agg = _Recorder()
        writes = [
            DocumentWrite("events", {"attendees": ["A"]}, {"attendees": ["A", "B"]}),
            DocumentWrite("excused_absences", None, {"user_id": "B"}),
        ]
        run_async(TriggerRouter(agg).dispatch_many(writes, extra_members={"C"}))
        assert sorted(agg.calls) == ["A", "B", "C"]

    def test_failure_is_isolated(self):
        agg = _Recorder(fail={"B"})
        report = run_async(TriggerRouter(agg).fan_out(["A", "B", "C"]))
        assert sorted(agg.calls) == ["A", "B", "C"]
        assert report.recalculated == ["A", "C"]
        assert list(report.failed) == ["B"]
        assert "RuntimeError" in report.failed["B"]

    def test_skipped_outcomes_reported(self):
        async def _agg(uid):
            return AggregationOutcome(uid, AggregationStatus.MEMBER_NOT_FOUND)

        report = run_async(TriggerRouter(_agg).fan_out(["gone"]))
        assert report.skipped == ["gone"]
        assert report.to_dict() == {"recalculated": [], "skipped": ["gone"], "failed": {}}

    def test_cancellation_propagates(self):
        async def _agg(uid):
            raise asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            run_async(TriggerRouter(_agg).fan_out(["A"]))

    def test_custom_handlers(self):
        agg = _Recorder()
        router = TriggerRouter(agg, handlers={"things": lambda b, a: {"Z"}})
        run_async(router.dispatch(DocumentWrite("things", None, {})))
        assert agg.calls == ["Z"]
