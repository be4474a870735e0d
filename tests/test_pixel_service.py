"""
tests/test_pixel_service.py — Pixel Aggregator Integration Tests
=================================================================
recalculate_member() against an in-memory SQLite database: the worked
examples, the semester-unset guard, legacy fields and idempotence.
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from conftest import run_async
from sqlalchemy.orm import Session

from pixeltrack.database.models import (
    Activity,
    ActivityMultiplier,
    Event,
    EventAttendee,
    ExcusedAbsence,
    Member,
)
from pixeltrack.engine.aggregate import AggregationStatus
from pixeltrack.engine.schema import MemberRecord
from pixeltrack.services import pixel_service
from pixeltrack.services.settings_service import set_current_semester

SEMESTER = "fall-2026"


@pytest.fixture
def engine(db_engine):
    set_current_semester(db_engine, SEMESTER, actor_id="setup")
    return db_engine


def _member(session, member_id, **kw):
    row = Member(
        id=member_id,
        first_name=kw.pop("first_name", member_id),
        last_name="",
        email=f"{member_id.lower()}@umd.edu",
        **kw,
    )
    session.add(row)
    return row


def _event(session, event_id, *, type="GBM", pixels=10, attendees=(), semester=SEMESTER,
           day=1):
    event = Event(
        id=event_id, name=event_id, type=type, pixels=pixels, semester_id=semester,
        date=datetime(2026, 9, day, tzinfo=UTC),
    )
    event.attendees = [EventAttendee(member_id=m) for m in attendees]
    session.add(event)
    return event


def _cached(engine, member_id):
    with Session(engine) as s:
        row = s.get(Member, member_id)
        return row.pixel_cached, row.pixels


class TestWorkedExamples:
    def test_gbm_attendee_gets_points_absentee_none(self, engine):
        with Session(engine) as s:
            _member(s, "A")
            _member(s, "B")
            _event(s, "gbm", attendees=["A"])
            s.commit()

        assert pixel_service.recalculate_member(engine, "A").total == 10
        assert pixel_service.recalculate_member(engine, "B").total == 0
        assert _cached(engine, "A") == (10, 10)

    def test_approved_excuse_still_zero(self, engine):
        with Session(engine) as s:
            _member(s, "B")
            _event(s, "gbm", attendees=["A"])
            s.add(ExcusedAbsence(event_id="gbm", user_id="B", status="approved"))
            s.commit()
            breakdown = pixel_service.build_breakdown(
                s, MemberRecord.from_row(s.get(Member, "B")), SEMESTER
            )
        assert breakdown.events[0].attendance.value == "Excused"
        assert breakdown.total == 0

    def test_activity_multiplier(self, engine):
        with Session(engine) as s:
            _member(s, "A")
            _member(s, "C")
            act = Activity(id="chat", name="Coffee", type="coffee_chat", pixels=5,
                           semester_id=SEMESTER)
            act.multipliers = [ActivityMultiplier(member_id="A", multiplier=3)]
            s.add(act)
            s.commit()

        assert pixel_service.recalculate_member(engine, "A").total == 15
        assert pixel_service.recalculate_member(engine, "C").total == 0

    def test_semester_unset_writes_nothing(self, db_engine):
        with Session(db_engine) as s:
            _member(s, "A", pixel_cached=99, pixels=99)
            _event(s, "gbm", attendees=["A"])
            s.commit()

        outcome = pixel_service.recalculate_member(db_engine, "A")
        assert outcome.status is AggregationStatus.SEMESTER_UNSET
        assert _cached(db_engine, "A") == (99, 99)


class TestAggregationRules:
    def test_other_semesters_ignored(self, engine):
        with Session(engine) as s:
            _member(s, "A")
            _event(s, "now", attendees=["A"], pixels=4)
            _event(s, "old", attendees=["A"], pixels=50, semester="spring-2026")
            s.commit()
        assert pixel_service.recalculate_member(engine, "A").total == 4

    def test_pending_excuse_does_not_excuse(self, engine):
        with Session(engine) as s:
            _member(s, "B")
            _event(s, "gbm")
            s.add(ExcusedAbsence(event_id="gbm", user_id="B", status="pending"))
            s.commit()
            assert pixel_service.get_excused_event_ids(s, "B") == set()

    def test_delta_added_including_legacy_casing(self, engine):
        with Session(engine) as s:
            _member(s, "A", pixel_delta=None, pixeldelta=7)
            _event(s, "gbm", attendees=["A"])
            s.commit()
        assert pixel_service.recalculate_member(engine, "A").total == 17

    def test_negative_delta(self, engine):
        with Session(engine) as s:
            _member(s, "A", pixel_delta=-25)
            _event(s, "gbm", attendees=["A"])
            s.commit()
        assert pixel_service.recalculate_member(engine, "A").total == -15

    def test_missing_member_is_noop(self, engine):
        outcome = pixel_service.recalculate_member(engine, "ghost")
        assert outcome.status is AggregationStatus.MEMBER_NOT_FOUND
        with Session(engine) as s:
            assert s.get(Member, "ghost") is None

    def test_idempotent(self, engine):
        with Session(engine) as s:
            _member(s, "A", pixel_delta=2)
            _event(s, "gbm", attendees=["A"])
            s.commit()
        first = pixel_service.recalculate_member(engine, "A").total
        second = pixel_service.recalculate_member(engine, "A").total
        assert first == second == 12

    def test_events_loaded_newest_first(self, engine):
        with Session(engine) as s:
            _event(s, "early", day=1)
            _event(s, "late", day=20)
            s.commit()
            ids = [e.id for e in pixel_service.load_semester_events(s, SEMESTER)]
        assert ids == ["late", "early"]

    def test_settings_reader_injection(self, db_engine):
        class _Fixed:
            def active_semester(self):
                return SEMESTER

        with Session(db_engine) as s:
            _member(s, "A")
            _event(s, "gbm", attendees=["A"])
            s.commit()
        outcome = pixel_service.recalculate_member(db_engine, "A", settings=_Fixed())
        assert outcome.total == 10


class TestFanOut:
    def test_recalculate_all(self, file_engine):
        set_current_semester(file_engine, SEMESTER, actor_id="setup")
        with Session(file_engine) as s:
            for uid in ("A", "B", "C"):
                _member(s, uid)
            _event(s, "gbm", attendees=["A", "C"])
            s.commit()

        report = run_async(pixel_service.recalculate_all(file_engine))
        assert report.recalculated == ["A", "B", "C"]
        assert report.failed == {}
        assert _cached(file_engine, "C") == (10, 10)
        assert _cached(file_engine, "B") == (0, 0)
