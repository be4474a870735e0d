"""
tests/test_schema.py — Member Schema Adapter
=============================================
Legacy field names are folded into the canonical record exactly once.
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from pixeltrack.database.models import Member
from pixeltrack.engine.schema import MemberRecord, coerce_int


class TestCoerceInt:
    def test_values(self):
        assert coerce_int(7) == 7
        assert coerce_int("12") == 12
        assert coerce_int(None) == 0
        assert coerce_int("abc") == 0
        assert coerce_int(True) == 0
        assert coerce_int(None, default=-1) == -1


class TestFromDocument:
    def test_canonical_fields(self):
        rec = MemberRecord.from_document("U1", {
            "firstName": "Testudo",
            "lastName": "Terrapin",
            "email": "t@umd.edu",
            "isAdmin": True,
            "pixelDelta": 5,
            "pixelCached": 40,
            "slackId": "U1",
        })
        assert rec.pixel_delta == 5
        assert rec.pixel_cached == 40
        assert rec.is_admin is True
        assert rec.display_name == "Testudo Terrapin"

    def test_legacy_lowercase_delta(self):
        rec = MemberRecord.from_document("U1", {"pixeldelta": -2})
        assert rec.pixel_delta == -2

    def test_canonical_delta_wins_over_legacy(self):
        rec = MemberRecord.from_document("U1", {"pixelDelta": 3, "pixeldelta": 9})
        assert rec.pixel_delta == 3

    def test_legacy_pixels_as_cached_total(self):
        rec = MemberRecord.from_document("U1", {"pixels": 22})
        assert rec.pixel_cached == 22

    def test_missing_totals(self):
        rec = MemberRecord.from_document("U1", {})
        assert rec.pixel_delta == 0
        assert rec.pixel_cached is None
        assert rec.display_name == "Member"

    def test_slack_email_fallback(self):
        rec = MemberRecord.from_document("U1", {"slackEmail": "old@umd.edu"})
        assert rec.email == "old@umd.edu"


class TestFromRow:
    def test_legacy_columns(self):
        row = Member(
            id="U2", first_name="", last_name="", email="",
            slack_email="legacy@umd.edu", pixel_delta=None, pixeldelta=4,
            pixel_cached=None, pixels=11, is_admin=None,
        )
        rec = MemberRecord.from_row(row)
        assert rec.email == "legacy@umd.edu"
        assert rec.pixel_delta == 4
        assert rec.pixel_cached == 11
        assert rec.is_admin is False

    def test_legacy_columns_survive_insert(self, db_engine):
        with Session(db_engine) as s:
            s.add(Member(id="U3", pixel_delta=None, pixeldelta=7,
                         pixel_cached=None, pixels=42))
            s.commit()
        with Session(db_engine) as s:
            row = s.get(Member, "U3")
            assert (row.pixel_delta, row.pixel_cached) == (None, None)
            rec = MemberRecord.from_row(row)
        assert rec.pixel_delta == 7
        assert rec.pixel_cached == 42

    def test_member_without_pixel_fields(self, db_engine):
        with Session(db_engine) as s:
            s.add(Member(id="U4"))
            s.commit()
            rec = MemberRecord.from_row(s.get(Member, "U4"))
        assert rec.pixel_delta == 0
        assert rec.pixel_cached is None
