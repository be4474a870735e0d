"""
tests/test_settings_service.py — Global Settings
=================================================
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from pixeltrack.database.models import AdminLog, Setting
from pixeltrack.database.seed import CURRENT_SEMESTER_KEY, LEADERBOARD_KEY
from pixeltrack.services.settings_service import (
    GlobalSettings,
    get_all_settings,
    set_current_semester,
    set_leaderboard_enabled,
    upsert_setting,
)


class TestDefaults:
    def test_seeded_unset(self, db_session):
        settings = GlobalSettings(db_session)
        assert settings.active_semester() is None
        assert settings.leaderboard_enabled() is False

    def test_all_settings_listed(self, db_engine):
        keys = {s.key for s in get_all_settings(db_engine)}
        assert {CURRENT_SEMESTER_KEY, LEADERBOARD_KEY} <= keys


class TestWrites:
    def test_set_semester_is_audited(self, db_engine):
        assert set_current_semester(db_engine, " fall-2026 ", actor_id="U-ADMIN") == "fall-2026"
        with Session(db_engine) as s:
            assert GlobalSettings(s).active_semester() == "fall-2026"
            (log,) = s.scalars(select(AdminLog)).all()
        assert log.target_table == "settings"
        assert log.before_snapshot == {"key": CURRENT_SEMESTER_KEY, "value": None}
        assert log.after_snapshot["value"] == "fall-2026"

    def test_blank_semester_clears(self, db_engine):
        set_current_semester(db_engine, "fall-2026", actor_id="U-ADMIN")
        assert set_current_semester(db_engine, "   ", actor_id="U-ADMIN") is None
        with Session(db_engine) as s:
            assert GlobalSettings(s).active_semester() is None

    def test_unchanged_value_not_logged(self, db_engine):
        set_leaderboard_enabled(db_engine, False, actor_id="U-ADMIN")
        with Session(db_engine) as s:
            assert s.scalars(select(AdminLog)).all() == []

    def test_leaderboard_toggle(self, db_engine):
        set_leaderboard_enabled(db_engine, True, actor_id="U-ADMIN")
        with Session(db_engine) as s:
            assert GlobalSettings(s).leaderboard_enabled() is True

    def test_new_key_without_actor(self, db_engine):
        upsert_setting(db_engine, key="custom", value={"a": 1}, category="misc")
        with Session(db_engine) as s:
            row = s.get(Setting, "custom")
            assert row.category == "misc"
            assert s.scalars(select(AdminLog)).all() == []

    def test_non_json_value_returned_raw(self, db_engine):
        with Session(db_engine) as s:
            s.get(Setting, CURRENT_SEMESTER_KEY).value_json = "spring-2027"
            s.commit()
            assert GlobalSettings(s).active_semester() == "spring-2027"
