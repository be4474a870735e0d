"""
tests/test_api_routes.py — FastAPI Route Integration Tests
============================================================
Auth guards, the admin write → recalculation round trip, and the member
dashboard endpoints, through the FastAPI TestClient.
"""

from __future__ import annotations

import pytest
from conftest import auth, make_token
from sqlalchemy.orm import Session

from pixeltrack.database.models import Member
from pixeltrack.services.settings_service import set_current_semester

SEMESTER = "fall-2026"


@pytest.fixture
def seeded(file_engine):
    set_current_semester(file_engine, SEMESTER, actor_id="setup")
    with Session(file_engine) as s:
        s.add(Member(id="U1", first_name="Ada", last_name="L", email="ada@umd.edu"))
        s.add(Member(id="U2", first_name="Bo", last_name="K", email="bo@umd.edu"))
        s.commit()
    return file_engine


@pytest.fixture
def member_token():
    return make_token("U1", is_admin=False)


def _cached(engine, member_id):
    with Session(engine) as s:
        return s.get(Member, member_id).pixel_cached


# ===========================================================================
# Health endpoint
# ===========================================================================
class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


# ===========================================================================
# Auth guards
# ===========================================================================
class TestAuthGuards:
    ADMIN_GET_ENDPOINTS = [
        "/api/admin/events",
        "/api/admin/members",
        "/api/admin/settings",
        "/api/admin/audit-log",
        "/api/admin/export/members.csv",
    ]

    @pytest.mark.parametrize("endpoint", ADMIN_GET_ENDPOINTS)
    def test_admin_get_no_token(self, client, endpoint):
        assert client.get(endpoint).status_code == 401

    @pytest.mark.parametrize("endpoint", ADMIN_GET_ENDPOINTS)
    def test_admin_get_non_admin(self, client, endpoint, member_token):
        assert client.get(endpoint, headers=auth(member_token)).status_code == 403

    def test_invalid_token(self, client):
        resp = client.get("/api/admin/events", headers=auth("not.a.jwt"))
        assert resp.status_code == 401

    def test_dashboard_requires_token(self, client):
        assert client.get("/api/dashboard/me").status_code == 401
        assert client.get("/api/leaderboard").status_code == 401


# ===========================================================================
# Admin writes recompute affected members
# ===========================================================================
class TestAdminWrites:
    def test_create_event_recomputes_attendees(self, client, seeded, admin_token):
        resp = client.post(
            "/api/admin/events",
            json={"name": "GBM 1", "date": "2026-09-01T18:00:00Z", "type": "GBM",
                  "pixels": 10, "attendees": ["U1"]},
            headers=auth(admin_token),
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["result"]["semester_id"] == SEMESTER
        assert body["recalculation"]["recalculated"] == ["U1"]
        assert _cached(seeded, "U1") == 10

    def test_attendance_status_round_trip(self, client, seeded, admin_token):
        event_id = client.post(
            "/api/admin/events",
            json={"name": "GBM", "date": "2026-09-01T18:00:00Z", "type": "GBM",
                  "pixels": 10, "attendees": ["U1", "U2"]},
            headers=auth(admin_token),
        ).json()["result"]["id"]

        resp = client.put(
            f"/api/admin/events/{event_id}/attendance/U2",
            json={"status": "excused"},
            headers=auth(admin_token),
        )
        assert resp.status_code == 200
        assert resp.json()["recalculation"]["recalculated"] == ["U1", "U2"]
        assert _cached(seeded, "U2") == 0
        assert _cached(seeded, "U1") == 10

    def test_invalid_attendance_status(self, client, seeded, admin_token):
        resp = client.put(
            "/api/admin/events/whatever/attendance/U1",
            json={"status": "late"},
            headers=auth(admin_token),
        )
        assert resp.status_code == 422

    def test_missing_event_404(self, client, seeded, admin_token):
        resp = client.delete("/api/admin/events/nope", headers=auth(admin_token))
        assert resp.status_code == 404

    def test_pixel_delta_recomputes_member(self, client, seeded, admin_token):
        resp = client.put(
            "/api/admin/members/U2/pixel-delta",
            json={"pixel_delta": 7, "reason": "bonus"},
            headers=auth(admin_token),
        )
        assert resp.status_code == 200
        assert _cached(seeded, "U2") == 7

    def test_activity_multiplier(self, client, seeded, admin_token):
        activity_id = client.post(
            "/api/admin/activities",
            json={"name": "Coffee", "type": "coffee_chat", "pixels": 5},
            headers=auth(admin_token),
        ).json()["result"]["id"]
        resp = client.put(
            f"/api/admin/activities/{activity_id}/multipliers/U1",
            json={"multiplier": 2},
            headers=auth(admin_token),
        )
        assert resp.status_code == 200
        assert _cached(seeded, "U1") == 10

    def test_duplicate_member_409(self, client, seeded, admin_token):
        resp = client.post(
            "/api/admin/members",
            json={"id": "U1", "first_name": "A", "last_name": "B", "email": "x@umd.edu"},
            headers=auth(admin_token),
        )
        assert resp.status_code == 409

    def test_merge_into_self_400(self, client, seeded, admin_token):
        resp = client.post(
            "/api/admin/members/merge",
            json={"source_id": "U1", "dest_id": "U1"},
            headers=auth(admin_token),
        )
        assert resp.status_code == 400

    def test_merge_recomputes_destination(self, client, seeded, admin_token):
        headers = auth(admin_token)
        for name, pixels, attendees in (("GBM", 10, ["U1", "U2"]), ("Social", 3, ["U1"])):
            client.post(
                "/api/admin/events",
                json={"name": name, "date": "2026-09-01T18:00:00Z", "type": "GBM",
                      "pixels": pixels, "attendees": attendees},
                headers=headers,
            )
        client.post(
            "/api/admin/activities",
            json={"name": "Coffee", "type": "coffee_chat", "pixels": 5,
                  "semester_id": SEMESTER, "multipliers": {"U1": 2, "U2": 1}},
            headers=headers,
        )
        client.put("/api/admin/members/U1/pixel-delta", json={"pixel_delta": 4}, headers=headers)
        client.put("/api/admin/members/U2/pixel-delta", json={"pixel_delta": 1}, headers=headers)

        resp = client.post(
            "/api/admin/members/merge",
            json={"source_id": "U1", "dest_id": "U2"},
            headers=headers,
        )
        assert resp.status_code == 200
        assert "U2" in resp.json()["recalculation"]["recalculated"]
        # delta 4 + 1, events 10 + 3, multiplier (2 + 1) x 5
        assert _cached(seeded, "U2") == 5 + 13 + 15
        with Session(seeded) as s:
            assert s.get(Member, "U1") is None

    def test_event_semester_cleared(self, client, seeded, admin_token):
        event_id = client.post(
            "/api/admin/events",
            json={"name": "GBM", "date": "2026-09-01T18:00:00Z", "type": "GBM",
                  "pixels": 10, "attendees": ["U1"]},
            headers=auth(admin_token),
        ).json()["result"]["id"]
        assert _cached(seeded, "U1") == 10

        resp = client.patch(
            f"/api/admin/events/{event_id}",
            json={"semester_id": None},
            headers=auth(admin_token),
        )
        assert resp.status_code == 200
        assert resp.json()["result"]["semester_id"] is None
        assert _cached(seeded, "U1") == 0

    def test_event_patch_without_semester_keeps_it(self, client, seeded, admin_token):
        event_id = client.post(
            "/api/admin/events",
            json={"name": "GBM", "date": "2026-09-01T18:00:00Z", "type": "GBM",
                  "pixels": 10},
            headers=auth(admin_token),
        ).json()["result"]["id"]
        resp = client.patch(
            f"/api/admin/events/{event_id}",
            json={"name": "GBM 2"},
            headers=auth(admin_token),
        )
        assert resp.json()["result"]["semester_id"] == SEMESTER

    def test_admin_flag_unknown_email_404(self, client, seeded, admin_token):
        resp = client.post(
            "/api/admin/members/admin-flag",
            json={"email": "nobody@umd.edu", "is_admin": True},
            headers=auth(admin_token),
        )
        assert resp.status_code == 404

    def test_recalculate_unknown_member_404(self, client, seeded, admin_token):
        resp = client.post("/api/admin/members/ghost/recalculate", headers=auth(admin_token))
        assert resp.status_code == 404

    def test_semester_switch_recomputes_everyone(self, client, seeded, admin_token):
        resp = client.put(
            "/api/admin/settings/semester",
            json={"semester_id": "spring-2027"},
            headers=auth(admin_token),
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["current_semester_id"] == "spring-2027"
        assert body["recalculation"]["recalculated"] == ["U1", "U2"]

    def test_csv_export(self, client, seeded, admin_token):
        resp = client.get("/api/admin/export/members.csv", headers=auth(admin_token))
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        assert resp.text.splitlines()[0].startswith("id,first_name")

    def test_audit_log_records_actor(self, client, seeded, admin_token):
        client.put(
            "/api/admin/settings/leaderboard",
            json={"enabled": True},
            headers=auth(admin_token),
        )
        entries = client.get(
            "/api/admin/audit-log?target_table=settings", headers=auth(admin_token)
        ).json()["entries"]
        assert entries[0]["actor_id"] == "U-ADMIN"


# ===========================================================================
# Member dashboard
# ===========================================================================
class TestDashboard:
    def test_dashboard_me(self, client, seeded, member_token):
        resp = client.get("/api/dashboard/me", headers=auth(member_token))
        assert resp.status_code == 200
        body = resp.json()
        assert body["member_id"] == "U1"
        assert body["leaderboard"] is None

    def test_dashboard_unknown_member(self, client, seeded):
        token = make_token("ghost", is_admin=False)
        assert client.get("/api/dashboard/me", headers=auth(token)).status_code == 404

    def test_leaderboard_toggle(self, client, seeded, admin_token, member_token):
        resp = client.get("/api/leaderboard", headers=auth(member_token))
        assert resp.json()["enabled"] is False

        client.put(
            "/api/admin/settings/leaderboard",
            json={"enabled": True},
            headers=auth(admin_token),
        )
        body = client.get("/api/leaderboard", headers=auth(member_token)).json()
        assert body["enabled"] is True
        assert {r["id"] for r in body["rows"]} == {"U1", "U2"}
