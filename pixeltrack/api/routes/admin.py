"""
pixeltrack.api.routes.admin — Admin endpoints (JWT‑protected)
==============================================================

Every mutating route runs the audited service call on a worker thread,
then hands the committed before/after snapshots to the trigger router.
Responses carry the written record under ``result`` and the fan-out
summary under ``recalculation``.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from pixeltrack.api.deps import get_current_admin, get_engine
from pixeltrack.database.engine import run_db
from pixeltrack.database.models import ActivityType, EventType, ExcusedStatus
from pixeltrack.engine.aggregate import AggregationStatus
from pixeltrack.services import (
    admin_service,
    dashboard_service,
    member_service,
    pixel_service,
    settings_service,
)
from pixeltrack.services.admin_service import Mutation

router = APIRouter(prefix="/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class EventCreate(BaseModel):
    name: str
    date: datetime
    type: EventType
    pixels: int = Field(0, ge=0)
    semester_id: str | None = None
    attendees: list[str] = Field(default_factory=list)


class EventUpdate(BaseModel):
    name: str | None = None
    date: datetime | None = None
    type: EventType | None = None
    pixels: int | None = Field(None, ge=0)
    semester_id: str | None = None
    attendees: list[str] | None = None


class AttendeesAdd(BaseModel):
    member_ids: list[str]


class AttendeesByEmail(BaseModel):
    emails: list[str]


class AttendanceStatusUpdate(BaseModel):
    status: Literal["present", "excused", "absent"]


class ExcusedCreate(BaseModel):
    user_id: str
    reason: str = ""
    status: ExcusedStatus = ExcusedStatus.PENDING


class ExcusedStatusUpdate(BaseModel):
    status: ExcusedStatus


class ActivityCreate(BaseModel):
    name: str
    type: ActivityType = ActivityType.OTHER
    pixels: int = 0
    semester_id: str | None = None
    multipliers: dict[str, int] = Field(default_factory=dict)


class ActivityUpdate(BaseModel):
    name: str | None = None
    type: ActivityType | None = None
    pixels: int | None = None
    semester_id: str | None = None


class MultiplierUpdate(BaseModel):
    multiplier: int


class MemberCreate(BaseModel):
    id: str
    first_name: str
    last_name: str
    email: str
    slack_id: str | None = None


class MemberUpdate(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    slack_id: str | None = None


class PixelDeltaUpdate(BaseModel):
    pixel_delta: int
    reason: str | None = None


class AdminFlagUpdate(BaseModel):
    email: str
    is_admin: bool


class MemberMerge(BaseModel):
    source_id: str
    dest_id: str


class SemesterUpdate(BaseModel):
    semester_id: str | None = None


class LeaderboardToggle(BaseModel):
    enabled: bool


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
async def _fan_out(engine, mutation: Mutation | None, missing: str) -> dict:
    """404 on a missing target, otherwise recompute the affected members."""
    if mutation is None:
        raise HTTPException(404, missing)
    report = await pixel_service.apply_writes(
        engine, mutation.writes, extra_members=mutation.members
    )
    return {"result": mutation.value, "recalculation": report.to_dict()}


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------
@router.get("/events")
async def list_events(
    semester_id: str | None = Query(None),
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    events = await run_db(admin_service.list_events, engine, semester_id=semester_id)
    return {"events": events}


@router.post("/events", status_code=201)
async def create_event(
    body: EventCreate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    mutation = await run_db(
        admin_service.create_event,
        engine,
        name=body.name,
        date=body.date,
        type=body.type.value,
        pixels=body.pixels,
        semester_id=body.semester_id,
        attendees=body.attendees,
        actor_id=admin["sub"],
    )
    return await _fan_out(engine, mutation, "Event not found")


@router.patch("/events/{event_id}")
async def update_event(
    event_id: str,
    body: EventUpdate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    fields = body.model_dump(exclude_unset=True)
    if fields.get("type") is not None:
        fields["type"] = EventType(fields["type"]).value
    mutation = await run_db(
        admin_service.update_event, engine, event_id, actor_id=admin["sub"], **fields
    )
    return await _fan_out(engine, mutation, "Event not found")


@router.delete("/events/{event_id}")
async def delete_event(
    event_id: str,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    mutation = await run_db(
        admin_service.delete_event, engine, event_id, actor_id=admin["sub"]
    )
    return await _fan_out(engine, mutation, "Event not found")


@router.post("/events/{event_id}/attendees")
async def add_attendees(
    event_id: str,
    body: AttendeesAdd,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    mutation = await run_db(
        admin_service.add_attendees, engine, event_id, body.member_ids,
        actor_id=admin["sub"],
    )
    return await _fan_out(engine, mutation, "Event not found")


@router.post("/events/{event_id}/attendees/by-email")
async def add_attendees_by_email(
    event_id: str,
    body: AttendeesByEmail,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    mutation, found = await run_db(
        admin_service.add_attendees_by_email, engine, event_id, body.emails,
        actor_id=admin["sub"],
    )
    if not found:
        return {"result": None, "matched": [], "recalculation": None}
    response = await _fan_out(engine, mutation, "Event not found")
    return {**response, "matched": found}


@router.delete("/events/{event_id}/attendees/{member_id}")
async def remove_attendee(
    event_id: str,
    member_id: str,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    mutation = await run_db(
        admin_service.remove_attendee, engine, event_id, member_id,
        actor_id=admin["sub"],
    )
    return await _fan_out(engine, mutation, "Event not found")


@router.put("/events/{event_id}/attendance/{member_id}")
async def set_attendance_status(
    event_id: str,
    member_id: str,
    body: AttendanceStatusUpdate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    mutation = await run_db(
        admin_service.set_attendance_status, engine, event_id, member_id, body.status,
        actor_id=admin["sub"],
    )
    return await _fan_out(engine, mutation, "Event not found")


# ---------------------------------------------------------------------------
# Excused absences
# ---------------------------------------------------------------------------
@router.get("/excused-absences")
async def list_excused_absences(
    event_id: str | None = Query(None),
    status: ExcusedStatus | None = Query(None),
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    rows = await run_db(
        admin_service.list_excused_absences,
        engine,
        event_id=event_id,
        status=status.value if status else None,
    )
    return {"excused_absences": rows}


@router.post("/events/{event_id}/excused-absences", status_code=201)
async def create_excused_absence(
    event_id: str,
    body: ExcusedCreate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    mutation = await run_db(
        admin_service.create_excused_absence,
        engine,
        event_id,
        user_id=body.user_id,
        reason=body.reason,
        status=body.status.value,
        actor_id=admin["sub"],
    )
    return await _fan_out(engine, mutation, "Event not found")


@router.patch("/excused-absences/{absence_id}")
async def set_excused_status(
    absence_id: str,
    body: ExcusedStatusUpdate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    mutation = await run_db(
        admin_service.set_excused_status, engine, absence_id, body.status.value,
        actor_id=admin["sub"],
    )
    return await _fan_out(engine, mutation, "Excused absence not found")


# ---------------------------------------------------------------------------
# Activities
# ---------------------------------------------------------------------------
@router.get("/activities")
async def list_activities(
    semester_id: str | None = Query(None),
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    rows = await run_db(admin_service.list_activities, engine, semester_id=semester_id)
    return {"activities": rows}


@router.post("/activities", status_code=201)
async def create_activity(
    body: ActivityCreate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    mutation = await run_db(
        admin_service.create_activity,
        engine,
        name=body.name,
        type=body.type.value,
        pixels=body.pixels,
        semester_id=body.semester_id,
        multipliers=body.multipliers,
        actor_id=admin["sub"],
    )
    return await _fan_out(engine, mutation, "Activity not found")


@router.patch("/activities/{activity_id}")
async def update_activity(
    activity_id: str,
    body: ActivityUpdate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    fields = body.model_dump(exclude_unset=True)
    if fields.get("type") is not None:
        fields["type"] = ActivityType(fields["type"]).value
    mutation = await run_db(
        admin_service.update_activity, engine, activity_id, actor_id=admin["sub"], **fields
    )
    return await _fan_out(engine, mutation, "Activity not found")


@router.delete("/activities/{activity_id}")
async def delete_activity(
    activity_id: str,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    mutation = await run_db(
        admin_service.delete_activity, engine, activity_id, actor_id=admin["sub"]
    )
    return await _fan_out(engine, mutation, "Activity not found")


@router.put("/activities/{activity_id}/multipliers/{member_id}")
async def set_activity_multiplier(
    activity_id: str,
    member_id: str,
    body: MultiplierUpdate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    mutation = await run_db(
        admin_service.set_activity_multiplier, engine, activity_id, member_id,
        body.multiplier, actor_id=admin["sub"],
    )
    return await _fan_out(engine, mutation, "Activity not found")


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------
@router.get("/members")
async def list_members(
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    return {"members": await run_db(admin_service.list_members, engine)}


@router.post("/members", status_code=201)
async def create_member(
    body: MemberCreate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    mutation = await run_db(
        admin_service.create_member,
        engine,
        member_id=body.id,
        first_name=body.first_name,
        last_name=body.last_name,
        email=body.email,
        slack_id=body.slack_id,
        actor_id=admin["sub"],
    )
    if mutation is None:
        raise HTTPException(409, "Member already exists")
    return await _fan_out(engine, mutation, "Member not found")


@router.patch("/members/{member_id}")
async def update_member(
    member_id: str,
    body: MemberUpdate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    mutation = await run_db(
        admin_service.update_member, engine, member_id, actor_id=admin["sub"],
        **body.model_dump(exclude_unset=True),
    )
    if mutation is None:
        raise HTTPException(404, "Member not found")
    return {"result": mutation.value}


@router.delete("/members/{member_id}")
async def delete_member(
    member_id: str,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    mutation = await run_db(
        admin_service.delete_member, engine, member_id, actor_id=admin["sub"]
    )
    if mutation is None:
        raise HTTPException(404, "Member not found")
    return {"result": True}


@router.put("/members/{member_id}/pixel-delta")
async def set_pixel_delta(
    member_id: str,
    body: PixelDeltaUpdate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    mutation = await run_db(
        admin_service.set_pixel_delta, engine, member_id, body.pixel_delta,
        actor_id=admin["sub"], reason=body.reason,
    )
    return await _fan_out(engine, mutation, "Member not found")


@router.post("/members/admin-flag")
async def set_admin_flag(
    body: AdminFlagUpdate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    try:
        ids = await run_db(
            admin_service.set_admin_by_email, engine, body.email, body.is_admin,
            actor_id=admin["sub"],
        )
    except LookupError as exc:
        raise HTTPException(404, str(exc))
    return {"updated": ids, "is_admin": body.is_admin}


@router.post("/members/merge")
async def merge_members(
    body: MemberMerge,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    try:
        mutation = await run_db(
            member_service.merge_members, engine, body.source_id, body.dest_id,
            actor_id=admin["sub"],
        )
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    return await _fan_out(engine, mutation, "Member not found")


@router.post("/members/{member_id}/recalculate")
async def recalculate_member(
    member_id: str,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    outcome = await run_db(pixel_service.recalculate_member, engine, member_id)
    if outcome.status is AggregationStatus.MEMBER_NOT_FOUND:
        raise HTTPException(404, "Member not found")
    return {"member_id": member_id, "status": outcome.status.value, "total": outcome.total}


@router.post("/recalculate")
async def recalculate_all(
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    report = await pixel_service.recalculate_all(engine)
    return report.to_dict()


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------
@router.get("/settings")
async def list_settings(
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    rows = await run_db(settings_service.get_all_settings, engine)
    settings = {}
    for r in rows:
        try:
            settings[r.key] = json.loads(r.value_json)
        except (json.JSONDecodeError, TypeError):
            settings[r.key] = r.value_json
    return {"settings": settings}


@router.put("/settings/semester")
async def set_current_semester(
    body: SemesterUpdate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    """Switch the active semester and recompute every member against it."""
    semester_id = await run_db(
        settings_service.set_current_semester, engine, body.semester_id,
        actor_id=admin["sub"],
    )
    report = await pixel_service.recalculate_all(engine)
    return {"current_semester_id": semester_id, "recalculation": report.to_dict()}


@router.put("/settings/leaderboard")
async def set_leaderboard(
    body: LeaderboardToggle,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    enabled = await run_db(
        settings_service.set_leaderboard_enabled, engine, body.enabled,
        actor_id=admin["sub"],
    )
    return {"is_leadership_on": enabled}


# ---------------------------------------------------------------------------
# Export & audit
# ---------------------------------------------------------------------------
@router.get("/export/members.csv", response_class=PlainTextResponse)
async def export_members(
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    body = await run_db(dashboard_service.export_members_csv, engine)
    return PlainTextResponse(
        body,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="members.csv"'},
    )


@router.get("/audit-log")
async def audit_log(
    limit: int = Query(100, ge=1, le=500),
    target_table: str | None = Query(None),
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    rows = await run_db(
        admin_service.get_audit_log, engine, limit=limit, target_table=target_table
    )
    return {"entries": rows}
