"""
pixeltrack.api.routes.dashboard — Member-facing read endpoints
===============================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from pixeltrack.api.deps import get_current_member, get_engine
from pixeltrack.database.engine import run_db
from pixeltrack.services import dashboard_service

router = APIRouter(tags=["dashboard"])


@router.get("/dashboard/me")
async def my_dashboard(
    page: int = Query(1, ge=1),
    claims: dict = Depends(get_current_member),
    engine=Depends(get_engine),
):
    """Total, pixel log, activities and (when enabled) leaderboard + rank."""
    data = await run_db(
        dashboard_service.get_dashboard,
        engine,
        claims["sub"],
        email=claims.get("email"),
        page=page,
    )
    if data is None:
        raise HTTPException(404, "Member not found")
    return data


@router.get("/dashboard/pixel-log")
async def my_pixel_log(
    page: int = Query(1, ge=1),
    claims: dict = Depends(get_current_member),
    engine=Depends(get_engine),
):
    data = await run_db(dashboard_service.get_pixel_log, engine, claims["sub"], page=page)
    if data is None:
        raise HTTPException(404, "Member not found")
    return data


@router.get("/leaderboard")
async def leaderboard(
    page: int = Query(1, ge=1),
    claims: dict = Depends(get_current_member),
    engine=Depends(get_engine),
):
    """Paged leaderboard; ``enabled: false`` with no rows when switched off."""
    return await run_db(dashboard_service.get_leaderboard, engine, page=page)
