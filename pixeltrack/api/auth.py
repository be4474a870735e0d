"""
pixeltrack.api.auth — Slack OAuth2 + JWT issuance
==================================================

Sign-in flow:

1. ``/auth/login`` stores a one-time state token and redirects to Slack.
2. Slack redirects back to ``/auth/callback`` with ``code`` + ``state``.
3. The code is exchanged at ``oauth.v2.access``; the user is read from
   ``users.info``.  Any ``ok: false`` (or a foreign workspace) raises
   :class:`SlackAuthError` and nothing is persisted.
4. The member row is upserted and a JWT is issued.
"""

from __future__ import annotations

import logging
import os
import secrets
from datetime import UTC, datetime, timedelta
from urllib.parse import urlencode

import httpx
import jwt
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse
from sqlalchemy import delete

from pixeltrack.api.deps import (
    JWT_ALGORITHM,
    JWT_SECRET,
    get_config,
    get_current_member,
    get_engine,
)
from pixeltrack.config import PixelConfig
from pixeltrack.database.engine import get_session, run_db
from pixeltrack.database.models import OAuthState
from pixeltrack.engine.schema import MemberRecord
from pixeltrack.services import member_service
from pixeltrack.services.member_service import SlackProfile

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])

SLACK_API = "https://slack.com/api"
SLACK_AUTHORIZE_URL = "https://slack.com/oauth/v2/authorize"
SLACK_USER_SCOPE = "users:read,users:read.email"


class SlackAuthError(Exception):
    """Slack rejected the code, the user lookup, or the workspace."""


def _oauth_env() -> tuple[str, str, str, str]:
    """Return required OAuth env vars or raise a clear 500."""
    client_id = os.getenv("SLACK_CLIENT_ID", "").strip()
    client_secret = os.getenv("SLACK_CLIENT_SECRET", "").strip()
    redirect_uri = os.getenv("SLACK_REDIRECT_URI", "").strip()
    frontend_url = os.getenv("FRONTEND_URL", "").strip()

    missing = []
    if not client_id:
        missing.append("SLACK_CLIENT_ID")
    if not client_secret:
        missing.append("SLACK_CLIENT_SECRET")
    if not redirect_uri:
        missing.append("SLACK_REDIRECT_URI")
    if not frontend_url:
        missing.append("FRONTEND_URL")

    if missing:
        raise HTTPException(
            status_code=500,
            detail=(
                "Slack OAuth is not configured: missing "
                + ", ".join(missing)
            ),
        )

    return client_id, client_secret, redirect_uri, frontend_url.rstrip("/")

OAUTH_STATE_TTL_SECONDS = 600


def _store_oauth_state(engine, state: str) -> None:
    """Persist an OAuth state token and prune stale entries."""
    cutoff = datetime.now(UTC) - timedelta(seconds=OAUTH_STATE_TTL_SECONDS)
    with get_session(engine) as session:
        session.execute(delete(OAuthState).where(OAuthState.created_at < cutoff))
        session.add(OAuthState(state=state))


def _consume_oauth_state(engine, state: str) -> bool:
    """Consume a one-time OAuth state token if valid and unexpired."""
    cutoff = datetime.now(UTC) - timedelta(seconds=OAUTH_STATE_TTL_SECONDS)
    with get_session(engine) as session:
        session.execute(delete(OAuthState).where(OAuthState.created_at < cutoff))
        row = session.get(OAuthState, state)
        if row is None:
            return False
        session.delete(row)
        return True


# ---------------------------------------------------------------------------
# Slack identity
# ---------------------------------------------------------------------------
def _http_transport() -> httpx.AsyncBaseTransport:
    return httpx.AsyncHTTPTransport(retries=1)


def _split_real_name(real_name: str) -> tuple[str, str]:
    parts = (real_name or "").split()
    return (parts[0] if parts else ""), " ".join(parts[1:])


async def fetch_slack_profile(
    code: str,
    *,
    client_id: str,
    client_secret: str,
    redirect_uri: str,
    team_id: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> SlackProfile:
    """Exchange *code* and read the signed-in user's profile.

    Raises :class:`SlackAuthError` on any Slack-side failure or when
    *team_id* is set and the user belongs to another workspace.
    """
    async with httpx.AsyncClient(
        timeout=10, transport=transport or _http_transport()
    ) as client:
        token_resp = await client.post(
            f"{SLACK_API}/oauth.v2.access",
            data={
                "client_id": client_id,
                "client_secret": client_secret,
                "code": code,
                "redirect_uri": redirect_uri,
            },
        )
        token_data = token_resp.json() if token_resp.status_code == 200 else {}
        if not token_data.get("ok"):
            raise SlackAuthError(
                f"Slack OAuth failed: {token_data.get('error', token_resp.status_code)}"
            )

        authed_user = token_data.get("authed_user") or {}
        user_id = authed_user.get("id")
        access_token = authed_user.get("access_token")
        if not user_id or not access_token:
            raise SlackAuthError("Slack OAuth returned no user token")

        user_resp = await client.get(
            f"{SLACK_API}/users.info",
            params={"user": user_id},
            headers={"Authorization": f"Bearer {access_token}"},
        )
        user_data = user_resp.json() if user_resp.status_code == 200 else {}
        if not user_data.get("ok"):
            raise SlackAuthError(
                f"Failed to fetch user info: {user_data.get('error', user_resp.status_code)}"
            )

    user = user_data.get("user") or {}
    profile = user.get("profile") or {}
    user_team = user.get("team_id") or (token_data.get("team") or {}).get("id")
    if team_id and user_team != team_id:
        raise SlackAuthError(f"User belongs to workspace {user_team!r}")

    email = profile.get("email") or ""
    if not email:
        raise SlackAuthError("Slack profile has no email")

    real_first, real_last = _split_real_name(user.get("real_name") or "")
    return SlackProfile(
        external_id=user_id,
        email=email,
        first_name=profile.get("first_name") or real_first,
        last_name=profile.get("last_name") or real_last,
        team_id=user_team,
    )


def issue_token(member: MemberRecord, cfg: PixelConfig) -> str:
    payload = {
        "sub": member.id,
        "name": member.display_name,
        "email": member.email,
        "is_admin": member.is_admin,
        "pixel_delta": member.pixel_delta,
        "exp": datetime.now(UTC) + timedelta(hours=cfg.session_ttl_hours),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@router.get("/login")
async def login(engine=Depends(get_engine)):
    """Redirect to the Slack consent screen."""
    client_id, _, redirect_uri, _ = _oauth_env()

    state = secrets.token_urlsafe(32)
    await run_db(_store_oauth_state, engine, state)

    query = urlencode(
        {
            "client_id": client_id,
            "user_scope": SLACK_USER_SCOPE,
            "redirect_uri": redirect_uri,
            "state": state,
        }
    )
    return RedirectResponse(f"{SLACK_AUTHORIZE_URL}?{query}")


@router.get("/callback")
async def callback(
    code: str,
    state: str,
    cfg: PixelConfig = Depends(get_config),
    engine=Depends(get_engine),
):
    """Exchange the Slack code for a session JWT."""
    client_id, client_secret, redirect_uri, frontend_url = _oauth_env()

    if not await run_db(_consume_oauth_state, engine, state):
        raise HTTPException(400, "Invalid or expired OAuth state")

    try:
        profile = await fetch_slack_profile(
            code,
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=redirect_uri,
            team_id=cfg.slack_team_id,
        )
    except SlackAuthError as exc:
        logger.warning("Slack sign-in rejected: %s", exc)
        return RedirectResponse(f"{frontend_url}?auth_error=slack")

    member = await run_db(member_service.upsert_from_profile, engine, profile)
    token = issue_token(member, cfg)
    return RedirectResponse(f"{frontend_url}/auth/callback?token={token}")


@router.get("/me")
async def me(
    claims: dict = Depends(get_current_member),
    engine=Depends(get_engine),
):
    """Return the signed-in member, refreshed from the database."""
    member = await run_db(member_service.get_member, engine, claims["sub"])
    if member is None:
        raise HTTPException(404, "Member not found")
    return {
        "id": member.id,
        "name": member.display_name,
        "email": member.email,
        "is_admin": member.is_admin,
        "pixel_delta": member.pixel_delta,
    }
