"""
pixeltrack.services.settings_service — Global Settings Access
==============================================================

Typed read/write access to the ``settings`` table.

Reads go through :class:`GlobalSettings`, a narrow accessor the aggregator
and dashboard receive instead of touching the table themselves.  Writes are
audited in ``admin_log`` like every other admin mutation.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from pixeltrack.database.models import AdminLog, Setting
from pixeltrack.database.seed import CURRENT_SEMESTER_KEY, LEADERBOARD_KEY

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_setting_value(session: Session, key: str, default=None):
    """Read a single setting's parsed value from an existing session.

    Returns the JSON-decoded value, or *default* when the key does not
    exist.  Invalid JSON is returned as the raw string.
    """
    row = session.get(Setting, key)
    if row is None:
        return default
    try:
        return json.loads(row.value_json)
    except (json.JSONDecodeError, TypeError):
        return row.value_json


class GlobalSettings:
    """Read-only view of the ``global`` switches.

    Usage::

        with Session(engine) as session:
            semester = GlobalSettings(session).active_semester()
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def active_semester(self) -> str | None:
        """The semester that scopes aggregation, or ``None`` when unset."""
        value = get_setting_value(self._session, CURRENT_SEMESTER_KEY)
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    def leaderboard_enabled(self) -> bool:
        return bool(get_setting_value(self._session, LEADERBOARD_KEY, False))


def get_all_settings(engine) -> list[Setting]:
    """Fetch every setting row, ordered by category then key."""
    with Session(engine) as session:
        rows = session.scalars(
            select(Setting).order_by(Setting.category, Setting.key)
        ).all()
        for r in rows:
            session.expunge(r)
        return list(rows)


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------
def upsert_setting(
    engine,
    *,
    key: str,
    value: Any,
    actor_id: str | None = None,
    category: str = "global",
) -> Setting:
    """Insert or update a single setting, recording the change when
    *actor_id* is provided."""
    value_json = json.dumps(value)
    with Session(engine, expire_on_commit=False) as session:
        existing = session.get(Setting, key)
        before = None
        if existing is not None:
            before = {"key": key, "value": get_setting_value(session, key)}
            existing.value_json = value_json
        else:
            existing = Setting(key=key, value_json=value_json, category=category)
            session.add(existing)

        after = {"key": key, "value": value}
        if actor_id is not None and before != after:
            session.add(AdminLog(
                actor_id=actor_id,
                action_type="UPDATE" if before else "CREATE",
                target_table="settings",
                target_id=key,
                before_snapshot=before,
                after_snapshot=after,
            ))
        session.commit()

    logger.info("Setting %s updated", key)
    return existing


def set_current_semester(engine, semester_id: str | None, *, actor_id: str) -> str | None:
    """Select the semester that scopes aggregation.  Blank clears it."""
    cleaned = (semester_id or "").strip() or None
    upsert_setting(engine, key=CURRENT_SEMESTER_KEY, value=cleaned, actor_id=actor_id)
    return cleaned


def set_leaderboard_enabled(engine, enabled: bool, *, actor_id: str) -> bool:
    upsert_setting(engine, key=LEADERBOARD_KEY, value=bool(enabled), actor_id=actor_id)
    return bool(enabled)
