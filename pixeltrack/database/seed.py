"""
pixeltrack.database.seed — Default Settings Seeder
===================================================

Creates the ``global`` settings rows on first startup.  The active semester
starts unset on purpose: until an admin picks one, recomputation is skipped
rather than zeroing every member's total.

Idempotent — only inserts keys that don't already exist.
"""

from __future__ import annotations

import json
import logging

from sqlalchemy import Engine
from sqlalchemy.orm import Session

from pixeltrack.database.models import Setting

logger = logging.getLogger(__name__)

CURRENT_SEMESTER_KEY = "current_semester_id"
LEADERBOARD_KEY = "is_leadership_on"

# ---------------------------------------------------------------------------
# Default settings catalogue
# ---------------------------------------------------------------------------
DEFAULT_SETTINGS: dict[str, tuple[object, str, str]] = {
    CURRENT_SEMESTER_KEY: (
        None, "global", "Semester whose events and activities count toward totals",
    ),
    LEADERBOARD_KEY: (False, "global", "Show the leaderboard on member dashboards"),
}
"""Each entry maps ``key`` → ``(default_value, category, description)``."""


def seed_default_settings(engine: Engine) -> None:
    """Insert default settings that don't yet exist."""
    session = Session(engine)
    inserted = 0
    try:
        for key, (value, category, desc) in DEFAULT_SETTINGS.items():
            if session.get(Setting, key) is None:
                session.add(Setting(
                    key=key,
                    value_json=json.dumps(value),
                    category=category,
                    description=desc,
                ))
                inserted += 1
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    if inserted:
        logger.info("Seeded %d default settings.", inserted)
