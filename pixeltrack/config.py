"""
pixeltrack.config — YAML Configuration Loader
==============================================

**Why this file exists:**
This module reads ``config.yaml`` for **infrastructure-only** settings
(organization identity, dashboard port, Slack workspace restriction,
session lifetime).  Runtime switches such as the active semester and the
leaderboard toggle live in the ``settings`` database table, editable from
the Admin dashboard.

Usage::

    from pixeltrack.config import load_config

    cfg = load_config()              # reads ./config.yaml by default
    print(cfg.organization_name)     # "UMD Pixels"
    print(cfg.slack_team_id)         # "T0123456" or None
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml


# ---------------------------------------------------------------------------
# Typed settings object — infrastructure/identity only.
# Semester and leaderboard switches live in the DB ``settings`` table.
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class PixelConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    organization_name: str

    # Dashboard
    dashboard_port: int

    # Slack workspace restriction; logins from other teams are rejected
    slack_team_id: str | None = None

    # Lifetime of issued session JWTs
    session_ttl_hours: int = 12


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> PixelConfig:
    """Read *path* and return a :class:`PixelConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    return PixelConfig(
        organization_name=raw["organization_name"],
        dashboard_port=int(raw["dashboard_port"]),
        slack_team_id=(str(raw["slack_team_id"]) if raw.get("slack_team_id") else None),
        session_ttl_hours=int(raw.get("session_ttl_hours", 12)),
    )
