"""
PixelTrack — Attendance & Rewards Tracker for Student Organizations
====================================================================
Members earn "pixels" by attending events and taking part in
multiplier-weighted activities.  Admins manage events, members, excused
absences and settings; a dashboard shows each member's total and a
leaderboard.

Package layout::

    pixeltrack/
    ├── config.py          # YAML → typed Python config
    ├── __main__.py        # CLI: import legacy export, recalc all members
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # ORM models (members, events, activities, …)
    │   └── seed.py        # Default settings seeder
    ├── engine/
    │   ├── attendance.py  # Attendance Resolver (pure)
    │   ├── activities.py  # Activity Accumulator (pure)
    │   ├── aggregate.py   # Pixel breakdown pipeline (pure)
    │   ├── schema.py      # Legacy field adapter → canonical MemberRecord
    │   └── triggers.py    # Recomputation Trigger Router + fan-out
    ├── services/
    │   ├── pixel_service.py     # Excused index + Pixel Aggregator
    │   ├── settings_service.py  # Global settings accessor + writes
    │   ├── admin_service.py     # Audited admin mutations
    │   ├── member_service.py    # Login upsert, lookup, merge
    │   ├── dashboard_service.py # Pixel log, activities, leaderboard
    │   └── import_service.py    # Legacy document export import
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # JWT + engine dependencies
        ├── auth.py        # Slack OAuth2 → JWT
        └── routes/        # Dashboard + admin REST endpoints
"""

__version__ = "0.1.0"
