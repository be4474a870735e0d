"""
pixeltrack.database.models — SQLAlchemy 2.0 Data Models
========================================================

Tables:
- members              — One row per member (Slack user ID as PK)
- events               — Attendance-tracked events, scoped by semester
- event_attendees      — Attendee set per event (no duplicates by PK)
- excused_absences     — Absence requests, children of one event
- activities           — Multiplier-weighted activities, scoped by semester
- activity_multipliers — Per-member multiplier per activity
- settings             — Admin-configurable key-value store
- admin_log            — Append-only audit trail
- oauth_states         — One-time CSRF tokens for the Slack callback

Members keep their legacy columns (``pixeldelta``, ``pixels``,
``slack_email``) so imported documents round-trip without loss.  Business
code never reads them directly; see :mod:`pixeltrack.engine.schema`.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def new_id() -> str:
    """Document-style random identifier."""
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all PixelTrack ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class EventType(enum.StrEnum):
    """Kinds of events admins can create."""
    GBM = "GBM"
    OTHER_MANDATORY = "other_mandatory"
    SPONSOR_EVENT = "sponsor_event"
    OTHER_PROF_DEV = "other_prof_dev"
    SOCIAL = "social"
    OTHER_OPTIONAL = "other_optional"
    PIXEL_ACTIVITY = "pixel_activity"
    SPECIAL = "special"


MANDATORY_EVENT_TYPES: frozenset[str] = frozenset({
    EventType.GBM.value,
    EventType.OTHER_MANDATORY.value,
})


class ExcusedStatus(enum.StrEnum):
    """Lifecycle of an excused-absence request.  Only APPROVED counts."""
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    REJECTED = "rejected"


class ActivityType(enum.StrEnum):
    COFFEE_CHAT = "coffee_chat"
    BONDING = "bonding"
    OTHER = "other"


# ---------------------------------------------------------------------------
# Members — one row per Slack identity
# ---------------------------------------------------------------------------
class Member(Base):
    __tablename__ = "members"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    email: Mapped[str] = mapped_column(String(254), nullable=False, default="")
    slack_id: Mapped[str | None] = mapped_column(String(64), default=None)
    slack_email: Mapped[str | None] = mapped_column(String(254), default=None)  # legacy
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False)

    # Manual adjustment: canonical column plus the legacy lowercase casing
    pixel_delta: Mapped[int | None] = mapped_column(Integer, default=None)
    pixeldelta: Mapped[int | None] = mapped_column(Integer, default=None)

    # Cached aggregate: canonical column plus the legacy mirror
    pixel_cached: Mapped[int | None] = mapped_column(Integer, default=None)
    pixels: Mapped[int | None] = mapped_column(Integer, default=None)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    last_login: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )

    __table_args__ = (
        Index("ix_members_email", "email"),
        Index("ix_members_slack_id", "slack_id"),
        Index("ix_members_pixel_cached", "pixel_cached"),
    )

    def __repr__(self) -> str:
        return f"<Member id={self.id!r} email={self.email!r}>"


# ---------------------------------------------------------------------------
# Events — attendance-tracked, scoped to a semester
# ---------------------------------------------------------------------------
class Event(Base):
    __tablename__ = "events"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    type: Mapped[str] = mapped_column(String(30), nullable=False, default=EventType.GBM.value)
    pixels: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    semester_id: Mapped[str | None] = mapped_column(String(64), default=None)

    attendees: Mapped[list[EventAttendee]] = relationship(
        back_populates="event", cascade="all, delete-orphan"
    )
    excused_absences: Mapped[list[ExcusedAbsence]] = relationship(
        back_populates="event", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_events_semester_date", "semester_id", "date"),
    )

    @property
    def attendee_ids(self) -> list[str]:
        return sorted(a.member_id for a in self.attendees)

    def __repr__(self) -> str:
        return f"<Event id={self.id!r} name={self.name!r} type={self.type!r}>"


class EventAttendee(Base):
    """Attendee set entry.  No FK to members: IDs may outlive their member."""
    __tablename__ = "event_attendees"

    event_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("events.id", ondelete="CASCADE"), primary_key=True
    )
    member_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    event: Mapped[Event] = relationship(back_populates="attendees")

    __table_args__ = (
        Index("ix_event_attendees_member", "member_id"),
    )

    def __repr__(self) -> str:
        return f"<EventAttendee event={self.event_id!r} member={self.member_id!r}>"


# ---------------------------------------------------------------------------
# ExcusedAbsence — child of exactly one event
# ---------------------------------------------------------------------------
class ExcusedAbsence(Base):
    __tablename__ = "excused_absences"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    event_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ExcusedStatus.PENDING.value
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    event: Mapped[Event] = relationship(back_populates="excused_absences")

    __table_args__ = (
        Index("ix_excused_absences_user_status", "user_id", "status"),
        Index("ix_excused_absences_event", "event_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<ExcusedAbsence id={self.id!r} event={self.event_id!r} "
            f"user={self.user_id!r} status={self.status!r}>"
        )


# ---------------------------------------------------------------------------
# Activities — multiplier-weighted, scoped to a semester
# ---------------------------------------------------------------------------
class Activity(Base):
    __tablename__ = "activities"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[str] = mapped_column(
        String(30), nullable=False, default=ActivityType.OTHER.value
    )
    pixels: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    semester_id: Mapped[str | None] = mapped_column(String(64), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    multipliers: Mapped[list[ActivityMultiplier]] = relationship(
        back_populates="activity", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_activities_semester_name", "semester_id", "name"),
    )

    @property
    def multiplier_map(self) -> dict[str, int]:
        return {m.member_id: m.multiplier for m in self.multipliers}

    def __repr__(self) -> str:
        return f"<Activity id={self.id!r} name={self.name!r} pixels={self.pixels}>"


class ActivityMultiplier(Base):
    """One member's weight on one activity.  Absent row = not participating."""
    __tablename__ = "activity_multipliers"

    activity_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("activities.id", ondelete="CASCADE"), primary_key=True
    )
    member_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    multiplier: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    activity: Mapped[Activity] = relationship(back_populates="multipliers")

    __table_args__ = (
        Index("ix_activity_multipliers_member", "member_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<ActivityMultiplier activity={self.activity_id!r} "
            f"member={self.member_id!r} x{self.multiplier}>"
        )


# ---------------------------------------------------------------------------
# Setting — admin-configurable key-value store
# ---------------------------------------------------------------------------
class Setting(Base):
    """Key-value configuration store.

    Holds the ``global`` switches (active semester, leaderboard toggle).
    Values are stored as JSON strings; typed accessors live in
    :class:`~pixeltrack.services.settings_service.GlobalSettings`.
    """
    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value_json: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="general")
    description: Mapped[str | None] = mapped_column(Text, default=None)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_settings_category", "category"),
    )

    def __repr__(self) -> str:
        return f"<Setting key={self.key!r} category={self.category!r}>"


# ---------------------------------------------------------------------------
# AdminLog — append-only audit trail
# ---------------------------------------------------------------------------
class AdminLog(Base):
    __tablename__ = "admin_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_table: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    before_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_log_actor_time", "actor_id", "timestamp"),
        Index("ix_admin_log_target", "target_table", "target_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminLog id={self.id} actor={self.actor_id!r} action={self.action_type}>"


# ---------------------------------------------------------------------------
# OAuthState — one-time CSRF tokens for OAuth callback validation
# ---------------------------------------------------------------------------
class OAuthState(Base):
    __tablename__ = "oauth_states"

    state: Mapped[str] = mapped_column(String(128), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_oauth_states_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<OAuthState state={self.state[:8]!r}...>"
