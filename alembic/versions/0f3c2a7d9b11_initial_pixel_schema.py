"""Initial pixel schema: members, events, excused absences, activities

Revision ID: 0f3c2a7d9b11
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0f3c2a7d9b11"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create every table with its indexes."""
    op.create_table(
        "members",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("first_name", sa.String(100), nullable=False, server_default=""),
        sa.Column("last_name", sa.String(100), nullable=False, server_default=""),
        sa.Column("email", sa.String(254), nullable=False, server_default=""),
        sa.Column("slack_id", sa.String(64), nullable=True),
        sa.Column("slack_email", sa.String(254), nullable=True),
        sa.Column("is_admin", sa.Boolean(), nullable=True),
        sa.Column("pixel_delta", sa.Integer(), nullable=True),
        sa.Column("pixeldelta", sa.Integer(), nullable=True),
        sa.Column("pixel_cached", sa.Integer(), nullable=True),
        sa.Column("pixels", sa.Integer(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column("last_login", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_members_email", "members", ["email"])
    op.create_index("ix_members_slack_id", "members", ["slack_id"])
    op.create_index("ix_members_pixel_cached", "members", ["pixel_cached"])

    op.create_table(
        "events",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("type", sa.String(30), nullable=False),
        sa.Column("pixels", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("semester_id", sa.String(64), nullable=True),
    )
    op.create_index("ix_events_semester_date", "events", ["semester_id", "date"])

    op.create_table(
        "event_attendees",
        sa.Column(
            "event_id",
            sa.String(64),
            sa.ForeignKey("events.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("member_id", sa.String(64), primary_key=True),
    )
    op.create_index("ix_event_attendees_member", "event_attendees", ["member_id"])

    op.create_table(
        "excused_absences",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column(
            "event_id",
            sa.String(64),
            sa.ForeignKey("events.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "ix_excused_absences_user_status", "excused_absences", ["user_id", "status"]
    )
    op.create_index("ix_excused_absences_event", "excused_absences", ["event_id"])

    op.create_table(
        "activities",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("type", sa.String(30), nullable=False, server_default="other"),
        sa.Column("pixels", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("semester_id", sa.String(64), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_activities_semester_name", "activities", ["semester_id", "name"])

    op.create_table(
        "activity_multipliers",
        sa.Column(
            "activity_id",
            sa.String(64),
            sa.ForeignKey("activities.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("member_id", sa.String(64), primary_key=True),
        sa.Column("multiplier", sa.Integer(), nullable=False, server_default="1"),
    )
    op.create_index(
        "ix_activity_multipliers_member", "activity_multipliers", ["member_id"]
    )

    op.create_table(
        "settings",
        sa.Column("key", sa.String(100), primary_key=True),
        sa.Column("value_json", sa.Text(), nullable=False),
        sa.Column("category", sa.String(50), nullable=False, server_default="general"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_settings_category", "settings", ["category"])

    op.create_table(
        "admin_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("actor_id", sa.String(64), nullable=False),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("target_table", sa.String(50), nullable=False),
        sa.Column("target_id", sa.String(100), nullable=True),
        sa.Column("before_snapshot", postgresql.JSONB(), nullable=True),
        sa.Column("after_snapshot", postgresql.JSONB(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column(
            "timestamp",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_admin_log_actor_time", "admin_log", ["actor_id", "timestamp"])
    op.create_index(
        "ix_admin_log_target", "admin_log", ["target_table", "target_id", "timestamp"]
    )

    op.create_table(
        "oauth_states",
        sa.Column("state", sa.String(128), primary_key=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_oauth_states_created_at", "oauth_states", ["created_at"])


def downgrade() -> None:
    """Drop every table, children first."""
    for table in (
        "oauth_states",
        "admin_log",
        "settings",
        "activity_multipliers",
        "activities",
        "excused_absences",
        "event_attendees",
        "events",
        "members",
    ):
        op.drop_table(table)
