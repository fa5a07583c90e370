"""session engine core tables

Revision ID: 0001_session_engine_core
Revises:
Create Date: 2026-10-19
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_session_engine_core"
down_revision = None
branch_labels = None
depends_on = None


JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _ts(name: str, nullable: bool = False, default: bool = True) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=nullable,
        server_default=sa.func.now() if default else None,
    )


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=256), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False, unique=True),
        sa.Column("phone_number", sa.String(length=32), nullable=True, unique=True),
        _ts("created_at"),
    )

    op.create_table(
        "organizations",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=256), nullable=False),
        sa.Column("default_join_mode", sa.String(length=16), nullable=False, server_default=sa.text("'open'")),
        sa.Column("join_form_schema", JSONType, nullable=True),
        _ts("created_at"),
    )

    op.create_table(
        "organization_members",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("organization_id", sa.Uuid(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role", sa.String(length=16), nullable=False, server_default=sa.text("'member'")),
        _ts("created_at"),
        sa.UniqueConstraint("organization_id", "user_id", name="uq_org_member"),
    )
    op.create_index("ix_org_member_user", "organization_members", ["user_id"])

    op.create_table(
        "activities",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("organization_id", sa.Uuid(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("join_mode", sa.String(length=32), nullable=False, server_default=sa.text("'open'")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("join_form_schema", JSONType, nullable=True),
        _ts("created_at"),
    )
    op.create_index("ix_activities_org", "activities", ["organization_id"])

    op.create_table(
        "activity_members",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("activity_id", sa.Uuid(), sa.ForeignKey("activities.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'active'")),
        _ts("created_at"),
        _ts("updated_at"),
        sa.UniqueConstraint("activity_id", "user_id", name="uq_activity_member"),
    )
    op.create_index("ix_activity_member_user", "activity_members", ["user_id"])

    op.create_table(
        "event_sessions",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("organization_id", sa.Uuid(), sa.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("activity_id", sa.Uuid(), sa.ForeignKey("activities.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("location", sa.String(length=500), nullable=True),
        sa.Column("date_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("max_capacity", sa.Integer(), nullable=False),
        sa.Column("max_waitlist", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("join_mode", sa.String(length=32), nullable=False, server_default=sa.text("'open'")),
        sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'draft'")),
        sa.Column("join_form_schema", JSONType, nullable=True),
        sa.Column("created_by", sa.Uuid(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
        _ts("deleted_at", nullable=True, default=False),
        sa.CheckConstraint("max_capacity >= 1", name="ck_event_sessions_capacity_positive"),
        sa.CheckConstraint("max_waitlist >= 0", name="ck_event_sessions_waitlist_nonnegative"),
    )
    op.create_index("ix_event_sessions_org", "event_sessions", ["organization_id"])
    op.create_index("ix_event_sessions_org_status", "event_sessions", ["organization_id", "status"])
    op.create_index("ix_event_sessions_activity", "event_sessions", ["activity_id"])
    op.create_index("ix_event_sessions_date", "event_sessions", ["date_time"])

    op.create_table(
        "participations",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("session_id", sa.Uuid(), sa.ForeignKey("event_sessions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'joined'")),
        sa.Column("attendance", sa.String(length=16), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("payment", sa.String(length=16), nullable=False, server_default=sa.text("'unpaid'")),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("form_answers", JSONType, nullable=True),
        sa.Column("attribute_overrides", JSONType, nullable=True),
        _ts("joined_at", default=False),
        _ts("cancelled_at", nullable=True, default=False),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_participations_session", "participations", ["session_id"])
    op.create_index("ix_participations_user", "participations", ["user_id"])
    op.create_index(
        "ix_participations_session_status_joined",
        "participations",
        ["session_id", "status", "joined_at"],
    )
    # at most one non-cancelled participation per (session, user)
    op.create_index(
        "uq_participations_active",
        "participations",
        ["session_id", "user_id"],
        unique=True,
        postgresql_where=sa.text("status <> 'cancelled'"),
        sqlite_where=sa.text("status <> 'cancelled'"),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("organization_id", sa.Uuid(), nullable=False),
        sa.Column("session_id", sa.Uuid(), nullable=True),
        sa.Column("participation_id", sa.Uuid(), nullable=True),
        sa.Column("actor_user_id", sa.Uuid(), nullable=True),
        sa.Column("action", sa.String(length=96), nullable=False),
        sa.Column("request_id", sa.String(length=128), nullable=True),
        sa.Column("details_json", JSONType, nullable=False),
        _ts("created_at"),
    )
    op.create_index("ix_audit_org_session", "audit_logs", ["organization_id", "session_id"])
    op.create_index("ix_audit_action", "audit_logs", ["action"])
    op.create_index("ix_audit_created_at", "audit_logs", ["created_at"])


def downgrade():
    op.drop_index("ix_audit_created_at", table_name="audit_logs")
    op.drop_index("ix_audit_action", table_name="audit_logs")
    op.drop_index("ix_audit_org_session", table_name="audit_logs")
    op.drop_table("audit_logs")

    op.drop_index("uq_participations_active", table_name="participations")
    op.drop_index("ix_participations_session_status_joined", table_name="participations")
    op.drop_index("ix_participations_user", table_name="participations")
    op.drop_index("ix_participations_session", table_name="participations")
    op.drop_table("participations")

    op.drop_index("ix_event_sessions_date", table_name="event_sessions")
    op.drop_index("ix_event_sessions_activity", table_name="event_sessions")
    op.drop_index("ix_event_sessions_org_status", table_name="event_sessions")
    op.drop_index("ix_event_sessions_org", table_name="event_sessions")
    op.drop_table("event_sessions")

    op.drop_index("ix_activity_member_user", table_name="activity_members")
    op.drop_table("activity_members")
    op.drop_index("ix_activities_org", table_name="activities")
    op.drop_table("activities")

    op.drop_index("ix_org_member_user", table_name="organization_members")
    op.drop_table("organization_members")
    op.drop_table("organizations")
    op.drop_table("users")
