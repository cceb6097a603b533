"""Initial schema: members, class sessions, entitlement sources, bookings, booking events.

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # Members (owned by the member platform, read here for rosters)
    op.create_table(
        "members",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_members_id", "members", ["id"])
    op.create_index("ix_members_email", "members", ["email"], unique=True)

    # Class sessions with denormalised counters
    op.create_table(
        "class_sessions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("class_type_id", sa.Integer(), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=False),
        sa.Column("instructor_id", sa.Integer(), nullable=True),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column("booked_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("waitlist_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'SCHEDULED'")),
        sa.Column("cancellation_reason", sa.String(500), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.CheckConstraint("capacity >= 0", name="check_session_capacity_non_negative"),
        sa.CheckConstraint("booked_count >= 0", name="check_session_booked_non_negative"),
        # Last line of defence against overbooking
        sa.CheckConstraint("booked_count <= capacity", name="check_session_booked_lte_capacity"),
        sa.CheckConstraint("waitlist_count >= 0", name="check_session_waitlist_non_negative"),
        sa.CheckConstraint("ends_at > starts_at", name="check_session_ends_after_start"),
        sa.CheckConstraint(
            "status IN ('SCHEDULED', 'IN_PROGRESS', 'COMPLETED', 'CANCELLED')",
            name="check_session_status",
        ),
    )
    op.create_index("ix_class_sessions_id", "class_sessions", ["id"])
    op.create_index("ix_class_sessions_starts_at", "class_sessions", ["starts_at"])
    # Completion sweep: WHERE status IN (...) AND ends_at <= now
    op.create_index("ix_class_sessions_status_ends_at", "class_sessions", ["status", "ends_at"])

    # Entitlement sources (single-table: UNLIMITED | CREDIT_PACK)
    op.create_table(
        "entitlement_sources",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("member_id", sa.Integer(), sa.ForeignKey("members.id"), nullable=False),
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column("name", sa.String(255), nullable=False, server_default=sa.text("''")),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'ACTIVE'")),
        sa.Column("valid_location_ids", postgresql.ARRAY(sa.Integer()), nullable=False, server_default="{}"),
        sa.Column("valid_class_type_ids", postgresql.ARRAY(sa.Integer()), nullable=False, server_default="{}"),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("credits_remaining", sa.Integer(), nullable=True),
        sa.Column("credits_used", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("kind IN ('UNLIMITED', 'CREDIT_PACK')", name="check_entitlement_kind"),
        sa.CheckConstraint("status IN ('ACTIVE', 'EXHAUSTED', 'CANCELLED')", name="check_entitlement_status"),
        sa.CheckConstraint(
            "credits_remaining IS NULL OR credits_remaining >= 0",
            name="check_entitlement_credits_non_negative",
        ),
        sa.CheckConstraint(
            "credits_used IS NULL OR credits_used >= 0",
            name="check_entitlement_credits_used_non_negative",
        ),
    )
    op.create_index("ix_entitlement_sources_id", "entitlement_sources", ["id"])
    op.create_index("ix_entitlement_sources_member_id", "entitlement_sources", ["member_id"])
    op.create_index("ix_entitlement_sources_member_status", "entitlement_sources", ["member_id", "status"])

    # Bookings: one row per (member, session), reopened after cancellation
    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("member_id", sa.Integer(), sa.ForeignKey("members.id"), nullable=False),
        sa.Column("class_session_id", sa.Integer(), sa.ForeignKey("class_sessions.id"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("waitlist_position", sa.Integer(), nullable=True),
        sa.Column("credit_source_id", sa.Integer(), sa.ForeignKey("entitlement_sources.id"), nullable=True),
        sa.Column("booked_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("checked_in_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("check_in_method", sa.String(20), nullable=True),
        sa.Column("promoted_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("member_id", "class_session_id", name="uq_member_session_booking"),
        sa.CheckConstraint(
            "status IN ('BOOKED', 'WAITLISTED', 'CHECKED_IN', 'NO_SHOW', 'CANCELLED')",
            name="check_booking_status",
        ),
        sa.CheckConstraint(
            "(status = 'WAITLISTED' AND waitlist_position IS NOT NULL AND waitlist_position >= 1)"
            " OR (status <> 'WAITLISTED' AND waitlist_position IS NULL)",
            name="check_booking_waitlist_position",
        ),
    )
    op.create_index("ix_bookings_id", "bookings", ["id"])
    op.create_index("ix_bookings_member_id", "bookings", ["member_id"])
    op.create_index("ix_bookings_class_session_id", "bookings", ["class_session_id"])
    op.create_index("ix_bookings_session_status", "bookings", ["class_session_id", "status"])

    # Append-only transition log
    op.create_table(
        "booking_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("class_session_id", sa.Integer(), sa.ForeignKey("class_sessions.id"), nullable=False),
        sa.Column("member_id", sa.Integer(), sa.ForeignKey("members.id"), nullable=False),
        sa.Column("event_type", sa.String(30), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("details", sa.JSON(), nullable=False),
    )
    op.create_index("ix_booking_events_id", "booking_events", ["id"])
    op.create_index("ix_booking_events_booking_id", "booking_events", ["booking_id"])
    op.create_index(
        "ix_booking_events_session_occurred", "booking_events", ["class_session_id", "occurred_at"]
    )


def downgrade() -> None:
    op.drop_table("booking_events")
    op.drop_table("bookings")
    op.drop_table("entitlement_sources")
    op.drop_table("class_sessions")
    op.drop_table("members")
