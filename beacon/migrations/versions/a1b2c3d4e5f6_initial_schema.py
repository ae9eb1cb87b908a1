"""Initial schema: schedules, overrides, escalation, targets, ledger, inbox.

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision = "a1b2c3d4e5f6"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    # ── On-call schedules ─────────────────────────────────
    op.create_table(
        "oncall_schedules",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("owner_id", UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("timezone", sa.String(100), nullable=False, server_default="UTC"),
        sa.Column(
            "rotation_interval_days", sa.Integer, nullable=False, server_default="1"
        ),
        sa.Column("current_index", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "anchor_date", sa.Date, nullable=False, server_default=sa.func.current_date()
        ),
        sa.Column("last_rotated_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_oncall_schedules_owner", "oncall_schedules", ["owner_id"])

    op.create_table(
        "oncall_members",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "schedule_id",
            UUID(as_uuid=True),
            sa.ForeignKey("oncall_schedules.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", UUID(as_uuid=True), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("position", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("schedule_id", "position", name="uq_oncall_members_position"),
    )

    # ── Day overrides ─────────────────────────────────────
    op.create_table(
        "oncall_overrides",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "schedule_id",
            UUID(as_uuid=True),
            sa.ForeignKey("oncall_schedules.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("override_date", sa.Date, nullable=False),
        sa.Column(
            "member_id",
            UUID(as_uuid=True),
            sa.ForeignKey("oncall_members.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("reason", sa.Text, nullable=True),
        sa.Column("created_by", sa.String(255), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint(
            "schedule_id", "override_date", name="uq_oncall_overrides_schedule_date"
        ),
    )
    op.create_index("idx_oncall_overrides_member", "oncall_overrides", ["member_id"])

    # ── Escalation policies & levels ──────────────────────
    op.create_table(
        "escalation_policies",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("owner_id", UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("repeat_count", sa.Integer, nullable=False, server_default="0"),
        *_timestamps(),
    )

    op.create_table(
        "escalation_levels",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "policy_id",
            UUID(as_uuid=True),
            sa.ForeignKey("escalation_policies.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("level_order", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "notify_method",
            sa.Enum("in_app", "email", "webhook", "sms", name="notifymethod"),
            nullable=False,
            server_default="in_app",
        ),
        sa.Column("timeout_minutes", sa.Integer, nullable=False, server_default="15"),
        sa.Column(
            "schedule_id",
            UUID(as_uuid=True),
            sa.ForeignKey("oncall_schedules.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("contact_name", sa.String(255), nullable=True),
        sa.Column("contact_address", sa.String(255), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("policy_id", "level_order", name="uq_escalation_levels_order"),
    )

    # ── Escalation runs ───────────────────────────────────
    op.create_table(
        "escalation_runs",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "policy_id",
            UUID(as_uuid=True),
            sa.ForeignKey("escalation_policies.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("reference_id", sa.String(255), nullable=False),
        sa.Column("title", sa.String(500), nullable=True),
        sa.Column("severity", sa.String(20), nullable=False, server_default="warning"),
        sa.Column(
            "status",
            sa.Enum("active", "acknowledged", "exhausted", name="runstatus"),
            nullable=False,
            server_default="active",
        ),
        sa.Column("level_index", sa.Integer, nullable=False, server_default="0"),
        sa.Column("cycles_remaining", sa.Integer, nullable=False, server_default="0"),
        sa.Column("level_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("acknowledged_by", sa.String(255), nullable=True),
        sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_escalation_runs_status", "escalation_runs", ["status"])
    op.create_index("idx_escalation_runs_reference", "escalation_runs", ["reference_id"])

    # ── Notification targets & delivery ledger ────────────
    op.create_table(
        "notification_targets",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("owner_id", UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("url", sa.Text, nullable=False),
        sa.Column("enabled", sa.Boolean, nullable=True, server_default="true"),
        sa.Column(
            "events",
            JSONB,
            nullable=True,
            server_default=sa.text("""'["alert", "prediction", "incident"]'::jsonb"""),
        ),
        sa.Column("secret", sa.String(255), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "idx_notification_targets_owner", "notification_targets", ["owner_id", "enabled"]
    )
    op.create_index(
        "idx_notification_targets_events",
        "notification_targets",
        ["events"],
        postgresql_using="gin",
    )

    op.create_table(
        "delivery_attempts",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "target_id",
            UUID(as_uuid=True),
            sa.ForeignKey("notification_targets.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("owner_id", UUID(as_uuid=True), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("payload", JSONB, nullable=True, server_default=sa.text("'{}'::jsonb")),
        sa.Column("attempt", sa.Integer, nullable=False, server_default="1"),
        sa.Column("status_code", sa.Integer, nullable=True),
        sa.Column("success", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "idx_delivery_attempts_owner_created", "delivery_attempts", ["owner_id", "created_at"]
    )
    op.create_index("idx_delivery_attempts_target", "delivery_attempts", ["target_id"])

    # ── In-app notifications ──────────────────────────────
    op.create_table(
        "notifications",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("owner_id", UUID(as_uuid=True), nullable=False),
        sa.Column("type", sa.String(50), nullable=False, server_default="alert"),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("message", sa.Text, nullable=True),
        sa.Column("severity", sa.String(20), nullable=False, server_default="info"),
        sa.Column("read", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("metadata", JSONB, nullable=True, server_default=sa.text("'{}'::jsonb")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_notifications_owner_read", "notifications", ["owner_id", "read"])


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_table("delivery_attempts")
    op.drop_table("notification_targets")
    op.drop_table("escalation_runs")
    op.drop_table("escalation_levels")
    op.drop_table("escalation_policies")
    op.drop_table("oncall_overrides")
    op.drop_table("oncall_members")
    op.drop_table("oncall_schedules")
    op.execute("DROP TYPE IF EXISTS runstatus")
    op.execute("DROP TYPE IF EXISTS notifymethod")
