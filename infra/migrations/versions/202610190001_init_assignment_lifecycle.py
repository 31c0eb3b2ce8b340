"""init asset and assignment lifecycle tables

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610190001"
down_revision = None
branch_labels = None
depends_on = None

OPEN_ASSIGNMENT_STATUS_SQL = "status IN ('ACTIVE', 'PENDING_ACCEPTANCE', 'RETURN_REJECTED', 'RETURN_REQUESTED')"


def upgrade() -> None:
    op.create_table(
        "events",
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("correlation_id", sa.String(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("event_id"),
    )
    op.create_index("ix_events_event_type", "events", ["event_type"])
    op.create_index("ix_events_ts", "events", ["ts"])
    op.create_index("ix_events_actor_id", "events", ["actor_id"])
    op.create_index("ix_events_correlation_id", "events", ["correlation_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("resource", sa.String(), nullable=False),
        sa.Column("method", sa.String(), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("detail", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"])
    op.create_index("ix_audit_logs_ts", "audit_logs", ["ts"])

    op.create_table(
        "assets",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("asset_tag", sa.String(), nullable=False),
        sa.Column("asset_type", sa.String(length=32), nullable=False),
        sa.Column("brand", sa.String(), nullable=False),
        sa.Column("model", sa.String(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("location", sa.String(), nullable=False),
        sa.Column("department", sa.String(), nullable=True),
        sa.Column("serial_number", sa.String(), nullable=True),
        sa.Column("imei_no", sa.String(), nullable=True),
        sa.Column("specifications", sa.String(), nullable=True),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_assets_asset_tag", "assets", ["asset_tag"], unique=True)
    op.create_index("ix_assets_asset_type", "assets", ["asset_type"])
    op.create_index("ix_assets_status", "assets", ["status"])
    op.create_index("ix_assets_department", "assets", ["department"])
    op.create_index("ix_assets_serial_number", "assets", ["serial_number"])
    op.create_index("ix_assets_created_at", "assets", ["created_at"])
    op.create_index("ix_assets_updated_at", "assets", ["updated_at"])

    op.create_table(
        "assignments",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("asset_id", sa.Integer(), nullable=False),
        sa.Column("target_type", sa.String(length=20), nullable=False),
        sa.Column("staff_id", sa.String(), nullable=True),
        sa.Column("receiver_user_id", sa.String(), nullable=True),
        sa.Column("location", sa.String(), nullable=True),
        sa.Column("department", sa.String(), nullable=True),
        sa.Column("assigned_by", sa.String(), nullable=False),
        sa.Column("assigned_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("terms_version", sa.String(length=20), nullable=True),
        sa.Column("terms_accepted", sa.Boolean(), nullable=False),
        sa.Column("terms_accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("accepted_by_user_id", sa.String(), nullable=True),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refused_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refused_reason", sa.String(length=255), nullable=True),
        sa.Column("return_requested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("return_requested_by_user_id", sa.String(), nullable=True),
        sa.Column("return_approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("return_approved_by_admin_id", sa.String(), nullable=True),
        sa.Column("return_rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("return_rejected_reason", sa.String(length=255), nullable=True),
        sa.Column("reverted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reverted_by_user_id", sa.String(), nullable=True),
        sa.Column("revert_reason", sa.String(length=500), nullable=True),
        sa.Column("issue_condition", sa.JSON(), nullable=True),
        sa.Column("return_condition", sa.JSON(), nullable=True),
        sa.Column("accessories_issued", sa.JSON(), nullable=True),
        sa.Column("accessories_returned", sa.JSON(), nullable=True),
        sa.Column("returned_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["asset_id"], ["assets.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_assignments_asset_id", "assignments", ["asset_id"])
    op.create_index("ix_assignments_staff_id", "assignments", ["staff_id"])
    op.create_index("ix_assignments_receiver_user_id", "assignments", ["receiver_user_id"])
    op.create_index("ix_assignments_assigned_by", "assignments", ["assigned_by"])
    op.create_index("ix_assignments_status", "assignments", ["status"])
    op.create_index("ix_assignments_reverted_by_user_id", "assignments", ["reverted_by_user_id"])
    op.create_index("ix_assignments_created_at", "assignments", ["created_at"])
    op.create_index("ix_assignments_updated_at", "assignments", ["updated_at"])
    op.create_index(
        "ix_assignments_asset_recency",
        "assignments",
        ["asset_id", "assigned_date", "created_at"],
    )
    op.create_index(
        "uq_assignments_open_asset",
        "assignments",
        ["asset_id"],
        unique=True,
        postgresql_where=sa.text(OPEN_ASSIGNMENT_STATUS_SQL),
        sqlite_where=sa.text(OPEN_ASSIGNMENT_STATUS_SQL),
    )

    op.create_table(
        "asset_activity_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(length=50), nullable=False),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("message", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_asset_activity_logs_created_at", "asset_activity_logs", ["created_at"])
    op.create_index("ix_asset_activity_entity", "asset_activity_logs", ["entity_type", "entity_id"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("recipient_user_id", sa.String(), nullable=False),
        sa.Column("title", sa.String(length=120), nullable=False),
        sa.Column("type", sa.String(length=50), nullable=False),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("message", sa.String(length=255), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "recipient_user_id",
            "type",
            "entity_type",
            "entity_id",
            name="uq_notifications_recipient_type_entity",
        ),
    )
    op.create_index("ix_notifications_recipient_user_id", "notifications", ["recipient_user_id"])
    op.create_index("ix_notifications_created_at", "notifications", ["created_at"])
    op.create_index("ix_notifications_recipient_unread", "notifications", ["recipient_user_id", "is_read"])
    op.create_index("ix_notifications_entity", "notifications", ["entity_type", "entity_id"])


def downgrade() -> None:
    op.drop_index("ix_notifications_entity", table_name="notifications")
    op.drop_index("ix_notifications_recipient_unread", table_name="notifications")
    op.drop_index("ix_notifications_created_at", table_name="notifications")
    op.drop_index("ix_notifications_recipient_user_id", table_name="notifications")
    op.drop_table("notifications")

    op.drop_index("ix_asset_activity_entity", table_name="asset_activity_logs")
    op.drop_index("ix_asset_activity_logs_created_at", table_name="asset_activity_logs")
    op.drop_table("asset_activity_logs")

    op.drop_index("uq_assignments_open_asset", table_name="assignments")
    op.drop_index("ix_assignments_asset_recency", table_name="assignments")
    op.drop_index("ix_assignments_updated_at", table_name="assignments")
    op.drop_index("ix_assignments_created_at", table_name="assignments")
    op.drop_index("ix_assignments_reverted_by_user_id", table_name="assignments")
    op.drop_index("ix_assignments_status", table_name="assignments")
    op.drop_index("ix_assignments_assigned_by", table_name="assignments")
    op.drop_index("ix_assignments_receiver_user_id", table_name="assignments")
    op.drop_index("ix_assignments_staff_id", table_name="assignments")
    op.drop_index("ix_assignments_asset_id", table_name="assignments")
    op.drop_table("assignments")

    op.drop_index("ix_assets_updated_at", table_name="assets")
    op.drop_index("ix_assets_created_at", table_name="assets")
    op.drop_index("ix_assets_serial_number", table_name="assets")
    op.drop_index("ix_assets_department", table_name="assets")
    op.drop_index("ix_assets_status", table_name="assets")
    op.drop_index("ix_assets_asset_type", table_name="assets")
    op.drop_index("ix_assets_asset_tag", table_name="assets")
    op.drop_table("assets")

    op.drop_index("ix_audit_logs_ts", table_name="audit_logs")
    op.drop_index("ix_audit_logs_actor_id", table_name="audit_logs")
    op.drop_table("audit_logs")

    op.drop_index("ix_events_correlation_id", table_name="events")
    op.drop_index("ix_events_actor_id", table_name="events")
    op.drop_index("ix_events_ts", table_name="events")
    op.drop_index("ix_events_event_type", table_name="events")
    op.drop_table("events")
