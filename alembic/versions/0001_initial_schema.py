"""Initial schema for the confirmation workflow.

Revision ID: 0001_initial_schema
Revises:
Create Date: 2025-01-15
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

ACTIVE_STATUSES = sa.text("status IN ('pending', 'sent')")


def upgrade() -> None:
    """Create all tables."""

    # =========================================================================
    # Table: owner
    # =========================================================================
    op.create_table(
        "owner",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_owner_tenant_id", "owner", ["tenant_id"])

    # =========================================================================
    # Table: broker
    # =========================================================================
    op.create_table(
        "broker",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("photo_url", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_broker_tenant_id", "broker", ["tenant_id"])

    # =========================================================================
    # Table: property
    # =========================================================================
    op.create_table(
        "property",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("owner_id", sa.Integer(), nullable=True),
        sa.Column("broker_id", sa.Integer(), nullable=True),
        sa.Column("reference", sa.String(50), nullable=True),
        sa.Column("property_type", sa.String(50), nullable=True),
        sa.Column("neighborhood", sa.String(100), nullable=True),
        sa.Column("city", sa.String(100), nullable=True),
        sa.Column("cover_image_url", sa.String(500), nullable=True),
        sa.Column("status", sa.String(30), nullable=False, server_default="available"),
        sa.Column("visibility", sa.String(20), nullable=False, server_default="public"),
        sa.Column("pending_reason", sa.String(30), nullable=True),
        sa.Column("price_amount", sa.Numeric(14, 2), nullable=True),
        sa.Column("price_currency", sa.String(3), nullable=False, server_default="BRL"),
        sa.Column("status_confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("price_confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["owner_id"], ["owner.id"]),
        sa.ForeignKeyConstraint(["broker_id"], ["broker.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_property_tenant_id", "property", ["tenant_id"])
    op.create_index("ix_property_owner_id", "property", ["owner_id"])
    op.create_index("ix_property_broker_id", "property", ["broker_id"])
    op.create_index("ix_property_reference", "property", ["reference"])
    op.create_index("ix_property_status", "property", ["status"])
    op.create_index("ix_property_tenant_status", "property", ["tenant_id", "status"])

    # =========================================================================
    # Table: confirmation_token
    # =========================================================================
    op.create_table(
        "confirmation_token",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("token_hash", sa.String(64), nullable=False),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("property_id", sa.Integer(), nullable=False),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("consumed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("consumed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_action", sa.String(30), nullable=True),
        sa.Column("delivery_hint", sa.String(30), nullable=True),
        sa.Column("owner_snapshot", sa.JSON(), nullable=True),
        sa.Column("created_by_type", sa.String(20), nullable=False, server_default="system"),
        sa.Column("created_by_id", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["property_id"], ["property.id"]),
        sa.ForeignKeyConstraint(["owner_id"], ["owner.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_confirmation_token_token_hash", "confirmation_token", ["token_hash"], unique=True)
    op.create_index("ix_confirmation_token_tenant_id", "confirmation_token", ["tenant_id"])
    op.create_index("ix_confirmation_token_property_id", "confirmation_token", ["property_id"])

    # =========================================================================
    # Table: scheduled_confirmation
    # =========================================================================
    op.create_table(
        "scheduled_confirmation",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("property_id", sa.Integer(), nullable=False),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("broker_id", sa.Integer(), nullable=True),
        sa.Column("token_id", sa.Integer(), nullable=True),
        sa.Column("confirmation_url", sa.String(500), nullable=True),
        sa.Column("scheduled_for", sa.Date(), nullable=False),
        sa.Column("cycle_month", sa.String(7), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("delivery_method", sa.String(20), nullable=False, server_default="manual"),
        sa.Column("delivery_status", sa.String(50), nullable=True),
        sa.Column("delivery_error", sa.Text(), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("response", sa.String(20), nullable=True),
        sa.Column("cancel_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["property_id"], ["property.id"]),
        sa.ForeignKeyConstraint(["owner_id"], ["owner.id"]),
        sa.ForeignKeyConstraint(["broker_id"], ["broker.id"]),
        sa.ForeignKeyConstraint(["token_id"], ["confirmation_token.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("token_id"),
    )
    op.create_index("ix_scheduled_confirmation_tenant_id", "scheduled_confirmation", ["tenant_id"])
    op.create_index("ix_scheduled_confirmation_property_id", "scheduled_confirmation", ["property_id"])
    op.create_index("ix_scheduled_confirmation_broker_id", "scheduled_confirmation", ["broker_id"])
    op.create_index("ix_scheduled_confirmation_scheduled_for", "scheduled_confirmation", ["scheduled_for"])
    op.create_index("ix_scheduled_confirmation_status", "scheduled_confirmation", ["status"])
    op.create_index(
        "ix_scheduled_confirmation_tenant_status", "scheduled_confirmation", ["tenant_id", "status"]
    )
    op.create_index(
        "uq_scheduled_confirmation_active_cycle",
        "scheduled_confirmation",
        ["property_id", "cycle_month"],
        unique=True,
        sqlite_where=ACTIVE_STATUSES,
        postgresql_where=ACTIVE_STATUSES,
    )

    # =========================================================================
    # Table: activity_log
    # =========================================================================
    op.create_table(
        "activity_log",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("property_id", sa.Integer(), nullable=True),
        sa.Column("event_type", sa.String(50), nullable=False),
        sa.Column("actor_type", sa.String(20), nullable=False),
        sa.Column("actor_id", sa.String(64), nullable=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["property_id"], ["property.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_activity_log_tenant_id", "activity_log", ["tenant_id"])
    op.create_index("ix_activity_log_property_id", "activity_log", ["property_id"])
    op.create_index("ix_activity_log_event_type", "activity_log", ["event_type"])

    # =========================================================================
    # Table: import_batch
    # =========================================================================
    op.create_table(
        "import_batch",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.String(64), nullable=False),
        sa.Column("source_name", sa.String(255), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="processing"),
        sa.Column("total_xml_records", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_properties_created", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_properties_matched_existing", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_errors", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("errors", sa.JSON(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_import_batch_tenant_id", "import_batch", ["tenant_id"])

    # =========================================================================
    # Table: background_task
    # =========================================================================
    op.create_table(
        "background_task",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("task_id", sa.String(64), nullable=False),
        sa.Column("task_type", sa.String(50), nullable=False),
        sa.Column("status", sa.String(20), nullable=True, server_default="pending"),
        sa.Column("tenant_id", sa.String(64), nullable=True),
        sa.Column("params", sa.JSON(), nullable=True),
        sa.Column("result", sa.JSON(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_background_task_task_id", "background_task", ["task_id"], unique=True)
    op.create_index("ix_background_task_task_type", "background_task", ["task_type"])
    op.create_index("ix_background_task_status", "background_task", ["status"])
    op.create_index("ix_background_task_tenant_id", "background_task", ["tenant_id"])

    # =========================================================================
    # Table: scheduler_lock
    # =========================================================================
    op.create_table(
        "scheduler_lock",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("lock_name", sa.String(100), nullable=False),
        sa.Column("locked_by", sa.String(64), nullable=False),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_scheduler_lock_lock_name", "scheduler_lock", ["lock_name"], unique=True)
    op.create_index("ix_scheduler_lock_expires_at", "scheduler_lock", ["expires_at"])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("scheduler_lock")
    op.drop_table("background_task")
    op.drop_table("import_batch")
    op.drop_table("activity_log")
    op.drop_index("uq_scheduled_confirmation_active_cycle", table_name="scheduled_confirmation")
    op.drop_table("scheduled_confirmation")
    op.drop_table("confirmation_token")
    op.drop_table("property")
    op.drop_table("broker")
    op.drop_table("owner")
