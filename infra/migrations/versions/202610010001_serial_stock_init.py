"""serial stock initial tables

Revision ID: 202610010001
Revises:
Create Date: 2026-10-01
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610010001"
down_revision = None
branch_labels = None
depends_on = None


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
        "stock_models",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("has_serial", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_stock_models_code", "stock_models", ["code"], unique=True)
    op.create_index("ix_stock_models_has_serial", "stock_models", ["has_serial"])
    op.create_index("ix_stock_models_created_at", "stock_models", ["created_at"])

    op.create_table(
        "stock_locations",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("location_type", sa.String(length=30), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_stock_locations_code", "stock_locations", ["code"], unique=True)
    op.create_index("ix_stock_locations_location_type", "stock_locations", ["location_type"])
    op.create_index("ix_stock_locations_is_active", "stock_locations", ["is_active"])
    op.create_index("ix_stock_locations_created_at", "stock_locations", ["created_at"])

    op.create_table(
        "serial_items",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("model_id", sa.String(), nullable=False),
        sa.Column("serial_no", sa.String(), nullable=False),
        sa.Column("status", sa.String(length=30), nullable=False),
        sa.Column("location_id", sa.String(), nullable=True),
        sa.Column("ticket_id", sa.String(), nullable=True),
        sa.Column("site_id", sa.String(), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("received_by", sa.String(), nullable=True),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["model_id"], ["stock_models.id"]),
        sa.ForeignKeyConstraint(["location_id"], ["stock_locations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("model_id", "serial_no", name="uq_serial_items_model_serial"),
    )
    op.create_index("ix_serial_items_model_id", "serial_items", ["model_id"])
    op.create_index("ix_serial_items_serial_no", "serial_items", ["serial_no"])
    op.create_index("ix_serial_items_status", "serial_items", ["status"])
    op.create_index("ix_serial_items_location_id", "serial_items", ["location_id"])
    op.create_index("ix_serial_items_ticket_id", "serial_items", ["ticket_id"])
    op.create_index("ix_serial_items_site_id", "serial_items", ["site_id"])
    op.create_index("ix_serial_items_received_at", "serial_items", ["received_at"])
    op.create_index("ix_serial_items_created_at", "serial_items", ["created_at"])
    op.create_index("ix_serial_items_updated_at", "serial_items", ["updated_at"])
    op.create_index("ix_serial_items_model_status", "serial_items", ["model_id", "status"])

    op.create_table(
        "serial_movements",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("serial_item_id", sa.String(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("movement_type", sa.String(length=30), nullable=False),
        sa.Column("from_location_id", sa.String(), nullable=True),
        sa.Column("to_location_id", sa.String(), nullable=True),
        sa.Column("from_status", sa.String(length=30), nullable=True),
        sa.Column("to_status", sa.String(length=30), nullable=False),
        sa.Column("ticket_id", sa.String(), nullable=True),
        sa.Column("performed_by", sa.String(), nullable=False),
        sa.Column("performed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("notes", sa.String(), nullable=True),
        sa.ForeignKeyConstraint(["serial_item_id"], ["serial_items.id"]),
        sa.ForeignKeyConstraint(["from_location_id"], ["stock_locations.id"]),
        sa.ForeignKeyConstraint(["to_location_id"], ["stock_locations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("serial_item_id", "sequence", name="uq_serial_movements_item_sequence"),
    )
    op.create_index("ix_serial_movements_serial_item_id", "serial_movements", ["serial_item_id"])
    op.create_index("ix_serial_movements_movement_type", "serial_movements", ["movement_type"])
    op.create_index("ix_serial_movements_ticket_id", "serial_movements", ["ticket_id"])
    op.create_index("ix_serial_movements_performed_by", "serial_movements", ["performed_by"])
    op.create_index("ix_serial_movements_performed_at", "serial_movements", ["performed_at"])
    op.create_index(
        "ix_serial_movements_item_performed",
        "serial_movements",
        ["serial_item_id", "performed_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_serial_movements_item_performed", table_name="serial_movements")
    op.drop_index("ix_serial_movements_performed_at", table_name="serial_movements")
    op.drop_index("ix_serial_movements_performed_by", table_name="serial_movements")
    op.drop_index("ix_serial_movements_ticket_id", table_name="serial_movements")
    op.drop_index("ix_serial_movements_movement_type", table_name="serial_movements")
    op.drop_index("ix_serial_movements_serial_item_id", table_name="serial_movements")
    op.drop_table("serial_movements")

    op.drop_index("ix_serial_items_model_status", table_name="serial_items")
    op.drop_index("ix_serial_items_updated_at", table_name="serial_items")
    op.drop_index("ix_serial_items_created_at", table_name="serial_items")
    op.drop_index("ix_serial_items_received_at", table_name="serial_items")
    op.drop_index("ix_serial_items_site_id", table_name="serial_items")
    op.drop_index("ix_serial_items_ticket_id", table_name="serial_items")
    op.drop_index("ix_serial_items_location_id", table_name="serial_items")
    op.drop_index("ix_serial_items_status", table_name="serial_items")
    op.drop_index("ix_serial_items_serial_no", table_name="serial_items")
    op.drop_index("ix_serial_items_model_id", table_name="serial_items")
    op.drop_table("serial_items")

    op.drop_index("ix_stock_locations_created_at", table_name="stock_locations")
    op.drop_index("ix_stock_locations_is_active", table_name="stock_locations")
    op.drop_index("ix_stock_locations_location_type", table_name="stock_locations")
    op.drop_index("ix_stock_locations_code", table_name="stock_locations")
    op.drop_table("stock_locations")

    op.drop_index("ix_stock_models_created_at", table_name="stock_models")
    op.drop_index("ix_stock_models_has_serial", table_name="stock_models")
    op.drop_index("ix_stock_models_code", table_name="stock_models")
    op.drop_table("stock_models")

    op.drop_index("ix_audit_logs_ts", table_name="audit_logs")
    op.drop_index("ix_audit_logs_actor_id", table_name="audit_logs")
    op.drop_table("audit_logs")

    op.drop_index("ix_events_correlation_id", table_name="events")
    op.drop_index("ix_events_actor_id", table_name="events")
    op.drop_index("ix_events_ts", table_name="events")
    op.drop_index("ix_events_event_type", table_name="events")
    op.drop_table("events")
