"""Product ticket schema with status history and comments."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "20250301_000001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "product_tickets",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("ticket_number", sa.String(length=100), nullable=False),
        sa.Column("product_name", sa.String(length=255), nullable=True),
        sa.Column("product_line", sa.String(length=255), nullable=False),
        sa.Column("sbu", sa.String(length=10), nullable=False),
        sa.Column("status", sa.String(length=50), nullable=False),
        sa.Column("priority", sa.String(length=20), nullable=False),
        sa.Column("created_by", sa.String(length=255), nullable=True),
        sa.Column("assigned_to", sa.String(length=255), nullable=True),
        sa.Column("part_number", sa.JSON(), nullable=True),
        sa.Column("npdi_tracking", sa.JSON(), nullable=True),
        sa.Column("base_unit", sa.JSON(), nullable=True),
        sa.Column("sku_variants", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("pricing_data", sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column("chemical_properties", sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column("quality", sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column("composition", sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column("corpbase_data", sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column("hazard_classification", sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index("ix_product_tickets_ticket_number", "product_tickets", ["ticket_number"], unique=True)
    op.create_index("ix_product_tickets_status", "product_tickets", ["status"])

    op.create_table(
        "ticket_status_history",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column(
            "ticket_id",
            sa.String(length=36),
            sa.ForeignKey("product_tickets.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(length=50), nullable=False),
        sa.Column("status", sa.String(length=50), nullable=False),
        sa.Column("actor", sa.JSON(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("details", sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column("changed_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index("ix_ticket_status_history_ticket_id", "ticket_status_history", ["ticket_id"])

    op.create_table(
        "ticket_comments",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column(
            "ticket_id",
            sa.String(length=36),
            sa.ForeignKey("product_tickets.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("author", sa.JSON(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index("ix_ticket_comments_ticket_id", "ticket_comments", ["ticket_id"])


def downgrade() -> None:
    op.drop_index("ix_ticket_comments_ticket_id", table_name="ticket_comments")
    op.drop_table("ticket_comments")
    op.drop_index("ix_ticket_status_history_ticket_id", table_name="ticket_status_history")
    op.drop_table("ticket_status_history")
    op.drop_index("ix_product_tickets_status", table_name="product_tickets")
    op.drop_index("ix_product_tickets_ticket_number", table_name="product_tickets")
    op.drop_table("product_tickets")
