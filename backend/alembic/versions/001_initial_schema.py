"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Catalog tables (owned by the storefront, read by inventory)
    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False, index=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("selling_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("is_archived", sa.Boolean(), server_default="0", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "product_variants",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "product_id",
            sa.Integer(),
            sa.ForeignKey("products.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("sku", sa.String(100), unique=True, nullable=True),
        sa.Column("selling_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default="1", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # Inventory lots
    op.create_table(
        "inventory_lots",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("variant_id", sa.Integer(), nullable=False, index=True),
        sa.Column("qty_received", sa.Integer(), nullable=False),
        sa.Column("qty_remaining", sa.Integer(), nullable=False),
        sa.Column("unit_cost", sa.Numeric(12, 2), nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("note", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("qty_received > 0", name="ck_lot_qty_received_positive"),
        sa.CheckConstraint(
            "qty_remaining >= 0 AND qty_remaining <= qty_received",
            name="ck_lot_qty_remaining_range",
        ),
        sa.CheckConstraint("unit_cost >= 0", name="ck_lot_unit_cost_non_negative"),
    )
    op.create_index("ix_lot_variant_fifo", "inventory_lots", ["variant_id", "received_at", "id"])

    # Stock moves ledger (append-only)
    op.create_table(
        "inventory_moves",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("variant_id", sa.Integer(), nullable=False, index=True),
        sa.Column(
            "lot_id",
            sa.Integer(),
            sa.ForeignKey("inventory_lots.id", ondelete="RESTRICT"),
            nullable=True,
            index=True,
        ),
        sa.Column("move_type", sa.String(3), nullable=False),
        sa.Column("change_qty", sa.Integer(), nullable=False),
        sa.Column("unit_cost", sa.Numeric(12, 2), nullable=True),
        sa.Column("reason_code", sa.String(20), nullable=True),
        sa.Column("ref_order_detail_id", sa.Integer(), nullable=True, index=True),
        sa.Column("note", sa.String(500), nullable=True),
        sa.Column("created_by", sa.String(100), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, index=True),
        sa.CheckConstraint("change_qty <> 0", name="ck_move_change_qty_non_zero"),
        sa.CheckConstraint("move_type IN ('IN', 'OUT', 'ADJ')", name="ck_move_type"),
    )
    op.create_index("ix_move_variant_created", "inventory_moves", ["variant_id", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_move_variant_created", table_name="inventory_moves")
    op.drop_table("inventory_moves")
    op.drop_index("ix_lot_variant_fifo", table_name="inventory_lots")
    op.drop_table("inventory_lots")
    op.drop_table("product_variants")
    op.drop_table("products")
