"""initial stock ledger schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

PO_STATUS = sa.Enum("OPEN", "PARTIALLY_RECEIVED", "CLOSED", "CANCELLED", name="po_status")
MOVEMENT_REASON = sa.Enum(
    "PURCHASE_RECEIPT",
    "MANUAL_ADJUSTMENT",
    "INITIAL_STOCK",
    "SALE",
    "RETURN",
    "CORRECTION",
    "DAMAGE",
    name="movement_reason",
)

# Couche 2 de l'immutabilité du ledger (la couche 1 est le garde ORM)
LEDGER_TRIGGER_FN = "stock_movements_immutable"


def upgrade() -> None:
    op.create_table(
        "sequence_counters",
        sa.Column("name", sa.String(50), nullable=False),
        sa.Column("current_value", sa.BigInteger(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("name", name="pk_sequence_counters"),
    )

    op.create_table(
        "purchase_orders",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("po_number", sa.String(64), nullable=False),
        sa.Column("store_id", sa.String(64), nullable=False),
        sa.Column("supplier_name", sa.String(255), nullable=False),
        sa.Column("status", PO_STATUS, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_by", sa.String(64), nullable=False),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_purchase_orders"),
        sa.UniqueConstraint("po_number", name="uq_purchase_orders_po_number"),
    )
    op.create_index("ix_purchase_orders_store_id", "purchase_orders", ["store_id"])
    op.create_index("ix_purchase_orders_store_status", "purchase_orders", ["store_id", "status"])

    op.create_table(
        "purchase_order_items",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("purchase_order_id", sa.BigInteger(), nullable=False),
        sa.Column("product_variant_id", sa.String(64), nullable=False),
        sa.Column("quantity_ordered", sa.Integer(), nullable=False),
        sa.Column("quantity_received", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unit_cost_cents", sa.BigInteger(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_purchase_order_items"),
        sa.ForeignKeyConstraint(
            ["purchase_order_id"],
            ["purchase_orders.id"],
            name="fk_purchase_order_items_purchase_order_id_purchase_orders",
            ondelete="RESTRICT",
        ),
        sa.CheckConstraint("quantity_ordered > 0", name="ck_purchase_order_items_qty_ordered_pos"),
        sa.CheckConstraint("quantity_received >= 0", name="ck_purchase_order_items_qty_received_nonneg"),
        sa.CheckConstraint(
            "quantity_received <= quantity_ordered",
            name="ck_purchase_order_items_qty_received_le_ordered",
        ),
        sa.CheckConstraint("unit_cost_cents >= 0", name="ck_purchase_order_items_unit_cost_nonneg"),
    )
    op.create_index("ix_purchase_order_items_purchase_order_id", "purchase_order_items", ["purchase_order_id"])

    op.create_table(
        "stock_movements",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("store_id", sa.String(64), nullable=False),
        sa.Column("product_variant_id", sa.String(64), nullable=False),
        sa.Column("change_quantity", sa.Integer(), nullable=False),
        sa.Column("reason", MOVEMENT_REASON, nullable=False),
        sa.Column("note", sa.String(255), nullable=True),
        sa.Column("purchase_order_item_id", sa.BigInteger(), nullable=True),
        sa.Column("idempotency_key", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_by", sa.String(64), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_stock_movements"),
        sa.ForeignKeyConstraint(
            ["purchase_order_item_id"],
            ["purchase_order_items.id"],
            name="fk_stock_movements_purchase_order_item_id_purchase_order_items",
            ondelete="RESTRICT",
        ),
        sa.UniqueConstraint("idempotency_key", name="uq_stock_movements_idempotency_key"),
        sa.CheckConstraint("change_quantity <> 0", name="ck_stock_movements_change_qty_nonzero"),
    )
    op.create_index(
        "ix_stock_movements_key_time",
        "stock_movements",
        ["store_id", "product_variant_id", "created_at"],
    )
    op.create_index("ix_stock_movements_time", "stock_movements", ["created_at"])
    op.create_index(
        "ix_stock_movements_purchase_order_item_id",
        "stock_movements",
        ["purchase_order_item_id"],
    )

    op.create_table(
        "stock_levels",
        sa.Column("store_id", sa.String(64), nullable=False),
        sa.Column("product_variant_id", sa.String(64), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("store_id", "product_variant_id", name="pk_stock_levels"),
    )

    if op.get_bind().dialect.name == "postgresql":
        op.execute(
            f"""
            CREATE OR REPLACE FUNCTION {LEDGER_TRIGGER_FN}() RETURNS trigger AS $$
            BEGIN
                RAISE EXCEPTION 'stock_movements is append-only (% rejected)', TG_OP
                    USING ERRCODE = 'restrict_violation';
            END;
            $$ LANGUAGE plpgsql;
            """
        )
        op.execute(
            f"""
            CREATE TRIGGER trg_stock_movements_immutable
            BEFORE UPDATE OR DELETE ON stock_movements
            FOR EACH ROW EXECUTE FUNCTION {LEDGER_TRIGGER_FN}();
            """
        )


def downgrade() -> None:
    if op.get_bind().dialect.name == "postgresql":
        op.execute("DROP TRIGGER IF EXISTS trg_stock_movements_immutable ON stock_movements;")
        op.execute(f"DROP FUNCTION IF EXISTS {LEDGER_TRIGGER_FN}();")

    op.drop_table("stock_levels")
    op.drop_index("ix_stock_movements_purchase_order_item_id", table_name="stock_movements")
    op.drop_index("ix_stock_movements_time", table_name="stock_movements")
    op.drop_index("ix_stock_movements_key_time", table_name="stock_movements")
    op.drop_table("stock_movements")
    op.drop_index("ix_purchase_order_items_purchase_order_id", table_name="purchase_order_items")
    op.drop_table("purchase_order_items")
    op.drop_index("ix_purchase_orders_store_status", table_name="purchase_orders")
    op.drop_index("ix_purchase_orders_store_id", table_name="purchase_orders")
    op.drop_table("purchase_orders")
    op.drop_table("sequence_counters")
    PO_STATUS.drop(op.get_bind(), checkfirst=True)
    MOVEMENT_REASON.drop(op.get_bind(), checkfirst=True)
