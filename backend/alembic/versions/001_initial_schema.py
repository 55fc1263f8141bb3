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


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def _requirement_columns(product_table: str):
    return [
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "product_id", sa.Integer(),
            sa.ForeignKey(f"{product_table}.id", ondelete="CASCADE"), nullable=False, index=True,
        ),
        sa.Column(
            "material_id", sa.Integer(),
            sa.ForeignKey("materials.id", ondelete="RESTRICT"), nullable=False, index=True,
        ),
        sa.Column("quantity_needed", sa.Float(), nullable=False),
        sa.Column(
            "quantity_type_id", sa.Integer(),
            sa.ForeignKey("quantity_types.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("size_specific", sa.String(50), nullable=True),
        sa.Column("size_key", sa.String(50), nullable=False, server_default="none"),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
    ]


def upgrade() -> None:
    # Units of measure
    op.create_table(
        "quantity_types",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(50), unique=True, nullable=False),
        sa.Column("unit", sa.String(20), nullable=False),
    )

    # Materials with their running stock counter
    op.create_table(
        "materials",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False, index=True),
        sa.Column("reference", sa.String(50), unique=True, nullable=True),
        sa.Column("color", sa.String(50), nullable=True),
        sa.Column("unit_price", sa.Float(), nullable=False, server_default="0"),
        sa.Column("stock_quantity", sa.Float(), nullable=False, server_default="0"),
        sa.Column(
            "quantity_type_id", sa.Integer(),
            sa.ForeignKey("quantity_types.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("opening_stock", sa.Float(), nullable=False, server_default="0"),
        sa.Column("baseline_transaction_id", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint("stock_quantity >= 0", name="ck_materials_stock_non_negative"),
    )

    # Products
    op.create_table(
        "production_ready_products",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("reference", sa.String(100), nullable=True, index=True),
        sa.Column("boutique_origin", sa.String(100), nullable=True),
        sa.Column("materials_configured", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_in_production", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_table(
        "production_soustraitance_clients",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("email", sa.String(200), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        *_timestamps(),
    )
    op.create_table(
        "production_soustraitance_products",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "client_id", sa.Integer(),
            sa.ForeignKey("production_soustraitance_clients.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("reference", sa.String(100), nullable=True, index=True),
        sa.Column("materials_configured", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_in_production", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )

    # Material configuration, one row per (product, material, size)
    op.create_table(
        "production_product_materials",
        *_requirement_columns("production_ready_products"),
        sa.UniqueConstraint("product_id", "material_id", "size_key", name="uq_product_material_size"),
    )
    op.create_table(
        "production_soustraitance_product_materials",
        *_requirement_columns("production_soustraitance_products"),
        sa.UniqueConstraint(
            "product_id", "material_id", "size_key", name="uq_soustraitance_material_size"
        ),
    )

    # Stock ledger
    op.create_table(
        "stock_transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "material_id", sa.Integer(),
            sa.ForeignKey("materials.id", ondelete="RESTRICT"), nullable=False, index=True,
        ),
        sa.Column("direction", sa.String(3), nullable=False),
        sa.Column("quantity", sa.Float(), nullable=False),
        sa.Column(
            "quantity_type_id", sa.Integer(),
            sa.ForeignKey("quantity_types.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("unit_price", sa.Float(), nullable=False, server_default="0"),
        sa.Column("total_cost", sa.Float(), nullable=False, server_default="0"),
        sa.Column("reason", sa.String(50), nullable=False, index=True),
        sa.Column("reference", sa.String(100), nullable=True, index=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column(
            "reverses_transaction_id", sa.Integer(),
            sa.ForeignKey("stock_transactions.id", ondelete="RESTRICT"), nullable=True, unique=True,
        ),
        sa.Column(
            "created_at", sa.DateTime(timezone=True),
            server_default=sa.func.now(), nullable=False, index=True,
        ),
    )

    # Batches
    op.create_table(
        "production_batches",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("batch_reference", sa.String(50), unique=True, nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False, index=True),
        sa.Column("product_type", sa.String(20), nullable=False, server_default="regular"),
        sa.Column("quantity_to_produce", sa.Integer(), nullable=False),
        sa.Column("sizes_breakdown", sa.JSON(), nullable=True),
        sa.Column("materials_quantities", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="planifie", index=True),
        sa.Column("deduction_mode", sa.String(30), nullable=True),
        sa.Column("total_materials_cost", sa.Float(), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("boutique_origin", sa.String(100), nullable=True),
        sa.Column("started_by", sa.Integer(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", sa.Integer(), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_table(
        "production_batch_materials",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "batch_id", sa.Integer(),
            sa.ForeignKey("production_batches.id", ondelete="CASCADE"), nullable=False, index=True,
        ),
        sa.Column(
            "material_id", sa.Integer(),
            sa.ForeignKey("materials.id", ondelete="RESTRICT"), nullable=False,
        ),
        sa.Column("quantity_used", sa.Float(), nullable=False),
        sa.Column("unit_cost", sa.Float(), nullable=False, server_default="0"),
        sa.Column("total_cost", sa.Float(), nullable=False, server_default="0"),
        sa.Column(
            "transaction_id", sa.Integer(),
            sa.ForeignKey("stock_transactions.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_table(
        "production_batch_status_history",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "batch_id", sa.Integer(),
            sa.ForeignKey("production_batches.id", ondelete="CASCADE"), nullable=False, index=True,
        ),
        sa.Column("old_status", sa.String(20), nullable=True),
        sa.Column("new_status", sa.String(20), nullable=False),
        sa.Column("changed_by", sa.Integer(), nullable=True),
        sa.Column("comments", sa.Text(), nullable=True),
        sa.Column("changed_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # Leftovers
    op.create_table(
        "production_batch_leftovers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "batch_id", sa.Integer(),
            sa.ForeignKey("production_batches.id", ondelete="CASCADE"), nullable=False, index=True,
        ),
        sa.Column(
            "material_id", sa.Integer(),
            sa.ForeignKey("materials.id", ondelete="RESTRICT"), nullable=False,
        ),
        sa.Column("leftover_quantity", sa.Float(), nullable=False),
        sa.Column("is_reusable", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("readded_to_stock", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("readded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("production_batch_leftovers")
    op.drop_table("production_batch_status_history")
    op.drop_table("production_batch_materials")
    op.drop_table("production_batches")
    op.drop_table("stock_transactions")
    op.drop_table("production_soustraitance_product_materials")
    op.drop_table("production_product_materials")
    op.drop_table("production_soustraitance_products")
    op.drop_table("production_soustraitance_clients")
    op.drop_table("production_ready_products")
    op.drop_table("materials")
    op.drop_table("quantity_types")
