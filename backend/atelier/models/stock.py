"""Stock ledger: append-only record of every material movement."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from atelier.db.base import Base
from atelier.models.validators import non_negative, positive


class MovementDirection(str, Enum):
    IN = "in"
    OUT = "out"


class LedgerReason(str, Enum):
    """Reasons for stock movements."""

    PRODUCTION = "production"  # Deducted when a batch starts
    PRODUCTION_SUBCONTRACT = "production_subcontract"  # Same, sub-contracted batch
    PRODUCTION_ACTUAL = "production_actual"  # Deducted from actual per-piece usage
    PRODUCTION_PLAN = "production_plan"  # Plan-level deduction without a batch
    PRODUCTION_ADJUSTMENT = "production_adjustment"  # Configured vs actual reconciliation
    BATCH_CANCELLATION = "batch_cancellation"  # Restored when a batch is cancelled
    PRODUCTION_RETURN = "production_return"  # Reversal of one production deduction
    LEFTOVER_RETURN = "leftover_return"  # Reusable leftover put back in stock
    PURCHASE = "purchase"  # Goods received
    ADJUSTMENT = "adjustment"  # Manual correction
    STOCK_COUNT = "stock_count"  # Physical count


PRODUCTION_OUT_REASONS = (
    LedgerReason.PRODUCTION.value,
    LedgerReason.PRODUCTION_SUBCONTRACT.value,
    LedgerReason.PRODUCTION_ACTUAL.value,
    LedgerReason.PRODUCTION_PLAN.value,
    LedgerReason.PRODUCTION_ADJUSTMENT.value,
)


class StockTransaction(Base):
    """One stock movement. Rows are never updated or deleted once written."""

    __tablename__ = "stock_transactions"

    id: Mapped[int] = mapped_column(primary_key=True)
    material_id: Mapped[int] = mapped_column(
        ForeignKey("materials.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    direction: Mapped[str] = mapped_column(String(3), nullable=False)
    quantity: Mapped[float] = mapped_column(Float, nullable=False)
    quantity_type_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("quantity_types.id", ondelete="SET NULL"), nullable=True
    )
    unit_price: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    total_cost: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    reason: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    # Set on an `in` row that reverses a specific `out` row; unique so a row is reversed once
    reverses_transaction_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("stock_transactions.id", ondelete="RESTRICT"), nullable=True, unique=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )

    material = relationship("Material")

    @validates("quantity")
    def _validate_quantity(self, key, value):
        return positive(key, value)

    @validates("unit_price", "total_cost")
    def _validate_non_negative(self, key, value):
        return non_negative(key, value)

    @validates("direction")
    def _validate_direction(self, key, value):
        return MovementDirection(value).value

    @property
    def signed_quantity(self) -> float:
        if self.direction == MovementDirection.OUT.value:
            return -self.quantity
        return self.quantity
