"""Material and unit-of-measure models."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import CheckConstraint, Float, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from atelier.db.base import Base, TimestampMixin
from atelier.models.validators import non_negative


class QuantityType(Base):
    """Unit of measure a material is counted in (meters, pieces, kg)."""

    __tablename__ = "quantity_types"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)


class Material(Base, TimestampMixin):
    """Raw material with a running stock counter.

    ``stock_quantity`` is a materialized aggregate of the stock ledger and is
    only written by ``StockLedgerService``. ``opening_stock`` and
    ``baseline_transaction_id`` mark the last independent count: ledger rows
    with a higher id must sum to ``stock_quantity - opening_stock``.
    """

    __tablename__ = "materials"
    __table_args__ = (
        CheckConstraint("stock_quantity >= 0", name="ck_materials_stock_non_negative"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    reference: Mapped[Optional[str]] = mapped_column(String(50), unique=True, nullable=True)
    color: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    unit_price: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    stock_quantity: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    quantity_type_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("quantity_types.id", ondelete="SET NULL"), nullable=True
    )
    opening_stock: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    baseline_transaction_id: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    quantity_type: Mapped[Optional[QuantityType]] = relationship("QuantityType")

    @validates("stock_quantity", "unit_price", "opening_stock")
    def _validate_non_negative(self, key, value):
        return non_negative(key, value)

    @property
    def unit(self) -> Optional[str]:
        return self.quantity_type.unit if self.quantity_type else None
