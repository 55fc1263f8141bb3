"""Leftover material recorded after a batch."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from atelier.db.base import Base
from atelier.models.validators import non_negative


class BatchLeftover(Base):
    """Unused quantity of a material left over from a batch.

    ``readded_to_stock`` only ever goes from False to True.
    """

    __tablename__ = "production_batch_leftovers"

    id: Mapped[int] = mapped_column(primary_key=True)
    batch_id: Mapped[int] = mapped_column(
        ForeignKey("production_batches.id", ondelete="CASCADE"), nullable=False, index=True
    )
    material_id: Mapped[int] = mapped_column(
        ForeignKey("materials.id", ondelete="RESTRICT"), nullable=False
    )
    leftover_quantity: Mapped[float] = mapped_column(Float, nullable=False)
    is_reusable: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    readded_to_stock: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    readded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    batch = relationship("ProductionBatch", back_populates="leftovers")
    material = relationship("Material")

    @validates("leftover_quantity")
    def _validate_quantity(self, key, value):
        return non_negative(key, value)

    @validates("readded_to_stock")
    def _validate_one_way(self, key, value):
        if self.readded_to_stock and not value:
            raise ValueError("readded_to_stock cannot be reset once set")
        return value
