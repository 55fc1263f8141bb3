"""Production batch models: batch, material usage and status history."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import JSON, DateTime, Float, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from atelier.db.base import Base, TimestampMixin
from atelier.models.validators import non_negative, validate_dict


class BatchStatus(str, Enum):
    """Batch lifecycle. ``termine`` and ``cancelled`` are terminal."""

    PLANNED = "planifie"
    IN_PROGRESS = "en_cours"
    COMPLETED = "termine"
    CANCELLED = "cancelled"


class DeductionMode(str, Enum):
    """Which path moved stock for a batch. A batch has at most one."""

    AT_START = "at_start"
    ACTUAL_QUANTITIES = "actual_quantities"


class ProductionBatch(Base, TimestampMixin):
    """One production run of a product."""

    __tablename__ = "production_batches"

    id: Mapped[int] = mapped_column(primary_key=True)
    batch_reference: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    # Points into production_ready_products or production_soustraitance_products
    product_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    product_type: Mapped[str] = mapped_column(String(20), default="regular", nullable=False)
    quantity_to_produce: Mapped[int] = mapped_column(Integer, nullable=False)
    sizes_breakdown: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    # Actual per-piece quantities, keyed by material id as a string
    materials_quantities: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), default=BatchStatus.PLANNED.value, nullable=False, index=True
    )
    deduction_mode: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    total_materials_cost: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    boutique_origin: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    started_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    material_usage: Mapped[List["BatchMaterialUsage"]] = relationship(
        "BatchMaterialUsage",
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="BatchMaterialUsage.id",
    )
    status_history: Mapped[List["BatchStatusHistory"]] = relationship(
        "BatchStatusHistory",
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="BatchStatusHistory.id",
    )
    leftovers: Mapped[List["BatchLeftover"]] = relationship(
        "BatchLeftover",
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="BatchLeftover.id",
    )

    @validates("total_materials_cost", "quantity_to_produce")
    def _validate_non_negative(self, key, value):
        return non_negative(key, value)

    @validates("sizes_breakdown", "materials_quantities")
    def _validate_dict_fields(self, key, value):
        return validate_dict(key, value)

    @property
    def is_terminal(self) -> bool:
        return self.status in (BatchStatus.COMPLETED.value, BatchStatus.CANCELLED.value)


class BatchMaterialUsage(Base):
    """Quantity of a material a batch actually took, linked to its ledger row."""

    __tablename__ = "production_batch_materials"

    id: Mapped[int] = mapped_column(primary_key=True)
    batch_id: Mapped[int] = mapped_column(
        ForeignKey("production_batches.id", ondelete="CASCADE"), nullable=False, index=True
    )
    material_id: Mapped[int] = mapped_column(
        ForeignKey("materials.id", ondelete="RESTRICT"), nullable=False
    )
    quantity_used: Mapped[float] = mapped_column(Float, nullable=False)
    unit_cost: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    total_cost: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    transaction_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("stock_transactions.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    batch: Mapped[ProductionBatch] = relationship("ProductionBatch", back_populates="material_usage")
    material = relationship("Material")


class BatchStatusHistory(Base):
    """Audit row written on every batch status change."""

    __tablename__ = "production_batch_status_history"

    id: Mapped[int] = mapped_column(primary_key=True)
    batch_id: Mapped[int] = mapped_column(
        ForeignKey("production_batches.id", ondelete="CASCADE"), nullable=False, index=True
    )
    old_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    new_status: Mapped[str] = mapped_column(String(20), nullable=False)
    changed_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    comments: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    changed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    batch: Mapped[ProductionBatch] = relationship("ProductionBatch", back_populates="status_history")
