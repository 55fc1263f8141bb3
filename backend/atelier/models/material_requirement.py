"""Material configuration rows: quantity of a material consumed per piece.

Regular and sub-contracted products keep their configuration in two
parallel tables with the same shape.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import Float, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, declared_attr, mapped_column, relationship, validates

from atelier.db.base import Base, TimestampMixin
from atelier.services.requirement_calculator import normalize_size, size_key


class MaterialRequirementMixin:
    """Columns shared by both configuration tables."""

    id: Mapped[int] = mapped_column(primary_key=True)
    material_id: Mapped[int] = mapped_column(
        ForeignKey("materials.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    quantity_needed: Mapped[float] = mapped_column(Float, nullable=False)
    quantity_type_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("quantity_types.id", ondelete="SET NULL"), nullable=True
    )
    # NULL applies the row to every planned piece
    size_specific: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    size_key: Mapped[str] = mapped_column(String(50), default="none", nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    @declared_attr
    def material(cls):
        return relationship("Material")

    @validates("size_specific")
    def _normalize_size(self, key, value):
        normalized = normalize_size(value)
        self.size_key = size_key(normalized)
        return normalized


class ProductMaterial(MaterialRequirementMixin, Base, TimestampMixin):
    """Material configuration of a regular product."""

    __tablename__ = "production_product_materials"
    __table_args__ = (
        UniqueConstraint("product_id", "material_id", "size_key", name="uq_product_material_size"),
    )

    product_id: Mapped[int] = mapped_column(
        ForeignKey("production_ready_products.id", ondelete="CASCADE"), nullable=False, index=True
    )

    product = relationship("ReadyProduct", back_populates="materials")


class SubcontractProductMaterial(MaterialRequirementMixin, Base, TimestampMixin):
    """Material configuration of a sub-contracted product."""

    __tablename__ = "production_soustraitance_product_materials"
    __table_args__ = (
        UniqueConstraint(
            "product_id", "material_id", "size_key", name="uq_soustraitance_material_size"
        ),
    )

    product_id: Mapped[int] = mapped_column(
        ForeignKey("production_soustraitance_products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    product = relationship("SubcontractProduct", back_populates="materials")
