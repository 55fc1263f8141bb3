"""Products that can be produced: in-house catalog and sub-contracted work."""

from __future__ import annotations

from enum import Enum
from typing import List, Optional

from sqlalchemy import Boolean, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from atelier.db.base import Base, TimestampMixin


class ProductType(str, Enum):
    """Which catalog a production batch draws its product from."""

    REGULAR = "regular"
    SUBCONTRACT = "soustraitance"


class ReadyProduct(Base, TimestampMixin):
    """A boutique product whose materials can be configured for production."""

    __tablename__ = "production_ready_products"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    boutique_origin: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    materials_configured: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_in_production: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    materials: Mapped[List["ProductMaterial"]] = relationship(
        "ProductMaterial",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductMaterial.id",
    )


class SubcontractClient(Base, TimestampMixin):
    """External client a sub-contracted product is made for."""

    __tablename__ = "production_soustraitance_clients"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    products: Mapped[List["SubcontractProduct"]] = relationship(
        "SubcontractProduct", back_populates="client"
    )


class SubcontractProduct(Base, TimestampMixin):
    """A product made under sub-contract (soustraitance) for a client."""

    __tablename__ = "production_soustraitance_products"

    id: Mapped[int] = mapped_column(primary_key=True)
    client_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("production_soustraitance_clients.id", ondelete="SET NULL"), nullable=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    materials_configured: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_in_production: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    client: Mapped[Optional[SubcontractClient]] = relationship(
        "SubcontractClient", back_populates="products"
    )
    materials: Mapped[List["SubcontractProductMaterial"]] = relationship(
        "SubcontractProductMaterial",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="SubcontractProductMaterial.id",
    )

    @property
    def boutique_origin(self) -> Optional[str]:
        return self.client.name if self.client else None
