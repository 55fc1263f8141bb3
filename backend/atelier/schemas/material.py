"""Material and stock ledger schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field


class MaterialCreate(BaseModel):
    """Material creation request. ``stock_quantity`` is the opening stock."""

    name: str = Field(..., min_length=1, max_length=200)
    reference: Optional[str] = Field(None, max_length=50)
    color: Optional[str] = Field(None, max_length=50)
    unit_price: float = Field(0.0, ge=0)
    stock_quantity: float = Field(0.0, ge=0)
    quantity_type_id: Optional[int] = None


class MaterialResponse(BaseModel):
    """Material response schema."""

    id: int
    name: str
    reference: Optional[str] = None
    color: Optional[str] = None
    unit_price: float
    stock_quantity: float
    quantity_type_id: Optional[int] = None
    unit: Optional[str] = None
    opening_stock: float
    baseline_transaction_id: int
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class StockMovementRequest(BaseModel):
    """Manual stock movement request."""

    direction: Literal["in", "out"]
    quantity: float = Field(..., gt=0)
    reason: Literal["purchase", "adjustment"] = "adjustment"
    reference: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None
    user_id: Optional[int] = None


class StockCountRequest(BaseModel):
    """Physical stock count."""

    counted_quantity: float = Field(..., ge=0)
    notes: Optional[str] = None
    user_id: Optional[int] = None


class StockTransactionResponse(BaseModel):
    """Stock ledger row."""

    id: int
    material_id: int
    direction: str
    quantity: float
    quantity_type_id: Optional[int] = None
    unit_price: float
    total_cost: float
    reason: str
    reference: Optional[str] = None
    notes: Optional[str] = None
    user_id: Optional[int] = None
    reverses_transaction_id: Optional[int] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
