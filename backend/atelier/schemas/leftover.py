"""Leftover schemas."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class LeftoverItem(BaseModel):
    material_id: int
    quantity: float = Field(..., ge=0)
    is_reusable: bool = True
    notes: Optional[str] = None


class SaveLeftoversRequest(BaseModel):
    """Full leftover set of a batch; replaces what was saved before."""

    batch_id: int
    leftovers: List[LeftoverItem]


class ReaddToStockRequest(BaseModel):
    leftover_ids: List[int]
    user_id: Optional[int] = None


class LeftoverResponse(BaseModel):
    """Leftover response schema."""

    id: int
    batch_id: int
    material_id: int
    leftover_quantity: float
    is_reusable: bool
    readded_to_stock: bool
    readded_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
