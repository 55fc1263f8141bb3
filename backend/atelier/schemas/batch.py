"""Production batch schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class ProductionStartRequest(BaseModel):
    """Start production of a product.

    ``sizes_breakdown`` maps size label to piece count, as an object or its
    JSON text. Without it ``quantity_to_produce`` is the plan total.
    """

    product_id: int
    quantity_to_produce: int = Field(0, ge=0)
    sizes_breakdown: Optional[Union[Dict[str, Any], str]] = None
    notes: Optional[str] = None
    user_id: Optional[int] = None
    product_type: Literal["regular", "soustraitance"] = "regular"
    deduct_stock: bool = True


class BatchUpdateRequest(BaseModel):
    quantity_to_produce: Optional[int] = Field(None, ge=0)
    sizes_breakdown: Optional[Union[Dict[str, Any], str]] = None
    notes: Optional[str] = None


class BatchStatusUpdate(BaseModel):
    status: str
    changed_by: Optional[int] = None
    comments: Optional[str] = None


class CancelBatchRequest(BaseModel):
    """Cancel a batch. ``batch_id`` is the batch reference."""

    batch_id: Union[str, int]
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[int] = None


class ActualQuantitiesRequest(BaseModel):
    """Actual per-piece consumption, keyed by material id."""

    batch_id: int
    materials_quantities: Dict[int, float]
    user_id: Optional[int] = None
    production_number: Optional[str] = None


class PlanDeductionRequest(BaseModel):
    """Plan-level deduction, for a product or an existing batch."""

    planned_quantities: Optional[Union[Dict[str, Any], str]] = None
    product_id: Optional[int] = None
    product_type: Literal["regular", "soustraitance"] = "regular"
    batch_id: Optional[int] = None
    reference: Optional[str] = Field(None, max_length=100)
    user_id: Optional[int] = None


class PlanCheckRequest(BaseModel):
    product_id: int
    product_type: Literal["regular", "soustraitance"] = "regular"
    planned_quantities: Optional[Union[Dict[str, Any], str]] = None
    quantity_to_produce: int = Field(0, ge=0)


class MaterialAdjustment(BaseModel):
    material_id: int
    configured_quantity: float = 0.0
    actual_quantity: float = 0.0


class AdjustMaterialsRequest(BaseModel):
    batch_id: int
    materials_adjustments: List[MaterialAdjustment]
    user_id: Optional[int] = None


class RestoreDeductionRequest(BaseModel):
    """Reverse the latest production deduction of a material for a reference."""

    material_id: int
    reference: str
    user_id: Optional[int] = None


class BatchResponse(BaseModel):
    """Production batch response schema."""

    id: int
    batch_reference: str
    product_id: int
    product_type: str
    quantity_to_produce: int
    sizes_breakdown: Optional[Dict[str, int]] = None
    materials_quantities: Optional[Dict[str, float]] = None
    status: str
    deduction_mode: Optional[str] = None
    total_materials_cost: float
    notes: Optional[str] = None
    boutique_origin: Optional[str] = None
    started_by: Optional[int] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[int] = None
    cancellation_reason: Optional[str] = None

    model_config = {"from_attributes": True}


class BatchMaterialUsageResponse(BaseModel):
    """Material a batch actually took from stock."""

    id: int
    material_id: int
    quantity_used: float
    unit_cost: float
    total_cost: float
    transaction_id: Optional[int] = None

    model_config = {"from_attributes": True}


class BatchStatusHistoryResponse(BaseModel):
    id: int
    old_status: Optional[str] = None
    new_status: str
    changed_by: Optional[int] = None
    comments: Optional[str] = None
    changed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
