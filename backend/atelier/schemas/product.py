"""Product and material configuration schemas."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class ReadyProductResponse(BaseModel):
    """Product available for production."""

    id: int
    name: str
    reference: Optional[str] = None
    boutique_origin: Optional[str] = None
    materials_configured: bool
    is_in_production: bool

    model_config = {"from_attributes": True}


class MaterialRequirementIn(BaseModel):
    """One configuration row: quantity of a material per produced piece."""

    material_id: int
    quantity_needed: float = Field(..., gt=0)
    quantity_type_id: Optional[int] = None
    size_specific: Optional[str] = Field(None, max_length=50)
    notes: Optional[str] = None


class ConfigureMaterialsRequest(BaseModel):
    """Full replacement of a product's material configuration."""

    materials: List[MaterialRequirementIn]


class MaterialRequirementResponse(BaseModel):
    """Stored configuration row."""

    id: int
    product_id: int
    material_id: int
    quantity_needed: float
    quantity_type_id: Optional[int] = None
    size_specific: Optional[str] = None
    notes: Optional[str] = None

    model_config = {"from_attributes": True}
