"""Product routes - products ready for production and their material configuration."""

from typing import Literal

from fastapi import APIRouter, Request

from atelier.core.rate_limit import limiter
from atelier.core.responses import list_response, success_response
from atelier.db.session import DbSession, atomic
from atelier.models.product import ReadyProduct
from atelier.schemas.product import (
    ConfigureMaterialsRequest,
    MaterialRequirementResponse,
    ReadyProductResponse,
)
from atelier.services.configuration_source import configuration_source_for

router = APIRouter()

ProductTypePath = Literal["regular", "soustraitance"]


@router.get("/ready")
@limiter.limit("60/minute")
def list_ready_products(request: Request, db: DbSession):
    """Configured products that are not currently in production."""
    products = (
        db.query(ReadyProduct)
        .filter(ReadyProduct.materials_configured.is_(True), ReadyProduct.is_in_production.is_(False))
        .order_by(ReadyProduct.name, ReadyProduct.id)
        .all()
    )
    return list_response([ReadyProductResponse.model_validate(p).model_dump() for p in products])


@router.get("/{product_type}/{product_id}/materials")
@limiter.limit("60/minute")
def get_product_materials(
    request: Request, product_type: ProductTypePath, product_id: int, db: DbSession
):
    source = configuration_source_for(db, product_type)
    product = source.get_product(product_id)
    rows = source.requirements(product.id)
    return success_response(
        product_id=product.id,
        product_type=product_type,
        materials_configured=product.materials_configured,
        items=[MaterialRequirementResponse.model_validate(r).model_dump() for r in rows],
    )


@router.put("/{product_type}/{product_id}/materials")
@limiter.limit("30/minute")
def configure_product_materials(
    request: Request,
    product_type: ProductTypePath,
    product_id: int,
    data: ConfigureMaterialsRequest,
    db: DbSession,
):
    """Replace a product's material configuration."""
    source = configuration_source_for(db, product_type)
    with atomic(db):
        product = source.get_product(product_id)
        rows = source.replace_requirements(product, [m.model_dump() for m in data.materials])
    return success_response(
        "Materials configured",
        product_id=product_id,
        materials_configured=bool(rows),
        items=[MaterialRequirementResponse.model_validate(r).model_dump() for r in rows],
    )
