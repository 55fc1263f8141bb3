"""Material routes - catalog, manual movements, counts and ledger."""

import logging
from typing import Optional

from fastapi import APIRouter, Query, Request, status
from sqlalchemy import or_

from atelier.core.exceptions import NotFoundError
from atelier.core.rate_limit import limiter
from atelier.core.responses import paginated_response, success_response
from atelier.db.session import DbSession, atomic
from atelier.models.material import Material
from atelier.schemas.material import (
    MaterialCreate,
    MaterialResponse,
    StockCountRequest,
    StockMovementRequest,
    StockTransactionResponse,
)
from atelier.services.stock_ledger_service import StockLedgerService

logger = logging.getLogger(__name__)

router = APIRouter()


def _material_or_404(db, material_id: int) -> Material:
    material = db.get(Material, material_id)
    if material is None:
        raise NotFoundError("Material", material_id)
    return material


@router.get("")
@limiter.limit("60/minute")
def list_materials(
    request: Request,
    db: DbSession,
    search: Optional[str] = None,
    low_stock_below: Optional[float] = Query(None, ge=0),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
):
    """List materials, optionally filtered by name/reference or low stock."""
    query = db.query(Material)
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(Material.name.ilike(pattern), Material.reference.ilike(pattern), Material.color.ilike(pattern))
        )
    if low_stock_below is not None:
        query = query.filter(Material.stock_quantity < low_stock_below)
    total = query.count()
    materials = query.order_by(Material.name, Material.id).offset(skip).limit(limit).all()
    return paginated_response(
        [MaterialResponse.model_validate(m).model_dump() for m in materials], total, skip, limit
    )


@router.post("", status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def create_material(request: Request, data: MaterialCreate, db: DbSession):
    """Create a material; its initial stock opens the reconciliation period."""
    with atomic(db):
        material = StockLedgerService(db).create_material(**data.model_dump())
    return success_response(material=MaterialResponse.model_validate(material).model_dump())


@router.get("/{material_id}")
@limiter.limit("60/minute")
def get_material(request: Request, material_id: int, db: DbSession):
    material = _material_or_404(db, material_id)
    return success_response(material=MaterialResponse.model_validate(material).model_dump())


@router.post("/{material_id}/movements", status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def record_movement(request: Request, material_id: int, data: StockMovementRequest, db: DbSession):
    """Manual stock in/out, always written to the ledger."""
    with atomic(db):
        transaction = StockLedgerService(db).record_movement(
            material_id,
            data.direction,
            data.quantity,
            reason=data.reason,
            reference=data.reference,
            notes=data.notes,
            user_id=data.user_id,
        )
    material = _material_or_404(db, material_id)
    return success_response(
        transaction=StockTransactionResponse.model_validate(transaction).model_dump(),
        new_stock=material.stock_quantity,
    )


@router.post("/{material_id}/stock-count")
@limiter.limit("30/minute")
def record_stock_count(request: Request, material_id: int, data: StockCountRequest, db: DbSession):
    """Physical count: set the stock and start a new reconciliation period."""
    with atomic(db):
        material, transaction = StockLedgerService(db).reset_stock(
            material_id, data.counted_quantity, user_id=data.user_id, notes=data.notes
        )
    return success_response(
        material=MaterialResponse.model_validate(material).model_dump(),
        transaction=(
            StockTransactionResponse.model_validate(transaction).model_dump() if transaction else None
        ),
    )


@router.get("/{material_id}/transactions")
@limiter.limit("60/minute")
def list_material_transactions(
    request: Request,
    material_id: int,
    db: DbSession,
    direction: Optional[str] = Query(None, pattern="^(in|out)$"),
    reason: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
):
    _material_or_404(db, material_id)
    items, total = StockLedgerService(db).transactions(
        material_id=material_id,
        direction=direction,
        reasons=[reason] if reason else None,
        skip=skip,
        limit=limit,
    )
    return paginated_response(
        [StockTransactionResponse.model_validate(t).model_dump() for t in items], total, skip, limit
    )


@router.get("/{material_id}/reconciliation")
@limiter.limit("60/minute")
def reconcile_material(request: Request, material_id: int, db: DbSession):
    """Check the stock counter against opening stock plus ledger movements."""
    return success_response(**StockLedgerService(db).reconcile(material_id))
