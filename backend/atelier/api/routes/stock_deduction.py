"""Production stock deduction routes.

Deduction by actual quantities, plan-level deduction, post-production
adjustment and reversal of a single deduction.
"""

from typing import Optional

from fastapi import APIRouter, Query, Request

from atelier.core.rate_limit import limiter
from atelier.core.responses import paginated_response, success_response
from atelier.db.session import DbSession
from atelier.models.stock import PRODUCTION_OUT_REASONS, LedgerReason
from atelier.schemas.batch import (
    ActualQuantitiesRequest,
    AdjustMaterialsRequest,
    PlanDeductionRequest,
    RestoreDeductionRequest,
)
from atelier.schemas.material import StockTransactionResponse
from atelier.services.batch_service import ProductionBatchService
from atelier.services.stock_ledger_service import StockLedgerService

router = APIRouter()

PRODUCTION_REASONS = PRODUCTION_OUT_REASONS + (
    LedgerReason.BATCH_CANCELLATION.value,
    LedgerReason.PRODUCTION_RETURN.value,
)


@router.post("/actual-quantities")
@limiter.limit("30/minute")
def deduct_actual_quantities(request: Request, data: ActualQuantitiesRequest, db: DbSession):
    """Deduct actual per-piece consumption for every planned piece of a batch."""
    outcome = ProductionBatchService(db).deduct_actual_quantities(
        data.batch_id,
        data.materials_quantities,
        user_id=data.user_id,
        production_number=data.production_number,
    )
    return success_response("Stock deducted", **outcome)


@router.post("/plan")
@limiter.limit("30/minute")
def deduct_for_plan(request: Request, data: PlanDeductionRequest, db: DbSession):
    outcome = ProductionBatchService(db).deduct_for_plan(
        data.planned_quantities,
        product_id=data.product_id,
        product_type=data.product_type,
        batch_id=data.batch_id,
        reference=data.reference,
        user_id=data.user_id,
    )
    return success_response("Stock deducted", **outcome)


@router.post("/adjust")
@limiter.limit("30/minute")
def adjust_materials(request: Request, data: AdjustMaterialsRequest, db: DbSession):
    """Reconcile configured against actual consumption after production."""
    outcome = ProductionBatchService(db).adjust_materials(
        data.batch_id,
        [a.model_dump() for a in data.materials_adjustments],
        user_id=data.user_id,
    )
    return success_response("Stock adjusted", **outcome)


@router.post("/restore")
@limiter.limit("30/minute")
def restore_deduction(request: Request, data: RestoreDeductionRequest, db: DbSession):
    """Reverse the most recent production deduction of a material for a reference."""
    transaction = ProductionBatchService(db).restore_deduction(
        data.material_id, data.reference, user_id=data.user_id
    )
    return success_response(
        "Stock restored",
        transaction=StockTransactionResponse.model_validate(transaction).model_dump(),
    )


@router.get("/transactions")
@limiter.limit("60/minute")
def list_production_transactions(
    request: Request,
    db: DbSession,
    reference: Optional[str] = None,
    material_id: Optional[int] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
):
    """Production-related ledger rows, newest first."""
    items, total = StockLedgerService(db).transactions(
        material_id=material_id,
        reference=reference,
        reasons=PRODUCTION_REASONS,
        skip=skip,
        limit=limit,
    )
    return paginated_response(
        [StockTransactionResponse.model_validate(t).model_dump() for t in items], total, skip, limit
    )
