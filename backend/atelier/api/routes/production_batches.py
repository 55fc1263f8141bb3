"""Production batch routes.

Start, inspect, edit, move through statuses and cancel production batches.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Query, Request, status

from atelier.core.rate_limit import limiter
from atelier.core.responses import list_response, paginated_response, success_response
from atelier.db.session import DbSession
from atelier.schemas.batch import (
    BatchMaterialUsageResponse,
    BatchResponse,
    BatchStatusHistoryResponse,
    BatchStatusUpdate,
    BatchUpdateRequest,
    CancelBatchRequest,
    PlanCheckRequest,
    ProductionStartRequest,
)
from atelier.schemas.leftover import LeftoverResponse
from atelier.schemas.material import StockTransactionResponse
from atelier.services.batch_service import ProductionBatchService
from atelier.services.leftover_service import LeftoverService

logger = logging.getLogger(__name__)

router = APIRouter()


def _batch_dict(batch) -> dict:
    return BatchResponse.model_validate(batch).model_dump()


@router.get("")
@limiter.limit("60/minute")
def list_batches(
    request: Request,
    db: DbSession,
    status_filter: Optional[str] = Query(None, alias="status"),
    search: Optional[str] = None,
    product_type: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
):
    items, total = ProductionBatchService(db).list_batches(
        status=status_filter, search=search, product_type=product_type, skip=skip, limit=limit
    )
    return paginated_response([_batch_dict(b) for b in items], total, skip, limit)


@router.post("", status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def start_production(request: Request, data: ProductionStartRequest, db: DbSession):
    """Create a batch and deduct its materials from stock, all or nothing."""
    batch, result = ProductionBatchService(db).start_production(
        product_id=data.product_id,
        quantity_to_produce=data.quantity_to_produce,
        sizes_breakdown=data.sizes_breakdown,
        notes=data.notes,
        user_id=data.user_id,
        product_type=data.product_type,
        deduct_stock=data.deduct_stock,
    )
    return success_response(
        "Production started",
        batch_id=batch.id,
        batch_reference=batch.batch_reference,
        total_cost=result.total_cost,
        deduction_mode=batch.deduction_mode,
        materials=[line.to_dict() for line in result.lines],
        warnings=[str(w) for w in result.warnings],
    )


@router.post("/cancel")
@limiter.limit("30/minute")
def cancel_batch(request: Request, data: CancelBatchRequest, db: DbSession):
    """Cancel a batch by reference and restore its materials."""
    outcome = ProductionBatchService(db).cancel_batch(
        str(data.batch_id), reason=data.cancellation_reason, cancelled_by=data.cancelled_by
    )
    return success_response("Batch cancelled", **outcome)


@router.post("/plan")
@limiter.limit("60/minute")
def check_plan(request: Request, data: PlanCheckRequest, db: DbSession):
    """Check a production plan against current stock. Nothing is deducted."""
    check = ProductionBatchService(db).plan_requirements(
        data.product_id,
        product_type=data.product_type,
        planned_quantities=data.planned_quantities,
        quantity_to_produce=data.quantity_to_produce,
    )
    return success_response(**check)


@router.get("/{batch_id}")
@limiter.limit("60/minute")
def get_batch(request: Request, batch_id: int, db: DbSession):
    """Batch detail.

    ``materials_used`` is the live estimate under the current configuration;
    ``historical_usage`` is what the batch actually took from stock.
    """
    service = ProductionBatchService(db)
    detail = service.batch_detail(service.get_batch(batch_id))
    body = _batch_dict(detail["batch"])
    body.update(
        materials_used=detail["materials_used"],
        current_estimate=detail["current_estimate"],
        historical_usage=[
            BatchMaterialUsageResponse.model_validate(u).model_dump()
            for u in detail["historical_usage"]
        ],
        leftovers=[LeftoverResponse.model_validate(l).model_dump() for l in detail["leftovers"]],
        status_history=[
            BatchStatusHistoryResponse.model_validate(h).model_dump()
            for h in detail["status_history"]
        ],
    )
    return success_response(batch=body)


@router.get("/{batch_id}/estimate")
@limiter.limit("60/minute")
def get_batch_estimate(request: Request, batch_id: int, db: DbSession):
    """What the batch would consume under today's configuration."""
    service = ProductionBatchService(db)
    return success_response(batch_id=batch_id, **service.current_estimate(service.get_batch(batch_id)))


@router.get("/{batch_id}/usage")
@limiter.limit("60/minute")
def get_batch_usage(request: Request, batch_id: int, db: DbSession):
    """What the batch actually took from stock."""
    service = ProductionBatchService(db)
    usage = service.historical_usage(service.get_batch(batch_id))
    return list_response([BatchMaterialUsageResponse.model_validate(u).model_dump() for u in usage])


@router.get("/{batch_id}/history")
@limiter.limit("60/minute")
def get_batch_history(request: Request, batch_id: int, db: DbSession):
    history = ProductionBatchService(db).status_history(batch_id)
    return list_response([BatchStatusHistoryResponse.model_validate(h).model_dump() for h in history])


@router.get("/{batch_id}/transactions")
@limiter.limit("60/minute")
def get_batch_transactions(
    request: Request,
    batch_id: int,
    db: DbSession,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
):
    """Ledger rows written under the batch reference."""
    service = ProductionBatchService(db)
    items, total = service.batch_transactions(service.get_batch(batch_id), skip=skip, limit=limit)
    return paginated_response(
        [StockTransactionResponse.model_validate(t).model_dump() for t in items], total, skip, limit
    )


@router.get("/{batch_id}/leftovers")
@limiter.limit("60/minute")
def get_batch_leftovers(request: Request, batch_id: int, db: DbSession):
    leftovers = LeftoverService(db).list_leftovers(batch_id)
    return list_response([LeftoverResponse.model_validate(l).model_dump() for l in leftovers])


@router.put("/{batch_id}")
@limiter.limit("30/minute")
def update_batch(request: Request, batch_id: int, data: BatchUpdateRequest, db: DbSession):
    """Edit the plan of a batch that has not moved stock yet."""
    batch = ProductionBatchService(db).update_batch(
        batch_id,
        quantity_to_produce=data.quantity_to_produce,
        sizes_breakdown=data.sizes_breakdown,
        notes=data.notes,
    )
    return success_response("Batch updated", batch=_batch_dict(batch))


@router.put("/{batch_id}/status")
@limiter.limit("30/minute")
def update_batch_status(request: Request, batch_id: int, data: BatchStatusUpdate, db: DbSession):
    batch = ProductionBatchService(db).update_status(
        batch_id, data.status, changed_by=data.changed_by, comments=data.comments
    )
    return success_response("Status updated", batch=_batch_dict(batch))


@router.delete("/{batch_id}")
@limiter.limit("30/minute")
def delete_batch(request: Request, batch_id: int, db: DbSession):
    """Delete a batch that never moved stock, or a cancelled one."""
    ProductionBatchService(db).delete_batch(batch_id)
    return success_response("Batch deleted", batch_id=batch_id)
