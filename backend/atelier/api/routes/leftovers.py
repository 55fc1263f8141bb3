"""Leftover routes."""

from fastapi import APIRouter, Request

from atelier.core.rate_limit import limiter
from atelier.core.responses import success_response
from atelier.db.session import DbSession
from atelier.schemas.leftover import LeftoverResponse, ReaddToStockRequest, SaveLeftoversRequest
from atelier.services.leftover_service import LeftoverService

router = APIRouter()


@router.post("/save")
@limiter.limit("30/minute")
def save_leftovers(request: Request, data: SaveLeftoversRequest, db: DbSession):
    """Replace the leftover set of a batch."""
    saved = LeftoverService(db).save_leftovers(
        data.batch_id, [item.model_dump() for item in data.leftovers]
    )
    return success_response(
        "Leftovers saved",
        batch_id=data.batch_id,
        count=len(saved),
        leftovers=[LeftoverResponse.model_validate(l).model_dump() for l in saved],
    )


@router.post("/readd-to-stock")
@limiter.limit("30/minute")
def readd_to_stock(request: Request, data: ReaddToStockRequest, db: DbSession):
    """Return reusable leftovers to stock. Ineligible ids are skipped."""
    outcome = LeftoverService(db).readd_to_stock(data.leftover_ids, user_id=data.user_id)
    return success_response(**outcome)


@router.delete("/{leftover_id}")
@limiter.limit("30/minute")
def delete_leftover(request: Request, leftover_id: int, db: DbSession):
    LeftoverService(db).delete_leftover(leftover_id)
    return success_response("Leftover deleted", leftover_id=leftover_id)
