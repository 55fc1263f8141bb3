"""Leftover reconciliation for finished batches."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlalchemy.orm import Session

from atelier.core.exceptions import NotFoundError, ValidationError
from atelier.db.session import atomic
from atelier.models.batch import ProductionBatch
from atelier.models.leftover import BatchLeftover
from atelier.models.material import Material
from atelier.models.stock import LedgerReason
from atelier.services.stock_ledger_service import StockLedgerService

logger = logging.getLogger(__name__)


class LeftoverService:
    """Records leftovers per batch and returns reusable ones to stock."""

    def __init__(self, db: Session):
        self.db = db
        self.ledger = StockLedgerService(db)

    def list_leftovers(self, batch_id: int) -> List[BatchLeftover]:
        self._get_batch(batch_id)
        return (
            self.db.query(BatchLeftover)
            .filter(BatchLeftover.batch_id == batch_id)
            .order_by(BatchLeftover.id)
            .all()
        )

    def save_leftovers(
        self,
        batch_id: Optional[int],
        leftovers: Optional[Iterable[Mapping[str, Any]]],
    ) -> List[BatchLeftover]:
        """Replace the batch's leftover set with ``leftovers``.

        Refused once any existing entry has been returned to stock, since
        replacing it would lose the record of that return.
        """
        if not batch_id:
            raise ValidationError("batch_id is required")
        if leftovers is None:
            raise ValidationError("leftovers is required")
        leftovers = list(leftovers)

        with atomic(self.db):
            self._get_batch(batch_id)
            readded = (
                self.db.query(BatchLeftover.id)
                .filter(BatchLeftover.batch_id == batch_id, BatchLeftover.readded_to_stock.is_(True))
                .first()
            )
            if readded is not None:
                raise ValidationError(
                    f"Leftovers of batch {batch_id} were already returned to stock and cannot be replaced"
                )

            material_ids = {int(item["material_id"]) for item in leftovers}
            if material_ids:
                found = {
                    m_id for (m_id,) in self.db.query(Material.id).filter(Material.id.in_(material_ids))
                }
                missing = sorted(material_ids - found)
                if missing:
                    raise NotFoundError("Material", missing[0])

            self.db.query(BatchLeftover).filter(BatchLeftover.batch_id == batch_id).delete(
                synchronize_session="fetch"
            )
            saved = []
            for item in leftovers:
                quantity = float(item.get("quantity") or 0.0)
                if quantity < 0:
                    raise ValidationError(
                        f"Leftover quantity for material {item['material_id']} cannot be negative"
                    )
                leftover = BatchLeftover(
                    batch_id=batch_id,
                    material_id=int(item["material_id"]),
                    leftover_quantity=quantity,
                    is_reusable=bool(item.get("is_reusable", True)),
                    readded_to_stock=False,
                    notes=item.get("notes"),
                )
                self.db.add(leftover)
                saved.append(leftover)
            self.db.flush()

        logger.info(f"Saved {len(saved)} leftover(s) for batch {batch_id}")
        return saved

    def readd_to_stock(
        self,
        leftover_ids: Optional[Iterable[int]],
        user_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Return reusable leftovers to stock, each at most once.

        Ids that are not reusable, already returned or unknown are left out
        of the result without error.
        """
        if leftover_ids is None:
            raise ValidationError("leftover_ids is required")
        ids = sorted({int(i) for i in leftover_ids})
        if not ids:
            return {"count": 0, "leftovers": []}

        with atomic(self.db):
            candidates = (
                self.db.query(BatchLeftover)
                .filter(
                    BatchLeftover.id.in_(ids),
                    BatchLeftover.is_reusable.is_(True),
                    BatchLeftover.readded_to_stock.is_(False),
                )
                .order_by(BatchLeftover.id)
                .with_for_update()
                .all()
            )
            materials = self.ledger.lock_materials(c.material_id for c in candidates)

            returned = []
            for leftover in candidates:
                if leftover.leftover_quantity > 0:
                    batch = self.db.get(ProductionBatch, leftover.batch_id)
                    transaction = self.ledger.restore(
                        materials[leftover.material_id],
                        leftover.leftover_quantity,
                        LedgerReason.LEFTOVER_RETURN,
                        reference=batch.batch_reference,
                        notes=f"Leftover {leftover.id} returned to stock",
                        user_id=user_id,
                    )
                    transaction_id = transaction.id
                else:
                    transaction_id = None
                leftover.readded_to_stock = True
                leftover.readded_at = datetime.now(timezone.utc)
                returned.append({
                    "leftover_id": leftover.id,
                    "material_id": leftover.material_id,
                    "quantity": leftover.leftover_quantity,
                    "transaction_id": transaction_id,
                })

        logger.info(f"Returned {len(returned)} leftover(s) to stock out of {len(ids)} requested")
        return {"count": len(returned), "leftovers": returned}

    def delete_leftover(self, leftover_id: int) -> None:
        with atomic(self.db):
            leftover = self.db.get(BatchLeftover, leftover_id)
            if leftover is None:
                raise NotFoundError("Leftover", leftover_id)
            if leftover.readded_to_stock:
                raise ValidationError(
                    f"Leftover {leftover_id} was returned to stock and cannot be deleted"
                )
            self.db.delete(leftover)
        logger.info(f"Deleted leftover {leftover_id}")

    def _get_batch(self, batch_id: int) -> ProductionBatch:
        batch = self.db.get(ProductionBatch, batch_id)
        if batch is None:
            raise NotFoundError("Batch", batch_id)
        return batch
