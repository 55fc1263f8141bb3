"""Stock Ledger Service - the single write path for material stock.

Every change to ``Material.stock_quantity`` goes through ``deduct`` or
``restore`` here, which update the counter and append exactly one
``StockTransaction`` row together. Nothing in this module commits: callers
wrap a whole unit of work in ``atomic(db)`` so that any failure rolls back
the counter and the ledger as one.

Locking:
    Material rows are read with ``SELECT ... FOR UPDATE`` in ascending id
    order before availability is checked, on every deduction and
    restoration path. Ordering by id keeps two concurrent batches touching
    the same materials from deadlocking each other.

Conservation:
    For each material, ``opening_stock`` plus the signed sum of ledger rows
    written after ``baseline_transaction_id`` equals ``stock_quantity``.
    ``reconcile`` checks this; ``reset_stock`` moves the baseline after a
    physical count.
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy import case, func
from sqlalchemy.orm import Session, aliased

from atelier.core.exceptions import InsufficientStockError, NotFoundError, ValidationError
from atelier.models.material import Material
from atelier.models.stock import (
    LedgerReason,
    MovementDirection,
    PRODUCTION_OUT_REASONS,
    StockTransaction,
)

logger = logging.getLogger(__name__)

# Reconciliation tolerance for accumulated float error
BALANCE_EPSILON = 1e-6


def _reason_value(reason) -> str:
    return reason.value if isinstance(reason, LedgerReason) else str(reason)


class StockLedgerService:
    """Counter and ledger updates for raw materials."""

    def __init__(self, db: Session):
        self.db = db

    # ===== LOCKING & VALIDATION =====

    def lock_materials(self, material_ids: Iterable[int]) -> Dict[int, Material]:
        """Lock material rows for update, in id order.

        Raises NotFoundError for the first id that does not exist.
        """
        ids = sorted(set(material_ids))
        if not ids:
            return {}
        materials = (
            self.db.query(Material)
            .filter(Material.id.in_(ids))
            .order_by(Material.id)
            .with_for_update()
            .populate_existing()
            .all()
        )
        by_id = {m.id: m for m in materials}
        for material_id in ids:
            if material_id not in by_id:
                raise NotFoundError("Material", material_id)
        return by_id

    def check_availability(
        self,
        quantities: Mapping[int, float],
        materials: Mapping[int, Material],
    ) -> None:
        """Validate every requested quantity before anything is mutated.

        Raises InsufficientStockError listing every short material.
        """
        shortages = []
        for material_id in sorted(quantities):
            required = float(quantities[material_id])
            material = materials[material_id]
            available = float(material.stock_quantity or 0.0)
            if required > available:
                shortages.append({
                    "material_id": material.id,
                    "material_name": material.name,
                    "color": material.color,
                    "required": required,
                    "available": available,
                    "shortage": required - available,
                })

        if shortages:
            for s in shortages:
                logger.warning(
                    f"Insufficient stock for material {s['material_id']} ({s['material_name']}): "
                    f"need {s['required']}, have {s['available']}"
                )
            first = shortages[0]
            raise InsufficientStockError(
                material_id=first["material_id"],
                material_name=first["material_name"],
                required=first["required"],
                available=first["available"],
                shortages=shortages,
            )

    # ===== CORE WRITES =====

    def deduct(
        self,
        material: Material,
        quantity: float,
        reason,
        reference: Optional[str] = None,
        notes: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> StockTransaction:
        """Take ``quantity`` out of stock and append one ``out`` ledger row.

        The material must already be locked by the caller.
        """
        quantity = float(quantity)
        if quantity <= 0:
            raise ValidationError(f"Deduction quantity must be positive, got {quantity}")

        available = float(material.stock_quantity or 0.0)
        if quantity > available:
            logger.warning(
                f"Refused deduction of {quantity} from material {material.id} "
                f"({material.name}): only {available} in stock"
            )
            raise InsufficientStockError(
                material_id=material.id,
                material_name=material.name,
                required=quantity,
                available=available,
            )

        material.stock_quantity = available - quantity
        transaction = self._append(
            material, MovementDirection.OUT, quantity, reason, reference, notes, user_id
        )
        logger.info(
            f"Stock out: material {material.id} -{quantity} ({_reason_value(reason)}, "
            f"ref={reference}) -> {material.stock_quantity}"
        )
        return transaction

    def restore(
        self,
        material: Material,
        quantity: float,
        reason,
        reference: Optional[str] = None,
        notes: Optional[str] = None,
        user_id: Optional[int] = None,
        reverses_transaction_id: Optional[int] = None,
    ) -> StockTransaction:
        """Put ``quantity`` back in stock and append one ``in`` ledger row."""
        quantity = float(quantity)
        if quantity <= 0:
            raise ValidationError(f"Restored quantity must be positive, got {quantity}")

        material.stock_quantity = float(material.stock_quantity or 0.0) + quantity
        transaction = self._append(
            material,
            MovementDirection.IN,
            quantity,
            reason,
            reference,
            notes,
            user_id,
            reverses_transaction_id=reverses_transaction_id,
        )
        logger.info(
            f"Stock in: material {material.id} +{quantity} ({_reason_value(reason)}, "
            f"ref={reference}) -> {material.stock_quantity}"
        )
        return transaction

    def _append(
        self,
        material: Material,
        direction: MovementDirection,
        quantity: float,
        reason,
        reference: Optional[str],
        notes: Optional[str],
        user_id: Optional[int],
        reverses_transaction_id: Optional[int] = None,
    ) -> StockTransaction:
        unit_price = float(material.unit_price or 0.0)
        transaction = StockTransaction(
            material_id=material.id,
            direction=direction.value,
            quantity=quantity,
            quantity_type_id=material.quantity_type_id,
            unit_price=unit_price,
            total_cost=quantity * unit_price,
            reason=_reason_value(reason),
            reference=reference,
            notes=notes,
            user_id=user_id,
            reverses_transaction_id=reverses_transaction_id,
        )
        self.db.add(transaction)
        self.db.flush()
        return transaction

    # ===== MANUAL MOVEMENTS =====

    def create_material(self, **fields: Any) -> Material:
        """Create a material whose initial stock is its reconciliation baseline."""
        opening = float(fields.pop("stock_quantity", 0.0) or 0.0)
        material = Material(
            stock_quantity=opening,
            opening_stock=opening,
            baseline_transaction_id=self._last_transaction_id(),
            **fields,
        )
        self.db.add(material)
        self.db.flush()
        logger.info(f"Created material {material.id} ({material.name}) with opening stock {opening}")
        return material

    def record_movement(
        self,
        material_id: int,
        direction: str,
        quantity: float,
        reason=LedgerReason.ADJUSTMENT,
        reference: Optional[str] = None,
        notes: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> StockTransaction:
        """Manual in/out movement on one material."""
        try:
            direction = MovementDirection(direction)
        except ValueError:
            raise ValidationError(f"Unknown movement direction '{direction}'") from None

        material = self.lock_materials([material_id])[material_id]
        if direction is MovementDirection.OUT:
            return self.deduct(material, quantity, reason, reference, notes, user_id)
        return self.restore(material, quantity, reason, reference, notes, user_id)

    def reset_stock(
        self,
        material_id: int,
        counted_quantity: float,
        user_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> Tuple[Material, Optional[StockTransaction]]:
        """Record a physical count and start a new reconciliation period.

        The difference with the counter is written as a ``stock_count`` row
        so the ledger still explains the jump; the baseline then moves past
        it.
        """
        counted = float(counted_quantity)
        if counted < 0:
            raise ValidationError("Counted quantity cannot be negative")

        material = self.lock_materials([material_id])[material_id]
        difference = counted - float(material.stock_quantity or 0.0)
        transaction = None
        if difference > 0:
            transaction = self.restore(
                material, difference, LedgerReason.STOCK_COUNT, notes=notes, user_id=user_id
            )
        elif difference < 0:
            transaction = self.deduct(
                material, -difference, LedgerReason.STOCK_COUNT, notes=notes, user_id=user_id
            )

        material.stock_quantity = counted
        material.opening_stock = counted
        material.baseline_transaction_id = self._last_transaction_id()
        logger.info(
            f"Stock count for material {material.id}: {counted} "
            f"(baseline now transaction {material.baseline_transaction_id})"
        )
        return material, transaction

    # ===== READS =====

    def reconcile(self, material_id: int) -> Dict[str, Any]:
        """Compare the counter with opening stock plus ledger movements."""
        material = self.db.get(Material, material_id)
        if material is None:
            raise NotFoundError("Material", material_id)

        signed = case(
            (StockTransaction.direction == MovementDirection.OUT.value, -StockTransaction.quantity),
            else_=StockTransaction.quantity,
        )
        ledger_sum, movement_count = (
            self.db.query(func.coalesce(func.sum(signed), 0.0), func.count(StockTransaction.id))
            .filter(
                StockTransaction.material_id == material_id,
                StockTransaction.id > material.baseline_transaction_id,
            )
            .one()
        )
        ledger_sum = float(ledger_sum or 0.0)
        expected = float(material.opening_stock) + ledger_sum
        actual = float(material.stock_quantity)
        drift = actual - expected
        balanced = abs(drift) <= BALANCE_EPSILON
        if not balanced:
            logger.warning(
                f"Material {material_id} stock drift: counter {actual}, ledger says {expected}"
            )
        return {
            "material_id": material_id,
            "opening_stock": float(material.opening_stock),
            "baseline_transaction_id": material.baseline_transaction_id,
            "ledger_sum": ledger_sum,
            "movement_count": movement_count,
            "expected_stock": expected,
            "actual_stock": actual,
            "drift": drift,
            "balanced": balanced,
        }

    def transactions(
        self,
        material_id: Optional[int] = None,
        reference: Optional[str] = None,
        direction: Optional[str] = None,
        reasons: Optional[Iterable[str]] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[StockTransaction], int]:
        """Filtered ledger page, newest first."""
        query = self.db.query(StockTransaction)
        if material_id is not None:
            query = query.filter(StockTransaction.material_id == material_id)
        if reference is not None:
            query = query.filter(StockTransaction.reference == reference)
        if direction is not None:
            query = query.filter(StockTransaction.direction == direction)
        if reasons:
            query = query.filter(StockTransaction.reason.in_([_reason_value(r) for r in reasons]))

        total = query.count()
        items = query.order_by(StockTransaction.id.desc()).offset(skip).limit(limit).all()
        return items, total

    def returned_quantities(self, reference: str) -> Dict[int, float]:
        """Quantity already given back per material by production returns for a reference."""
        rows = (
            self.db.query(StockTransaction.material_id, func.sum(StockTransaction.quantity))
            .filter(
                StockTransaction.reference == reference,
                StockTransaction.direction == MovementDirection.IN.value,
                StockTransaction.reason == LedgerReason.PRODUCTION_RETURN.value,
            )
            .group_by(StockTransaction.material_id)
            .all()
        )
        return {material_id: float(total or 0.0) for material_id, total in rows}

    # ===== REVERSAL =====

    def restore_production_transaction(
        self,
        material_id: int,
        reference: str,
        user_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> StockTransaction:
        """Reverse the latest production deduction of a material for a reference.

        Each ``out`` row can be reversed once; the reversing ``in`` row
        points back at it.
        """
        material = self.lock_materials([material_id])[material_id]

        reversal = aliased(StockTransaction)
        original = (
            self.db.query(StockTransaction)
            .outerjoin(reversal, reversal.reverses_transaction_id == StockTransaction.id)
            .filter(
                StockTransaction.material_id == material_id,
                StockTransaction.reference == reference,
                StockTransaction.direction == MovementDirection.OUT.value,
                StockTransaction.reason.in_(PRODUCTION_OUT_REASONS),
                reversal.id.is_(None),
            )
            .order_by(StockTransaction.id.desc())
            .first()
        )
        if original is None:
            raise NotFoundError("Unreversed production deduction", f"{reference}/material {material_id}")

        return self.restore(
            material,
            original.quantity,
            LedgerReason.PRODUCTION_RETURN,
            reference=reference,
            notes=notes or f"Reversal of transaction {original.id}",
            user_id=user_id,
            reverses_transaction_id=original.id,
        )

    def _last_transaction_id(self) -> int:
        self.db.flush()
        return int(self.db.query(func.coalesce(func.max(StockTransaction.id), 0)).scalar() or 0)
