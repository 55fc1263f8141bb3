"""Production Batch Service - batch lifecycle and its stock effects.

Flow:
1. start_production: validate the product configuration, compute the
   requirements for the plan, lock and check every material, then deduct
   them all and record one usage row per material. All or nothing.
2. Stock for a batch is moved by exactly one deduction path, recorded in
   ``deduction_mode``:
   - ``at_start``: deducted when the batch was created (or later by
     ``deduct_for_plan``),
   - ``actual_quantities``: deducted once production reports actual
     per-piece usage.
   Asking for the other path afterwards raises DeductionModeConflictError.
3. adjust_materials: reconciles configured against actual quantities
   after production.
4. cancel_batch: gives the stock back and closes the batch.

Each public mutating method is one transaction (``atomic``): any error
leaves stock, ledger and batch exactly as they were.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple
from uuid import uuid4

from sqlalchemy import or_
from sqlalchemy.orm import Session

from atelier.core.config import settings
from atelier.core.exceptions import (
    DeductionModeConflictError,
    InvalidStatusTransitionError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from atelier.db.session import atomic
from atelier.models.batch import (
    BatchMaterialUsage,
    BatchStatus,
    BatchStatusHistory,
    DeductionMode,
    ProductionBatch,
)
from atelier.models.material import Material
from atelier.models.product import ProductType
from atelier.models.stock import LedgerReason, StockTransaction
from atelier.services.configuration_source import (
    MaterialConfigurationSource,
    configuration_source_for,
)
from atelier.services.requirement_calculator import (
    ProductionPlan,
    RequirementResult,
    calculate_requirements,
)
from atelier.services.stock_ledger_service import StockLedgerService

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    BatchStatus.PLANNED.value: {BatchStatus.IN_PROGRESS.value, BatchStatus.COMPLETED.value},
    BatchStatus.IN_PROGRESS.value: {BatchStatus.COMPLETED.value},
    BatchStatus.COMPLETED.value: set(),
    BatchStatus.CANCELLED.value: set(),
}

REFERENCE_ATTEMPTS = 5


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ProductionBatchService:
    """Creates batches and drives them through deduction, completion and cancellation."""

    def __init__(self, db: Session):
        self.db = db
        self.ledger = StockLedgerService(db)

    # ===== LOOKUPS =====

    def get_batch(self, batch_id: int) -> ProductionBatch:
        batch = self.db.get(ProductionBatch, batch_id)
        if batch is None:
            raise NotFoundError("Batch", batch_id)
        return batch

    def get_batch_by_reference(self, batch_reference: str) -> ProductionBatch:
        batch = (
            self.db.query(ProductionBatch)
            .filter(ProductionBatch.batch_reference == batch_reference)
            .first()
        )
        if batch is None:
            raise NotFoundError("Batch", batch_reference)
        return batch

    def list_batches(
        self,
        status: Optional[str] = None,
        search: Optional[str] = None,
        product_type: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[ProductionBatch], int]:
        query = self.db.query(ProductionBatch)
        if status:
            query = query.filter(ProductionBatch.status == status)
        if product_type:
            query = query.filter(ProductionBatch.product_type == product_type)
        if search:
            pattern = f"%{search}%"
            query = query.filter(
                or_(
                    ProductionBatch.batch_reference.ilike(pattern),
                    ProductionBatch.notes.ilike(pattern),
                    ProductionBatch.boutique_origin.ilike(pattern),
                )
            )
        total = query.count()
        items = query.order_by(ProductionBatch.id.desc()).offset(skip).limit(limit).all()
        return items, total

    # ===== CREATE =====

    def start_production(
        self,
        product_id: Optional[int],
        quantity_to_produce: int = 0,
        sizes_breakdown: Any = None,
        notes: Optional[str] = None,
        user_id: Optional[int] = None,
        product_type: str = ProductType.REGULAR.value,
        deduct_stock: bool = True,
    ) -> Tuple[ProductionBatch, RequirementResult]:
        """Create a batch and deduct its materials in one transaction.

        Every material is checked against stock before the first deduction,
        so an insufficient material leaves stock and ledger untouched.
        With ``deduct_stock=False`` the batch is created without moving stock
        and waits for ``deduct_actual_quantities``.
        """
        if not product_id:
            raise ValidationError("product_id is required")

        source = configuration_source_for(self.db, product_type)
        with atomic(self.db):
            product = source.get_product(product_id)
            rows = source.ensure_configured(product)
            plan = ProductionPlan.from_breakdown(sizes_breakdown, quantity_to_produce)
            if plan.total_pieces <= 0:
                raise ValidationError("quantity_to_produce must be positive")

            materials = self.ledger.lock_materials(r.material_id for r in rows)
            result = calculate_requirements(
                rows, plan, {m_id: m.unit_price for m_id, m in materials.items()}, product.id
            )
            if deduct_stock:
                self.ledger.check_availability(result.quantities, materials)

            batch = ProductionBatch(
                batch_reference=self._generate_reference(source.reference_prefix),
                product_id=product.id,
                product_type=source.product_type.value,
                quantity_to_produce=plan.total_pieces,
                sizes_breakdown=plan.to_dict() or None,
                status=BatchStatus.PLANNED.value,
                total_materials_cost=result.total_cost,
                notes=notes,
                boutique_origin=product.boutique_origin,
                started_by=user_id,
            )
            self.db.add(batch)
            self.db.flush()
            self._record_status(batch, None, BatchStatus.PLANNED.value, user_id, "Production started")

            if deduct_stock:
                reason = (
                    LedgerReason.PRODUCTION_SUBCONTRACT
                    if source.product_type is ProductType.SUBCONTRACT
                    else LedgerReason.PRODUCTION
                )
                self._deduct_lines(batch, result, materials, reason, user_id)
                batch.deduction_mode = DeductionMode.AT_START.value

            source.mark_in_production(product)

        logger.info(
            f"Started batch {batch.batch_reference} for {batch.product_type} product "
            f"{batch.product_id}: {batch.quantity_to_produce} piece(s), "
            f"cost {batch.total_materials_cost}, deduction={batch.deduction_mode}"
        )
        return batch, result

    # ===== DEDUCTION PATHS =====

    def deduct_for_plan(
        self,
        planned_quantities: Any,
        product_id: Optional[int] = None,
        product_type: str = ProductType.REGULAR.value,
        batch_id: Optional[int] = None,
        reference: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Deduct the configured materials for a plan, all or nothing.

        Given a ``batch_id``, or a ``reference`` that belongs to a batch, the
        deduction becomes that batch's deduction and uses its product and,
        when ``planned_quantities`` is empty, its plan.
        """
        with atomic(self.db):
            batch = None
            if batch_id is not None:
                batch = self.get_batch(batch_id)
            elif reference:
                batch = (
                    self.db.query(ProductionBatch)
                    .filter(ProductionBatch.batch_reference == reference)
                    .first()
                )
            if batch is not None:
                self._ensure_deductible(batch, DeductionMode.AT_START)
                product_id = batch.product_id
                product_type = batch.product_type
                reference = batch.batch_reference
                if not planned_quantities:
                    planned_quantities = batch.sizes_breakdown
            if not product_id:
                raise ValidationError("product_id or batch_id is required")

            source = configuration_source_for(self.db, product_type)
            product = source.get_product(product_id)
            rows = source.ensure_configured(product)
            plan = ProductionPlan.from_breakdown(
                planned_quantities, batch.quantity_to_produce if batch else 0
            )
            if plan.total_pieces <= 0:
                raise ValidationError("planned_quantities must contain at least one piece")
            reference = reference or self._generate_reference(source.reference_prefix)

            materials = self.ledger.lock_materials(r.material_id for r in rows)
            result = calculate_requirements(
                rows, plan, {m_id: m.unit_price for m_id, m in materials.items()}, product.id
            )
            self.ledger.check_availability(result.quantities, materials)

            if batch is not None:
                transactions = self._deduct_lines(
                    batch, result, materials, LedgerReason.PRODUCTION_PLAN, user_id
                )
                batch.deduction_mode = DeductionMode.AT_START.value
                batch.total_materials_cost = result.total_cost
            else:
                transactions = [
                    self.ledger.deduct(
                        materials[line.material_id],
                        line.quantity,
                        LedgerReason.PRODUCTION_PLAN,
                        reference,
                        notes=f"Production plan for product {product.id}",
                        user_id=user_id,
                    )
                    for line in sorted(result.lines, key=lambda l: l.material_id)
                ]

        return {
            "reference": reference,
            "batch_id": batch.id if batch is not None else None,
            "transactions": [self._transaction_summary(t, materials) for t in transactions],
            "total_cost": result.total_cost,
        }

    def deduct_actual_quantities(
        self,
        batch_id: Optional[int],
        materials_quantities: Optional[Mapping[Any, Any]],
        user_id: Optional[int] = None,
        production_number: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Deduct actual per-piece quantities times the batch's planned pieces.

        Materials are locked and deducted one at a time; the first
        insufficient material aborts the call and rolls back every
        deduction made before it.
        """
        if not batch_id:
            raise ValidationError("batch_id is required")
        if not materials_quantities:
            raise ValidationError("materials_quantities is required")

        per_piece: Dict[int, float] = {}
        for material_id, quantity in materials_quantities.items():
            try:
                per_piece[int(material_id)] = float(quantity)
            except (TypeError, ValueError):
                raise ValidationError(
                    f"Invalid quantity for material {material_id}: {quantity!r}"
                ) from None
            if per_piece[int(material_id)] < 0:
                raise ValidationError(f"Quantity for material {material_id} cannot be negative")

        with atomic(self.db):
            batch = self.get_batch(batch_id)
            self._ensure_deductible(batch, DeductionMode.ACTUAL_QUANTITIES)

            notes = f"Actual usage for batch {batch.batch_reference}"
            if production_number:
                notes += f" (production {production_number})"

            summaries = []
            total_cost = 0.0
            for material_id in sorted(per_piece):
                quantity = per_piece[material_id] * batch.quantity_to_produce
                if quantity <= 0:
                    continue
                material = self.ledger.lock_materials([material_id])[material_id]
                transaction = self.ledger.deduct(
                    material,
                    quantity,
                    LedgerReason.PRODUCTION_ACTUAL,
                    batch.batch_reference,
                    notes=notes,
                    user_id=user_id,
                )
                self._add_usage(batch, transaction)
                total_cost += transaction.total_cost
                summaries.append(self._transaction_summary(transaction, {material_id: material}))

            batch.materials_quantities = {str(m_id): q for m_id, q in per_piece.items()}
            batch.deduction_mode = DeductionMode.ACTUAL_QUANTITIES.value
            batch.total_materials_cost = total_cost

        logger.info(
            f"Deducted actual quantities for batch {batch.batch_reference}: "
            f"{len(summaries)} material(s), cost {total_cost}"
        )
        return {
            "batch_id": batch.id,
            "batch_reference": batch.batch_reference,
            "transactions": summaries,
            "total_cost": total_cost,
        }

    def adjust_materials(
        self,
        batch_id: Optional[int],
        adjustments: Optional[List[Mapping[str, Any]]],
        user_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Reconcile configured against actual consumption for a deducted batch.

        Extra consumption is deducted, unused quantity is restored.
        Differences below the configured tolerance are ignored. If any
        material is short, nothing is applied.
        """
        if not batch_id:
            raise ValidationError("batch_id is required")
        if not adjustments:
            raise ValidationError("materials_adjustments is required")

        tolerance = settings.stock_adjustment_tolerance
        with atomic(self.db):
            batch = self.get_batch(batch_id)
            if batch.status == BatchStatus.CANCELLED.value:
                raise ValidationError(f"Batch {batch.batch_reference} is cancelled")
            if not batch.deduction_mode:
                raise ValidationError(
                    f"Batch {batch.batch_reference} has no stock deduction to adjust"
                )

            entries = []
            for adjustment in adjustments:
                material_id = adjustment.get("material_id")
                if not material_id:
                    continue
                configured = float(adjustment.get("configured_quantity") or 0.0)
                actual = float(adjustment.get("actual_quantity") or 0.0)
                difference = actual - configured
                if abs(difference) < tolerance:
                    continue
                entries.append((int(material_id), configured, actual, difference))

            materials = self.ledger.lock_materials(e[0] for e in entries)
            extra: Dict[int, float] = {}
            for material_id, _, _, difference in entries:
                if difference > 0:
                    extra[material_id] = extra.get(material_id, 0.0) + difference
            self.ledger.check_availability(extra, materials)

            results = []
            for material_id, configured, actual, difference in entries:
                material = materials[material_id]
                if difference > 0:
                    transaction = self.ledger.deduct(
                        material,
                        difference,
                        LedgerReason.PRODUCTION_ADJUSTMENT,
                        batch.batch_reference,
                        notes=f"Actual usage above configured (+{difference})",
                        user_id=user_id,
                    )
                    action = "deducted"
                else:
                    transaction = self.ledger.restore(
                        material,
                        -difference,
                        LedgerReason.PRODUCTION_ADJUSTMENT,
                        batch.batch_reference,
                        notes=f"Actual usage below configured ({difference})",
                        user_id=user_id,
                    )
                    action = "added_back"
                self._apply_usage_difference(batch, material, difference, transaction)
                results.append({
                    "material_id": material_id,
                    "material_name": material.name,
                    "color": material.color,
                    "configured_quantity": configured,
                    "actual_quantity": actual,
                    "difference": difference,
                    "action": action,
                    "remaining_stock": material.stock_quantity,
                    "transaction_id": transaction.id,
                })

        logger.info(f"Adjusted {len(results)} material(s) for batch {batch.batch_reference}")
        return {"batch_id": batch.id, "adjustments": results}

    def restore_deduction(
        self,
        material_id: int,
        reference: str,
        user_id: Optional[int] = None,
    ) -> StockTransaction:
        """Reverse one production deduction of a material, refusing cancelled batches."""
        if not reference:
            raise ValidationError("reference is required")
        with atomic(self.db):
            batch = (
                self.db.query(ProductionBatch)
                .filter(ProductionBatch.batch_reference == reference)
                .first()
            )
            if batch is not None and batch.status == BatchStatus.CANCELLED.value:
                raise ValidationError(
                    f"Batch {reference} is cancelled; its stock was already restored"
                )
            transaction = self.ledger.restore_production_transaction(material_id, reference, user_id)
        return transaction

    # ===== CANCEL / STATUS / EDIT =====

    def cancel_batch(
        self,
        batch_reference: Optional[str],
        reason: Optional[str] = None,
        cancelled_by: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Cancel a batch and give its materials back to stock.

        For batches deducted at start the quantities are recomputed from the
        product's current configuration and the stored plan. Batches
        deducted from actual quantities give back their recorded usage.
        Quantities already returned through single reversals are not
        returned twice.
        """
        if not batch_reference:
            raise ValidationError("batch_id is required")

        with atomic(self.db):
            batch = self.get_batch_by_reference(batch_reference)
            if batch.status == BatchStatus.CANCELLED.value:
                raise ValidationError(f"Batch {batch_reference} is already cancelled")
            if batch.status == BatchStatus.COMPLETED.value:
                raise InvalidStatusTransitionError(
                    batch.id, batch.status, BatchStatus.CANCELLED.value
                )

            source = configuration_source_for(self.db, batch.product_type)
            quantities = self._cancellation_quantities(batch, source)
            returned = self.ledger.returned_quantities(batch.batch_reference)
            materials = self.ledger.lock_materials(quantities)

            restored = []
            transactions = []
            for material_id in sorted(quantities):
                quantity = quantities[material_id] - returned.get(material_id, 0.0)
                if quantity <= 0:
                    continue
                material = materials[material_id]
                transaction = self.ledger.restore(
                    material,
                    quantity,
                    LedgerReason.BATCH_CANCELLATION,
                    batch.batch_reference,
                    notes=f"Cancellation of batch {batch.batch_reference}: {reason or 'no reason given'}",
                    user_id=cancelled_by,
                )
                restored.append({
                    "material_id": material_id,
                    "material_name": material.name,
                    "quantity_restored": quantity,
                    "new_stock": material.stock_quantity,
                })
                transactions.append(transaction.id)

            old_status = batch.status
            batch.status = BatchStatus.CANCELLED.value
            batch.cancelled_at = _now()
            batch.cancellation_reason = reason
            batch.cancelled_by = cancelled_by
            self._record_status(batch, old_status, batch.status, cancelled_by, reason)

            product = self.db.get(source.product_model, batch.product_id)
            if product is not None:
                source.release_from_production(product)

        logger.info(
            f"Cancelled batch {batch.batch_reference}: restored {len(restored)} material(s)"
        )
        return {
            "batch_id": batch.id,
            "batch_reference": batch.batch_reference,
            "materials_restored": restored,
            "transactions_created": transactions,
        }

    def update_status(
        self,
        batch_id: int,
        status: str,
        changed_by: Optional[int] = None,
        comments: Optional[str] = None,
    ) -> ProductionBatch:
        """Move a batch forward: planifie -> en_cours -> termine."""
        try:
            new_status = BatchStatus(status).value
        except ValueError:
            raise ValidationError(f"Unknown batch status '{status}'") from None

        with atomic(self.db):
            batch = self.get_batch(batch_id)
            if new_status not in ALLOWED_TRANSITIONS.get(batch.status, set()):
                raise InvalidStatusTransitionError(batch.id, batch.status, new_status)

            old_status = batch.status
            batch.status = new_status
            if new_status == BatchStatus.COMPLETED.value:
                batch.completed_at = _now()
            self._record_status(batch, old_status, new_status, changed_by, comments)

        logger.info(f"Batch {batch.batch_reference}: {old_status} -> {new_status}")
        return batch

    def update_batch(
        self,
        batch_id: int,
        quantity_to_produce: Optional[int] = None,
        sizes_breakdown: Any = None,
        notes: Optional[str] = None,
    ) -> ProductionBatch:
        """Edit the plan of a batch that has not moved any stock yet."""
        with atomic(self.db):
            batch = self.get_batch(batch_id)
            if batch.is_terminal:
                raise ValidationError(f"Batch {batch.batch_reference} is {batch.status}")
            if batch.deduction_mode:
                raise ValidationError(
                    f"Batch {batch.batch_reference} already deducted stock and cannot be edited"
                )

            if quantity_to_produce is not None or sizes_breakdown is not None:
                # A per-size plan fixes the total; it changes through the breakdown only.
                if sizes_breakdown is None and batch.sizes_breakdown and (
                    quantity_to_produce != batch.quantity_to_produce
                ):
                    raise ValidationError(
                        f"Batch {batch.batch_reference} is planned per size; "
                        "change sizes_breakdown instead of quantity_to_produce"
                    )
                plan = ProductionPlan.from_breakdown(
                    sizes_breakdown if sizes_breakdown is not None else batch.sizes_breakdown,
                    quantity_to_produce if quantity_to_produce is not None else batch.quantity_to_produce,
                )
                if plan.total_pieces <= 0:
                    raise ValidationError("quantity_to_produce must be positive")
                batch.quantity_to_produce = plan.total_pieces
                batch.sizes_breakdown = plan.to_dict() or None
                batch.total_materials_cost = self.current_estimate(batch)["total_cost"]
            if notes is not None:
                batch.notes = notes

        return batch

    def delete_batch(self, batch_id: int) -> None:
        """Delete a batch that never moved stock, or one that was cancelled."""
        with atomic(self.db):
            batch = self.get_batch(batch_id)
            cancelled = batch.status == BatchStatus.CANCELLED.value
            if batch.deduction_mode and not cancelled:
                raise ValidationError(
                    f"Batch {batch.batch_reference} moved stock; cancel it before deleting"
                )
            if not cancelled:
                source = configuration_source_for(self.db, batch.product_type)
                product = self.db.get(source.product_model, batch.product_id)
                if product is not None:
                    source.release_from_production(product)
            reference = batch.batch_reference
            self.db.delete(batch)
        logger.info(f"Deleted batch {reference}")

    # ===== READ PATHS =====

    def current_estimate(self, batch: ProductionBatch) -> Dict[str, Any]:
        """What the batch would consume under today's configuration and prices."""
        source = configuration_source_for(self.db, batch.product_type)
        rows = source.requirements(batch.product_id)
        if not rows:
            return {"configured": False, "materials": [], "total_cost": 0.0, "warnings": []}

        material_ids = {r.material_id for r in rows}
        materials = {
            m.id: m for m in self.db.query(Material).filter(Material.id.in_(material_ids))
        }
        plan = ProductionPlan.from_breakdown(batch.sizes_breakdown, batch.quantity_to_produce)
        result = calculate_requirements(
            rows, plan, {m_id: m.unit_price for m_id, m in materials.items()}, batch.product_id
        )
        filled = batch.materials_quantities or {}
        lines = []
        for line in result.lines:
            material = materials[line.material_id]
            quantity_filled = filled.get(str(line.material_id))
            lines.append({
                "material_id": line.material_id,
                "material_name": material.name,
                "color": material.color,
                "unit": material.unit,
                "quantity_used": line.quantity,
                "unit_cost": line.unit_price,
                "total_cost": line.total_cost,
                "quantity_filled": float(quantity_filled) if quantity_filled is not None else None,
            })
        return {
            "configured": True,
            "materials": lines,
            "total_cost": result.total_cost,
            "warnings": [str(w) for w in result.warnings],
        }

    def plan_requirements(
        self,
        product_id: int,
        product_type: str = ProductType.REGULAR.value,
        planned_quantities: Any = None,
        quantity_to_produce: int = 0,
    ) -> Dict[str, Any]:
        """Check a plan against current stock without moving any.

        ``suggested_quantities`` holds, per planned size, the most pieces of
        that size current stock covers on its own.
        """
        source = configuration_source_for(self.db, product_type)
        product = source.get_product(product_id)
        rows = source.ensure_configured(product)
        plan = ProductionPlan.from_breakdown(planned_quantities, quantity_to_produce)
        if plan.total_pieces <= 0:
            raise ValidationError("Planned quantities must contain at least one piece")

        materials = {
            m.id: m
            for m in self.db.query(Material).filter(
                Material.id.in_({r.material_id for r in rows})
            )
        }
        unit_prices = {m_id: m.unit_price for m_id, m in materials.items()}
        result = calculate_requirements(rows, plan, unit_prices, product.id)

        requirements = []
        insufficient = []
        for line in result.lines:
            material = materials[line.material_id]
            stock = float(material.stock_quantity)
            percentage = stock / line.quantity * 100 if line.quantity > 0 else 0.0
            requirements.append({
                "material_id": material.id,
                "material_name": material.name,
                "color": material.color,
                "unit": material.unit,
                "total_needed": line.quantity,
                "current_stock": stock,
                "stock_percentage": round(percentage, 1),
                "is_sufficient": stock >= line.quantity,
                "unit_price": line.unit_price,
                "total_cost": line.total_cost,
            })
            if stock < line.quantity:
                insufficient.append({
                    "material_id": material.id,
                    "material_name": material.name,
                    "color": material.color,
                    "unit": material.unit,
                    "needed": line.quantity,
                    "available": stock,
                    "missing": line.quantity - stock,
                })

        sizes = plan.sizes or {"total": plan.total_pieces}
        suggested = {}
        for size in sizes:
            if plan.sizes:
                single = ProductionPlan(sizes={size: 1}, total_pieces=1)
            else:
                single = ProductionPlan(total_pieces=1)
            per_piece = calculate_requirements(rows, single, unit_prices, product.id).quantities
            suggested[size] = min(
                (int(float(materials[m_id].stock_quantity) // qty) for m_id, qty in per_piece.items()),
                default=0,
            )

        return {
            "product_id": product.id,
            "product_type": source.product_type.value,
            "total_pieces": plan.total_pieces,
            "has_sufficient_stock": not insufficient,
            "can_produce_any": any(count > 0 for count in suggested.values()),
            "material_requirements": requirements,
            "insufficient_materials": insufficient,
            "suggested_quantities": suggested,
            "total_cost": result.total_cost,
            "warnings": [str(w) for w in result.warnings],
        }

    def historical_usage(self, batch: ProductionBatch) -> List[BatchMaterialUsage]:
        """What the batch actually took from stock."""
        return (
            self.db.query(BatchMaterialUsage)
            .filter(BatchMaterialUsage.batch_id == batch.id)
            .order_by(BatchMaterialUsage.id)
            .all()
        )

    def batch_detail(self, batch: ProductionBatch) -> Dict[str, Any]:
        """Both views of a batch's consumption, plus its leftovers and history.

        ``materials_used`` is the live estimate, not what was deducted.
        """
        estimate = self.current_estimate(batch)
        return {
            "batch": batch,
            "materials_used": estimate["materials"],
            "current_estimate": estimate,
            "historical_usage": self.historical_usage(batch),
            "leftovers": list(batch.leftovers),
            "status_history": list(batch.status_history),
        }

    def status_history(self, batch_id: int) -> List[BatchStatusHistory]:
        batch = self.get_batch(batch_id)
        return list(batch.status_history)

    def batch_transactions(
        self, batch: ProductionBatch, skip: int = 0, limit: int = 100
    ) -> Tuple[List[StockTransaction], int]:
        return self.ledger.transactions(reference=batch.batch_reference, skip=skip, limit=limit)

    # ===== HELPERS =====

    def _ensure_deductible(self, batch: ProductionBatch, requested: DeductionMode) -> None:
        if batch.status == BatchStatus.CANCELLED.value:
            raise ValidationError(f"Batch {batch.batch_reference} is cancelled")
        if batch.deduction_mode:
            logger.warning(
                f"Refused {requested.value} deduction for batch {batch.batch_reference}: "
                f"already deducted ({batch.deduction_mode})"
            )
            raise DeductionModeConflictError(batch.id, batch.deduction_mode, requested.value)

    def _deduct_lines(
        self,
        batch: ProductionBatch,
        result: RequirementResult,
        materials: Mapping[int, Material],
        reason: LedgerReason,
        user_id: Optional[int],
    ) -> List[StockTransaction]:
        transactions = []
        for line in sorted(result.lines, key=lambda l: l.material_id):
            transaction = self.ledger.deduct(
                materials[line.material_id],
                line.quantity,
                reason,
                batch.batch_reference,
                notes=f"Production batch {batch.batch_reference}",
                user_id=user_id,
            )
            self._add_usage(batch, transaction)
            transactions.append(transaction)
        return transactions

    def _add_usage(self, batch: ProductionBatch, transaction: StockTransaction) -> BatchMaterialUsage:
        usage = BatchMaterialUsage(
            batch_id=batch.id,
            material_id=transaction.material_id,
            quantity_used=transaction.quantity,
            unit_cost=transaction.unit_price,
            total_cost=transaction.total_cost,
            transaction_id=transaction.id,
        )
        self.db.add(usage)
        self.db.flush()
        return usage

    def _apply_usage_difference(
        self,
        batch: ProductionBatch,
        material: Material,
        difference: float,
        transaction: StockTransaction,
    ) -> None:
        usage = (
            self.db.query(BatchMaterialUsage)
            .filter(
                BatchMaterialUsage.batch_id == batch.id,
                BatchMaterialUsage.material_id == material.id,
            )
            .order_by(BatchMaterialUsage.id)
            .first()
        )
        if usage is None:
            if difference > 0:
                self._add_usage(batch, transaction)
                batch.total_materials_cost = (batch.total_materials_cost or 0.0) + transaction.total_cost
            return

        old_cost = usage.total_cost
        usage.quantity_used = max(usage.quantity_used + difference, 0.0)
        usage.total_cost = usage.quantity_used * usage.unit_cost
        batch.total_materials_cost = max(
            (batch.total_materials_cost or 0.0) + usage.total_cost - old_cost, 0.0
        )

    def _cancellation_quantities(
        self, batch: ProductionBatch, source: MaterialConfigurationSource
    ) -> Dict[int, float]:
        if batch.deduction_mode == DeductionMode.AT_START.value:
            rows = source.requirements(batch.product_id)
            if rows:
                plan = ProductionPlan.from_breakdown(batch.sizes_breakdown, batch.quantity_to_produce)
                return calculate_requirements(rows, plan, {}, batch.product_id).quantities
            logger.warning(
                f"Product {batch.product_id} of batch {batch.batch_reference} has no "
                f"configuration left; restoring recorded usage instead"
            )

        if batch.deduction_mode:
            quantities: Dict[int, float] = {}
            for usage in self.historical_usage(batch):
                quantities[usage.material_id] = quantities.get(usage.material_id, 0.0) + usage.quantity_used
            return quantities
        return {}

    def _record_status(
        self,
        batch: ProductionBatch,
        old_status: Optional[str],
        new_status: str,
        changed_by: Optional[int],
        comments: Optional[str],
    ) -> None:
        self.db.add(BatchStatusHistory(
            batch_id=batch.id,
            old_status=old_status,
            new_status=new_status,
            changed_by=changed_by,
            comments=comments,
        ))

    def _generate_reference(self, prefix: str) -> str:
        for _ in range(REFERENCE_ATTEMPTS):
            reference = f"{prefix}-{_now():%Y%m%d}-{uuid4().hex[-6:].upper()}"
            exists = (
                self.db.query(ProductionBatch.id)
                .filter(ProductionBatch.batch_reference == reference)
                .first()
            )
            if exists is None:
                return reference
        raise PersistenceError("Could not generate a unique batch reference")

    @staticmethod
    def _transaction_summary(
        transaction: StockTransaction, materials: Mapping[int, Material]
    ) -> Dict[str, Any]:
        material = materials.get(transaction.material_id)
        return {
            "transaction_id": transaction.id,
            "material_id": transaction.material_id,
            "material_name": material.name if material is not None else None,
            "quantity_deducted": transaction.quantity,
            "new_stock": material.stock_quantity if material is not None else None,
            "unit_price": transaction.unit_price,
            "total_cost": transaction.total_cost,
        }
