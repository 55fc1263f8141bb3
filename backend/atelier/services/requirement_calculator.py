"""Material Requirement Calculator.

Turns a product's material configuration and a per-size production plan
into the quantity of each material the plan consumes.

Rules:
1. A row whose size restriction is empty, NULL or "none" applies to every
   planned piece; otherwise it applies only to pieces of that size.
   Size labels are matched exactly first, then case-insensitively
   (plans use "s" where configuration stores "S").
2. Rows are processed at most once per (material_id, size) key, the size
   compared without case. When a product carries duplicate rows the first
   one wins and the rest are reported as duplicates.
3. needed = quantity_needed x applicable pieces. Rows needing <= 0 are
   skipped.
4. Contributions of several rows to the same material add up.
5. cost = needed x unit price; the batch cost is the sum over materials.

Quantities stay floats end to end. Nothing here touches the database.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from atelier.core.exceptions import (
    DuplicateConfigurationWarning,
    MaterialsNotConfiguredError,
    ValidationError,
)

logger = logging.getLogger(__name__)

WHOLE_PLAN = "none"


def normalize_size(label: Optional[str]) -> Optional[str]:
    """Return the size label, or None when the row applies to the whole plan."""
    if label is None:
        return None
    label = str(label).strip()
    if not label or label.lower() == WHOLE_PLAN:
        return None
    return label


def size_key(label: Optional[str]) -> str:
    """Deduplication component for a size restriction.

    Case-folded: "S" and "s" are the same size, so a second row for the
    same material differing only in case is a duplicate.
    """
    normalized = normalize_size(label)
    return WHOLE_PLAN if normalized is None else normalized.casefold()


def _piece_count(size: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"Invalid piece count for size '{size}': {value!r}")
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        value = int(value.strip())
    if not isinstance(value, int):
        raise ValidationError(f"Invalid piece count for size '{size}': {value!r}")
    if value < 0:
        raise ValidationError(f"Piece count for size '{size}' cannot be negative")
    return value


@dataclass(frozen=True)
class ProductionPlan:
    """Planned piece counts, per size when the product has sizes."""

    sizes: Dict[str, int] = field(default_factory=dict)
    total_pieces: int = 0

    @classmethod
    def from_breakdown(
        cls,
        sizes_breakdown: Union[None, str, Mapping[str, Any]],
        quantity_to_produce: int = 0,
    ) -> "ProductionPlan":
        """Build a plan from a size->count mapping or its JSON text.

        A non-empty breakdown makes the total the sum of its counts;
        otherwise ``quantity_to_produce`` is the total.
        """
        breakdown: Any = sizes_breakdown
        if isinstance(breakdown, str):
            if not breakdown.strip():
                breakdown = None
            else:
                try:
                    breakdown = json.loads(breakdown)
                except json.JSONDecodeError as e:
                    raise ValidationError(f"sizes_breakdown is not valid JSON: {e.msg}") from e

        if breakdown in (None, [], {}):
            breakdown = {}
        if not isinstance(breakdown, Mapping):
            raise ValidationError("sizes_breakdown must be an object of size -> count")

        sizes = {str(size): _piece_count(str(size), count) for size, count in breakdown.items()}
        if sizes:
            total = sum(sizes.values())
        else:
            total = _piece_count("total", quantity_to_produce or 0)
        return cls(sizes=sizes, total_pieces=total)

    def pieces_for(self, size: Optional[str]) -> int:
        """Pieces a row restricted to ``size`` applies to (whole plan when None)."""
        normalized = normalize_size(size)
        if normalized is None:
            return self.total_pieces
        if normalized in self.sizes:
            return self.sizes[normalized]
        folded = normalized.casefold()
        for label, count in self.sizes.items():
            if label.casefold() == folded:
                return count
        return 0

    def to_dict(self) -> Dict[str, int]:
        return dict(self.sizes)


@dataclass
class RequirementLine:
    material_id: int
    quantity: float
    unit_price: float
    total_cost: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "material_id": self.material_id,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "total_cost": self.total_cost,
        }


@dataclass
class RequirementResult:
    """Per-material totals for one plan."""

    quantities: Dict[int, float]
    lines: List[RequirementLine]
    total_cost: float
    duplicates: List[Any] = field(default_factory=list)
    warnings: List[DuplicateConfigurationWarning] = field(default_factory=list)

    @property
    def material_ids(self) -> List[int]:
        return list(self.quantities)

    def line_for(self, material_id: int) -> Optional[RequirementLine]:
        for line in self.lines:
            if line.material_id == material_id:
                return line
        return None


def calculate_requirements(
    rows: Iterable[Any],
    plan: ProductionPlan,
    unit_prices: Mapping[int, float],
    product_id: Optional[int] = None,
) -> RequirementResult:
    """Compute per-material quantities and costs for ``plan``.

    ``rows`` are configuration rows in their stored order; each exposes
    ``material_id``, ``quantity_needed`` and ``size_specific``.
    ``unit_prices`` maps material id to its current unit price.
    """
    rows = list(rows)
    if not rows:
        raise MaterialsNotConfiguredError(product_id or 0)

    seen: set = set()
    duplicates: List[Any] = []
    quantities: Dict[int, float] = {}

    for row in rows:
        key: Tuple[int, str] = (row.material_id, size_key(row.size_specific))
        if key in seen:
            duplicates.append(row)
            continue
        seen.add(key)

        needed = float(row.quantity_needed) * plan.pieces_for(row.size_specific)
        if needed <= 0:
            continue
        quantities[row.material_id] = quantities.get(row.material_id, 0.0) + needed

    warnings = [
        DuplicateConfigurationWarning(
            f"Duplicate configuration for material {r.material_id} "
            f"size {size_key(r.size_specific)} ignored"
        )
        for r in duplicates
    ]
    if warnings:
        logger.warning(
            f"Ignored {len(warnings)} duplicate material configuration row(s) "
            f"for product {product_id}: " + "; ".join(str(w) for w in warnings)
        )

    lines = []
    total_cost = 0.0
    for material_id, quantity in quantities.items():
        unit_price = float(unit_prices.get(material_id, 0.0) or 0.0)
        cost = quantity * unit_price
        lines.append(RequirementLine(material_id, quantity, unit_price, cost))
        total_cost += cost

    return RequirementResult(
        quantities=quantities,
        lines=lines,
        total_cost=total_cost,
        duplicates=duplicates,
        warnings=warnings,
    )
