"""Tests for material requirement calculation."""

from types import SimpleNamespace

import pytest

from atelier.core.exceptions import (
    DuplicateConfigurationWarning,
    MaterialsNotConfiguredError,
    ValidationError,
)
from atelier.services.requirement_calculator import (
    ProductionPlan,
    calculate_requirements,
    normalize_size,
    size_key,
)


def row(material_id, quantity_needed, size_specific=None):
    return SimpleNamespace(
        material_id=material_id,
        quantity_needed=quantity_needed,
        size_specific=size_specific,
    )


class TestProductionPlan:
    """Parsing of size breakdowns."""

    def test_breakdown_sum_is_total(self):
        plan = ProductionPlan.from_breakdown({"S": 2, "M": 3}, quantity_to_produce=99)
        assert plan.total_pieces == 5
        assert plan.to_dict() == {"S": 2, "M": 3}

    def test_empty_breakdown_uses_quantity(self):
        plan = ProductionPlan.from_breakdown(None, quantity_to_produce=12)
        assert plan.total_pieces == 12
        assert plan.sizes == {}

    def test_json_text_is_accepted(self):
        plan = ProductionPlan.from_breakdown('{"m": 4, "l": "2"}')
        assert plan.total_pieces == 6
        assert plan.pieces_for("L") == 2

    def test_invalid_json_rejected(self):
        with pytest.raises(ValidationError):
            ProductionPlan.from_breakdown("{not json")

    def test_negative_count_rejected(self):
        with pytest.raises(ValidationError):
            ProductionPlan.from_breakdown({"S": -1})

    def test_non_integer_count_rejected(self):
        with pytest.raises(ValidationError):
            ProductionPlan.from_breakdown({"S": 1.5})

    def test_list_rejected(self):
        with pytest.raises(ValidationError):
            ProductionPlan.from_breakdown([1, 2])

    def test_exact_label_preferred_over_folded(self):
        plan = ProductionPlan.from_breakdown({"s": 1, "S": 4})
        assert plan.pieces_for("S") == 4
        assert plan.pieces_for("s") == 1

    def test_unknown_size_has_no_pieces(self):
        plan = ProductionPlan.from_breakdown({"M": 5})
        assert plan.pieces_for("XL") == 0

    def test_whole_plan_markers(self):
        plan = ProductionPlan.from_breakdown({"M": 5, "L": 1})
        assert plan.pieces_for(None) == 6
        assert plan.pieces_for("") == 6
        assert plan.pieces_for("none") == 6
        assert plan.pieces_for("NONE") == 6


class TestSizeKeys:
    def test_normalize(self):
        assert normalize_size(None) is None
        assert normalize_size("  ") is None
        assert normalize_size("None") is None
        assert normalize_size(" M ") == "M"

    def test_key_is_case_folded(self):
        assert size_key("XL") == size_key("xl")
        assert size_key(None) == "none"


class TestCalculateRequirements:
    """Per-material quantity and cost computation."""

    def test_whole_plan_row(self):
        plan = ProductionPlan.from_breakdown({"total": 10})
        result = calculate_requirements([row(1, 3.0)], plan, {1: 2.5})

        assert result.quantities == {1: 30.0}
        assert result.total_cost == 75.0
        line = result.line_for(1)
        assert line.unit_price == 2.5
        assert line.total_cost == 75.0

    def test_size_specific_row_only_counts_its_size(self):
        plan = ProductionPlan.from_breakdown({"S": 2, "M": 3})
        result = calculate_requirements([row(1, 2.0, "M")], plan, {1: 1.0})

        assert result.quantities == {1: 6.0}

    def test_size_matching_ignores_case(self):
        plan = ProductionPlan.from_breakdown({"s": 4})
        result = calculate_requirements([row(1, 1.5, "S")], plan, {})

        assert result.quantities == {1: 6.0}

    def test_contributions_add_up(self):
        plan = ProductionPlan.from_breakdown({"S": 2, "M": 3})
        rows = [row(1, 1.0), row(1, 0.5, "S"), row(2, 2.0, "M")]
        result = calculate_requirements(rows, plan, {1: 1.0, 2: 3.0})

        assert result.quantities == {1: 6.0, 2: 6.0}
        assert result.total_cost == pytest.approx(24.0)
        assert result.material_ids == [1, 2]

    def test_rows_with_nothing_to_consume_are_skipped(self):
        plan = ProductionPlan.from_breakdown({"M": 5})
        rows = [row(1, 0.0), row(2, 1.0, "XL"), row(3, 1.0)]
        result = calculate_requirements(rows, plan, {})

        assert result.quantities == {3: 5.0}

    def test_missing_price_costs_nothing(self):
        plan = ProductionPlan.from_breakdown(None, quantity_to_produce=2)
        result = calculate_requirements([row(7, 1.0)], plan, {})

        assert result.total_cost == 0.0

    def test_empty_configuration_raises(self):
        plan = ProductionPlan.from_breakdown({"M": 1})
        with pytest.raises(MaterialsNotConfiguredError) as exc_info:
            calculate_requirements([], plan, {}, product_id=42)
        assert exc_info.value.product_id == 42

    def test_duplicate_row_counted_once(self):
        plan = ProductionPlan.from_breakdown({"M": 5})
        first = row(1, 2.0, "M")
        duplicate = row(1, 9.0, "m")
        result = calculate_requirements([first, duplicate], plan, {})

        assert result.quantities == {1: 10.0}
        assert result.duplicates == [duplicate]
        assert len(result.warnings) == 1
        assert isinstance(result.warnings[0], DuplicateConfigurationWarning)

    def test_same_material_different_sizes_is_not_duplicate(self):
        plan = ProductionPlan.from_breakdown({"S": 1, "M": 1})
        result = calculate_requirements([row(1, 1.0, "S"), row(1, 1.0, "M")], plan, {})

        assert result.quantities == {1: 2.0}
        assert result.duplicates == []
