# tests/test_inference.py

"""
Tests for quantity inference and price drift detection.
"""

import pytest
from decimal import Decimal

from salesrecon.core.price_drift import detect_drift, file_unit_price
from salesrecon.core.quantity import infer_quantity
from salesrecon.models import SalesLine

from conftest import make_item


# ============================================
# Test Data
# ============================================

BITOQUE = make_item("bitoque", "Bitoque", "8.00")


def make_line(
    line_total: str,
    quantity: str = None,
    unit_price: str = None,
    description: str = "Bitoque",
) -> SalesLine:
    return SalesLine(
        id="line-1",
        import_id="import-1",
        line_number=1,
        description=description,
        raw_quantity=Decimal(quantity) if quantity is not None else None,
        raw_unit_price=Decimal(unit_price) if unit_price is not None else None,
        line_total=Decimal(line_total),
        quantity=Decimal(quantity) if quantity is not None else None,
    )


# ============================================
# Quantity Inference Tests
# ============================================

class TestQuantityInference:
    """Test recomputation of quantities from line totals."""

    def test_default_quantity_recomputed_from_catalog_price(self):
        """24.00 sold at 8.00 with a printed quantity of 1 is 3 units."""
        result = infer_quantity(make_line("24.00", quantity="1"), BITOQUE, tolerance=0.01)

        assert result.quantity == Decimal("3")
        assert result.inferred is True
        assert result.original_quantity == Decimal("1")
        assert "did not reconcile" in result.reason

    def test_missing_quantity_inferred_from_unit_price(self):
        result = infer_quantity(make_line("24.00", unit_price="8.00"), None, tolerance=0.01)

        assert result.quantity == Decimal("3")
        assert result.inferred is True
        assert result.original_quantity is None
        assert result.reason.startswith("Quantity inferred from total")

    def test_consistent_quantity_kept(self):
        result = infer_quantity(make_line("16.00", quantity="2", unit_price="8.00"), BITOQUE, tolerance=0.01)

        assert result.quantity == Decimal("2")
        assert result.inferred is False
        assert result.reason is None

    def test_small_rounding_difference_within_tolerance(self):
        result = infer_quantity(make_line("16.10", quantity="2", unit_price="8.00"), None, tolerance=0.01)

        assert result.quantity == Decimal("2")
        assert result.inferred is False

    def test_quantity_reconciling_with_catalog_price_kept(self):
        """A stale printed unit price does not override a consistent quantity."""
        result = infer_quantity(make_line("16.00", quantity="2", unit_price="9.50"), BITOQUE, tolerance=0.01)

        assert result.quantity == Decimal("2")
        assert result.inferred is False

    def test_no_usable_price_keeps_quantity(self):
        result = infer_quantity(make_line("24.00"), None, tolerance=0.01)

        assert result.quantity is None
        assert result.inferred is False

    def test_rounds_half_up(self):
        result = infer_quantity(make_line("20.00", quantity="1"), BITOQUE, tolerance=0.01)

        assert result.quantity == Decimal("3")

    def test_positive_total_is_at_least_one_unit(self):
        result = infer_quantity(make_line("3.00"), BITOQUE, tolerance=0.01)

        assert result.quantity == Decimal("1")
        assert result.inferred is True

    def test_idempotent(self):
        line = make_line("24.00", quantity="1")

        first = infer_quantity(line, BITOQUE, tolerance=0.01)
        again = infer_quantity(line.model_copy(update={"quantity": first.quantity}), BITOQUE, tolerance=0.01)

        assert again == first


# ============================================
# Price Drift Tests
# ============================================

class TestPriceDrift:
    """Test catalog price drift flags."""

    def test_price_above_tolerance_flagged(self):
        drift = detect_drift(make_line("9.50", quantity="1", unit_price="9.50"), BITOQUE, tolerance=0.02)

        assert drift.mismatch is True
        assert drift.system_price == Decimal("8.00")
        assert drift.file_price == Decimal("9.50")
        assert drift.difference == Decimal("1.50")
        assert drift.relative_difference == pytest.approx(0.1875)

    def test_small_difference_not_flagged(self):
        drift = detect_drift(make_line("8.10", quantity="1", unit_price="8.10"), BITOQUE, tolerance=0.02)

        assert drift.mismatch is False
        assert drift.difference == Decimal("0.10")

    def test_file_price_derived_from_total(self):
        line = make_line("24.00", quantity="3")

        assert file_unit_price(line) == Decimal("8.00")
        assert detect_drift(line, BITOQUE, tolerance=0.02).mismatch is False

    def test_uses_inferred_quantity(self):
        line = make_line("24.00", quantity="1")

        drift = detect_drift(line, BITOQUE, quantity=Decimal("3"), tolerance=0.02)

        assert drift.file_price == Decimal("8.00")
        assert drift.mismatch is False

    def test_zero_catalog_price(self):
        free_item = make_item("water", "Agua", "0.00")

        drift = detect_drift(make_line("2.00", quantity="1", unit_price="2.00"), free_item, tolerance=0.02)

        assert drift.mismatch is True
        assert drift.relative_difference is None

    def test_no_match_no_drift(self):
        drift = detect_drift(make_line("9.50", quantity="1", unit_price="9.50"), None, tolerance=0.02)

        assert drift.mismatch is False
        assert drift.system_price is None

    def test_no_file_price_no_drift(self):
        drift = detect_drift(make_line("9.50"), BITOQUE, tolerance=0.02)

        assert drift.mismatch is False
        assert drift.system_price == Decimal("8.00")
        assert drift.file_price is None

    def test_monotonic_in_tolerance(self):
        """Raising the tolerance never creates a mismatch."""
        line = make_line("8.10", quantity="1", unit_price="8.10")
        tolerances = [0.0, 0.005, 0.01, 0.0125, 0.02, 0.1, 1.0]

        flags = [detect_drift(line, BITOQUE, tolerance=t).mismatch for t in tolerances]

        assert flags == sorted(flags, reverse=True)
        assert flags[0] is True
        assert flags[-1] is False
