# salesrecon/core/quantity.py

"""
Sold-quantity inference.

POS exports often omit the quantity or print a default of 1 next to a
multi-unit total. The line total is authoritative, so when the recorded
quantity does not reproduce it, the quantity is recomputed from the total
and a known unit price. Inference always starts from the raw staged values,
which makes it idempotent.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from salesrecon.models import CatalogItem, QuantityInference, SalesLine
from salesrecon.config import get_settings

WHOLE_UNIT = Decimal("1")


def infer_quantity(
    line: SalesLine,
    matched_item: Optional[CatalogItem] = None,
    tolerance: Optional[float] = None,
) -> QuantityInference:
    """
    Decide the effective quantity of a line.

    - Recorded quantity reproduces the total (raw or catalog price): keep it
    - Otherwise, with a usable unit price: round(total / price), inferred
    - No usable unit price: keep whatever was recorded, even None
    """
    if tolerance is None:
        tolerance = get_settings().quantity_tolerance
    tol = Decimal(str(tolerance))

    raw_quantity = line.raw_quantity
    total = line.line_total

    # Raw file price first, catalog price second
    prices = [
        p for p in (line.raw_unit_price, matched_item.price if matched_item else None)
        if p is not None and p > 0
    ]

    if not prices:
        return QuantityInference(quantity=raw_quantity, inferred=False, original_quantity=raw_quantity)

    if raw_quantity is not None and any(_reconciles(raw_quantity, p, total, tol) for p in prices):
        return QuantityInference(quantity=raw_quantity, inferred=False, original_quantity=raw_quantity)

    unit_price = prices[0]
    quantity = (total / unit_price).quantize(WHOLE_UNIT, rounding=ROUND_HALF_UP)
    if quantity < WHOLE_UNIT and total > 0:
        quantity = WHOLE_UNIT

    if raw_quantity is None:
        reason = f"Quantity inferred from total ({total:.2f} / {unit_price:.2f})"
    else:
        reason = (
            f"Quantity recomputed from total because recorded quantity {raw_quantity} "
            f"did not reconcile ({total:.2f} / {unit_price:.2f})"
        )

    return QuantityInference(
        quantity=quantity,
        inferred=True,
        reason=reason,
        original_quantity=raw_quantity,
    )


def _reconciles(quantity: Decimal, unit_price: Decimal, total: Decimal, tolerance: Decimal) -> bool:
    """quantity * unit_price equals total within a relative tolerance."""
    expected = quantity * unit_price
    if total == 0:
        return expected == 0
    return abs(expected - total) <= tolerance * abs(total)
