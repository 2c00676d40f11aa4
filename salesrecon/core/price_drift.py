# salesrecon/core/price_drift.py

"""
Price drift detection between a sold line and its matched catalog item.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from salesrecon.models import CatalogItem, PriceDrift, SalesLine
from salesrecon.config import get_settings

CENT = Decimal("0.01")


def file_unit_price(line: SalesLine, quantity: Optional[Decimal] = None) -> Optional[Decimal]:
    """
    Effective unit price recorded in the file.

    The printed unit price when there is one, else total / quantity.
    """
    if line.raw_unit_price is not None and line.raw_unit_price > 0:
        return line.raw_unit_price

    if quantity is None:
        quantity = line.quantity
    if quantity is None or quantity <= 0:
        return None

    return (line.line_total / quantity).quantize(CENT, rounding=ROUND_HALF_UP)


def detect_drift(
    line: SalesLine,
    matched_item: Optional[CatalogItem],
    quantity: Optional[Decimal] = None,
    tolerance: Optional[float] = None,
) -> PriceDrift:
    """
    Compare the file price against the catalog's current price.

    Flags a mismatch when the relative difference is strictly above the
    tolerance. A zero catalog price drifts against any non-zero file price.
    """
    if matched_item is None:
        return PriceDrift()

    if tolerance is None:
        tolerance = get_settings().price_drift_tolerance

    system_price = matched_item.price
    file_price = file_unit_price(line, quantity)
    if file_price is None:
        return PriceDrift(system_price=system_price)

    difference = file_price - system_price

    if system_price == 0:
        return PriceDrift(
            mismatch=file_price != 0,
            system_price=system_price,
            file_price=file_price,
            difference=difference,
        )

    relative = float(abs(difference) / system_price)
    return PriceDrift(
        mismatch=relative > tolerance,
        system_price=system_price,
        file_price=file_price,
        difference=difference,
        relative_difference=round(relative, 6),
    )
