# salesrecon/models/sales_import.py

from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Literal
from pydantic import BaseModel, Field


# ============================================
# Lifecycle
# ============================================

ImportStatus = Literal[
    "pending",
    "reviewing",
    "approved",
    "approved_partial",
    "rejected",
    "error",
]

LineStatus = Literal["matched", "needs_review", "unmatched", "manual"]

TERMINAL_STATUSES: frozenset[str] = frozenset(
    {"approved", "approved_partial", "rejected", "error"}
)

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"reviewing", "rejected", "error"}),
    "reviewing": frozenset({"approved", "approved_partial", "rejected", "error"}),
    "approved": frozenset(),
    "approved_partial": frozenset(),
    "rejected": frozenset(),
    "error": frozenset(),
}


def can_transition(current: str, new: str) -> bool:
    """Whether an import may move from `current` to `new`."""
    return new in ALLOWED_TRANSITIONS.get(current, frozenset())


# ============================================
# Staging input
# ============================================

class TaxBreakdown(BaseModel):
    """Taxable base and tax amount for one VAT rate."""

    rate: Decimal
    base: Optional[Decimal] = None
    amount: Optional[Decimal] = None


class PaymentSplit(BaseModel):
    cash: Optional[Decimal] = None
    card: Optional[Decimal] = None
    other: Optional[Decimal] = None


class DeclaredTotals(BaseModel):
    """Aggregate totals printed on the source report."""

    gross: Optional[Decimal] = None
    net: Optional[Decimal] = None
    taxes: list[TaxBreakdown] = Field(default_factory=list)
    payments: PaymentSplit = Field(default_factory=PaymentSplit)


class RawSalesLine(BaseModel):
    """One row as handed over by the file-ingestion component."""

    line_number: int
    description: Optional[str] = None
    quantity: Optional[Decimal] = None
    unit_price: Optional[Decimal] = None
    line_total: Decimal


# ============================================
# Line analysis
# ============================================

class QuantityInference(BaseModel):
    quantity: Optional[Decimal] = None
    inferred: bool = False
    reason: Optional[str] = None
    original_quantity: Optional[Decimal] = None


class PriceDrift(BaseModel):
    mismatch: bool = False
    system_price: Optional[Decimal] = None
    file_price: Optional[Decimal] = None
    difference: Optional[Decimal] = None
    relative_difference: Optional[float] = None


class LineMetadata(BaseModel):
    """Flags produced by inference and drift detection, kept for audit."""

    inferred_quantity: bool = False
    inference_reason: Optional[str] = None
    price_mismatch: bool = False
    system_price: Optional[Decimal] = None
    file_price: Optional[Decimal] = None
    original_quantity: Optional[Decimal] = None
    price_difference: Optional[Decimal] = None
    price_difference_ratio: Optional[float] = None
    unmatched_reason: Optional[str] = None


# ============================================
# Staged entities
# ============================================

class SalesLine(BaseModel):
    """A staged row of an import."""

    id: str
    import_id: str
    line_number: int
    description: str = ""
    raw_quantity: Optional[Decimal] = None
    raw_unit_price: Optional[Decimal] = None
    line_total: Decimal

    quantity: Optional[Decimal] = None
    catalog_item_id: Optional[str] = None
    confidence: Optional[int] = Field(default=None, ge=0, le=100)
    status: LineStatus = "unmatched"
    match_reason: Optional[str] = None
    metadata: LineMetadata = Field(default_factory=LineMetadata)

    class Config:
        from_attributes = True

    @property
    def is_matched(self) -> bool:
        return self.catalog_item_id is not None


class SalesImport(BaseModel):
    """One uploaded batch of sold line items."""

    id: str
    tenant_id: str
    source_filename: Optional[str] = None
    sale_date: Optional[date] = None
    declared_totals: DeclaredTotals = Field(default_factory=DeclaredTotals)
    status: ImportStatus = "pending"
    error_message: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None

    lines: list[SalesLine] = Field(default_factory=list)

    class Config:
        from_attributes = True

    def get_line(self, line_id: str) -> Optional[SalesLine]:
        for line in self.lines:
            if line.id == line_id:
                return line
        return None


# ============================================
# Review payload
# ============================================

class UnmatchedLineWarning(BaseModel):
    """A line that will not produce a sale record. Data, not an exception."""

    line_id: str
    line_number: int
    description: str
    line_total: Decimal
    reason: str


class ReviewSummary(BaseModel):
    """Counts shown next to an import under review."""

    total_lines: int
    matched: int
    needs_review: int
    unmatched: int
    manual: int
    inferred_quantities: int
    price_mismatches: int

    lines_total: Decimal
    declared_gross: Optional[Decimal] = None
    totals_difference: Optional[Decimal] = None

    warnings: list[UnmatchedLineWarning] = Field(default_factory=list)
