# salesrecon/models/__init__.py

from salesrecon.models.catalog import (
    CatalogItem,
    ConfidenceBreakdown,
    ConfidenceLevel,
    MatchSuggestion,
    MatchHistoryEntry,
)
from salesrecon.models.sales_import import (
    ImportStatus,
    LineStatus,
    TERMINAL_STATUSES,
    ALLOWED_TRANSITIONS,
    can_transition,
    TaxBreakdown,
    PaymentSplit,
    DeclaredTotals,
    RawSalesLine,
    QuantityInference,
    PriceDrift,
    LineMetadata,
    SalesLine,
    SalesImport,
    UnmatchedLineWarning,
    ReviewSummary,
)
from salesrecon.models.approval import (
    SaleRecord,
    PriceUpdate,
    ApprovalBatch,
    ApprovalResult,
    line_ref,
)

__all__ = [
    # Catalog
    "CatalogItem",
    "ConfidenceBreakdown",
    "ConfidenceLevel",
    "MatchSuggestion",
    "MatchHistoryEntry",
    # Sales import
    "ImportStatus",
    "LineStatus",
    "TERMINAL_STATUSES",
    "ALLOWED_TRANSITIONS",
    "can_transition",
    "TaxBreakdown",
    "PaymentSplit",
    "DeclaredTotals",
    "RawSalesLine",
    "QuantityInference",
    "PriceDrift",
    "LineMetadata",
    "SalesLine",
    "SalesImport",
    "UnmatchedLineWarning",
    "ReviewSummary",
    # Approval
    "SaleRecord",
    "PriceUpdate",
    "ApprovalBatch",
    "ApprovalResult",
    "line_ref",
]
