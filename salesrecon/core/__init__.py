# salesrecon/core/__init__.py

from salesrecon.core.matching import suggest, best_match, score_description
from salesrecon.core.confidence import calculate_confidence, get_confidence_level
from salesrecon.core.catalog import CatalogIndex
from salesrecon.core.quantity import infer_quantity
from salesrecon.core.price_drift import detect_drift, file_unit_price
from salesrecon.core.normalizers import (
    normalize,
    normalize_amount,
    normalize_string,
)
from salesrecon.core.errors import (
    ReconciliationError,
    ValidationError,
    NotFoundError,
    ConflictError,
    CommitFailure,
)
from salesrecon.core.store import ReconciliationStore, InMemoryStore
from salesrecon.core.reconciliation import ReconciliationService, build_review_summary

__all__ = [
    "suggest",
    "best_match",
    "score_description",
    "calculate_confidence",
    "get_confidence_level",
    "CatalogIndex",
    "infer_quantity",
    "detect_drift",
    "file_unit_price",
    "normalize",
    "normalize_amount",
    "normalize_string",
    "ReconciliationError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "CommitFailure",
    "ReconciliationStore",
    "InMemoryStore",
    "ReconciliationService",
    "build_review_summary",
]
