# salesrecon/models/approval.py

from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Literal
from pydantic import BaseModel, Field

from salesrecon.models.sales_import import UnmatchedLineWarning


# ============================================
# Canonical output
# ============================================

class SaleRecord(BaseModel):
    """A catalog-linked sale, consumed by costing and analytics."""

    id: Optional[str] = None
    tenant_id: str
    import_id: str
    catalog_item_id: str
    quantity: Decimal
    unit_price: Decimal
    line_total: Decimal
    sale_date: Optional[date] = None
    import_line_ref: str = Field(description="<import_id>:<line_id>, unique")
    created_at: Optional[datetime] = None


def line_ref(import_id: str, line_id: str) -> str:
    return f"{import_id}:{line_id}"


class PriceUpdate(BaseModel):
    catalog_item_id: str
    old_price: Decimal
    new_price: Decimal


# ============================================
# Commit batch
# ============================================

class ApprovalBatch(BaseModel):
    """Everything one approval writes, applied by the store in one transaction."""

    tenant_id: str
    import_id: str
    expected_status: Literal["reviewing"] = "reviewing"
    # updated_at of the import snapshot the batch was built from
    expected_updated_at: Optional[datetime] = None
    new_status: Literal["approved", "approved_partial"]
    sale_records: list[SaleRecord] = Field(default_factory=list)
    price_updates: list[PriceUpdate] = Field(default_factory=list)
    approved_at: datetime


class ApprovalResult(BaseModel):
    """Outcome of an approval. Partial approvals are successes with warnings."""

    import_id: str
    status: Literal["approved", "approved_partial"]
    created_count: int
    skipped_count: int
    prices_updated: list[PriceUpdate] = Field(default_factory=list)
    warnings: list[UnmatchedLineWarning] = Field(default_factory=list)
