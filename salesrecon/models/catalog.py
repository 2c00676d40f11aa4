# salesrecon/models/catalog.py

from datetime import datetime
from decimal import Decimal
from typing import Optional, Literal
from pydantic import BaseModel, Field


# ============================================
# Catalog
# ============================================

class CatalogItem(BaseModel):
    """An active menu item as seen by the matching engine."""

    id: str
    name: str
    aliases: list[str] = Field(default_factory=list)
    price: Decimal
    active: bool = True

    class Config:
        from_attributes = True


# ============================================
# Confidence Scoring
# ============================================

ConfidenceLevel = Literal["confident", "needs_review", "unmatched"]

class ConfidenceBreakdown(BaseModel):
    """Breakdown of how a description scored against one catalog item."""

    overlap: float = Field(ge=0, le=1, description="Token-set overlap ratio")
    containment: float = Field(ge=0, le=1, description="Substring / whole-string similarity")
    total: int = Field(ge=0, le=100, description="Total confidence score")
    level: ConfidenceLevel
    matched_name: Optional[str] = None
    matched_alias: bool = False
    factors: list[str] = Field(default_factory=list, description="Human-readable factors")


# ============================================
# Suggestions
# ============================================

class MatchSuggestion(BaseModel):
    """A ranked catalog candidate for a line description."""

    catalog_item_id: str
    display_name: str
    confidence: int = Field(ge=0, le=100, description="0-100 match confidence")
    match_reason: str


class MatchHistoryEntry(BaseModel):
    """A description-to-item link confirmed by a human."""

    tenant_id: str
    description_key: str
    catalog_item_id: str
    initial_confidence: Optional[int] = None
    confirmed_by: Optional[str] = None
    created_at: Optional[datetime] = None
