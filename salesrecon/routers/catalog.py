# salesrecon/routers/catalog.py

from fastapi import APIRouter, Depends, Query
from typing import Optional

from salesrecon.core import ReconciliationService
from salesrecon.dependencies import get_current_tenant, get_reconciliation_service

router = APIRouter()


@router.get("/search")
def search_catalog(
    tenant_id: str = Depends(get_current_tenant),
    service: ReconciliationService = Depends(get_reconciliation_service),
    q: str = Query(..., min_length=1, description="Free-text product description"),
    limit: Optional[int] = Query(None, ge=1, le=50),
):
    """Rank active catalog items against free text, as typed in the review screen."""
    suggestions = service.search(tenant_id, q, top_n=limit)

    return {
        "success": True,
        "query": q,
        "suggestions": suggestions,
        "count": len(suggestions),
    }
