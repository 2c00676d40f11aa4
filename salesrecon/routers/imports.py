# salesrecon/routers/imports.py

"""
Sales import routes.

Staging, review, manual matching, approval and rejection of imports.
"""

from datetime import date
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from typing import Any, Optional

from salesrecon.core import ReconciliationService, build_review_summary
from salesrecon.dependencies import get_current_tenant, get_reconciliation_service
from salesrecon.models import DeclaredTotals, ImportStatus

router = APIRouter()


# ============================================
# Request Models
# ============================================

class StageImportRequest(BaseModel):
    # Raw rows are validated by the service so amount strings can be normalized
    lines: list[dict[str, Any]]
    declared_totals: Optional[DeclaredTotals] = None
    source_filename: Optional[str] = None
    sale_date: Optional[date] = None


class SetMatchRequest(BaseModel):
    catalog_item_id: Optional[str] = Field(None, description="None clears the match")


class ApproveRequest(BaseModel):
    price_sync_item_ids: list[str] = Field(default_factory=list)


# ============================================
# Staging
# ============================================

@router.post("", status_code=201)
def stage_import(
    request: StageImportRequest,
    tenant_id: str = Depends(get_current_tenant),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """
    Stage a batch of raw sales lines.

    Every line is matched, quantities are inferred and price drift flagged.
    The import comes back in `reviewing`.
    """
    sales_import = service.stage_import(
        tenant_id,
        request.lines,
        declared_totals=request.declared_totals,
        source_filename=request.source_filename,
        sale_date=request.sale_date,
    )

    return {
        "success": True,
        "import": sales_import,
        "summary": build_review_summary(sales_import),
    }


# ============================================
# Listing / Review
# ============================================

@router.get("")
def list_imports(
    tenant_id: str = Depends(get_current_tenant),
    service: ReconciliationService = Depends(get_reconciliation_service),
    status: Optional[ImportStatus] = Query(None, description="Filter by status"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    imports, total = service.list_imports(tenant_id, status=status, limit=limit, offset=offset)

    return {
        "success": True,
        "imports": imports,
        "pagination": {
            "total": total,
            "limit": limit,
            "offset": offset,
            "has_more": offset + limit < total,
        },
    }


@router.get("/{import_id}")
def get_import(
    import_id: str,
    tenant_id: str = Depends(get_current_tenant),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """Import with its lines and the review summary."""
    sales_import = service.get_import(tenant_id, import_id)

    return {
        "success": True,
        "import": sales_import,
        "summary": build_review_summary(sales_import),
    }


@router.get("/{import_id}/lines/{line_id}/suggestions")
def get_line_suggestions(
    import_id: str,
    line_id: str,
    tenant_id: str = Depends(get_current_tenant),
    service: ReconciliationService = Depends(get_reconciliation_service),
    q: Optional[str] = Query(None, description="Search text; defaults to the line description"),
    limit: Optional[int] = Query(None, ge=1, le=50),
):
    suggestions = service.suggest_matches(tenant_id, import_id, line_id, query=q, top_n=limit)

    return {
        "success": True,
        "suggestions": suggestions,
        "count": len(suggestions),
    }


@router.put("/{import_id}/lines/{line_id}/match")
def set_line_match(
    import_id: str,
    line_id: str,
    request: SetMatchRequest,
    tenant_id: str = Depends(get_current_tenant),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    line = service.set_match(tenant_id, import_id, line_id, request.catalog_item_id)

    return {
        "success": True,
        "line": line,
    }


# ============================================
# Approval / Rejection
# ============================================

@router.post("/{import_id}/approve")
def approve_import(
    import_id: str,
    request: Optional[ApproveRequest] = None,
    tenant_id: str = Depends(get_current_tenant),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """
    Commit every matched line as a sale record.

    Lines without a match are skipped and reported in `warnings`; the import
    then ends `approved_partial`.
    """
    sync_ids = request.price_sync_item_ids if request else []
    result = service.approve(tenant_id, import_id, price_sync_item_ids=sync_ids)

    return {
        "success": True,
        "result": result,
    }


@router.post("/{import_id}/reject")
def reject_import(
    import_id: str,
    tenant_id: str = Depends(get_current_tenant),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    service.reject(tenant_id, import_id)

    return {
        "success": True,
        "import_id": import_id,
        "status": "rejected",
    }
