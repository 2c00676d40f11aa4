# salesrecon/database.py

from datetime import datetime
from decimal import Decimal
from functools import lru_cache
from typing import Iterable, Optional
import logging

from postgrest.exceptions import APIError
from supabase import create_client, Client

from salesrecon.config import get_settings
from salesrecon.core.errors import CommitFailure, ConflictError, NotFoundError
from salesrecon.core.store import utcnow
from salesrecon.models import (
    ApprovalBatch,
    CatalogItem,
    ImportStatus,
    MatchHistoryEntry,
    SaleRecord,
    SalesImport,
    SalesLine,
    can_transition,
)

logger = logging.getLogger(__name__)


# ============================================
# Clients
# ============================================

@lru_cache()
def get_supabase_admin() -> Client:
    """Admin client (bypasses RLS - use carefully)."""
    settings = get_settings()
    return create_client(settings.supabase_url, settings.supabase_service_role_key)


# ============================================
# Row mapping
# ============================================

IMPORT_COLUMNS = (
    "id, tenant_id, source_filename, sale_date, declared_totals, status, error_message, "
    "created_at, updated_at, processed_at, approved_at"
)

LINE_COLUMNS = (
    "id, import_id, line_number, description, raw_quantity, raw_unit_price, line_total, "
    "quantity, catalog_item_id, confidence, status, match_reason, metadata"
)


def _import_row(sales_import: SalesImport) -> dict:
    return sales_import.model_dump(mode="json", exclude={"lines"})


def _line_row(tenant_id: str, line: SalesLine) -> dict:
    row = line.model_dump(mode="json")
    row["tenant_id"] = tenant_id
    return row


def _catalog_item(row: dict) -> CatalogItem:
    return CatalogItem(
        id=row["id"],
        name=row["name"],
        aliases=row.get("aliases") or [],
        price=row["price"],
        active=row.get("active", True),
    )


# Markers raised by the SQL functions in supabase/migrations
NOT_FOUND_MARKER = "not_found"
CONFLICT_MARKER = "status_conflict"
SNAPSHOT_MARKER = "snapshot_conflict"


def _raise_for_rpc_error(e: APIError, import_id: str) -> None:
    message = e.message or str(e)
    if SNAPSHOT_MARKER in message:
        current = message.split(":", 1)[1].strip() if ":" in message else None
        raise ConflictError(
            f"Import {import_id} changed since the approval snapshot was read", current_status=current
        ) from e
    if CONFLICT_MARKER in message:
        current = message.split(":", 1)[1].strip() if ":" in message else None
        raise ConflictError(f"Import {import_id} is {current or 'no longer reviewing'}", current_status=current) from e
    if NOT_FOUND_MARKER in message:
        resource = message.split(":", 1)[1].strip() if ":" in message else "Sales import"
        raise NotFoundError(resource, import_id) from e


class SupabaseStore:
    """
    Reconciliation store on Supabase Postgres.

    Plain reads and single-row writes go through the table API. Multi-row
    writes that must be atomic (approval, override, rejection) are Postgres
    functions called over RPC; each locks the import row and checks its
    status before writing.
    """

    def __init__(self, client: Optional[Client] = None):
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_supabase_admin()
        return self._client

    # ============================================
    # Catalog
    # ============================================

    def list_active_catalog_items(self, tenant_id: str) -> list[CatalogItem]:
        response = (
            self.client.table("menu_items")
            .select("id, name, aliases, price, active")
            .eq("tenant_id", tenant_id)
            .eq("active", True)
            .order("id")
            .execute()
        )
        return [_catalog_item(row) for row in response.data or []]

    def update_catalog_item_price(self, tenant_id: str, item_id: str, new_price: Decimal) -> CatalogItem:
        response = (
            self.client.table("menu_items")
            .update({"price": str(new_price)})
            .eq("id", item_id)
            .eq("tenant_id", tenant_id)
            .execute()
        )
        if not response.data:
            raise NotFoundError("Catalog item", item_id)
        return _catalog_item(response.data[0])

    # ============================================
    # Imports
    # ============================================

    def create_import(self, sales_import: SalesImport) -> SalesImport:
        self.client.table("sales_imports").insert(_import_row(sales_import)).execute()
        if sales_import.lines:
            self.client.table("sales_lines").insert(
                [_line_row(sales_import.tenant_id, line) for line in sales_import.lines]
            ).execute()
        return sales_import

    def get_import(self, tenant_id: str, import_id: str) -> Optional[SalesImport]:
        response = (
            self.client.table("sales_imports")
            .select(IMPORT_COLUMNS)
            .eq("id", import_id)
            .eq("tenant_id", tenant_id)
            .execute()
        )
        if not response.data:
            return None

        lines = (
            self.client.table("sales_lines")
            .select(LINE_COLUMNS)
            .eq("import_id", import_id)
            .order("line_number")
            .execute()
        )
        sales_import = SalesImport.model_validate(response.data[0])
        sales_import.lines = [SalesLine.model_validate(row) for row in lines.data or []]
        return sales_import

    def list_imports(
        self,
        tenant_id: str,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[SalesImport], int]:
        query = self.client.table("sales_imports").select(IMPORT_COLUMNS, count="exact").eq("tenant_id", tenant_id)

        if status:
            query = query.eq("status", status)

        response = query.order("created_at", desc=True).range(offset, offset + limit - 1).execute()
        imports = [SalesImport.model_validate(row) for row in response.data or []]
        return imports, response.count or 0

    def save_lines(self, tenant_id: str, import_id: str, lines: list[SalesLine]) -> None:
        if not lines:
            return
        self.client.table("sales_lines").upsert(
            [_line_row(tenant_id, line) for line in lines],
            on_conflict="id",
        ).execute()

    def transition_import(
        self,
        tenant_id: str,
        import_id: str,
        new_status: ImportStatus,
        expected: Iterable[str],
        error_message: Optional[str] = None,
        processed_at: Optional[datetime] = None,
    ) -> SalesImport:
        allowed = [status for status in expected if can_transition(status, new_status)]

        updates = {"status": new_status, "updated_at": utcnow().isoformat()}
        if error_message is not None:
            updates["error_message"] = error_message
        if processed_at is not None:
            updates["processed_at"] = processed_at.isoformat()

        response = None
        if allowed:
            # Compare-and-swap on the current status
            response = (
                self.client.table("sales_imports")
                .update(updates)
                .eq("id", import_id)
                .eq("tenant_id", tenant_id)
                .in_("status", allowed)
                .execute()
            )

        current = self.get_import(tenant_id, import_id)
        if current is None:
            raise NotFoundError("Sales import", import_id)
        if not response or not response.data:
            raise ConflictError(
                f"Import {import_id} is {current.status}; cannot move to {new_status}",
                current_status=current.status,
            )
        return current

    def save_line_match(self, tenant_id: str, import_id: str, line: SalesLine) -> SalesLine:
        row = _line_row(tenant_id, line)
        try:
            self.client.rpc(
                "set_sales_line_match",
                {
                    "p_tenant_id": tenant_id,
                    "p_import_id": import_id,
                    "p_line_id": line.id,
                    "p_quantity": row["quantity"],
                    "p_catalog_item_id": row["catalog_item_id"],
                    "p_confidence": row["confidence"],
                    "p_status": row["status"],
                    "p_match_reason": row["match_reason"],
                    "p_metadata": row["metadata"],
                },
            ).execute()
        except APIError as e:
            _raise_for_rpc_error(e, import_id)
            raise
        return line

    def reject_import(self, tenant_id: str, import_id: str) -> SalesImport:
        try:
            self.client.rpc(
                "reject_sales_import",
                {"p_tenant_id": tenant_id, "p_import_id": import_id},
            ).execute()
        except APIError as e:
            _raise_for_rpc_error(e, import_id)
            raise

        rejected = self.get_import(tenant_id, import_id)
        if rejected is None:
            raise NotFoundError("Sales import", import_id)
        return rejected

    # ============================================
    # Approval
    # ============================================

    def commit_approval(self, batch: ApprovalBatch) -> int:
        """Run the approval transaction. Returns the number of sale records created."""
        payload = batch.model_dump(mode="json")
        try:
            response = self.client.rpc(
                "approve_sales_import",
                {
                    "p_tenant_id": batch.tenant_id,
                    "p_import_id": batch.import_id,
                    "p_expected_status": batch.expected_status,
                    "p_expected_updated_at": payload["expected_updated_at"],
                    "p_new_status": batch.new_status,
                    "p_approved_at": payload["approved_at"],
                    "p_sale_records": payload["sale_records"],
                    "p_price_updates": payload["price_updates"],
                },
            ).execute()
        except APIError as e:
            _raise_for_rpc_error(e, batch.import_id)
            logger.error(f"approve_sales_import failed for {batch.import_id}: {e.message}")
            raise CommitFailure(f"Approval of import {batch.import_id} rolled back: {e.message}") from e

        return int(response.data or 0)

    def list_sale_records(self, tenant_id: str, import_id: Optional[str] = None) -> list[SaleRecord]:
        query = self.client.table("sale_records").select("*").eq("tenant_id", tenant_id)

        if import_id:
            query = query.eq("import_id", import_id)

        response = query.order("import_line_ref").execute()
        return [SaleRecord.model_validate(row) for row in response.data or []]

    # ============================================
    # Learned matches
    # ============================================

    def record_match_history(self, entry: MatchHistoryEntry) -> None:
        self.client.table("sales_match_history").insert(
            entry.model_dump(mode="json", exclude_none=True)
        ).execute()

    def learned_item_ids(self, tenant_id: str, description_key: str) -> list[str]:
        response = (
            self.client.table("sales_match_history")
            .select("catalog_item_id")
            .eq("tenant_id", tenant_id)
            .eq("description_key", description_key)
            .order("created_at", desc=True)
            .limit(20)
            .execute()
        )
        ids = [row["catalog_item_id"] for row in response.data or []]
        return list(dict.fromkeys(ids))[:5]
