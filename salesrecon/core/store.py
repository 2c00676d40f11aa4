# salesrecon/core/store.py

"""
Persistence contract of the reconciliation engine, plus an in-memory store.

The catalog, the staged imports and the canonical sale records are owned by
one store so an approval (sale records, catalog prices, import status) is a
single transaction. `database.SupabaseStore` is the production
implementation; `InMemoryStore` backs tests and local development.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Iterable, Optional, Protocol
import threading
import uuid

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
from salesrecon.core.errors import CommitFailure, ConflictError, NotFoundError, ReconciliationError


class ReconciliationStore(Protocol):
    """Everything the engine reads and writes."""

    # Catalog (externally owned)
    def list_active_catalog_items(self, tenant_id: str) -> list[CatalogItem]: ...

    # Catalog owner's price writer; approval syncs prices through commit_approval
    def update_catalog_item_price(self, tenant_id: str, item_id: str, new_price: Decimal) -> CatalogItem: ...

    # Imports
    def create_import(self, sales_import: SalesImport) -> SalesImport: ...

    def get_import(self, tenant_id: str, import_id: str) -> Optional[SalesImport]: ...

    def list_imports(
        self,
        tenant_id: str,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[SalesImport], int]: ...

    def save_lines(self, tenant_id: str, import_id: str, lines: list[SalesLine]) -> None: ...

    def transition_import(
        self,
        tenant_id: str,
        import_id: str,
        new_status: ImportStatus,
        expected: Iterable[str],
        error_message: Optional[str] = None,
        processed_at: Optional[datetime] = None,
    ) -> SalesImport: ...

    def save_line_match(self, tenant_id: str, import_id: str, line: SalesLine) -> SalesLine: ...

    def reject_import(self, tenant_id: str, import_id: str) -> SalesImport: ...

    # Approval
    def commit_approval(self, batch: ApprovalBatch) -> int: ...

    def list_sale_records(self, tenant_id: str, import_id: Optional[str] = None) -> list[SaleRecord]: ...

    # Learned matches
    def record_match_history(self, entry: MatchHistoryEntry) -> None: ...

    def learned_item_ids(self, tenant_id: str, description_key: str) -> list[str]: ...


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _next_version(sales_import: SalesImport) -> datetime:
    """A fresh `updated_at`, strictly later than the current one."""
    now = utcnow()
    if sales_import.updated_at is not None and now <= sales_import.updated_at:
        return sales_import.updated_at + timedelta(microseconds=1)
    return now


class InMemoryStore:
    """
    Thread-safe store kept in process memory.

    Every write happens under one lock. `commit_approval` applies its batch
    to copies and swaps them in only when every write succeeded, so a failure
    part-way leaves nothing behind. Every write to an import bumps its
    `updated_at`, which approval compares against its snapshot.
    """

    def __init__(self, catalog: Optional[dict[str, list[CatalogItem]]] = None):
        self._lock = threading.RLock()
        self._catalog: dict[str, dict[str, CatalogItem]] = {}
        self._imports: dict[str, SalesImport] = {}
        self._sale_records: dict[str, SaleRecord] = {}
        self._history: list[MatchHistoryEntry] = []

        for tenant_id, items in (catalog or {}).items():
            for item in items:
                self.add_catalog_item(tenant_id, item)

    # ============================================
    # Catalog
    # ============================================

    def add_catalog_item(self, tenant_id: str, item: CatalogItem) -> CatalogItem:
        with self._lock:
            self._catalog.setdefault(tenant_id, {})[item.id] = item.model_copy(deep=True)
            return item

    def get_catalog_item(self, tenant_id: str, item_id: str) -> Optional[CatalogItem]:
        with self._lock:
            item = self._catalog.get(tenant_id, {}).get(item_id)
            return item.model_copy(deep=True) if item else None

    def list_active_catalog_items(self, tenant_id: str) -> list[CatalogItem]:
        with self._lock:
            return [
                item.model_copy(deep=True)
                for item in self._catalog.get(tenant_id, {}).values()
                if item.active
            ]

    def update_catalog_item_price(self, tenant_id: str, item_id: str, new_price: Decimal) -> CatalogItem:
        with self._lock:
            items = self._catalog.get(tenant_id, {})
            if item_id not in items:
                raise NotFoundError("Catalog item", item_id)
            items[item_id] = items[item_id].model_copy(update={"price": new_price})
            return items[item_id].model_copy(deep=True)

    # ============================================
    # Imports
    # ============================================

    def create_import(self, sales_import: SalesImport) -> SalesImport:
        with self._lock:
            if sales_import.id in self._imports:
                raise ConflictError(f"Sales import {sales_import.id} already exists")
            self._imports[sales_import.id] = sales_import.model_copy(deep=True)
            return sales_import.model_copy(deep=True)

    def get_import(self, tenant_id: str, import_id: str) -> Optional[SalesImport]:
        with self._lock:
            sales_import = self._imports.get(import_id)
            if sales_import is None or sales_import.tenant_id != tenant_id:
                return None
            return sales_import.model_copy(deep=True)

    def list_imports(
        self,
        tenant_id: str,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[SalesImport], int]:
        with self._lock:
            matches = [
                imp for imp in self._imports.values()
                if imp.tenant_id == tenant_id and (status is None or imp.status == status)
            ]
        matches.sort(key=lambda imp: imp.created_at or utcnow(), reverse=True)
        page = [imp.model_copy(update={"lines": []}, deep=True) for imp in matches[offset:offset + limit]]
        return page, len(matches)

    def save_lines(self, tenant_id: str, import_id: str, lines: list[SalesLine]) -> None:
        with self._lock:
            sales_import = self._require_import(tenant_id, import_id)
            if sales_import.status != "pending":
                raise ConflictError(
                    f"Lines of import {import_id} can only be staged while pending",
                    current_status=sales_import.status,
                )
            self._imports[import_id] = sales_import.model_copy(
                update={
                    "lines": [line.model_copy(deep=True) for line in lines],
                    "updated_at": _next_version(sales_import),
                }
            )

    def transition_import(
        self,
        tenant_id: str,
        import_id: str,
        new_status: ImportStatus,
        expected: Iterable[str],
        error_message: Optional[str] = None,
        processed_at: Optional[datetime] = None,
    ) -> SalesImport:
        with self._lock:
            sales_import = self._require_import(tenant_id, import_id)
            self._check_status(sales_import, new_status, expected)

            updates = {"status": new_status, "updated_at": _next_version(sales_import)}
            if error_message is not None:
                updates["error_message"] = error_message
            if processed_at is not None:
                updates["processed_at"] = processed_at

            self._imports[import_id] = sales_import.model_copy(update=updates)
            return self._imports[import_id].model_copy(deep=True)

    def save_line_match(self, tenant_id: str, import_id: str, line: SalesLine) -> SalesLine:
        with self._lock:
            sales_import = self._require_import(tenant_id, import_id)
            if sales_import.status != "reviewing":
                raise ConflictError(
                    f"Import {import_id} is {sales_import.status}; matches can only change while reviewing",
                    current_status=sales_import.status,
                )

            lines = list(sales_import.lines)
            for index, existing in enumerate(lines):
                if existing.id == line.id:
                    lines[index] = line.model_copy(deep=True)
                    break
            else:
                raise NotFoundError("Sales line", line.id)

            self._imports[import_id] = sales_import.model_copy(
                update={"lines": lines, "updated_at": _next_version(sales_import)}
            )
            return line.model_copy(deep=True)

    def reject_import(self, tenant_id: str, import_id: str) -> SalesImport:
        with self._lock:
            sales_import = self._require_import(tenant_id, import_id)
            self._check_status(sales_import, "rejected", ("pending", "reviewing"))

            now = utcnow()
            self._imports[import_id] = sales_import.model_copy(
                update={"status": "rejected", "lines": [], "updated_at": _next_version(sales_import), "processed_at": now}
            )
            return self._imports[import_id].model_copy(deep=True)

    # ============================================
    # Approval
    # ============================================

    def commit_approval(self, batch: ApprovalBatch) -> int:
        with self._lock:
            sales_import = self._require_import(batch.tenant_id, batch.import_id)
            self._check_status(sales_import, batch.new_status, (batch.expected_status,))
            if batch.expected_updated_at is not None and sales_import.updated_at != batch.expected_updated_at:
                raise ConflictError(
                    f"Import {batch.import_id} changed since the approval snapshot was read",
                    current_status=sales_import.status,
                )

            try:
                records = dict(self._sale_records)
                catalog = dict(self._catalog.get(batch.tenant_id, {}))

                created = 0
                for record in batch.sale_records:
                    if record.import_line_ref in records:
                        continue
                    records[record.import_line_ref] = self._write_sale_record(record)
                    created += 1

                for update in batch.price_updates:
                    item = catalog.get(update.catalog_item_id)
                    if item is None:
                        raise NotFoundError("Catalog item", update.catalog_item_id)
                    catalog[item.id] = item.model_copy(update={"price": update.new_price})

                approved_import = sales_import.model_copy(
                    update={
                        "status": batch.new_status,
                        "approved_at": batch.approved_at,
                        "updated_at": _next_version(sales_import),
                    }
                )
            except ReconciliationError as e:
                raise CommitFailure(f"Approval of import {batch.import_id} rolled back: {e.message}") from e
            except Exception as e:
                raise CommitFailure(f"Approval of import {batch.import_id} rolled back: {e}") from e

            self._sale_records = records
            self._catalog[batch.tenant_id] = catalog
            self._imports[batch.import_id] = approved_import
            return created

    def _write_sale_record(self, record: SaleRecord) -> SaleRecord:
        return record.model_copy(update={"id": record.id or str(uuid.uuid4()), "created_at": utcnow()})

    def list_sale_records(self, tenant_id: str, import_id: Optional[str] = None) -> list[SaleRecord]:
        with self._lock:
            return [
                record.model_copy(deep=True)
                for record in self._sale_records.values()
                if record.tenant_id == tenant_id and (import_id is None or record.import_id == import_id)
            ]

    # ============================================
    # Learned matches
    # ============================================

    def record_match_history(self, entry: MatchHistoryEntry) -> None:
        with self._lock:
            self._history.append(entry.model_copy(update={"created_at": entry.created_at or utcnow()}))

    def learned_item_ids(self, tenant_id: str, description_key: str) -> list[str]:
        """Item ids confirmed for this description, most recent first, without repeats."""
        with self._lock:
            ids = [
                entry.catalog_item_id
                for entry in reversed(self._history)
                if entry.tenant_id == tenant_id and entry.description_key == description_key
            ]
        return list(dict.fromkeys(ids))[:5]

    # ============================================
    # Helpers
    # ============================================

    def _require_import(self, tenant_id: str, import_id: str) -> SalesImport:
        sales_import = self._imports.get(import_id)
        if sales_import is None or sales_import.tenant_id != tenant_id:
            raise NotFoundError("Sales import", import_id)
        return sales_import

    @staticmethod
    def _check_status(sales_import: SalesImport, new_status: str, expected: Iterable[str]) -> None:
        expected = tuple(expected)
        if sales_import.status not in expected or not can_transition(sales_import.status, new_status):
            raise ConflictError(
                f"Import {sales_import.id} is {sales_import.status}; cannot move to {new_status}",
                current_status=sales_import.status,
            )
