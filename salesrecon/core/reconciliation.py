# salesrecon/core/reconciliation.py

"""
Reconciliation orchestrator.

Drives an import through its lifecycle:

    pending   -> reviewing | rejected | error
    reviewing -> approved | approved_partial | rejected | error

Staging matches every line against one catalog snapshot, infers quantities
and flags price drift. Review lets a human override matches. Approval turns
every matched line into a canonical sale record in one transaction.
"""

from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from typing import Any, Iterable, Iterator, Optional
import logging
import threading
import time
import uuid

from pydantic import ValidationError as PydanticValidationError

from salesrecon.models import (
    ApprovalBatch,
    ApprovalResult,
    CatalogItem,
    DeclaredTotals,
    LineMetadata,
    LineStatus,
    MatchHistoryEntry,
    MatchSuggestion,
    PriceUpdate,
    RawSalesLine,
    ReviewSummary,
    SaleRecord,
    SalesImport,
    SalesLine,
    UnmatchedLineWarning,
    line_ref,
)
from salesrecon.core.catalog import CatalogIndex
from salesrecon.core.errors import (
    CommitFailure,
    ConflictError,
    NotFoundError,
    ReconciliationError,
    ValidationError,
)
from salesrecon.core.matching import best_match, score_description, suggest
from salesrecon.core.normalizers import normalize_amount, normalize_string
from salesrecon.core.price_drift import detect_drift, file_unit_price
from salesrecon.core.quantity import infer_quantity
from salesrecon.core.store import ReconciliationStore, utcnow
from salesrecon.config import get_settings, Settings

logger = logging.getLogger(__name__)

AMOUNT_FIELDS = ("quantity", "unit_price", "line_total")
MANUAL_MATCH_REASON = "Manually selected"


class StageDataError(Exception):
    """Staged data that can never be committed."""


# ============================================
# Per-import locks
# ============================================

class _ImportLock:
    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class ImportLocks:
    """
    One lock per import id.

    An entry lives only while some caller holds or waits for it, so the map
    does not grow with the number of imports processed.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, _ImportLock] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, import_id: str, timeout: float) -> Iterator[bool]:
        """Yield whether the lock was acquired within `timeout` seconds."""
        with self._guard:
            entry = self._locks.get(import_id)
            if entry is None:
                entry = self._locks[import_id] = _ImportLock()
            entry.users += 1

        acquired = entry.lock.acquire(timeout=timeout)
        try:
            yield acquired
        finally:
            if acquired:
                entry.lock.release()
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[import_id]


# ============================================
# Service
# ============================================

class ReconciliationService:
    """Entry point for staging, review, approval and rejection of sales imports."""

    def __init__(self, store: ReconciliationStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or get_settings()
        self._locks = ImportLocks()

    # ----- Staging -----

    def stage_import(
        self,
        tenant_id: str,
        raw_lines: Iterable[Any],
        declared_totals: Optional[Any] = None,
        source_filename: Optional[str] = None,
        sale_date: Optional[date] = None,
    ) -> SalesImport:
        """
        Persist a batch of raw lines and run matching, inference and drift on each.

        Returns the import in `reviewing`. Malformed input raises
        ValidationError before anything is stored.
        """
        parsed = self._validate_raw_lines(raw_lines)
        totals = self._validate_declared_totals(declared_totals)

        now = utcnow()
        import_id = str(uuid.uuid4())
        lines = [
            SalesLine(
                id=str(uuid.uuid4()),
                import_id=import_id,
                line_number=raw.line_number,
                description=(raw.description or "").strip(),
                raw_quantity=raw.quantity,
                raw_unit_price=raw.unit_price,
                line_total=raw.line_total,
                quantity=raw.quantity,
            )
            for raw in parsed
        ]

        self.store.create_import(
            SalesImport(
                id=import_id,
                tenant_id=tenant_id,
                source_filename=source_filename,
                sale_date=sale_date,
                declared_totals=totals,
                status="pending",
                created_at=now,
                updated_at=now,
                lines=lines,
            )
        )
        logger.info(f"Staging import {import_id} for tenant {tenant_id}: {len(lines)} lines")

        try:
            catalog = CatalogIndex(self.store.list_active_catalog_items(tenant_id))
            processed = [self._process_line(tenant_id, line, catalog) for line in lines]
            self.store.save_lines(tenant_id, import_id, processed)
            staged = self.store.transition_import(
                tenant_id, import_id, "reviewing", expected=("pending",), processed_at=utcnow()
            )
        except Exception as e:
            logger.exception(f"Staging of import {import_id} failed")
            self._mark_error(tenant_id, import_id, "pending", f"Staging failed: {e}")
            raise

        matched = sum(1 for line in staged.lines if line.is_matched)
        logger.info(f"Import {import_id} ready for review: {matched}/{len(staged.lines)} lines matched")
        return staged

    def _validate_raw_lines(self, raw_lines: Iterable[Any]) -> list[RawSalesLine]:
        if raw_lines is None:
            raise ValidationError("raw_lines is required", field="lines")

        parsed: list[RawSalesLine] = []
        seen: set[int] = set()

        for index, raw in enumerate(raw_lines):
            if isinstance(raw, RawSalesLine):
                data = raw.model_dump()
            elif isinstance(raw, dict):
                data = dict(raw)
            else:
                raise ValidationError(f"Line {index + 1}: expected an object", field="lines")

            for field in AMOUNT_FIELDS:
                value = data.get(field)
                if isinstance(value, str):
                    amount = normalize_amount(value)
                    if amount is None and value.strip():
                        raise ValidationError(
                            f"Line {data.get('line_number', index + 1)}: '{value}' is not a valid {field}",
                            field=field,
                        )
                    data[field] = amount

            try:
                line = RawSalesLine.model_validate(data)
            except PydanticValidationError as e:
                first = e.errors()[0]
                field = ".".join(str(part) for part in first.get("loc", ()))
                raise ValidationError(
                    f"Line {data.get('line_number', index + 1)}: {first.get('msg', 'invalid value')}",
                    field=field or None,
                ) from e

            if line.line_total < 0:
                raise ValidationError(
                    f"Line {line.line_number}: line_total must not be negative", field="line_total"
                )
            if line.line_number in seen:
                raise ValidationError(
                    f"Duplicate line_number {line.line_number}", field="line_number"
                )
            seen.add(line.line_number)
            parsed.append(line)

        return parsed

    @staticmethod
    def _validate_declared_totals(declared_totals: Optional[Any]) -> DeclaredTotals:
        if declared_totals is None:
            return DeclaredTotals()
        if isinstance(declared_totals, DeclaredTotals):
            return declared_totals
        try:
            return DeclaredTotals.model_validate(declared_totals)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid declared totals: {e.errors()[0].get('msg')}", field="declared_totals") from e

    def _process_line(self, tenant_id: str, line: SalesLine, catalog: CatalogIndex) -> SalesLine:
        """Match one line. Failures stay on the line as an unmatched reason."""
        try:
            if not line.description:
                return self._apply_match(line, None, status="unmatched", unmatched_reason="Missing description")

            suggestion = best_match(
                line.description,
                catalog,
                learned_item_ids=self._learned_ids(tenant_id, line.description),
                settings=self.settings,
            )
            if suggestion is None:
                return self._apply_match(
                    line, None, status="unmatched", unmatched_reason="No catalog item resembles this description"
                )

            if suggestion.confidence >= self.settings.auto_match_threshold:
                status = "matched"
            else:
                status = "needs_review"

            return self._apply_match(
                line,
                catalog.get(suggestion.catalog_item_id),
                confidence=suggestion.confidence,
                match_reason=suggestion.match_reason,
                status=status,
            )
        except Exception as e:
            logger.warning(f"Line {line.line_number} of import {line.import_id} could not be processed: {e}")
            return line.model_copy(
                update={
                    "catalog_item_id": None,
                    "confidence": None,
                    "status": "unmatched",
                    "match_reason": None,
                    "metadata": LineMetadata(unmatched_reason=f"Line could not be processed: {e}"),
                }
            )

    def _apply_match(
        self,
        line: SalesLine,
        item: Optional[CatalogItem],
        confidence: Optional[int] = None,
        match_reason: Optional[str] = None,
        status: LineStatus = "unmatched",
        unmatched_reason: Optional[str] = None,
    ) -> SalesLine:
        """Link `line` to `item` (or nothing) and recompute its metadata from the raw fields."""
        inference = infer_quantity(line, item, self.settings.quantity_tolerance)
        drift = detect_drift(line, item, inference.quantity, self.settings.price_drift_tolerance)

        metadata = LineMetadata(
            inferred_quantity=inference.inferred,
            inference_reason=inference.reason,
            price_mismatch=drift.mismatch,
            system_price=drift.system_price,
            file_price=drift.file_price if item else file_unit_price(line, inference.quantity),
            original_quantity=inference.original_quantity,
            price_difference=drift.difference,
            price_difference_ratio=drift.relative_difference,
            unmatched_reason=unmatched_reason if item is None else None,
        )

        return line.model_copy(
            update={
                "quantity": inference.quantity,
                "catalog_item_id": item.id if item else None,
                "confidence": confidence if item else None,
                "status": status,
                "match_reason": match_reason if item else None,
                "metadata": metadata,
            }
        )

    def _learned_ids(self, tenant_id: str, description: Optional[str]) -> list[str]:
        if not self.settings.enable_match_history:
            return []
        key = normalize_string(description)
        if not key:
            return []
        return self.store.learned_item_ids(tenant_id, key)

    # ----- Queries -----

    def get_import(self, tenant_id: str, import_id: str) -> SalesImport:
        sales_import = self.store.get_import(tenant_id, import_id)
        if sales_import is None:
            raise NotFoundError("Sales import", import_id)
        return sales_import

    def list_imports(
        self,
        tenant_id: str,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[SalesImport], int]:
        return self.store.list_imports(tenant_id, status=status, limit=limit, offset=offset)

    def review_summary(self, tenant_id: str, import_id: str) -> ReviewSummary:
        return build_review_summary(self.get_import(tenant_id, import_id))

    def suggest_matches(
        self,
        tenant_id: str,
        import_id: str,
        line_id: str,
        query: Optional[str] = None,
        top_n: Optional[int] = None,
    ) -> list[MatchSuggestion]:
        """Ranked candidates for a line, by its description or a typed query."""
        sales_import = self.get_import(tenant_id, import_id)
        line = sales_import.get_line(line_id)
        if line is None:
            raise NotFoundError("Sales line", line_id)

        text = query if query and query.strip() else line.description
        catalog = CatalogIndex(self.store.list_active_catalog_items(tenant_id))
        return suggest(
            text,
            catalog,
            top_n=top_n,
            learned_item_ids=self._learned_ids(tenant_id, text),
            settings=self.settings,
        )

    def search(self, tenant_id: str, query: str, top_n: Optional[int] = None) -> list[MatchSuggestion]:
        catalog = CatalogIndex(self.store.list_active_catalog_items(tenant_id))
        return suggest(query, catalog, top_n=top_n, settings=self.settings)

    # ----- Review -----

    def set_match(
        self,
        tenant_id: str,
        import_id: str,
        line_id: str,
        catalog_item_id: Optional[str],
        user_id: Optional[str] = None,
    ) -> SalesLine:
        """
        Manually link a line to a catalog item, or clear its match with None.

        Inference and drift are recomputed from the raw fields against the
        new item. Only allowed while the import is reviewing and not being
        approved.
        """
        with self._locks.hold(import_id, self.settings.approval_timeout_seconds) as acquired:
            if not acquired:
                raise ConflictError(f"Import {import_id} is being approved", current_status="reviewing")

            sales_import = self.get_import(tenant_id, import_id)
            if sales_import.status != "reviewing":
                raise ConflictError(
                    f"Import {import_id} is {sales_import.status}; matches can only change while reviewing",
                    current_status=sales_import.status,
                )

            line = sales_import.get_line(line_id)
            if line is None:
                raise NotFoundError("Sales line", line_id)

            if catalog_item_id is None:
                updated = self._apply_match(line, None, status="unmatched", unmatched_reason="Match cleared manually")
            else:
                catalog = CatalogIndex(self.store.list_active_catalog_items(tenant_id))
                entry = catalog.entry(catalog_item_id)
                if entry is None:
                    raise NotFoundError("Catalog item", catalog_item_id)
                breakdown = score_description(line.description, entry, self.settings)
                updated = self._apply_match(
                    line,
                    entry.item,
                    confidence=breakdown.total,
                    match_reason=MANUAL_MATCH_REASON,
                    status="manual",
                )

            saved = self.store.save_line_match(tenant_id, import_id, updated)

        logger.info(
            f"Line {line.line_number} of import {import_id} manually set to {catalog_item_id or 'no match'}"
        )

        if catalog_item_id is not None and self.settings.enable_match_history:
            key = normalize_string(line.description)
            if key:
                self.store.record_match_history(
                    MatchHistoryEntry(
                        tenant_id=tenant_id,
                        description_key=key,
                        catalog_item_id=catalog_item_id,
                        initial_confidence=line.confidence,
                        confirmed_by=user_id,
                        created_at=utcnow(),
                    )
                )

        return saved

    # ----- Approval -----

    def approve(
        self,
        tenant_id: str,
        import_id: str,
        price_sync_item_ids: Iterable[str] = (),
    ) -> ApprovalResult:
        """
        Commit every matched line as a sale record, in one transaction.

        Unmatched lines are skipped and reported as warnings; the import then
        ends `approved_partial`. Items in `price_sync_item_ids` get their
        catalog price set to the price observed in the file.

        The batch is built from one snapshot of the import. An override that
        lands after the snapshot was read makes the commit fail with
        ConflictError and nothing is written; the caller approves again
        against the new state. Within a process the per-import lock keeps
        overrides out for the whole approval.
        """
        timeout = self.settings.approval_timeout_seconds
        deadline = time.monotonic() + timeout

        with self._locks.hold(import_id, timeout) as acquired:
            if not acquired:
                raise CommitFailure(f"Timed out waiting to approve import {import_id}")

            sales_import = self.get_import(tenant_id, import_id)
            if sales_import.status != "reviewing":
                raise ConflictError(
                    f"Import {import_id} is {sales_import.status}; only reviewing imports can be approved",
                    current_status=sales_import.status,
                )

            sync_ids = list(dict.fromkeys(price_sync_item_ids))
            matched_ids = {line.catalog_item_id for line in sales_import.lines if line.is_matched}
            for item_id in sync_ids:
                if item_id not in matched_ids:
                    raise NotFoundError("Matched catalog item", item_id)

            catalog = CatalogIndex(self.store.list_active_catalog_items(tenant_id))
            try:
                batch, warnings = self._build_batch(sales_import, catalog, sync_ids)
            except StageDataError as e:
                logger.error(f"Import {import_id} cannot be committed: {e}")
                self._mark_error(tenant_id, import_id, "reviewing", str(e))
                raise CommitFailure(str(e), retryable=False) from e

            if time.monotonic() > deadline:
                raise CommitFailure(f"Approval of import {import_id} exceeded {timeout}s")

            try:
                created = self.store.commit_approval(batch)
            except (ConflictError, NotFoundError, CommitFailure) as e:
                logger.error(f"Approval of import {import_id} failed: {e}")
                raise
            except Exception as e:
                logger.error(f"Approval of import {import_id} failed: {e}")
                raise CommitFailure(f"Approval of import {import_id} rolled back: {e}") from e

        logger.info(
            f"Import {import_id} {batch.new_status}: {created} sale records, "
            f"{len(warnings)} lines skipped, {len(batch.price_updates)} prices updated"
        )
        return ApprovalResult(
            import_id=import_id,
            status=batch.new_status,
            created_count=created,
            skipped_count=len(warnings),
            prices_updated=batch.price_updates,
            warnings=warnings,
        )

    def _build_batch(
        self,
        sales_import: SalesImport,
        catalog: CatalogIndex,
        sync_ids: list[str],
    ) -> tuple[ApprovalBatch, list[UnmatchedLineWarning]]:
        records: list[SaleRecord] = []
        warnings: list[UnmatchedLineWarning] = []
        file_prices: dict[str, Decimal] = {}

        for line in sorted(sales_import.lines, key=lambda l: l.line_number):
            if not line.is_matched:
                warnings.append(unmatched_warning(line))
                continue

            item = catalog.get(line.catalog_item_id)
            if item is None:
                raise StageDataError(
                    f"Line {line.line_number} is linked to catalog item {line.catalog_item_id}, "
                    f"which is no longer in the catalog"
                )
            if line.line_total is None or line.line_total < 0:
                raise StageDataError(f"Line {line.line_number} has an invalid line total")

            quantity = line.quantity if line.quantity is not None and line.quantity > 0 else Decimal("1")
            unit_price = file_unit_price(line, quantity)
            if unit_price is None:
                unit_price = item.price

            records.append(
                SaleRecord(
                    tenant_id=sales_import.tenant_id,
                    import_id=sales_import.id,
                    catalog_item_id=item.id,
                    quantity=quantity,
                    unit_price=unit_price,
                    line_total=line.line_total,
                    sale_date=sales_import.sale_date,
                    import_line_ref=line_ref(sales_import.id, line.id),
                )
            )

            # Later lines win when several lines sell the same item
            if line.metadata.file_price is not None:
                file_prices[item.id] = line.metadata.file_price

        price_updates: list[PriceUpdate] = []
        for item_id in sync_ids:
            item = catalog.get(item_id)
            new_price = file_prices.get(item_id)
            if item is None:
                raise StageDataError(f"Catalog item {item_id} is no longer in the catalog")
            if new_price is None:
                logger.warning(f"No file price for catalog item {item_id}; price not synced")
                continue
            if new_price == item.price:
                continue
            price_updates.append(PriceUpdate(catalog_item_id=item_id, old_price=item.price, new_price=new_price))

        batch = ApprovalBatch(
            tenant_id=sales_import.tenant_id,
            import_id=sales_import.id,
            expected_updated_at=sales_import.updated_at,
            new_status="approved_partial" if warnings else "approved",
            sale_records=records,
            price_updates=price_updates,
            approved_at=utcnow(),
        )
        return batch, warnings

    # ----- Rejection -----

    def reject(self, tenant_id: str, import_id: str) -> None:
        """Discard an import and its staged lines. Nothing reaches the sale records."""
        with self._locks.hold(import_id, self.settings.approval_timeout_seconds) as acquired:
            if not acquired:
                raise ConflictError(f"Import {import_id} is being approved", current_status="reviewing")

            sales_import = self.get_import(tenant_id, import_id)
            if sales_import.status not in ("pending", "reviewing"):
                raise ConflictError(
                    f"Import {import_id} is {sales_import.status} and can no longer be rejected",
                    current_status=sales_import.status,
                )
            self.store.reject_import(tenant_id, import_id)

        logger.info(f"Import {import_id} rejected")

    # ----- Helpers -----

    def _mark_error(self, tenant_id: str, import_id: str, expected: str, message: str) -> None:
        try:
            self.store.transition_import(tenant_id, import_id, "error", expected=(expected,), error_message=message)
        except ReconciliationError as e:
            logger.error(f"Could not mark import {import_id} as error: {e.message}")


# ============================================
# Review summary
# ============================================

def unmatched_warning(line: SalesLine) -> UnmatchedLineWarning:
    return UnmatchedLineWarning(
        line_id=line.id,
        line_number=line.line_number,
        description=line.description,
        line_total=line.line_total,
        reason=line.metadata.unmatched_reason or "No catalog item selected",
    )


def build_review_summary(sales_import: SalesImport) -> ReviewSummary:
    lines = sales_import.lines
    lines_total = sum((line.line_total for line in lines), Decimal("0"))
    declared_gross = sales_import.declared_totals.gross

    return ReviewSummary(
        total_lines=len(lines),
        matched=sum(1 for line in lines if line.status == "matched"),
        needs_review=sum(1 for line in lines if line.status == "needs_review"),
        unmatched=sum(1 for line in lines if line.status == "unmatched"),
        manual=sum(1 for line in lines if line.status == "manual"),
        inferred_quantities=sum(1 for line in lines if line.metadata.inferred_quantity),
        price_mismatches=sum(1 for line in lines if line.metadata.price_mismatch),
        lines_total=lines_total,
        declared_gross=declared_gross,
        totals_difference=(declared_gross - lines_total) if declared_gross is not None else None,
        warnings=[unmatched_warning(line) for line in sorted(lines, key=lambda l: l.line_number) if not line.is_matched],
    )
