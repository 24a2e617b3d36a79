"""Merge freshly parsed record batches into persisted state.

Stock and schedule follow different policies. Stock items are upserted one
at a time keyed by their sequence number, so re-submitting the same batch
leaves the stored rows unchanged apart from their ``UpdatedAt`` stamp; a
failing record is counted and reported without aborting the batch. The
schedule is replaced wholesale because order references are not stable
across upstream refreshes: the latest plan supersedes the previous one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from . import log
from .constants import DEFAULT_MAX_IMPORT_ERRORS, ImportMode
from .data_manager import ScheduleItem, StockItem, StoragePort


@dataclass(frozen=True)
class StockImportResult:
    """Outcome of applying a stock batch."""

    imported: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ScheduleImportResult:
    """Outcome of replacing the arrival schedule."""

    imported: int = 0


@dataclass(frozen=True)
class ImportResult:
    """Combined outcome of a commit call."""

    stock: StockImportResult
    schedule: ScheduleImportResult

    def as_dict(self) -> Dict[str, Dict[str, Any]]:
        return {
            "stock": {
                "imported": self.stock.imported,
                "skipped": self.stock.skipped,
                "errors": list(self.stock.errors),
            },
            "schedule": {"imported": self.schedule.imported},
        }


class BulkReconciler:
    """Apply candidate batches against a :class:`StoragePort`.

    Records are processed sequentially so counters and the captured error
    list are deterministic for a given batch.
    """

    def __init__(self, store: StoragePort, *, max_errors: int = DEFAULT_MAX_IMPORT_ERRORS) -> None:
        self.store = store
        self.max_errors = max_errors

    def import_stock(self, items: Sequence[StockItem], *, mode: ImportMode = ImportMode.ADD) -> StockImportResult:
        """Upsert each stock item, isolating per-record failures.

        Args:
            items (Sequence[StockItem]): Candidate records in source order.
            mode (ImportMode): ``ADD`` merges into existing stock;
                ``REPLACE`` physically removes every stored vehicle first.

        Returns:
            StockImportResult: ``imported`` counts records applied (inserted or
                refreshed), ``skipped`` counts failures, and ``errors`` holds
                at most ``max_errors`` messages.
        """

        mode = ImportMode(mode)
        if mode is ImportMode.REPLACE:
            removed = self.store.clear_stock_items()
            log.info("Cleared %d stored vehicle(s) before replace import", removed)

        imported = 0
        inserted = 0
        skipped = 0
        errors: List[str] = []
        for item in items:
            try:
                if self.store.upsert_stock_item(item):
                    inserted += 1
            except Exception as error:  # isolate failures per record
                skipped += 1
                message = f"Row {item.sequence_number}: {error}"
                log.warning("Skipped stock record: %s", message)
                if len(errors) < self.max_errors:
                    errors.append(message)
                continue
            imported += 1

        log.info(
            "Stock import finished: imported=%d (new=%d) skipped=%d",
            imported,
            inserted,
            skipped,
        )
        return StockImportResult(imported=imported, skipped=skipped, errors=errors)

    def import_schedule(self, items: Sequence[ScheduleItem]) -> ScheduleImportResult:
        """Replace the stored schedule with ``items``.

        Prior rows are removed before any insert. Insert failures propagate
        to the caller.
        """

        removed = self.store.clear_schedule_items()
        imported = 0
        for item in items:
            self.store.insert_schedule_item(item)
            imported += 1
        log.info("Schedule replaced: removed=%d imported=%d", removed, imported)
        return ScheduleImportResult(imported=imported)

    def commit(
        self,
        stock_items: Sequence[StockItem],
        schedule_items: Sequence[ScheduleItem],
        *,
        mode: ImportMode = ImportMode.ADD,
    ) -> ImportResult:
        """Apply both batches of a reviewed import.

        The schedule is always replaced regardless of ``mode``. An empty
        schedule batch leaves the stored schedule untouched, which keeps a
        workbook missing its schedule sheet from wiping the current plan.
        """

        stock_result = self.import_stock(stock_items, mode=mode)
        if schedule_items:
            schedule_result = self.import_schedule(schedule_items)
        else:
            log.info("No schedule records submitted; stored schedule left untouched")
            schedule_result = ScheduleImportResult()
        return ImportResult(stock=stock_result, schedule=schedule_result)
