"""Turn a third-party source workbook into validated candidate records.

The builder reads the two logical sheets of the upstream workbook (the stock
overview and the arrival schedule), locates each header row through
:mod:`fleet_erp.column_mapper`, and coerces every data row into a
:class:`~fleet_erp.data_manager.StockItem` or
:class:`~fleet_erp.data_manager.ScheduleItem`. Problems are reported in three
tiers:

* a missing sheet or header produces a warning and an empty record set for
  that sheet only;
* a row whose identifying field does not coerce is dropped silently;
* everything else becomes a candidate record, with unreadable optional cells
  left as ``None``.

Nothing here touches persistent storage.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from functools import partial
from io import BytesIO
from typing import Callable, List, Optional, Sequence
from zipfile import BadZipFile

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.workbook import Workbook

from . import log
from .coercion import as_date, as_integer, as_status, as_text
from .column_mapper import ColumnSpec, iter_data_rows, locate_table, map_row
from .data_manager import ImportSettings, ScheduleItem, StockItem


class WorkbookReadError(ValueError):
    """Raised when the uploaded content is not a readable ``.xlsx`` workbook."""


@dataclass(frozen=True)
class SheetLayout:
    """Describe where a logical sheet lives and how its columns map to fields."""

    label: str
    fragment: str
    marker: str
    key_field: str
    columns: Sequence[ColumnSpec]


def _text(max_length: Optional[int] = None) -> Callable[[object], Optional[str]]:
    return partial(as_text, max_length=max_length)


# Offsets count from column A of the source sheet.
STOCK_COLUMNS: tuple[ColumnSpec, ...] = (
    ColumnSpec("sequence_number", 0, as_integer),
    ColumnSpec("invoice", 1, _text(32)),
    ColumnSpec("invoice_date", 2, as_date),
    ColumnSpec("code", 3, _text(32)),
    ColumnSpec("model", 4, _text()),
    ColumnSpec("model_year", 5, _text(16)),
    ColumnSpec("color", 6, _text(64)),
    ColumnSpec("chassis", 7, _text(32)),
    ColumnSpec("arrival_date", 8, as_date),
    ColumnSpec("reference_date", 9, as_date),
    ColumnSpec("status", 10, as_status),
    ColumnSpec("days_in_stock", 11, as_integer),
    ColumnSpec("days_in_yard", 12, as_integer),
    ColumnSpec("customer", 13, _text(256)),
    ColumnSpec("location", 14, _text(128)),
    ColumnSpec("note", 15, _text()),
    ColumnSpec("implement", 16, _text(128)),
    ColumnSpec("tires", 17, _text(64)),
    ColumnSpec("deflector", 18, _text(64)),
)

SCHEDULE_COLUMNS: tuple[ColumnSpec, ...] = (
    ColumnSpec("order_ref", 0, _text(32)),
    ColumnSpec("model_id", 1, _text(32)),
    ColumnSpec("expected_month", 2, _text(32)),
    ColumnSpec("model", 3, _text()),
    ColumnSpec("color", 4, _text(64)),
    ColumnSpec("location", 5, _text(128)),
)

_DEFAULTS = ImportSettings()

STOCK_LAYOUT = SheetLayout(
    label="stock",
    fragment=_DEFAULTS.stock_sheet,
    marker=_DEFAULTS.stock_marker,
    key_field="sequence_number",
    columns=STOCK_COLUMNS,
)

SCHEDULE_LAYOUT = SheetLayout(
    label="schedule",
    fragment=_DEFAULTS.schedule_sheet,
    marker=_DEFAULTS.schedule_marker,
    key_field="order_ref",
    columns=SCHEDULE_COLUMNS,
)


@dataclass
class ImportPreview:
    """Candidate records and structural warnings awaiting human review."""

    stock_items: List[StockItem] = field(default_factory=list)
    schedule_items: List[ScheduleItem] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def sample(self, size: int = 5) -> tuple[List[StockItem], List[ScheduleItem]]:
        """Return the first ``size`` records of each set for display."""

        return self.stock_items[:size], self.schedule_items[:size]


def load_source_workbook(content: bytes) -> Workbook:
    """Open uploaded workbook bytes with cached formula results.

    Raises:
        WorkbookReadError: If ``content`` is not a readable ``.xlsx`` file.
    """

    try:
        return openpyxl.load_workbook(BytesIO(content), data_only=True)
    except (BadZipFile, InvalidFileException, KeyError, OSError) as exc:
        raise WorkbookReadError(f"Unable to read workbook: {exc}") from exc


def _build_sheet(workbook: Workbook, layout: SheetLayout, factory: Callable[..., object], warnings: List[str]) -> list:
    rows, header_index = locate_table(workbook, layout.fragment, layout.marker)
    if rows is None:
        warnings.append(f"Sheet matching '{layout.fragment}' not found")
        return []
    if header_index is None:
        warnings.append(f"Header row with '{layout.marker}' not found in {layout.label} sheet")
        return []

    records = []
    for row_number, row in iter_data_rows(rows, header_index):
        values = map_row(row, layout.columns)
        if values[layout.key_field] is None:
            log.debug("Dropping %s row %d without %s", layout.label, row_number, layout.key_field)
            continue
        records.append(factory(**values))
    log.info("Built %d %s record(s) from source workbook", len(records), layout.label)
    return records


def build_records(
    workbook: Workbook,
    *,
    stock_layout: SheetLayout = STOCK_LAYOUT,
    schedule_layout: SheetLayout = SCHEDULE_LAYOUT,
) -> ImportPreview:
    """Extract stock and schedule candidates from an open source workbook.

    Date columns of ``stock_layout`` are rebound to ``workbook.epoch`` so that
    serial dates decode correctly for both 1900- and 1904-based files.
    """

    dated_layout = replace(
        stock_layout,
        columns=tuple(
            replace(spec, converter=partial(as_date, epoch=workbook.epoch))
            if spec.converter is as_date
            else spec
            for spec in stock_layout.columns
        ),
    )

    preview = ImportPreview()
    preview.stock_items = _build_sheet(workbook, dated_layout, StockItem, preview.warnings)
    preview.schedule_items = _build_sheet(workbook, schedule_layout, ScheduleItem, preview.warnings)
    return preview


def layouts_from_settings(settings: ImportSettings) -> tuple[SheetLayout, SheetLayout]:
    """Apply configured sheet fragments and header markers to the default layouts."""

    stock = replace(STOCK_LAYOUT, fragment=settings.stock_sheet, marker=settings.stock_marker)
    schedule = replace(SCHEDULE_LAYOUT, fragment=settings.schedule_sheet, marker=settings.schedule_marker)
    return stock, schedule


def parse_workbook(content: bytes, settings: Optional[ImportSettings] = None) -> ImportPreview:
    """Read workbook bytes and build the import preview in one call."""

    stock_layout, schedule_layout = layouts_from_settings(settings or ImportSettings())
    workbook = load_source_workbook(content)
    preview = build_records(workbook, stock_layout=stock_layout, schedule_layout=schedule_layout)
    for warning in preview.warnings:
        log.warning("Import preview: %s", warning)
    return preview
