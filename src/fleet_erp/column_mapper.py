"""Header discovery and fixed-offset column reading for source workbooks.

Source workbooks are produced by a third party and open with an unstable
preamble: titles, merged cells, spacer rows. Column positions are only
reliable relative to the header row, and the header row itself moves from
one export to the next. This module locates that row by scanning for a
marker cell and then reads the data rows below it through a fixed column
layout.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from openpyxl.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet

from . import log


Row = Sequence[object]


@dataclass(frozen=True)
class ColumnSpec:
    """Bind a record field to a zero-based column offset and its converter."""

    field: str
    offset: int
    converter: Callable[[object], Any]


def find_sheet(workbook: Workbook, fragment: str) -> Optional[Worksheet]:
    """Return the first worksheet whose title contains ``fragment``.

    Titles are stripped and compared case-insensitively, so ``"ESTOQUE GERAL "``
    and ``"Estoque Geral 2026"`` both match the fragment ``"estoque geral"``.
    """

    needle = fragment.strip().upper()
    for sheet in workbook.worksheets:
        if needle in sheet.title.strip().upper():
            return sheet
    return None


def read_rows(sheet: Worksheet) -> List[Tuple[object, ...]]:
    """Materialise the worksheet as a list of value tuples."""

    return list(sheet.iter_rows(values_only=True))


def _cell_text(value: object) -> str:
    return "" if value is None else str(value).strip()


def find_header_row(rows: Sequence[Row], marker: str) -> Optional[int]:
    """Locate the header row by its marker cell.

    Args:
        rows (Sequence[Row]): Sheet rows in order.
        marker (str): Exact token identifying the header row, compared
            against each stripped cell.

    Returns:
        int | None: Zero-based index of the first row holding ``marker`` or
            ``None`` when no row does.
    """

    for index, row in enumerate(rows):
        if row and any(_cell_text(cell) == marker for cell in row):
            return index
    return None


def is_blank_row(row: Optional[Row]) -> bool:
    """Return ``True`` when every cell is empty or whitespace."""

    return not row or all(_cell_text(cell) == "" for cell in row)


def iter_data_rows(rows: Sequence[Row], header_index: int) -> Iterator[Tuple[int, Row]]:
    """Yield ``(sheet_row_number, row)`` pairs for rows below the header.

    Blank rows are skipped. Row numbers are 1-based to match what a person
    sees in the spreadsheet application.
    """

    for index in range(header_index + 1, len(rows)):
        row = rows[index]
        if is_blank_row(row):
            continue
        yield index + 1, row


def cell_at(row: Row, offset: int) -> object:
    """Return the cell at ``offset`` or ``None`` when the row is shorter."""

    return row[offset] if offset < len(row) else None


def map_row(row: Row, columns: Iterable[ColumnSpec]) -> Dict[str, Any]:
    """Convert a raw row into a field mapping using the column layout."""

    return {spec.field: spec.converter(cell_at(row, spec.offset)) for spec in columns}


def locate_table(workbook: Workbook, fragment: str, marker: str) -> Tuple[Optional[List[Tuple[object, ...]]], Optional[int]]:
    """Find a logical sheet and its header row in one pass.

    Returns:
        tuple: ``(rows, header_index)``. ``rows`` is ``None`` when no sheet
            matches ``fragment``; ``header_index`` is ``None`` when the sheet
            exists but holds no ``marker`` cell.
    """

    sheet = find_sheet(workbook, fragment)
    if sheet is None:
        log.warning("No sheet matching '%s' in source workbook", fragment)
        return None, None
    rows = read_rows(sheet)
    header_index = find_header_row(rows, marker)
    if header_index is None:
        log.warning("Header marker '%s' not found in sheet '%s'", marker, sheet.title)
    else:
        log.debug("Header for sheet '%s' found at row %d", sheet.title, header_index + 1)
    return rows, header_index
