"""Cell value coercion helpers for spreadsheet ingestion.

Third-party workbooks store the same information in many shapes: numbers as
text, dates as serial numbers or as locale-formatted strings, blank cells as
``None`` or as stray whitespace. The helpers in this module are pure
functions that turn any such raw cell value into the strict Python type the
domain schema expects, or ``None`` when the value carries no information.
None of them raise for bad input.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime
from typing import Optional, Sequence

from openpyxl.utils.datetime import WINDOWS_EPOCH, from_excel

from .constants import VehicleStatus


NULL_TOKENS = frozenset({"null", "undefined"})

# Text dates are read day-first, matching how the upstream workbooks are
# filled in. ISO strings are handled separately by ``fromisoformat``.
DATE_FORMATS: Sequence[str] = (
    "%d/%m/%Y",
    "%d/%m/%y",
    "%d-%m-%Y",
    "%d.%m.%Y",
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M",
)

_LEADING_INTEGER = re.compile(r"\s*([+-]?\d+)")


def as_text(value: object, max_length: Optional[int] = None) -> Optional[str]:
    """Normalise a cell value into stripped text.

    Args:
        value (object): Raw cell value.
        max_length (int | None): Optional cap; longer text is truncated.

    Returns:
        str | None: ``None`` for empty cells, NaN, whitespace, and the literal
            tokens ``"null"``/``"undefined"``; otherwise the stripped text.
    """

    if value is None or (isinstance(value, float) and math.isnan(value)):
        return None
    if isinstance(value, float) and value.is_integer():
        text = str(int(value))
    elif isinstance(value, datetime):
        text = value.date().isoformat() if value.time() == datetime.min.time() else value.isoformat(sep=" ")
    elif isinstance(value, date):
        text = value.isoformat()
    else:
        text = str(value).strip()
    if not text or text in NULL_TOKENS:
        return None
    return text[:max_length] if max_length else text


def as_integer(value: object) -> Optional[int]:
    """Parse a cell value as a base-10 integer.

    Numbers are truncated toward zero and text contributes its leading
    integer (``"45 dias"`` gives ``45``). Booleans, dates and anything
    without a leading digit sequence yield ``None``.
    """

    if value is None or isinstance(value, (bool, date)):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return None
        return int(value)
    match = _LEADING_INTEGER.match(str(value))
    if match is None:
        return None
    return int(match.group(1))


def as_date(value: object, *, epoch: datetime = WINDOWS_EPOCH) -> Optional[str]:
    """Resolve a cell value into a canonical ``YYYY-MM-DD`` string.

    Spreadsheet cells hold dates either as serial numbers (when the cell is
    numeric but not date-formatted), as ``datetime`` objects (when openpyxl
    recognised the number format), or as text typed by a person. All three
    shapes converge on the same calendar date string.

    Args:
        value (object): Raw cell value.
        epoch (datetime): Serial epoch of the source workbook, normally
            ``Workbook.epoch``.

    Returns:
        str | None: ISO calendar date, or ``None`` when the value cannot be
            interpreted as a date.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (int, float)):
        return _from_serial(value, epoch)

    text = as_text(value)
    if text is None:
        return None
    try:
        return datetime.fromisoformat(text).date().isoformat()
    except ValueError:
        pass
    for pattern in DATE_FORMATS:
        try:
            return datetime.strptime(text, pattern).date().isoformat()
        except ValueError:
            continue
    return None


def _from_serial(serial: float, epoch: datetime) -> Optional[str]:
    if isinstance(serial, float) and (math.isnan(serial) or math.isinf(serial)):
        return None
    try:
        decoded = from_excel(serial, epoch=epoch)
    except (OverflowError, ValueError):
        return None
    # Serials below one day decode to a bare time of day.
    if not isinstance(decoded, datetime):
        return None
    return decoded.date().isoformat()


def as_status(value: object) -> VehicleStatus:
    """Map free-form status text onto :class:`VehicleStatus`.

    Matching is by substring so annotated cells such as
    ``"RESERVADO - CLIENTE X"`` still resolve. Anything unrecognised,
    including empty cells, is ``FREE``.
    """

    text = as_text(value)
    if text is None:
        return VehicleStatus.FREE
    upper = text.upper()
    if VehicleStatus.RESERVED.value in upper:
        return VehicleStatus.RESERVED
    if VehicleStatus.SOLD.value in upper:
        return VehicleStatus.SOLD
    return VehicleStatus.FREE


__all__ = [
    "DATE_FORMATS",
    "as_text",
    "as_integer",
    "as_date",
    "as_status",
]
