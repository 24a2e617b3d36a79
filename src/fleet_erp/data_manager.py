"""Data access layer for the fleet ERP.

This module provides the low-level helpers that read from and write to the
``fleet_master.xlsx`` workbook. Business logic belongs elsewhere.

The public API is designed around four responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Record types: the validated shapes shared by ingestion, reconciliation
   and auditing (:class:`StockItem`, :class:`ScheduleItem`,
   :class:`AuditEntry`).
4. Storage: the :class:`StoragePort` contract consumed by the reconciler and
   the audit engine, implemented over the master workbook by
   :class:`WorkbookStore`.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass, field, fields, replace
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence

from openpyxl.workbook import Workbook
from openpyxl.worksheet.worksheet import Worksheet
import openpyxl

from . import log
from .coercion import as_status
from .constants import DEFAULT_MAX_IMPORT_ERRORS, AuditCategory, SheetName, VehicleStatus


CONFIG_FILE_NAME = "config.ini"
VEHICLES_SHEET = SheetName.VEHICLES.value
SCHEDULE_SHEET = SheetName.SCHEDULE.value
AUDIT_LOG_SHEET = SheetName.AUDIT_LOG.value


@dataclass(frozen=True)
class ImportSettings:
    """Where the ingestion pipeline looks for its two logical sheets."""

    stock_sheet: str = "ESTOQUE GERAL"
    stock_marker: str = "NF"
    schedule_sheet: str = "PROGRAMA"
    schedule_marker: str = "PEDIDO"
    max_errors: int = DEFAULT_MAX_IMPORT_ERRORS


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    company_name: str
    schema_version: str
    default_user_name: str
    default_user_id: int
    import_settings: ImportSettings = field(default_factory=ImportSettings)


@dataclass(frozen=True)
class StockItem:
    """One vehicle in the yard, as read from a stock sheet or the store.

    Dates are canonical ``YYYY-MM-DD`` strings. ``id``, ``created_at`` and
    ``updated_at`` are assigned by the store and stay ``None`` on records that
    have not been persisted yet.
    """

    sequence_number: int
    invoice: Optional[str] = None
    invoice_date: Optional[str] = None
    code: Optional[str] = None
    model: Optional[str] = None
    model_year: Optional[str] = None
    color: Optional[str] = None
    chassis: Optional[str] = None
    arrival_date: Optional[str] = None
    reference_date: Optional[str] = None
    status: VehicleStatus = VehicleStatus.FREE
    days_in_stock: Optional[int] = None
    days_in_yard: Optional[int] = None
    customer: Optional[str] = None
    location: Optional[str] = None
    note: Optional[str] = None
    implement: Optional[str] = None
    tires: Optional[str] = None
    deflector: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass(frozen=True)
class ScheduleItem:
    """One expected-arrival order line."""

    order_ref: str
    model_id: Optional[str] = None
    expected_month: Optional[str] = None
    model: Optional[str] = None
    color: Optional[str] = None
    location: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass(frozen=True)
class AuditEntry:
    """One immutable line of a vehicle's audit trail."""

    vehicle_id: int
    category: AuditCategory
    field_name: Optional[str] = None
    previous_value: Optional[str] = None
    new_value: Optional[str] = None
    user_name: Optional[str] = None
    user_id: Optional[int] = None
    note: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[str] = None


# Worksheet column order for each record type: (attribute, header title).
VEHICLE_COLUMNS: Sequence[tuple[str, str]] = (
    ("id", "ID"),
    ("sequence_number", "SequenceNumber"),
    ("invoice", "Invoice"),
    ("invoice_date", "InvoiceDate"),
    ("code", "Code"),
    ("model", "Model"),
    ("model_year", "ModelYear"),
    ("color", "Color"),
    ("chassis", "Chassis"),
    ("arrival_date", "ArrivalDate"),
    ("reference_date", "ReferenceDate"),
    ("status", "Status"),
    ("days_in_stock", "DaysInStock"),
    ("days_in_yard", "DaysInYard"),
    ("customer", "Customer"),
    ("location", "Location"),
    ("note", "Note"),
    ("implement", "Implement"),
    ("tires", "Tires"),
    ("deflector", "Deflector"),
    ("created_at", "CreatedAt"),
    ("updated_at", "UpdatedAt"),
)

SCHEDULE_COLUMNS: Sequence[tuple[str, str]] = (
    ("id", "ID"),
    ("order_ref", "OrderRef"),
    ("model_id", "ModelID"),
    ("expected_month", "ExpectedMonth"),
    ("model", "Model"),
    ("color", "Color"),
    ("location", "Location"),
    ("created_at", "CreatedAt"),
    ("updated_at", "UpdatedAt"),
)

AUDIT_COLUMNS: Sequence[tuple[str, str]] = (
    ("id", "ID"),
    ("vehicle_id", "VehicleID"),
    ("category", "Category"),
    ("field_name", "Field"),
    ("previous_value", "PreviousValue"),
    ("new_value", "NewValue"),
    ("user_name", "UserName"),
    ("user_id", "UserID"),
    ("note", "Note"),
    ("created_at", "CreatedAt"),
)

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    VEHICLES_SHEET: [header for _, header in VEHICLE_COLUMNS],
    SCHEDULE_SHEET: [header for _, header in SCHEDULE_COLUMNS],
    AUDIT_LOG_SHEET: [header for _, header in AUDIT_COLUMNS],
}

BOOKKEEPING_FIELDS = frozenset({"id", "created_at", "updated_at"})
EDITABLE_VEHICLE_FIELDS: tuple[str, ...] = tuple(
    f.name for f in fields(StockItem) if f.name not in BOOKKEEPING_FIELDS
)
_VEHICLE_HEADERS: Dict[str, str] = dict(VEHICLE_COLUMNS)


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` and ``[Defaults]`` are mandatory. The ``[Import]`` section is
    optional and each of its options falls back to the :class:`ImportSettings`
    defaults. Relative ``DataFile`` entries are anchored to ``base_path`` (or
    the current working directory) and resolved.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing.
        ValueError: If a numeric option cannot be parsed.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        company_name = parser.get("System", "CompanyName")
        schema_version = parser.get("System", "SchemaVersion")
        default_user_name = parser.get("Defaults", "DefaultUserName")
        default_user_id = parser.getint("Defaults", "DefaultUserId")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    defaults = ImportSettings()
    import_settings = ImportSettings(
        stock_sheet=parser.get("Import", "StockSheet", fallback=defaults.stock_sheet),
        stock_marker=parser.get("Import", "StockHeaderMarker", fallback=defaults.stock_marker),
        schedule_sheet=parser.get("Import", "ScheduleSheet", fallback=defaults.schedule_sheet),
        schedule_marker=parser.get("Import", "ScheduleHeaderMarker", fallback=defaults.schedule_marker),
        max_errors=parser.getint("Import", "MaxErrors", fallback=defaults.max_errors),
    )

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        company_name=company_name,
        schema_version=schema_version,
        default_user_name=default_user_name,
        default_user_id=default_user_id,
        import_settings=import_settings,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the master Excel workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    wb = openpyxl.load_workbook(data_file)
    return wb


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk, creating parent directories on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def utc_timestamp() -> str:
    """Return the current UTC time as an ISO string with microseconds."""

    return datetime.now(UTC).isoformat(timespec="microseconds")


def _to_cell(value: object) -> object:
    if isinstance(value, Enum):
        return value.value
    return value


def _header_map(sheet: Worksheet) -> Dict[object, int]:
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}


def _iter_records(sheet: Worksheet) -> Iterable[tuple[int, Sequence[object]]]:
    for row_idx, raw in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield row_idx, raw


def _column_ints(sheet: Worksheet, index: int) -> List[int]:
    return [raw[index] for _, raw in _iter_records(sheet) if isinstance(raw[index], int)]


def _next_id(sheet: Worksheet, reserved: Iterable[int] = ()) -> int:
    return max([*_column_ints(sheet, 0), *reserved], default=0) + 1


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: object) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title identifying the key column.
        key_value (object): Value to match within the key column.

    Returns:
        int | None: 1-based Excel row index of the first match, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    sheet = workbook[sheet_name]
    header_map = _header_map(sheet)
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]
    for row_idx, row in _iter_records(sheet):
        if row[key_col_index - 1] == key_value:
            return row_idx

    return None


def serialize_record(record: object, columns: Sequence[tuple[str, str]]) -> list[object]:
    """Convert a record dataclass into the worksheet column ordering."""

    return [_to_cell(getattr(record, attribute)) for attribute, _ in columns]


def _row_values(raw_row: Sequence[object], columns: Sequence[tuple[str, str]]) -> Dict[str, object]:
    padded = list(raw_row) + [None] * (len(columns) - len(raw_row))
    return {attribute: padded[idx] for idx, (attribute, _) in enumerate(columns)}


def deserialize_stock_item(raw_row: Sequence[object]) -> StockItem:
    """Convert a ``Vehicles`` worksheet row into a :class:`StockItem`."""

    values = _row_values(raw_row, VEHICLE_COLUMNS)
    values["status"] = as_status(values["status"])
    return StockItem(**values)


def deserialize_schedule_item(raw_row: Sequence[object]) -> ScheduleItem:
    """Convert a ``Schedule`` worksheet row into a :class:`ScheduleItem`."""

    return ScheduleItem(**_row_values(raw_row, SCHEDULE_COLUMNS))


def deserialize_audit_entry(raw_row: Sequence[object]) -> AuditEntry:
    """Convert an ``AuditLog`` worksheet row into an :class:`AuditEntry`."""

    values = _row_values(raw_row, AUDIT_COLUMNS)
    values["category"] = AuditCategory(values["category"])
    return AuditEntry(**values)


def validate_stock_item(item: StockItem) -> None:
    """Reject stock items that cannot be stored.

    Raises:
        ValueError: If the sequence number is not an integer or the status is
            not a :class:`VehicleStatus`.
    """

    if isinstance(item.sequence_number, bool) or not isinstance(item.sequence_number, int):
        raise ValueError(f"Invalid sequence number: {item.sequence_number!r}")
    if not isinstance(item.status, VehicleStatus):
        raise ValueError(f"Invalid status: {item.status!r}")


def validate_schedule_item(item: ScheduleItem) -> None:
    """Reject schedule items without an order reference."""

    if not isinstance(item.order_ref, str) or not item.order_ref.strip():
        raise ValueError(f"Invalid order reference: {item.order_ref!r}")


class StoragePort(Protocol):
    """Persistence contract consumed by the reconciler and the audit engine."""

    def get_stock_item(self, item_id: int) -> Optional[StockItem]: ...

    def list_stock_items(self) -> List[StockItem]: ...

    def insert_stock_item(self, item: StockItem) -> StockItem: ...

    def upsert_stock_item(self, item: StockItem) -> bool: ...

    def update_stock_item(self, item_id: int, changes: Mapping[str, Any]) -> None: ...

    def delete_stock_item(self, item_id: int) -> None: ...

    def clear_stock_items(self) -> int: ...

    def list_schedule_items(self) -> List[ScheduleItem]: ...

    def insert_schedule_item(self, item: ScheduleItem) -> ScheduleItem: ...

    def clear_schedule_items(self) -> int: ...

    def append_audit_entry(self, entry: AuditEntry) -> AuditEntry: ...

    def list_audit_entries(self, vehicle_id: int) -> List[AuditEntry]: ...


class WorkbookStore:
    """:class:`StoragePort` backed by the sheets of the master workbook.

    Identifiers are assigned as ``max(ID) + 1`` per sheet and timestamps as
    UTC ISO strings. Vehicle ids also skip every id referenced by the audit
    log, so a deleted vehicle's history never attaches to a new one. Changes live in the in-memory workbook until the caller
    saves it with :func:`save_workbook`.
    """

    def __init__(self, workbook: Workbook) -> None:
        self.workbook = workbook

    def _sheet(self, name: str) -> Worksheet:
        return self.workbook[name]

    def _clear(self, sheet_name: str) -> int:
        sheet = self._sheet(sheet_name)
        removed = sum(1 for _ in _iter_records(sheet))
        if sheet.max_row > 1:
            sheet.delete_rows(2, sheet.max_row - 1)
        return removed

    # -- stock ------------------------------------------------------------

    def _next_vehicle_id(self) -> int:
        audited = _column_ints(self._sheet(AUDIT_LOG_SHEET), 1)
        return _next_id(self._sheet(VEHICLES_SHEET), audited)

    def get_stock_item(self, item_id: int) -> Optional[StockItem]:
        row_index = locate_row(self.workbook, VEHICLES_SHEET, "ID", item_id)
        if row_index is None:
            return None
        sheet = self._sheet(VEHICLES_SHEET)
        raw = next(sheet.iter_rows(min_row=row_index, max_row=row_index, values_only=True))
        return deserialize_stock_item(raw)

    def list_stock_items(self) -> List[StockItem]:
        return [deserialize_stock_item(raw) for _, raw in _iter_records(self._sheet(VEHICLES_SHEET))]

    def insert_stock_item(self, item: StockItem) -> StockItem:
        validate_stock_item(item)
        sheet = self._sheet(VEHICLES_SHEET)
        now = utc_timestamp()
        stored = replace(item, id=self._next_vehicle_id(), created_at=now, updated_at=now)
        sheet.append(serialize_record(stored, VEHICLE_COLUMNS))
        return stored

    def upsert_stock_item(self, item: StockItem) -> bool:
        """Insert ``item`` or refresh ``UpdatedAt`` on the row sharing its sequence number.

        Returns:
            bool: ``True`` when a new row was inserted.
        """

        validate_stock_item(item)
        row_index = locate_row(self.workbook, VEHICLES_SHEET, "SequenceNumber", item.sequence_number)
        if row_index is None:
            self.insert_stock_item(item)
            return True
        sheet = self._sheet(VEHICLES_SHEET)
        column = _header_map(sheet)["UpdatedAt"]
        sheet.cell(row=row_index, column=column, value=utc_timestamp())
        return False

    def update_stock_item(self, item_id: int, changes: Mapping[str, Any]) -> None:
        """Write selected fields of an existing vehicle.

        Raises:
            KeyError: If the vehicle or any referenced field is unknown.
        """

        row_index = locate_row(self.workbook, VEHICLES_SHEET, "ID", item_id)
        if row_index is None:
            raise KeyError(f"Vehicle not found: {item_id}")

        sheet = self._sheet(VEHICLES_SHEET)
        header_map = _header_map(sheet)
        for name, value in changes.items():
            if name not in EDITABLE_VEHICLE_FIELDS:
                raise KeyError(f"Unknown vehicle field: {name}")
            sheet.cell(row=row_index, column=header_map[_VEHICLE_HEADERS[name]], value=_to_cell(value))
        sheet.cell(row=row_index, column=header_map["UpdatedAt"], value=utc_timestamp())

    def delete_stock_item(self, item_id: int) -> None:
        row_index = locate_row(self.workbook, VEHICLES_SHEET, "ID", item_id)
        if row_index is None:
            raise KeyError(f"Vehicle not found: {item_id}")
        self._sheet(VEHICLES_SHEET).delete_rows(row_index)

    def clear_stock_items(self) -> int:
        return self._clear(VEHICLES_SHEET)

    # -- schedule ---------------------------------------------------------

    def list_schedule_items(self) -> List[ScheduleItem]:
        return [deserialize_schedule_item(raw) for _, raw in _iter_records(self._sheet(SCHEDULE_SHEET))]

    def insert_schedule_item(self, item: ScheduleItem) -> ScheduleItem:
        validate_schedule_item(item)
        sheet = self._sheet(SCHEDULE_SHEET)
        now = utc_timestamp()
        stored = replace(item, id=_next_id(sheet), created_at=now, updated_at=now)
        sheet.append(serialize_record(stored, SCHEDULE_COLUMNS))
        return stored

    def clear_schedule_items(self) -> int:
        return self._clear(SCHEDULE_SHEET)

    # -- audit ------------------------------------------------------------

    def append_audit_entry(self, entry: AuditEntry) -> AuditEntry:
        sheet = self._sheet(AUDIT_LOG_SHEET)
        stored = replace(
            entry,
            id=_next_id(sheet),
            created_at=entry.created_at or utc_timestamp(),
        )
        sheet.append(serialize_record(stored, AUDIT_COLUMNS))
        return stored

    def list_audit_entries(self, vehicle_id: int) -> List[AuditEntry]:
        entries = [
            deserialize_audit_entry(raw)
            for _, raw in _iter_records(self._sheet(AUDIT_LOG_SHEET))
            if raw[1] == vehicle_id
        ]
        entries.sort(key=lambda entry: (entry.created_at or "", entry.id or 0), reverse=True)
        return entries
