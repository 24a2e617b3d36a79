"""Business logic layer for the fleet ERP.

This module orchestrates the ingestion pipeline and the audited edit path on
top of the Data Access Layer (DAL). Callers hold a :class:`RuntimeContext`
that carries the configuration, the live master workbook, and the storage
port every operation writes through. Nothing is saved to disk until
:func:`persist_context` is called.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from openpyxl.workbook import Workbook

from . import data_manager, log
from .audit import AuditDiffEngine
from .coercion import as_text
from .constants import EXPECTED_SCHEMA_VERSION, MONTH_ORDER, NO_MONTH_LABEL, AuditCategory, ImportMode, VehicleStatus
from .reconciler import BulkReconciler, ImportResult
from .record_builder import STOCK_COLUMNS, ImportPreview, parse_workbook


SOURCE_SUFFIXES = (".xlsx", ".xlsm")


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced vehicle is unknown."""


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration, workbook and storage used by the BLL."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    store: data_manager.StoragePort


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook for the BLL.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Context whose store writes into the opened workbook.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook, store=data_manager.WorkbookStore(workbook))


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications."""
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook, store=data_manager.WorkbookStore(workbook))


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Persist any in-memory workbook changes to the configured data file."""
    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def _resolve_user(context: RuntimeContext, user_name: Optional[str], user_id: Optional[int]) -> tuple[str, int]:
    return (
        user_name if user_name else context.settings.default_user_name,
        user_id if user_id is not None else context.settings.default_user_id,
    )


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------


def read_source_file(path: Path) -> bytes:
    """Read an uploaded source workbook from disk.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        BusinessRuleViolation: If the file is not an ``.xlsx``/``.xlsm`` workbook.
    """
    source = Path(path).expanduser().resolve()
    if not source.exists():
        raise FileNotFoundError(f"Source workbook not found: {source}")
    if source.suffix.lower() not in SOURCE_SUFFIXES:
        raise BusinessRuleViolation(f"Only {', '.join(SOURCE_SUFFIXES)} workbooks are accepted: {source.name}")
    return source.read_bytes()


def preview_import(context: RuntimeContext, content: bytes) -> ImportPreview:
    """Parse source workbook bytes into candidate records without persisting.

    The preview carries every structural warning so the caller can show them
    before allowing the commit.
    """
    preview = parse_workbook(content, context.settings.import_settings)
    log.info(
        "Import preview ready: %d stock, %d schedule, %d warning(s)",
        len(preview.stock_items),
        len(preview.schedule_items),
        len(preview.warnings),
    )
    return preview


def commit_import(
    context: RuntimeContext,
    stock_items: Sequence[data_manager.StockItem],
    schedule_items: Sequence[data_manager.ScheduleItem],
    *,
    mode: ImportMode | str = ImportMode.ADD,
) -> ImportResult:
    """Apply a reviewed import to the store.

    Raises:
        BusinessRuleViolation: If ``mode`` is not ``add`` or ``replace``.
    """
    try:
        import_mode = ImportMode(mode)
    except ValueError as exc:
        raise BusinessRuleViolation(f"Unsupported import mode: {mode}") from exc

    ensure_schema_version(context)
    reconciler = BulkReconciler(context.store, max_errors=context.settings.import_settings.max_errors)
    return reconciler.commit(stock_items, schedule_items, mode=import_mode)


# ---------------------------------------------------------------------------
# Vehicles and audit trail
# ---------------------------------------------------------------------------


def _parse_status(value: object) -> Optional[VehicleStatus]:
    if isinstance(value, VehicleStatus):
        return value
    text = as_text(value)
    if text is None:
        return None
    key = text.upper()
    try:
        return VehicleStatus(key)
    except ValueError:
        pass
    try:
        return VehicleStatus[key]
    except KeyError:
        return None


FIELD_NORMALIZERS: Mapping[str, Callable[[object], Any]] = {
    **{spec.field: spec.converter for spec in STOCK_COLUMNS},
    "status": _parse_status,
}


def normalize_changes(changes: Mapping[str, Any]) -> Dict[str, Any]:
    """Coerce user-supplied field values into the stored types.

    Values pass through the same converters the ingestion pipeline uses,
    except status, which must name a :class:`VehicleStatus` exactly.

    Raises:
        KeyError: If a field is not an editable vehicle field.
        BusinessRuleViolation: If a non-empty value cannot be converted, or
            if status or sequence number would be cleared.
    """
    normalized: Dict[str, Any] = {}
    for name, raw in changes.items():
        converter = FIELD_NORMALIZERS.get(name)
        if converter is None:
            raise KeyError(f"Unknown vehicle field: {name}")
        value = converter(raw)
        if value is None and (as_text(raw) is not None or name in ("status", "sequence_number")):
            log.error("Rejected value %r for field '%s'", raw, name)
            raise BusinessRuleViolation(f"Invalid value for {name}: {raw!r}")
        normalized[name] = value
    return normalized


def get_vehicle(context: RuntimeContext, vehicle_id: int) -> data_manager.StockItem:
    """Resolve a vehicle by its storage identifier.

    Raises:
        MissingReferenceError: If no vehicle has ``vehicle_id``.
    """
    vehicle = context.store.get_stock_item(vehicle_id)
    if vehicle is None:
        log.warning("Vehicle lookup failed for id '%s'", vehicle_id)
        raise MissingReferenceError(f"Unknown vehicle id: {vehicle_id}")
    return vehicle


def list_vehicles(context: RuntimeContext, *, status: Optional[VehicleStatus] = None) -> List[data_manager.StockItem]:
    """Return stored vehicles ordered by sequence number, optionally by status."""
    vehicles = context.store.list_stock_items()
    if status is not None:
        vehicles = [vehicle for vehicle in vehicles if vehicle.status is status]
    return sorted(vehicles, key=lambda vehicle: vehicle.sequence_number)


def _ensure_unique_sequence(
    context: RuntimeContext, sequence_number: int, *, vehicle_id: Optional[int] = None
) -> None:
    for vehicle in context.store.list_stock_items():
        if vehicle.sequence_number == sequence_number and vehicle.id != vehicle_id:
            log.warning("Rejected duplicate sequence number %s", sequence_number)
            raise BusinessRuleViolation(f"Sequence number already registered: {sequence_number}")


def edit_vehicle(
    context: RuntimeContext,
    vehicle_id: int,
    changes: Mapping[str, Any],
    *,
    user_name: Optional[str] = None,
    user_id: Optional[int] = None,
    note: Optional[str] = None,
) -> List[data_manager.AuditEntry]:
    """Apply a partial update to a vehicle and record its audit trail.

    The current snapshot is read, the proposal is normalised, one audit entry
    is stored per changed tracked field, and the full proposal is written.

    Returns:
        list[data_manager.AuditEntry]: Entries stored for this edit.

    Raises:
        MissingReferenceError: If the vehicle does not exist.
        BusinessRuleViolation: If a proposed value is invalid or the sequence
            number belongs to another vehicle.
        KeyError: If a proposed field is unknown.
        RuntimeError: If the workbook schema version does not match.
    """
    ensure_schema_version(context)
    current = get_vehicle(context, vehicle_id)
    normalized = normalize_changes(changes)
    if "sequence_number" in normalized:
        _ensure_unique_sequence(context, normalized["sequence_number"], vehicle_id=vehicle_id)
    if not normalized:
        log.info("No changes submitted for vehicle %s", vehicle_id)
        return []
    actor_name, actor_id = _resolve_user(context, user_name, user_id)
    engine = AuditDiffEngine(context.store)
    return engine.apply(vehicle_id, current, normalized, user_name=actor_name, user_id=actor_id, note=note)


def create_vehicle(
    context: RuntimeContext,
    values: Mapping[str, Any],
    *,
    user_name: Optional[str] = None,
    user_id: Optional[int] = None,
    note: Optional[str] = None,
) -> data_manager.StockItem:
    """Register a vehicle manually and open its audit trail with ``CREATED``.

    Raises:
        BusinessRuleViolation: If the sequence number is missing, already in
            use, or any value is invalid.
    """
    ensure_schema_version(context)
    normalized = normalize_changes(values)
    sequence_number = normalized.get("sequence_number")
    if sequence_number is None:
        raise BusinessRuleViolation("A sequence number is required to register a vehicle")
    _ensure_unique_sequence(context, sequence_number)

    vehicle = context.store.insert_stock_item(data_manager.StockItem(**normalized))
    actor_name, actor_id = _resolve_user(context, user_name, user_id)
    AuditDiffEngine(context.store).record_event(
        vehicle.id,
        AuditCategory.CREATED,
        user_name=actor_name,
        user_id=actor_id,
        note=note,
    )
    log.info("Registered vehicle %s (sequence %s)", vehicle.id, sequence_number)
    return vehicle


def delete_vehicle(context: RuntimeContext, vehicle_id: int) -> None:
    """Physically remove a vehicle. Its audit entries are kept.

    Raises:
        MissingReferenceError: If the vehicle does not exist.
    """
    ensure_schema_version(context)
    get_vehicle(context, vehicle_id)
    context.store.delete_stock_item(vehicle_id)
    log.info("Deleted vehicle %s", vehicle_id)


def add_note(
    context: RuntimeContext,
    vehicle_id: int,
    text: str,
    *,
    user_name: Optional[str] = None,
    user_id: Optional[int] = None,
) -> data_manager.AuditEntry:
    """Append a free-text ``EDITED`` entry to a vehicle's audit trail.

    Raises:
        MissingReferenceError: If the vehicle does not exist.
        BusinessRuleViolation: If ``text`` is blank.
    """
    ensure_schema_version(context)
    get_vehicle(context, vehicle_id)
    note = as_text(text)
    if note is None:
        raise BusinessRuleViolation("Note text cannot be empty")
    actor_name, actor_id = _resolve_user(context, user_name, user_id)
    return AuditDiffEngine(context.store).record_event(
        vehicle_id,
        AuditCategory.EDITED,
        user_name=actor_name,
        user_id=actor_id,
        note=note,
    )


def list_history(context: RuntimeContext, vehicle_id: int) -> List[data_manager.AuditEntry]:
    """Return a vehicle's audit entries, newest first.

    Entries of deleted vehicles remain readable.
    """
    return context.store.list_audit_entries(vehicle_id)


# ---------------------------------------------------------------------------
# Arrival schedule
# ---------------------------------------------------------------------------


def month_rank(label: Optional[str]) -> int:
    """Position of an expected-month label in the month vocabulary; unknown labels sort last."""
    if not label:
        return len(MONTH_ORDER) + 1
    return MONTH_ORDER.get(label.strip().upper(), len(MONTH_ORDER) + 1)


def list_schedule(context: RuntimeContext) -> List[data_manager.ScheduleItem]:
    """Return the stored schedule ordered by expected month, then by id."""
    items = context.store.list_schedule_items()
    return sorted(items, key=lambda item: (month_rank(item.expected_month), item.id or 0))


def group_schedule_by_month(
    items: Sequence[data_manager.ScheduleItem],
) -> List[tuple[str, List[data_manager.ScheduleItem]]]:
    """Group schedule lines under their month label for display.

    Labels are kept as written; lines without a month fall under
    ``NO_MONTH_LABEL``. Groups follow the month vocabulary, unknown labels
    last in order of first appearance.
    """
    groups: Dict[str, List[data_manager.ScheduleItem]] = {}
    for item in items:
        groups.setdefault(item.expected_month or NO_MONTH_LABEL, []).append(item)
    return sorted(groups.items(), key=lambda pair: month_rank(pair[0]))
