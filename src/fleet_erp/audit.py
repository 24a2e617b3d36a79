"""Field-level change auditing for stored vehicles.

Every edit to a vehicle is diffed against its stored snapshot before it is
written. Each tracked field whose value actually changes produces one
:class:`~fleet_erp.data_manager.AuditEntry`; the category of the entry comes
from :data:`TRACKED_FIELDS`. Fields outside that table are written without
leaving a trail. To audit another column, add a row to the table.
"""

from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Any, List, Mapping, Optional

from . import log
from .constants import AuditCategory
from .data_manager import AuditEntry, StockItem, StoragePort, utc_timestamp


TRACKED_FIELDS: Mapping[str, AuditCategory] = {
    "status": AuditCategory.STATUS_CHANGE,
    "customer": AuditCategory.CUSTOMER_CHANGE,
    "location": AuditCategory.LOCATION_CHANGE,
    "note": AuditCategory.FIELD_CHANGE,
    "implement": AuditCategory.FIELD_CHANGE,
    "tires": AuditCategory.FIELD_CHANGE,
    "deflector": AuditCategory.FIELD_CHANGE,
    "days_in_stock": AuditCategory.FIELD_CHANGE,
    "days_in_yard": AuditCategory.FIELD_CHANGE,
    "arrival_date": AuditCategory.FIELD_CHANGE,
    "reference_date": AuditCategory.FIELD_CHANGE,
    "color": AuditCategory.FIELD_CHANGE,
    "model_year": AuditCategory.FIELD_CHANGE,
}

FIELD_LABELS: Mapping[str, str] = {
    "sequence_number": "Sequence number",
    "invoice": "Invoice",
    "invoice_date": "Invoice date",
    "code": "Code",
    "model": "Model",
    "model_year": "Model year",
    "color": "Color",
    "chassis": "Chassis",
    "arrival_date": "Arrival date",
    "reference_date": "Reference date",
    "status": "Status",
    "days_in_stock": "Days in stock",
    "days_in_yard": "Days in yard",
    "customer": "Customer",
    "location": "Location",
    "note": "Note",
    "implement": "Implement",
    "tires": "Tires",
    "deflector": "Deflector",
}

_CATEGORY_LABELS: Mapping[AuditCategory, str] = {
    AuditCategory.STATUS_CHANGE: "Status changed",
    AuditCategory.CUSTOMER_CHANGE: "Customer changed",
    AuditCategory.LOCATION_CHANGE: "Location changed",
    AuditCategory.CREATED: "Vehicle registered",
    AuditCategory.EDITED: "Record edited",
}


def stringify(value: Any) -> Optional[str]:
    """Render a field value the way it is stored in an audit entry."""

    if value is None:
        return None
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def _comparable(value: Any) -> str:
    text = stringify(value)
    return "" if text is None else text


def describe_entry(entry: AuditEntry) -> str:
    """Return the human-readable headline for an audit entry."""

    if entry.category is AuditCategory.FIELD_CHANGE and entry.field_name:
        label = FIELD_LABELS.get(entry.field_name, entry.field_name)
        return f"{label} changed"
    return _CATEGORY_LABELS.get(entry.category, _CATEGORY_LABELS[AuditCategory.EDITED])


class AuditDiffEngine:
    """Diff proposed vehicle changes, persist the trail, then write the changes."""

    def __init__(self, store: StoragePort, *, tracked_fields: Mapping[str, AuditCategory] = TRACKED_FIELDS) -> None:
        self.store = store
        self.tracked_fields = tracked_fields

    def diff(
        self,
        vehicle_id: int,
        current: StockItem,
        changes: Mapping[str, Any],
        *,
        user_name: str,
        user_id: int,
        note: Optional[str] = None,
    ) -> List[AuditEntry]:
        """Build one entry per tracked field whose value changes.

        A field is a candidate only when ``changes`` names it. Values are
        compared as strings with ``None`` treated as the empty string:
        ``None`` and ``""`` compare equal, as do ``45`` and ``"45"``.

        Returns:
            list[AuditEntry]: Unsaved entries in tracked-field order, sharing
                one timestamp.
        """

        timestamp = utc_timestamp()
        entries: List[AuditEntry] = []
        for name, category in self.tracked_fields.items():
            if name not in changes:
                continue
            previous = getattr(current, name)
            proposed = changes[name]
            if _comparable(proposed) == _comparable(previous):
                continue
            entries.append(
                AuditEntry(
                    vehicle_id=vehicle_id,
                    category=category,
                    field_name=name,
                    previous_value=stringify(previous),
                    new_value=stringify(proposed),
                    user_name=user_name,
                    user_id=user_id,
                    note=note,
                    created_at=timestamp,
                )
            )
        return entries

    def apply(
        self,
        vehicle_id: int,
        current: StockItem,
        changes: Mapping[str, Any],
        *,
        user_name: str,
        user_id: int,
        note: Optional[str] = None,
    ) -> List[AuditEntry]:
        """Persist the audit entries for ``changes`` and then write them.

        The whole change set, tracked or not, is written in one update after
        the entries are stored.

        Returns:
            list[AuditEntry]: The stored entries, one per changed tracked field.
        """

        entries = self.diff(vehicle_id, current, changes, user_name=user_name, user_id=user_id, note=note)
        stored = [self.store.append_audit_entry(entry) for entry in entries]
        self.store.update_stock_item(vehicle_id, changes)
        log.info(
            "Updated vehicle %s: %d field(s) written, %d audited",
            vehicle_id,
            len(changes),
            len(stored),
        )
        return stored

    def record_event(
        self,
        vehicle_id: int,
        category: AuditCategory,
        *,
        user_name: str,
        user_id: int,
        note: Optional[str] = None,
    ) -> AuditEntry:
        """Store a whole-record event such as ``CREATED`` or ``EDITED``."""

        entry = AuditEntry(
            vehicle_id=vehicle_id,
            category=category,
            user_name=user_name,
            user_id=user_id,
            note=note,
        )
        stored = self.store.append_audit_entry(entry)
        log.info("Recorded %s event for vehicle %s", category.value, vehicle_id)
        return stored
