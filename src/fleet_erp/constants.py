"""Enumerations shared across the fleet ERP modules.

Centralises domain constants so that the ingestion pipeline, the data access
layer (DAL), the business logic layer (BLL), and the CLI rely on a single
source of truth for status codes, audit categories and sheet names.
"""

from __future__ import annotations

from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Upper bound on persistence error messages reported back from one import.
DEFAULT_MAX_IMPORT_ERRORS = 10


class VehicleStatus(str, Enum):
    """Enumerate the commercial status of a vehicle in stock."""

    FREE = "LIVRE"
    RESERVED = "RESERVADO"
    SOLD = "VENDIDO"


class AuditCategory(str, Enum):
    """Enumerate the kinds of entries recorded in a vehicle's audit trail."""

    STATUS_CHANGE = "STATUS_CHANGE"
    CUSTOMER_CHANGE = "CUSTOMER_CHANGE"
    LOCATION_CHANGE = "LOCATION_CHANGE"
    FIELD_CHANGE = "FIELD_CHANGE"
    CREATED = "CREATED"
    EDITED = "EDITED"


class ImportMode(str, Enum):
    """Enumerate how a stock batch is merged into persisted state."""

    ADD = "add"
    REPLACE = "replace"


class SheetName(str, Enum):
    """Enumerate the master workbook sheet names managed by the DAL."""

    VEHICLES = "Vehicles"
    SCHEDULE = "Schedule"
    AUDIT_LOG = "AuditLog"


# Expected-month vocabulary used to order arrival schedules for display.
MONTH_ORDER: dict[str, int] = {
    "JANEIRO": 1,
    "FEVEREIRO": 2,
    "MARÇO": 3,
    "ABRIL": 4,
    "MAIO": 5,
    "JUNHO": 6,
    "JULHO": 7,
    "AGOSTO": 8,
    "SETEMBRO": 9,
    "OUTUBRO": 10,
    "NOVEMBRO": 11,
    "DEZEMBRO": 12,
}

NO_MONTH_LABEL = "SEM MÊS"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_MAX_IMPORT_ERRORS",
    "VehicleStatus",
    "AuditCategory",
    "ImportMode",
    "SheetName",
    "MONTH_ORDER",
    "NO_MONTH_LABEL",
]
