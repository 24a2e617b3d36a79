"""Shared pytest fixtures and utilities for Fleet ERP tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass, replace
from io import BytesIO
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence
from unittest.mock import Mock

import openpyxl
import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from fleet_erp import cli, constants, core_logic, data_manager  # noqa: E402
from fleet_erp.setup_excel import create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
DEFAULT_USER_NAME = "Sistema"
DEFAULT_USER_ID = 0
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "CompanyName = {company_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Defaults]\n"
    "DefaultUserName = {default_user_name}\n"
    "DefaultUserId = {default_user_id}\n"
)

STOCK_HEADER = (
    "SEQ", "NF", "DATA NF", "COD", "MODELO", "ANO/MOD", "COR", "CHASSI", "CHEGADA", "DATA ATUAL",
    "STATUS", "DIAS ESTOQUE", "DIAS PATIO", "CLIENTE", "LOCAL", "OBS", "IMPLEMENTO", "PNEU", "DEFLETOR",
)
SCHEDULE_HEADER = ("PEDIDO", "ID MODELO", "MÊS PREVISTO", "MODELO", "COR", "LOCAL")


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    company_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized master workbook in a temp folder."""

    def _create_workbook(*, subdir: str | None = None, filename: str = "fleet_master.xlsx") -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        return create_master_workbook(base_dir / filename, overwrite=True)

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh master workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        company_name: str = "Test Yard",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        extra: str = "",
    ) -> ConfigBundle:
        bundle_dir_name = f"bundle_{uuid.uuid4().hex}"
        bundle_dir = tmp_path / bundle_dir_name
        workbook_path = workbook_factory(subdir=bundle_dir_name)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                company_name=company_name,
                schema_version=schema_version,
                default_user_name=DEFAULT_USER_NAME,
                default_user_id=DEFAULT_USER_ID,
            )
            + extra,
            encoding="utf-8",
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
            company_name=company_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# Source workbooks
# ---------------------------------------------------------------------------


def build_source_workbook(
    *,
    stock_rows: Iterable[Sequence[Any]] = (),
    schedule_rows: Iterable[Sequence[Any]] = (),
    stock_preamble: Iterable[Sequence[Any]] = (("ESTOQUE GERAL - RELATÓRIO DIÁRIO",), ()),
    schedule_preamble: Iterable[Sequence[Any]] = (("PROGRAMAÇÃO DE CHEGADAS",),),
    stock_title: Optional[str] = "ESTOQUE GERAL",
    schedule_title: Optional[str] = "PROGRAMAÇÃO 2024",
    stock_header: Optional[Sequence[Any]] = STOCK_HEADER,
    schedule_header: Optional[Sequence[Any]] = SCHEDULE_HEADER,
    epoch: Any = None,
) -> bytes:
    """Write a third-party style source workbook and return its bytes.

    A ``None`` title omits that sheet; a ``None`` header omits the header row.
    """

    workbook = openpyxl.Workbook()
    workbook.remove(workbook.active)
    if epoch is not None:
        workbook.epoch = epoch

    for title, preamble, header, rows in (
        (stock_title, stock_preamble, stock_header, stock_rows),
        (schedule_title, schedule_preamble, schedule_header, schedule_rows),
    ):
        if title is None:
            continue
        sheet = workbook.create_sheet(title=title)
        for row in preamble:
            sheet.append(list(row))
        if header is not None:
            sheet.append(list(header))
        for row in rows:
            sheet.append(list(row))

    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def stock_row(sequence: Any, **overrides: Any) -> List[Any]:
    """Build a 19-cell stock row with plausible defaults."""

    values: Dict[str, Any] = {
        "invoice": f"NF{sequence}",
        "invoice_date": "10/01/2024",
        "code": "C-01",
        "model": "TRUCK 24.280",
        "model_year": "23/24",
        "color": "BRANCO",
        "chassis": f"9BW{sequence:0>6}" if sequence is not None else None,
        "arrival_date": None,
        "reference_date": None,
        "status": "LIVRE",
        "days_in_stock": 0,
        "days_in_yard": 0,
        "customer": None,
        "location": None,
        "note": None,
        "implement": None,
        "tires": None,
        "deflector": None,
    }
    values.update(overrides)
    return [sequence, *values.values()]


@pytest.fixture
def source_workbook_factory() -> Callable[..., bytes]:
    """Return the source workbook builder."""

    return build_source_workbook


@pytest.fixture
def stock_row_factory() -> Callable[..., List[Any]]:
    """Return the stock row builder."""

    return stock_row


# ---------------------------------------------------------------------------
# In-memory storage
# ---------------------------------------------------------------------------


class InMemoryStore:
    """Dictionary-backed storage port for component tests.

    ``failing_sequence_numbers`` makes writes of those stock items raise, so
    per-record failure isolation can be observed. ``calls`` records the order
    of audit appends and vehicle updates.
    """

    def __init__(self, *, failing_sequence_numbers: Iterable[int] = ()) -> None:
        self.vehicles: Dict[int, data_manager.StockItem] = {}
        self.schedule: List[data_manager.ScheduleItem] = []
        self.audit: List[data_manager.AuditEntry] = []
        self.failing = set(failing_sequence_numbers)
        self.calls: List[str] = []
        self._vehicle_ids = 0
        self._schedule_ids = 0
        self._audit_ids = 0

    def _check(self, item: data_manager.StockItem) -> None:
        data_manager.validate_stock_item(item)
        if item.sequence_number in self.failing:
            raise RuntimeError("storage unavailable")

    def get_stock_item(self, item_id: int) -> Optional[data_manager.StockItem]:
        return self.vehicles.get(item_id)

    def list_stock_items(self) -> List[data_manager.StockItem]:
        return list(self.vehicles.values())

    def insert_stock_item(self, item: data_manager.StockItem) -> data_manager.StockItem:
        self._check(item)
        self._vehicle_ids += 1
        now = data_manager.utc_timestamp()
        stored = replace(item, id=self._vehicle_ids, created_at=now, updated_at=now)
        self.vehicles[stored.id] = stored
        return stored

    def upsert_stock_item(self, item: data_manager.StockItem) -> bool:
        self._check(item)
        for stored in self.vehicles.values():
            if stored.sequence_number == item.sequence_number:
                self.vehicles[stored.id] = replace(stored, updated_at=data_manager.utc_timestamp())
                return False
        self.insert_stock_item(item)
        return True

    def update_stock_item(self, item_id: int, changes: Mapping[str, Any]) -> None:
        self.calls.append("update")
        if item_id not in self.vehicles:
            raise KeyError(f"Vehicle not found: {item_id}")
        unknown = set(changes) - set(data_manager.EDITABLE_VEHICLE_FIELDS)
        if unknown:
            raise KeyError(f"Unknown vehicle field: {sorted(unknown)[0]}")
        self.vehicles[item_id] = replace(self.vehicles[item_id], **changes, updated_at=data_manager.utc_timestamp())

    def delete_stock_item(self, item_id: int) -> None:
        if item_id not in self.vehicles:
            raise KeyError(f"Vehicle not found: {item_id}")
        del self.vehicles[item_id]

    def clear_stock_items(self) -> int:
        removed = len(self.vehicles)
        self.vehicles.clear()
        return removed

    def list_schedule_items(self) -> List[data_manager.ScheduleItem]:
        return list(self.schedule)

    def insert_schedule_item(self, item: data_manager.ScheduleItem) -> data_manager.ScheduleItem:
        data_manager.validate_schedule_item(item)
        self._schedule_ids += 1
        now = data_manager.utc_timestamp()
        stored = replace(item, id=self._schedule_ids, created_at=now, updated_at=now)
        self.schedule.append(stored)
        return stored

    def clear_schedule_items(self) -> int:
        removed = len(self.schedule)
        self.schedule.clear()
        return removed

    def append_audit_entry(self, entry: data_manager.AuditEntry) -> data_manager.AuditEntry:
        self.calls.append("audit")
        self._audit_ids += 1
        stored = replace(entry, id=self._audit_ids, created_at=entry.created_at or data_manager.utc_timestamp())
        self.audit.append(stored)
        return stored

    def list_audit_entries(self, vehicle_id: int) -> List[data_manager.AuditEntry]:
        entries = [entry for entry in self.audit if entry.vehicle_id == vehicle_id]
        entries.sort(key=lambda entry: (entry.created_at or "", entry.id or 0), reverse=True)
        return entries


@pytest.fixture
def memory_store() -> InMemoryStore:
    """Return an empty in-memory storage port."""

    return InMemoryStore()


@pytest.fixture
def store_factory() -> Callable[..., InMemoryStore]:
    """Return a constructor for in-memory stores with custom failure settings."""

    return InMemoryStore


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="fleet-cli", description="Fleet CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]


# ---------------------------------------------------------------------------
# Core logic fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "fleet_master.xlsx",
        company_name="Test Yard",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        default_user_name=DEFAULT_USER_NAME,
        default_user_id=DEFAULT_USER_ID,
    )


@pytest.fixture
def context(settings: data_manager.ConfigSettings, memory_store: InMemoryStore) -> core_logic.RuntimeContext:
    """Assemble a runtime context over the in-memory store and a mock workbook."""

    return core_logic.RuntimeContext(settings=settings, workbook=Mock(name="workbook"), store=memory_store)
