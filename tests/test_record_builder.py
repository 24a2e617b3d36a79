"""Tests for turning source workbooks into candidate records."""

from __future__ import annotations

from datetime import datetime

import pytest
from openpyxl.utils.datetime import MAC_EPOCH

from fleet_erp import record_builder
from fleet_erp.constants import VehicleStatus
from fleet_erp.data_manager import ImportSettings, ScheduleItem, StockItem


# ---------------------------------------------------------------------------
# End-to-end parsing
# ---------------------------------------------------------------------------


def test_parse_workbook_builds_reserved_item_and_skips_noise(source_workbook_factory, stock_row_factory):
    """Blank and identifier-less rows should vanish without warnings."""

    content = source_workbook_factory(
        stock_rows=[
            stock_row_factory(
                1,
                invoice="NF100",
                invoice_date="2024-01-10",
                status="RESERVADO PARA CLIENTE",
                days_in_stock=45,
                days_in_yard=10,
                customer="ACME",
                location="YARD-A",
            ),
            [],
            stock_row_factory(None, invoice="NF999"),
        ]
    )

    preview = record_builder.parse_workbook(content)

    assert preview.warnings == []
    assert len(preview.stock_items) == 1
    item = preview.stock_items[0]
    assert isinstance(item, StockItem)
    assert item.sequence_number == 1
    assert item.invoice == "NF100"
    assert item.invoice_date == "2024-01-10"
    assert item.status is VehicleStatus.RESERVED
    assert item.days_in_stock == 45
    assert item.days_in_yard == 10
    assert item.customer == "ACME"
    assert item.location == "YARD-A"
    assert item.id is None


def test_rows_above_header_are_never_read(source_workbook_factory, stock_row_factory):
    """Preamble rows that look like data should be ignored."""

    content = source_workbook_factory(
        stock_preamble=[stock_row_factory(98), ("TOTAL", 2), (), stock_row_factory(99)],
        stock_rows=[stock_row_factory(1), ["   ", None], stock_row_factory(2)],
    )

    preview = record_builder.parse_workbook(content)

    assert [item.sequence_number for item in preview.stock_items] == [1, 2]


def test_missing_trailing_fields_become_none(source_workbook_factory):
    """A row with a valid identifier but short width should still be accepted."""

    content = source_workbook_factory(stock_rows=[[5, "NF5"]])

    preview = record_builder.parse_workbook(content)

    item = preview.stock_items[0]
    assert item.invoice == "NF5"
    assert item.model is None
    assert item.deflector is None
    assert item.status is VehicleStatus.FREE


def test_schedule_rows_require_order_reference(source_workbook_factory):
    """Schedule rows without an order reference should be dropped silently."""

    content = source_workbook_factory(
        schedule_rows=[
            ["P-001", "M1", "MARÇO", "TRUCK", "AZUL", "FILIAL 2"],
            [None, "M2", "ABRIL", "VAN", "PRETO", "MATRIZ"],
            [12345, None, None, "PICKUP"],
        ]
    )

    preview = record_builder.parse_workbook(content)

    assert preview.warnings == []
    assert [item.order_ref for item in preview.schedule_items] == ["P-001", "12345"]
    first = preview.schedule_items[0]
    assert isinstance(first, ScheduleItem)
    assert first.expected_month == "MARÇO"
    assert first.location == "FILIAL 2"


def test_text_fields_are_truncated_to_storage_limits(source_workbook_factory, stock_row_factory):
    """Oversized text cells should be capped per field."""

    content = source_workbook_factory(stock_rows=[stock_row_factory(1, invoice="N" * 40, customer="C" * 300)])

    item = record_builder.parse_workbook(content).stock_items[0]

    assert len(item.invoice) == 32
    assert len(item.customer) == 256


# ---------------------------------------------------------------------------
# Date handling
# ---------------------------------------------------------------------------


def test_serial_and_formatted_dates_resolve_identically(source_workbook_factory, stock_row_factory):
    """Serial numbers, datetimes and day-first text should agree."""

    content = source_workbook_factory(
        stock_rows=[
            stock_row_factory(
                1,
                invoice_date=45301,
                arrival_date=datetime(2024, 1, 10),
                reference_date="10/01/2024",
            )
        ]
    )

    item = record_builder.parse_workbook(content).stock_items[0]

    assert item.invoice_date == item.arrival_date == item.reference_date == "2024-01-10"


def test_serial_dates_follow_the_workbook_epoch(source_workbook_factory, stock_row_factory):
    """Workbooks on the 1904 date system should decode serials accordingly."""

    content = source_workbook_factory(stock_rows=[stock_row_factory(1, invoice_date=45301)], epoch=MAC_EPOCH)

    item = record_builder.parse_workbook(content).stock_items[0]

    assert item.invoice_date == "2028-01-11"


# ---------------------------------------------------------------------------
# Structural warnings
# ---------------------------------------------------------------------------


def test_missing_stock_sheet_warns_and_keeps_schedule(source_workbook_factory):
    """The schedule sheet should be processed even when stock is missing."""

    content = source_workbook_factory(
        stock_title=None,
        schedule_rows=[["P-001", "M1", "MAIO", "TRUCK", "AZUL", "MATRIZ"]],
    )

    preview = record_builder.parse_workbook(content)

    assert preview.stock_items == []
    assert len(preview.schedule_items) == 1
    assert preview.warnings == ["Sheet matching 'ESTOQUE GERAL' not found"]


def test_missing_header_warns_for_that_sheet_only(source_workbook_factory, stock_row_factory):
    """A sheet without its marker should produce a warning and no records."""

    content = source_workbook_factory(
        stock_rows=[stock_row_factory(1)],
        schedule_header=None,
        schedule_rows=[["P-001", "M1", "MAIO"]],
    )

    preview = record_builder.parse_workbook(content)

    assert len(preview.stock_items) == 1
    assert preview.schedule_items == []
    assert preview.warnings == ["Header row with 'PEDIDO' not found in schedule sheet"]


def test_both_sheets_missing_yield_two_warnings(source_workbook_factory):
    """Each missing logical sheet should contribute its own warning."""

    content = source_workbook_factory(stock_title=None, schedule_title=None)

    preview = record_builder.parse_workbook(content)

    assert preview.stock_items == [] and preview.schedule_items == []
    assert len(preview.warnings) == 2


def test_configured_layouts_override_sheet_names_and_markers(source_workbook_factory, stock_row_factory):
    """ImportSettings should redirect sheet lookup and header discovery."""

    header = ["SEQ", "INVOICE", *["X"] * 17]
    content = source_workbook_factory(
        stock_title="Stock Overview",
        stock_header=header,
        stock_rows=[stock_row_factory(3)],
        schedule_title="Arrival Schedule",
        schedule_header=["ORDER", "MODEL"],
        schedule_rows=[["O-1", "M1"]],
    )
    settings = ImportSettings(
        stock_sheet="stock overview",
        stock_marker="INVOICE",
        schedule_sheet="schedule",
        schedule_marker="ORDER",
    )

    preview = record_builder.parse_workbook(content, settings)

    assert preview.warnings == []
    assert [item.sequence_number for item in preview.stock_items] == [3]
    assert [item.order_ref for item in preview.schedule_items] == ["O-1"]


# ---------------------------------------------------------------------------
# Input handling and preview helpers
# ---------------------------------------------------------------------------


def test_load_source_workbook_rejects_non_workbook_bytes():
    """Arbitrary bytes should raise WorkbookReadError."""

    with pytest.raises(record_builder.WorkbookReadError):
        record_builder.load_source_workbook(b"definitely not a spreadsheet")


def test_preview_sample_limits_each_record_set():
    """sample should return at most ``size`` records from each set."""

    preview = record_builder.ImportPreview(
        stock_items=[StockItem(sequence_number=n) for n in range(8)],
        schedule_items=[ScheduleItem(order_ref="P-1")],
    )

    stock, schedule = preview.sample()

    assert [item.sequence_number for item in stock] == [0, 1, 2, 3, 4]
    assert len(schedule) == 1


def test_stock_layout_covers_nineteen_contiguous_columns():
    """The stock layout should read offsets 0 to 18 in order."""

    assert [spec.offset for spec in record_builder.STOCK_COLUMNS] == list(range(19))
    assert [spec.offset for spec in record_builder.SCHEDULE_COLUMNS] == list(range(6))
