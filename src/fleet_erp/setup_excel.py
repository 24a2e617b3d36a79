"""Bootstrap the fleet ERP master workbook.

Usable as the ``fleet-setup`` console script and as a library for tests. The
workbook gets one sheet per record type with the headers defined in
:data:`fleet_erp.data_manager.SHEET_COLUMNS`; all sheets start empty.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Sequence
import sys

import openpyxl
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter

from . import data_manager, log

CONFIG_FILE = data_manager.CONFIG_FILE_NAME
MIN_COLUMN_WIDTH = 12


@dataclass(frozen=True)
class SetupSettings:
    """The configuration values the bootstrap needs."""

    data_file: Path
    company_name: Optional[str] = None


def load_settings(config_path: Path) -> SetupSettings:
    """Read ``[System]`` from ``config.ini``.

    Only ``DataFile`` is mandatory here; relative paths resolve against the
    config file's directory.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
        KeyError: If ``[System] DataFile`` is missing.
    """

    parser = data_manager.read_config(config_path)
    if not parser.has_option("System", "DataFile"):
        raise KeyError("Missing required configuration entry: [System] DataFile")

    data_file_path = Path(parser.get("System", "DataFile"))
    if not data_file_path.is_absolute():
        data_file_path = (config_path.expanduser().resolve().parent / data_file_path).resolve()

    return SetupSettings(
        data_file=data_file_path,
        company_name=parser.get("System", "CompanyName", fallback=None),
    )


def create_master_workbook(
    destination: Path,
    *,
    sheet_columns: Mapping[str, Sequence[str]] = data_manager.SHEET_COLUMNS,
    company_name: Optional[str] = None,
    overwrite: bool = False,
) -> Path:
    """Create an empty master workbook at ``destination``.

    Raises:
        FileExistsError: If the target exists and ``overwrite`` is ``False``.
    """

    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing master workbook: {destination}")

    workbook = openpyxl.Workbook()
    workbook.remove(workbook.active)
    if company_name:
        workbook.properties.creator = company_name

    bold_font = Font(bold=True)
    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index, value=column_name)
            cell.font = bold_font
            worksheet.column_dimensions[get_column_letter(column_index)].width = max(
                MIN_COLUMN_WIDTH, len(column_name) + 2
            )
        worksheet.freeze_panes = "A2"

    data_manager.save_workbook(workbook, destination)
    log.info("Created master workbook at '%s'", destination)
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the workbook named by ``config.ini``."""

    settings = load_settings(config_path)
    return create_master_workbook(
        settings.data_file,
        company_name=settings.company_name,
        overwrite=overwrite,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(prog="fleet-setup", description="Initialize the Fleet ERP master workbook")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for ``fleet-setup``."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force)
    except (FileNotFoundError, KeyError) as exc:
        print(f"[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except OSError as exc:
        print(f"[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"[SUCCESS] Created master workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
