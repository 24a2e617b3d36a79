"""Command-line entry points for the fleet ERP toolkit.

The module only wires argparse and translates command-line arguments into
calls on :mod:`fleet_erp.core_logic`. Results of read commands are printed to
standard output; diagnostics go through the package logger.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, log
from .audit import describe_entry
from .constants import ImportMode, VehicleStatus
from .data_manager import StockItem


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


WRITE_COMMANDS = frozenset({"import", "edit", "note", "add-vehicle", "delete-vehicle"})


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="fleet-cli",
        description="Command-line tools for the Fleet ERP workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as imports and edits."""
    specs = {
        "import": register_import_command(subparsers),
        "edit": register_edit_command(subparsers),
        "note": register_note_command(subparsers),
        "add-vehicle": register_add_vehicle_command(subparsers),
        "delete-vehicle": register_delete_vehicle_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as previews and listings."""
    specs = {
        "preview": register_preview_command(subparsers),
        "vehicles": register_vehicles_command(subparsers),
        "history": register_history_command(subparsers),
        "schedule": register_schedule_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def parse_assignment(raw: str) -> tuple[str, str]:
    """argparse type for ``FIELD=VALUE`` pairs."""
    name, separator, value = raw.partition("=")
    if not separator or not name.strip():
        raise argparse.ArgumentTypeError(f"Expected FIELD=VALUE, got '{raw}'")
    return name.strip(), value


def _add_user_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--user", dest="user_name", default=None, help="Name recorded in the audit trail.")
    parser.add_argument("--user-id", dest="user_id", type=int, default=None)


def register_import_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``import``."""
    name = "import"
    help_text = "Import stock and schedule records from a source workbook."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("source", type=Path)
        parser.add_argument(
            "--mode",
            choices=[member.value for member in ImportMode],
            default=ImportMode.ADD.value,
            help="'replace' removes stored vehicles before importing.",
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_import)


def register_edit_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``edit``."""
    name = "edit"
    help_text = "Update fields of a vehicle and record the change history."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--vehicle-id", type=int, required=True)
        parser.add_argument(
            "--set",
            dest="assignments",
            metavar="FIELD=VALUE",
            type=parse_assignment,
            action="append",
            required=True,
        )
        parser.add_argument("--note", default=None)
        _add_user_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_edit)


def register_note_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``note``."""
    name = "note"
    help_text = "Append a free-text entry to a vehicle's history."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--vehicle-id", type=int, required=True)
        parser.add_argument("--text", required=True)
        _add_user_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_note)


def register_add_vehicle_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-vehicle``."""
    name = "add-vehicle"
    help_text = "Register a vehicle manually."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--sequence-number", required=True)
        parser.add_argument(
            "--set",
            dest="assignments",
            metavar="FIELD=VALUE",
            type=parse_assignment,
            action="append",
            default=[],
        )
        parser.add_argument("--note", default=None)
        _add_user_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_vehicle)


def register_delete_vehicle_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-vehicle``."""
    name = "delete-vehicle"
    help_text = "Remove a vehicle. Its history is kept."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--vehicle-id", type=int, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_vehicle)


def register_preview_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``preview``."""
    name = "preview"
    help_text = "Show what an import of a source workbook would contain."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("source", type=Path)
        parser.add_argument("--sample-size", type=int, default=5)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_preview)


def register_vehicles_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``vehicles``."""
    name = "vehicles"
    help_text = "List stored vehicles."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--status", choices=[member.value for member in VehicleStatus], default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_vehicles)


def register_history_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``history``."""
    name = "history"
    help_text = "Display the change history of a vehicle."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--vehicle-id", type=int, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_history)


def register_schedule_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``schedule``."""
    name = "schedule"
    help_text = "Display the arrival schedule grouped by month."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_schedule)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    return core_logic.load_runtime_context(target)


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def translate_assignments(args: argparse.Namespace) -> Dict[str, Any]:
    """Translate repeated ``--set`` pairs into a change mapping; later pairs win."""
    return dict(getattr(args, "assignments", None) or [])


def translate_add_vehicle(args: argparse.Namespace) -> Dict[str, Any]:
    """Translate CLI args into the field values of a new vehicle."""
    values = translate_assignments(args)
    values["sequence_number"] = args.sequence_number
    return values


def format_vehicle(vehicle: StockItem) -> str:
    """One-line summary of a vehicle for listings."""
    return " | ".join(
        str(part)
        for part in (
            vehicle.id,
            vehicle.sequence_number,
            vehicle.model or "-",
            vehicle.chassis or "-",
            vehicle.status.value,
            vehicle.customer or "-",
            vehicle.location or "-",
        )
    )


def run_import(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the parse-and-commit import workflow."""
    content = core_logic.read_source_file(args.source)
    preview = core_logic.preview_import(context, content)
    result = core_logic.commit_import(
        context,
        preview.stock_items,
        preview.schedule_items,
        mode=args.mode,
    )
    print(f"Stock: imported {result.stock.imported}, skipped {result.stock.skipped}")
    for message in result.stock.errors:
        print(f"  {message}")
    print(f"Schedule: imported {result.schedule.imported}")
    return 0


def run_edit(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the audited edit workflow via the BLL."""
    entries = core_logic.edit_vehicle(
        context,
        args.vehicle_id,
        translate_assignments(args),
        user_name=args.user_name,
        user_id=args.user_id,
        note=args.note,
    )
    print(f"Vehicle {args.vehicle_id} updated; {len(entries)} change(s) recorded")
    return 0


def run_note(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the manual history entry workflow."""
    core_logic.add_note(
        context,
        args.vehicle_id,
        args.text,
        user_name=args.user_name,
        user_id=args.user_id,
    )
    return 0


def run_add_vehicle(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the manual vehicle registration workflow."""
    vehicle = core_logic.create_vehicle(
        context,
        translate_add_vehicle(args),
        user_name=args.user_name,
        user_id=args.user_id,
        note=args.note,
    )
    print(f"Registered vehicle {vehicle.id}")
    return 0


def run_delete_vehicle(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the vehicle removal workflow."""
    core_logic.delete_vehicle(context, args.vehicle_id)
    return 0


def run_preview(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Parse a source workbook and print a summary without committing."""
    preview = core_logic.preview_import(context, core_logic.read_source_file(args.source))
    stock_sample, schedule_sample = preview.sample(args.sample_size)
    print(f"Stock records: {len(preview.stock_items)}")
    for item in stock_sample:
        print(f"  {item.sequence_number} | {item.model or '-'} | {item.chassis or '-'} | {item.status.value}")
    print(f"Schedule records: {len(preview.schedule_items)}")
    for item in schedule_sample:
        print(f"  {item.order_ref} | {item.expected_month or '-'} | {item.model or '-'}")
    for warning in preview.warnings:
        print(f"Warning: {warning}")
    return 0


def run_vehicles(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the vehicle listing workflow."""
    status = VehicleStatus(args.status) if args.status else None
    for vehicle in core_logic.list_vehicles(context, status=status):
        print(format_vehicle(vehicle))
    return 0


def run_history(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the history reporting workflow."""
    for entry in core_logic.list_history(context, args.vehicle_id):
        line = f"{entry.created_at} | {describe_entry(entry)}"
        if entry.field_name:
            line += f" | {entry.previous_value or '-'} -> {entry.new_value or '-'}"
        line += f" | {entry.user_name}"
        if entry.note:
            line += f" | {entry.note}"
        print(line)
    return 0


def run_schedule(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the arrival schedule reporting workflow."""
    groups = core_logic.group_schedule_by_month(core_logic.list_schedule(context))
    for month, items in groups:
        print(f"{month} ({len(items)})")
        for item in items:
            print(f"  {item.order_ref} | {item.model or '-'} | {item.color or '-'} | {item.location or '-'}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and args.command in WRITE_COMMANDS:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
