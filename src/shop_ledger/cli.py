"""Command-line front-end for the shop ledger.

This module only wires argparse and turns parsed arguments into the command
objects consumed by :mod:`shop_ledger.core_logic`. Ledger rules live in the
core; this layer prints results and maps failures to exit codes.
"""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, log, reporting
from .constants import ItemField, Pool


EXIT_RULE_VIOLATION = 2
EXIT_MISSING_FILE = 3
EXIT_REPORT_FAILED = 4


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    mutates: bool = False


def parse_pool(text: str) -> Pool:
    """argparse ``type`` accepting ``mrp``/``bar`` in any case."""
    for pool in Pool:
        if text.strip().lower() == pool.value.lower():
            return pool
    raise argparse.ArgumentTypeError(f"unknown pool '{text}' (choose MRP or Bar)")


def parse_field(text: str) -> ItemField:
    """argparse ``type`` accepting ``unit-price`` as well as ``unit_price``."""
    try:
        return ItemField(text.strip().lower().replace("-", "_"))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(
            f"unknown field '{text}' (choose opening, unit-price or inward)"
        ) from exc


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="shop-ledger",
        description="Stock and daily sales ledger for the MRP and Bar counters.",
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
    """Declare commands that change the ledger."""
    specs = {
        "add-item": register_add_item_command(subparsers),
        "set": register_set_command(subparsers),
        "sale": register_sale_command(subparsers),
        "transfer": register_transfer_command(subparsers),
        "remove-entry": register_remove_entry_command(subparsers),
        "delete-day": register_delete_day_command(subparsers),
        "reset": register_reset_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only commands such as reports."""
    specs = {
        "stock": register_stock_command(subparsers),
        "summary": register_summary_command(subparsers),
        "export": register_export_command(subparsers),
        "send-report": register_send_report_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_add_item_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-item``."""
    name = "add-item"
    help_text = "Add a product to a pool (no-op if it already exists)."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--pool", type=parse_pool, required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--price", default="0")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_item, mutates=True)


def register_set_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``set``."""
    name = "set"
    help_text = "Set the opening stock, unit price or inward quantity of an item."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--pool", type=parse_pool, required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--field", type=parse_field, required=True)
        parser.add_argument("--value", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_set, mutates=True)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Record a sale from one pool."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--pool", type=parse_pool, required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--quantity", required=True)
        parser.add_argument("--price", default=None, help="Override the item's unit price.")
        parser.add_argument("--date", default=None, help="Sale date (YYYY-MM-DD), defaults to today.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale, mutates=True)


def register_transfer_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``transfer``."""
    name = "transfer"
    help_text = "Move stock from one pool to the other."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--from", dest="from_pool", type=parse_pool, default=Pool.MRP)
        parser.add_argument("--to", dest="to_pool", type=parse_pool, default=None, help="Defaults to the other pool.")
        parser.add_argument("--name", required=True)
        parser.add_argument("--quantity", required=True)
        parser.add_argument("--date", default=None, help="Transfer date (YYYY-MM-DD), defaults to today.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_transfer, mutates=True)


def register_remove_entry_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``remove-entry``."""
    name = "remove-entry"
    help_text = "Remove one entry from a day's sales log."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--date", required=True)
        parser.add_argument("--index", type=int, required=True, help="Zero-based position in the day's log.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_remove_entry, mutates=True)


def register_delete_day_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-day``."""
    name = "delete-day"
    help_text = "Delete every entry logged for a day."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--date", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_day, mutates=True)


def register_reset_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``reset``."""
    name = "reset"
    help_text = "Reset both pools to the default product list and clear all sales."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--yes", action="store_true", help="Confirm the reset.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_reset, mutates=True)


def register_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stock``."""
    name = "stock"
    help_text = "Display stock and closing balances."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--pool", type=parse_pool, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stock_report)


def register_summary_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``summary``."""
    name = "summary"
    help_text = "Display daily sales summaries."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--date", default=None, help="Show one day in detail instead of every day.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_summary_report)


def register_export_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``export``."""
    name = "export"
    help_text = "Write the ledger snapshot as JSON."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--output", type=Path, default=None, help="Destination file (stdout when omitted).")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_export)


def register_send_report_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``send-report``."""
    name = "send-report"
    help_text = "E-mail the daily sales report."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--date", default=None, help="Report date (YYYY-MM-DD), defaults to today.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_send_report)


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


def translate_set(args: argparse.Namespace) -> core_logic.AdjustCommand:
    """Translate CLI args into an adjust command object."""
    return core_logic.AdjustCommand(
        pool=args.pool,
        product_name=args.name,
        field=args.field,
        value=args.value,
    )


def translate_sale(args: argparse.Namespace) -> core_logic.SaleCommand:
    """Translate CLI args into a sale command object."""
    return core_logic.SaleCommand(
        pool=args.pool,
        product_name=args.name,
        quantity=args.quantity,
        price_override=args.price,
        sale_date=args.date,
    )


def translate_transfer(args: argparse.Namespace) -> core_logic.TransferCommand:
    """Translate CLI args into a transfer command object."""
    return core_logic.TransferCommand(
        from_pool=args.from_pool,
        to_pool=args.to_pool or args.from_pool.other,
        product_name=args.name,
        quantity=args.quantity,
        transfer_date=args.date,
    )


def format_stock_lines(items: Iterable[core_logic.ItemRow], pool: Pool) -> list[str]:
    lines = [f"[{pool.value}]", f"{'Product':<24}{'Open':>6}{'In':>6}{'Out':>6}{'Sold':>6}{'Close':>7}{'Price':>10}"]
    for item in items:
        lines.append(
            f"{item.name:<24}{item.opening:>6}{item.inward:>6}{item.transferred_out:>6}"
            f"{item.sold:>6}{item.closing:>7}{item.unit_price:>10}"
        )
    return lines


def format_day_lines(date_iso: str, summary: core_logic.DailySummary) -> list[str]:
    lines = [f"Sales for {date_iso}"]
    for name, row in summary.per_product.items():
        lines.append(
            f"  {name:<24} MRP sold {row.mrp_sold:>4}  transferred {row.mrp_transferred:>4}"
            f"  Bar sold {row.bar_sold:>4}  transferred {row.bar_transferred:>4}  revenue {row.revenue}"
        )
    lines.append(f"  Total revenue: {summary.total_revenue}")
    return lines


def run_add_item(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Create an item if it does not exist yet."""
    item = core_logic.ensure_item(context.store, args.pool, args.name, unit_price=args.price)
    print(f"{args.pool.value} item '{item.name}' ready (price {item.unit_price}).")
    return 0


def run_set(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Apply a field edit via the core."""
    item = core_logic.adjust_field(context.store, translate_set(args))
    print(f"{item.name}: closing balance {item.closing}.")
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Record a sale via the core."""
    event = core_logic.record_sale(context.store, translate_sale(args))
    print(f"Sold {event.quantity} x {event.product_name} at {event.unit_price} ({event.pool.value}).")
    return 0


def run_transfer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Record a transfer via the core."""
    command = translate_transfer(args)
    event = core_logic.transfer(context.store, command)
    print(f"Transferred {event.quantity} x {event.product_name} from {command.from_pool.value} to {command.to_pool.value}.")
    return 0


def run_remove_entry(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Drop a single sales log entry."""
    removed = core_logic.remove_sale_entry(context.store, args.date, args.index)
    print(f"Removed {removed.quantity} x {removed.product_name} from {args.date}.")
    return 0


def run_delete_day(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Drop a whole day's sales log."""
    removed = core_logic.delete_day(context.store, args.date)
    print(f"Deleted {len(removed)} entries for {args.date}.")
    return 0


def run_reset(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Reset the ledger once the user has confirmed."""
    if not args.yes:
        raise core_logic.BusinessRuleViolation("Refusing to reset without --yes")
    core_logic.reset_store(context.store)
    print("Ledger reset to the default product list.")
    return 0


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print stock levels for one or both pools."""
    pools = [args.pool] if args.pool is not None else list(Pool)
    for pool in pools:
        print("\n".join(format_stock_lines(core_logic.list_items(context.store, pool), pool)))
    return 0


def run_summary_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print one day in detail, or a dashboard line per day."""
    policy = context.settings.transfer_revenue_policy
    if args.date is not None:
        date_iso = core_logic.resolve_date(args.date)
        events = core_logic.list_sales(context.store, date_iso)
        print("\n".join(format_day_lines(date_iso, core_logic.summarize(events, policy))))
        return 0
    summaries = core_logic.summarize_all(context.store, policy)
    if not summaries:
        print("No sales recorded yet.")
        return 0
    for date_iso, summary in summaries.items():
        totals = summary.totals()
        print(
            f"{date_iso}  MRP sold {totals.mrp_sold}  MRP transfers {totals.mrp_transferred}"
            f"  MRP amount {totals.mrp_revenue}  Bar sold {totals.bar_sold}  Bar amount {totals.bar_revenue}"
        )
    return 0


def run_export(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Dump the snapshot payload as JSON."""
    text = json.dumps(core_logic.snapshot_payload(context.store), indent=2)
    if args.output is None:
        print(text)
    else:
        args.output.write_text(text, encoding="utf-8")
        log.info("Exported ledger snapshot to '%s'", args.output)
    return 0


def run_send_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """E-mail one day's report and relay the outcome."""
    date_iso = core_logic.resolve_date(args.date)
    events = core_logic.list_sales(context.store, date_iso)
    result = reporting.send_daily_report(
        context.settings.report, date_iso, events, shop_name=context.settings.shop_name
    )
    print(result.message)
    return 0 if result.success else EXIT_REPORT_FAILED


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return EXIT_RULE_VIOLATION
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return EXIT_MISSING_FILE
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
        core_logic.ensure_schema_version(context)
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and command_table[args.command].mutates:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
