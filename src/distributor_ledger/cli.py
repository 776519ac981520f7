"""Command-line entry points for the distributor ledger.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the command objects consumed by the business
layer, and rendering report rows. Write commands commit a new snapshot and
persist the workbook; read commands print a table and can export it as CSV.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, export, log, reports
from .constants import LifecycleState, MOVE_TARGETS, ReportView


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    mutates: bool = True


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="ledger-cli",
        description="Command-line tools for the distributor ledger workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (searched upward from the current directory by default).",
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
    """Declare mutating CLI commands such as purchases and lot moves."""
    specs = {
        "add-product": register_add_product_command(),
        "update-price": register_update_price_command(),
        "restock": register_restock_command(),
        "set-active": register_set_active_command(),
        "purchase": register_purchase_command(),
        "move": register_move_command(),
        "update-account": register_update_account_command(),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports and invoices."""
    specs = {
        "catalog": _read_spec("catalog", "List catalog products.", _add_catalog_arguments, run_catalog),
        "inventory": _read_spec("inventory", "List inventory lots.", _add_inventory_arguments, run_inventory),
        "summary": _read_spec("summary", "Display the lifecycle summary.", None, run_summary),
        "history": _read_spec("history", "Display activity bucketed by date.", None, run_history),
        "report": _read_spec("report", "Display a date-range report.", _add_report_arguments, run_report),
        "invoice": _read_spec("invoice", "Display the line items of a purchase.", _add_invoice_arguments, run_invoice),
        "notifications": _read_spec(
            "notifications", "List notifications, newest first.", _add_notifications_arguments, run_notifications
        ),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_add_product_command() -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Add a product to the catalog."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", default=None, help="Defaults to a generated identifier.")
        parser.add_argument("--product-name", required=True)
        parser.add_argument("--category", default="")
        parser.add_argument("--distributor-price", required=True)
        parser.add_argument("--retail-price", required=True)
        parser.add_argument("--stock", required=True, type=int, help="Initial stock pool quantity.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product)


def register_update_price_command() -> CommandSpec:
    """Register the parser and executor for ``update-price``."""
    name = "update-price"
    help_text = "Change the distributor and/or retail price of a product."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--distributor-price", default=None)
        parser.add_argument("--retail-price", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_update_price)


def register_restock_command() -> CommandSpec:
    """Register the parser and executor for ``restock``."""
    name = "restock"
    help_text = "Add units to a product's stock pool."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--quantity", required=True, type=int)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_restock)


def register_set_active_command() -> CommandSpec:
    """Register the parser and executor for ``set-active``."""
    name = "set-active"
    help_text = "Activate or deactivate a product."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--inactive", action="store_true", help="Deactivate instead of activating.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_set_active)


def register_purchase_command() -> CommandSpec:
    """Register the parser and executor for ``purchase``."""
    name = "purchase"
    help_text = "Buy units from the stock pool into held inventory."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            required=True,
            metavar="PRODUCT_ID:QUANTITY",
            help="Line item; repeat for several products.",
        )
        parser.add_argument("--actor-id", default=None, help="Defaults to [Defaults] ActorID.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_purchase)


def register_move_command() -> CommandSpec:
    """Register the parser and executor for ``move``."""
    name = "move"
    help_text = "Move units of a held lot to personal use or sold."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--lot-id", required=True)
        parser.add_argument(
            "--to",
            dest="target_state",
            choices=[state.value for state in MOVE_TARGETS],
            required=True,
        )
        parser.add_argument("--quantity", required=True, type=int)
        parser.add_argument("--note", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_move)


def register_update_account_command() -> CommandSpec:
    """Register the parser and executor for ``update-account``."""
    name = "update-account"
    help_text = "Change invested capital and/or the sales target."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--capital-invested", default=None)
        parser.add_argument("--sales-target", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_update_account)


def _read_spec(
    name: str,
    help_text: str,
    add_arguments: Optional[Callable[[argparse.ArgumentParser], None]],
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
) -> CommandSpec:
    """Build a read-only command spec; every read command accepts ``--export``."""

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        if add_arguments is not None:
            add_arguments(parser)
        parser.add_argument("--export", type=Path, default=None, metavar="PATH", help="Also write the rows as CSV.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute, mutates=False)


def _add_catalog_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--all", dest="include_inactive", action="store_true", help="Include inactive products.")


def _add_inventory_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--state", choices=[state.value for state in LifecycleState], default=None)


def _add_report_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--start", required=True, type=date.fromisoformat, help="First day, YYYY-MM-DD.")
    parser.add_argument("--end", required=True, type=date.fromisoformat, help="Last day, YYYY-MM-DD.")
    parser.add_argument("--view", choices=[view.value for view in ReportView], default=ReportView.SOLD.value)


def _add_invoice_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--transaction-id", required=True)


def _add_notifications_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--limit", type=non_negative_int, default=None, help="Show at most this many.")


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations and check the schema."""
    context = core_logic.load_runtime_context(Path(config_path) if config_path is not None else None)
    core_logic.ensure_schema_version(context)
    return context


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


def _optional_decimal(raw: Optional[str]) -> Optional[Decimal]:
    return Decimal(raw) if raw is not None else None


def non_negative_int(raw: str) -> int:
    """argparse type accepting whole numbers of zero or more."""
    try:
        value = int(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected a whole number, got '{raw}'") from exc
    if value < 0:
        raise argparse.ArgumentTypeError(f"must be zero or more, got {value}")
    return value


def parse_purchase_line(raw: str) -> core_logic.PurchaseLine:
    """Parse ``PRODUCT_ID:QUANTITY`` into a purchase line.

    Raises:
        ValueError: If the separator or the product id is missing.
        InvalidQuantity: If the quantity is not a whole number.
    """
    product_id, separator, quantity = raw.rpartition(":")
    if not separator or not product_id:
        raise ValueError(f"Expected PRODUCT_ID:QUANTITY, got '{raw}'")
    try:
        parsed_quantity = int(quantity)
    except ValueError as exc:
        raise core_logic.InvalidQuantity(f"Quantity must be a whole number, got '{quantity}'") from exc
    return core_logic.PurchaseLine(product_id=product_id.strip(), quantity=parsed_quantity)


def translate_add_product(args: argparse.Namespace) -> core_logic.AddProductCommand:
    """Translate CLI args into an add-product command object."""
    return core_logic.AddProductCommand(
        product_id=args.product_id,
        product_name=args.product_name,
        category=args.category,
        distributor_price=Decimal(args.distributor_price),
        retail_price=Decimal(args.retail_price),
        stock_quantity=args.stock,
    )


def translate_update_price(args: argparse.Namespace) -> core_logic.PriceUpdateCommand:
    return core_logic.PriceUpdateCommand(
        product_id=args.product_id,
        distributor_price=_optional_decimal(args.distributor_price),
        retail_price=_optional_decimal(args.retail_price),
    )


def translate_restock(args: argparse.Namespace) -> core_logic.RestockCommand:
    return core_logic.RestockCommand(product_id=args.product_id, quantity=args.quantity)


def translate_set_active(args: argparse.Namespace) -> core_logic.ProductStatusCommand:
    return core_logic.ProductStatusCommand(
        product_id=args.product_id,
        is_active=not getattr(args, "inactive", False),
    )


def translate_purchase(args: argparse.Namespace, default_actor_id: str) -> core_logic.PurchaseCommand:
    """Translate CLI args into a purchase command object."""
    return core_logic.PurchaseCommand(
        actor_id=args.actor_id or default_actor_id,
        items=tuple(parse_purchase_line(raw) for raw in args.items),
    )


def translate_move(args: argparse.Namespace) -> core_logic.MoveCommand:
    """Translate CLI args into a lot move command object."""
    return core_logic.MoveCommand(
        lot_id=args.lot_id,
        target_state=LifecycleState(args.target_state),
        quantity=args.quantity,
        note=args.note,
    )


def translate_update_account(args: argparse.Namespace) -> core_logic.AccountUpdateCommand:
    return core_logic.AccountUpdateCommand(
        capital_invested=_optional_decimal(args.capital_invested),
        sales_target=_optional_decimal(args.sales_target),
    )


def _announce(notifications: Iterable[Any]) -> None:
    for notification in notifications:
        print(notification.message)


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow in the BLL."""
    result = core_logic.record_new_product(context, translate_add_product(args))
    _announce(result.notifications)
    return 0


def run_update_price(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    result = core_logic.record_price_update(context, translate_update_price(args))
    _announce(result.notifications)
    return 0


def run_restock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    result = core_logic.record_restock(context, translate_restock(args))
    _announce(result.notifications)
    return 0


def run_set_active(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    result = core_logic.record_product_status(context, translate_set_active(args))
    _announce(result.notifications)
    return 0


def run_purchase(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the purchase workflow via the BLL."""
    command = translate_purchase(args, context.settings.default_actor_id)
    result = core_logic.record_purchase(context, command)
    _announce(result.notifications)
    for lot in result.lots:
        print(f"Held lot {lot.lot_id}: {lot.quantity} x {lot.product_id}")
    return 0


def run_move(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the lot move workflow via the BLL."""
    result = core_logic.record_move(context, translate_move(args))
    _announce(result.notifications)
    return 0


def run_update_account(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    result = core_logic.record_account_update(context, translate_update_account(args))
    _announce(result.notifications)
    return 0


def render_table(rows: Sequence[Mapping[str, Any]]) -> str:
    """Render rows as a left-aligned plain-text table."""
    if not rows:
        return "(no rows)"
    headers = list(rows[0].keys())
    cells: List[List[str]] = [
        ["" if row.get(header) is None else str(row.get(header)) for header in headers] for row in rows
    ]
    widths = [max(len(header), *(len(line[index]) for line in cells)) for index, header in enumerate(headers)]
    lines = ["  ".join(header.ljust(width) for header, width in zip(headers, widths))]
    lines.append("  ".join("-" * width for width in widths))
    lines.extend("  ".join(value.ljust(width) for value, width in zip(line, widths)) for line in cells)
    return "\n".join(lines)


def emit_rows(rows: Sequence[Mapping[str, Any]], args: argparse.Namespace) -> int:
    """Print ``rows`` and export them when ``--export`` was given."""
    print(render_table(rows))
    destination = getattr(args, "export", None)
    if destination is not None:
        written = export.write_csv(rows, destination)
        if written is None:
            log.warning("No rows to export; '%s' was not written", destination)
    return 0


def run_catalog(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    products = core_logic.list_products(context.snapshot, include_inactive=args.include_inactive)
    rows = [
        {
            "ID": product.product_id,
            "Product": product.product_name,
            "Category": product.category,
            "Dist. Price": product.distributor_price,
            "Ret. Price": product.retail_price,
            "Stock": product.stock_quantity,
            "Active": "yes" if product.is_active else "no",
        }
        for product in products
    ]
    return emit_rows(rows, args)


def run_inventory(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    state = LifecycleState(args.state) if args.state else None
    return emit_rows(reports.inventory_rows(context.snapshot, state), args)


def run_summary(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    summary = reports.lifecycle_summary(context.snapshot)
    return emit_rows(reports.summary_rows(summary), args)


def run_history(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    return emit_rows(reports.history_rows(context.snapshot), args)


def run_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the date-range report and print its totals after the rows."""
    report = reports.period_report(context.snapshot, args.start, args.end)
    exit_code = emit_rows(reports.period_rows(report, ReportView(args.view)), args)
    print(
        f"Profit: {report.total_profit} | Personal loss: {report.total_personal_loss} | "
        f"Net: {report.net_profit} | Revenue: {report.revenue} | Spent: {report.range_spent}"
    )
    return exit_code


def run_invoice(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    return emit_rows(reports.invoice_rows(context.snapshot, args.transaction_id), args)


def run_notifications(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    rows = [
        {
            "Time": notification.timestamp.isoformat(timespec="seconds"),
            "Kind": notification.kind,
            "Message": notification.message,
        }
        for notification in core_logic.list_notifications(context.snapshot, limit=args.limit)
    ]
    return emit_rows(rows, args)


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
        if exit_code == 0 and command_table[args.command].mutates:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
