"""Command-line entry points for VinStock.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the command objects consumed by the business
layer, and printing the read-side reports. Keeping the CLI thin ensures the
same parser configuration can be reused by tests, scripts, or any alternative
front-end that wants to expose the package capabilities.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import alerts, analytics, core_logic, log
from .constants import RuleOperator, TransactionType, UserRole, WineType
from .models import Transaction, Wine


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


WINE_TYPE_CHOICES = [member.value for member in WineType]
FLOW_TYPE_CHOICES = [member.value for member in TransactionType]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="vinstock-cli",
        description="Command-line tools for the VinStock wine cellar workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    parser.add_argument(
        "--role",
        choices=[member.value for member in UserRole],
        default=None,
        help="Session role for this invocation (defaults to the configured role).",
    )
    parser.add_argument(
        "--user",
        dest="user_name",
        default=None,
        help="Session user name (defaults to the role's user name).",
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
    """Declare mutating CLI commands such as sales and adjustments."""
    specs = {
        "add-wine": register_add_wine_command(subparsers),
        "edit-wine": register_edit_wine_command(subparsers),
        "delete-wine": register_delete_wine_command(subparsers),
        "set-thresholds": register_set_thresholds_command(subparsers),
        "adjust": register_adjust_command(subparsers),
        "sale": register_sale_command(subparsers),
        "delete-sale": register_delete_sale_command(subparsers),
        "add-rule": register_add_rule_command(subparsers),
        "delete-rule": register_delete_rule_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    specs = {
        "stock": register_stock_command(subparsers),
        "alerts": register_alerts_command(subparsers),
        "rules": register_rules_command(subparsers),
        "dashboard": register_dashboard_command(subparsers),
        "rotation": register_rotation_command(subparsers),
        "log": register_log_command(subparsers),
        "export": register_export_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _add_wine_arguments(parser: argparse.ArgumentParser, *, required: bool) -> None:
    parser.add_argument("--name", required=required)
    parser.add_argument("--type", dest="wine_type", choices=WINE_TYPE_CHOICES, required=required)
    parser.add_argument("--appellation", required=required)
    parser.add_argument("--producer", required=required)
    parser.add_argument("--quantity", type=int, default=None)
    parser.add_argument("--sell-price", type=int, default=None)
    parser.add_argument("--min-stock", type=int, default=None)
    parser.add_argument("--max-stock", type=int, default=None)
    parser.add_argument("--vintage", default=None)
    parser.add_argument("--region", default=None)
    parser.add_argument("--supplier", default=None)
    parser.add_argument("--location", default=None)


def register_add_wine_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-wine``."""
    name = "add-wine"
    help_text = "Register a new wine reference in the catalog."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_wine_arguments(parser, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_wine)


def register_edit_wine_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``edit-wine``."""
    name = "edit-wine"
    help_text = "Edit a wine reference; quantity changes are not logged."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--wine-id", required=True)
        _add_wine_arguments(parser, required=False)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_edit_wine)


def register_delete_wine_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-wine``."""
    name = "delete-wine"
    help_text = "Delete a wine reference (Administrateur only)."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--wine-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_wine)


def register_set_thresholds_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``set-thresholds``."""
    name = "set-thresholds"
    help_text = "Change the minimum and/or maximum stock of a wine."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--wine-id", required=True)
        parser.add_argument("--min-stock", type=int, default=None)
        parser.add_argument("--max-stock", type=int, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_set_thresholds)


def register_adjust_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``adjust``."""
    name = "adjust"
    help_text = "Apply a signed stock adjustment and log it."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--wine-id", required=True)
        parser.add_argument("--amount", type=int, required=True, help="Signed bottle count, e.g. -1 or 6.")
        parser.add_argument("--type", dest="flow_type", choices=FLOW_TYPE_CHOICES, default=TransactionType.VENTE.value)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_adjust)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Record a sale, loss, breakage or expiry."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--wine-id", required=True)
        parser.add_argument("--quantity", type=int, required=True)
        parser.add_argument("--price", type=int, default=None, help="Unit price (defaults to the wine's sell price).")
        parser.add_argument("--client", default=None)
        parser.add_argument("--date", type=date.fromisoformat, default=None, help="Transaction date (YYYY-MM-DD).")
        parser.add_argument("--type", dest="flow_type", choices=FLOW_TYPE_CHOICES, default=TransactionType.VENTE.value)
        parser.add_argument("--seller", dest="seller_name", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale)


def register_delete_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-sale``."""
    name = "delete-sale"
    help_text = "Delete a ledger entry without restoring stock (Administrateur only)."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--transaction-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_sale)


def register_add_rule_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-rule``."""
    name = "add-rule"
    help_text = "Create a custom alert rule."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--field", choices=[member.value for member in alerts.RuleField], required=True)
        parser.add_argument("--operator", choices=[member.value for member in RuleOperator], required=True)
        parser.add_argument("--value", required=True)
        parser.add_argument("--message", required=True)
        parser.add_argument("--color", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_rule)


def register_delete_rule_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-rule``."""
    name = "delete-rule"
    help_text = "Delete a custom alert rule."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--rule-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_rule)


def register_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stock``."""
    name = "stock"
    help_text = "List wines, optionally filtered by text and type."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--search", default="")
        parser.add_argument("--type", dest="wine_type", choices=WINE_TYPE_CHOICES, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stock_report)


def register_alerts_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``alerts``."""
    name = "alerts"
    help_text = "Display stock-out, low-stock, over-stock and custom alerts."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_alerts_report)


def register_rules_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``rules``."""
    name = "rules"
    help_text = "List the custom alert rules."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_rules_report)


def register_dashboard_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``dashboard``."""
    name = "dashboard"
    help_text = "Display revenue KPIs, stock by type, and monthly revenue."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--as-of", type=date.fromisoformat, default=None, help="Evaluation date (YYYY-MM-DD).")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_dashboard_report)


def register_rotation_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``rotation``."""
    name = "rotation"
    help_text = "Display the wines with the highest stock rotation."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--limit", type=int, default=analytics.ROTATION_TOP_N)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_rotation_report)


def register_log_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``log``."""
    name = "log"
    help_text = "Display the transaction ledger, newest first."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_log_report)


def register_export_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``export``."""
    name = "export"
    help_text = "Export the transaction ledger as CSV."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--output", type=Path, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_export)


def load_runtime_context(
    config_path: Optional[Path] = None,
    *,
    role: Optional[str] = None,
    user_name: Optional[str] = None,
) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    session_role = UserRole(role) if role is not None else None
    return core_logic.load_runtime_context(target, role=session_role, user_name=user_name)


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


def translate_add_wine(args: argparse.Namespace) -> core_logic.WineCommand:
    """Translate CLI args into a wine creation command."""
    overrides = _wine_overrides(args)
    return core_logic.WineCommand(
        name=args.name,
        type=WineType(args.wine_type),
        appellation=args.appellation,
        producer=args.producer,
        **overrides,
    )


def translate_edit_wine(args: argparse.Namespace, existing: Wine) -> core_logic.WineCommand:
    """Merge CLI args over ``existing`` into a wine edit command."""
    base: Dict[str, Any] = {
        "name": existing.name,
        "type": existing.type,
        "appellation": existing.appellation,
        "producer": existing.producer,
        "quantity": existing.quantity,
        "sell_price": existing.sell_price,
        "min_stock": existing.min_stock,
        "max_stock": existing.max_stock,
        "vintage": existing.vintage,
        "region": existing.region,
        "supplier": existing.supplier,
        "location": existing.location,
    }
    for key in ("name", "appellation", "producer"):
        if getattr(args, key, None) is not None:
            base[key] = getattr(args, key)
    if getattr(args, "wine_type", None) is not None:
        base["type"] = WineType(args.wine_type)
    base.update(_wine_overrides(args))
    return core_logic.WineCommand(**base)


def _wine_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    keys = (
        "quantity",
        "sell_price",
        "min_stock",
        "max_stock",
        "vintage",
        "region",
        "supplier",
        "location",
    )
    return {key: getattr(args, key) for key in keys if getattr(args, key, None) is not None}


def translate_adjust(args: argparse.Namespace) -> core_logic.AdjustmentCommand:
    """Translate CLI args into an adjustment command."""
    return core_logic.AdjustmentCommand(
        wine_id=args.wine_id,
        amount=args.amount,
        transaction_type=TransactionType(args.flow_type),
    )


def translate_sale(args: argparse.Namespace, *, default_price: int) -> core_logic.SaleCommand:
    """Translate CLI args into a sale command, pricing at ``default_price``
    unless ``--price`` was given."""
    return core_logic.SaleCommand(
        wine_id=args.wine_id,
        quantity=args.quantity,
        price=args.price if args.price is not None else default_price,
        client=args.client or core_logic.COUNTER_CLIENT,
        date=args.date,
        transaction_type=TransactionType(args.flow_type),
        seller_name=args.seller_name,
    )


def translate_add_rule(args: argparse.Namespace) -> core_logic.AlertRuleCommand:
    """Translate CLI args into an alert rule command."""
    return core_logic.AlertRuleCommand(
        name=args.name,
        field=args.field,
        operator=args.operator,
        value=args.value,
        message=args.message,
        color=args.color or core_logic.DEFAULT_RULE_COLOR,
    )


def format_wine(wine: Wine) -> str:
    return (
        f"{wine.id:<24} {wine.name:<32} {wine.type.value:<13} {wine.vintage:<6} "
        f"{wine.quantity:>5} btls  min {wine.min_stock:>4}  max {wine.max_stock:>4}  {wine.sell_price:>9} FCFA"
    )


def format_transaction(transaction: Transaction) -> str:
    return (
        f"{transaction.id:<26} {transaction.date.date().isoformat()} {transaction.type.value:<11} "
        f"{transaction.quantity:>4} x {transaction.wine_name:<32} {transaction.total:>10} FCFA  "
        f"{transaction.client} / {transaction.seller_name}"
    )


def run_add_wine(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-wine workflow in the BLL."""
    wine = core_logic.save_wine(context, translate_add_wine(args))
    print(f"Created {wine.id}")
    return 0


def run_edit_wine(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the edit-wine workflow in the BLL."""
    existing = core_logic.get_wine(context, args.wine_id)
    core_logic.save_wine(context, translate_edit_wine(args, existing), wine_id=existing.id)
    return 0


def run_delete_wine(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the delete-wine workflow in the BLL."""
    core_logic.delete_wine(context, args.wine_id)
    return 0


def run_set_thresholds(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the threshold update workflow in the BLL."""
    core_logic.update_wine_thresholds(
        context,
        args.wine_id,
        min_stock=args.min_stock,
        max_stock=args.max_stock,
    )
    return 0


def run_adjust(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the adjustment workflow via the BLL."""
    transaction = core_logic.adjust_stock(context, translate_adjust(args))
    print(f"Recorded {transaction.id}")
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow via the BLL."""
    wine = core_logic.get_wine(context, args.wine_id)
    transaction = core_logic.record_sale(context, translate_sale(args, default_price=wine.sell_price))
    print(f"Recorded {transaction.id}")
    return 0


def run_delete_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the transaction deletion workflow via the BLL."""
    core_logic.delete_transaction(context, args.transaction_id)
    print("Deleted. Stock was not restored.")
    return 0


def run_add_rule(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-rule workflow via the BLL."""
    rule = core_logic.add_alert_rule(context, translate_add_rule(args))
    print(f"Created {rule.id}")
    return 0


def run_delete_rule(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the delete-rule workflow via the BLL."""
    core_logic.delete_alert_rule(context, args.rule_id)
    return 0


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the (filtered) catalog."""
    wine_type = WineType(args.wine_type) if args.wine_type else None
    for wine in core_logic.search_wines(core_logic.list_wines(context), args.search, wine_type=wine_type):
        print(format_wine(wine))
    print(f"Total: {analytics.total_bottles(context.store.wines)} btls")
    return 0


def run_alerts_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print every current alert."""
    report = core_logic.current_alerts(context)
    for alert in alerts.flatten_alerts(report):
        print(f"[{alert.kind.value:<6}] {alert.wine.name}: {alert.message}")
    if not report.total:
        print("No alerts.")
    return 0


def run_rules_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for rule in core_logic.list_rules(context):
        print(f"{rule.id:<24} {rule.name}: {rule.field} {rule.operator} {rule.value} ({rule.color})")
    return 0


def run_dashboard_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the KPIs, stock distribution and monthly revenue."""
    if args.as_of is not None:
        now = datetime(args.as_of.year, args.as_of.month, args.as_of.day, tzinfo=UTC)
    else:
        now = datetime.now(UTC)
    wines = context.store.wines
    transactions = context.store.transactions
    kpis = analytics.compute_kpis(wines, transactions, now)
    print(f"CA Total:       {kpis.total_revenue} FCFA")
    print(f"Ventes ce Mois: {kpis.current_month_revenue} FCFA")
    print(f"Panier Moyen:   {kpis.average_basket:.0f} FCFA")
    print(f"Stock Total:    {kpis.total_bottles} btls")
    print("Stock par type:")
    for wine_type, quantity in analytics.type_distribution(wines).items():
        print(f"  {wine_type:<13} {quantity:>6}")
    print("CA mensuel:")
    for month, revenue in analytics.monthly_revenue(transactions).items():
        print(f"  {month:<6} {revenue:>12}")
    return 0


def run_rotation_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the rotation ranking."""
    stats = analytics.rotation_stats(context.store.wines, context.store.transactions, limit=args.limit)
    for stat in stats:
        print(
            f"{stat.wine.name:<32} sold {stat.sold_qty:>5}  rotation {stat.rotation_rate:>7.1f}%  "
            f"~{stat.avg_days} days"
        )
    return 0


def run_log_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the ledger newest first, followed by its summary."""
    for transaction in core_logic.list_transactions(context, newest_first=True):
        print(format_transaction(transaction))
    summary = analytics.ledger_summary(context.store.transactions)
    print(
        f"Ventes: {summary.sales_revenue} FCFA ({summary.bottles_sold} btls)  "
        f"Pertes: {summary.losses_value} FCFA"
    )
    return 0


def run_export(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Write the ledger CSV export."""
    destination = args.output or Path(f"Export_Ventes_VinStock_{date.today().isoformat()}.csv")
    written = core_logic.export_transactions(context, destination)
    print(f"Exported to {written}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, ValueError):
        log.error("%s", error)
        return 4
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
        context = load_runtime_context(
            getattr(args, "config", None),
            role=getattr(args, "role", None),
            user_name=getattr(args, "user_name", None),
        )
        core_logic.ensure_schema_version(context)
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
