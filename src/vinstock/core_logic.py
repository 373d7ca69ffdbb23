"""Business logic layer for VinStock.

This module is the stock mutation engine: the only place where wine
quantities, the sales ledger and the alert-rule set change. It consumes the
state store for all reads and writes, validates every command against the
domain rules, and enforces the Administrator-only operations.

Two paths move stock and log a transaction (:func:`record_sale` and
:func:`adjust_stock`). Editing a wine through :func:`save_wine` or
:func:`update_wine_thresholds` changes fields directly and leaves the ledger
alone.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Iterable, List, Optional, Union

from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.workbook import Workbook

from . import alerts, data_manager, log
from .constants import (
    ADJUSTMENT_CLIENT,
    ADJUSTMENT_SELLER,
    COUNTER_CLIENT,
    DEFAULT_RULE_COLOR,
    DEFAULT_USER_NAMES,
    EXPECTED_SCHEMA_VERSION,
    TransactionType,
    UserRole,
    WineType,
)
from .models import AlertRule, RuleValue, Transaction, Wine
from .store import StateStore


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced wine, transaction, or rule is unknown."""


class InsufficientStockError(BusinessRuleViolation):
    """Raised when a sale asks for more bottles than the wine holds."""


class PermissionDeniedError(BusinessRuleViolation):
    """Raised when the session role may not perform an operation."""


@dataclass(frozen=True)
class Session:
    """Local session flag: who is working and in which role."""

    role: UserRole
    user_name: str

    @property
    def is_administrator(self) -> bool:
        return self.role is UserRole.ADMINISTRATOR


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration, workbook, state store and session."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    store: StateStore
    session: Session


@dataclass(frozen=True)
class WineCommand:
    """User intent for creating or editing a catalog reference."""

    name: str
    type: WineType
    appellation: str
    producer: str
    quantity: int = 0
    sell_price: int = 0
    min_stock: int = 5
    max_stock: int = 50
    vintage: str = ""
    region: str = ""
    supplier: str = ""
    location: str = ""


@dataclass(frozen=True)
class SaleCommand:
    """User intent for recording a ledger entry against a wine."""

    wine_id: str
    quantity: int
    price: int
    client: str = COUNTER_CLIENT
    date: Optional[Union[date, datetime]] = None
    transaction_type: TransactionType = TransactionType.VENTE
    seller_name: Optional[str] = None


@dataclass(frozen=True)
class AdjustmentCommand:
    """User intent for a signed inventory adjustment."""

    wine_id: str
    amount: int
    transaction_type: TransactionType = TransactionType.VENTE
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class AlertRuleCommand:
    """User intent for creating a custom alert rule."""

    name: str
    field: str
    operator: str
    value: RuleValue
    message: str
    color: str = DEFAULT_RULE_COLOR


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or, when ``None``, the current UTC datetime."""

    return candidate if candidate is not None else datetime.now(UTC)


def _resolve_sale_date(candidate: Optional[Union[date, datetime]]) -> datetime:
    """Normalize a user-entered sale date.

    A bare :class:`~datetime.date` becomes midnight UTC of that day, a naive
    datetime is read as UTC, and ``None`` means now.
    """

    if candidate is None:
        return _resolve_timestamp(None)
    if isinstance(candidate, datetime):
        return candidate if candidate.tzinfo is not None else candidate.replace(tzinfo=UTC)
    return datetime(candidate.year, candidate.month, candidate.day, tzinfo=UTC)


def make_session(role: UserRole, user_name: Optional[str] = None) -> Session:
    """Build a session, falling back to the role's default user name."""

    return Session(role=role, user_name=user_name or DEFAULT_USER_NAMES[role])


def switch_role(session: Session) -> Session:
    """Toggle between Administrator and Seller with their default names."""

    role = UserRole.SELLER if session.is_administrator else UserRole.ADMINISTRATOR
    log.info("Switching session role from '%s' to '%s'", session.role.value, role.value)
    return make_session(role)


def load_runtime_context(
    config_path: Optional[Path] = None,
    *,
    role: Optional[UserRole] = None,
    user_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> RuntimeContext:
    """Load configuration, the workbook, and a populated state store.

    Args:
        config_path (Path | None): Optional override path for the
            configuration file. When omitted the data layer searches upward
            from the current working directory.
        role (UserRole | None): Session role; defaults to the configured one.
        user_name (str | None): Session user; defaults to the configured name
            when the role is unchanged, otherwise to the role's default name.
        now (datetime | None): Instant stamped on seeded wines.

    Returns:
        RuntimeContext: Context whose store has already been loaded.

    Raises:
        FileNotFoundError: If the configuration file or workbook is missing.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    store = StateStore(data_manager.WorkbookSlotBackend(workbook, settings.data_file))
    store.load(now=now)

    if role is None or role is settings.default_role:
        session = make_session(settings.default_role, user_name or settings.default_user_name)
    else:
        session = make_session(role, user_name)
    log.info(
        "Loaded runtime context for workbook '%s' (session %s / %s)",
        settings.data_file,
        session.role.value,
        session.user_name,
    )
    return RuntimeContext(settings=settings, workbook=workbook, store=store, session=session)


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


def list_wines(context: RuntimeContext) -> List[Wine]:
    """Return the catalog in store order."""
    return list(context.store.wines)


def list_transactions(context: RuntimeContext, *, newest_first: bool = False) -> List[Transaction]:
    """Return the ledger, in recording order or sorted by date descending."""
    transactions = list(context.store.transactions)
    if newest_first:
        transactions.sort(key=lambda transaction: transaction.date, reverse=True)
    return transactions


def list_rules(context: RuntimeContext) -> List[AlertRule]:
    return list(context.store.rules)


def get_wine(context: RuntimeContext, wine_id: str) -> Wine:
    """Resolve a wine by identifier.

    Raises:
        MissingReferenceError: If ``wine_id`` is not in the catalog.
    """
    wine = context.store.find_wine(wine_id)
    if wine is None:
        log.warning("Wine lookup failed for id '%s'", wine_id)
        raise MissingReferenceError(f"Unknown wine id: {wine_id}")
    return wine


def get_transaction(context: RuntimeContext, transaction_id: str) -> Transaction:
    """Resolve a ledger entry by identifier.

    Raises:
        MissingReferenceError: If the ledger lacks ``transaction_id``.
    """
    for transaction in context.store.transactions:
        if transaction.id == transaction_id:
            return transaction
    log.warning("Transaction lookup failed for id '%s'", transaction_id)
    raise MissingReferenceError(f"Unknown transaction id: {transaction_id}")


def search_wines(
    wines: Iterable[Wine],
    text: str = "",
    *,
    wine_type: Optional[WineType] = None,
) -> List[Wine]:
    """Filter wines by a case-insensitive search over name, appellation and
    producer, optionally restricted to one type."""
    needle = text.lower()
    return [
        wine
        for wine in wines
        if (
            needle in wine.name.lower()
            or needle in wine.appellation.lower()
            or needle in wine.producer.lower()
        )
        and (wine_type is None or wine.type is wine_type)
    ]


def current_alerts(context: RuntimeContext) -> alerts.AlertReport:
    """Evaluate alerts over the store's current wines and rules."""
    return alerts.evaluate_alerts(context.store.wines, context.store.rules)


def require_role(context: RuntimeContext, role: UserRole, action: str) -> None:
    """Ensure the session holds ``role`` before performing ``action``.

    Raises:
        PermissionDeniedError: If the session role differs.
    """
    if context.session.role is not role:
        log.warning(
            "Permission denied: '%s' (%s) attempted to %s",
            context.session.user_name,
            context.session.role.value,
            action,
        )
        raise PermissionDeniedError(f"Only the {role.value} role may {action}")


def require_positive_quantity(quantity: int) -> None:
    """Validate that a quantity is strictly positive.

    Raises:
        ValueError: If ``quantity`` is zero or negative.
    """
    if quantity <= 0:
        log.error("Quantity validation failed: %s", quantity)
        raise ValueError("Quantity must be greater than zero")


def require_nonnegative(value: int, label: str) -> None:
    """Validate that a stock count or price is zero or positive.

    Raises:
        ValueError: If ``value`` is negative.
    """
    if value < 0:
        log.error("%s validation failed: %s", label, value)
        raise ValueError(f"{label} must be zero or positive")


def require_text(value: object, label: str) -> None:
    """Validate that a required form field is filled in.

    Raises:
        ValueError: If ``value`` is ``None``, blank text, or text the workbook
            cannot store.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        log.error("Required field missing: %s", label)
        raise ValueError(f"Missing required field: {label}")
    require_storable_text(value, label)


def require_storable_text(value: object, label: str) -> None:
    """Reject control characters that a worksheet cell cannot hold.

    Raises:
        ValueError: If ``value`` is text containing such characters.
    """
    if isinstance(value, str) and ILLEGAL_CHARACTERS_RE.search(value):
        log.error("%s contains control characters: %r", label, value)
        raise ValueError(f"{label} contains characters that cannot be stored")


def generate_id(*, prefix: str, when: Optional[datetime] = None, existing: Iterable[str] = ()) -> str:
    """Generate a sortable identifier from a UTC timestamp.

    Args:
        prefix (str): Designator prepended to the identifier (``W`` for wines,
            ``T`` for transactions, ``R`` for rules).
        when (datetime | None): Timestamp used to build the identifier. When
            ``None`` the current UTC time is used.
        existing (Iterable[str]): Identifiers already taken; a numeric suffix
            is appended until the result is unique among them.

    Returns:
        str: Identifier formed as ``{prefix}{YYYYMMDDHHMMSSffffff}`` with an
            optional ``-{n}`` suffix.
    """
    when = when or _resolve_timestamp(None)
    base = f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}"
    taken = set(existing)
    candidate = base
    suffix = 2
    while candidate in taken:
        candidate = f"{base}-{suffix}"
        suffix += 1
    return candidate


def validate_wine_command(command: WineCommand) -> None:
    """Apply the required-field and range checks of the wine form.

    Raises:
        ValueError: If name, appellation or producer is blank, or a stock
            count or the price is negative.
    """
    require_text(command.name, "name")
    require_text(command.appellation, "appellation")
    require_text(command.producer, "producer")
    for label in ("vintage", "region", "supplier", "location"):
        require_storable_text(getattr(command, label), label)
    require_nonnegative(command.quantity, "Quantity")
    require_nonnegative(command.sell_price, "Sell price")
    require_nonnegative(command.min_stock, "Minimum stock")
    require_nonnegative(command.max_stock, "Maximum stock")


def save_wine(
    context: RuntimeContext,
    command: WineCommand,
    *,
    wine_id: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> Wine:
    """Create a wine or overwrite the editable fields of an existing one.

    New wines take ``initial_quantity`` from the entered quantity and
    ``date_added`` from ``timestamp``. An edit keeps the original id,
    ``date_added`` and ``initial_quantity``, and may set ``quantity``
    directly; no ledger entry is written either way.

    Raises:
        ValueError: If the command fails form validation.
        MissingReferenceError: If ``wine_id`` is given but unknown.
    """
    validate_wine_command(command)
    fields = dict(
        name=command.name,
        type=command.type,
        appellation=command.appellation,
        vintage=command.vintage,
        producer=command.producer,
        region=command.region,
        supplier=command.supplier,
        location=command.location,
        quantity=command.quantity,
        min_stock=command.min_stock,
        max_stock=command.max_stock,
        sell_price=command.sell_price,
    )

    if wine_id is not None:
        existing = get_wine(context, wine_id)
        wine = replace(existing, **fields)
        context.store.replace_wines(wine if item.id == wine_id else item for item in context.store.wines)
        log.info("Edited wine '%s' (%s), quantity now %d", wine.id, wine.name, wine.quantity)
        return wine

    when = _resolve_timestamp(timestamp)
    wine = Wine(
        id=generate_id(prefix="W", when=when, existing=(item.id for item in context.store.wines)),
        initial_quantity=command.quantity,
        date_added=when,
        **fields,
    )
    context.store.replace_wines([*context.store.wines, wine])
    log.info("Created wine '%s' (%s) with %d bottles", wine.id, wine.name, wine.quantity)
    return wine


def update_wine_thresholds(
    context: RuntimeContext,
    wine_id: str,
    *,
    min_stock: Optional[int] = None,
    max_stock: Optional[int] = None,
) -> Wine:
    """Change the alert floor and/or ceiling of one wine.

    Raises:
        MissingReferenceError: If ``wine_id`` is unknown.
        ValueError: If a threshold is negative.
    """
    wine = get_wine(context, wine_id)
    changes = {}
    if min_stock is not None:
        require_nonnegative(min_stock, "Minimum stock")
        changes["min_stock"] = min_stock
    if max_stock is not None:
        require_nonnegative(max_stock, "Maximum stock")
        changes["max_stock"] = max_stock
    if not changes:
        return wine

    updated = replace(wine, **changes)
    context.store.replace_wines(updated if item.id == wine_id else item for item in context.store.wines)
    log.info(
        "Updated thresholds for wine '%s': min=%d max=%d",
        wine_id,
        updated.min_stock,
        updated.max_stock,
    )
    return updated


def delete_wine(context: RuntimeContext, wine_id: str) -> Wine:
    """Remove a wine from the catalog (Administrator only).

    Ledger entries referencing the wine are kept; their snapshots stay
    renderable.

    Raises:
        PermissionDeniedError: If the session is not an Administrator.
        MissingReferenceError: If ``wine_id`` is unknown.
    """
    require_role(context, UserRole.ADMINISTRATOR, "delete wines")
    wine = get_wine(context, wine_id)
    context.store.replace_wines(item for item in context.store.wines if item.id != wine_id)
    log.info("Deleted wine '%s' (%s)", wine.id, wine.name)
    return wine


def build_adjustment_transaction(
    wine: Wine,
    command: AdjustmentCommand,
    *,
    transaction_id: str,
    timestamp: datetime,
) -> Transaction:
    """Materialize an :class:`AdjustmentCommand` into a ledger entry.

    The entry records the magnitude of the adjustment at the wine's current
    sell price. Sale-type adjustments are attributed to the counter, all
    others to the inventory adjustment client.
    """
    quantity = abs(command.amount)
    client = COUNTER_CLIENT if command.transaction_type is TransactionType.VENTE else ADJUSTMENT_CLIENT
    return Transaction(
        id=transaction_id,
        wine_id=wine.id,
        wine_name=wine.name,
        wine_type=wine.type,
        quantity=quantity,
        price=wine.sell_price,
        total=quantity * wine.sell_price,
        type=command.transaction_type,
        client=client,
        date=timestamp,
        seller_name=ADJUSTMENT_SELLER,
    )


def adjust_stock(context: RuntimeContext, command: AdjustmentCommand) -> Transaction:
    """Apply a signed adjustment to a wine and log it.

    The new quantity is ``max(0, quantity + amount)``: an adjustment larger
    than the stock is clamped at zero without error. Exactly one transaction
    is appended.

    Raises:
        MissingReferenceError: If the wine is unknown.
        ValueError: If ``amount`` is zero.
    """
    if command.amount == 0:
        log.error("Adjustment validation failed: amount is zero")
        raise ValueError("Adjustment amount must not be zero")
    wine = get_wine(context, command.wine_id)

    timestamp = _resolve_timestamp(command.timestamp)
    transaction_id = generate_id(
        prefix="T",
        when=timestamp,
        existing=(item.id for item in context.store.transactions),
    )
    transaction = build_adjustment_transaction(wine, command, transaction_id=transaction_id, timestamp=timestamp)
    new_quantity = max(0, wine.quantity + command.amount)
    context.store.replace(
        wines=[replace(item, quantity=new_quantity) if item.id == wine.id else item for item in context.store.wines],
        transactions=[*context.store.transactions, transaction],
    )
    log.info(
        "Adjusted wine '%s' by %+d (%s): %d -> %d",
        wine.id,
        command.amount,
        command.transaction_type.value,
        wine.quantity,
        new_quantity,
    )
    return transaction


def build_sale_transaction(
    wine: Wine,
    command: SaleCommand,
    *,
    transaction_id: str,
    sale_date: datetime,
    seller_name: str,
) -> Transaction:
    """Materialize a :class:`SaleCommand` into a ledger entry.

    The entered price may differ from the wine's current sell price, which is
    how per-sale discounts and markups are recorded.
    """
    return Transaction(
        id=transaction_id,
        wine_id=wine.id,
        wine_name=wine.name,
        wine_type=wine.type,
        quantity=command.quantity,
        price=command.price,
        total=command.quantity * command.price,
        type=command.transaction_type,
        client=command.client,
        date=sale_date,
        seller_name=seller_name,
    )


def record_sale(context: RuntimeContext, command: SaleCommand) -> Transaction:
    """Validate and record a sale or loss against a wine.

    Args:
        context (RuntimeContext): Runtime context providing the store and
            session.
        command (SaleCommand): Structured intent describing the flow.

    Returns:
        Transaction: Newly appended ledger entry.

    Raises:
        MissingReferenceError: If the wine is unknown.
        InsufficientStockError: If ``quantity`` exceeds the wine's stock; no
            state changes in that case.
        ValueError: If the quantity is not positive, the price is negative,
            or the client or seller holds control characters.
    """
    wine = get_wine(context, command.wine_id)
    require_positive_quantity(command.quantity)
    require_nonnegative(command.price, "Price")
    require_storable_text(command.client, "client")
    require_storable_text(command.seller_name, "seller")
    if command.quantity > wine.quantity:
        log.warning(
            "Rejected %s of %d bottles of '%s': only %d in stock",
            command.transaction_type.value,
            command.quantity,
            wine.id,
            wine.quantity,
        )
        raise InsufficientStockError(
            f"Insufficient stock for '{wine.name}': requested {command.quantity}, available {wine.quantity}"
        )

    sale_date = _resolve_sale_date(command.date)
    transaction_id = generate_id(
        prefix="T",
        when=_resolve_timestamp(None),
        existing=(item.id for item in context.store.transactions),
    )
    transaction = build_sale_transaction(
        wine,
        command,
        transaction_id=transaction_id,
        sale_date=sale_date,
        seller_name=command.seller_name or context.session.user_name,
    )
    context.store.replace(
        wines=[
            replace(item, quantity=item.quantity - command.quantity) if item.id == wine.id else item
            for item in context.store.wines
        ],
        transactions=[*context.store.transactions, transaction],
    )
    log.info(
        "Recorded %s '%s' for wine '%s' (quantity=%d, total=%d)",
        transaction.type.value,
        transaction.id,
        wine.id,
        transaction.quantity,
        transaction.total,
    )
    return transaction


def delete_transaction(context: RuntimeContext, transaction_id: str) -> Transaction:
    """Remove a ledger entry (Administrator only).

    Stock is not re-incremented: the wine keeps the quantity it has now.

    Raises:
        PermissionDeniedError: If the session is not an Administrator.
        MissingReferenceError: If ``transaction_id`` is unknown.
    """
    require_role(context, UserRole.ADMINISTRATOR, "delete transactions")
    transaction = get_transaction(context, transaction_id)
    context.store.replace_transactions(
        item for item in context.store.transactions if item.id != transaction_id
    )
    log.info(
        "Deleted transaction '%s' (%s of %d x '%s'); stock left unchanged",
        transaction.id,
        transaction.type.value,
        transaction.quantity,
        transaction.wine_id,
    )
    return transaction


def add_alert_rule(
    context: RuntimeContext,
    command: AlertRuleCommand,
    *,
    timestamp: Optional[datetime] = None,
) -> AlertRule:
    """Validate and store a custom alert rule.

    Raises:
        ValueError: If name, value or message is blank, or the field or
            operator is unknown.
    """
    require_text(command.name, "name")
    require_text(command.value, "value")
    require_text(command.message, "message")
    require_storable_text(command.color, "color")
    rule_field, rule_operator = alerts.validate_rule(command.field, command.operator)

    rule = AlertRule(
        id=generate_id(
            prefix="R",
            when=_resolve_timestamp(timestamp),
            existing=(item.id for item in context.store.rules),
        ),
        name=command.name,
        field=rule_field.value,
        operator=rule_operator.value,
        value=command.value,
        message=command.message,
        color=command.color or DEFAULT_RULE_COLOR,
    )
    context.store.replace_rules([*context.store.rules, rule])
    log.info("Added alert rule '%s' (%s %s %s)", rule.id, rule.field, rule.operator, rule.value)
    return rule


def delete_alert_rule(context: RuntimeContext, rule_id: str) -> AlertRule:
    """Remove a custom alert rule by identifier.

    Raises:
        MissingReferenceError: If ``rule_id`` is unknown.
    """
    rule = next((item for item in context.store.rules if item.id == rule_id), None)
    if rule is None:
        log.warning("Alert rule lookup failed for id '%s'", rule_id)
        raise MissingReferenceError(f"Unknown alert rule id: {rule_id}")
    context.store.replace_rules(item for item in context.store.rules if item.id != rule_id)
    log.info("Deleted alert rule '%s'", rule_id)
    return rule


def export_transactions(context: RuntimeContext, destination: Path) -> Path:
    """Write the ledger as a flat CSV file.

    Raises:
        BusinessRuleViolation: If the ledger is empty.
    """
    transactions = list_transactions(context)
    if not transactions:
        log.warning("Export requested on an empty ledger")
        raise BusinessRuleViolation("No transactions to export")
    written = data_manager.write_export(destination, data_manager.render_export(transactions))
    log.info("Exported %d transactions to '%s'", len(transactions), written)
    return written


def persist_context(context: RuntimeContext) -> None:
    """Persist the in-memory workbook to its configured data file."""
    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook, discarding unsaved modifications.

    The session is carried over; the store is rebuilt from the reloaded
    workbook.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    store = StateStore(data_manager.WorkbookSlotBackend(workbook, context.settings.data_file))
    store.load()
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook, store=store, session=context.session)
