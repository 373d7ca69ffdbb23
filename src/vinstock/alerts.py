"""Alert evaluator for VinStock.

Derives the four alert categories (stock-out, low stock, over stock, custom
rules) from the wine collection and the rule set. Every function here is
pure: evaluating twice on the same inputs yields the same, identically
ordered result.

Custom rules address wine attributes through :class:`RuleField`, a closed
mapping from the persisted field name to an extraction function. Rules are
validated against it when created; a stored rule that still names an unknown
field or operator simply never matches.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Iterator, Optional, Sequence

from . import log
from .constants import AlertKind, RuleOperator
from .models import AlertRule, Wine


class RuleField(str, Enum):
    """Wine attributes a custom rule may compare against."""

    NAME = "name"
    TYPE = "type"
    APPELLATION = "appellation"
    VINTAGE = "vintage"
    PRODUCER = "producer"
    REGION = "region"
    SUPPLIER = "supplier"
    LOCATION = "location"
    QUANTITY = "quantity"
    MIN_STOCK = "minStock"
    MAX_STOCK = "maxStock"
    INITIAL_QUANTITY = "initialQuantity"
    SELL_PRICE = "sellPrice"

    @classmethod
    def lookup(cls, name: str) -> Optional["RuleField"]:
        """Return the member persisted as ``name`` or ``None`` when unknown."""
        try:
            return cls(name)
        except ValueError:
            return None

    def extract(self, wine: Wine) -> object:
        return _EXTRACTORS[self](wine)


_EXTRACTORS: dict[RuleField, Callable[[Wine], object]] = {
    RuleField.NAME: lambda wine: wine.name,
    RuleField.TYPE: lambda wine: wine.type,
    RuleField.APPELLATION: lambda wine: wine.appellation,
    RuleField.VINTAGE: lambda wine: wine.vintage,
    RuleField.PRODUCER: lambda wine: wine.producer,
    RuleField.REGION: lambda wine: wine.region,
    RuleField.SUPPLIER: lambda wine: wine.supplier,
    RuleField.LOCATION: lambda wine: wine.location,
    RuleField.QUANTITY: lambda wine: wine.quantity,
    RuleField.MIN_STOCK: lambda wine: wine.min_stock,
    RuleField.MAX_STOCK: lambda wine: wine.max_stock,
    RuleField.INITIAL_QUANTITY: lambda wine: wine.initial_quantity,
    RuleField.SELL_PRICE: lambda wine: wine.sell_price,
}


@dataclass(frozen=True)
class CustomAlert:
    """A (wine, rule) pair whose rule matched."""

    wine: Wine
    rule: AlertRule


@dataclass(frozen=True)
class AlertReport:
    """The four alert categories for one evaluation pass."""

    stock_out: tuple[Wine, ...]
    low_stock: tuple[Wine, ...]
    over_stock: tuple[Wine, ...]
    custom: tuple[CustomAlert, ...]

    @property
    def total(self) -> int:
        return len(self.stock_out) + len(self.low_stock) + len(self.over_stock) + len(self.custom)


@dataclass(frozen=True)
class StockAlert:
    """Flattened alert record carrying a display message."""

    wine: Wine
    kind: AlertKind
    message: str
    rule_id: Optional[str] = None


_NUMERIC_LITERAL = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?|[+-]?Infinity")
_PREFIXED_INTEGER = re.compile(r"0[xX][0-9a-fA-F]+|0[oO][0-7]+|0[bB][01]+")
_PLACEHOLDER = re.compile(r"\{(\w+)\}")


def to_number(value: object) -> float:
    """Coerce ``value`` to a float the way JavaScript's ``Number()`` does.

    Blank text becomes ``0``. Unsigned ``0x``, ``0o`` and ``0b`` literals are
    read as integers. Any other text that is not a plain decimal literal
    becomes NaN, which makes every ordering comparison false.
    """
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        return math.nan
    text = value.strip()
    if not text:
        return 0.0
    if _PREFIXED_INTEGER.fullmatch(text):
        return float(int(text, 0))
    if not _NUMERIC_LITERAL.fullmatch(text):
        return math.nan
    return float(text.replace("Infinity", "inf"))


def to_text(value: object) -> str:
    """Render ``value`` the way JavaScript's ``String()`` does for our fields."""
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        if value.is_integer():
            return str(int(value))
    return str(value)


def validate_rule(field: str, operator: str) -> tuple[RuleField, RuleOperator]:
    """Resolve a rule's field and operator, rejecting unknown names.

    Raises:
        ValueError: If ``field`` is not a :class:`RuleField` value or
            ``operator`` is not a :class:`RuleOperator` value.
    """
    rule_field = RuleField.lookup(field)
    if rule_field is None:
        log.error("Alert rule validation failed: unknown field '%s'", field)
        raise ValueError(f"Unknown rule field: {field}")
    try:
        rule_operator = RuleOperator(operator)
    except ValueError as exc:
        log.error("Alert rule validation failed: unknown operator '%s'", operator)
        raise ValueError(f"Unknown rule operator: {operator}") from exc
    return rule_field, rule_operator


def rule_matches(wine: Wine, rule: AlertRule) -> bool:
    """Evaluate one rule against one wine; malformed rules never match."""
    rule_field = RuleField.lookup(rule.field)
    operator = rule.operator_kind
    if rule_field is None or operator is None:
        return False

    wine_value = rule_field.extract(wine)
    if operator is RuleOperator.LESS:
        return to_number(wine_value) < to_number(rule.value)
    if operator is RuleOperator.GREATER:
        return to_number(wine_value) > to_number(rule.value)
    if operator is RuleOperator.EQUAL:
        return to_text(wine_value).lower() == to_text(rule.value).lower()
    if operator is RuleOperator.CONTAINS:
        return to_text(rule.value).lower() in to_text(wine_value).lower()
    return False


def is_stock_out(wine: Wine) -> bool:
    return wine.quantity == 0


def is_low_stock(wine: Wine) -> bool:
    return 0 < wine.quantity <= wine.min_stock


def is_over_stock(wine: Wine) -> bool:
    return wine.quantity >= wine.max_stock


def find_custom_alerts(wines: Iterable[Wine], rules: Sequence[AlertRule]) -> tuple[CustomAlert, ...]:
    """Match every rule against every wine, wines in the outer loop."""
    return tuple(
        CustomAlert(wine=wine, rule=rule)
        for wine in wines
        for rule in rules
        if rule_matches(wine, rule)
    )


def evaluate_alerts(wines: Sequence[Wine], rules: Sequence[AlertRule]) -> AlertReport:
    """Compute all alert categories for the current inventory.

    Args:
        wines (Sequence[Wine]): Full wine collection in store order.
        rules (Sequence[AlertRule]): Full rule set in store order.

    Returns:
        AlertReport: Stock-out, low-stock and over-stock wines in collection
            order, plus custom matches ordered by wine then rule.
    """
    report = AlertReport(
        stock_out=tuple(wine for wine in wines if is_stock_out(wine)),
        low_stock=tuple(wine for wine in wines if is_low_stock(wine)),
        over_stock=tuple(wine for wine in wines if is_over_stock(wine)),
        custom=find_custom_alerts(wines, rules),
    )
    log.debug(
        "Evaluated alerts: %d out, %d low, %d over, %d custom",
        len(report.stock_out),
        len(report.low_stock),
        len(report.over_stock),
        len(report.custom),
    )
    return report


def render_message(rule: AlertRule, wine: Wine) -> str:
    """Fill ``{field}`` placeholders in the rule message with wine values.

    Placeholders that do not name a :class:`RuleField` are left as written.
    """

    def _substitute(match: re.Match[str]) -> str:
        rule_field = RuleField.lookup(match.group(1))
        if rule_field is None:
            return match.group(0)
        return to_text(rule_field.extract(wine))

    return _PLACEHOLDER.sub(_substitute, rule.message)


def flatten_alerts(report: AlertReport) -> Iterator[StockAlert]:
    """Yield every alert of ``report`` as a :class:`StockAlert`.

    Categories are emitted stock-out first, then low stock, over stock, and
    custom matches.
    """
    for wine in report.stock_out:
        yield StockAlert(wine=wine, kind=AlertKind.OUT, message="Rupture de stock")
    for wine in report.low_stock:
        yield StockAlert(
            wine=wine,
            kind=AlertKind.MIN,
            message=f"Stock faible : {wine.quantity} (min {wine.min_stock})",
        )
    for wine in report.over_stock:
        yield StockAlert(
            wine=wine,
            kind=AlertKind.MAX,
            message=f"Surstockage : {wine.quantity} (max {wine.max_stock})",
        )
    for alert in report.custom:
        yield StockAlert(
            wine=alert.wine,
            kind=AlertKind.CUSTOM,
            message=render_message(alert.rule, alert.wine),
            rule_id=alert.rule.id,
        )


__all__ = [
    "RuleField",
    "CustomAlert",
    "AlertReport",
    "StockAlert",
    "to_number",
    "to_text",
    "validate_rule",
    "rule_matches",
    "is_stock_out",
    "is_low_stock",
    "is_over_stock",
    "find_custom_alerts",
    "evaluate_alerts",
    "render_message",
    "flatten_alerts",
]
