"""Domain entities for VinStock.

The three records below are the only shapes owned by the state store. They
are immutable; engines derive updated copies with :func:`dataclasses.replace`
and hand whole collections back to the store.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Union

from .constants import DEFAULT_RULE_COLOR, RuleOperator, TransactionType, WineType


RuleValue = Union[str, int, float]


@dataclass(frozen=True)
class Wine:
    """One stocked catalog reference."""

    id: str
    name: str
    type: WineType
    appellation: str
    vintage: str
    producer: str
    region: str
    supplier: str
    location: str
    quantity: int
    min_stock: int
    max_stock: int
    initial_quantity: int
    sell_price: int
    date_added: datetime


@dataclass(frozen=True)
class Transaction:
    """A recorded stock movement.

    ``wine_name`` and ``wine_type`` are snapshots taken when the movement was
    recorded, so the row stays renderable after the wine is renamed or
    deleted.
    """

    id: str
    wine_id: str
    wine_name: str
    wine_type: WineType
    quantity: int
    price: int
    total: int
    type: TransactionType
    client: str
    date: datetime
    seller_name: str


@dataclass(frozen=True)
class AlertRule:
    """User-defined predicate over a wine attribute."""

    id: str
    name: str
    field: str
    operator: str
    value: RuleValue
    message: str
    color: str = DEFAULT_RULE_COLOR

    @property
    def operator_kind(self) -> RuleOperator | None:
        try:
            return RuleOperator(self.operator)
        except ValueError:
            return None


__all__ = ["RuleValue", "Wine", "Transaction", "AlertRule"]
