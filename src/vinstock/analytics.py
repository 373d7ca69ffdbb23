"""Analytics engine for VinStock.

Read-only aggregates over the wine collection and the sales ledger: stock
distribution by type, monthly revenue, dashboard KPIs, per-wine rotation, and
the ledger summary. Every function is deterministic given its arguments; the
only time-dependent figure, current-month revenue, takes the evaluation
instant as an explicit parameter.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Sequence

from . import log
from .constants import FRENCH_SHORT_MONTHS, TransactionType
from .models import Transaction, Wine


ROTATION_TOP_N = 10
DAYS_PER_YEAR = 365


@dataclass(frozen=True)
class KpiSummary:
    """Headline dashboard figures."""

    total_revenue: int
    current_month_revenue: int
    average_basket: float
    total_bottles: int


@dataclass(frozen=True)
class RotationStat:
    """Turnover figures for a single wine."""

    wine: Wine
    sold_qty: int
    avg_stock: float
    rotation_rate: float
    avg_days: int


@dataclass(frozen=True)
class LedgerSummary:
    """Totals shown above the transaction ledger."""

    sales_revenue: int
    bottles_sold: int
    losses_value: int


def _sales(transactions: Iterable[Transaction]) -> List[Transaction]:
    return [transaction for transaction in transactions if transaction.type is TransactionType.VENTE]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def month_label(moment: datetime) -> str:
    """Return the fr-FR short month name for ``moment``."""
    return FRENCH_SHORT_MONTHS[moment.month - 1]


def type_distribution(wines: Iterable[Wine]) -> Dict[str, int]:
    """Sum bottle quantities per wine type, keyed in first-seen order."""
    counts: Dict[str, int] = {}
    for wine in wines:
        key = wine.type.value
        counts[key] = counts.get(key, 0) + wine.quantity
    return counts


def monthly_revenue(transactions: Iterable[Transaction]) -> Dict[str, int]:
    """Sum sale totals per calendar month name.

    Buckets are keyed by month name only, so the same month of different
    years lands in one bucket. Keys follow first-seen order.
    """
    revenue: Dict[str, int] = {}
    for transaction in _sales(transactions):
        month = month_label(transaction.date)
        revenue[month] = revenue.get(month, 0) + transaction.total
    return revenue


def total_bottles(wines: Iterable[Wine]) -> int:
    return sum(wine.quantity for wine in wines)


def compute_kpis(wines: Sequence[Wine], transactions: Sequence[Transaction], now: datetime) -> KpiSummary:
    """Compute the dashboard KPIs at evaluation instant ``now``.

    Args:
        wines (Sequence[Wine]): Current wine collection.
        transactions (Sequence[Transaction]): Full ledger.
        now (datetime): Evaluation instant used for current-month revenue.

    Returns:
        KpiSummary: Total revenue and current-month revenue over ``Vente``
            rows, the average basket (``0`` when there is no sale), and the
            bottle count across the catalog.
    """
    sales = _sales(transactions)
    total_revenue = sum(sale.total for sale in sales)
    current_month_revenue = sum(
        sale.total
        for sale in sales
        if sale.date.month == now.month and sale.date.year == now.year
    )
    average_basket = total_revenue / len(sales) if sales else 0
    summary = KpiSummary(
        total_revenue=total_revenue,
        current_month_revenue=current_month_revenue,
        average_basket=average_basket,
        total_bottles=total_bottles(wines),
    )
    log.debug("Computed KPIs: %s", summary)
    return summary


def compute_rotation(wine: Wine, transactions: Iterable[Transaction]) -> RotationStat:
    """Compute the rotation figures of one wine.

    ``avg_stock`` falls back to ``1`` when the averaged stock is zero.
    ``avg_days`` estimates the days a full stock cycle takes at the observed
    velocity and is ``0`` for a wine that never sold.
    """
    sold_qty = sum(sale.quantity for sale in _sales(transactions) if sale.wine_id == wine.id)
    avg_stock = (wine.initial_quantity + wine.quantity) / 2 or 1
    rotation_rate = sold_qty / avg_stock * 100
    avg_days = DAYS_PER_YEAR / (rotation_rate / 100) if rotation_rate > 0 else 0
    return RotationStat(
        wine=wine,
        sold_qty=sold_qty,
        avg_stock=avg_stock,
        rotation_rate=rotation_rate,
        avg_days=_round_half_up(avg_days),
    )


def rotation_stats(
    wines: Iterable[Wine],
    transactions: Sequence[Transaction],
    *,
    limit: int = ROTATION_TOP_N,
) -> List[RotationStat]:
    """Rank wines by rotation rate, highest first, and keep the top ``limit``."""
    stats = [compute_rotation(wine, transactions) for wine in wines]
    stats.sort(key=lambda stat: stat.rotation_rate, reverse=True)
    return stats[:limit]


def ledger_summary(transactions: Iterable[Transaction]) -> LedgerSummary:
    """Total sale revenue, bottles sold, and the value of non-sale flows."""
    sales_revenue = 0
    bottles_sold = 0
    losses_value = 0
    for transaction in transactions:
        if transaction.type is TransactionType.VENTE:
            sales_revenue += transaction.total
            bottles_sold += transaction.quantity
        else:
            losses_value += transaction.total
    return LedgerSummary(
        sales_revenue=sales_revenue,
        bottles_sold=bottles_sold,
        losses_value=losses_value,
    )


__all__ = [
    "ROTATION_TOP_N",
    "KpiSummary",
    "RotationStat",
    "LedgerSummary",
    "month_label",
    "type_distribution",
    "monthly_revenue",
    "total_bottles",
    "compute_kpis",
    "compute_rotation",
    "rotation_stats",
    "ledger_summary",
]
