"""State store for VinStock.

The store owns the three process-wide collections (wines, transactions, alert
rules) and mirrors each one into a named slot of a key-value backend. Callers
never see raw slot rows: they read immutable tuples and hand back complete
replacement collections, which the store re-serializes in full and announces
to its subscribers.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Callable, Iterable, List, Optional, Protocol, Sequence

from . import data_manager, log
from .constants import SlotName, WineType
from .models import AlertRule, Transaction, Wine


ChangeListener = Callable[[SlotName], None]


class SlotBackend(Protocol):
    """Opaque key-value storage addressed by slot name."""

    def read(self, slot: SlotName) -> Optional[List[Sequence[object]]]:
        ...

    def write(self, slot: SlotName, rows: Sequence[Sequence[object]]) -> None:
        ...


def seed_catalog(now: datetime) -> tuple[Wine, ...]:
    """Return the built-in catalog used when the wines slot is empty."""

    return (
        Wine(
            id="1",
            name="Château Margaux",
            type=WineType.ROUGE,
            appellation="Margaux",
            vintage="2015",
            producer="Château Margaux",
            region="Bordeaux",
            supplier="Grands Crus Direct",
            location="Cave A1",
            quantity=24,
            min_stock=6,
            max_stock=48,
            initial_quantity=24,
            sell_price=450000,
            date_added=now,
        ),
        Wine(
            id="2",
            name="Cloudy Bay Sauvignon Blanc",
            type=WineType.BLANC,
            appellation="Marlborough",
            vintage="2022",
            producer="Cloudy Bay",
            region="Nouvelle-Zélande",
            supplier="LVMH",
            location="Rayon Frais 1",
            quantity=60,
            min_stock=12,
            max_stock=120,
            initial_quantity=60,
            sell_price=25000,
            date_added=now,
        ),
        Wine(
            id="3",
            name="Whispering Angel",
            type=WineType.ROSE,
            appellation="Côtes de Provence",
            vintage="2023",
            producer="Caves d'Esclans",
            region="Provence",
            supplier="Provence Wines",
            location="Terrasse B",
            quantity=120,
            min_stock=24,
            max_stock=240,
            initial_quantity=120,
            sell_price=18000,
            date_added=now,
        ),
        Wine(
            id="4",
            name="Dom Pérignon Vintage",
            type=WineType.EFFERVESCENT,
            appellation="Champagne",
            vintage="2012",
            producer="Moët & Chandon",
            region="Champagne",
            supplier="MH France",
            location="Vitrine Luxe",
            quantity=12,
            min_stock=3,
            max_stock=24,
            initial_quantity=12,
            sell_price=165000,
            date_added=now,
        ),
    )


class StateStore:
    """Owner of the wine, transaction and rule collections."""

    def __init__(self, backend: SlotBackend) -> None:
        self._backend = backend
        self._wines: tuple[Wine, ...] = ()
        self._transactions: tuple[Transaction, ...] = ()
        self._rules: tuple[AlertRule, ...] = ()
        self._listeners: List[ChangeListener] = []

    @property
    def wines(self) -> tuple[Wine, ...]:
        return self._wines

    @property
    def transactions(self) -> tuple[Transaction, ...]:
        return self._transactions

    @property
    def rules(self) -> tuple[AlertRule, ...]:
        return self._rules

    def load(self, *, now: Optional[datetime] = None) -> None:
        """Populate every collection from the backend.

        An absent or empty ``wines`` slot is seeded with :func:`seed_catalog`
        and written back. ``sales`` and ``rules`` load empty when absent and
        are never seeded.
        """
        wine_rows = self._backend.read(SlotName.WINES)
        if wine_rows:
            self._wines = tuple(data_manager.deserialize_wine(row) for row in wine_rows)
        else:
            self._wines = seed_catalog(now or datetime.now(UTC))
            self.save(SlotName.WINES)
            log.info("Seeded wines slot with %d catalog entries", len(self._wines))

        sale_rows = self._backend.read(SlotName.SALES) or []
        self._transactions = tuple(data_manager.deserialize_transaction(row) for row in sale_rows)
        rule_rows = self._backend.read(SlotName.RULES) or []
        self._rules = tuple(data_manager.deserialize_rule(row) for row in rule_rows)
        log.info(
            "Loaded state store: %d wines, %d transactions, %d rules",
            len(self._wines),
            len(self._transactions),
            len(self._rules),
        )

    def save(self, slot: SlotName) -> None:
        """Re-serialize the whole collection behind ``slot`` to the backend."""
        if slot is SlotName.WINES:
            items: Sequence[object] = self._wines
        elif slot is SlotName.SALES:
            items = self._transactions
        else:
            items = self._rules
        self._backend.write(slot, _serialize(slot, items))

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register ``listener`` for change notifications.

        Returns:
            Callable[[], None]: Function removing the listener again.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def replace_wines(self, wines: Iterable[Wine]) -> None:
        self.replace(wines=wines)

    def replace_transactions(self, transactions: Iterable[Transaction]) -> None:
        self.replace(transactions=transactions)

    def replace_rules(self, rules: Iterable[AlertRule]) -> None:
        self.replace(rules=rules)

    def replace(
        self,
        *,
        wines: Optional[Iterable[Wine]] = None,
        transactions: Optional[Iterable[Transaction]] = None,
        rules: Optional[Iterable[AlertRule]] = None,
    ) -> None:
        """Replace one or more collections as a single unit.

        Every staged collection is written to the backend before any of them
        becomes visible. If a write fails, every staged slot is restored from
        the current collections and the error propagates, so neither the
        backend nor the store keeps half of the change.
        """
        staged: dict[SlotName, tuple] = {}
        if wines is not None:
            staged[SlotName.WINES] = tuple(wines)
        if transactions is not None:
            staged[SlotName.SALES] = tuple(transactions)
        if rules is not None:
            staged[SlotName.RULES] = tuple(rules)

        try:
            for slot, items in staged.items():
                self._backend.write(slot, _serialize(slot, items))
        except Exception:
            log.error("Write to slot(s) %s failed; restoring previous content", [slot.value for slot in staged])
            for slot in staged:
                self.save(slot)
            raise

        if SlotName.WINES in staged:
            self._wines = staged[SlotName.WINES]
        if SlotName.SALES in staged:
            self._transactions = staged[SlotName.SALES]
        if SlotName.RULES in staged:
            self._rules = staged[SlotName.RULES]
        for slot in staged:
            for listener in list(self._listeners):
                listener(slot)

    def find_wine(self, wine_id: str) -> Optional[Wine]:
        return next((wine for wine in self._wines if wine.id == wine_id), None)


def _serialize(slot: SlotName, items: Sequence[object]) -> List[list[object]]:
    if slot is SlotName.WINES:
        return [data_manager.serialize_wine(wine) for wine in items]
    if slot is SlotName.SALES:
        return [data_manager.serialize_transaction(sale) for sale in items]
    return [data_manager.serialize_rule(rule) for rule in items]


__all__ = ["ChangeListener", "SlotBackend", "seed_catalog", "StateStore"]
