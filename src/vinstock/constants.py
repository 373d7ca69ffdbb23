"""Enumerations and fixed labels shared across VinStock modules.

Centralises domain constants so that the data access layer (DAL), the
business engines, and the command-line front end rely on a single source of
truth for identifiers that end up persisted or displayed.
"""

from __future__ import annotations

from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"


class WineType(str, Enum):
    """Enumerate the wine categories carried by the catalog."""

    ROUGE = "Rouge"
    BLANC = "Blanc"
    ROSE = "Rosé"
    EFFERVESCENT = "Effervescent"
    MOELLEUX = "Moelleux"


class TransactionType(str, Enum):
    """Enumerate the stock flows recorded in the sales ledger."""

    VENTE = "Vente"
    PERTE = "Perte"
    CASSE = "Casse"
    PEREMPTION = "Péremption"


class RuleOperator(str, Enum):
    """Enumerate the comparison operators available to custom alert rules."""

    LESS = "less"
    GREATER = "greater"
    EQUAL = "equal"
    CONTAINS = "contains"


class UserRole(str, Enum):
    """Enumerate the two local session roles."""

    ADMINISTRATOR = "Administrateur"
    SELLER = "Vendeur"


class AlertKind(str, Enum):
    """Enumerate the categories produced by the alert evaluator."""

    OUT = "OUT"
    MIN = "MIN"
    MAX = "MAX"
    CUSTOM = "CUSTOM"


class SlotName(str, Enum):
    """Enumerate the persisted slots, one worksheet each in the workbook."""

    WINES = "wines"
    SALES = "sales"
    RULES = "rules"


DEFAULT_USER_NAMES = {
    UserRole.ADMINISTRATOR: "Jean Admin",
    UserRole.SELLER: "Mamadou Vendeur",
}

COUNTER_CLIENT = "Comptoir"
ADJUSTMENT_CLIENT = "Ajustement Inventaire"
ADJUSTMENT_SELLER = "Ajustement Système"
DEFAULT_RULE_COLOR = "#8B4513"

# Short month labels as rendered by the fr-FR locale, January first.
FRENCH_SHORT_MONTHS = (
    "janv.",
    "févr.",
    "mars",
    "avr.",
    "mai",
    "juin",
    "juil.",
    "août",
    "sept.",
    "oct.",
    "nov.",
    "déc.",
)


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "WineType",
    "TransactionType",
    "RuleOperator",
    "UserRole",
    "AlertKind",
    "SlotName",
    "DEFAULT_USER_NAMES",
    "COUNTER_CLIENT",
    "ADJUSTMENT_CLIENT",
    "ADJUSTMENT_SELLER",
    "DEFAULT_RULE_COLOR",
    "FRENCH_SHORT_MONTHS",
]
