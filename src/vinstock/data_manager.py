"""Data access layer for VinStock.

This module provides low-level helpers that read from and write to the
master workbook. Business logic belongs elsewhere.

The public API is designed around four responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Slot operations: the workbook acts as a key-value store where every named
   slot (``wines``, ``sales``, ``rules``) is one worksheet, rewritten in full
   whenever its collection changes.
4. Row conversion: turning domain records into worksheet rows and back, and
   rendering the ledger as a flat CSV export.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

import openpyxl
from openpyxl.styles import Font
from openpyxl.workbook import Workbook

from . import log
from .constants import (
    DEFAULT_RULE_COLOR,
    DEFAULT_USER_NAMES,
    SlotName,
    TransactionType,
    UserRole,
    WineType,
)
from .models import AlertRule, Transaction, Wine


CONFIG_FILE_NAME = "config.ini"

WINE_COLUMNS = [
    "id",
    "name",
    "type",
    "appellation",
    "vintage",
    "producer",
    "region",
    "supplier",
    "location",
    "quantity",
    "minStock",
    "maxStock",
    "initialQuantity",
    "sellPrice",
    "dateAdded",
]
SALE_COLUMNS = [
    "id",
    "wineId",
    "wineName",
    "wineType",
    "quantity",
    "price",
    "total",
    "type",
    "client",
    "date",
    "sellerName",
]
RULE_COLUMNS = ["id", "name", "field", "operator", "value", "message", "color"]

SLOT_COLUMNS: dict[SlotName, List[str]] = {
    SlotName.WINES: WINE_COLUMNS,
    SlotName.SALES: SALE_COLUMNS,
    SlotName.RULES: RULE_COLUMNS,
}

EXPORT_HEADERS = [
    "Date",
    "Vin",
    "Type Vin",
    "Quantite",
    "Prix Unitaire (FCFA)",
    "Total (FCFA)",
    "Client / Destination",
    "Type Flux",
    "Vendeur",
]
EXPORT_DATE_FORMAT = "%d/%m/%Y"

_EPOCH = datetime.fromtimestamp(0, UTC)


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    shop_name: str
    schema_version: str
    default_role: UserRole
    default_user_name: str


class WorkbookSlotBackend:
    """Slot backend storing each slot as a worksheet of an open workbook.

    Writes only touch the in-memory workbook unless ``autosave`` is set, in
    which case every slot write is followed by a save to ``data_file``.
    """

    def __init__(self, workbook: Workbook, data_file: Path, *, autosave: bool = False) -> None:
        self.workbook = workbook
        self.data_file = data_file
        self.autosave = autosave

    def read(self, slot: SlotName) -> Optional[List[Sequence[object]]]:
        return read_slot(self.workbook, slot)

    def write(self, slot: SlotName, rows: Sequence[Sequence[object]]) -> None:
        write_slot(self.workbook, slot, rows)
        if self.autosave:
            save_workbook(self.workbook, self.data_file)


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If no ``CONFIG_FILE_NAME`` exists in the working
            directory or any of its parents.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute. ``~`` is expanded.

    Returns:
        configparser.ConfigParser: Parser containing the raw configuration.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    The ``[System]`` section is mandatory. The ``[Session]`` section is
    optional and defaults to an Administrator session whose user name comes
    from :data:`~vinstock.constants.DEFAULT_USER_NAMES`. Relative ``DataFile``
    entries are anchored to ``base_path`` (or the working directory).

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If ``Session.Role`` is not a known role.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        shop_name = parser.get("System", "ShopName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    role = UserRole(parser.get("Session", "Role", fallback=UserRole.ADMINISTRATOR.value))
    user_name = parser.get("Session", "UserName", fallback=DEFAULT_USER_NAMES[role])

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        shop_name=shop_name,
        schema_version=schema_version,
        default_role=role,
        default_user_name=user_name,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the master Excel workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    wb = openpyxl.load_workbook(data_file)
    return wb


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to ``destination``, creating parent folders."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def read_slot(workbook: Workbook, slot: SlotName) -> Optional[List[Sequence[object]]]:
    """Return the raw rows stored in ``slot``.

    The header row and fully empty rows are skipped.

    Returns:
        list[Sequence[object]] | None: Rows in worksheet order, or ``None``
            when the workbook has no worksheet for the slot.
    """

    if slot.value not in workbook.sheetnames:
        return None
    sheet = workbook[slot.value]
    return [
        raw
        for raw in sheet.iter_rows(min_row=2, values_only=True)
        if any(cell is not None for cell in raw)
    ]


def write_slot(workbook: Workbook, slot: SlotName, rows: Sequence[Sequence[object]]) -> None:
    """Replace the whole content of ``slot`` with ``rows``.

    A missing worksheet is created with a bold header. Existing data rows are
    dropped before the new rows are appended, so the slot always mirrors the
    collection it was given.
    """

    if slot.value in workbook.sheetnames:
        sheet = workbook[slot.value]
        if sheet.max_row > 1:
            sheet.delete_rows(2, sheet.max_row - 1)
    else:
        sheet = create_slot_sheet(workbook, slot)

    # Explicit indexes: append() keeps its cursor past deleted rows.
    for row_index, row in enumerate(rows, start=2):
        for column_index, value in enumerate(row, start=1):
            cell = sheet.cell(row=row_index, column=column_index, value=value)
            if isinstance(value, str):
                # Text starting with "=" stays text, never a formula.
                cell.data_type = "s"
    log.debug("Wrote %d rows to slot '%s'", len(rows), slot.value)


def create_slot_sheet(workbook: Workbook, slot: SlotName):
    """Create the worksheet backing ``slot`` with its bold header row."""

    sheet = workbook.create_sheet(title=slot.value)
    bold_font = Font(bold=True)
    for column_index, column_name in enumerate(SLOT_COLUMNS[slot], start=1):
        cell = sheet.cell(row=1, column=column_index)
        cell.value = column_name
        cell.font = bold_font
    return sheet


def serialize_wine(record: Wine) -> list[object]:
    """Convert a wine into the ``wines`` slot column ordering."""

    return [
        record.id,
        record.name,
        record.type.value,
        record.appellation,
        record.vintage,
        record.producer,
        record.region,
        record.supplier,
        record.location,
        record.quantity,
        record.min_stock,
        record.max_stock,
        record.initial_quantity,
        record.sell_price,
        record.date_added.isoformat(),
    ]


def serialize_transaction(record: Transaction) -> list[object]:
    """Convert a transaction into the ``sales`` slot column ordering."""

    return [
        record.id,
        record.wine_id,
        record.wine_name,
        record.wine_type.value,
        record.quantity,
        record.price,
        record.total,
        record.type.value,
        record.client,
        record.date.isoformat(),
        record.seller_name,
    ]


def serialize_rule(record: AlertRule) -> list[object]:
    """Convert an alert rule into the ``rules`` slot column ordering."""

    return [
        record.id,
        record.name,
        record.field,
        record.operator,
        record.value,
        record.message,
        record.color,
    ]


def _as_text(raw: object) -> str:
    return str(raw) if raw is not None else ""


def _as_int(raw: object) -> int:
    if raw is None or raw == "":
        return 0
    try:
        return int(Decimal(str(raw)))
    except InvalidOperation as exc:
        raise ValueError(f"Not an integer cell value: {raw!r}") from exc


def _as_datetime(raw: object) -> datetime:
    if raw is None or raw == "":
        return _EPOCH
    moment = raw if isinstance(raw, datetime) else datetime.fromisoformat(str(raw))
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment


def _pad(raw_row: Sequence[object], width: int) -> list[object]:
    values = list(raw_row[:width])
    values.extend([None] * (width - len(values)))
    return values


def deserialize_wine(raw_row: Sequence[object]) -> Wine:
    """Convert a raw ``wines`` row into a :class:`Wine`.

    Numeric cells are normalized to ``int``, text cells to ``str`` (blank
    cells become empty strings), and ``dateAdded`` is parsed from ISO-8601.
    """

    (
        wine_id,
        name,
        wine_type,
        appellation,
        vintage,
        producer,
        region,
        supplier,
        location,
        quantity,
        min_stock,
        max_stock,
        initial_quantity,
        sell_price,
        date_added,
    ) = _pad(raw_row, len(WINE_COLUMNS))

    return Wine(
        id=_as_text(wine_id),
        name=_as_text(name),
        type=WineType(wine_type),
        appellation=_as_text(appellation),
        vintage=_as_text(vintage),
        producer=_as_text(producer),
        region=_as_text(region),
        supplier=_as_text(supplier),
        location=_as_text(location),
        quantity=_as_int(quantity),
        min_stock=_as_int(min_stock),
        max_stock=_as_int(max_stock),
        initial_quantity=_as_int(initial_quantity),
        sell_price=_as_int(sell_price),
        date_added=_as_datetime(date_added),
    )


def deserialize_transaction(raw_row: Sequence[object]) -> Transaction:
    """Convert a raw ``sales`` row into a :class:`Transaction`."""

    (
        transaction_id,
        wine_id,
        wine_name,
        wine_type,
        quantity,
        price,
        total,
        transaction_type,
        client,
        date,
        seller_name,
    ) = _pad(raw_row, len(SALE_COLUMNS))

    return Transaction(
        id=_as_text(transaction_id),
        wine_id=_as_text(wine_id),
        wine_name=_as_text(wine_name),
        wine_type=WineType(wine_type),
        quantity=_as_int(quantity),
        price=_as_int(price),
        total=_as_int(total),
        type=TransactionType(transaction_type),
        client=_as_text(client),
        date=_as_datetime(date),
        seller_name=_as_text(seller_name),
    )


def deserialize_rule(raw_row: Sequence[object]) -> AlertRule:
    """Convert a raw ``rules`` row into an :class:`AlertRule`.

    ``field`` and ``operator`` are kept verbatim; unknown names are tolerated
    here and simply never match during evaluation. ``value`` keeps the cell
    type (number or text).
    """

    rule_id, name, field, operator, value, message, color = _pad(raw_row, len(RULE_COLUMNS))
    return AlertRule(
        id=_as_text(rule_id),
        name=_as_text(name),
        field=_as_text(field),
        operator=_as_text(operator),
        value=value if value is not None else "",
        message=_as_text(message),
        color=_as_text(color) or DEFAULT_RULE_COLOR,
    )


def _strip_commas(text: str) -> str:
    return text.replace(",", " ")


def format_export_row(record: Transaction) -> str:
    """Render one ledger row for the CSV export.

    Commas inside free-text cells are replaced by spaces; nothing is quoted.
    """

    return ",".join(
        [
            record.date.strftime(EXPORT_DATE_FORMAT),
            _strip_commas(record.wine_name),
            record.wine_type.value,
            str(record.quantity),
            str(record.price),
            str(record.total),
            _strip_commas(record.client),
            record.type.value,
            _strip_commas(record.seller_name),
        ]
    )


def render_export(transactions: Iterable[Transaction]) -> str:
    """Render the header and every ledger row as newline-separated CSV text."""

    lines = [",".join(EXPORT_HEADERS)]
    lines.extend(format_export_row(record) for record in transactions)
    return "\n".join(lines)


def write_export(destination: Path, content: str) -> Path:
    """Write rendered CSV ``content`` to ``destination`` as UTF-8."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    dest.write_text(content, encoding="utf-8")
    return dest
