"""Unit tests documenting the expected behavior of the data access layer."""

from __future__ import annotations

import configparser
from datetime import UTC, datetime
from pathlib import Path

import openpyxl
from openpyxl.workbook import Workbook as OpenpyxlWorkbook
import pytest

from vinstock import constants, data_manager  # noqa: E402
from vinstock.constants import SlotName, TransactionType, UserRole, WineType


def test_find_config_file_respects_explicit_path(config_file: Path):
    """Supplying an explicit path should be treated as the winning answer."""

    result = data_manager.find_config_file(config_file)
    assert result == config_file


def test_find_config_file_discovers_in_cwd(tmp_path, monkeypatch):
    """Auto-discovery should locate config.ini in the working directory tree."""

    config_dir = tmp_path / "nested"
    config_dir.mkdir(parents=True)
    config_file = config_dir / "config.ini"
    config_file.write_text("[System]\nDataFile=vinstock.xlsx")
    monkeypatch.chdir(config_dir)

    result = data_manager.find_config_file()
    assert result == config_file


def test_find_config_file_raises_when_missing(tmp_path, monkeypatch):
    """Absent configuration should surface a clear FileNotFoundError."""

    monkeypatch.chdir(tmp_path)
    with pytest.raises(FileNotFoundError):
        data_manager.find_config_file()


def test_read_config_loads_sections(config_file: Path):
    """read_config should return a populated ConfigParser."""

    parser = data_manager.read_config(config_file)
    assert parser.get("System", "ShopName") == "Cave Test"
    assert parser.get("Session", "Role") == "Administrateur"


def test_read_config_missing_file_raises(tmp_path):
    """Missing files should propagate a FileNotFoundError."""

    with pytest.raises(FileNotFoundError):
        data_manager.read_config(tmp_path / "not_there.ini")


def test_parse_settings_resolves_relative_paths(config_factory):
    """Relative DataFile entries should be anchored to the config location."""

    parser = configparser.ConfigParser()
    bundle = config_factory(make_relative=True, role=UserRole.SELLER)
    parser.read(bundle.config_path, encoding="utf-8")
    settings = data_manager.parse_settings(parser, base_path=bundle.config_path.parent)
    assert settings.data_file == (bundle.config_path.parent / bundle.workbook_path.name).resolve()
    assert settings.default_role is UserRole.SELLER
    assert settings.default_user_name == "Mamadou Vendeur"


def test_parse_settings_session_section_is_optional(tmp_path):
    """Without a [Session] section the administrator defaults apply."""

    parser = configparser.ConfigParser()
    parser.read_string("[System]\nDataFile=data.xlsx\nShopName=Cave\nSchemaVersion=1.0.0\n")
    settings = data_manager.parse_settings(parser, base_path=tmp_path)
    assert settings.default_role is UserRole.ADMINISTRATOR
    assert settings.default_user_name == "Jean Admin"
    assert settings.data_file == (tmp_path / "data.xlsx").resolve()


def test_parse_settings_requires_expected_sections(tmp_path):
    """Missing keys should result in a descriptive KeyError."""

    parser = configparser.ConfigParser()
    parser.read_string("[Other]\nvalue=1")
    with pytest.raises(KeyError):
        data_manager.parse_settings(parser, base_path=tmp_path)


def test_parse_settings_rejects_unknown_role(tmp_path):
    """Session roles must be one of the known role labels."""

    parser = configparser.ConfigParser()
    parser.read_string(
        "[System]\nDataFile=data.xlsx\nShopName=Cave\nSchemaVersion=1.0.0\n[Session]\nRole=Caviste\n"
    )
    with pytest.raises(ValueError):
        data_manager.parse_settings(parser, base_path=tmp_path)


# ---------------------------------------------------------------------------
# Workbook lifecycle
# ---------------------------------------------------------------------------


def test_open_workbook_returns_openpyxl_instance(master_workbook_path):
    """open_workbook should hand back a loaded Workbook object."""

    workbook = data_manager.open_workbook(master_workbook_path)
    assert isinstance(workbook, OpenpyxlWorkbook)
    assert workbook.sheetnames == ["wines", "sales", "rules"]


def test_open_workbook_missing_file_raises(tmp_path):
    """Missing workbook files should yield FileNotFoundError."""

    with pytest.raises(FileNotFoundError):
        data_manager.open_workbook(tmp_path / "missing.xlsx")


def test_save_workbook_with_destination_creates_copy(master_workbook_path, tmp_path):
    """Providing a destination should create a new file independent of the source."""

    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.write_slot(workbook, SlotName.RULES, [["R1", "Rule", "quantity", "less", 5, "msg", "#000000"]])
    copy_path = tmp_path / "copies" / "copy.xlsx"
    data_manager.save_workbook(workbook, destination=copy_path)

    copy = openpyxl.load_workbook(copy_path)
    rows = list(copy["rules"].iter_rows(min_row=2, values_only=True))
    assert rows == [("R1", "Rule", "quantity", "less", 5, "msg", "#000000")]


def test_refresh_workbook_returns_new_instance(master_workbook_path):
    """refresh_workbook should return a freshly loaded workbook from disk."""

    original = data_manager.open_workbook(master_workbook_path)
    data_manager.write_slot(original, SlotName.RULES, [["R2", "Rule", "region", "equal", "Loire", "msg", "#8B4513"]])
    data_manager.save_workbook(original, master_workbook_path)

    refreshed = data_manager.refresh_workbook(master_workbook_path)
    assert refreshed is not original
    assert data_manager.read_slot(refreshed, SlotName.RULES)[0][0] == "R2"


# ---------------------------------------------------------------------------
# Slot operations
# ---------------------------------------------------------------------------


def test_read_slot_returns_none_for_absent_sheet():
    """A workbook without the slot's worksheet reports the slot as absent."""

    workbook = openpyxl.Workbook()
    assert data_manager.read_slot(workbook, SlotName.SALES) is None


def test_write_slot_replaces_previous_rows(master_workbook_path):
    """Writing a slot drops every earlier data row and keeps the header."""

    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.write_slot(workbook, SlotName.RULES, [["A"], ["B"], ["C"]])
    data_manager.write_slot(workbook, SlotName.RULES, [["D"]])

    sheet = workbook["rules"]
    assert sheet.cell(row=1, column=1).value == "id"
    assert [row[0] for row in data_manager.read_slot(workbook, SlotName.RULES)] == ["D"]


def test_write_slot_creates_missing_sheet():
    """A missing slot sheet is created with its bold header row."""

    workbook = openpyxl.Workbook()
    data_manager.write_slot(workbook, SlotName.WINES, [])

    sheet = workbook["wines"]
    assert [cell.value for cell in sheet[1]] == data_manager.WINE_COLUMNS
    assert sheet.cell(row=1, column=1).font.bold


def test_write_slot_stores_leading_equals_as_text(master_workbook_path):
    """Free text that looks like a formula is saved as a plain string."""

    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.write_slot(workbook, SlotName.RULES, [["R1", "=SUM(A1)"]])
    assert workbook["rules"].cell(row=2, column=2).data_type == "s"
    data_manager.save_workbook(workbook, master_workbook_path)

    cell = data_manager.open_workbook(master_workbook_path)["rules"].cell(row=2, column=2)
    assert cell.data_type == "s"
    assert cell.value == "=SUM(A1)"


def test_workbook_backend_autosave_writes_file(master_workbook_path, make_rule):
    """With autosave enabled every slot write is flushed to disk."""

    workbook = data_manager.open_workbook(master_workbook_path)
    backend = data_manager.WorkbookSlotBackend(workbook, master_workbook_path, autosave=True)
    backend.write(SlotName.RULES, [data_manager.serialize_rule(make_rule())])

    reloaded = data_manager.open_workbook(master_workbook_path)
    assert data_manager.read_slot(reloaded, SlotName.RULES)[0][0] == "R1"


# ---------------------------------------------------------------------------
# Row conversion
# ---------------------------------------------------------------------------


def test_deserialize_wine_normalizes_cells():
    """Numeric cells become ints, blanks become empty text."""

    row = [
        7,
        "Chablis",
        "Blanc",
        "Chablis",
        2019,
        "William Fèvre",
        None,
        None,
        "Cave B",
        "6",
        2.0,
        30,
        6,
        "18000",
        "2024-01-02T03:04:05+00:00",
    ]

    wine = data_manager.deserialize_wine(row)

    assert wine.id == "7"
    assert wine.type is WineType.BLANC
    assert wine.vintage == "2019"
    assert wine.region == ""
    assert wine.quantity == 6
    assert wine.min_stock == 2
    assert wine.sell_price == 18000
    assert wine.date_added == datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)


def test_deserialize_wine_rejects_non_numeric_quantity():
    """Unparseable numeric cells raise ValueError."""

    row = ["1", "X", "Rouge", "A", "", "P", "", "", "", "many", 0, 0, 0, 0, None]
    with pytest.raises(ValueError):
        data_manager.deserialize_wine(row)


def test_transaction_row_survives_workbook_round_trip(master_workbook_path, make_transaction):
    """A serialized transaction reads back identical from a saved workbook."""

    transaction = make_transaction(type=TransactionType.PEREMPTION, client=constants.ADJUSTMENT_CLIENT)
    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.write_slot(workbook, SlotName.SALES, [data_manager.serialize_transaction(transaction)])
    data_manager.save_workbook(workbook, master_workbook_path)

    rows = data_manager.read_slot(data_manager.open_workbook(master_workbook_path), SlotName.SALES)
    assert data_manager.deserialize_transaction(rows[0]) == transaction


def test_deserialize_rule_keeps_unknown_names_and_defaults_color():
    """Stored rules keep field/operator verbatim; a blank color gets the default."""

    rule = data_manager.deserialize_rule(["R1", "Odd", "colour", "between", 3, "msg"])

    assert rule.field == "colour"
    assert rule.operator == "between"
    assert rule.operator_kind is None
    assert rule.value == 3
    assert rule.color == constants.DEFAULT_RULE_COLOR


# ---------------------------------------------------------------------------
# CSV export
# ---------------------------------------------------------------------------


def test_format_export_row_strips_commas(make_transaction):
    """Commas in free text are replaced by spaces; nothing is quoted."""

    transaction = make_transaction(
        wine_name="Vin, rouge",
        client="Restaurant Le Baobab, Dakar",
        quantity=3,
        price=5000,
        total=15000,
        date=datetime(2024, 12, 1, 18, 0, tzinfo=UTC),
    )

    assert data_manager.format_export_row(transaction) == (
        "01/12/2024,Vin  rouge,Rouge,3,5000,15000,Restaurant Le Baobab  Dakar,Vente,Jean Admin"
    )


def test_render_export_starts_with_header(make_transaction):
    """The rendered export holds the header followed by one line per row."""

    content = data_manager.render_export([make_transaction(), make_transaction(id="T2")])

    lines = content.split("\n")
    assert lines[0].startswith("Date,Vin,Type Vin,Quantite")
    assert len(lines) == 3
