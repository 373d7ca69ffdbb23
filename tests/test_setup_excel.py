"""Tests for the workbook bootstrap script."""

from __future__ import annotations

import openpyxl
import pytest

from vinstock import setup_excel
from vinstock.constants import SlotName


def test_create_master_workbook_builds_slot_sheets(tmp_path):
    """Each slot gets a worksheet whose first row is a bold header."""

    path = setup_excel.create_master_workbook(tmp_path / "data" / "cave.xlsx")

    workbook = openpyxl.load_workbook(path)
    assert workbook.sheetnames == [slot.value for slot in SlotName]
    header = workbook["sales"][1]
    assert header[0].value == "id"
    assert header[0].font.bold
    assert workbook["wines"].max_row == 1


def test_create_master_workbook_refuses_overwrite(master_workbook_path):
    """Existing files are protected unless overwrite is requested."""

    with pytest.raises(FileExistsError):
        setup_excel.create_master_workbook(master_workbook_path)
    assert setup_excel.create_master_workbook(master_workbook_path, overwrite=True) == master_workbook_path.resolve()


def test_main_creates_workbook_from_config(tmp_path, capsys):
    """main reads DataFile from the config and reports success."""

    config_path = tmp_path / "config.ini"
    config_path.write_text(
        "[System]\nDataFile = cave.xlsx\nShopName = Cave\nSchemaVersion = 1.0.0\n",
        encoding="utf-8",
    )

    assert setup_excel.main(["--config", str(config_path)]) == 0
    assert (tmp_path / "cave.xlsx").exists()
    assert "[SUCCESS]" in capsys.readouterr().out

    assert setup_excel.main(["--config", str(config_path)]) == 1
    assert "--force" in capsys.readouterr().out


def test_main_reports_missing_config(tmp_path, capsys):
    """A missing configuration file is reported as an error."""

    assert setup_excel.main(["--config", str(tmp_path / "absent.ini")]) == 1
    assert "[ERROR]" in capsys.readouterr().out
