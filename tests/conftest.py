"""Shared pytest fixtures and utilities for VinStock tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Sequence
from unittest.mock import Mock

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

for candidate in (SRC_DIR, PROJECT_ROOT):
    candidate_str = str(candidate)
    if candidate_str not in sys.path:
        sys.path.insert(0, candidate_str)

from vinstock import cli, constants, core_logic, data_manager  # noqa: E402
from vinstock.models import AlertRule, Transaction, Wine  # noqa: E402
from vinstock.setup_excel import create_master_workbook  # noqa: E402
from vinstock.store import StateStore  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
FIXED_NOW = datetime(2024, 5, 15, 10, 30, tzinfo=UTC)
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "ShopName = {shop_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Session]\n"
    "Role = {role}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    shop_name: str


class MemorySlotBackend:
    """Dictionary-backed slot storage that records every write."""

    def __init__(self, slots: Optional[Dict[constants.SlotName, List[Sequence[object]]]] = None) -> None:
        self.slots: Dict[constants.SlotName, List[Sequence[object]]] = dict(slots or {})
        self.writes: List[constants.SlotName] = []

    def read(self, slot: constants.SlotName) -> Optional[List[Sequence[object]]]:
        rows = self.slots.get(slot)
        return None if rows is None else list(rows)

    def write(self, slot: constants.SlotName, rows: Sequence[Sequence[object]]) -> None:
        self.slots[slot] = [list(row) for row in rows]
        self.writes.append(slot)


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized master workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        filename: str = "vinstock.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh master workbook ready for use in a test."""

    unique_dir = f"workbook_{uuid.uuid4().hex}"
    return workbook_factory(subdir=unique_dir)


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        shop_name: str = "Cave Test",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        role: constants.UserRole = constants.UserRole.ADMINISTRATOR,
    ) -> ConfigBundle:
        bundle_id = uuid.uuid4().hex
        bundle_dir = tmp_path / f"bundle_{bundle_id}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(subdir=f"bundle_{bundle_id}")
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                shop_name=shop_name,
                schema_version=schema_version,
                role=role.value,
            ),
            encoding="utf-8",
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
            shop_name=shop_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


# ---------------------------------------------------------------------------
# Domain record factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_wine() -> Callable[..., Wine]:
    """Build a wine with sensible defaults; keyword arguments override."""

    def _make(**overrides: object) -> Wine:
        values: Dict[str, object] = dict(
            id="W1",
            name="Test Wine",
            type=constants.WineType.ROUGE,
            appellation="Bordeaux",
            vintage="2020",
            producer="Domaine Test",
            region="Bordeaux",
            supplier="Fournisseur",
            location="Cave A",
            quantity=12,
            min_stock=3,
            max_stock=24,
            initial_quantity=12,
            sell_price=10000,
            date_added=FIXED_NOW,
        )
        values.update(overrides)
        return Wine(**values)  # type: ignore[arg-type]

    return _make


@pytest.fixture
def make_transaction() -> Callable[..., Transaction]:
    """Build a ledger entry with sensible defaults; keyword arguments override."""

    def _make(**overrides: object) -> Transaction:
        values: Dict[str, object] = dict(
            id="T1",
            wine_id="W1",
            wine_name="Test Wine",
            wine_type=constants.WineType.ROUGE,
            quantity=1,
            price=10000,
            total=10000,
            type=constants.TransactionType.VENTE,
            client=constants.COUNTER_CLIENT,
            date=FIXED_NOW,
            seller_name="Jean Admin",
        )
        values.update(overrides)
        return Transaction(**values)  # type: ignore[arg-type]

    return _make


@pytest.fixture
def make_rule() -> Callable[..., AlertRule]:
    """Build an alert rule with sensible defaults; keyword arguments override."""

    def _make(**overrides: object) -> AlertRule:
        values: Dict[str, object] = dict(
            id="R1",
            name="Rule",
            field="quantity",
            operator="less",
            value=10,
            message="Alert for {name}",
        )
        values.update(overrides)
        return AlertRule(**values)  # type: ignore[arg-type]

    return _make


# ---------------------------------------------------------------------------
# Core logic fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "vinstock.xlsx",
        shop_name="Cave Test",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        default_role=constants.UserRole.ADMINISTRATOR,
        default_user_name="Jean Admin",
    )


@pytest.fixture
def workbook() -> Mock:
    """Return a mock workbook object for business logic tests."""

    return Mock(name="workbook")


@pytest.fixture
def backend() -> MemorySlotBackend:
    """Return an empty in-memory slot backend."""

    return MemorySlotBackend()


@pytest.fixture
def store(backend: MemorySlotBackend) -> StateStore:
    """Return a store loaded from ``backend`` (seeded with the catalog)."""

    state = StateStore(backend)
    state.load(now=FIXED_NOW)
    return state


@pytest.fixture
def admin_session() -> core_logic.Session:
    return core_logic.make_session(constants.UserRole.ADMINISTRATOR)


@pytest.fixture
def seller_session() -> core_logic.Session:
    return core_logic.make_session(constants.UserRole.SELLER)


@pytest.fixture
def context(
    settings: data_manager.ConfigSettings,
    workbook: Mock,
    store: StateStore,
    admin_session: core_logic.Session,
) -> core_logic.RuntimeContext:
    """Assemble an administrator runtime context around an in-memory store."""

    return core_logic.RuntimeContext(settings=settings, workbook=workbook, store=store, session=admin_session)


@pytest.fixture
def seller_context(
    context: core_logic.RuntimeContext,
    seller_session: core_logic.Session,
) -> core_logic.RuntimeContext:
    """Same store as ``context`` but with a seller session."""

    return core_logic.RuntimeContext(
        settings=context.settings,
        workbook=context.workbook,
        store=context.store,
        session=seller_session,
    )


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file, now=FIXED_NOW)
    core_logic.ensure_schema_version(context)
    return context


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Pin the clock used by ``core_logic`` to a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        def _fixed(candidate: Optional[datetime]) -> datetime:
            return candidate if candidate is not None else moment

        monkeypatch.setattr(core_logic, "_resolve_timestamp", _fixed)
        return moment

    return _apply


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="vinstock-cli", description="VinStock CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]
