"""Shared pytest fixtures for the warehouse admin test suite."""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from itertools import count
from pathlib import Path
from typing import Callable, Iterator
from unittest.mock import Mock

import pytest

# Make ``src`` importable when the package is not installed.
SRC_DIR = Path(__file__).resolve().parents[1] / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from warehouse_admin import constants, core_logic, data_manager  # noqa: E402
from warehouse_admin.setup_excel import create_master_workbook  # noqa: E402

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "admin-pass-123"
FIXED_NOW = datetime(2024, 3, 20, 9, 30, tzinfo=UTC)

CONFIG_TEXT = """\
[System]
DataFile = {data_file}
WarehouseName = {warehouse_name}
SchemaVersion = {schema_version}

[Defaults]
AdminEmail = {admin_email}
"""


@dataclass(frozen=True)
class ConfigBundle:
    """Paths and values behind one generated ``config.ini``."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    warehouse_name: str
    admin_email: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    saved = list(sys.path)
    yield
    sys.path[:] = saved


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Create seeded master workbooks under ``tmp_path``."""

    def _build(
        *,
        folder: Path | None = None,
        admin_email: str = ADMIN_EMAIL,
        filename: str = "master_workbook.xlsx",
    ) -> Path:
        target_dir = folder or tmp_path
        target_dir.mkdir(parents=True, exist_ok=True)
        return create_master_workbook(
            target_dir / filename,
            admin_email=admin_email,
            admin_password=ADMIN_PASSWORD,
            overwrite=True,
        )

    return _build


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Write a config file plus its workbook into a fresh folder per call.

    ``dashboard`` is appended verbatim so tests can add a ``[Dashboard]``
    section.
    """

    serial = count(1)

    def _build(
        *,
        make_relative: bool = False,
        warehouse_name: str = "Test Warehouse",
        schema_version: str = constants.EXPECTED_SCHEMA_VERSION,
        admin_email: str = ADMIN_EMAIL,
        dashboard: str = "",
    ) -> ConfigBundle:
        folder = tmp_path / f"site_{next(serial)}"
        workbook_path = workbook_factory(folder=folder, admin_email=admin_email)
        config_path = folder / "config.ini"
        text = CONFIG_TEXT.format(
            data_file=workbook_path.name if make_relative else workbook_path,
            warehouse_name=warehouse_name,
            schema_version=schema_version,
            admin_email=admin_email,
        )
        config_path.write_text(text + dashboard, encoding="utf-8")
        return ConfigBundle(folder, config_path, workbook_path, schema_version, warehouse_name, admin_email)

    return _build


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """A context loaded from disk the same way the CLI loads it."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# Parser fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    return argparse.ArgumentParser(prog="warehouse-cli", description="Warehouse CLI")


@pytest.fixture
def subparsers_action(cli_parser: argparse.ArgumentParser) -> argparse._SubParsersAction:
    return cli_parser.add_subparsers(dest="command")


# ---------------------------------------------------------------------------
# Mocked workbook fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    return data_manager.ConfigSettings(
        data_file=tmp_path / "master_workbook.xlsx",
        warehouse_name="Test Warehouse",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        admin_email=ADMIN_EMAIL,
    )


@pytest.fixture
def workbook() -> Mock:
    return Mock(name="workbook")


@pytest.fixture
def context(settings: data_manager.ConfigSettings, workbook: Mock) -> core_logic.RuntimeContext:
    """Runtime context over a mock workbook; row readers are patched per test."""

    return core_logic.RuntimeContext(settings=settings, workbook=workbook)


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Freeze ``core_logic``'s clock at the given moment."""

    def _freeze(moment: datetime) -> datetime:
        class _FrozenClock:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(core_logic, "datetime", _FrozenClock)
        return moment

    return _freeze



@pytest.fixture
def make_product() -> Callable[..., data_manager.ProductRow]:
    """Build product rows with sensible defaults."""

    def _make(
        product_id: str = "P1",
        sku: str = "SKU-1",
        *,
        quantity: int = 10,
        min_stock_level: int = 2,
        unit_cbm: Decimal = Decimal("0.5"),
        name: str = "Widget",
        vendor_number: str = "V-100",
    ) -> data_manager.ProductRow:
        return data_manager.ProductRow(
            product_id=product_id,
            sku=sku,
            name=name,
            quantity=quantity,
            min_stock_level=min_stock_level,
            unit_cbm=unit_cbm,
            location="A-01",
            vendor_number=vendor_number,
            created_at=FIXED_NOW,
            updated_at=FIXED_NOW,
        )

    return _make


@pytest.fixture
def make_transaction() -> Callable[..., data_manager.TransactionRow]:
    """Build workflow rows with sensible defaults."""

    def _make(
        transaction_id: str = "T1",
        workflow_number: str = "WF0324-001",
        *,
        transaction_type: str = "inbound",
        product_id: str = "P1",
        quantity: int = 5,
        status: str = "pending",
        created_at: datetime = FIXED_NOW,
    ) -> data_manager.TransactionRow:
        return data_manager.TransactionRow(
            transaction_id=transaction_id,
            workflow_number=workflow_number,
            transaction_type=transaction_type,
            product_id=product_id,
            quantity=quantity,
            status=status,
            reference_number="REF-1",
            handler_name="Dana",
            notes=None,
            created_at=created_at,
            updated_at=created_at,
        )

    return _make
