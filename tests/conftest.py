"""Shared pytest fixtures and utilities for distributor ledger tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator, Optional
from unittest.mock import Mock

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

for candidate in (SRC_DIR, PROJECT_ROOT):
    candidate_str = str(candidate)
    if candidate_str not in sys.path:
        sys.path.insert(0, candidate_str)

from distributor_ledger import cli, constants, core_logic, data_manager  # noqa: E402
from setup_excel import create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
DEFAULT_ACTOR_ID = "DIST-TEST"
SAMPLE_PRODUCT_NAME = "On&On 9e5 Premium Health Drink"
PURCHASE_MOMENT = datetime(2024, 5, 1, 9, 30, tzinfo=UTC)
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "BusinessName = {business_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Defaults]\n"
    "ActorID = {default_actor_id}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    default_actor_id: str
    schema_version: str
    business_name: str


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
        default_actor_id: str = DEFAULT_ACTOR_ID,
        filename: str = "master_workbook.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, default_actor_id=default_actor_id, overwrite=True)
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
        business_name: str = "Test Distribution",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        default_actor_id: str = DEFAULT_ACTOR_ID,
        extra_defaults: str = "",
    ) -> ConfigBundle:
        bundle_id = uuid.uuid4().hex
        bundle_dir = tmp_path / f"bundle_{bundle_id}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(
            subdir=f"bundle_{bundle_id}",
            default_actor_id=default_actor_id,
        )
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                business_name=business_name,
                schema_version=schema_version,
                default_actor_id=default_actor_id,
            )
            + extra_defaults,
            encoding="utf-8",
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            default_actor_id=default_actor_id,
            schema_version=schema_version,
            business_name=business_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(
        config_file,
        id_allocator=core_logic.SequentialIdAllocator(),
    )
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="ledger-cli", description="Ledger CLI")


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


# ---------------------------------------------------------------------------
# Core logic fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "master_workbook.xlsx",
        business_name="Test Distribution",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        default_actor_id=DEFAULT_ACTOR_ID,
    )


@pytest.fixture
def id_allocator() -> core_logic.SequentialIdAllocator:
    """Deterministic identifiers: T000001, L000002, N000003, ..."""

    return core_logic.SequentialIdAllocator()


@pytest.fixture
def product_factory() -> Callable[..., data_manager.ProductRow]:
    """Build catalog products defaulting to the sample health drink."""

    def _make(
        product_id: str = "P1",
        *,
        name: str = SAMPLE_PRODUCT_NAME,
        distributor_price: str = "1800",
        retail_price: str = "2450",
        stock: int = 25,
        category: str = "Health",
        is_active: bool = True,
    ) -> data_manager.ProductRow:
        return data_manager.ProductRow(
            product_id=product_id,
            product_name=name,
            category=category,
            distributor_price=Decimal(distributor_price),
            retail_price=Decimal(retail_price),
            stock_quantity=stock,
            is_active=is_active,
        )

    return _make


@pytest.fixture
def snapshot_factory(product_factory) -> Callable[..., data_manager.Snapshot]:
    """Build snapshots for an actor with 100000 invested and nothing spent."""

    def _make(
        *,
        products: Optional[tuple[data_manager.ProductRow, ...]] = None,
        purchases: tuple[data_manager.PurchaseRow, ...] = (),
        lots: tuple[data_manager.LotRow, ...] = (),
        invested: str = "100000",
        spent: str = "0",
        sales_target: str = "0",
    ) -> data_manager.Snapshot:
        return data_manager.Snapshot(
            products=products if products is not None else (product_factory(),),
            purchases=purchases,
            lots=lots,
            actor=data_manager.ActorRow(
                actor_id=DEFAULT_ACTOR_ID,
                actor_name="Test Distributor",
                capital_invested=Decimal(invested),
                capital_spent=Decimal(spent),
                sales_target=Decimal(sales_target),
            ),
        )

    return _make


@pytest.fixture
def sample_snapshot(snapshot_factory) -> data_manager.Snapshot:
    return snapshot_factory()


@pytest.fixture
def workbook() -> Mock:
    """Return a mock workbook object for business logic tests."""

    return Mock(name="workbook")


@pytest.fixture
def write_snapshot_mock(monkeypatch: pytest.MonkeyPatch) -> Mock:
    """Replace ``data_manager.write_snapshot`` so mock workbooks can be committed."""

    write_snapshot = Mock(name="write_snapshot")
    monkeypatch.setattr(data_manager, "write_snapshot", write_snapshot)
    return write_snapshot


@pytest.fixture
def context(
    settings: data_manager.ConfigSettings,
    workbook: Mock,
    sample_snapshot: data_manager.Snapshot,
    id_allocator: core_logic.SequentialIdAllocator,
    write_snapshot_mock: Mock,
) -> core_logic.RuntimeContext:
    """Assemble a runtime context from injected settings and workbook mocks."""

    return core_logic.RuntimeContext(
        settings=settings,
        workbook=workbook,
        snapshot=sample_snapshot,
        id_allocator=id_allocator,
    )


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch ``core_logic.datetime`` to return a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(core_logic, "datetime", _FixedDateTime)
        return moment

    return _apply


@pytest.fixture
def purchased_snapshot(sample_snapshot, id_allocator) -> data_manager.Snapshot:
    """Sample snapshot after buying 10 units: held lot ``L000002`` of 10 units."""

    command = core_logic.PurchaseCommand(
        actor_id=DEFAULT_ACTOR_ID,
        items=(core_logic.PurchaseLine("P1", 10),),
        timestamp=PURCHASE_MOMENT,
    )
    return core_logic.purchase(sample_snapshot, command, id_allocator=id_allocator).snapshot
