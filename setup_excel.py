"""Utility for initializing the distributor ledger master workbook.

The module doubles as a script (``python setup_excel.py``) and as a library
used by tests or other tooling. It writes one sheet per ledger collection with
a bold header row and seeds the ``Actor`` sheet with the configured actor.
"""

from __future__ import annotations

import argparse
import configparser
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, MutableMapping, Sequence
import sys

import openpyxl
from openpyxl.styles import Font

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    "Products": [
        "ProductID",
        "ProductName",
        "Category",
        "DistributorPrice",
        "RetailPrice",
        "StockQuantity",
        "IsActive",
    ],
    "Actor": [
        "ActorID",
        "ActorName",
        "CapitalInvested",
        "CapitalSpent",
        "SalesTarget",
    ],
    "PurchaseLedger": [
        "TransactionID",
        "ActorID",
        "Timestamp",
        "TotalPaid",
        "TotalRetail",
    ],
    "PurchaseLines": [
        "TransactionID",
        "LineNo",
        "ProductID",
        "Quantity",
        "UnitDistributorPrice",
        "UnitRetailPrice",
    ],
    "Inventory": [
        "LotID",
        "ProductID",
        "Quantity",
        "State",
        "Note",
        "Timestamp",
    ],
    "Notifications": [
        "NotificationID",
        "Timestamp",
        "Kind",
        "Message",
    ],
}

# A fresh actor has no capital and no sales target yet.
DEFAULT_ACTOR: MutableMapping[str, object] = {
    "ActorID": "DIST-0001",
    "ActorName": "Distributor",
    "CapitalInvested": "0",
    "CapitalSpent": "0",
    "SalesTarget": "0",
}

CONFIG_FILE = "config.ini"


@dataclass(frozen=True)
class SetupSettings:
    """Configuration values used while bootstrapping the workbook."""

    data_file: Path
    default_actor_id: str
    actor_name: str


def load_settings(config_path: Path) -> SetupSettings:
    """Read ``config.ini`` and produce :class:`SetupSettings`.

    Relative ``DataFile`` entries are resolved against the config file's
    directory. ``[Defaults] ActorName`` is optional.
    """

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)

    try:
        data_file_raw = parser.get("System", "DataFile")
        default_actor_id = parser.get("Defaults", "ActorID")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc
    actor_name = parser.get("Defaults", "ActorName", fallback=str(DEFAULT_ACTOR["ActorName"]))

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        data_file_path = (config_path.parent / data_file_path).resolve()

    return SetupSettings(
        data_file=data_file_path,
        default_actor_id=default_actor_id,
        actor_name=actor_name,
    )


def create_master_workbook(
    destination: Path,
    *,
    default_actor_id: str,
    actor_name: str | None = None,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    default_actor_template: Mapping[str, object] = DEFAULT_ACTOR,
    overwrite: bool = False,
) -> Path:
    """Create the distributor ledger master workbook at ``destination``.

    Raises:
        FileExistsError: If the target exists and ``overwrite`` is ``False``.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing master workbook: {destination}"
        )

    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()

    # openpyxl always starts with a sheet called "Sheet".
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)

    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font

    actor = dict(default_actor_template)
    actor["ActorID"] = default_actor_id
    if actor_name is not None:
        actor["ActorName"] = actor_name
    workbook["Actor"].append([actor[column] for column in sheet_columns["Actor"]])

    workbook.save(destination)
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the workbook described by ``config_path``."""

    settings = load_settings(config_path)
    return create_master_workbook(
        settings.data_file,
        default_actor_id=settings.default_actor_id,
        actor_name=settings.actor_name,
        overwrite=overwrite,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize the distributor ledger data file")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Distributor Ledger Setup ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force)
    except (FileNotFoundError, KeyError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except OSError as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created master workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
