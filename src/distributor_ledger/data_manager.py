"""Data access layer for the distributor ledger.

This module provides the record types shared by every layer and the low-level
helpers that read from and write to the master workbook. Business logic
belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Snapshot operations: loading the whole ledger state into an immutable
   :class:`Snapshot` and writing a snapshot back sheet by sheet.
"""


from __future__ import annotations

import configparser
from collections import defaultdict
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import LOW_STOCK_THRESHOLD, LifecycleState, SheetName


CONFIG_FILE_NAME = "config.ini"
PRODUCTS_SHEET = SheetName.PRODUCTS.value
ACTOR_SHEET = SheetName.ACTOR.value
PURCHASE_LEDGER_SHEET = SheetName.PURCHASE_LEDGER.value
PURCHASE_LINES_SHEET = SheetName.PURCHASE_LINES.value
INVENTORY_SHEET = SheetName.INVENTORY.value
NOTIFICATIONS_SHEET = SheetName.NOTIFICATIONS.value


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    business_name: str
    schema_version: str
    default_actor_id: str
    low_stock_threshold: int = LOW_STOCK_THRESHOLD


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet."""

    product_id: str
    product_name: str
    category: str
    distributor_price: Decimal
    retail_price: Decimal
    stock_quantity: int
    is_active: bool = True


@dataclass(frozen=True)
class LineItem:
    """One product line of a purchase, with unit prices frozen at purchase time."""

    product_id: str
    quantity: int
    unit_distributor_price: Decimal
    unit_retail_price: Decimal

    @property
    def subtotal_distributor(self) -> Decimal:
        return self.unit_distributor_price * self.quantity

    @property
    def subtotal_retail(self) -> Decimal:
        return self.unit_retail_price * self.quantity


@dataclass(frozen=True)
class PurchaseRow:
    """Immutable purchase transaction joined from the ledger and line sheets."""

    transaction_id: str
    actor_id: str
    items: tuple[LineItem, ...]
    total_paid: Decimal
    total_retail: Decimal
    timestamp: datetime


@dataclass(frozen=True)
class LotRow:
    """In-memory view of a row from the ``Inventory`` sheet."""

    lot_id: str
    product_id: str
    quantity: int
    state: LifecycleState
    note: Optional[str]
    timestamp: datetime


@dataclass(frozen=True)
class ActorRow:
    """The authenticated distributor whose capital funds purchases."""

    actor_id: str
    actor_name: str
    capital_invested: Decimal
    capital_spent: Decimal
    sales_target: Decimal

    @property
    def available_capital(self) -> Decimal:
        return self.capital_invested - self.capital_spent


@dataclass(frozen=True)
class NotificationRow:
    """In-memory view of a row from the ``Notifications`` sheet."""

    notification_id: str
    kind: str
    message: str
    timestamp: datetime


@dataclass(frozen=True)
class Snapshot:
    """Complete ledger state handed to, and returned by, every engine operation."""

    products: tuple[ProductRow, ...]
    purchases: tuple[PurchaseRow, ...]
    lots: tuple[LotRow, ...]
    actor: ActorRow
    notifications: tuple[NotificationRow, ...] = ()


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification, which allows the caller to deliberately target a
    non-standard location. When no explicit path is given the function walks up
    from the current working directory toward the filesystem root looking for a
    file named ``CONFIG_FILE_NAME``. The first match that exists on disk is
    considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search. May be relative to the current working directory.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
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

    The function expands user home references (``~``), resolves the absolute
    path, and validates that the file exists before parsing it. Validation of
    required entries happens in :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    Relative ``DataFile`` entries are expanded against ``base_path`` when
    provided, or against the current working directory as a fallback.
    ``LowStockThreshold`` is optional and defaults to
    :data:`~distributor_ledger.constants.LOW_STOCK_THRESHOLD`.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing from the
            configuration.
        ValueError: If ``LowStockThreshold`` is not a non-negative integer.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        business_name = parser.get("System", "BusinessName")
        schema_version = parser.get("System", "SchemaVersion")
        default_actor = parser.get("Defaults", "ActorID")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    threshold = parser.getint("Defaults", "LowStockThreshold", fallback=LOW_STOCK_THRESHOLD)
    if threshold < 0:
        raise ValueError(f"LowStockThreshold must be zero or positive, got {threshold}")

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        business_name=business_name,
        schema_version=schema_version,
        default_actor_id=default_actor,
        low_stock_threshold=threshold,
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
    """Persist the workbook to disk at an explicitly provided destination.

    The destination path is expanded (supporting ``~``) and resolved to an
    absolute location. Parent directories are created on demand.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def _iter_sheet_rows(workbook: Workbook, sheet_name: str) -> Iterable[Sequence[object]]:
    """Yield raw value tuples for every non-empty data row of ``sheet_name``."""

    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield raw


def iter_products(workbook: Workbook) -> Iterable[ProductRow]:
    """Iterate over product records stored on the ``Products`` worksheet."""

    for raw in _iter_sheet_rows(workbook, PRODUCTS_SHEET):
        yield deserialize_product(raw)


def iter_lots(workbook: Workbook) -> Iterable[LotRow]:
    """Iterate over inventory lots stored on the ``Inventory`` worksheet."""

    for raw in _iter_sheet_rows(workbook, INVENTORY_SHEET):
        yield deserialize_lot(raw)


def iter_notifications(workbook: Workbook) -> Iterable[NotificationRow]:
    """Iterate over notifications in the order they were emitted."""

    for raw in _iter_sheet_rows(workbook, NOTIFICATIONS_SHEET):
        yield deserialize_notification(raw)


def iter_purchases(workbook: Workbook) -> Iterable[PurchaseRow]:
    """Stream purchase transactions, joining each ledger row with its lines.

    Line rows are grouped by ``TransactionID`` and ordered by ``LineNo`` so the
    resulting :class:`PurchaseRow` reproduces the original line order. Ledger
    rows are yielded in sheet order, which is append order.
    """

    lines: Dict[str, List[tuple[int, LineItem]]] = defaultdict(list)
    for raw in _iter_sheet_rows(workbook, PURCHASE_LINES_SHEET):
        transaction_id, line_no, item = deserialize_line_item(raw)
        lines[transaction_id].append((line_no, item))

    for raw in _iter_sheet_rows(workbook, PURCHASE_LEDGER_SHEET):
        transaction_id = str(raw[0])
        ordered = tuple(item for _, item in sorted(lines.get(transaction_id, []), key=lambda pair: pair[0]))
        yield deserialize_purchase(raw, ordered)


def read_actor(workbook: Workbook) -> ActorRow:
    """Return the single actor profile stored on the ``Actor`` worksheet.

    Raises:
        KeyError: If the sheet holds no actor row.
    """

    for raw in _iter_sheet_rows(workbook, ACTOR_SHEET):
        return deserialize_actor(raw)
    raise KeyError("Actor profile not found in workbook")


def read_snapshot(workbook: Workbook) -> Snapshot:
    """Load every sheet into one immutable :class:`Snapshot`."""

    snapshot = Snapshot(
        products=tuple(iter_products(workbook)),
        purchases=tuple(iter_purchases(workbook)),
        lots=tuple(iter_lots(workbook)),
        actor=read_actor(workbook),
        notifications=tuple(iter_notifications(workbook)),
    )
    log.debug(
        "Read snapshot: %d products, %d purchases, %d lots, %d notifications",
        len(snapshot.products),
        len(snapshot.purchases),
        len(snapshot.lots),
        len(snapshot.notifications),
    )
    return snapshot


def replace_rows(workbook: Workbook, sheet_name: str, rows: Iterable[Sequence[object]]) -> None:
    """Overwrite every data row of ``sheet_name`` while keeping the header row.

    Cells are addressed explicitly because ``Worksheet.append`` keeps writing
    after the last row it ever saw, even once those rows were deleted.
    """

    sheet = workbook[sheet_name]
    if sheet.max_row > 1:
        sheet.delete_rows(2, sheet.max_row - 1)
    for row_index, row in enumerate(rows, start=2):
        for column_index, value in enumerate(row, start=1):
            sheet.cell(row=row_index, column=column_index, value=value)


def write_snapshot(workbook: Workbook, snapshot: Snapshot) -> None:
    """Write ``snapshot`` into the workbook, replacing the previous contents.

    Nothing is saved to disk here; callers persist through
    :func:`save_workbook` once the write succeeded.
    """

    replace_rows(workbook, PRODUCTS_SHEET, (serialize_product(p) for p in snapshot.products))
    replace_rows(workbook, ACTOR_SHEET, [serialize_actor(snapshot.actor)])
    replace_rows(workbook, PURCHASE_LEDGER_SHEET, (serialize_purchase(p) for p in snapshot.purchases))
    replace_rows(
        workbook,
        PURCHASE_LINES_SHEET,
        (row for purchase in snapshot.purchases for row in serialize_line_items(purchase)),
    )
    replace_rows(workbook, INVENTORY_SHEET, (serialize_lot(lot) for lot in snapshot.lots))
    replace_rows(workbook, NOTIFICATIONS_SHEET, (serialize_notification(n) for n in snapshot.notifications))


def _money(raw: object) -> Decimal:
    return Decimal(str(raw)) if raw is not None else Decimal("0")


def _quantity(raw: object) -> int:
    return int(Decimal(str(raw))) if raw is not None else 0


def _timestamp(raw: object) -> datetime:
    """Parse a stored timestamp, treating naive values as UTC."""

    moment = raw if isinstance(raw, datetime) else datetime.fromisoformat(str(raw))
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment


def _text(raw: object) -> Optional[str]:
    return str(raw) if raw is not None else None


def serialize_product(record: ProductRow) -> list[object]:
    """Convert a product dataclass into the worksheet column ordering.

    Monetary values are written as text so they survive the round trip through
    Excel without binary floating point drift.
    """

    return [
        record.product_id,
        record.product_name,
        record.category,
        str(record.distributor_price),
        str(record.retail_price),
        record.stock_quantity,
        record.is_active,
    ]


def serialize_actor(record: ActorRow) -> list[object]:
    return [
        record.actor_id,
        record.actor_name,
        str(record.capital_invested),
        str(record.capital_spent),
        str(record.sales_target),
    ]


def serialize_purchase(record: PurchaseRow) -> list[object]:
    return [
        record.transaction_id,
        record.actor_id,
        record.timestamp.isoformat(),
        str(record.total_paid),
        str(record.total_retail),
    ]


def serialize_line_items(record: PurchaseRow) -> list[list[object]]:
    """Flatten a purchase into ``PurchaseLines`` rows numbered from 1."""

    return [
        [
            record.transaction_id,
            line_no,
            item.product_id,
            item.quantity,
            str(item.unit_distributor_price),
            str(item.unit_retail_price),
        ]
        for line_no, item in enumerate(record.items, start=1)
    ]


def serialize_lot(record: LotRow) -> list[object]:
    return [
        record.lot_id,
        record.product_id,
        record.quantity,
        record.state.value,
        record.note,
        record.timestamp.isoformat(),
    ]


def serialize_notification(record: NotificationRow) -> list[object]:
    return [
        record.notification_id,
        record.timestamp.isoformat(),
        record.kind,
        record.message,
    ]


def deserialize_product(raw_row: Sequence[object]) -> ProductRow:
    """Convert a raw worksheet row into a strongly typed product record.

    Identifier and name fields are coerced to ``str`` to avoid surprises caused
    by Excel automatically interpreting numbers.
    """

    (
        product_id,
        product_name,
        category,
        distributor_raw,
        retail_raw,
        stock_raw,
        is_active,
    ) = raw_row
    return ProductRow(
        product_id=str(product_id),
        product_name=str(product_name),
        category=str(category) if category is not None else "",
        distributor_price=_money(distributor_raw),
        retail_price=_money(retail_raw),
        stock_quantity=_quantity(stock_raw),
        is_active=bool(is_active) if is_active is not None else True,
    )


def deserialize_actor(raw_row: Sequence[object]) -> ActorRow:
    actor_id, actor_name, invested_raw, spent_raw, target_raw = raw_row
    return ActorRow(
        actor_id=str(actor_id),
        actor_name=str(actor_name) if actor_name is not None else "",
        capital_invested=_money(invested_raw),
        capital_spent=_money(spent_raw),
        sales_target=_money(target_raw),
    )


def deserialize_line_item(raw_row: Sequence[object]) -> tuple[str, int, LineItem]:
    """Convert a ``PurchaseLines`` row into ``(transaction_id, line_no, item)``."""

    transaction_id, line_no, product_id, quantity_raw, unit_dp_raw, unit_rp_raw = raw_row
    item = LineItem(
        product_id=str(product_id),
        quantity=_quantity(quantity_raw),
        unit_distributor_price=_money(unit_dp_raw),
        unit_retail_price=_money(unit_rp_raw),
    )
    return str(transaction_id), _quantity(line_no), item


def deserialize_purchase(raw_row: Sequence[object], items: tuple[LineItem, ...]) -> PurchaseRow:
    """Convert a ``PurchaseLedger`` row plus its joined lines into a record.

    ``TotalPaid`` is read back as stored and never recomputed from the lines or
    from current catalog prices.
    """

    transaction_id, actor_id, timestamp_raw, total_paid_raw, total_retail_raw = raw_row
    return PurchaseRow(
        transaction_id=str(transaction_id),
        actor_id=str(actor_id),
        items=items,
        total_paid=_money(total_paid_raw),
        total_retail=_money(total_retail_raw),
        timestamp=_timestamp(timestamp_raw),
    )


def deserialize_lot(raw_row: Sequence[object]) -> LotRow:
    lot_id, product_id, quantity_raw, state_raw, note, timestamp_raw = raw_row
    return LotRow(
        lot_id=str(lot_id),
        product_id=str(product_id),
        quantity=_quantity(quantity_raw),
        state=LifecycleState(str(state_raw)),
        note=_text(note),
        timestamp=_timestamp(timestamp_raw),
    )


def deserialize_notification(raw_row: Sequence[object]) -> NotificationRow:
    notification_id, timestamp_raw, kind, message = raw_row
    return NotificationRow(
        notification_id=str(notification_id),
        kind=str(kind),
        message=str(message) if message is not None else "",
        timestamp=_timestamp(timestamp_raw),
    )
