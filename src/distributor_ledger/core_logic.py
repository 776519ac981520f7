"""Business logic layer for the distributor ledger.

This module contains the rule engine for the purchase ledger, the stock-pool
catalog and the inventory lot state machine. Every operation takes an
immutable :class:`~distributor_ledger.data_manager.Snapshot` and either
rejects the request before touching anything or returns a brand new snapshot.
The ``record_*`` helpers bind those pure operations to a
:class:`RuntimeContext` so the host only ever swaps in fully built state.
"""

from __future__ import annotations

import itertools
import uuid
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Protocol, Sequence

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import (
    CURRENCY_SYMBOL,
    EXPECTED_SCHEMA_VERSION,
    LOW_STOCK_THRESHOLD,
    MOVE_TARGETS,
    LifecycleState,
    NotificationKind,
)


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced actor, product, lot, or transaction is unknown."""


class UnknownProduct(MissingReferenceError):
    """Raised when a product id is not present in the catalog."""

    def __init__(self, product_id: str) -> None:
        super().__init__(f"Unknown product id: {product_id}")
        self.product_id = product_id


class UnknownLot(MissingReferenceError):
    """Raised when an inventory lot id is not present (or already emptied)."""

    def __init__(self, lot_id: str) -> None:
        super().__init__(f"Unknown inventory lot id: {lot_id}")
        self.lot_id = lot_id


class InsufficientStock(BusinessRuleViolation):
    """Raised when a purchase asks for more units than the stock pool holds."""

    def __init__(self, product: data_manager.ProductRow, requested: int) -> None:
        super().__init__(
            f"Only {product.stock_quantity} units of '{product.product_name}' available "
            f"(requested {requested})"
        )
        self.product_id = product.product_id
        self.product_name = product.product_name
        self.requested = requested
        self.available = product.stock_quantity


class InsufficientFunds(BusinessRuleViolation):
    """Raised when a purchase costs more than the actor's remaining capital."""

    def __init__(self, required: Decimal, available: Decimal) -> None:
        super().__init__(
            f"Balance too low for this purchase: requires {_format_money(required)}, "
            f"available {_format_money(available)}"
        )
        self.required = required
        self.available = available


class InvalidQuantity(BusinessRuleViolation, ValueError):
    """Raised when a quantity is not a positive integer or exceeds what is held."""


class MissingJustification(BusinessRuleViolation):
    """Raised when a lot move is submitted without a note."""


class InvalidTransition(BusinessRuleViolation):
    """Raised when a lot move does not go from ``held`` to ``personal``/``sold``."""


class IdAllocator(Protocol):
    """Source of unique identifiers for transactions, lots and notifications."""

    def allocate(self, prefix: str) -> str:
        ...


class UuidIdAllocator:
    """Allocate random, collision-free identifiers."""

    def allocate(self, prefix: str) -> str:
        return f"{prefix}{uuid.uuid4().hex.upper()}"


class SequentialIdAllocator:
    """Allocate predictable identifiers such as ``T000001``; meant for tests and imports."""

    def __init__(self, start: int = 1) -> None:
        self._counter: Iterator[int] = itertools.count(start)

    def allocate(self, prefix: str) -> str:
        return f"{prefix}{next(self._counter):06d}"


@dataclass
class RuntimeContext:
    """Session state: configuration, the backing workbook and the current snapshot.

    ``snapshot`` is only ever replaced wholesale through :func:`commit_snapshot`.
    """

    settings: data_manager.ConfigSettings
    workbook: Workbook
    snapshot: data_manager.Snapshot
    id_allocator: IdAllocator = field(default_factory=UuidIdAllocator, repr=False)


@dataclass(frozen=True)
class PurchaseLine:
    """Requested quantity of one product within a purchase."""

    product_id: str
    quantity: int


@dataclass(frozen=True)
class PurchaseCommand:
    """User intent for buying units from the stock pool."""

    actor_id: str
    items: tuple[PurchaseLine, ...]
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class MoveCommand:
    """User intent for moving units of a held lot to ``personal`` or ``sold``."""

    lot_id: str
    target_state: LifecycleState
    quantity: int
    note: str
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class AddProductCommand:
    """User intent for adding a product to the catalog."""

    product_name: str
    distributor_price: Decimal
    retail_price: Decimal
    stock_quantity: int
    category: str = ""
    product_id: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class PriceUpdateCommand:
    """User intent for changing one or both catalog prices of a product."""

    product_id: str
    distributor_price: Optional[Decimal] = None
    retail_price: Optional[Decimal] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class RestockCommand:
    """User intent for adding units to a product's stock pool."""

    product_id: str
    quantity: int
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class ProductStatusCommand:
    """User intent for activating or deactivating a catalog product."""

    product_id: str
    is_active: bool
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class AccountUpdateCommand:
    """User intent for changing the actor's invested capital or sales target."""

    capital_invested: Optional[Decimal] = None
    sales_target: Optional[Decimal] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class PurchaseResult:
    snapshot: data_manager.Snapshot
    transaction: data_manager.PurchaseRow
    lots: tuple[data_manager.LotRow, ...]
    notifications: tuple[data_manager.NotificationRow, ...]


@dataclass(frozen=True)
class MoveResult:
    """Outcome of a lot move.

    ``moved_lot`` carries the target state. ``remaining_lot`` is the reduced
    source lot after a partial move and ``None`` after a full move.
    """

    snapshot: data_manager.Snapshot
    moved_lot: data_manager.LotRow
    remaining_lot: Optional[data_manager.LotRow]
    notifications: tuple[data_manager.NotificationRow, ...]


@dataclass(frozen=True)
class CatalogResult:
    snapshot: data_manager.Snapshot
    product: data_manager.ProductRow
    notifications: tuple[data_manager.NotificationRow, ...]


@dataclass(frozen=True)
class AccountResult:
    snapshot: data_manager.Snapshot
    actor: data_manager.ActorRow
    notifications: tuple[data_manager.NotificationRow, ...]


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` in UTC when provided, otherwise the current UTC datetime.

    Naive values are taken to be UTC already, matching how the workbook reads
    them back, so every timestamp in a snapshot stays comparable.
    """

    if candidate is None:
        return datetime.now(UTC)
    if candidate.tzinfo is None:
        return candidate.replace(tzinfo=UTC)
    return candidate.astimezone(UTC)


def _resolve_allocator(id_allocator: Optional[IdAllocator]) -> IdAllocator:
    return id_allocator if id_allocator is not None else UuidIdAllocator()


def _format_money(amount: Decimal) -> str:
    return f"{CURRENCY_SYMBOL}{amount:,}"


def _build_notification(
    id_allocator: IdAllocator,
    kind: NotificationKind,
    message: str,
    timestamp: datetime,
) -> data_manager.NotificationRow:
    return data_manager.NotificationRow(
        notification_id=id_allocator.allocate("N"),
        kind=kind.value,
        message=message,
        timestamp=timestamp,
    )


def _replace_product(
    products: Sequence[data_manager.ProductRow],
    updated: data_manager.ProductRow,
) -> tuple[data_manager.ProductRow, ...]:
    return tuple(updated if product.product_id == updated.product_id else product for product in products)


def load_runtime_context(
    config_path: Optional[Path] = None,
    *,
    id_allocator: Optional[IdAllocator] = None,
) -> RuntimeContext:
    """Load configuration settings, the workbook and its snapshot for a session.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.
        id_allocator (IdAllocator | None): Identifier source for the session.
            Defaults to :class:`UuidIdAllocator`.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options or the actor profile
            are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    snapshot = data_manager.read_snapshot(workbook)
    for problem in check_invariants(snapshot):
        log.warning("Ledger invariant violated in '%s': %s", settings.data_file, problem)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(
        settings=settings,
        workbook=workbook,
        snapshot=snapshot,
        id_allocator=_resolve_allocator(id_allocator),
    )


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def commit_snapshot(context: RuntimeContext, snapshot: data_manager.Snapshot) -> None:
    """Make ``snapshot`` the session state and mirror it into the workbook.

    The workbook is only changed in memory; :func:`persist_context` writes it
    to disk.
    """
    data_manager.write_snapshot(context.workbook, snapshot)
    context.snapshot = snapshot
    log.debug("Committed snapshot with %d lots", len(snapshot.lots))


def persist_context(context: RuntimeContext) -> None:
    """Persist the in-memory workbook to the configured data file."""
    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    snapshot = data_manager.read_snapshot(workbook)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(
        settings=context.settings,
        workbook=workbook,
        snapshot=snapshot,
        id_allocator=context.id_allocator,
    )


def list_products(snapshot: data_manager.Snapshot, *, include_inactive: bool = False) -> List[data_manager.ProductRow]:
    """Return catalog products in catalog order, active ones only by default."""
    return [product for product in snapshot.products if include_inactive or product.is_active]


def get_product(snapshot: data_manager.Snapshot, product_id: str) -> data_manager.ProductRow:
    """Resolve a product record by its identifier.

    Raises:
        UnknownProduct: If ``product_id`` is absent from the catalog.
    """
    for product in snapshot.products:
        if product.product_id == product_id:
            return product
    log.warning("Product lookup failed for id '%s'", product_id)
    raise UnknownProduct(product_id)


def list_lots(
    snapshot: data_manager.Snapshot,
    *,
    state: Optional[LifecycleState] = None,
    product_id: Optional[str] = None,
) -> List[data_manager.LotRow]:
    """Return the visible inventory lots, optionally filtered by state or product.

    Lots whose quantity is zero are never part of a read view.
    """
    return [
        lot
        for lot in snapshot.lots
        if lot.quantity > 0
        and (state is None or lot.state == state)
        and (product_id is None or lot.product_id == product_id)
    ]


def get_lot(snapshot: data_manager.Snapshot, lot_id: str) -> data_manager.LotRow:
    """Resolve a visible inventory lot by its identifier.

    Raises:
        UnknownLot: If no lot with a positive quantity has ``lot_id``.
    """
    for lot in list_lots(snapshot):
        if lot.lot_id == lot_id:
            return lot
    log.warning("Lot lookup failed for id '%s'", lot_id)
    raise UnknownLot(lot_id)


def list_purchases(snapshot: data_manager.Snapshot) -> List[data_manager.PurchaseRow]:
    """Return the purchase ledger in append order."""
    return list(snapshot.purchases)


def get_purchase(snapshot: data_manager.Snapshot, transaction_id: str) -> data_manager.PurchaseRow:
    """Resolve a purchase transaction by its identifier.

    Raises:
        MissingReferenceError: If the ledger lacks ``transaction_id``.
    """
    for purchase_row in snapshot.purchases:
        if purchase_row.transaction_id == transaction_id:
            return purchase_row
    log.warning("Transaction lookup failed for id '%s'", transaction_id)
    raise MissingReferenceError(f"Unknown transaction id: {transaction_id}")


def list_notifications(snapshot: data_manager.Snapshot, *, limit: Optional[int] = None) -> List[data_manager.NotificationRow]:
    """Return notifications newest first, optionally truncated to ``limit``."""
    newest_first = list(reversed(snapshot.notifications))
    return newest_first if limit is None else newest_first[:limit]


def purchased_quantities(snapshot: data_manager.Snapshot) -> Dict[str, int]:
    """Total units bought per product across the purchase ledger."""
    totals: Dict[str, int] = defaultdict(int)
    for purchase_row in snapshot.purchases:
        for item in purchase_row.items:
            totals[item.product_id] += item.quantity
    return dict(totals)


def lot_quantities(snapshot: data_manager.Snapshot) -> Dict[str, int]:
    """Total units per product across held, personal and sold lots."""
    totals: Dict[str, int] = defaultdict(int)
    for lot in snapshot.lots:
        totals[lot.product_id] += lot.quantity
    return dict(totals)


def check_invariants(snapshot: data_manager.Snapshot) -> List[str]:
    """Describe every ledger invariant the snapshot breaks; empty when consistent.

    Checked: capital spent equals the sum of purchase totals, unit conservation
    per product, no negative lots, and a note on every lot that left ``held``.
    """
    problems: List[str] = []

    ledger_total = sum((p.total_paid for p in snapshot.purchases), Decimal("0"))
    if snapshot.actor.capital_spent != ledger_total:
        problems.append(
            f"capital spent {snapshot.actor.capital_spent} differs from ledger total {ledger_total}"
        )

    bought = purchased_quantities(snapshot)
    held = lot_quantities(snapshot)
    for product_id in sorted(set(bought) | set(held)):
        if bought.get(product_id, 0) != held.get(product_id, 0):
            problems.append(
                f"product {product_id}: purchased {bought.get(product_id, 0)} units "
                f"but lots hold {held.get(product_id, 0)}"
            )

    for lot in snapshot.lots:
        if lot.quantity < 0:
            problems.append(f"lot {lot.lot_id} has negative quantity {lot.quantity}")
        if lot.state != LifecycleState.HELD and not (lot.note or "").strip():
            problems.append(f"lot {lot.lot_id} is {lot.state.value} without a note")

    return problems


def require_positive_quantity(quantity: object) -> int:
    """Validate that a quantity is a strictly positive integer and return it.

    Raises:
        InvalidQuantity: If ``quantity`` is not an ``int`` or is zero or
            negative. Booleans are rejected even though they subclass ``int``.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        log.error("Quantity validation failed: %r", quantity)
        raise InvalidQuantity(f"Quantity must be a whole number greater than zero, got {quantity!r}")
    return quantity


def require_nonnegative_money(amount: Decimal) -> None:
    """Validate that a monetary value is nonnegative.

    Raises:
        ValueError: If ``amount`` is less than zero.
    """
    if amount < Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValueError("Amount must be zero or positive")


def purchase(
    snapshot: data_manager.Snapshot,
    command: PurchaseCommand,
    *,
    id_allocator: Optional[IdAllocator] = None,
    low_stock_threshold: int = LOW_STOCK_THRESHOLD,
) -> PurchaseResult:
    """Buy units from the stock pool and record them as held inventory.

    Every precondition is checked against ``snapshot`` before anything is
    built, so a rejected purchase leaves the caller's state untouched. On
    success the returned snapshot has the stock pools decremented, one
    :class:`~distributor_ledger.data_manager.PurchaseRow` appended, one
    ``held`` lot per line item, and ``capital_spent`` increased by the
    transaction total. The total is priced at the current distributor price and
    frozen on the transaction.

    Args:
        snapshot: Current ledger state.
        command: Actor id and requested lines.
        id_allocator: Identifier source; defaults to :class:`UuidIdAllocator`.
        low_stock_threshold: A product whose remaining pool is below this value
            after the purchase raises a ``low_stock`` notification.

    Returns:
        PurchaseResult: New snapshot, the transaction, the created lots and the
            notifications emitted.

    Raises:
        MissingReferenceError: If ``command.actor_id`` is not the session actor.
        InvalidQuantity: If there are no lines or a quantity is not positive.
        UnknownProduct: If a line references a product missing from the catalog.
        BusinessRuleViolation: If a line references an inactive product.
        InsufficientStock: If a product's requested total exceeds its pool.
        InsufficientFunds: If the total exceeds the actor's remaining capital.
    """
    allocator = _resolve_allocator(id_allocator)
    actor = snapshot.actor
    if command.actor_id != actor.actor_id:
        log.warning("Purchase attempted for unknown actor '%s'", command.actor_id)
        raise MissingReferenceError(f"Unknown actor id: {command.actor_id}")
    if not command.items:
        log.warning("Purchase attempted with no line items")
        raise InvalidQuantity("A purchase needs at least one line item")

    requested: Dict[str, int] = defaultdict(int)
    products: Dict[str, data_manager.ProductRow] = {}
    for line in command.items:
        require_positive_quantity(line.quantity)
        product = get_product(snapshot, line.product_id)
        if not product.is_active:
            log.warning("Attempted purchase of inactive product '%s'", line.product_id)
            raise BusinessRuleViolation(f"Product '{product.product_name}' is inactive")
        products[product.product_id] = product
        requested[product.product_id] += line.quantity

    for product_id, quantity in requested.items():
        product = products[product_id]
        if quantity > product.stock_quantity:
            log.warning(
                "Insufficient stock for '%s': requested %d, available %d",
                product_id,
                quantity,
                product.stock_quantity,
            )
            raise InsufficientStock(product, quantity)

    items = tuple(
        data_manager.LineItem(
            product_id=line.product_id,
            quantity=line.quantity,
            unit_distributor_price=products[line.product_id].distributor_price,
            unit_retail_price=products[line.product_id].retail_price,
        )
        for line in command.items
    )
    total_paid = sum((item.subtotal_distributor for item in items), Decimal("0"))
    total_retail = sum((item.subtotal_retail for item in items), Decimal("0"))
    if total_paid > actor.available_capital:
        log.warning(
            "Insufficient funds for purchase: required %s, available %s",
            total_paid,
            actor.available_capital,
        )
        raise InsufficientFunds(total_paid, actor.available_capital)

    timestamp = _resolve_timestamp(command.timestamp)
    transaction = data_manager.PurchaseRow(
        transaction_id=allocator.allocate("T"),
        actor_id=actor.actor_id,
        items=items,
        total_paid=total_paid,
        total_retail=total_retail,
        timestamp=timestamp,
    )
    new_lots = tuple(
        data_manager.LotRow(
            lot_id=allocator.allocate("L"),
            product_id=item.product_id,
            quantity=item.quantity,
            state=LifecycleState.HELD,
            note=None,
            timestamp=timestamp,
        )
        for item in items
    )

    notifications: List[data_manager.NotificationRow] = [
        _build_notification(
            allocator,
            NotificationKind.PURCHASE,
            f"Order confirmed: {transaction.transaction_id} | Total: {_format_money(total_paid)}",
            timestamp,
        )
    ]
    updated_products = []
    for product in snapshot.products:
        if product.product_id not in requested:
            updated_products.append(product)
            continue
        remaining = product.stock_quantity - requested[product.product_id]
        updated_products.append(replace(product, stock_quantity=remaining))
        if remaining < low_stock_threshold:
            log.info("Low stock for '%s': %d units left", product.product_id, remaining)
            notifications.append(
                _build_notification(
                    allocator,
                    NotificationKind.LOW_STOCK,
                    f"LOW STOCK ALERT: {product.product_name} | only {remaining} units left!",
                    timestamp,
                )
            )

    new_snapshot = replace(
        snapshot,
        products=tuple(updated_products),
        purchases=snapshot.purchases + (transaction,),
        lots=snapshot.lots + new_lots,
        actor=replace(actor, capital_spent=actor.capital_spent + total_paid),
        notifications=snapshot.notifications + tuple(notifications),
    )
    log.info(
        "Recorded purchase '%s' for actor '%s' (%d lines, total=%s)",
        transaction.transaction_id,
        actor.actor_id,
        len(items),
        total_paid,
    )
    return PurchaseResult(
        snapshot=new_snapshot,
        transaction=transaction,
        lots=new_lots,
        notifications=tuple(notifications),
    )


def move_lot(
    snapshot: data_manager.Snapshot,
    command: MoveCommand,
    *,
    id_allocator: Optional[IdAllocator] = None,
) -> MoveResult:
    """Move units of a held lot into the ``personal`` or ``sold`` state.

    Moving the whole lot rewrites it in place: same id and quantity, new
    state, note and timestamp. Moving part of it reduces the source lot's
    quantity (its state and timestamp stay put) and appends a new lot holding
    the moved units. Either way the product's total quantity across lots is
    unchanged.

    Raises:
        UnknownLot: If the lot does not exist.
        InvalidTransition: If the lot is not ``held`` or the target is not
            ``personal``/``sold``.
        InvalidQuantity: If the quantity is not positive or exceeds the lot.
        MissingJustification: If the note is empty or blank.
    """
    allocator = _resolve_allocator(id_allocator)
    source = get_lot(snapshot, command.lot_id)
    try:
        target = LifecycleState(command.target_state)
    except ValueError as exc:
        raise InvalidTransition(f"Unknown lifecycle state: {command.target_state!r}") from exc
    if source.state != LifecycleState.HELD:
        log.warning("Attempted move of lot '%s' in state '%s'", source.lot_id, source.state.value)
        raise InvalidTransition(
            f"Only held lots can be moved; lot {source.lot_id} is {source.state.value}"
        )
    if target not in MOVE_TARGETS:
        log.warning("Attempted move of lot '%s' to '%s'", source.lot_id, target.value)
        raise InvalidTransition(f"Lots can only move to personal or sold, not {target.value}")
    quantity = require_positive_quantity(command.quantity)
    if quantity > source.quantity:
        log.warning(
            "Attempted to move %d units from lot '%s' holding %d",
            quantity,
            source.lot_id,
            source.quantity,
        )
        raise InvalidQuantity(f"Lot {source.lot_id} holds only {source.quantity} units")
    note = (command.note or "").strip()
    if not note:
        log.warning("Attempted move of lot '%s' without a note", source.lot_id)
        raise MissingJustification("A note is required when moving inventory")

    timestamp = _resolve_timestamp(command.timestamp)
    remaining_lot: Optional[data_manager.LotRow]
    if quantity == source.quantity:
        moved_lot = replace(source, state=target, note=note, timestamp=timestamp)
        remaining_lot = None
        lots = tuple(moved_lot if lot.lot_id == source.lot_id else lot for lot in snapshot.lots)
    else:
        remaining_lot = replace(source, quantity=source.quantity - quantity)
        moved_lot = data_manager.LotRow(
            lot_id=allocator.allocate("L"),
            product_id=source.product_id,
            quantity=quantity,
            state=target,
            note=note,
            timestamp=timestamp,
        )
        lots = tuple(remaining_lot if lot.lot_id == source.lot_id else lot for lot in snapshot.lots)
        lots += (moved_lot,)

    product_name = _product_name(snapshot, source.product_id)
    notification = _build_notification(
        allocator,
        NotificationKind.MOVE,
        f"Moved {quantity} units of {product_name} to {target.value.upper()}.",
        timestamp,
    )
    log.info(
        "Moved %d units of lot '%s' (%s) to %s",
        quantity,
        source.lot_id,
        source.product_id,
        target.value,
    )
    return MoveResult(
        snapshot=replace(
            snapshot,
            lots=lots,
            notifications=snapshot.notifications + (notification,),
        ),
        moved_lot=moved_lot,
        remaining_lot=remaining_lot,
        notifications=(notification,),
    )


def _product_name(snapshot: data_manager.Snapshot, product_id: str) -> str:
    try:
        return get_product(snapshot, product_id).product_name
    except UnknownProduct:
        return product_id


def add_product(
    snapshot: data_manager.Snapshot,
    command: AddProductCommand,
    *,
    id_allocator: Optional[IdAllocator] = None,
) -> CatalogResult:
    """Append a new product to the catalog.

    Raises:
        BusinessRuleViolation: If the product id is already taken.
        ValueError: If the name is blank, a price is negative, or the stock
            quantity is negative.
    """
    allocator = _resolve_allocator(id_allocator)
    name = command.product_name.strip()
    if not name:
        raise ValueError("Product name must not be empty")
    require_nonnegative_money(command.distributor_price)
    require_nonnegative_money(command.retail_price)
    if command.stock_quantity < 0:
        raise ValueError("Stock quantity must be zero or positive")
    product_id = command.product_id or allocator.allocate("P")
    if any(product.product_id == product_id for product in snapshot.products):
        log.warning("Attempted to add duplicate product '%s'", product_id)
        raise BusinessRuleViolation(f"Product id already exists: {product_id}")

    product = data_manager.ProductRow(
        product_id=product_id,
        product_name=name,
        category=command.category,
        distributor_price=command.distributor_price,
        retail_price=command.retail_price,
        stock_quantity=command.stock_quantity,
        is_active=True,
    )
    notification = _build_notification(
        allocator,
        NotificationKind.PRODUCT_ADDED,
        f"New product added: {name} | {product.stock_quantity} | {_format_money(product.distributor_price)}",
        _resolve_timestamp(command.timestamp),
    )
    log.info("Added product '%s' (%s)", product_id, name)
    return CatalogResult(
        snapshot=replace(
            snapshot,
            products=snapshot.products + (product,),
            notifications=snapshot.notifications + (notification,),
        ),
        product=product,
        notifications=(notification,),
    )


def update_price(
    snapshot: data_manager.Snapshot,
    command: PriceUpdateCommand,
    *,
    id_allocator: Optional[IdAllocator] = None,
) -> CatalogResult:
    """Change the distributor and/or retail price of a product.

    Past purchases keep the prices frozen on their line items; only future
    purchases and inventory valuation see the new values.

    Raises:
        UnknownProduct: If the product does not exist.
        ValueError: If neither price is given or a price is negative.
    """
    allocator = _resolve_allocator(id_allocator)
    if command.distributor_price is None and command.retail_price is None:
        raise ValueError("Provide a distributor price, a retail price, or both")
    product = get_product(snapshot, command.product_id)
    timestamp = _resolve_timestamp(command.timestamp)
    updated = product
    notifications: List[data_manager.NotificationRow] = []

    if command.distributor_price is not None:
        require_nonnegative_money(command.distributor_price)
        if command.distributor_price != product.distributor_price:
            updated = replace(updated, distributor_price=command.distributor_price)
            notifications.append(
                _build_notification(
                    allocator,
                    NotificationKind.PRICE_UPDATED,
                    f"New price updated: {product.product_name} | "
                    f"{_format_money(product.distributor_price)} | {_format_money(command.distributor_price)}",
                    timestamp,
                )
            )
    if command.retail_price is not None:
        require_nonnegative_money(command.retail_price)
        if command.retail_price != product.retail_price:
            updated = replace(updated, retail_price=command.retail_price)
            notifications.append(
                _build_notification(
                    allocator,
                    NotificationKind.PRICE_UPDATED,
                    f"New retail price updated: {product.product_name} | "
                    f"{_format_money(product.retail_price)} | {_format_money(command.retail_price)}",
                    timestamp,
                )
            )

    log.info(
        "Updated prices for '%s': DP %s -> %s, RP %s -> %s",
        product.product_id,
        product.distributor_price,
        updated.distributor_price,
        product.retail_price,
        updated.retail_price,
    )
    return CatalogResult(
        snapshot=replace(
            snapshot,
            products=_replace_product(snapshot.products, updated),
            notifications=snapshot.notifications + tuple(notifications),
        ),
        product=updated,
        notifications=tuple(notifications),
    )


def restock(
    snapshot: data_manager.Snapshot,
    command: RestockCommand,
    *,
    id_allocator: Optional[IdAllocator] = None,
) -> CatalogResult:
    """Add units to a product's stock pool.

    Raises:
        UnknownProduct: If the product does not exist.
        InvalidQuantity: If the quantity is not a positive integer.
    """
    allocator = _resolve_allocator(id_allocator)
    quantity = require_positive_quantity(command.quantity)
    product = get_product(snapshot, command.product_id)
    updated = replace(product, stock_quantity=product.stock_quantity + quantity)
    notification = _build_notification(
        allocator,
        NotificationKind.STOCK_UPDATED,
        f"Stock updated: {product.product_name} | {product.stock_quantity} | {updated.stock_quantity}",
        _resolve_timestamp(command.timestamp),
    )
    log.info(
        "Restocked '%s' by %d units (%d -> %d)",
        product.product_id,
        quantity,
        product.stock_quantity,
        updated.stock_quantity,
    )
    return CatalogResult(
        snapshot=replace(
            snapshot,
            products=_replace_product(snapshot.products, updated),
            notifications=snapshot.notifications + (notification,),
        ),
        product=updated,
        notifications=(notification,),
    )


def set_product_active(
    snapshot: data_manager.Snapshot,
    command: ProductStatusCommand,
    *,
    id_allocator: Optional[IdAllocator] = None,
) -> CatalogResult:
    """Activate or deactivate a product. Inactive products cannot be purchased.

    Raises:
        UnknownProduct: If the product does not exist.
    """
    allocator = _resolve_allocator(id_allocator)
    product = get_product(snapshot, command.product_id)
    updated = replace(product, is_active=command.is_active)
    status = "Active" if command.is_active else "Inactive"
    notification = _build_notification(
        allocator,
        NotificationKind.PRODUCT_STATUS,
        f"Product status: {product.product_name} | {status}",
        _resolve_timestamp(command.timestamp),
    )
    log.info("Set product '%s' to %s", product.product_id, status)
    return CatalogResult(
        snapshot=replace(
            snapshot,
            products=_replace_product(snapshot.products, updated),
            notifications=snapshot.notifications + (notification,),
        ),
        product=updated,
        notifications=(notification,),
    )


def update_account(
    snapshot: data_manager.Snapshot,
    command: AccountUpdateCommand,
    *,
    id_allocator: Optional[IdAllocator] = None,
) -> AccountResult:
    """Change the actor's invested capital and/or sales target.

    ``capital_spent`` is never edited here; it only moves with purchases.

    Raises:
        ValueError: If nothing is given or an amount is negative.
        BusinessRuleViolation: If invested capital would drop below capital
            already spent.
    """
    allocator = _resolve_allocator(id_allocator)
    if command.capital_invested is None and command.sales_target is None:
        raise ValueError("Provide invested capital, a sales target, or both")
    actor = snapshot.actor
    updated = actor
    if command.capital_invested is not None:
        require_nonnegative_money(command.capital_invested)
        if command.capital_invested < actor.capital_spent:
            log.warning(
                "Rejected invested capital %s below spent %s",
                command.capital_invested,
                actor.capital_spent,
            )
            raise BusinessRuleViolation(
                f"Invested capital cannot be below capital already spent ({_format_money(actor.capital_spent)})"
            )
        updated = replace(updated, capital_invested=command.capital_invested)
    if command.sales_target is not None:
        require_nonnegative_money(command.sales_target)
        updated = replace(updated, sales_target=command.sales_target)

    notification = _build_notification(
        allocator,
        NotificationKind.ACCOUNT,
        f"Account updated: invested {_format_money(updated.capital_invested)} | "
        f"target {_format_money(updated.sales_target)}",
        _resolve_timestamp(command.timestamp),
    )
    log.info("Updated account '%s'", actor.actor_id)
    return AccountResult(
        snapshot=replace(
            snapshot,
            actor=updated,
            notifications=snapshot.notifications + (notification,),
        ),
        actor=updated,
        notifications=(notification,),
    )


def record_purchase(context: RuntimeContext, command: PurchaseCommand) -> PurchaseResult:
    """Apply :func:`purchase` to the session and commit the new snapshot."""
    result = purchase(
        context.snapshot,
        command,
        id_allocator=context.id_allocator,
        low_stock_threshold=context.settings.low_stock_threshold,
    )
    commit_snapshot(context, result.snapshot)
    return result


def record_move(context: RuntimeContext, command: MoveCommand) -> MoveResult:
    """Apply :func:`move_lot` to the session and commit the new snapshot."""
    result = move_lot(context.snapshot, command, id_allocator=context.id_allocator)
    commit_snapshot(context, result.snapshot)
    return result


def record_new_product(context: RuntimeContext, command: AddProductCommand) -> CatalogResult:
    result = add_product(context.snapshot, command, id_allocator=context.id_allocator)
    commit_snapshot(context, result.snapshot)
    return result


def record_price_update(context: RuntimeContext, command: PriceUpdateCommand) -> CatalogResult:
    result = update_price(context.snapshot, command, id_allocator=context.id_allocator)
    commit_snapshot(context, result.snapshot)
    return result


def record_restock(context: RuntimeContext, command: RestockCommand) -> CatalogResult:
    result = restock(context.snapshot, command, id_allocator=context.id_allocator)
    commit_snapshot(context, result.snapshot)
    return result


def record_product_status(context: RuntimeContext, command: ProductStatusCommand) -> CatalogResult:
    result = set_product_active(context.snapshot, command, id_allocator=context.id_allocator)
    commit_snapshot(context, result.snapshot)
    return result


def record_account_update(context: RuntimeContext, command: AccountUpdateCommand) -> AccountResult:
    result = update_account(context.snapshot, command, id_allocator=context.id_allocator)
    commit_snapshot(context, result.snapshot)
    return result
