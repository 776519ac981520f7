"""Enumerations and fixed values shared across the distributor ledger.

The data access layer (DAL), the business logic layer (BLL), the report
aggregator and the CLI all read their identifiers from here so that sheet
names, lifecycle states and report views have a single source of truth.
"""

from __future__ import annotations

from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# A purchase that leaves a product's stock pool below this many units raises
# a low-stock notification.
LOW_STOCK_THRESHOLD = 5

CURRENCY_SYMBOL = "₹"


class LifecycleState(str, Enum):
    """Enumerate the states an inventory lot can be in."""

    HELD = "held"
    PERSONAL = "personal"
    SOLD = "sold"


# States a held lot may be moved into. Both are terminal.
MOVE_TARGETS: tuple[LifecycleState, ...] = (
    LifecycleState.PERSONAL,
    LifecycleState.SOLD,
)


class ReportView(str, Enum):
    """Enumerate the detail views offered by the period report."""

    SOLD = "sold"
    PERSONAL = "personal"
    PURCHASES = "purchases"


class NotificationKind(str, Enum):
    """Enumerate the notification categories emitted by the engine."""

    PURCHASE = "purchase"
    LOW_STOCK = "low_stock"
    MOVE = "move"
    PRODUCT_ADDED = "product_added"
    PRICE_UPDATED = "price_updated"
    STOCK_UPDATED = "stock_updated"
    PRODUCT_STATUS = "product_status"
    ACCOUNT = "account"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    PRODUCTS = "Products"
    ACTOR = "Actor"
    PURCHASE_LEDGER = "PurchaseLedger"
    PURCHASE_LINES = "PurchaseLines"
    INVENTORY = "Inventory"
    NOTIFICATIONS = "Notifications"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "LOW_STOCK_THRESHOLD",
    "CURRENCY_SYMBOL",
    "LifecycleState",
    "MOVE_TARGETS",
    "ReportView",
    "NotificationKind",
    "SheetName",
]
