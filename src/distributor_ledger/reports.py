"""Ledger aggregator: financial reports derived from a snapshot.

Every function here is pure. Reports are recomputed on each call from the
purchase ledger, the inventory lots and the current catalog prices. Sums use
``Decimal`` and every list is explicitly sorted, so shuffling the underlying
collections never changes a result.

Valuation rules:

* sold lots are worth ``retail_price * quantity`` and realize
  ``(retail_price - distributor_price) * quantity`` of profit;
* personal lots cost ``distributor_price * quantity`` and forgo
  ``(retail_price - distributor_price) * quantity`` of profit.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

from . import core_logic, data_manager, log
from .constants import LifecycleState, ReportView

ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class LifecycleSummary:
    """Whole-history totals for the actor."""

    invested: Decimal
    purchased: Decimal
    sold: Decimal
    personal: Decimal
    profit_realized: Decimal
    profit_foregone: Decimal
    sales_target: Decimal
    achievement_ratio: Decimal


@dataclass(frozen=True)
class HistoryBucket:
    """Activity for one UTC calendar date."""

    day: date
    purchased: Decimal = ZERO
    sold: Decimal = ZERO
    personal: Decimal = ZERO
    profit_realized: Decimal = ZERO
    profit_foregone: Decimal = ZERO


@dataclass(frozen=True)
class SoldDetail:
    day: date
    lot_id: str
    product_id: str
    product_name: str
    quantity: int
    purchase_cost: Decimal
    revenue: Decimal
    profit: Decimal


@dataclass(frozen=True)
class PersonalDetail:
    day: date
    lot_id: str
    product_id: str
    product_name: str
    quantity: int
    cost: Decimal
    profit_foregone: Decimal


@dataclass(frozen=True)
class PurchaseDetail:
    day: date
    transaction_id: str
    item_count: int
    total_paid: Decimal


@dataclass(frozen=True)
class PeriodReport:
    """Detail rows and totals restricted to an inclusive date range."""

    start: date
    end: date
    sold_rows: tuple[SoldDetail, ...]
    personal_rows: tuple[PersonalDetail, ...]
    purchase_rows: tuple[PurchaseDetail, ...]
    total_profit: Decimal
    total_personal_loss: Decimal
    revenue: Decimal
    range_spent: Decimal

    @property
    def net_profit(self) -> Decimal:
        return self.total_profit - self.total_personal_loss


def utc_moment(moment: datetime) -> datetime:
    """Return ``moment`` as an aware UTC datetime; naive values count as UTC."""

    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


def utc_day(moment: datetime) -> date:
    """Return the UTC calendar date of ``moment``; naive values count as UTC."""

    return utc_moment(moment).date()


def _catalog(snapshot: data_manager.Snapshot) -> Dict[str, data_manager.ProductRow]:
    return {product.product_id: product for product in snapshot.products}


def _valued_lots(snapshot: data_manager.Snapshot) -> List[tuple[data_manager.LotRow, data_manager.ProductRow]]:
    """Pair every visible sold/personal lot with its product, in a stable order.

    Lots whose product vanished from the catalog cannot be valued and are
    skipped with a warning.
    """
    catalog = _catalog(snapshot)
    pairs = []
    for lot in sorted(snapshot.lots, key=lambda lot: (utc_moment(lot.timestamp), lot.lot_id)):
        if lot.quantity <= 0 or lot.state == LifecycleState.HELD:
            continue
        product = catalog.get(lot.product_id)
        if product is None:
            log.warning("Skipping lot '%s': unknown product '%s'", lot.lot_id, lot.product_id)
            continue
        pairs.append((lot, product))
    return pairs


def _unit_margin(product: data_manager.ProductRow) -> Decimal:
    return product.retail_price - product.distributor_price


def achievement_ratio(profit_realized: Decimal, sales_target: Decimal) -> Decimal:
    """Return ``profit_realized / sales_target``, or zero while no target is set."""

    if sales_target <= ZERO:
        return ZERO
    return profit_realized / sales_target


def lifecycle_summary(snapshot: data_manager.Snapshot) -> LifecycleSummary:
    """Fold the whole ledger into the actor's lifecycle totals.

    ``invested`` and ``purchased`` come straight from the actor profile;
    ``purchased`` equals the sum of all transaction totals.
    """
    sold = personal = profit_realized = profit_foregone = ZERO
    for lot, product in _valued_lots(snapshot):
        margin = _unit_margin(product) * lot.quantity
        if lot.state == LifecycleState.SOLD:
            sold += product.retail_price * lot.quantity
            profit_realized += margin
        else:
            personal += product.distributor_price * lot.quantity
            profit_foregone += margin

    actor = snapshot.actor
    return LifecycleSummary(
        invested=actor.capital_invested,
        purchased=actor.capital_spent,
        sold=sold,
        personal=personal,
        profit_realized=profit_realized,
        profit_foregone=profit_foregone,
        sales_target=actor.sales_target,
        achievement_ratio=achievement_ratio(profit_realized, actor.sales_target),
    )


def achievement_percent(summary: LifecycleSummary) -> Decimal:
    """Achievement as a display percentage clamped to ``[0, 100]``."""

    percent = summary.achievement_ratio * HUNDRED
    return max(ZERO, min(HUNDRED, percent))


def lifecycle_history(snapshot: data_manager.Snapshot) -> List[HistoryBucket]:
    """Bucket ledger and lot activity by UTC calendar date, newest first.

    Purchases count on the date of their timestamp. Sold and personal lots
    count on the date of their last state change, not of the purchase that
    created them. Dates without activity get no bucket.
    """
    buckets: Dict[date, Dict[str, Decimal]] = {}

    def ensure(day: date) -> Dict[str, Decimal]:
        return buckets.setdefault(
            day,
            {"purchased": ZERO, "sold": ZERO, "personal": ZERO, "profit_realized": ZERO, "profit_foregone": ZERO},
        )

    for purchase_row in snapshot.purchases:
        ensure(utc_day(purchase_row.timestamp))["purchased"] += purchase_row.total_paid

    for lot, product in _valued_lots(snapshot):
        totals = ensure(utc_day(lot.timestamp))
        margin = _unit_margin(product) * lot.quantity
        if lot.state == LifecycleState.SOLD:
            totals["sold"] += product.retail_price * lot.quantity
            totals["profit_realized"] += margin
        else:
            totals["personal"] += product.distributor_price * lot.quantity
            totals["profit_foregone"] += margin

    return [HistoryBucket(day=day, **buckets[day]) for day in sorted(buckets, reverse=True)]


def period_report(snapshot: data_manager.Snapshot, start: date, end: date) -> PeriodReport:
    """Build detail rows and range totals for ``start <= day <= end``.

    Raises:
        ValueError: If ``start`` is after ``end``.
    """
    if start > end:
        raise ValueError(f"Report start {start.isoformat()} is after end {end.isoformat()}")

    sold_rows: List[SoldDetail] = []
    personal_rows: List[PersonalDetail] = []
    for lot, product in _valued_lots(snapshot):
        day = utc_day(lot.timestamp)
        if not start <= day <= end:
            continue
        cost = product.distributor_price * lot.quantity
        margin = _unit_margin(product) * lot.quantity
        if lot.state == LifecycleState.SOLD:
            sold_rows.append(
                SoldDetail(
                    day=day,
                    lot_id=lot.lot_id,
                    product_id=product.product_id,
                    product_name=product.product_name,
                    quantity=lot.quantity,
                    purchase_cost=cost,
                    revenue=product.retail_price * lot.quantity,
                    profit=margin,
                )
            )
        else:
            personal_rows.append(
                PersonalDetail(
                    day=day,
                    lot_id=lot.lot_id,
                    product_id=product.product_id,
                    product_name=product.product_name,
                    quantity=lot.quantity,
                    cost=cost,
                    profit_foregone=margin,
                )
            )

    purchase_rows = [
        PurchaseDetail(
            day=utc_day(purchase_row.timestamp),
            transaction_id=purchase_row.transaction_id,
            item_count=len(purchase_row.items),
            total_paid=purchase_row.total_paid,
        )
        for purchase_row in sorted(snapshot.purchases, key=lambda p: (utc_moment(p.timestamp), p.transaction_id))
        if start <= utc_day(purchase_row.timestamp) <= end
    ]

    report = PeriodReport(
        start=start,
        end=end,
        sold_rows=tuple(sold_rows),
        personal_rows=tuple(personal_rows),
        purchase_rows=tuple(purchase_rows),
        total_profit=sum((row.profit for row in sold_rows), ZERO),
        total_personal_loss=sum((row.profit_foregone for row in personal_rows), ZERO),
        revenue=sum((row.revenue for row in sold_rows), ZERO),
        range_spent=sum((row.total_paid for row in purchase_rows), ZERO),
    )
    log.debug(
        "Period report %s..%s: %d sold, %d personal, %d purchases",
        start,
        end,
        len(sold_rows),
        len(personal_rows),
        len(purchase_rows),
    )
    return report


# ----------------------------------------------------------------------
# Row builders for tabular display and CSV export
# ----------------------------------------------------------------------


def invoice_rows(snapshot: data_manager.Snapshot, transaction_id: str) -> List[Dict[str, Any]]:
    """Line items of one purchase, priced at the unit prices frozen on the lines.

    Raises:
        MissingReferenceError: If the transaction does not exist.
    """
    purchase_row = core_logic.get_purchase(snapshot, transaction_id)
    catalog = _catalog(snapshot)
    rows = []
    for item in purchase_row.items:
        product = catalog.get(item.product_id)
        rows.append(
            {
                "Product Name": product.product_name if product is not None else item.product_id,
                "Quantity": item.quantity,
                "Unit DP": item.unit_distributor_price,
                "Subtotal DP": item.subtotal_distributor,
                "Unit RP": item.unit_retail_price,
                "Subtotal RP": item.subtotal_retail,
            }
        )
    return rows


def inventory_rows(
    snapshot: data_manager.Snapshot,
    state: Optional[LifecycleState] = None,
) -> List[Dict[str, Any]]:
    """Visible lots valued at current catalog prices, oldest change first."""

    catalog = _catalog(snapshot)
    rows = []
    for lot in sorted(snapshot.lots, key=lambda lot: (utc_moment(lot.timestamp), lot.lot_id)):
        if lot.quantity <= 0 or (state is not None and lot.state != state):
            continue
        product = catalog.get(lot.product_id)
        if product is None:
            log.warning("Skipping lot '%s': unknown product '%s'", lot.lot_id, lot.product_id)
            continue
        rows.append(
            {
                "Product": product.product_name,
                "Qty": lot.quantity,
                "Dist. Price": product.distributor_price,
                "Ret. Price": product.retail_price,
                "Subtotal": product.distributor_price * lot.quantity,
                "Status": lot.state.value.upper(),
                "Note": lot.note,
            }
        )
    return rows


def history_rows(snapshot: data_manager.Snapshot) -> List[Dict[str, Any]]:
    invested = snapshot.actor.capital_invested
    return [
        {
            "Date": bucket.day.isoformat(),
            "Total Invested": invested,
            "Purchased": bucket.purchased,
            "Sold": bucket.sold,
            "Personal": bucket.personal,
            "Profit Realized": bucket.profit_realized,
            "Profit Foregone": bucket.profit_foregone,
        }
        for bucket in lifecycle_history(snapshot)
    ]


def period_rows(report: PeriodReport, view: ReportView) -> List[Dict[str, Any]]:
    """Detail rows of ``report`` for one of the three report views."""

    view = ReportView(view)
    if view == ReportView.SOLD:
        return [
            {
                "Date": row.day.isoformat(),
                "Product": row.product_name,
                "Qty": row.quantity,
                "Purchase": row.purchase_cost,
                "Profit": row.profit,
            }
            for row in report.sold_rows
        ]
    if view == ReportView.PERSONAL:
        return [
            {
                "Date": row.day.isoformat(),
                "Product": row.product_name,
                "Qty": row.quantity,
                "Price": row.cost,
                "Minus From Profit": row.profit_foregone,
            }
            for row in report.personal_rows
        ]
    return [
        {
            "Date": row.day.isoformat(),
            "Transaction": row.transaction_id,
            "Items": row.item_count,
            "Total": row.total_paid,
        }
        for row in report.purchase_rows
    ]


def summary_rows(summary: LifecycleSummary) -> List[Mapping[str, Any]]:
    """Present a lifecycle summary as label/value rows."""

    return [
        {"Metric": "Total Invested", "Value": summary.invested},
        {"Metric": "Purchased", "Value": summary.purchased},
        {"Metric": "Sold", "Value": summary.sold},
        {"Metric": "Personal", "Value": summary.personal},
        {"Metric": "Profit Realized", "Value": summary.profit_realized},
        {"Metric": "Profit Foregone", "Value": summary.profit_foregone},
        {"Metric": "Sales Target", "Value": summary.sales_target},
        {"Metric": "Achievement %", "Value": achievement_percent(summary).quantize(Decimal("0.01"))},
    ]
