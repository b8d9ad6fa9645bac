"""Operational accounting: daily snapshots, profit reports and waste.

All reports read closed orders (completed or delivered) and their frozen
``cost_of_goods``; nothing here recomputes recipe costs. Per-item COGS is
an approximation: an order's COGS is split equally across its line items
and scaled by quantity, because per-item cost is not reliably stored on
older orders.

Data gaps are tolerated. An order without COGS still counts toward
revenue, and a waste movement whose raw item is gone contributes nothing;
both are reported as structured warnings.
"""

import logging
from collections import defaultdict
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cafe_costing.core.config import settings
from cafe_costing.core.money import ZERO, money, percentage, to_decimal
from cafe_costing.db.base import utcnow
from cafe_costing.models.accounting import AccountingSnapshot
from cafe_costing.models.inventory import MovementType, RawItem, StockMovement
from cafe_costing.models.order import CLOSED_ORDER_STATUSES, Order

logger = logging.getLogger(__name__)

# Worst-item rules, checked in priority order
LOSS = "loss"
VERY_LOW_MARGIN = "very_low_margin"
LOW_MARGIN = "low_margin"
LOW_VOLUME = "low_volume"

REASON_LABELS = {
    LOSS: "Loss - selling below cost",
    VERY_LOW_MARGIN: "Very low margin (< 10%)",
    LOW_MARGIN: "Low margin (10-30%)",
    LOW_VOLUME: "Low sales volume",
}


class SnapshotApprovedError(Exception):
    """Raised when recomputing a snapshot that has already been approved."""

    def __init__(self, snapshot: AccountingSnapshot):
        self.snapshot_id = snapshot.id
        super().__init__(
            f"Snapshot {snapshot.id} for branch {snapshot.branch_id} on "
            f"{snapshot.snapshot_date} is approved and cannot be overwritten"
        )


def day_bounds(day: date) -> Tuple[datetime, datetime]:
    """Start and end (UTC) of a calendar day in the business timezone."""
    tz = ZoneInfo(settings.business_timezone)
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = start + timedelta(days=1) - timedelta(microseconds=1)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def period_bounds(start_day: Optional[date] = None, end_day: Optional[date] = None) -> Tuple[datetime, datetime]:
    """UTC window covering whole business days ``start_day`` through ``end_day``.

    Start defaults to today in the business timezone, end to the later of
    start and today.
    """
    today = datetime.now(ZoneInfo(settings.business_timezone)).date()
    start_day = start_day or today
    end_day = end_day or max(start_day, today)
    return day_bounds(start_day)[0], day_bounds(end_day)[1]


def classify_item(profit_margin: float, quantity_sold: float) -> List[str]:
    """Every worst-item rule an item matches, in priority order."""
    reasons = []
    if profit_margin < 0:
        reasons.append(LOSS)
    elif profit_margin < 10:
        reasons.append(VERY_LOW_MARGIN)
    elif profit_margin < 30:
        reasons.append(LOW_MARGIN)
    if quantity_sold < 5:
        reasons.append(LOW_VOLUME)
    return reasons


class AccountingService:
    """Aggregate closed orders and waste into financial reports."""

    def __init__(self, db: Session):
        self.db = db

    # ==================== QUERIES ====================

    def _closed_orders(self, branch_id: str, start: datetime, end: datetime) -> List[Order]:
        return (
            self.db.query(Order)
            .filter(
                Order.branch_id == branch_id,
                Order.created_at >= start,
                Order.created_at <= end,
                Order.status.in_(CLOSED_ORDER_STATUSES),
            )
            .all()
        )

    def _waste_movements(self, branch_id: str, start: datetime, end: datetime) -> List[StockMovement]:
        return (
            self.db.query(StockMovement)
            .filter(
                StockMovement.branch_id == branch_id,
                StockMovement.movement_type == MovementType.WASTE.value,
                StockMovement.created_at >= start,
                StockMovement.created_at <= end,
            )
            .order_by(StockMovement.created_at)
            .all()
        )

    def _resolve_waste(self, movement: StockMovement) -> Optional[Tuple[RawItem, Decimal, Decimal]]:
        """(raw item, quantity, cost) of a waste movement, or None if the item is gone."""
        raw_item = self.db.get(RawItem, movement.raw_item_id)
        if raw_item is None:
            logger.warning(
                f"Waste movement {movement.id} references missing raw item {movement.raw_item_id}",
                extra={"event": "waste_raw_item_missing", "movement_id": movement.id},
            )
            return None
        quantity = abs(to_decimal(movement.quantity))
        return raw_item, quantity, quantity * to_decimal(raw_item.unit_cost)

    # ==================== DAILY SNAPSHOT ====================

    def get_daily_snapshot(self, branch_id: str, day: Optional[date] = None) -> Dict[str, Any]:
        """Revenue, COGS, profit and waste of one branch for one day."""
        day = day or datetime.now(ZoneInfo(settings.business_timezone)).date()
        start, end = day_bounds(day)
        orders = self._closed_orders(branch_id, start, end)

        total_revenue = ZERO
        total_cogs = ZERO
        with_cogs = 0
        for order in orders:
            total_revenue += to_decimal(order.total_amount)
            if order.cost_of_goods is not None and order.cost_of_goods > 0:
                total_cogs += to_decimal(order.cost_of_goods)
                with_cogs += 1
            else:
                logger.warning(
                    f"Order {order.order_number} has no COGS, counted in revenue only",
                    extra={"event": "order_missing_cogs", "order_id": order.id},
                )

        gross_profit = total_revenue - total_cogs

        waste_amount = ZERO
        for movement in self._waste_movements(branch_id, start, end):
            resolved = self._resolve_waste(movement)
            if resolved:
                waste_amount += resolved[2]

        sales_count = len(orders)
        return {
            "date": day.isoformat(),
            "branch_id": branch_id,
            "period_start": start.isoformat(),
            "period_end": end.isoformat(),
            "sales_count": sales_count,
            "orders_with_cogs": with_cogs,
            "orders_missing_cogs": sales_count - with_cogs,
            "total_revenue": float(money(total_revenue)),
            "total_cogs": float(money(total_cogs)),
            "gross_profit": float(money(gross_profit)),
            "profit_margin": float(money(percentage(gross_profit, total_revenue))),
            "average_order_value": float(money(total_revenue / sales_count)) if sales_count else 0.0,
            "waste_amount": float(money(waste_amount)),
            "waste_percentage": float(money(percentage(waste_amount, total_revenue))),
        }

    # ==================== PROFIT REPORTS ====================

    def get_profit_per_drink(self, branch_id: str, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        """Revenue, apportioned COGS and profit per product over a window."""
        stats: Dict[str, Dict[str, Any]] = {}

        for order in self._closed_orders(branch_id, start, end):
            items = order.items if isinstance(order.items, list) else []
            if not items:
                continue
            cogs_share = (
                to_decimal(order.cost_of_goods) / len(items) if order.cost_of_goods else ZERO
            )
            for item in items:
                item_id = str(
                    item.get("product_id") or item.get("menuItemId") or item.get("coffeeItemId") or "unknown"
                )
                quantity = to_decimal(item.get("quantity") or 1)
                price = to_decimal(item.get("price") or item.get("unit_price") or item.get("unitPrice") or 0)

                entry = stats.setdefault(item_id, {
                    "name": item.get("name") or item.get("nameAr") or "Unknown Item",
                    "category": item.get("category") or "Uncategorized",
                    "quantity": ZERO,
                    "revenue": ZERO,
                    "cogs": ZERO,
                })
                entry["quantity"] += quantity
                entry["revenue"] += price * quantity
                entry["cogs"] += cogs_share * quantity

        report = []
        for item_id, s in stats.items():
            profit = s["revenue"] - s["cogs"]
            report.append({
                "item_id": item_id,
                "item_name": s["name"],
                "category": s["category"],
                "quantity_sold": float(s["quantity"]),
                "total_revenue": float(money(s["revenue"])),
                "total_cogs": float(money(s["cogs"])),
                "total_profit": float(money(profit)),
                "profit_margin": float(money(percentage(profit, s["revenue"]))),
                "profit_per_unit": float(money(profit / s["quantity"])) if s["quantity"] > 0 else 0.0,
            })
        return report

    def get_profit_per_category(self, branch_id: str, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        categories: Dict[str, Dict[str, Decimal]] = defaultdict(
            lambda: {"quantity": ZERO, "revenue": ZERO, "cogs": ZERO}
        )
        for drink in self.get_profit_per_drink(branch_id, start, end):
            c = categories[drink["category"] or "Other"]
            c["quantity"] += to_decimal(drink["quantity_sold"])
            c["revenue"] += to_decimal(drink["total_revenue"])
            c["cogs"] += to_decimal(drink["total_cogs"])

        report = []
        for category, c in categories.items():
            profit = c["revenue"] - c["cogs"]
            report.append({
                "category": category,
                "quantity_sold": float(c["quantity"]),
                "total_revenue": float(money(c["revenue"])),
                "total_cogs": float(money(c["cogs"])),
                "total_profit": float(money(profit)),
                "profit_margin": float(money(percentage(profit, c["revenue"]))),
            })
        return report

    def get_top_profitable_items(
        self, branch_id: str, start: datetime, end: datetime, limit: int = 10
    ) -> List[Dict[str, Any]]:
        items = sorted(
            self.get_profit_per_drink(branch_id, start, end),
            key=lambda i: i["total_profit"],
            reverse=True,
        )
        return items[:limit]

    def get_worst_items(
        self, branch_id: str, start: datetime, end: datetime, limit: int = 10
    ) -> List[Dict[str, Any]]:
        """Items matching a worst-item rule, lowest margin first.

        ``reason`` is the first matching rule; ``all_reasons`` lists every
        rule the item matched.
        """
        analyzed = []
        for item in self.get_profit_per_drink(branch_id, start, end):
            reasons = classify_item(item["profit_margin"], item["quantity_sold"])
            if not reasons:
                continue
            analyzed.append({
                **item,
                "reason": reasons[0],
                "reason_label": REASON_LABELS[reasons[0]],
                "all_reasons": reasons,
            })
        analyzed.sort(key=lambda i: i["profit_margin"])
        return analyzed[:limit]

    def get_waste_report(self, branch_id: str, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        """Waste movements with raw item name, unit and cost, costliest first."""
        report = []
        for movement in self._waste_movements(branch_id, start, end):
            resolved = self._resolve_waste(movement)
            if resolved is None:
                continue
            raw_item, quantity, cost = resolved
            report.append({
                "movement_id": movement.id,
                "raw_item_id": raw_item.id,
                "raw_item_name": raw_item.name_ar,
                "quantity": float(quantity),
                "unit": raw_item.unit,
                "waste_amount": float(money(cost)),
                "notes": movement.notes or "No reason specified",
                "created_at": movement.created_at.isoformat() if movement.created_at else None,
            })
        report.sort(key=lambda r: r["waste_amount"], reverse=True)
        return report

    # ==================== PERSISTED SNAPSHOTS ====================

    def save_daily_snapshot(
        self,
        tenant_id: str,
        branch_id: str,
        created_by: Optional[str] = None,
        day: Optional[date] = None,
    ) -> AccountingSnapshot:
        """Compute and upsert the snapshot for ``(tenant, branch, day)``.

        Re-running for the same day recomputes the existing row in place.

        Raises:
            SnapshotApprovedError: the existing snapshot is approved.
        """
        day = day or datetime.now(ZoneInfo(settings.business_timezone)).date()
        start, end = day_bounds(day)

        existing = self._find_snapshot(tenant_id, branch_id, day)
        if existing is not None and existing.is_approved:
            raise SnapshotApprovedError(existing)

        daily = self.get_daily_snapshot(branch_id, day)
        top_products = [
            {
                "product_id": item["item_id"],
                "product_name": item["item_name"],
                "quantity": item["quantity_sold"],
                "revenue": item["total_revenue"],
            }
            for item in sorted(
                self.get_profit_per_drink(branch_id, start, end),
                key=lambda i: i["total_revenue"],
                reverse=True,
            )[:5]
        ]
        values = {
            "period_start": start,
            "period_end": end,
            "total_revenue": money(daily["total_revenue"]),
            "total_orders": daily["sales_count"],
            "average_order_value": money(daily["average_order_value"]),
            "total_cost_of_goods": money(daily["total_cogs"]),
            "waste_amount": money(daily["waste_amount"]),
            "waste_percentage": money(daily["waste_percentage"]),
            "gross_profit": money(daily["gross_profit"]),
            "gross_profit_margin": money(daily["profit_margin"]),
            "top_products_by_revenue": top_products,
            "created_by": created_by,
        }

        if existing is None:
            snapshot = AccountingSnapshot(
                tenant_id=tenant_id, branch_id=branch_id, snapshot_date=day, **values
            )
            self.db.add(snapshot)
        else:
            snapshot = existing
            for key, value in values.items():
                setattr(snapshot, key, value)

        try:
            self.db.commit()
        except IntegrityError:
            # Another run inserted the same day first; update that row instead
            self.db.rollback()
            snapshot = self._find_snapshot(tenant_id, branch_id, day)
            if snapshot is None:
                raise
            if snapshot.is_approved:
                raise SnapshotApprovedError(snapshot)
            for key, value in values.items():
                setattr(snapshot, key, value)
            self.db.commit()

        self.db.refresh(snapshot)
        logger.info(
            f"Saved accounting snapshot for branch {branch_id} on {day}: "
            f"revenue {snapshot.total_revenue}, COGS {snapshot.total_cost_of_goods}"
        )
        return snapshot

    def _find_snapshot(self, tenant_id: str, branch_id: str, day: date) -> Optional[AccountingSnapshot]:
        return (
            self.db.query(AccountingSnapshot)
            .filter(
                AccountingSnapshot.tenant_id == tenant_id,
                AccountingSnapshot.branch_id == branch_id,
                AccountingSnapshot.snapshot_date == day,
            )
            .first()
        )

    def approve_snapshot(self, snapshot_id: int, approved_by: Optional[str] = None) -> Optional[AccountingSnapshot]:
        snapshot = self.db.get(AccountingSnapshot, snapshot_id)
        if snapshot is None:
            return None
        if not snapshot.is_approved:
            snapshot.is_approved = True
            snapshot.approved_by = approved_by
            snapshot.approved_at = utcnow()
            self.db.commit()
            self.db.refresh(snapshot)
            logger.info(f"Approved accounting snapshot {snapshot.id}")
        return snapshot

    def get_snapshots(
        self, tenant_id: str, branch_id: str, start: date, end: date
    ) -> List[AccountingSnapshot]:
        return (
            self.db.query(AccountingSnapshot)
            .filter(
                AccountingSnapshot.tenant_id == tenant_id,
                AccountingSnapshot.branch_id == branch_id,
                AccountingSnapshot.snapshot_date >= start,
                AccountingSnapshot.snapshot_date <= end,
            )
            .order_by(AccountingSnapshot.snapshot_date.desc())
            .all()
        )


def snapshot_to_dict(snapshot: AccountingSnapshot) -> Dict[str, Any]:
    return {
        "id": snapshot.id,
        "tenant_id": snapshot.tenant_id,
        "branch_id": snapshot.branch_id,
        "snapshot_date": snapshot.snapshot_date.isoformat(),
        "snapshot_type": snapshot.snapshot_type,
        "total_revenue": float(snapshot.total_revenue),
        "total_orders": snapshot.total_orders,
        "average_order_value": float(snapshot.average_order_value),
        "total_cost_of_goods": float(snapshot.total_cost_of_goods),
        "waste_amount": float(snapshot.waste_amount),
        "waste_percentage": float(snapshot.waste_percentage),
        "gross_profit": float(snapshot.gross_profit),
        "gross_profit_margin": float(snapshot.gross_profit_margin),
        "top_products_by_revenue": snapshot.top_products_by_revenue,
        "is_approved": snapshot.is_approved,
        "approved_by": snapshot.approved_by,
    }
