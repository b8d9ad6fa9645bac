"""Tests for daily snapshots, profit reports, waste and persisted snapshots."""

import logging
from datetime import date, datetime, timezone

import pytest
from sqlalchemy.orm import Session

from cafe_costing.models.accounting import AccountingSnapshot
from cafe_costing.services.accounting_service import (
    LOSS,
    LOW_MARGIN,
    LOW_VOLUME,
    VERY_LOW_MARGIN,
    AccountingService,
    SnapshotApprovedError,
    classify_item,
    day_bounds,
)

BRANCH = "branch-1"
TENANT = "tenant-1"
DAY = date(2024, 5, 1)


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def day_orders(make_order, espresso, latte):
    """Orders around 2024-05-01 (Asia/Riyadh, UTC+3)."""
    hot = {"category": "Hot drinks", "quantity": 1}
    make_order(
        "A",
        [
            {"product_id": espresso.id, "name": "إسبريسو", "price": 15, **hot},
            {"product_id": latte.id, "name": "لاتيه", "price": 20, **hot},
        ],
        35, cost_of_goods="2.00", created_at=utc(2024, 5, 1, 9, 0),
    )
    make_order(
        "B",
        [{"product_id": "cookie", "name": "كوكيز", "category": "Bakery", "price": 5, "quantity": 2}],
        10, cost_of_goods="9.00", status="delivered", created_at=utc(2024, 4, 30, 22, 0),
    )
    # No COGS recorded: revenue only
    make_order(
        "D",
        [{"product_id": espresso.id, "name": "إسبريسو", "price": 15, **hot}],
        15, created_at=utc(2024, 5, 1, 12, 0),
    )
    # Not closed
    make_order("C", [{"product_id": espresso.id, "price": 15, **hot}], 15, "0.90",
               status="pending", created_at=utc(2024, 5, 1, 9, 30))
    # Next business day in Riyadh
    make_order("E", [{"product_id": espresso.id, "price": 15, **hot}], 15, "0.90",
               created_at=utc(2024, 5, 1, 22, 0))
    # Other branch
    make_order("F", [{"product_id": espresso.id, "price": 15, **hot}], 15, "0.90",
               created_at=utc(2024, 5, 1, 9, 0), branch_id="branch-2")


class TestDayBounds:
    def test_business_day_in_utc(self):
        start, end = day_bounds(DAY)
        assert start == utc(2024, 4, 30, 21, 0)
        assert end == utc(2024, 5, 1, 20, 59, 59, 999999)


class TestDailySnapshot:
    def test_single_order_scenario(self, db_session: Session, make_order):
        make_order("S1", [{"product_id": 1, "price": 15, "quantity": 2}], 30, "1.80", created_at=utc(2024, 5, 1, 8, 0))
        snap = AccountingService(db_session).get_daily_snapshot(BRANCH, DAY)
        assert snap["total_revenue"] == 30.00
        assert snap["total_cogs"] == 1.80
        assert snap["gross_profit"] == 28.20
        assert snap["profit_margin"] == 94.0
        assert snap["waste_amount"] == 0.0
        assert snap["waste_percentage"] == 0.0

    def test_window_status_and_missing_cogs(self, db_session: Session, day_orders, caplog):
        with caplog.at_level(logging.WARNING):
            snap = AccountingService(db_session).get_daily_snapshot(BRANCH, DAY)
        assert snap["sales_count"] == 3
        assert snap["orders_with_cogs"] == 2
        assert snap["orders_missing_cogs"] == 1
        assert snap["total_revenue"] == 60.00
        assert snap["total_cogs"] == 11.00
        assert snap["gross_profit"] == 49.00
        assert snap["profit_margin"] == 81.67
        assert snap["average_order_value"] == 20.00
        assert any(getattr(r, "event", None) == "order_missing_cogs" for r in caplog.records)

    def test_waste(self, db_session: Session, make_order, make_waste, coffee_beans, milk):
        make_order("S1", [{"product_id": 1, "price": 30, "quantity": 1}], 30, "1.80", created_at=utc(2024, 5, 1, 8, 0))
        make_waste(coffee_beans.id, -100, utc(2024, 5, 1, 10, 0), notes="expired")
        make_waste(milk.id, "0.5", utc(2024, 5, 1, 11, 0))
        make_waste(coffee_beans.id, 50, utc(2024, 5, 2, 10, 0))  # next day

        snap = AccountingService(db_session).get_daily_snapshot(BRANCH, DAY)
        assert snap["waste_amount"] == 8.00
        assert snap["waste_percentage"] == 26.67

    def test_empty_day(self, db_session: Session):
        snap = AccountingService(db_session).get_daily_snapshot(BRANCH, DAY)
        assert snap["sales_count"] == 0
        assert snap["total_revenue"] == 0.0
        assert snap["profit_margin"] == 0.0
        assert snap["average_order_value"] == 0.0


class TestProfitReports:
    def test_profit_per_drink(self, db_session: Session, day_orders, espresso):
        start, end = day_bounds(DAY)
        rows = {r["item_name"]: r for r in AccountingService(db_session).get_profit_per_drink(BRANCH, start, end)}

        assert set(rows) == {"إسبريسو", "لاتيه", "كوكيز"}
        esp = rows["إسبريسو"]
        assert esp["item_id"] == str(espresso.id)
        assert esp["quantity_sold"] == 2
        assert esp["total_revenue"] == 30.00
        assert esp["total_cogs"] == 1.00
        assert esp["total_profit"] == 29.00
        # Equal share of 9.00 over one line, times quantity 2
        cookie = rows["كوكيز"]
        assert cookie["total_cogs"] == 18.00
        assert cookie["total_profit"] == -8.00
        assert cookie["profit_margin"] == -80.0
        assert cookie["profit_per_unit"] == -4.00

    def test_profit_per_category(self, db_session: Session, day_orders):
        start, end = day_bounds(DAY)
        rows = {r["category"]: r for r in AccountingService(db_session).get_profit_per_category(BRANCH, start, end)}
        assert rows["Hot drinks"]["total_revenue"] == 50.00
        assert rows["Hot drinks"]["total_cogs"] == 2.00
        assert rows["Hot drinks"]["quantity_sold"] == 3
        assert rows["Bakery"]["total_profit"] == -8.00

    def test_top_items_by_profit(self, db_session: Session, day_orders):
        start, end = day_bounds(DAY)
        top = AccountingService(db_session).get_top_profitable_items(BRANCH, start, end, limit=2)
        assert [t["item_name"] for t in top] == ["إسبريسو", "لاتيه"]

    def test_worst_items(self, db_session: Session, day_orders):
        start, end = day_bounds(DAY)
        worst = AccountingService(db_session).get_worst_items(BRANCH, start, end)
        assert [w["item_name"] for w in worst] == ["كوكيز", "لاتيه", "إسبريسو"]
        assert worst[0]["reason"] == LOSS
        assert worst[0]["all_reasons"] == [LOSS, LOW_VOLUME]
        assert worst[1]["reason"] == LOW_VOLUME

        limited = AccountingService(db_session).get_worst_items(BRANCH, start, end, limit=1)
        assert len(limited) == 1

    @pytest.mark.parametrize(
        "margin, qty, expected",
        [
            (-1, 10, [LOSS]),
            (5, 10, [VERY_LOW_MARGIN]),
            (10, 10, [LOW_MARGIN]),
            (29.99, 3, [LOW_MARGIN, LOW_VOLUME]),
            (30, 5, []),
            (80, 4, [LOW_VOLUME]),
        ],
    )
    def test_classify_item(self, margin, qty, expected):
        assert classify_item(margin, qty) == expected


class TestWasteReport:
    def test_sorted_by_cost_and_skips_missing_items(
        self, db_session: Session, make_waste, coffee_beans, milk, caplog
    ):
        make_waste(milk.id, "0.5", utc(2024, 5, 1, 11, 0))
        make_waste(coffee_beans.id, -100, utc(2024, 5, 1, 10, 0), notes="spilled")
        make_waste(9999, 3, utc(2024, 5, 1, 12, 0))

        start, end = day_bounds(DAY)
        with caplog.at_level(logging.WARNING):
            report = AccountingService(db_session).get_waste_report(BRANCH, start, end)

        assert [r["raw_item_name"] for r in report] == ["حبوب القهوة", "حليب"]
        assert report[0]["waste_amount"] == 5.00
        assert report[0]["quantity"] == 100
        assert report[0]["notes"] == "spilled"
        assert report[1]["unit"] == "l"
        assert report[1]["notes"] == "No reason specified"
        assert any(getattr(r, "event", None) == "waste_raw_item_missing" for r in caplog.records)


class TestPersistedSnapshots:
    def test_save_and_rerun_upserts(self, db_session: Session, day_orders, make_order):
        service = AccountingService(db_session)
        first = service.save_daily_snapshot(TENANT, BRANCH, "manager", DAY)
        assert first.total_revenue == 60
        assert first.total_orders == 3
        assert [p["product_name"] for p in first.top_products_by_revenue] == ["إسبريسو", "لاتيه", "كوكيز"]

        make_order("G", [{"product_id": "tea", "name": "شاي", "price": 8, "quantity": 1}], 8, "0.50",
                   created_at=utc(2024, 5, 1, 15, 0))
        second = service.save_daily_snapshot(TENANT, BRANCH, "manager", DAY)

        assert second.id == first.id
        assert second.total_revenue == 68
        assert db_session.query(AccountingSnapshot).count() == 1

    def test_approved_snapshot_is_not_overwritten(self, db_session: Session, day_orders):
        service = AccountingService(db_session)
        snapshot = service.save_daily_snapshot(TENANT, BRANCH, None, DAY)
        approved = service.approve_snapshot(snapshot.id, "owner")
        assert approved.is_approved is True
        assert approved.approved_by == "owner"

        with pytest.raises(SnapshotApprovedError):
            service.save_daily_snapshot(TENANT, BRANCH, None, DAY)

    def test_approve_missing(self, db_session: Session):
        assert AccountingService(db_session).approve_snapshot(31337) is None

    def test_get_snapshots_range(self, db_session: Session, day_orders):
        service = AccountingService(db_session)
        service.save_daily_snapshot(TENANT, BRANCH, None, DAY)
        service.save_daily_snapshot(TENANT, BRANCH, None, date(2024, 5, 2))
        service.save_daily_snapshot(TENANT, BRANCH, None, date(2024, 5, 10))

        found = service.get_snapshots(TENANT, BRANCH, date(2024, 5, 1), date(2024, 5, 2))
        assert [s.snapshot_date for s in found] == [date(2024, 5, 2), date(2024, 5, 1)]
