"""Report download routes (CSV, text and PDF)."""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Query, Request, Response

from cafe_costing.core.rate_limit import limiter
from cafe_costing.core.responses import PDF_MEDIA_TYPE, attachment_response
from cafe_costing.db.session import DbSession
from cafe_costing.models.inventory import RawItem
from cafe_costing.models.order import Order
from cafe_costing.services import report_export_service as exports
from cafe_costing.services.accounting_service import AccountingService, period_bounds

router = APIRouter()


@router.get("/orders.csv")
@limiter.limit("20/minute")
def export_orders(
    request: Request,
    db: DbSession,
    branch_id: str = Query(...),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
):
    start, end = period_bounds(start_date, end_date)
    orders = (
        db.query(Order)
        .filter(Order.branch_id == branch_id, Order.created_at >= start, Order.created_at <= end)
        .order_by(Order.created_at)
        .all()
    )
    return attachment_response(exports.export_orders_csv(orders), f"orders_{branch_id}_{start_date or 'today'}.csv")


@router.get("/inventory.csv")
@limiter.limit("20/minute")
def export_inventory(request: Request, db: DbSession):
    items = db.query(RawItem).order_by(RawItem.name_ar).all()
    return attachment_response(exports.export_inventory_csv(items), "inventory.csv")


@router.get("/profit.csv")
@limiter.limit("20/minute")
def export_profit(
    request: Request,
    db: DbSession,
    branch_id: str = Query(...),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
):
    start, end = period_bounds(start_date, end_date)
    rows = AccountingService(db).get_profit_per_drink(branch_id, start, end)
    return attachment_response(exports.export_profit_csv(rows), f"profit_{branch_id}.csv")


@router.get("/waste.csv")
@limiter.limit("20/minute")
def export_waste(
    request: Request,
    db: DbSession,
    branch_id: str = Query(...),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
):
    start, end = period_bounds(start_date, end_date)
    rows = AccountingService(db).get_waste_report(branch_id, start, end)
    return attachment_response(exports.export_waste_csv(rows), f"waste_{branch_id}.csv")


@router.get("/daily-summary")
@limiter.limit("20/minute")
def export_daily_summary(
    request: Request,
    db: DbSession,
    branch_id: str = Query(...),
    day: Optional[date] = Query(None, alias="date"),
):
    snapshot = AccountingService(db).get_daily_snapshot(branch_id, day)
    return Response(content=exports.daily_summary_text(snapshot), media_type="text/plain; charset=utf-8")


@router.get("/profit.pdf")
@limiter.limit("10/minute")
def export_profit_pdf(
    request: Request,
    db: DbSession,
    branch_id: str = Query(...),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    limit: int = Query(10, ge=1, le=50),
):
    start, end = period_bounds(start_date, end_date)
    service = AccountingService(db)
    pdf_bytes = exports.generate_profit_pdf(
        branch_id,
        start,
        end,
        top_items=service.get_top_profitable_items(branch_id, start, end, limit),
        worst_items=service.get_worst_items(branch_id, start, end, limit),
    )
    return attachment_response(pdf_bytes, f"profit_{branch_id}.pdf", PDF_MEDIA_TYPE)
