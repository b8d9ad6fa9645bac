"""Accounting report and snapshot routes."""

from datetime import date
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request, status

from cafe_costing.core.rate_limit import limiter
from cafe_costing.core.responses import list_response
from cafe_costing.db.session import DbSession
from cafe_costing.schemas.accounting import SnapshotApproveRequest, SnapshotSaveRequest
from cafe_costing.services.accounting_service import (
    AccountingService,
    SnapshotApprovedError,
    period_bounds,
    snapshot_to_dict,
)
from cafe_costing.services.scheduler_service import scheduler

router = APIRouter()


@router.get("/daily")
@limiter.limit("60/minute")
def get_daily_snapshot(
    request: Request,
    db: DbSession,
    branch_id: str = Query(...),
    day: Optional[date] = Query(None, alias="date"),
):
    """Live (unsaved) daily figures for a branch."""
    return AccountingService(db).get_daily_snapshot(branch_id, day)


@router.get("/profit/items")
@limiter.limit("60/minute")
def get_profit_per_item(
    request: Request,
    db: DbSession,
    branch_id: str = Query(...),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
):
    start, end = period_bounds(start_date, end_date)
    return list_response(AccountingService(db).get_profit_per_drink(branch_id, start, end))


@router.get("/profit/categories")
@limiter.limit("60/minute")
def get_profit_per_category(
    request: Request,
    db: DbSession,
    branch_id: str = Query(...),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
):
    start, end = period_bounds(start_date, end_date)
    return list_response(AccountingService(db).get_profit_per_category(branch_id, start, end))


@router.get("/items/top")
@limiter.limit("60/minute")
def get_top_items(
    request: Request,
    db: DbSession,
    branch_id: str = Query(...),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    limit: int = Query(10, ge=1, le=100),
):
    start, end = period_bounds(start_date, end_date)
    return list_response(AccountingService(db).get_top_profitable_items(branch_id, start, end, limit))


@router.get("/items/worst")
@limiter.limit("60/minute")
def get_worst_items(
    request: Request,
    db: DbSession,
    branch_id: str = Query(...),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    limit: int = Query(10, ge=1, le=100),
):
    start, end = period_bounds(start_date, end_date)
    return list_response(AccountingService(db).get_worst_items(branch_id, start, end, limit))


@router.get("/waste")
@limiter.limit("60/minute")
def get_waste_report(
    request: Request,
    db: DbSession,
    branch_id: str = Query(...),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
):
    start, end = period_bounds(start_date, end_date)
    return list_response(AccountingService(db).get_waste_report(branch_id, start, end))


@router.post("/snapshots", status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def save_daily_snapshot(request: Request, db: DbSession, body: SnapshotSaveRequest):
    """Compute and store (or recompute) a branch's snapshot for one day."""
    try:
        snapshot = AccountingService(db).save_daily_snapshot(
            body.tenant_id, body.branch_id, body.created_by, body.snapshot_date
        )
    except SnapshotApprovedError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return snapshot_to_dict(snapshot)


@router.get("/snapshots")
@limiter.limit("60/minute")
def get_snapshots(
    request: Request,
    db: DbSession,
    tenant_id: str = Query(...),
    branch_id: str = Query(...),
    start_date: date = Query(...),
    end_date: date = Query(...),
):
    snapshots = AccountingService(db).get_snapshots(tenant_id, branch_id, start_date, end_date)
    return list_response([snapshot_to_dict(s) for s in snapshots])


@router.post("/snapshots/{snapshot_id}/approve")
@limiter.limit("30/minute")
def approve_snapshot(request: Request, db: DbSession, snapshot_id: int, body: SnapshotApproveRequest):
    snapshot = AccountingService(db).approve_snapshot(snapshot_id, body.approved_by)
    if not snapshot:
        raise HTTPException(status_code=404, detail="Snapshot not found")
    return snapshot_to_dict(snapshot)


@router.get("/scheduler/status")
@limiter.limit("60/minute")
def get_scheduler_status(request: Request):
    return scheduler.get_status()
