"""Persisted accounting snapshots."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import JSON, Boolean, Date, DateTime, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from cafe_costing.db.base import Base, TimestampMixin


class AccountingSnapshot(Base, TimestampMixin):
    """Daily financial summary for one branch. Frozen once approved."""

    __tablename__ = "accounting_snapshots"
    __table_args__ = (
        UniqueConstraint("tenant_id", "branch_id", "snapshot_date", name="uq_snapshot_branch_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    branch_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    snapshot_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    snapshot_type: Mapped[str] = mapped_column(String(20), default="daily", nullable=False)
    period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    total_revenue: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    total_orders: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    average_order_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    total_cost_of_goods: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    waste_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    waste_percentage: Mapped[Decimal] = mapped_column(Numeric(7, 2), default=0, nullable=False)
    gross_profit: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    gross_profit_margin: Mapped[Decimal] = mapped_column(Numeric(7, 2), default=0, nullable=False)
    top_products_by_revenue: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    created_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    is_approved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    approved_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
