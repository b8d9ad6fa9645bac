"""Customer sales orders as seen by the costing engine."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, DateTime, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from cafe_costing.db.base import Base, TimestampMixin


class OrderStatus(str, Enum):
    """Order lifecycle states. Only closed orders count in accounting."""

    PENDING = "pending"
    PREPARING = "preparing"
    READY = "ready"
    COMPLETED = "completed"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


CLOSED_ORDER_STATUSES = (OrderStatus.COMPLETED.value, OrderStatus.DELIVERED.value)


class Order(Base, TimestampMixin):
    """A sales order. ``items`` is the line list as submitted by the POS."""

    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    tenant_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)
    branch_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), default=OrderStatus.PENDING.value, nullable=False, index=True)
    customer_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    customer_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    payment_method: Mapped[str] = mapped_column(String(50), default="cash", nullable=False)
    items: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)

    # Frozen at order time by OrderCostService.record_order_costs
    cost_of_goods: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    profit_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    profit_margin: Mapped[Optional[Decimal]] = mapped_column(Numeric(7, 2), nullable=True)
    cost_snapshots: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    cost_recorded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
