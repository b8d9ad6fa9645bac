"""Inventory master data read by the costing engine: raw items and stock movements."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cafe_costing.db.base import Base, TimestampMixin


class MovementType(str, Enum):
    """Kinds of stock movement recorded by inventory."""

    PURCHASE = "purchase"
    SALE = "sale"
    WASTE = "waste"
    ADJUSTMENT = "adjustment"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"


class RawItem(Base, TimestampMixin):
    """A purchasable ingredient. ``unit_cost`` is per ``unit``."""

    __tablename__ = "raw_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, unique=True)
    name_ar: Mapped[str] = mapped_column(String(255), nullable=False)
    name_en: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    unit: Mapped[str] = mapped_column(String(20), default="g", nullable=False)  # g, kg, ml, l, pcs, box
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(12, 4), default=0, nullable=False)
    current_stock: Mapped[Decimal] = mapped_column(Numeric(12, 3), default=0, nullable=False)
    min_stock_threshold: Mapped[Decimal] = mapped_column(Numeric(12, 3), default=0, nullable=False)

    movements: Mapped[list["StockMovement"]] = relationship(
        "StockMovement", back_populates="raw_item"
    )


class StockMovement(Base):
    """Ledger of stock changes per branch. Waste rows feed the waste report."""

    __tablename__ = "stock_movements"

    id: Mapped[int] = mapped_column(primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )
    tenant_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)
    branch_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    raw_item_id: Mapped[int] = mapped_column(
        ForeignKey("raw_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    movement_type: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    raw_item: Mapped["RawItem"] = relationship("RawItem", back_populates="movements")
