"""Sellable products and their add-ons (modifiers)."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cafe_costing.db.base import Base, TimestampMixin


class Product(Base, TimestampMixin):
    """A menu drink or food item."""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(primary_key=True)
    name_ar: Mapped[str] = mapped_column(String(255), nullable=False)
    name_en: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class ProductAddon(Base, TimestampMixin):
    """A modifier such as an extra shot or oat milk.

    ``price`` is what the customer pays; the ingredient draw
    (``raw_item_id`` x ``quantity_per_unit``) is what it costs.
    """

    __tablename__ = "product_addons"

    id: Mapped[int] = mapped_column(primary_key=True)
    external_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, unique=True)
    name_ar: Mapped[str] = mapped_column(String(255), nullable=False)
    name_en: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0, nullable=False)
    raw_item_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("raw_items.id", ondelete="SET NULL"), nullable=True
    )
    quantity_per_unit: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 4), nullable=True)

    raw_item = relationship("RawItem", foreign_keys=[raw_item_id])
