"""Recipe (Bill of Materials) models.

Recipes are append-only: every edit produces a new ``version`` row for the
product. Which version is live is recorded separately in
``RecipeActivation`` so that creating and activating are distinct steps.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cafe_costing.db.base import Base, TimestampMixin


class Recipe(Base, TimestampMixin):
    """One immutable version of a product's recipe."""

    __tablename__ = "recipes"
    __table_args__ = (
        UniqueConstraint("product_id", "version", name="uq_recipe_product_version"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    name_ar: Mapped[str] = mapped_column(String(255), nullable=False)
    name_en: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    total_cost: Mapped[Decimal] = mapped_column(Numeric(12, 4), default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    lines: Mapped[list["RecipeLine"]] = relationship(
        "RecipeLine",
        back_populates="recipe",
        cascade="all, delete-orphan",
        order_by="RecipeLine.id",
    )
    product = relationship("Product")


class RecipeLine(Base):
    """An ingredient of a recipe version, with its cost resolved at creation."""

    __tablename__ = "recipe_lines"

    id: Mapped[int] = mapped_column(primary_key=True)
    recipe_id: Mapped[int] = mapped_column(
        ForeignKey("recipes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    raw_item_id: Mapped[int] = mapped_column(
        ForeignKey("raw_items.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)
    raw_item_name: Mapped[str] = mapped_column(String(255), nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False)
    total_cost: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False)

    recipe: Mapped["Recipe"] = relationship("Recipe", back_populates="lines")

    def to_dict(self) -> dict:
        return {
            "raw_item_id": self.raw_item_id,
            "raw_item_name": self.raw_item_name,
            "quantity": float(self.quantity),
            "unit": self.unit,
            "unit_cost": float(self.unit_cost),
            "total_cost": float(self.total_cost),
        }


class RecipeActivation(Base):
    """Pointer to the live recipe version of a product."""

    __tablename__ = "recipe_activations"

    product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id", ondelete="CASCADE"), primary_key=True
    )
    recipe_id: Mapped[int] = mapped_column(
        ForeignKey("recipes.id", ondelete="CASCADE"), nullable=False
    )
    activated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    activated_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    recipe: Mapped["Recipe"] = relationship("Recipe")
