"""Recipe schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class RecipeIngredientIn(BaseModel):
    """One ingredient as authored.

    Quantity and unit are checked by the cost calculator so that every
    problem in a recipe is reported together.
    """

    model_config = ConfigDict(populate_by_name=True)

    raw_item_id: int = Field(validation_alias=AliasChoices("raw_item_id", "rawItemId"))
    quantity: Decimal
    unit: str


class RecipeCostRequest(BaseModel):
    ingredients: List[RecipeIngredientIn]


class RecipeCreate(BaseModel):
    """Recipe creation schema. Always creates a new version."""

    product_id: int
    name_ar: str = Field(min_length=1)
    name_en: Optional[str] = None
    ingredients: List[RecipeIngredientIn] = Field(min_length=1)
    activate: bool = True
    created_by: Optional[str] = None


class RecipeActivate(BaseModel):
    activated_by: Optional[str] = None


class RecipeLineResponse(BaseModel):
    """Recipe line response schema."""

    id: int
    raw_item_id: int
    raw_item_name: str
    quantity: Decimal
    unit: str
    unit_cost: Decimal
    total_cost: Decimal

    model_config = {"from_attributes": True}


class RecipeResponse(BaseModel):
    """Recipe version response schema."""

    id: int
    product_id: int
    version: int
    name_ar: str
    name_en: Optional[str] = None
    total_cost: Decimal
    is_active: bool
    created_at: datetime
    lines: List[RecipeLineResponse] = []

    model_config = {"from_attributes": True}
