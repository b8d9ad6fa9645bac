"""Order costing schemas.

Upstream systems send a line item's add-ons under one of three keys:
``selectedAddons``, ``addons`` or ``customization.selectedAddons``.
``OrderLineItem`` folds all of them into a single ``modifiers`` list
of ``ModifierSelection`` when the item is validated; nothing past this
boundary sees the legacy shapes.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator


class ModifierSelection(BaseModel):
    """One add-on chosen for a line item."""

    model_config = ConfigDict(populate_by_name=True)

    modifier_id: Union[int, str] = Field(
        validation_alias=AliasChoices("modifier_id", "modifierId", "id", "addonId", "_id")
    )
    quantity: Decimal = Field(default=Decimal("1"), gt=0)

    @model_validator(mode="before")
    @classmethod
    def default_quantity(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("quantity") is None:
            data = {**data, "quantity": 1}
        return data


class OrderLineItem(BaseModel):
    """A sold line item as it arrives at COGS aggregation."""

    model_config = ConfigDict(populate_by_name=True)

    product_id: int = Field(
        validation_alias=AliasChoices("product_id", "productId", "coffeeItemId", "menuItemId")
    )
    price: Decimal = Field(
        ge=0, validation_alias=AliasChoices("price", "unit_price", "unitPrice")
    )
    quantity: Decimal = Field(default=Decimal("1"), gt=0)
    name: Optional[str] = Field(default=None, validation_alias=AliasChoices("name", "nameAr"))
    category: Optional[str] = None
    modifiers: List[ModifierSelection] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def resolve_modifier_shapes(cls, data: Any) -> Any:
        if not isinstance(data, dict) or data.get("modifiers"):
            return data
        customization = data.get("customization") or {}
        raw = (
            data.get("selectedAddons")
            or data.get("addons")
            or (customization.get("selectedAddons") if isinstance(customization, dict) else None)
            or []
        )
        return {**data, "modifiers": raw}


class OrderCOGSRequest(BaseModel):
    items: List[OrderLineItem]


class ModifierCostRequest(BaseModel):
    modifiers: List[ModifierSelection]
