"""Ingredient cost of order modifiers (add-ons).

A modifier has two independent amounts: ``price_impact`` is what the
customer pays for it, ``recipe_cost`` is the raw material it draws. Only
``recipe_cost`` counts toward COGS. Modifiers unknown to the catalogue are
skipped rather than failing the order, because historical orders may
reference add-ons that were deleted since.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from sqlalchemy.orm import Session

from cafe_costing.core.money import ZERO, money, to_decimal
from cafe_costing.models.inventory import RawItem
from cafe_costing.models.product import ProductAddon

logger = logging.getLogger(__name__)


class ModifierCostService:
    """Resolve modifiers to their ingredient cost."""

    def __init__(self, db: Session):
        self.db = db

    def find_modifier(self, modifier_id: Union[str, int]) -> Optional[ProductAddon]:
        """Look a modifier up by external id first, then by internal id."""
        key = str(modifier_id).strip()
        addon = self.db.query(ProductAddon).filter(ProductAddon.external_id == key).first()
        if addon is None and key.isdigit():
            addon = self.db.get(ProductAddon, int(key))
        return addon

    def resolve(self, modifiers: Sequence[Any]) -> Dict[str, Any]:
        """Cost modifiers keeping full precision. See :meth:`calculate_modifiers_cost`."""
        total = ZERO
        resolved: List[Dict[str, Any]] = []
        skipped: List[str] = []
        warnings: List[Dict[str, Any]] = []

        for mod in modifiers:
            if hasattr(mod, "model_dump"):
                mod = mod.model_dump()
            modifier_id = mod.get("modifier_id")
            quantity = to_decimal(mod.get("quantity") or 1)

            addon = self.find_modifier(modifier_id)
            if addon is None:
                skipped.append(str(modifier_id))
                warnings.append({"event": "modifier_missing", "modifier_id": str(modifier_id)})
                logger.warning(
                    f"Modifier {modifier_id} not found, costed at 0",
                    extra={"event": "modifier_missing", "modifier_id": str(modifier_id)},
                )
                continue

            price_impact = to_decimal(addon.price) * quantity
            recipe_cost = ZERO
            if addon.raw_item_id and addon.quantity_per_unit:
                raw_item = self.db.get(RawItem, addon.raw_item_id)
                if raw_item is not None:
                    recipe_cost = (
                        to_decimal(addon.quantity_per_unit) * quantity * to_decimal(raw_item.unit_cost)
                    )
                else:
                    warnings.append({
                        "event": "modifier_raw_item_missing",
                        "modifier_id": str(modifier_id),
                        "raw_item_id": addon.raw_item_id,
                    })
                    logger.warning(
                        f"Raw item {addon.raw_item_id} of modifier {modifier_id} not found, costed at 0",
                        extra={
                            "event": "modifier_raw_item_missing",
                            "modifier_id": str(modifier_id),
                            "raw_item_id": addon.raw_item_id,
                        },
                    )

            total += recipe_cost
            resolved.append({
                "modifier_id": str(modifier_id),
                "modifier_name": addon.name_ar,
                "quantity": quantity,
                "price_impact": price_impact,
                "recipe_cost": recipe_cost,
                "total_cost": recipe_cost,
            })

        return {"total_cost": total, "modifiers": resolved, "skipped": skipped, "warnings": warnings}

    def calculate_modifiers_cost(self, modifiers: Sequence[Any]) -> Dict[str, Any]:
        """Cost a list of ``{modifier_id, quantity}`` selections.

        Returns:
            Dict with success, total_cost (2 decimals), per-modifier breakdown,
            the ids that were skipped and the data-gap warnings raised.
        """
        resolved = self.resolve(modifiers)
        return {
            "success": True,
            "total_cost": float(money(resolved["total_cost"])),
            "modifiers": [serialize_modifier(m) for m in resolved["modifiers"]],
            "skipped": resolved["skipped"],
            "warnings": resolved["warnings"],
        }


def serialize_modifier(mod: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "modifier_id": mod["modifier_id"],
        "modifier_name": mod["modifier_name"],
        "quantity": float(mod["quantity"]),
        "price_impact": float(money(mod["price_impact"])),
        "recipe_cost": float(money(mod["recipe_cost"])),
        "total_cost": float(money(mod["total_cost"])),
    }
