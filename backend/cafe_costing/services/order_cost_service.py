"""Order cost snapshots and order-level COGS.

Cost is frozen when the order is created: each line item gets a snapshot
holding a copy of the recipe and modifier breakdown used, and the order
stores those snapshots with its COGS and profit. Later recipe versions
never touch a snapshot that has been written.

Missing cost data never blocks an order. A product without an active
recipe is costed at zero, and that fact is reported in ``warnings`` and
logged as a ``recipe_missing`` event so it can be told apart from a
product that genuinely costs nothing.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import ValidationError
from sqlalchemy.orm import Session

from cafe_costing.core.money import ZERO, money, percentage, to_decimal
from cafe_costing.db.base import utcnow
from cafe_costing.models.order import Order
from cafe_costing.schemas.costing import ModifierSelection, OrderLineItem
from cafe_costing.services.modifier_cost_service import ModifierCostService, serialize_modifier
from cafe_costing.services.recipe_cost_service import RecipeCostService

logger = logging.getLogger(__name__)

Number = Union[Decimal, int, float, str]


def calculate_profit(selling_price: Number, cost: Number) -> Dict[str, Decimal]:
    """Profit and margin (%) of a sale, both rounded to 2 decimals.

    ``profit_amount`` is computed from the rounded operands so that
    ``profit_amount + cost == selling_price`` holds exactly. Margin is 0
    when the selling price is 0.
    """
    selling = money(selling_price)
    cost = money(cost)
    profit = selling - cost
    return {
        "profit_amount": profit,
        "profit_margin": money(percentage(profit, selling)),
    }


def _raw_product_ref(raw_item: Any) -> Optional[str]:
    if not isinstance(raw_item, dict):
        return None
    for key in ("product_id", "productId", "coffeeItemId", "menuItemId"):
        if raw_item.get(key) is not None:
            return str(raw_item[key])
    return None


def _raw_line_revenue(raw_item: Any) -> Decimal:
    """Best-effort price x quantity of a line that failed validation; 0 if unreadable."""
    if not isinstance(raw_item, dict):
        return ZERO
    price = next(
        (raw_item[k] for k in ("price", "unit_price", "unitPrice") if raw_item.get(k) is not None), 0
    )
    quantity = raw_item.get("quantity")
    try:
        return money(to_decimal(price) * to_decimal(1 if quantity is None else quantity))
    except (InvalidOperation, TypeError, ValueError):
        return ZERO


class OrderCostService:
    """Build cost snapshots for line items and aggregate them per order."""

    def __init__(self, db: Session):
        self.db = db
        self.recipes = RecipeCostService(db)
        self.modifiers = ModifierCostService(db)

    def create_order_item_cost_snapshot(
        self,
        product_id: int,
        selling_price: Number,
        quantity: Number,
        modifiers: Optional[Sequence[Union[ModifierSelection, Dict[str, Any]]]] = None,
    ) -> Optional[Dict[str, Any]]:
        """Freeze the cost of one line item.

        Args:
            product_id: Product sold.
            selling_price: Unit selling price.
            quantity: Units sold.
            modifiers: Add-ons chosen per unit.

        Returns:
            The snapshot dict, or None if the product has no active recipe.
        """
        frozen = self.recipes.freeze_recipe_snapshot(product_id)
        if frozen is None:
            logger.warning(
                f"No active recipe for product {product_id}, cost recorded as 0",
                extra={"event": "recipe_missing", "product_id": product_id},
            )
            return None

        qty = to_decimal(quantity)
        unit_recipe_cost = frozen["total_cost"]

        unit_modifiers_cost = ZERO
        modifier_lines: List[Dict[str, Any]] = []
        warnings: List[Dict[str, Any]] = []
        if modifiers:
            resolved = self.modifiers.resolve(modifiers)
            unit_modifiers_cost = resolved["total_cost"]
            modifier_lines = [serialize_modifier(m) for m in resolved["modifiers"]]
            warnings = resolved["warnings"]

        unit_total_cost = unit_recipe_cost + unit_modifiers_cost
        total_cost = money(unit_total_cost * qty)
        total_selling_price = money(to_decimal(selling_price) * qty)
        profit = calculate_profit(total_selling_price, total_cost)

        return {
            "product_id": product_id,
            "recipe_id": frozen["recipe_id"],
            "recipe_version": frozen["version"],
            "quantity": float(qty),
            "unit_selling_price": float(money(selling_price)),
            "base_recipe_cost": float(money(unit_recipe_cost)),
            "modifiers_cost": float(money(unit_modifiers_cost)),
            "total_cost": float(total_cost),
            "selling_price": float(total_selling_price),
            "profit_amount": float(profit["profit_amount"]),
            "profit_margin": float(profit["profit_margin"]),
            "ingredients": [dict(i) for i in frozen["ingredients"]],
            "modifiers": modifier_lines,
            "warnings": warnings,
            "snapshot_time": utcnow().isoformat(),
        }

    def calculate_order_cogs(
        self, items: Sequence[Union[OrderLineItem, Dict[str, Any]]]
    ) -> Dict[str, Any]:
        """Aggregate line item snapshots into order COGS, revenue and profit.

        Items may be raw dicts in any of the historical add-on shapes; they
        are normalized through ``OrderLineItem`` first. Items without an
        active recipe, and stored lines that fail validation (an open item,
        a legacy string product id), contribute revenue and zero cost, and
        are listed in ``missing_cost_items``.
        """
        total_cogs = ZERO
        total_revenue = ZERO
        snapshots: List[Dict[str, Any]] = []
        missing: List[Dict[str, Any]] = []
        warnings: List[Dict[str, Any]] = []

        for position, raw_item in enumerate(items, 1):
            try:
                item = raw_item if isinstance(raw_item, OrderLineItem) else OrderLineItem.model_validate(raw_item)
            except ValidationError as e:
                line_revenue = _raw_line_revenue(raw_item)
                total_revenue += line_revenue
                product_ref = _raw_product_ref(raw_item)
                logger.warning(
                    f"Order line {position} ({product_ref}) cannot be costed: {e.error_count()} invalid field(s)",
                    extra={"event": "item_unresolvable", "product_id": product_ref},
                )
                missing.append({"product_id": product_ref, "selling_price": float(line_revenue)})
                warnings.append({"event": "item_unresolvable", "product_id": product_ref, "line": position})
                continue

            snapshot = self.create_order_item_cost_snapshot(
                item.product_id, item.price, item.quantity, item.modifiers
            )
            if snapshot is None:
                line_revenue = money(item.price * item.quantity)
                total_revenue += line_revenue
                missing.append({"product_id": item.product_id, "selling_price": float(line_revenue)})
                warnings.append({"event": "recipe_missing", "product_id": item.product_id})
                continue

            snapshots.append(snapshot)
            warnings.extend(snapshot["warnings"])
            total_cogs += to_decimal(snapshot["total_cost"])
            total_revenue += to_decimal(snapshot["selling_price"])

        profit = calculate_profit(total_revenue, total_cogs)
        return {
            "total_cogs": float(money(total_cogs)),
            "total_revenue": float(money(total_revenue)),
            "total_profit": float(profit["profit_amount"]),
            "profit_margin": float(profit["profit_margin"]),
            "item_snapshots": snapshots,
            "missing_cost_items": missing,
            "warnings": warnings,
        }

    def record_order_costs(self, order_id: int) -> Optional[Order]:
        """Compute and store COGS on a persisted order, once.

        An order that already carries snapshots is returned untouched so
        that repeated calls cannot re-price history.
        """
        order = self.db.get(Order, order_id)
        if order is None:
            return None
        if order.cost_snapshots is not None:
            logger.debug(f"Order {order.order_number} already has frozen costs")
            return order

        result = self.calculate_order_cogs(order.items or [])
        order.cost_of_goods = Decimal(str(result["total_cogs"]))
        order.profit_amount = Decimal(str(result["total_profit"]))
        order.profit_margin = Decimal(str(result["profit_margin"]))
        order.cost_snapshots = result["item_snapshots"]
        order.cost_recorded_at = utcnow()
        self.db.commit()
        self.db.refresh(order)

        logger.info(
            f"Recorded COGS {order.cost_of_goods} for order {order.order_number} "
            f"({len(result['item_snapshots'])} snapshots, "
            f"{len(result['missing_cost_items'])} without cost)"
        )
        return order
