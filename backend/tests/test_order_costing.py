"""Tests for modifier costs, line item snapshots and order COGS."""

import logging
from decimal import Decimal

import pytest
from pydantic import ValidationError
from sqlalchemy.orm import Session

from cafe_costing.models.inventory import RawItem
from cafe_costing.models.product import ProductAddon
from cafe_costing.schemas.costing import ModifierSelection, OrderLineItem
from cafe_costing.services.modifier_cost_service import ModifierCostService
from cafe_costing.services.order_cost_service import OrderCostService, calculate_profit
from cafe_costing.services.recipe_cost_service import RecipeCostService


class TestModifierCost:
    def test_lookup_by_external_id(self, db_session: Session, extra_shot):
        result = ModifierCostService(db_session).calculate_modifiers_cost(
            [{"modifier_id": "addon-extra-shot", "quantity": 2}]
        )
        # 9 g x 2 x 0.05
        assert result["total_cost"] == 0.90
        assert result["modifiers"][0]["price_impact"] == 6.00
        assert result["skipped"] == []

    def test_lookup_by_internal_id(self, db_session: Session, extra_shot):
        result = ModifierCostService(db_session).calculate_modifiers_cost(
            [{"modifier_id": extra_shot.id, "quantity": 1}]
        )
        assert result["total_cost"] == 0.45

    def test_price_without_ingredient_costs_nothing(self, db_session: Session, caramel_syrup):
        result = ModifierCostService(db_session).calculate_modifiers_cost(
            [{"modifier_id": "addon-caramel", "quantity": 1}]
        )
        assert result["total_cost"] == 0.0
        assert result["modifiers"][0]["recipe_cost"] == 0.0
        assert result["modifiers"][0]["price_impact"] == 2.00

    def test_unknown_modifier_is_skipped(self, db_session: Session, extra_shot, caplog):
        with caplog.at_level(logging.WARNING):
            result = ModifierCostService(db_session).calculate_modifiers_cost(
                [{"modifier_id": "deleted-addon", "quantity": 1}, {"modifier_id": "addon-extra-shot", "quantity": 1}]
            )
        assert result["success"] is True
        assert result["skipped"] == ["deleted-addon"]
        assert result["total_cost"] == 0.45
        assert any(getattr(r, "event", None) == "modifier_missing" for r in caplog.records)

    def test_deleted_raw_item_costs_zero(self, db_session: Session):
        # Dangling raw item reference (FK enforcement is off on the test engine)
        addon = ProductAddon(external_id="ghost", name_ar="شبح", price=Decimal("4.00"),
                             raw_item_id=4242, quantity_per_unit=Decimal("10"))
        db_session.add(addon)
        db_session.commit()

        result = ModifierCostService(db_session).calculate_modifiers_cost([{"modifier_id": "ghost", "quantity": 1}])
        assert result["modifiers"][0]["recipe_cost"] == 0.0
        assert result["modifiers"][0]["price_impact"] == 4.00
        assert result["warnings"][0]["event"] == "modifier_raw_item_missing"


class TestProfit:
    def test_profit_and_margin(self):
        profit = calculate_profit(30, Decimal("1.80"))
        assert profit["profit_amount"] == Decimal("28.20")
        assert profit["profit_margin"] == Decimal("94.00")

    def test_zero_selling_price(self):
        profit = calculate_profit(0, 5)
        assert profit["profit_amount"] == Decimal("-5.00")
        assert profit["profit_margin"] == Decimal("0")

    @pytest.mark.parametrize("selling, cost", [("15.555", "3.333"), ("0.01", "0.004"), ("99.995", "12.345")])
    def test_profit_plus_cost_equals_selling(self, selling, cost):
        from cafe_costing.core.money import money
        profit = calculate_profit(selling, cost)
        assert profit["profit_amount"] + money(cost) == money(selling)


class TestItemSnapshot:
    def test_two_units_without_modifiers(self, db_session: Session, espresso_recipe, espresso):
        snap = OrderCostService(db_session).create_order_item_cost_snapshot(espresso.id, 15, 2)
        assert snap["base_recipe_cost"] == 0.90
        assert snap["total_cost"] == 1.80
        assert snap["selling_price"] == 30.00
        assert snap["profit_amount"] == 28.20
        assert snap["profit_margin"] == 94.0
        assert snap["recipe_version"] == 1
        assert snap["ingredients"][0]["raw_item_name"] == "حبوب القهوة"

    def test_with_modifiers(self, db_session: Session, espresso_recipe, espresso, extra_shot):
        snap = OrderCostService(db_session).create_order_item_cost_snapshot(
            espresso.id, 18, 1, [{"modifier_id": "addon-extra-shot", "quantity": 1}]
        )
        assert snap["modifiers_cost"] == 0.45
        assert snap["total_cost"] == 1.35
        assert snap["profit_amount"] + snap["total_cost"] == pytest.approx(snap["selling_price"])

    def test_no_active_recipe_returns_none(self, db_session: Session, latte, caplog):
        with caplog.at_level(logging.WARNING):
            assert OrderCostService(db_session).create_order_item_cost_snapshot(latte.id, 20, 1) is None
        assert any(getattr(r, "event", None) == "recipe_missing" for r in caplog.records)

    def test_snapshot_survives_recipe_change(self, db_session: Session, espresso_recipe, espresso, coffee_beans, make_order):
        order = make_order("ORD-1", [{"product_id": espresso.id, "price": 15, "quantity": 2}], 30, status="pending")
        service = OrderCostService(db_session)
        service.record_order_costs(order.id)
        frozen = [dict(s) for s in order.cost_snapshots]

        # New, more expensive recipe version and a raw item price rise
        RecipeCostService(db_session).create_recipe(
            espresso.id, "v2", None, [{"raw_item_id": coffee_beans.id, "quantity": 40, "unit": "g"}]
        )
        coffee_beans.unit_cost = Decimal("0.10")
        db_session.commit()

        again = service.record_order_costs(order.id)
        db_session.refresh(order)
        assert again.cost_of_goods == Decimal("1.80")
        assert order.cost_snapshots == frozen
        assert order.cost_snapshots[0]["total_cost"] == 1.80

        # A fresh snapshot does see the new recipe
        fresh = service.create_order_item_cost_snapshot(espresso.id, 15, 2)
        assert fresh["recipe_version"] == 2
        assert fresh["total_cost"] == 4.00


class TestOrderCOGS:
    def test_scenario_single_item(self, db_session: Session, espresso_recipe, espresso):
        result = OrderCostService(db_session).calculate_order_cogs(
            [{"product_id": espresso.id, "price": 15, "quantity": 2}]
        )
        assert result["total_cogs"] == 1.80
        assert result["total_revenue"] == 30.00
        assert result["total_profit"] == 28.20
        assert result["profit_margin"] == 94.0
        assert len(result["item_snapshots"]) == 1

    @pytest.mark.parametrize(
        "shape",
        [
            {"selectedAddons": [{"addonId": "addon-extra-shot", "quantity": 1}]},
            {"addons": [{"id": "addon-extra-shot"}]},
            {"customization": {"selectedAddons": [{"modifierId": "addon-extra-shot", "quantity": 1}]}},
            {"modifiers": [{"modifier_id": "addon-extra-shot", "quantity": 1}]},
        ],
    )
    def test_all_modifier_shapes(self, db_session: Session, espresso_recipe, espresso, extra_shot, shape):
        item = {"productId": espresso.id, "unitPrice": 18, "quantity": 1, **shape}
        result = OrderCostService(db_session).calculate_order_cogs([item])
        assert result["total_cogs"] == 1.35
        assert result["item_snapshots"][0]["modifiers"][0]["modifier_name"] == "شوت إضافي"

    def test_shapes_resolve_to_modifiers(self):
        item = OrderLineItem.model_validate(
            {"coffeeItemId": 1, "price": 10, "customization": {"selectedAddons": [{"_id": "a1"}]}}
        )
        assert [m.modifier_id for m in item.modifiers] == ["a1"]
        assert item.modifiers[0].quantity == Decimal("1")

    def test_modifier_quantity_defaults_only_when_absent(self):
        assert ModifierSelection.model_validate({"id": "a1", "quantity": None}).quantity == Decimal("1")
        with pytest.raises(ValidationError):
            ModifierSelection.model_validate({"id": "a1", "quantity": 0})

    def test_missing_recipe_counts_revenue_only(self, db_session: Session, espresso_recipe, espresso, latte):
        result = OrderCostService(db_session).calculate_order_cogs([
            {"product_id": espresso.id, "price": 15, "quantity": 1},
            {"product_id": latte.id, "price": 20, "quantity": 1},
        ])
        assert result["total_revenue"] == 35.00
        assert result["total_cogs"] == 0.90
        assert result["missing_cost_items"] == [{"product_id": latte.id, "selling_price": 20.0}]
        assert {"event": "recipe_missing", "product_id": latte.id} in result["warnings"]

    def test_record_order_costs(self, db_session: Session, espresso_recipe, espresso, make_order):
        order = make_order("ORD-2", [{"product_id": espresso.id, "price": 15, "quantity": 2}], 30, status="pending")
        recorded = OrderCostService(db_session).record_order_costs(order.id)
        assert recorded.cost_of_goods == Decimal("1.80")
        assert recorded.profit_amount == Decimal("28.20")
        assert recorded.profit_margin == Decimal("94.00")
        assert recorded.cost_recorded_at is not None

    def test_unresolvable_line_counts_revenue_only(self, db_session: Session, espresso_recipe, espresso, caplog):
        with caplog.at_level(logging.WARNING):
            result = OrderCostService(db_session).calculate_order_cogs([
                {"product_id": espresso.id, "price": 15, "quantity": 1},
                {"productId": "latte-legacy", "price": 5, "quantity": 1},
                {"name": "open item", "price": 3},
            ])
        assert result["total_revenue"] == 23.00
        assert result["total_cogs"] == 0.90
        assert result["missing_cost_items"] == [
            {"product_id": "latte-legacy", "selling_price": 5.0},
            {"product_id": None, "selling_price": 3.0},
        ]
        assert {"event": "item_unresolvable", "product_id": "latte-legacy", "line": 2} in result["warnings"]
        assert [r.event for r in caplog.records if getattr(r, "event", None) == "item_unresolvable"] == [
            "item_unresolvable",
            "item_unresolvable",
        ]

    def test_unreadable_price_counts_nothing(self, db_session: Session):
        result = OrderCostService(db_session).calculate_order_cogs(
            [{"productId": "legacy", "price": "n/a", "quantity": 2}]
        )
        assert result["total_revenue"] == 0.0
        assert result["missing_cost_items"] == [{"product_id": "legacy", "selling_price": 0.0}]

    def test_record_order_with_legacy_line(self, db_session: Session, make_order):
        order = make_order("ORD-4", [{"productId": "latte-legacy", "price": 5, "quantity": 2}], 10)
        recorded = OrderCostService(db_session).record_order_costs(order.id)
        assert recorded.cost_of_goods == Decimal("0.00")
        assert recorded.profit_amount == Decimal("10.00")
        assert recorded.cost_snapshots == []

    def test_record_missing_order(self, db_session: Session):
        assert OrderCostService(db_session).record_order_costs(404) is None
