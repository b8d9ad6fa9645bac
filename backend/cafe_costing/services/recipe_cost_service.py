"""Recipe cost calculation and append-only recipe versioning.

A recipe version is never edited. ``create_recipe`` resolves ingredient
costs against current raw item prices, writes a new version row with
``version = max(existing) + 1`` and (by default) moves the product's
active pointer to it. ``(product_id, version)`` is unique, so two
concurrent edits cannot both claim the same version: the loser rolls back
and retries with a fresh version number.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cafe_costing.core.config import settings
from cafe_costing.core.money import ZERO, money, to_decimal
from cafe_costing.db.base import utcnow
from cafe_costing.models.inventory import RawItem
from cafe_costing.models.product import Product
from cafe_costing.models.recipe import Recipe, RecipeActivation, RecipeLine
from cafe_costing.services import units

logger = logging.getLogger(__name__)

RAW_ITEM_NOT_FOUND = "RAW_ITEM_NOT_FOUND"
INVALID_QUANTITY = "INVALID_QUANTITY"
UNSUPPORTED_UNIT = "UNSUPPORTED_UNIT"


class RecipeError(Exception):
    """Base class for recipe operation failures."""


class ProductNotFoundError(RecipeError):
    def __init__(self, product_id: int):
        self.product_id = product_id
        super().__init__(f"Product {product_id} not found")


class RecipeNotFoundError(RecipeError):
    def __init__(self, recipe_id: int):
        self.recipe_id = recipe_id
        super().__init__(f"Recipe {recipe_id} not found")


class RecipeValidationError(RecipeError):
    """Raised by ``create_recipe`` when any ingredient failed validation."""

    def __init__(self, errors: List[Dict[str, str]]):
        self.errors = errors
        super().__init__(
            "Recipe validation failed: " + ", ".join(e["message"] for e in errors)
        )


class RecipeVersionConflictError(RecipeError):
    def __init__(self, product_id: int, attempts: int):
        self.product_id = product_id
        self.attempts = attempts
        super().__init__(
            f"Could not allocate a recipe version for product {product_id} "
            f"after {attempts} attempts"
        )


def _ingredient_fields(ingredient: Any) -> Tuple[Any, Any, str]:
    """Read (raw_item_id, quantity, unit) from a schema object or a dict."""
    if hasattr(ingredient, "model_dump"):
        ingredient = ingredient.model_dump()
    raw_item_id = ingredient.get("raw_item_id", ingredient.get("rawItemId"))
    return raw_item_id, ingredient.get("quantity"), ingredient.get("unit") or ""


class RecipeCostService:
    """Resolve recipe costs and manage recipe versions."""

    def __init__(self, db: Session):
        self.db = db

    # ===== COST CALCULATION =====

    def _resolve_ingredients(
        self, ingredients: Sequence[Any]
    ) -> Tuple[Decimal, List[Dict[str, Any]], List[Dict[str, str]]]:
        """Validate and cost each ingredient.

        Errors accumulate instead of short-circuiting, and the lines that did
        resolve are still returned. Costs stay unrounded.
        """
        parsed = [_ingredient_fields(ing) for ing in ingredients]
        ids = {rid for rid, _, _ in parsed if rid is not None}
        raw_items = {}
        if ids:
            raw_items = {
                r.id: r
                for r in self.db.query(RawItem).filter(RawItem.id.in_(ids)).all()
            }

        total = ZERO
        lines: List[Dict[str, Any]] = []
        errors: List[Dict[str, str]] = []

        for idx, (raw_item_id, quantity, unit) in enumerate(parsed):
            field = f"ingredients[{idx}]"
            raw_item = raw_items.get(raw_item_id)
            if raw_item is None:
                errors.append({
                    "code": RAW_ITEM_NOT_FOUND,
                    "field": f"{field}.raw_item_id",
                    "message": f"Raw item {raw_item_id} not found",
                })
                continue

            qty = to_decimal(quantity) if quantity is not None else ZERO
            if qty <= 0:
                errors.append({
                    "code": INVALID_QUANTITY,
                    "field": f"{field}.quantity",
                    "message": f"Ingredient {raw_item.name_ar} must have quantity > 0",
                })
                continue

            if not units.is_supported_recipe_unit(unit):
                errors.append({
                    "code": UNSUPPORTED_UNIT,
                    "field": f"{field}.unit",
                    "message": f'Unit "{unit}" not supported',
                })
                continue

            unit_cost = to_decimal(raw_item.unit_cost)
            converted = units.convert_or_keep(qty, unit, raw_item.unit)
            line_cost = converted * unit_cost
            total += line_cost
            lines.append({
                "raw_item_id": raw_item.id,
                "raw_item_name": raw_item.name_ar,
                "quantity": qty,
                "unit": unit.lower().strip(),
                "unit_cost": unit_cost,
                "total_cost": line_cost,
            })

        return total, lines, errors

    def calculate_recipe_cost(self, ingredients: Sequence[Any]) -> Dict[str, Any]:
        """Cost a list of ``{raw_item_id, quantity, unit}`` ingredients.

        Returns:
            Dict with success, total_cost (rounded once, to 2 decimals),
            per-ingredient breakdown and, if any, the validation errors.
        """
        total, lines, errors = self._resolve_ingredients(ingredients)
        result = {
            "success": not errors,
            "total_cost": float(money(total)),
            "ingredients": [
                {
                    **line,
                    "quantity": float(line["quantity"]),
                    "unit_cost": float(line["unit_cost"]),
                    "total_cost": float(line["total_cost"]),
                }
                for line in lines
            ],
        }
        if errors:
            result["errors"] = errors
        return result

    # ===== VERSIONING =====

    def create_recipe(
        self,
        product_id: int,
        name_ar: str,
        name_en: Optional[str],
        ingredients: Sequence[Any],
        activate: bool = True,
        created_by: Optional[str] = None,
    ) -> Recipe:
        """Create a new immutable recipe version for a product.

        Raises:
            ProductNotFoundError: the target product does not exist.
            RecipeValidationError: any ingredient failed validation.
            RecipeVersionConflictError: no free version after bounded retries.
        """
        product = self.db.query(Product).filter(Product.id == product_id).first()
        if not product:
            raise ProductNotFoundError(product_id)

        total, lines, errors = self._resolve_ingredients(ingredients)
        if errors:
            raise RecipeValidationError(errors)

        attempts = max(1, settings.recipe_max_retries)
        for attempt in range(1, attempts + 1):
            last_version = (
                self.db.query(func.max(Recipe.version))
                .filter(Recipe.product_id == product_id)
                .scalar()
            )
            recipe = Recipe(
                product_id=product_id,
                version=(last_version or 0) + 1,
                name_ar=name_ar,
                name_en=name_en,
                total_cost=money(total),
                is_active=False,
                lines=[RecipeLine(**line) for line in lines],
            )
            try:
                self.db.add(recipe)
                self.db.flush()
                if activate:
                    self._point_active(recipe, created_by)
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                logger.warning(
                    f"Recipe version collision for product {product_id} "
                    f"(attempt {attempt}/{attempts})"
                )
                continue

            self.db.refresh(recipe)
            logger.info(
                f"Created recipe v{recipe.version} for product {product_id} "
                f"(cost {recipe.total_cost}, active={recipe.is_active})"
            )
            return recipe

        raise RecipeVersionConflictError(product_id, attempts)

    def activate_version(self, recipe_id: int, activated_by: Optional[str] = None) -> Recipe:
        """Make an existing version the product's live recipe."""
        recipe = self.db.query(Recipe).filter(Recipe.id == recipe_id).first()
        if not recipe:
            raise RecipeNotFoundError(recipe_id)
        self._point_active(recipe, activated_by)
        self.db.commit()
        self.db.refresh(recipe)
        logger.info(f"Activated recipe v{recipe.version} for product {recipe.product_id}")
        return recipe

    def _point_active(self, recipe: Recipe, activated_by: Optional[str]) -> None:
        """Move the active pointer; callers commit."""
        self.db.query(Recipe).filter(
            Recipe.product_id == recipe.product_id,
            Recipe.id != recipe.id,
            Recipe.is_active.is_(True),
        ).update({Recipe.is_active: False}, synchronize_session="fetch")
        recipe.is_active = True

        pointer = self.db.get(RecipeActivation, recipe.product_id)
        if pointer is None:
            self.db.add(RecipeActivation(
                product_id=recipe.product_id,
                recipe_id=recipe.id,
                activated_by=activated_by,
            ))
        else:
            pointer.recipe_id = recipe.id
            pointer.activated_by = activated_by
            pointer.activated_at = utcnow()
        self.db.flush()

    def get_active_recipe(self, product_id: int) -> Optional[Recipe]:
        """Return the live recipe version of a product, or None."""
        pointer = self.db.get(RecipeActivation, product_id)
        if pointer is not None:
            return pointer.recipe
        return (
            self.db.query(Recipe)
            .filter(Recipe.product_id == product_id, Recipe.is_active.is_(True))
            .order_by(Recipe.version.desc())
            .first()
        )

    def list_versions(self, product_id: int) -> List[Recipe]:
        return (
            self.db.query(Recipe)
            .filter(Recipe.product_id == product_id)
            .order_by(Recipe.version.desc())
            .all()
        )

    def freeze_recipe_snapshot(self, product_id: int) -> Optional[Dict[str, Any]]:
        """Copy the active recipe's cost and ingredient breakdown.

        The copy is plain data, detached from the recipe rows, so it can be
        embedded in an order and outlive later recipe versions.
        """
        recipe = self.get_active_recipe(product_id)
        if recipe is None:
            return None
        return {
            "recipe_id": recipe.id,
            "version": recipe.version,
            "total_cost": to_decimal(recipe.total_cost),
            "ingredients": [line.to_dict() for line in recipe.lines],
        }
