"""SQLAlchemy models."""

from cafe_costing.models.inventory import MovementType, RawItem, StockMovement
from cafe_costing.models.product import Product, ProductAddon
from cafe_costing.models.recipe import Recipe, RecipeActivation, RecipeLine
from cafe_costing.models.order import CLOSED_ORDER_STATUSES, Order, OrderStatus
from cafe_costing.models.accounting import AccountingSnapshot
from cafe_costing.models.tax_invoice import TaxInvoice

__all__ = [
    "MovementType",
    "RawItem",
    "StockMovement",
    "Product",
    "ProductAddon",
    "Recipe",
    "RecipeActivation",
    "RecipeLine",
    "CLOSED_ORDER_STATUSES",
    "Order",
    "OrderStatus",
    "AccountingSnapshot",
    "TaxInvoice",
]
