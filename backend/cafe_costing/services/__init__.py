# Services module

from cafe_costing.services.recipe_cost_service import (
    RecipeCostService,
    RecipeError,
    ProductNotFoundError,
    RecipeNotFoundError,
    RecipeValidationError,
    RecipeVersionConflictError,
)
from cafe_costing.services.modifier_cost_service import ModifierCostService
from cafe_costing.services.order_cost_service import OrderCostService, calculate_profit
from cafe_costing.services.accounting_service import AccountingService, SnapshotApprovedError
from cafe_costing.services.tax_invoice_service import (
    TaxInvoiceService,
    InvoiceChainError,
    InvoiceValidationError,
)
