"""API routes."""

from fastapi import APIRouter

from cafe_costing.api.routes import accounting, costing, exports, invoices, recipes

api_router = APIRouter()

api_router.include_router(recipes.router, prefix="/recipes", tags=["recipes"])
api_router.include_router(costing.router, prefix="/costing", tags=["costing"])
api_router.include_router(accounting.router, prefix="/accounting", tags=["accounting"])
api_router.include_router(exports.router, prefix="/exports", tags=["exports"])
api_router.include_router(invoices.router, prefix="/invoices", tags=["invoices", "zatca"])
