"""Order COGS and modifier cost routes."""

from fastapi import APIRouter, HTTPException, Request

from cafe_costing.core.rate_limit import limiter
from cafe_costing.db.session import DbSession
from cafe_costing.schemas.costing import ModifierCostRequest, OrderCOGSRequest
from cafe_costing.services.modifier_cost_service import ModifierCostService
from cafe_costing.services.order_cost_service import OrderCostService

router = APIRouter()


@router.post("/modifiers")
@limiter.limit("120/minute")
def calculate_modifiers_cost(request: Request, db: DbSession, body: ModifierCostRequest):
    return ModifierCostService(db).calculate_modifiers_cost(body.modifiers)


@router.post("/orders/cogs")
@limiter.limit("120/minute")
def calculate_order_cogs(request: Request, db: DbSession, body: OrderCOGSRequest):
    """Preview COGS, revenue and profit for a set of line items."""
    return OrderCostService(db).calculate_order_cogs(body.items)


@router.post("/orders/{order_id}/record")
@limiter.limit("120/minute")
def record_order_costs(request: Request, db: DbSession, order_id: int):
    """Freeze COGS on a stored order. Repeated calls return the frozen values."""
    order = OrderCostService(db).record_order_costs(order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "cost_of_goods": float(order.cost_of_goods),
        "profit_amount": float(order.profit_amount),
        "profit_margin": float(order.profit_margin),
        "cost_snapshots": order.cost_snapshots,
        "cost_recorded_at": order.cost_recorded_at.isoformat() if order.cost_recorded_at else None,
    }
