"""Recipe versioning and cost routes."""

from fastapi import APIRouter, HTTPException, Request, status

from cafe_costing.core.rate_limit import limiter
from cafe_costing.core.responses import list_response
from cafe_costing.db.session import DbSession
from cafe_costing.schemas.recipe import RecipeActivate, RecipeCostRequest, RecipeCreate, RecipeResponse
from cafe_costing.services.recipe_cost_service import (
    ProductNotFoundError,
    RecipeCostService,
    RecipeNotFoundError,
    RecipeValidationError,
    RecipeVersionConflictError,
)

router = APIRouter()


@router.post("/calculate-cost")
@limiter.limit("60/minute")
def calculate_recipe_cost(request: Request, db: DbSession, body: RecipeCostRequest):
    """Cost a draft ingredient list without saving it."""
    return RecipeCostService(db).calculate_recipe_cost(body.ingredients)


@router.post("/", response_model=RecipeResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def create_recipe(request: Request, db: DbSession, body: RecipeCreate):
    """Create a new recipe version (and activate it unless told otherwise)."""
    try:
        return RecipeCostService(db).create_recipe(
            body.product_id,
            body.name_ar,
            body.name_en,
            body.ingredients,
            activate=body.activate,
            created_by=body.created_by,
        )
    except ProductNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except RecipeValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": str(e), "errors": e.errors},
        )
    except RecipeVersionConflictError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))


@router.get("/products/{product_id}/active", response_model=RecipeResponse)
@limiter.limit("60/minute")
def get_active_recipe(request: Request, db: DbSession, product_id: int):
    recipe = RecipeCostService(db).get_active_recipe(product_id)
    if not recipe:
        raise HTTPException(status_code=404, detail="No active recipe for this product")
    return recipe


@router.get("/products/{product_id}/versions")
@limiter.limit("60/minute")
def list_recipe_versions(request: Request, db: DbSession, product_id: int):
    """All versions of a product's recipe, newest first."""
    versions = RecipeCostService(db).list_versions(product_id)
    return list_response([RecipeResponse.model_validate(r).model_dump(mode="json") for r in versions])


@router.post("/{recipe_id}/activate", response_model=RecipeResponse)
@limiter.limit("30/minute")
def activate_recipe(request: Request, db: DbSession, recipe_id: int, body: RecipeActivate):
    try:
        return RecipeCostService(db).activate_version(recipe_id, body.activated_by)
    except RecipeNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
