"""Public plan catalog."""
from fastapi import APIRouter
from services.plan_registry import plan_registry

router = APIRouter(prefix="/api/plans", tags=["plans"])

@router.get("")
async def list_plans():
    """Catalog plans in ladder order plus the feature/plan matrix for the pricing page."""
    return {
        "plans": [plan.model_dump() for plan in plan_registry.get_all_plans()],
        "matrix": plan_registry.get_entitlement_matrix(),
    }
