"""Entitlement Routes - what the caller's company may do.

Read-only views over the quota gate for dashboards and UI pre-checks.
Denials here are data (200 with allowed=false), not errors.
"""
from fastapi import APIRouter, HTTPException, Request, status
from middleware import get_current_actor
from models import UsageStrategy
from services.entitlement_errors import EntitlementError
from services.quota_gate import quota_gate
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/entitlements", tags=["entitlements"])

@router.get("")
async def get_entitlements(request: Request, strategy: str = UsageStrategy.CACHED.value):
    """Plan, limits, usage and effective features for the caller's company."""
    actor = await get_current_actor(request)

    try:
        info = await quota_gate.get_plan_info(actor, actor.company_id, strategy)
        return info.model_dump(by_alias=True, mode="json")
    except (HTTPException, EntitlementError):
        raise
    except Exception as e:
        logger.error(f"Entitlements error for {actor.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load entitlements"
        )

@router.get("/resources/{resource_key}")
async def check_resource(request: Request, resource_key: str, strategy: str = UsageStrategy.LIVE.value):
    """Would adding one more unit of the resource be allowed right now?"""
    actor = await get_current_actor(request)

    try:
        result = await quota_gate.check_resource_limit(actor, actor.company_id, resource_key, strategy)
        return result.model_dump(by_alias=True, mode="json")
    except (HTTPException, EntitlementError):
        raise
    except Exception as e:
        logger.error(f"Resource check error ({resource_key}) for {actor.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to check resource limit"
        )

@router.get("/features/{feature_key}")
async def check_feature(request: Request, feature_key: str):
    actor = await get_current_actor(request)

    try:
        result = await quota_gate.check_feature_access(actor, actor.company_id, feature_key)
        return result.model_dump(by_alias=True, mode="json")
    except (HTTPException, EntitlementError):
        raise
    except Exception as e:
        logger.error(f"Feature check error ({feature_key}) for {actor.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to check feature access"
        )
