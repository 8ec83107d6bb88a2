"""Admin Entitlement Routes - support actions on a company's entitlement fields.

Super admins only. Every change is audited with before/after state.

- Plan override: a catalog plan id, "enterprise", or null to clear
- Feature flags: per-feature grants on top of the resolved plan
"""
from fastapi import APIRouter, HTTPException, Request, status
from database import database
from middleware import require_super_admin, actor_role
from models import (
    AuditAction, FeatureFlagsUpdateRequest, PlanOverrideRequest, SubscriptionStatus,
)
from services.entitlement_errors import EntitlementError
from services.plan_registry import plan_registry, ENTERPRISE_OVERRIDE
from services.quota_gate import quota_gate
from utils.audit import create_audit_log, get_audit_logs_for_company
from datetime import datetime, timezone
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin/companies", tags=["admin-entitlements"])

ENTITLEMENT_FIELDS = {
    "_id": 0,
    "id": 1,
    "subscription_plan": 1,
    "subscription_status": 1,
    "plan_override": 1,
    "plan_override_reason": 1,
    "plan_override_by": 1,
    "plan_override_at": 1,
    "is_lifetime_access": 1,
    "feature_flags": 1,
}

ENTITLEMENT_AUDIT_ACTIONS = [
    AuditAction.PLAN_OVERRIDE_SET,
    AuditAction.PLAN_OVERRIDE_CLEARED,
    AuditAction.FEATURE_FLAGS_UPDATED,
]


def _normalize_override(plan):
    """Stored form of an override value; raises 400 for anything unknown."""
    if plan is None:
        return None
    value = plan.strip().lower()
    if value == ENTERPRISE_OVERRIDE:
        return ENTERPRISE_OVERRIDE
    canonical = plan_registry.resolve_plan_id(value)
    if canonical is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid plan")
    return canonical


async def _load_company_or_404(company_id: str) -> dict:
    db = database.get_db()
    company = await db.companies.find_one({"id": company_id}, ENTITLEMENT_FIELDS)
    if not company:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Company not found")
    return company


@router.post("/{company_id}/override")
async def set_plan_override(request: Request, company_id: str, data: PlanOverrideRequest):
    """Set or clear the plan override. Setting enterprise also marks the subscription active."""
    admin = await require_super_admin(request)
    db = database.get_db()

    try:
        plan = _normalize_override(data.plan)
        before = await _load_company_or_404(company_id)

        now = datetime.now(timezone.utc).isoformat()
        update = {
            "plan_override": plan,
            "plan_override_reason": data.reason or None,
            "plan_override_by": admin.id,
            "plan_override_at": now if plan else None,
            "updated_at": now,
        }
        if plan == ENTERPRISE_OVERRIDE:
            update["subscription_status"] = SubscriptionStatus.ACTIVE.value

        await db.companies.update_one({"id": company_id}, {"$set": update})

        after = {**before, **{k: v for k, v in update.items() if k != "updated_at"}}
        await create_audit_log(
            action=AuditAction.PLAN_OVERRIDE_SET if plan else AuditAction.PLAN_OVERRIDE_CLEARED,
            actor_role=actor_role(admin),
            actor_id=admin.id,
            company_id=company_id,
            resource_type="company",
            resource_id=company_id,
            before_state=before,
            after_state=after,
            reason_code=data.reason,
        )

        logger.info(f"Plan override for company {company_id} set to {plan} by {admin.id}")
        return {"success": True, "plan": plan}

    except (HTTPException, EntitlementError):
        raise
    except Exception as e:
        logger.error(f"Plan override error for {company_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update plan override"
        )


@router.patch("/{company_id}/feature-flags")
async def update_feature_flags(request: Request, company_id: str, data: FeatureFlagsUpdateRequest):
    """Grant (true) or remove (false/null) per-feature overrides."""
    admin = await require_super_admin(request)
    db = database.get_db()

    try:
        to_set = {}
        to_unset = {}
        for key, enabled in data.flags.items():
            feature = plan_registry.validate_feature_key(key)
            if enabled is True:
                to_set[f"feature_flags.{feature.value}"] = True
            else:
                to_unset[f"feature_flags.{feature.value}"] = ""

        before = await _load_company_or_404(company_id)

        update = {}
        if to_set:
            update["$set"] = to_set
        if to_unset:
            update["$unset"] = to_unset
        if update:
            await db.companies.update_one({"id": company_id}, update)

        before_flags = dict(before.get("feature_flags") or {})
        after_flags = dict(before_flags)
        for path in to_set:
            after_flags[path.split(".", 1)[1]] = True
        for path in to_unset:
            after_flags.pop(path.split(".", 1)[1], None)

        await create_audit_log(
            action=AuditAction.FEATURE_FLAGS_UPDATED,
            actor_role=actor_role(admin),
            actor_id=admin.id,
            company_id=company_id,
            resource_type="company",
            resource_id=company_id,
            before_state=before_flags,
            after_state=after_flags,
        )

        return {"success": True, "feature_flags": after_flags}

    except (HTTPException, EntitlementError):
        raise
    except Exception as e:
        logger.error(f"Feature flag update error for {company_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update feature flags"
        )


@router.get("/{company_id}/entitlements")
async def get_company_entitlements(request: Request, company_id: str, strategy: str = "live"):
    """A company's own entitlement (no identity bypass) plus its recent entitlement changes."""
    await require_super_admin(request)

    try:
        await _load_company_or_404(company_id)
        info = await quota_gate.get_plan_info(None, company_id, strategy)
        history = await get_audit_logs_for_company(company_id, limit=20, actions=ENTITLEMENT_AUDIT_ACTIONS)
        return {
            "entitlements": info.model_dump(by_alias=True, mode="json"),
            "recent_changes": history,
        }

    except (HTTPException, EntitlementError):
        raise
    except Exception as e:
        logger.error(f"Admin entitlements error for {company_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load entitlements"
        )
