"""Quota Gate - allow/deny decisions for plan-limited resources and features.

Orchestrates the resolver, the usage counters and the feature flag overlay:

    check_resource_limit   soft cap; count with the caller's strategy, then compare
    reserve_resource       hard cap; one conditional increment on the company counter
    check_feature_access   identity bypass > enterprise > feature flag > plan

Failure semantics:
- Identity-bypass actors are decided before the company is read, so a broken
  company record can never deny them.
- An absent or malformed company record means no entitlement (fail closed).
- A data-layer failure raises EntitlementServiceUnavailable. It is never
  reported as a denial.
"""
from typing import Optional, Tuple, Union
import logging

from pydantic import ValidationError
from pymongo.errors import PyMongoError

from database import database
from models import (
    Actor, Company, EffectivePlan, FeatureAccessResult, FeatureKey, GateResult,
    PlanInfo, PlanSource, ResourceKey, UsageStrategy,
)
from services.entitlement_errors import (
    EntitlementServiceUnavailable, FeatureLockedError, PlanLimitReachedError, RecordNotFoundError,
)
from services.feature_flags import active_overrides, apply_overlay, is_feature_overridden
from services.plan_registry import plan_registry, ENTERPRISE_PLAN, UNLIMITED
from services.plan_resolver import IdentityBypassPolicy, active_policy, identity_bypass_reason, resolve
from services.usage_counter import (
    COUNTER_FIELDS, get_usage_counter, decrement_counter, reserve_slot, usage_snapshot,
)

logger = logging.getLogger(__name__)

NO_COMPANY_MESSAGE = "We couldn't find an active plan for your company. Choose a plan to continue."


class QuotaGate:
    """Entitlement decision point used by every mutating endpoint."""

    def __init__(self, policy: Optional[IdentityBypassPolicy] = None):
        # None defers to the resolver's process-wide policy
        self.policy = policy

    # -------------------------------------------------------------------------
    # Loading & resolution
    # -------------------------------------------------------------------------

    async def _load_company(self, company_id: Optional[str]) -> Optional[Company]:
        """Company record, or None when absent or malformed."""
        if not company_id:
            return None

        db = database.get_db()
        try:
            doc = await db.companies.find_one({"id": company_id}, {"_id": 0})
        except PyMongoError as e:
            logger.error(f"Company lookup failed for {company_id}: {e}")
            raise EntitlementServiceUnavailable("load company", e) from e

        if doc is None:
            logger.warning(f"Company {company_id} not found; treating as no entitlement")
            return None
        try:
            return Company(**doc)
        except ValidationError as e:
            logger.warning(f"Company {company_id} record is malformed; treating as no entitlement: {e}")
            return None

    async def resolve_for(
        self,
        actor: Optional[Actor],
        company_id: Optional[str]
    ) -> Tuple[EffectivePlan, Optional[Company]]:
        """Effective plan plus the company snapshot it was resolved from.

        Identity-bypass actors get (Enterprise, None) without any read.
        """
        bypass = identity_bypass_reason(actor, active_policy(self.policy))
        if bypass:
            logger.info(f"Identity bypass ({bypass}) for actor {actor.id} on company {company_id}")
            return resolve(actor, None, self.policy), None

        company = await self._load_company(company_id)
        return resolve(actor, company, self.policy), company

    # -------------------------------------------------------------------------
    # Resource limits (soft cap)
    # -------------------------------------------------------------------------

    async def check_resource_limit(
        self,
        actor: Optional[Actor],
        company_id: Optional[str],
        resource_key: Union[str, ResourceKey],
        strategy: Union[str, UsageStrategy] = UsageStrategy.LIVE
    ) -> GateResult:
        """Decide whether one more unit of a resource may be created.

        Advisory: concurrent callers can each pass and overshoot the limit.
        Use reserve_resource where the cap must hold.
        """
        resource = plan_registry.validate_resource_key(resource_key)
        counter = get_usage_counter(strategy)

        effective, company = await self.resolve_for(actor, company_id)
        plan = effective.plan
        limit = plan_registry.limit_for(plan, resource)

        if plan_registry.is_unlimited(limit):
            return self._unlimited_result(effective, resource, company)

        if company is None:
            return self._no_company_result(effective, resource, limit)

        try:
            current_count = await counter.usage_for(company_id, resource, company=company)
        except RecordNotFoundError:
            # Deleted between the load and the count
            return self._no_company_result(effective, resource, limit)

        if current_count < limit:
            return GateResult(
                allowed=True,
                current_count=current_count,
                limit=limit,
                plan_name=plan.name,
                upgrade_required=False,
                resource_key=resource,
                plan_source=effective.source,
                strategy=counter.strategy,
            )

        return self._limit_reached_result(effective, resource, company_id, current_count, limit, counter.strategy)

    async def enforce_resource_limit(
        self,
        actor: Optional[Actor],
        company_id: Optional[str],
        resource_key: Union[str, ResourceKey],
        strategy: Union[str, UsageStrategy] = UsageStrategy.LIVE
    ) -> GateResult:
        """check_resource_limit that raises PlanLimitReachedError on denial."""
        result = await self.check_resource_limit(actor, company_id, resource_key, strategy)
        if not result.allowed:
            raise PlanLimitReachedError(result)
        return result

    # -------------------------------------------------------------------------
    # Resource limits (hard cap)
    # -------------------------------------------------------------------------

    async def reserve_resource(
        self,
        actor: Optional[Actor],
        company_id: Optional[str],
        resource_key: Union[str, ResourceKey]
    ) -> GateResult:
        """Take one unit of a resource atomically against the cached counter.

        On success current_count includes the reserved unit. The caller must
        release_resource() if it fails to create the resource afterwards.
        """
        resource = plan_registry.validate_resource_key(resource_key)
        effective, company = await self.resolve_for(actor, company_id)
        plan = effective.plan
        limit = plan_registry.limit_for(plan, resource)

        if company is None and effective.source != PlanSource.IDENTITY_BYPASS:
            return self._no_company_result(effective, resource, limit)

        new_count = None
        if company_id:
            new_count = await reserve_slot(company_id, resource, limit)

        if new_count is not None or plan_registry.is_unlimited(limit):
            return GateResult(
                allowed=True,
                current_count=new_count or 0,
                limit=limit,
                plan_name=plan.name,
                upgrade_required=False,
                resource_key=resource,
                plan_source=effective.source,
                strategy=UsageStrategy.CACHED,
            )

        try:
            current_count = await get_usage_counter(UsageStrategy.CACHED).usage_for(company_id, resource)
        except RecordNotFoundError:
            return self._no_company_result(effective, resource, limit)
        return self._limit_reached_result(effective, resource, company_id, current_count, limit, UsageStrategy.CACHED)

    async def release_resource(self, company_id: str, resource_key: Union[str, ResourceKey]) -> bool:
        """Return a unit taken by reserve_resource (or counted at creation)."""
        return await decrement_counter(company_id, resource_key)

    # -------------------------------------------------------------------------
    # Features
    # -------------------------------------------------------------------------

    async def check_feature_access(
        self,
        actor: Optional[Actor],
        company_id: Optional[str],
        feature_key: Union[str, FeatureKey]
    ) -> FeatureAccessResult:
        feature = plan_registry.validate_feature_key(feature_key)
        effective, company = await self.resolve_for(actor, company_id)
        plan = effective.plan

        granted_by = None
        if effective.source == PlanSource.IDENTITY_BYPASS:
            granted_by = "identity_bypass"
        elif effective.is_enterprise:
            granted_by = "enterprise"
        elif is_feature_overridden(company, feature):
            granted_by = "feature_flag"
        elif plan_registry.has_feature(plan, feature):
            granted_by = "plan"

        if granted_by:
            return FeatureAccessResult(
                allowed=True,
                feature_key=feature,
                plan_name=plan.name,
                granted_by=granted_by,
            )

        suggested = plan_registry.minimum_plan_for_feature(plan, feature) or ENTERPRISE_PLAN
        reason = (
            f"{plan_registry.feature_name(feature)} is not available on your current plan. "
            f"Upgrade to {suggested.name} to unlock."
        )
        logger.warning(
            f"Feature locked: company={company_id} plan={plan.id} feature={feature.value} "
            f"suggested={suggested.id}"
        )
        return FeatureAccessResult(
            allowed=False,
            feature_key=feature,
            plan_name=plan.name,
            reason=reason,
            upgrade_required=True,
            suggested_plan=suggested.id,
        )

    async def enforce_feature_access(
        self,
        actor: Optional[Actor],
        company_id: Optional[str],
        feature_key: Union[str, FeatureKey]
    ) -> FeatureAccessResult:
        result = await self.check_feature_access(actor, company_id, feature_key)
        if not result.allowed:
            raise FeatureLockedError(result)
        return result

    # -------------------------------------------------------------------------
    # Entitlement summary
    # -------------------------------------------------------------------------

    async def get_plan_info(
        self,
        actor: Optional[Actor],
        company_id: Optional[str],
        strategy: Union[str, UsageStrategy] = UsageStrategy.CACHED
    ) -> PlanInfo:
        """Plan, limits, usage and effective features for dashboards.

        Pass actor=None to describe the company's own entitlement without
        the caller's identity bypass.
        """
        strategy = get_usage_counter(strategy).strategy
        company = await self._load_company(company_id)
        effective = resolve(actor, company, self.policy)
        plan = effective.plan
        limits = plan_registry.get_limits(plan)

        if company is None:
            usage = {resource.value: 0 for resource in ResourceKey}
        else:
            usage = await usage_snapshot(company_id, strategy, company=company)

        can_add = {
            key: plan_registry.is_unlimited(limit) or usage.get(key, 0) < limit
            for key, limit in limits.items()
        }
        return PlanInfo(
            company_id=company_id,
            plan_id=plan.id,
            plan_name=plan.name,
            label=effective.label,
            source=effective.source,
            is_enterprise=effective.is_enterprise,
            subscription_status=effective.subscription_status,
            limits=limits,
            usage=usage,
            can_add=can_add,
            features=apply_overlay(plan_registry.get_features(plan), company),
            feature_overrides=active_overrides(company),
            usage_strategy=strategy,
        )

    # -------------------------------------------------------------------------
    # Result builders
    # -------------------------------------------------------------------------

    def _unlimited_result(
        self,
        effective: EffectivePlan,
        resource: ResourceKey,
        company: Optional[Company]
    ) -> GateResult:
        # Count from the snapshot already in hand; no extra query
        current_count = getattr(company, COUNTER_FIELDS[resource]) if company else 0
        return GateResult(
            allowed=True,
            current_count=current_count,
            limit=UNLIMITED,
            plan_name=effective.plan.name,
            upgrade_required=False,
            resource_key=resource,
            plan_source=effective.source,
            strategy=UsageStrategy.CACHED if company else None,
        )

    def _no_company_result(self, effective: EffectivePlan, resource: ResourceKey, limit: int) -> GateResult:
        suggested = plan_registry.get_all_plans()[0]
        return GateResult(
            allowed=False,
            current_count=0,
            limit=limit,
            plan_name=effective.plan.name,
            upgrade_required=True,
            message=NO_COMPANY_MESSAGE,
            resource_key=resource,
            plan_source=effective.source,
            suggested_plan=suggested.id,
        )

    def _limit_reached_result(
        self,
        effective: EffectivePlan,
        resource: ResourceKey,
        company_id: Optional[str],
        current_count: int,
        limit: int,
        strategy: UsageStrategy
    ) -> GateResult:
        plan = effective.plan
        suggested = plan_registry.next_plan_for_resource(plan, resource, current_count) or ENTERPRISE_PLAN
        message = (
            f"You've reached your limit of {limit} {plan_registry.resource_label(resource)}. "
            f"Upgrade to {suggested.name} for more."
        )
        logger.warning(
            f"Plan limit reached: company={company_id} plan={plan.id} resource={resource.value} "
            f"usage={current_count}/{limit} strategy={strategy.value}"
        )
        return GateResult(
            allowed=False,
            current_count=current_count,
            limit=limit,
            plan_name=plan.name,
            upgrade_required=True,
            message=message,
            resource_key=resource,
            plan_source=effective.source,
            suggested_plan=suggested.id,
            strategy=strategy,
        )


# Singleton instance
quota_gate = QuotaGate()
