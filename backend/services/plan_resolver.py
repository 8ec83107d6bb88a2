"""Plan Resolver - decides which single plan applies to a request.

Evaluation order (first match wins):
1. Identity bypass: super admin, partner, or an allow-listed platform operator
2. Company enterprise bypass: plan_override == "enterprise" or lifetime access
3. Company plan override naming a catalog plan
4. Catalog subscription plan with an ACTIVE or TRIALING status
5. No Plan

Overrides beat billing state because they exist to correct it. Identity
bypass beats everything and is decided before the company is consulted.
resolve() is pure: no I/O, no caching between requests.
"""
from dataclasses import dataclass, field
from typing import FrozenSet, Optional
import os

from models import Actor, Company, EffectivePlan, PlanSource, SubscriptionStatus
from services.plan_registry import plan_registry, ENTERPRISE_OVERRIDE

SUBSCRIPTION_STATUSES_ALLOWING_PLAN = frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING})


def _split_env(name: str) -> FrozenSet[str]:
    raw = os.environ.get(name, "")
    return frozenset(item.strip().lower() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class IdentityBypassPolicy:
    """Platform operators granted Enterprise regardless of company state.

    Loaded from PLATFORM_OPERATOR_USER_IDS / PLATFORM_OPERATOR_EMAILS
    (comma-separated). Matching is case-insensitive.
    """
    operator_user_ids: FrozenSet[str] = field(default_factory=frozenset)
    operator_emails: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def from_env(cls) -> "IdentityBypassPolicy":
        return cls(
            operator_user_ids=_split_env("PLATFORM_OPERATOR_USER_IDS"),
            operator_emails=_split_env("PLATFORM_OPERATOR_EMAILS"),
        )

    def is_platform_operator(self, actor: Actor) -> bool:
        if actor.id and actor.id.lower() in self.operator_user_ids:
            return True
        return bool(actor.email) and actor.email.strip().lower() in self.operator_emails


def subscription_allows_plan(status: Optional[SubscriptionStatus]) -> bool:
    return status in SUBSCRIPTION_STATUSES_ALLOWING_PLAN


def identity_bypass_reason(actor: Optional[Actor], policy: IdentityBypassPolicy) -> Optional[str]:
    """Tag of the identity rule the actor satisfies, or None."""
    if actor is None:
        return None
    if actor.is_super_admin:
        return "super_admin"
    if policy.is_platform_operator(actor):
        return "platform_operator"
    if actor.is_partner:
        return "partner"
    return None


def _identity_label(reason: str, actor: Actor) -> str:
    if reason == "partner":
        return f"Partner ({actor.partner_type or 'Founding'})"
    return "Super Admin"


def active_policy(policy: Optional[IdentityBypassPolicy] = None) -> IdentityBypassPolicy:
    return policy or identity_bypass_policy


def resolve(
    actor: Optional[Actor],
    company: Optional[Company],
    policy: Optional[IdentityBypassPolicy] = None
) -> EffectivePlan:
    """Map (actor, company) to exactly one effective plan."""
    policy = active_policy(policy)

    # 1. Identity bypass - never looks at the company
    reason = identity_bypass_reason(actor, policy)
    if reason:
        return EffectivePlan(
            plan=plan_registry.enterprise_plan(),
            source=PlanSource.IDENTITY_BYPASS,
            is_enterprise=True,
            reason=reason,
            label=_identity_label(reason, actor),
            subscription_status=SubscriptionStatus.ACTIVE,
        )

    if company is None:
        return _default_plan(SubscriptionStatus.NONE)

    override = (company.plan_override or "").strip().lower() or None

    # 2. Enterprise override or lifetime access
    if override == ENTERPRISE_OVERRIDE or company.is_lifetime_access:
        lifetime = override != ENTERPRISE_OVERRIDE
        return EffectivePlan(
            plan=plan_registry.enterprise_plan(),
            source=PlanSource.OVERRIDE,
            is_enterprise=True,
            reason="lifetime_access" if lifetime else "enterprise_override",
            label="Enterprise (Lifetime)" if lifetime else "Enterprise",
            subscription_status=SubscriptionStatus.ACTIVE,
            override_reason=company.plan_override_reason,
        )

    # 3. Catalog plan override; unknown ids fall through
    override_plan = plan_registry.lookup(override)
    if override_plan is not None:
        return EffectivePlan(
            plan=override_plan,
            source=PlanSource.OVERRIDE,
            reason="plan_override",
            label=override_plan.name,
            subscription_status=SubscriptionStatus.ACTIVE,
            override_reason=company.plan_override_reason,
        )

    # 4. Paid-up subscription
    subscription_plan = plan_registry.lookup(company.subscription_plan)
    if subscription_plan is not None and subscription_allows_plan(company.subscription_status):
        return EffectivePlan(
            plan=subscription_plan,
            source=PlanSource.SUBSCRIPTION,
            reason="active_subscription",
            label=subscription_plan.name,
            subscription_status=company.subscription_status,
        )

    # 5. Nothing applies
    return _default_plan(company.subscription_status)


def _default_plan(status: SubscriptionStatus) -> EffectivePlan:
    no_plan = plan_registry.no_plan()
    return EffectivePlan(
        plan=no_plan,
        source=PlanSource.DEFAULT,
        reason="no_active_subscription",
        label=no_plan.name,
        subscription_status=status,
    )


# Process-wide policy; tests pass their own
identity_bypass_policy = IdentityBypassPolicy.from_env()
