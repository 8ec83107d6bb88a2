"""Canonical Plan Registry - Single Source of Truth for all plan definitions.

This is the AUTHORITATIVE source for:
- Plan ids and the upgrade ladder
- Resource limits (properties, team members, social platforms)
- Feature entitlements
- The two synthetic plans produced by resolution (Enterprise, No Plan)

NON-NEGOTIABLE RULES:
1. One taxonomy. Legacy ids are aliases, never separate plans
2. A limit of -1 is unlimited and can never deny
3. Plans are compiled in; nothing here is persisted or mutated at runtime
4. Synthetic plans are resolution outcomes and are never returned by lookup()

Plan Structure:
- agent_pro: Agent Pro (25 properties, 1 seat, 2 social platforms, $149/mo)
- agency_growth: Agency Growth (100 properties, 5 seats, 5 social platforms, $289/mo)
- brokerage_command: Brokerage Command (unlimited, $499/mo)
"""
from typing import Dict, List, Optional, Any, Union
from models import Plan, ResourceKey, FeatureKey
from services.entitlement_errors import InvalidGateArgument

UNLIMITED = -1

# Sentinel accepted in companies.plan_override
ENTERPRISE_OVERRIDE = "enterprise"


# ============================================================================
# PLAN IDS
# ============================================================================
AGENT_PRO = "agent_pro"
AGENCY_GROWTH = "agency_growth"
BROKERAGE_COMMAND = "brokerage_command"

ENTERPRISE_PLAN_ID = "enterprise"
NO_PLAN_ID = "none"

# Upgrade ladder, lowest first
TIER_LADDER = (AGENT_PRO, AGENCY_GROWTH, BROKERAGE_COMMAND)

# Ids from the retired essentials/professional/enterprise taxonomy
LEGACY_PLAN_ALIASES = {
    "essentials": AGENT_PRO,
    "professional": AGENCY_GROWTH,
    "enterprise": BROKERAGE_COMMAND,
}


def _all_features(enabled: bool) -> Dict[str, bool]:
    return {feature.value: enabled for feature in FeatureKey}


# ============================================================================
# PLAN DEFINITIONS
# ============================================================================
PLAN_DEFINITIONS: Dict[str, Plan] = {
    AGENT_PRO: Plan(
        id=AGENT_PRO,
        name="Agent Pro",
        tagline="Core tools for solo agents & landlords starting their journey.",
        price=14900,
        display_price="$149",
        tier=1,
        limits={
            ResourceKey.PROPERTIES.value: 25,
            ResourceKey.TEAM_MEMBERS.value: 1,
            ResourceKey.SOCIAL_PLATFORMS.value: 2,
        },
        features=_all_features(False),
    ),
    AGENCY_GROWTH: Plan(
        id=AGENCY_GROWTH,
        name="Agency Growth",
        tagline="Streamlined operations for growing portfolios and small teams.",
        price=28900,
        display_price="$289",
        tier=2,
        limits={
            ResourceKey.PROPERTIES.value: 100,
            ResourceKey.TEAM_MEMBERS.value: 5,
            ResourceKey.SOCIAL_PLATFORMS.value: 5,
        },
        features={
            **_all_features(True),
            FeatureKey.CUSTOM_INTEGRATIONS.value: False,
        },
    ),
    BROKERAGE_COMMAND: Plan(
        id=BROKERAGE_COMMAND,
        name="Brokerage Command",
        tagline="Full operational command for large organizations.",
        price=49900,
        display_price="$499",
        tier=3,
        limits={
            ResourceKey.PROPERTIES.value: UNLIMITED,
            ResourceKey.TEAM_MEMBERS.value: UNLIMITED,
            ResourceKey.SOCIAL_PLATFORMS.value: UNLIMITED,
        },
        features=_all_features(True),
    ),
}


# ============================================================================
# SYNTHETIC PLANS - resolution outcomes, not catalog entries
# ============================================================================
ENTERPRISE_PLAN = Plan(
    id=ENTERPRISE_PLAN_ID,
    name="Enterprise",
    tagline="Custom enterprise deployment with unlimited access.",
    price=0,
    display_price="Custom",
    tier=len(TIER_LADDER) + 1,
    limits={resource.value: UNLIMITED for resource in ResourceKey},
    features=_all_features(True),
)

NO_PLAN = Plan(
    id=NO_PLAN_ID,
    name="No Plan",
    tagline="Subscribe to unlock PropFlow features.",
    price=0,
    display_price="$0",
    tier=0,
    limits={
        ResourceKey.PROPERTIES.value: 0,
        ResourceKey.TEAM_MEMBERS.value: 1,
        ResourceKey.SOCIAL_PLATFORMS.value: 0,
    },
    features=_all_features(False),
)


# ============================================================================
# METADATA - Human-readable names used in denial messages
# ============================================================================
RESOURCE_LABELS = {
    ResourceKey.PROPERTIES.value: "properties",
    ResourceKey.TEAM_MEMBERS.value: "team members",
    ResourceKey.SOCIAL_PLATFORMS.value: "social platforms",
}

FEATURE_METADATA = {
    FeatureKey.SHOWINGS.value: {
        "name": "Showings",
        "description": "Schedule and track property showings on a shared calendar",
    },
    FeatureKey.INVOICES.value: {
        "name": "Invoices",
        "description": "Generate and send invoices to tenants and owners",
    },
    FeatureKey.ANALYTICS.value: {
        "name": "Analytics",
        "description": "Portfolio performance dashboards and reports",
    },
    FeatureKey.AUTOMATIONS.value: {
        "name": "Automations",
        "description": "Webhook-driven workflow automations",
    },
    FeatureKey.PAYMENT_PROCESSING.value: {
        "name": "Payment Processing",
        "description": "Collect rent and fees online",
    },
    FeatureKey.CUSTOM_INTEGRATIONS.value: {
        "name": "Custom Integrations",
        "description": "Bespoke integrations and priority API access",
    },
}


# ============================================================================
# PLAN REGISTRY SERVICE
# ============================================================================
class PlanRegistryService:
    """Central service for plan lookup, limits and feature checks."""

    # -------------------------------------------------------------------------
    # Key validation
    # -------------------------------------------------------------------------

    def validate_resource_key(self, resource_key: Union[str, ResourceKey]) -> ResourceKey:
        try:
            return ResourceKey(resource_key)
        except ValueError:
            raise InvalidGateArgument(f"Unknown resource key: {resource_key!r}")

    def validate_feature_key(self, feature_key: Union[str, FeatureKey]) -> FeatureKey:
        try:
            return FeatureKey(feature_key)
        except ValueError:
            raise InvalidGateArgument(f"Unknown feature key: {feature_key!r}")

    # -------------------------------------------------------------------------
    # Plan Information
    # -------------------------------------------------------------------------

    def resolve_plan_id(self, plan_id: Optional[str]) -> Optional[str]:
        """Canonical id for a catalog or legacy id, None if unknown."""
        if not plan_id or not isinstance(plan_id, str):
            return None
        key = plan_id.strip().lower()
        if key in PLAN_DEFINITIONS:
            return key
        return LEGACY_PLAN_ALIASES.get(key)

    def lookup(self, plan_id: Optional[str]) -> Optional[Plan]:
        """Catalog plan for an id (legacy ids accepted). Synthetic plans are never returned."""
        canonical = self.resolve_plan_id(plan_id)
        if canonical is None:
            return None
        return PLAN_DEFINITIONS[canonical]

    def get_all_plans(self) -> List[Plan]:
        """Catalog plans in ladder order."""
        return [PLAN_DEFINITIONS[plan_id] for plan_id in TIER_LADDER]

    def enterprise_plan(self) -> Plan:
        return ENTERPRISE_PLAN

    def no_plan(self) -> Plan:
        return NO_PLAN

    # -------------------------------------------------------------------------
    # Limits & Features
    # -------------------------------------------------------------------------

    def limit_for(self, plan: Plan, resource_key: Union[str, ResourceKey]) -> int:
        """Limit for a resource on a plan; -1 is unlimited."""
        resource = self.validate_resource_key(resource_key)
        return plan.limits.get(resource.value, 0)

    def has_feature(self, plan: Plan, feature_key: Union[str, FeatureKey]) -> bool:
        feature = self.validate_feature_key(feature_key)
        return bool(plan.features.get(feature.value, False))

    def is_unlimited(self, limit: int) -> bool:
        return limit == UNLIMITED

    def get_limits(self, plan: Plan) -> Dict[str, int]:
        return dict(plan.limits)

    def get_features(self, plan: Plan) -> Dict[str, bool]:
        return dict(plan.features)

    def resource_label(self, resource_key: Union[str, ResourceKey]) -> str:
        return RESOURCE_LABELS[self.validate_resource_key(resource_key).value]

    def feature_name(self, feature_key: Union[str, FeatureKey]) -> str:
        return FEATURE_METADATA[self.validate_feature_key(feature_key).value]["name"]

    # -------------------------------------------------------------------------
    # Upgrade suggestions
    # -------------------------------------------------------------------------

    def _plans_above(self, plan: Plan) -> List[Plan]:
        return [p for p in self.get_all_plans() if p.tier > plan.tier]

    def next_plan_for_resource(
        self,
        plan: Plan,
        resource_key: Union[str, ResourceKey],
        current_count: int
    ) -> Optional[Plan]:
        """First plan up the ladder that would admit one more unit of the resource."""
        for candidate in self._plans_above(plan):
            limit = self.limit_for(candidate, resource_key)
            if self.is_unlimited(limit) or limit > current_count:
                return candidate
        return None

    def minimum_plan_for_feature(
        self,
        plan: Plan,
        feature_key: Union[str, FeatureKey]
    ) -> Optional[Plan]:
        """Nearest plan up the ladder that includes the feature."""
        for candidate in self._plans_above(plan):
            if self.has_feature(candidate, feature_key):
                return candidate
        return None

    # -------------------------------------------------------------------------
    # Entitlement Matrix (pricing page / admin)
    # -------------------------------------------------------------------------

    def get_entitlement_matrix(self) -> Dict[str, Any]:
        """Generate complete feature/plan matrix for display."""
        plans = self.get_all_plans()
        features = {}
        for feature_key, info in FEATURE_METADATA.items():
            features[feature_key] = {
                "name": info["name"],
                "description": info["description"],
                "plans": {plan.id: plan.features.get(feature_key, False) for plan in plans},
            }

        return {
            "ladder": list(TIER_LADDER),
            "features": features,
            "plans": {
                plan.id: {
                    "name": plan.name,
                    "tagline": plan.tagline,
                    "price": plan.price,
                    "display_price": plan.display_price,
                    "limits": self.get_limits(plan),
                }
                for plan in plans
            },
        }


# Singleton instance
plan_registry = PlanRegistryService()
