from pydantic import BaseModel, Field, ConfigDict, field_validator
from pydantic.alias_generators import to_camel
from typing import Optional, Dict, Any, List
from datetime import datetime
from enum import Enum
import uuid

# ============================================================================
# ENUMS (System Constants)
# ============================================================================

class ResourceKey(str, Enum):
    """Countable resources capped by plan limits."""
    PROPERTIES = "properties"
    TEAM_MEMBERS = "teamMembers"
    SOCIAL_PLATFORMS = "socialPlatforms"

class FeatureKey(str, Enum):
    """Boolean plan features."""
    SHOWINGS = "showings"
    INVOICES = "invoices"
    ANALYTICS = "analytics"
    AUTOMATIONS = "automations"
    PAYMENT_PROCESSING = "paymentProcessing"
    CUSTOM_INTEGRATIONS = "customIntegrations"

class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"
    NONE = "none"

class PlanSource(str, Enum):
    """Which rule produced the effective plan."""
    IDENTITY_BYPASS = "identity-bypass"
    OVERRIDE = "override"
    SUBSCRIPTION = "subscription"
    DEFAULT = "default"

class UsageStrategy(str, Enum):
    """How current consumption is counted."""
    LIVE = "live"      # count rows in the authoritative collection
    CACHED = "cached"  # read the denormalized counter on the company

class UserRole(str, Enum):
    ROLE_MEMBER = "member"
    ROLE_ADMIN = "admin"
    ROLE_SUPER_ADMIN = "super_admin"

class AuditAction(str, Enum):
    # Gating
    PLAN_GATE_DENIED = "PLAN_GATE_DENIED"
    FEATURE_GATE_DENIED = "FEATURE_GATE_DENIED"

    # Admin entitlement actions
    PLAN_OVERRIDE_SET = "PLAN_OVERRIDE_SET"
    PLAN_OVERRIDE_CLEARED = "PLAN_OVERRIDE_CLEARED"
    FEATURE_FLAGS_UPDATED = "FEATURE_FLAGS_UPDATED"

    # Counted resources
    PROPERTY_CREATED = "PROPERTY_CREATED"
    PROPERTY_DELETED = "PROPERTY_DELETED"
    TEAM_INVITATION_CREATED = "TEAM_INVITATION_CREATED"
    SOCIAL_ACCOUNT_CONNECTED = "SOCIAL_ACCOUNT_CONNECTED"
    SOCIAL_ACCOUNT_DISCONNECTED = "SOCIAL_ACCOUNT_DISCONNECTED"


# Provider spellings that differ from ours
_STATUS_ALIASES = {
    "canceled": SubscriptionStatus.CANCELLED,
    "incomplete_expired": SubscriptionStatus.CANCELLED,
    "unpaid": SubscriptionStatus.PAST_DUE,
}


def normalize_subscription_status(value: Any) -> SubscriptionStatus:
    """Map a persisted status string onto SubscriptionStatus; unknown values become NONE."""
    if isinstance(value, SubscriptionStatus):
        return value
    if not value or not isinstance(value, str):
        return SubscriptionStatus.NONE
    key = value.strip().lower()
    if key in _STATUS_ALIASES:
        return _STATUS_ALIASES[key]
    try:
        return SubscriptionStatus(key)
    except ValueError:
        return SubscriptionStatus.NONE

# ============================================================================
# PLAN MODELS
# ============================================================================

class Plan(BaseModel):
    """A subscription tier. Compiled-in configuration, never persisted."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    tagline: str
    price: int  # cents per month
    display_price: str
    tier: int = 0  # position on the upgrade ladder
    limits: Dict[str, int]
    features: Dict[str, bool]

class EffectivePlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    plan: Plan
    source: PlanSource
    is_enterprise: bool = False
    reason: str
    label: str
    subscription_status: SubscriptionStatus = SubscriptionStatus.NONE
    override_reason: Optional[str] = None

# ============================================================================
# CORE RECORDS
# ============================================================================

class Company(BaseModel):
    """Tenant record; only the entitlement fields are modelled."""
    model_config = ConfigDict(extra="ignore")

    id: str
    name: Optional[str] = None
    subscription_plan: Optional[str] = None
    subscription_status: SubscriptionStatus = SubscriptionStatus.NONE
    plan_override: Optional[str] = None
    plan_override_reason: Optional[str] = None
    plan_override_by: Optional[str] = None
    plan_override_at: Optional[str] = None
    is_lifetime_access: bool = False
    feature_flags: Dict[str, Any] = Field(default_factory=dict)

    # Denormalized usage counters
    property_count: int = 0
    team_member_count: int = 0
    social_account_count: int = 0

    @field_validator("subscription_status", mode="before")
    @classmethod
    def _normalize_status(cls, value):
        return normalize_subscription_status(value)

    @field_validator("is_lifetime_access", mode="before")
    @classmethod
    def _none_is_false(cls, value):
        return False if value is None else value

    @field_validator("feature_flags", mode="before")
    @classmethod
    def _none_is_empty(cls, value):
        return {} if value is None else value

    @field_validator("property_count", "team_member_count", "social_account_count", mode="before")
    @classmethod
    def _none_is_zero(cls, value):
        return 0 if value is None else value

class Actor(BaseModel):
    """The requesting identity, assembled from the token and the profile record."""
    model_config = ConfigDict(extra="ignore")

    id: str
    email: Optional[str] = None
    is_super_admin: bool = False
    is_partner: bool = False
    partner_type: Optional[str] = None
    company_id: Optional[str] = None
    role: Optional[str] = None

    @field_validator("is_super_admin", "is_partner", mode="before")
    @classmethod
    def _none_is_false(cls, value):
        return False if value is None else value

class Property(BaseModel):
    model_config = ConfigDict(extra="ignore")

    property_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    company_id: str
    address_line_1: str
    address_line_2: Optional[str] = None
    city: str
    postcode: str
    property_type: str = "residential"
    number_of_units: int = 1
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(datetime.now().astimezone().tzinfo))

class TeamInvitation(BaseModel):
    model_config = ConfigDict(extra="ignore")

    invitation_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    company_id: str
    email: str
    role: UserRole = UserRole.ROLE_MEMBER
    status: str = "pending"
    invited_by: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(datetime.now().astimezone().tzinfo))

class SocialAccount(BaseModel):
    model_config = ConfigDict(extra="ignore")

    account_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    company_id: str
    platform: str  # facebook, instagram, linkedin, x
    handle: str
    connected_by: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(datetime.now().astimezone().tzinfo))

class AuditLog(BaseModel):
    model_config = ConfigDict(extra="ignore")

    audit_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    action: AuditAction
    actor_role: Optional[str] = None
    actor_id: Optional[str] = None
    company_id: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    before_state: Optional[Dict[str, Any]] = None
    after_state: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    reason_code: Optional[str] = None
    ip_address: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(datetime.now().astimezone().tzinfo))

# ============================================================================
# GATE RESULTS (camelCase on the wire)
# ============================================================================

class GateResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    allowed: bool
    current_count: int
    limit: int  # -1 means unlimited
    plan_name: str
    upgrade_required: bool
    message: Optional[str] = None
    resource_key: Optional[ResourceKey] = None
    plan_source: Optional[PlanSource] = None
    suggested_plan: Optional[str] = None
    strategy: Optional[UsageStrategy] = None

class FeatureAccessResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    allowed: bool
    feature_key: FeatureKey
    plan_name: str
    reason: Optional[str] = None
    upgrade_required: bool = False
    suggested_plan: Optional[str] = None
    granted_by: Optional[str] = None  # identity_bypass, enterprise, feature_flag, plan

class PlanInfo(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    company_id: Optional[str] = None
    plan_id: str
    plan_name: str
    label: str
    source: PlanSource
    is_enterprise: bool
    subscription_status: SubscriptionStatus
    limits: Dict[str, int]
    usage: Dict[str, int]
    can_add: Dict[str, bool]
    features: Dict[str, bool]
    feature_overrides: List[str] = Field(default_factory=list)
    usage_strategy: UsageStrategy = UsageStrategy.CACHED

# ============================================================================
# REQUEST/RESPONSE MODELS
# ============================================================================

class CreatePropertyRequest(BaseModel):
    address_line_1: str
    address_line_2: Optional[str] = None
    city: str
    postcode: str
    property_type: str = "residential"
    number_of_units: int = 1

class TeamInvitationRequest(BaseModel):
    email: str
    role: UserRole = UserRole.ROLE_MEMBER

class ConnectSocialAccountRequest(BaseModel):
    platform: str
    handle: str

class PlanOverrideRequest(BaseModel):
    plan: Optional[str] = None  # catalog id, "enterprise", or null to clear
    reason: Optional[str] = None

class FeatureFlagsUpdateRequest(BaseModel):
    # true grants the feature; false or null removes the override
    flags: Dict[str, Optional[bool]]
