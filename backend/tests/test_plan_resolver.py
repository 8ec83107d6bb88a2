"""
Plan resolver precedence tests.
identity bypass > enterprise override / lifetime > plan override > active subscription > No Plan
"""
import pytest

from models import Actor, Company, PlanSource, SubscriptionStatus
from services.plan_registry import AGENT_PRO, AGENCY_GROWTH, BROKERAGE_COMMAND, ENTERPRISE_PLAN_ID, NO_PLAN_ID
from services.plan_resolver import IdentityBypassPolicy, resolve

NO_OPERATORS = IdentityBypassPolicy()


def member(**kwargs):
    return Actor(id="user-1", email="agent@harbour.test", company_id="co-1", **kwargs)


def company(**kwargs):
    return Company(id="co-1", **kwargs)


class TestIdentityBypass:

    def test_super_admin_wins_over_cancelled_company(self):
        effective = resolve(
            member(is_super_admin=True),
            company(subscription_plan=AGENT_PRO, subscription_status="cancelled"),
            NO_OPERATORS,
        )
        assert effective.plan.id == ENTERPRISE_PLAN_ID
        assert effective.source == PlanSource.IDENTITY_BYPASS
        assert effective.is_enterprise is True
        assert effective.reason == "super_admin"

    def test_super_admin_without_company(self):
        effective = resolve(member(is_super_admin=True), None, NO_OPERATORS)
        assert effective.source == PlanSource.IDENTITY_BYPASS

    def test_partner_label_includes_type(self):
        effective = resolve(member(is_partner=True, partner_type="Founding"), None, NO_OPERATORS)
        assert effective.reason == "partner"
        assert effective.label == "Partner (Founding)"

    def test_operator_allowlist_by_email_is_case_insensitive(self):
        policy = IdentityBypassPolicy(operator_emails=frozenset({"ops@propflow.test"}))
        actor = Actor(id="user-9", email="Ops@PropFlow.test")
        effective = resolve(actor, company(), policy)
        assert effective.source == PlanSource.IDENTITY_BYPASS
        assert effective.reason == "platform_operator"

    def test_operator_allowlist_by_user_id(self):
        policy = IdentityBypassPolicy(operator_user_ids=frozenset({"user-9"}))
        assert resolve(Actor(id="user-9"), None, policy).is_enterprise is True

    def test_policy_from_env(self, monkeypatch):
        monkeypatch.setenv("PLATFORM_OPERATOR_EMAILS", " Ops@PropFlow.test , ,support@propflow.test")
        monkeypatch.setenv("PLATFORM_OPERATOR_USER_IDS", "user-9")
        policy = IdentityBypassPolicy.from_env()
        assert policy.operator_emails == frozenset({"ops@propflow.test", "support@propflow.test"})
        assert policy.operator_user_ids == frozenset({"user-9"})

    def test_unlisted_member_is_not_bypassed(self):
        policy = IdentityBypassPolicy(operator_emails=frozenset({"ops@propflow.test"}))
        assert resolve(member(), None, policy).source == PlanSource.DEFAULT


class TestCompanyOverrides:

    def test_enterprise_override_beats_active_subscription(self):
        effective = resolve(
            member(),
            company(plan_override="enterprise", subscription_plan=AGENT_PRO, subscription_status="active"),
            NO_OPERATORS,
        )
        assert effective.plan.id == ENTERPRISE_PLAN_ID
        assert effective.source == PlanSource.OVERRIDE
        assert effective.reason == "enterprise_override"

    def test_lifetime_access_is_enterprise(self):
        effective = resolve(member(), company(is_lifetime_access=True), NO_OPERATORS)
        assert effective.is_enterprise is True
        assert effective.source == PlanSource.OVERRIDE
        assert effective.reason == "lifetime_access"

    def test_plan_override_beats_different_subscription(self):
        effective = resolve(
            member(),
            company(plan_override=AGENCY_GROWTH, subscription_plan=AGENT_PRO, subscription_status="active"),
            NO_OPERATORS,
        )
        assert effective.plan.id == AGENCY_GROWTH
        assert effective.source == PlanSource.OVERRIDE
        assert effective.is_enterprise is False

    def test_plan_override_ignores_billing_state(self):
        effective = resolve(member(), company(plan_override=AGENT_PRO, subscription_status="past_due"), NO_OPERATORS)
        assert effective.plan.id == AGENT_PRO

    def test_unknown_override_falls_through_to_subscription(self):
        effective = resolve(
            member(),
            company(plan_override="gold", subscription_plan=AGENCY_GROWTH, subscription_status="trialing"),
            NO_OPERATORS,
        )
        assert effective.plan.id == AGENCY_GROWTH
        assert effective.source == PlanSource.SUBSCRIPTION


class TestSubscription:

    @pytest.mark.parametrize("status", ["active", "trialing", "ACTIVE"])
    def test_entitling_statuses(self, status):
        effective = resolve(member(), company(subscription_plan=AGENT_PRO, subscription_status=status), NO_OPERATORS)
        assert effective.plan.id == AGENT_PRO
        assert effective.source == PlanSource.SUBSCRIPTION

    @pytest.mark.parametrize("status", ["past_due", "cancelled", "canceled", "unpaid", "incomplete", None])
    def test_non_entitling_statuses(self, status):
        effective = resolve(member(), company(subscription_plan=AGENT_PRO, subscription_status=status), NO_OPERATORS)
        assert effective.plan.id == NO_PLAN_ID
        assert effective.source == PlanSource.DEFAULT

    def test_legacy_subscription_plan_resolves_to_canonical(self):
        effective = resolve(member(), company(subscription_plan="enterprise", subscription_status="active"), NO_OPERATORS)
        assert effective.plan.id == BROKERAGE_COMMAND
        assert effective.is_enterprise is False

    def test_status_normalisation(self):
        assert company(subscription_status="canceled").subscription_status == SubscriptionStatus.CANCELLED
        assert company(subscription_status="unpaid").subscription_status == SubscriptionStatus.PAST_DUE
        assert company(subscription_status="weird").subscription_status == SubscriptionStatus.NONE


class TestDefault:

    def test_no_company_is_no_plan(self):
        effective = resolve(member(), None, NO_OPERATORS)
        assert effective.plan.id == NO_PLAN_ID
        assert effective.reason == "no_active_subscription"

    def test_empty_company_is_no_plan(self):
        effective = resolve(member(), company(feature_flags={"analytics": True}), NO_OPERATORS)
        assert effective.plan.id == NO_PLAN_ID
        assert effective.plan.features["analytics"] is False

    def test_no_actor_resolves_company_only(self):
        effective = resolve(None, company(subscription_plan=AGENT_PRO, subscription_status="active"), NO_OPERATORS)
        assert effective.plan.id == AGENT_PRO

    def test_resolution_is_deterministic(self):
        c = company(plan_override=AGENCY_GROWTH)
        assert resolve(member(), c, NO_OPERATORS) == resolve(member(), c, NO_OPERATORS)
