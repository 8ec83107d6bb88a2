"""
Admin entitlement endpoint tests (plan override, feature flags, company view)
and the engine error mapping for feature denials.
"""
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from conftest import auth_headers, company_doc
from models import FeatureAccessResult, FeatureKey
from server import register_entitlement_handlers
from services.entitlement_errors import FeatureLockedError

SUPER_ADMIN_PROFILE = {"id": "user-1", "email": "ops@propflow.test", "is_super_admin": True}
MEMBER_PROFILE = {"id": "user-1", "email": "agent@harbour.test", "company_id": "co-1", "role": "admin"}


class TestPlanOverride:

    def test_enterprise_override_activates_subscription(self, client, mock_db):
        mock_db.profiles.find_one.return_value = SUPER_ADMIN_PROFILE
        mock_db.companies.find_one.return_value = company_doc(subscription_status="cancelled")

        response = client.post(
            "/api/admin/companies/co-1/override",
            json={"plan": "Enterprise", "reason": "Signed enterprise contract"},
            headers=auth_headers(),
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "plan": "enterprise"}
        query, update = mock_db.companies.update_one.await_args.args
        assert query == {"id": "co-1"}
        assert update["$set"]["plan_override"] == "enterprise"
        assert update["$set"]["subscription_status"] == "active"
        assert update["$set"]["plan_override_by"] == "user-1"
        audit = mock_db.audit_logs.insert_one.await_args.args[0]
        assert audit["action"] == "PLAN_OVERRIDE_SET"
        assert audit["before_state"]["subscription_status"] == "cancelled"

    def test_legacy_plan_id_stored_canonically(self, client, mock_db):
        mock_db.profiles.find_one.return_value = SUPER_ADMIN_PROFILE
        mock_db.companies.find_one.return_value = company_doc()

        response = client.post(
            "/api/admin/companies/co-1/override", json={"plan": "professional"}, headers=auth_headers()
        )

        assert response.json()["plan"] == "agency_growth"
        update = mock_db.companies.update_one.await_args.args[1]
        assert "subscription_status" not in update["$set"]

    def test_clearing_override(self, client, mock_db):
        mock_db.profiles.find_one.return_value = SUPER_ADMIN_PROFILE
        mock_db.companies.find_one.return_value = company_doc(plan_override="agency_growth")

        response = client.post("/api/admin/companies/co-1/override", json={"plan": None}, headers=auth_headers())

        assert response.json() == {"success": True, "plan": None}
        update = mock_db.companies.update_one.await_args.args[1]
        assert update["$set"]["plan_override"] is None
        assert update["$set"]["plan_override_at"] is None
        assert mock_db.audit_logs.insert_one.await_args.args[0]["action"] == "PLAN_OVERRIDE_CLEARED"

    def test_unknown_plan_rejected(self, client, mock_db):
        mock_db.profiles.find_one.return_value = SUPER_ADMIN_PROFILE
        response = client.post("/api/admin/companies/co-1/override", json={"plan": "gold"}, headers=auth_headers())
        assert response.status_code == 400
        mock_db.companies.update_one.assert_not_awaited()

    def test_unknown_company(self, client, mock_db):
        mock_db.profiles.find_one.return_value = SUPER_ADMIN_PROFILE
        mock_db.companies.find_one.return_value = None
        response = client.post(
            "/api/admin/companies/co-404/override", json={"plan": "agent_pro"}, headers=auth_headers()
        )
        assert response.status_code == 404

    def test_requires_super_admin(self, client, mock_db):
        mock_db.profiles.find_one.return_value = MEMBER_PROFILE
        response = client.post(
            "/api/admin/companies/co-1/override", json={"plan": "enterprise"}, headers=auth_headers()
        )
        assert response.status_code == 403
        mock_db.companies.update_one.assert_not_awaited()


class TestFeatureFlags:

    def test_true_sets_and_false_unsets(self, client, mock_db):
        mock_db.profiles.find_one.return_value = SUPER_ADMIN_PROFILE
        mock_db.companies.find_one.return_value = company_doc(feature_flags={"invoices": True})

        response = client.patch(
            "/api/admin/companies/co-1/feature-flags",
            json={"flags": {"automations": True, "invoices": False}},
            headers=auth_headers(),
        )

        assert response.status_code == 200
        assert response.json()["feature_flags"] == {"automations": True}
        update = mock_db.companies.update_one.await_args.args[1]
        assert update == {
            "$set": {"feature_flags.automations": True},
            "$unset": {"feature_flags.invoices": ""},
        }
        assert mock_db.audit_logs.insert_one.await_args.args[0]["action"] == "FEATURE_FLAGS_UPDATED"

    def test_unknown_flag_rejected(self, client, mock_db):
        mock_db.profiles.find_one.return_value = SUPER_ADMIN_PROFILE
        mock_db.companies.find_one.return_value = company_doc()

        response = client.patch(
            "/api/admin/companies/co-1/feature-flags",
            json={"flags": {"teleport": True}},
            headers=auth_headers(),
        )

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_ARGUMENT"
        mock_db.companies.update_one.assert_not_awaited()


class TestCompanyEntitlements:

    def test_view_ignores_admin_identity(self, client, mock_db):
        mock_db.profiles.find_one.return_value = SUPER_ADMIN_PROFILE
        mock_db.companies.find_one.return_value = company_doc(
            subscription_plan="agent_pro", subscription_status="active", feature_flags={"analytics": True}
        )
        mock_db.properties.count_documents.return_value = 12

        response = client.get("/api/admin/companies/co-1/entitlements", headers=auth_headers())

        assert response.status_code == 200
        data = response.json()["entitlements"]
        assert data["planId"] == "agent_pro"
        assert data["source"] == "subscription"
        assert data["usage"]["properties"] == 12
        assert data["usageStrategy"] == "live"
        assert data["features"]["analytics"] is True
        assert data["featureOverrides"] == ["analytics"]
        assert response.json()["recent_changes"] == []


class TestFeatureLockedMapping:

    def test_feature_denial_maps_to_403(self):
        app = FastAPI()
        register_entitlement_handlers(app)

        @app.get("/reports")
        async def reports(request: Request):
            raise FeatureLockedError(FeatureAccessResult(
                allowed=False,
                feature_key=FeatureKey.ANALYTICS,
                plan_name="Agent Pro",
                reason="Analytics is not available on your current plan. Upgrade to Agency Growth to unlock.",
                upgrade_required=True,
                suggested_plan="agency_growth",
            ))

        response = TestClient(app).get("/reports")

        assert response.status_code == 403
        data = response.json()
        assert data["code"] == "FEATURE_LOCKED"
        assert data["featureKey"] == "analytics"
        assert data["planName"] == "Agent Pro"
        assert data["suggestedPlan"] == "agency_growth"
        assert data["error"].startswith("Analytics is not available")
