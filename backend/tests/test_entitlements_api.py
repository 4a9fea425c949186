"""
API tests for tier catalog, resolved entitlements and tier-gating dependencies.
"""

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from cortex.api.dependencies.auth import require_capability, require_pro_access
from cortex.api.dependencies.providers import get_profile_repository
from cortex.entitlements.tiers import Sector, Tier
from cortex.platform.errors import register_error_handlers
from cortex.platform.identity_gate import get_identity_provider
from cortex.repositories.profile_repository import ProfileRepository

from tests.fakes import auth_headers


def test_tiers_are_public(client):
    response = client.get("/api/tiers")

    assert response.status_code == 200
    tiers = {t["tier"]: t for t in response.json()}
    assert set(tiers) == {"free", "finance_pro", "elite"}
    assert tiers["finance_pro"]["display_name"] == "Finance Pro"
    assert tiers["finance_pro"]["sector"] == "finance"
    assert tiers["elite"]["sector"] is None
    assert tiers["elite"]["annual_savings"] == 58


class TestEntitlements:

    def test_free_user(self, client, identity, make_profile):
        make_profile("user-1", tier=Tier.FREE)
        token = identity.add_user("user-1")

        response = client.get("/api/entitlements", headers=auth_headers(token))

        assert response.status_code == 200
        body = response.json()
        assert body["tier"] == "free"
        assert body["sectors"] == [{
            "sector": "finance",
            "has_pro_access": False,
            "recommended_upgrade": "finance_pro",
            "can_upgrade": True,
        }]
        access = {c["key"]: c["has_access"] for c in body["capabilities"]}
        assert access["budget"] is True
        assert access["roth-optimizer"] is False

    def test_elite_user(self, client, identity, make_profile):
        make_profile("user-1", tier=Tier.ELITE)
        token = identity.add_user("user-1")

        body = client.get("/api/entitlements", headers=auth_headers(token)).json()

        assert body["tier_info"]["color"] == "purple"
        assert all(c["has_access"] for c in body["capabilities"])
        assert body["sectors"][0]["can_upgrade"] is False

    def test_missing_profile_reads_as_free(self, client, identity):
        token = identity.add_user("user-1")

        body = client.get("/api/entitlements", headers=auth_headers(token)).json()

        assert body["tier"] == "free"

    def test_unknown_sector_is_400(self, client, identity, make_profile):
        make_profile("user-1")
        token = identity.add_user("user-1")

        response = client.get("/api/entitlements?sector=health", headers=auth_headers(token))

        assert response.status_code == 400

    @pytest.mark.parametrize("current,required,expected", [
        (Tier.FREE, "finance_pro", True),
        (Tier.FINANCE_PRO, "elite", True),
        (Tier.ELITE, "finance_pro", False),
        (Tier.FINANCE_PRO, "finance_pro", False),
    ])
    def test_upgrade_check(self, client, identity, make_profile, current, required, expected):
        make_profile("user-1", tier=current)
        token = identity.add_user("user-1")

        response = client.get(
            f"/api/entitlements/upgrade-check?required={required}", headers=auth_headers(token)
        )

        assert response.status_code == 200
        assert response.json()["show_upgrade_prompt"] is expected

    def test_upgrade_check_rejects_unknown_tier(self, client, identity):
        token = identity.add_user("user-1")

        response = client.get("/api/entitlements/upgrade-check?required=pro", headers=auth_headers(token))

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"


class TestTierGates:
    """require_pro_access / require_capability on a minimal app."""

    @pytest.fixture
    def gated_client(self, db_session, identity):
        app = FastAPI()
        register_error_handlers(app)

        @app.get("/finance-pro")
        def finance_pro(tier: Tier = Depends(require_pro_access(Sector.FINANCE))):
            return {"tier": tier.value}

        @app.get("/roth")
        def roth(tier: Tier = Depends(require_capability("roth-optimizer"))):
            return {"tier": tier.value}

        app.dependency_overrides[get_identity_provider] = lambda: identity
        app.dependency_overrides[get_profile_repository] = lambda: ProfileRepository(db_session)
        return TestClient(app)

    def test_free_tier_denied_with_upgrade_hint(self, gated_client, identity, make_profile):
        make_profile("user-1", tier=Tier.FREE)
        token = identity.add_user("user-1")

        response = gated_client.get("/finance-pro", headers=auth_headers(token))

        assert response.status_code == 403
        details = response.json()["details"]
        assert details["tier"] == "free"
        assert details["recommended_upgrade"] == "finance_pro"

    @pytest.mark.parametrize("tier", [Tier.FINANCE_PRO, Tier.ELITE])
    def test_pro_and_elite_allowed(self, gated_client, identity, make_profile, tier):
        make_profile("user-1", tier=tier)
        token = identity.add_user("user-1")

        assert gated_client.get("/finance-pro", headers=auth_headers(token)).status_code == 200
        assert gated_client.get("/roth", headers=auth_headers(token)).json() == {"tier": tier.value}

    def test_capability_gate_denies_free(self, gated_client, identity, make_profile):
        make_profile("user-1", tier=Tier.FREE)
        token = identity.add_user("user-1")

        response = gated_client.get("/roth", headers=auth_headers(token))

        assert response.status_code == 403
        assert response.json()["error"] == "Roth Optimizer requires a Pro plan"

    def test_unauthenticated_is_401(self, gated_client):
        assert gated_client.get("/finance-pro").status_code == 401

    def test_unknown_capability_rejected_at_definition(self):
        with pytest.raises(ValueError):
            require_capability("not-a-tool")
