"""
Tests for the HTTP call surface.

Validates:
- Ok / Err mapping to response bodies and status codes
- Caller identity taken from the X-Caller-Identity header
- Query endpoints return null for absent records
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from pension_ledger.api.app import CALLER_HEADER, create_app
from pension_ledger.clock import DeterministicClock
from pension_ledger.governance.permissions import PermissionEngine
from pension_ledger.ledger.allocation import AllocationLedger
from pension_ledger.ledger.benefits import BenefitLedger
from pension_ledger.ledger.database import create_ledger_engine, initialize_schema

ADMIN = "fund-administrator"
AS_ADMIN = {CALLER_HEADER: ADMIN}
AS_OUTSIDER = {CALLER_HEADER: "member-42"}


class TestLedgerApi:
    """End-to-end calls through FastAPI."""

    def setup_method(self):
        self.engine = create_ledger_engine("sqlite://")
        initialize_schema(self.engine)
        permissions = PermissionEngine.single_administrator(ADMIN)
        clock = DeterministicClock()
        self.allocation = AllocationLedger(self.engine, permissions, clock=clock)
        self.benefits = BenefitLedger(self.engine, permissions, clock=clock)
        self.client = TestClient(create_app(self.allocation, self.benefits))

    def teardown_method(self):
        self.engine.dispose()

    def test_add_and_get_asset_class(self):
        response = self.client.post(
            "/allocation/asset-classes",
            json={"name": "Stocks", "allocation_percentage": 60},
            headers=AS_ADMIN,
        )
        assert response.status_code == 200
        assert response.json() == {"ok": 0}

        response = self.client.get("/allocation/asset-classes/0")
        assert response.json() == {
            "ok": {"id": 0, "name": "Stocks", "allocation_percentage": 60, "current_value": 0}
        }
        assert self.client.get("/allocation/asset-class-count").json() == {"ok": 1}

    def test_missing_asset_class_is_null(self):
        response = self.client.get("/allocation/asset-classes/5")
        assert response.status_code == 200
        assert response.json() == {"ok": None}

    def test_unauthorized_is_403(self):
        response = self.client.post(
            "/allocation/asset-classes",
            json={"name": "Stocks", "allocation_percentage": 60},
            headers=AS_OUTSIDER,
        )
        assert response.status_code == 403
        assert response.json() == {"error": "UNAUTHORIZED", "code": 100}

    def test_missing_header_is_unauthorized(self):
        response = self.client.put("/allocation/total-fund-value", json={"value": 10})
        assert response.status_code == 403

    def test_invalid_percentage_is_422(self):
        response = self.client.post(
            "/allocation/asset-classes",
            json={"name": "Stocks", "allocation_percentage": 101},
            headers=AS_ADMIN,
        )
        assert response.status_code == 422
        assert response.json() == {"error": "INVALID_PERCENTAGE", "code": 101}

    def test_update_unknown_asset_is_404(self):
        response = self.client.put(
            "/allocation/asset-classes/3/value", json={"value": 10}, headers=AS_ADMIN
        )
        assert response.status_code == 404
        assert response.json() == {"error": "ASSET_CLASS_NOT_FOUND", "code": 102}

    def test_fund_value(self):
        response = self.client.put(
            "/allocation/total-fund-value", json={"value": 5_000_000}, headers=AS_ADMIN
        )
        assert response.json() == {"ok": True}
        assert self.client.get("/allocation/total-fund-value").json() == {"ok": 5_000_000}

    def test_oversized_name_is_422(self):
        response = self.client.post(
            "/allocation/asset-classes",
            json={"name": "x" * 65, "allocation_percentage": 10},
            headers=AS_ADMIN,
        )
        assert response.status_code == 422
        assert response.json()["error"] == "MALFORMED_INPUT"

    def test_retiree_flow(self):
        response = self.client.post(
            "/benefits/retirees",
            json={
                "identity": "retiree-1",
                "years_of_service": 30,
                "final_average_salary": 50000,
                "benefit_factor": 200,
            },
            headers=AS_ADMIN,
        )
        assert response.json() == {"ok": 30000}

        for amount in (30000, 30000, 29000):
            self.client.post(
                "/benefits/retirees/retiree-1/payments", json={"amount": amount}, headers=AS_ADMIN
            )

        assert self.client.get("/benefits/retirees/retiree-1/payment-count").json() == {"ok": 3}
        assert self.client.get("/benefits/retirees/retiree-1/total-payments").json() == {"ok": 89000}

        payment = self.client.get("/benefits/retirees/retiree-1/payments/2").json()["ok"]
        assert payment["amount"] == 29000
        assert payment["sequence_number"] == 2

        history = self.client.get("/benefits/retirees/retiree-1/payments").json()["ok"]
        assert [p["amount"] for p in history] == [30000, 30000, 29000]

    def test_duplicate_registration_is_409(self):
        body = {
            "identity": "retiree-1",
            "years_of_service": 30,
            "final_average_salary": 50000,
            "benefit_factor": 200,
        }
        self.client.post("/benefits/retirees", json=body, headers=AS_ADMIN)
        response = self.client.post("/benefits/retirees", json=body, headers=AS_ADMIN)
        assert response.status_code == 409
        assert response.json() == {"error": "ALREADY_REGISTERED", "code": 102}

    def test_inactive_payment_is_422(self):
        self.benefits.register_retiree(ADMIN, "retiree-1", 30, 50000, 200)
        response = self.client.put(
            "/benefits/retirees/retiree-1/status", json={"is_active": False}, headers=AS_ADMIN
        )
        assert response.json() == {"ok": True}

        response = self.client.post(
            "/benefits/retirees/retiree-1/payments", json={"amount": 30000}, headers=AS_ADMIN
        )
        assert response.status_code == 422
        assert response.json() == {"error": "INVALID_PARAMETERS", "code": 103}

        retiree = self.client.get("/benefits/retirees/retiree-1").json()["ok"]
        assert retiree["is_active"] is False

    def test_unknown_retiree(self):
        assert self.client.get("/benefits/retirees/nobody").json() == {"ok": None}
        assert self.client.get("/benefits/retirees/nobody/payment-count").json() == {"ok": 0}
        response = self.client.put(
            "/benefits/retirees/nobody/status", json={"is_active": True}, headers=AS_ADMIN
        )
        assert response.status_code == 404
        assert response.json() == {"error": "RETIREE_NOT_FOUND", "code": 101}

    def test_verify_journal(self):
        self.allocation.add_asset_class(ADMIN, "Stocks", 60)
        body = self.client.get("/journal/allocation/verify").json()["ok"]
        assert body["valid"] is True
        assert body["entries_verified"] == 1
        assert body["state_consistent"] is True
        assert self.client.get("/journal/unknown/verify").status_code == 404

    def test_single_injected_ledger_shares_its_store(self):
        app = create_app(allocation=self.allocation)
        assert app.state.benefits.engine is self.engine
        assert app.state.benefits.writer_lock is self.allocation.writer_lock

        client = TestClient(app)
        response = client.post(
            "/benefits/retirees",
            json={
                "identity": "retiree-1",
                "years_of_service": 30,
                "final_average_salary": 50000,
                "benefit_factor": 200,
            },
            headers=AS_ADMIN,
        )
        assert response.json() == {"ok": 30000}
        assert self.benefits.get_retiree_benefits("retiree-1").monthly_benefit == 30000

        app = create_app(benefits=self.benefits)
        assert app.state.allocation.engine is self.engine
