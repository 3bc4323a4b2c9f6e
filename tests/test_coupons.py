"""Tests for POST /api/coupons/validate."""

import pytest
from unittest.mock import patch

from coachlatam.db.procedures import ProcedureError
from tests.conftest import MASTER_PLAN, PRO_PLAN, auth_headers


class TestValidateCouponRoute:
    @pytest.mark.asyncio
    async def test_returns_decision_object(self, client, coach, save20):
        resp = await client.post(
            "/api/coupons/validate",
            json={"code": "  save20 ", "planId": PRO_PLAN},
            headers=auth_headers(coach),
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["valid"] is True
        assert body["code"] == "SAVE20"
        assert body["discount_type"] == "percentage"
        assert body["discount_value"] == 20

    @pytest.mark.asyncio
    async def test_rejection_is_returned_verbatim(self, client, test_db, coach, save20):
        save20.plan_id = MASTER_PLAN
        await test_db.commit()

        resp = await client.post(
            "/api/coupons/validate",
            json={"code": "SAVE20", "planId": PRO_PLAN},
            headers=auth_headers(coach),
        )

        assert resp.status_code == 200
        assert resp.json() == {"valid": False, "error": "Coupon is not valid for this plan"}

    @pytest.mark.asyncio
    async def test_validation_is_idempotent(self, client, coach, save20):
        payload = {"code": "SAVE20", "planId": PRO_PLAN}
        first = await client.post("/api/coupons/validate", json=payload, headers=auth_headers(coach))
        second = await client.post("/api/coupons/validate", json=payload, headers=auth_headers(coach))

        assert first.json() == second.json()
        assert first.json()["valid"] is True

    @pytest.mark.asyncio
    async def test_missing_code(self, client, coach):
        resp = await client.post("/api/coupons/validate", json={"code": "   "}, headers=auth_headers(coach))

        assert resp.status_code == 400
        assert resp.json() == {"error": "Coupon code is required"}

    @pytest.mark.asyncio
    async def test_requires_session(self, client):
        resp = await client.post("/api/coupons/validate", json={"code": "SAVE20"})

        assert resp.status_code == 401
        assert resp.json()["error"] == "Unauthorized"

    @pytest.mark.asyncio
    async def test_procedure_failure(self, client, coach):
        with patch(
            "coachlatam.services.coupon_service.validate_coupon",
            side_effect=ProcedureError("validate_coupon", RuntimeError("connection lost")),
        ):
            resp = await client.post("/api/coupons/validate", json={"code": "SAVE20"}, headers=auth_headers(coach))

        assert resp.status_code == 500
        assert resp.json() == {"error": "Error validating coupon"}
