"""Tests for subscription activation and its compensating cancel."""

import pytest
from sqlalchemy import event, select
from unittest.mock import patch

from coachlatam.constants import ACTIVATION_ROLLBACK_REASON
from coachlatam.db.procedures import ProcedureError
from coachlatam.models import BillingCompensation, Coupon, CouponUsage, Subscription, User
from tests.conftest import MASTER_PLAN, PRO_PLAN, auth_headers


def _payload(**overrides):
    payload = {"subscriptionId": "I-BW452GLLEP1G", "planId": PRO_PLAN}
    payload.update(overrides)
    return payload


class TestActivateSubscription:
    @pytest.mark.asyncio
    async def test_activates_approved_subscription(self, client, test_db, coach, plans, paypal):
        resp = await client.post("/api/subscription/activate", json=_payload(), headers=auth_headers(coach))

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["data"]["plan"] == "professional"
        assert body["data"]["status"] == "active"
        assert body["data"]["coupon_applied"] is False
        assert paypal.calls_to("get") == [("get", "I-BW452GLLEP1G")]
        assert paypal.calls_to("cancel") == []

        subscription = await test_db.get(Subscription, body["data"]["subscription_id"])
        assert subscription.paypal_subscription_id == "I-BW452GLLEP1G"

    @pytest.mark.asyncio
    async def test_applies_validated_coupon(self, client, test_db, coach, save20):
        resp = await client.post(
            "/api/subscription/activate",
            json=_payload(couponCode="save20"),
            headers=auth_headers(coach),
        )

        assert resp.status_code == 200
        assert resp.json()["data"]["coupon_applied"] is True

        usage = (await test_db.execute(select(CouponUsage))).scalar_one()
        assert usage.discount_type == "percentage"
        assert float(usage.discount_applied) == 20
        coupon = await test_db.get(Coupon, save20.id)
        await test_db.refresh(coupon)
        assert coupon.current_uses == 1

    @pytest.mark.asyncio
    async def test_invalid_coupon_does_not_block_activation(self, client, test_db, coach, save20):
        save20.is_active = False
        await test_db.commit()

        resp = await client.post(
            "/api/subscription/activate",
            json=_payload(couponCode="SAVE20"),
            headers=auth_headers(coach),
        )

        assert resp.status_code == 200
        assert resp.json()["data"]["coupon_applied"] is False
        assert (await test_db.execute(select(CouponUsage))).scalars().all() == []

    @pytest.mark.asyncio
    async def test_coupon_failure_keeps_subscription(self, client, test_db, coach, save20, paypal):
        with patch(
            "coachlatam.services.subscription_service.apply_coupon",
            side_effect=ProcedureError("apply_coupon", RuntimeError("deadlock")),
        ):
            resp = await client.post(
                "/api/subscription/activate",
                json=_payload(couponCode="SAVE20"),
                headers=auth_headers(coach),
            )

        assert resp.status_code == 200
        assert resp.json()["data"]["coupon_applied"] is False
        assert paypal.calls_to("cancel") == []

    @pytest.mark.asyncio
    async def test_procedure_refusal_cancels_paypal_once(self, client, test_db, coach, active_subscription, paypal):
        paypal.remote["I-SECOND"] = {"id": "I-SECOND", "status": "APPROVED", "plan_id": MASTER_PLAN}

        resp = await client.post(
            "/api/subscription/activate",
            json={"subscriptionId": "I-SECOND", "planId": MASTER_PLAN},
            headers=auth_headers(coach),
        )

        assert resp.status_code == 500
        body = resp.json()
        assert body["details"]["paypal_subscription_id"] == "I-SECOND"
        assert body["details"]["reason"] == "User already has an active subscription"
        assert "critical" not in body
        assert paypal.calls_to("cancel") == [("cancel", "I-SECOND", ACTIVATION_ROLLBACK_REASON)]

        record = (await test_db.execute(select(BillingCompensation))).scalar_one()
        assert record.action == "cancel"
        assert record.status == "succeeded"

    @pytest.mark.asyncio
    async def test_procedure_error_cancels_paypal_once(self, client, test_db, coach, plans, paypal):
        with patch(
            "coachlatam.services.subscription_service.create_subscription_atomic",
            side_effect=ProcedureError("create_subscription_atomic", RuntimeError("connection reset")),
        ):
            resp = await client.post("/api/subscription/activate", json=_payload(), headers=auth_headers(coach))

        assert resp.status_code == 500
        assert len(paypal.calls_to("cancel")) == 1
        assert resp.json()["details"]["reason"] == "Database error"
        assert "connection reset" not in resp.text
        assert (await test_db.execute(select(Subscription))).scalars().all() == []

    @pytest.mark.asyncio
    async def test_failed_compensation_is_recorded(self, client, test_db, coach, active_subscription, paypal):
        paypal.remote["I-SECOND"] = {"id": "I-SECOND", "status": "ACTIVE", "plan_id": PRO_PLAN}
        paypal.fail.add("cancel")

        resp = await client.post(
            "/api/subscription/activate",
            json={"subscriptionId": "I-SECOND", "planId": PRO_PLAN},
            headers=auth_headers(coach),
        )

        assert resp.status_code == 500
        assert len(paypal.calls_to("cancel")) == 1
        record = (await test_db.execute(select(BillingCompensation))).scalar_one()
        await test_db.refresh(record)
        assert record.status == "failed"
        assert "cancel failed" in record.error

    @pytest.mark.asyncio
    async def test_paypal_subscription_of_another_user_is_left_running(
        self, client, test_db, active_subscription, paypal
    ):
        intruder = User(id="9c2e4b6a-1d3f-4a5b-8c7d-2e1f0a9b8c7d", email="intruder@example.com")
        test_db.add(intruder)
        await test_db.commit()
        intruder_id = intruder.id

        resp = await client.post(
            "/api/subscription/activate",
            json={"subscriptionId": "sub_123", "planId": PRO_PLAN},
            headers=auth_headers(intruder),
        )

        assert resp.status_code == 400
        assert resp.json()["error"] == "PayPal subscription is already registered"
        assert paypal.calls_to("cancel") == []
        assert (await test_db.execute(select(BillingCompensation))).scalars().all() == []

        owner_row = (await test_db.execute(select(Subscription))).scalar_one()
        await test_db.refresh(owner_row)
        assert owner_row.status == "active"
        assert owner_row.user_id != intruder_id

    @pytest.mark.asyncio
    async def test_own_cancelled_paypal_subscription_is_not_reused(self, client, test_db, coach, plans, paypal):
        test_db.add(
            Subscription(user_id=coach.id, paypal_subscription_id="I-OLD", paypal_plan_id=PRO_PLAN, status="cancelled")
        )
        await test_db.commit()
        paypal.remote["I-OLD"] = {"id": "I-OLD", "status": "ACTIVE", "plan_id": PRO_PLAN}

        resp = await client.post(
            "/api/subscription/activate",
            json={"subscriptionId": "I-OLD", "planId": PRO_PLAN},
            headers=auth_headers(coach),
        )

        assert resp.status_code == 400
        assert resp.json()["details"] == {"paypal_subscription_id": "I-OLD"}
        assert paypal.calls_to("cancel") == []

    @pytest.mark.asyncio
    async def test_rejects_subscription_stamped_for_another_user(self, client, test_db, coach, plans, paypal):
        paypal.remote["I-FOREIGN"] = {
            "id": "I-FOREIGN",
            "status": "APPROVED",
            "plan_id": PRO_PLAN,
            "custom_id": "9c2e4b6a-1d3f-4a5b-8c7d-2e1f0a9b8c7d",
        }

        resp = await client.post(
            "/api/subscription/activate",
            json={"subscriptionId": "I-FOREIGN", "planId": PRO_PLAN},
            headers=auth_headers(coach),
        )

        assert resp.status_code == 400
        assert resp.json()["error"] == "PayPal subscription belongs to another account"
        assert paypal.calls_to("cancel") == []
        assert (await test_db.execute(select(Subscription))).scalars().all() == []

    @pytest.mark.asyncio
    async def test_accepts_subscription_stamped_for_caller(self, client, coach, plans, paypal):
        paypal.remote["I-MINE"] = {"id": "I-MINE", "status": "APPROVED", "plan_id": PRO_PLAN, "custom_id": coach.id}

        resp = await client.post(
            "/api/subscription/activate",
            json={"subscriptionId": "I-MINE", "planId": PRO_PLAN},
            headers=auth_headers(coach),
        )

        assert resp.status_code == 200

    @pytest.mark.asyncio
    async def test_lost_race_on_active_subscription_cancels_paypal_once(
        self, client, test_db, coach, plans, paypal
    ):
        coach_id = coach.id
        fired = []

        def competing_activation(session, flush_context, instances):
            # Another request activates a subscription for the same user between our checks and our insert
            if fired or not any(isinstance(obj, Subscription) for obj in session.new):
                return
            fired.append(True)
            session.connection().execute(
                Subscription.__table__.insert().values(
                    user_id=coach_id, paypal_subscription_id="I-RACE", paypal_plan_id=PRO_PLAN, status="active"
                )
            )

        event.listen(test_db.sync_session, "before_flush", competing_activation)
        try:
            resp = await client.post("/api/subscription/activate", json=_payload(), headers=auth_headers(coach))
        finally:
            event.remove(test_db.sync_session, "before_flush", competing_activation)

        assert fired == [True]
        assert resp.status_code == 500
        body = resp.json()
        assert body["details"] == {"paypal_subscription_id": "I-BW452GLLEP1G", "reason": "Database error"}
        assert "INSERT" not in resp.text
        assert "UNIQUE" not in resp.text
        assert paypal.calls_to("cancel") == [("cancel", "I-BW452GLLEP1G", ACTIVATION_ROLLBACK_REASON)]
        assert (await test_db.execute(select(Subscription))).scalars().all() == []

    @pytest.mark.asyncio
    async def test_rejects_unapproved_paypal_subscription(self, client, coach, plans, paypal):
        paypal.remote["I-PENDING"] = {"id": "I-PENDING", "status": "APPROVAL_PENDING", "plan_id": PRO_PLAN}

        resp = await client.post(
            "/api/subscription/activate",
            json={"subscriptionId": "I-PENDING", "planId": PRO_PLAN},
            headers=auth_headers(coach),
        )

        assert resp.status_code == 400
        assert "not approved" in resp.json()["error"]
        assert paypal.calls_to("cancel") == []

    @pytest.mark.asyncio
    async def test_rejects_plan_mismatch(self, client, coach, plans, paypal):
        resp = await client.post(
            "/api/subscription/activate",
            json=_payload(planId=MASTER_PLAN),
            headers=auth_headers(coach),
        )

        assert resp.status_code == 400
        assert resp.json()["error"] == "PayPal subscription does not match the selected plan"

    @pytest.mark.asyncio
    async def test_paypal_lookup_failure(self, client, coach, plans, paypal):
        paypal.fail.add("get")

        resp = await client.post("/api/subscription/activate", json=_payload(), headers=auth_headers(coach))

        assert resp.status_code == 500
        assert resp.json()["error"] == "Could not verify subscription with PayPal"
        assert paypal.calls_to("cancel") == []

    @pytest.mark.asyncio
    async def test_missing_fields(self, client, coach):
        resp = await client.post("/api/subscription/activate", json={"planId": PRO_PLAN}, headers=auth_headers(coach))

        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid request"

    @pytest.mark.asyncio
    async def test_requires_session(self, client, plans):
        resp = await client.post("/api/subscription/activate", json=_payload())
        assert resp.status_code == 401
