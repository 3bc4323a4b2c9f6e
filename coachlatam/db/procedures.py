"""Transactional billing procedures.

Each procedure runs as a single unit of work on the session it is given: it
commits once at the end, or rolls back and raises ProcedureError on any
database error. Business-rule refusals are not errors; they come back as
``{"success": False, "message": ...}`` without writing anything, mirroring the
RPC results the client flows were built against.
"""

import logging
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from coachlatam.constants import SUBSCRIPTION_ACTIVE, SUBSCRIPTION_CANCELLED
from coachlatam.models.coupon import Coupon, CouponUsage
from coachlatam.models.plan import SubscriptionPlan
from coachlatam.models.subscription import Subscription
from coachlatam.models.user import User
from coachlatam.utils import now_utc

logger = logging.getLogger(__name__)

# Subscription status -> user.subscription_status projection
_USER_STATUS = {
    SUBSCRIPTION_ACTIVE: "active",
    SUBSCRIPTION_CANCELLED: "cancelled",
}


class ProcedureError(Exception):
    """A procedure hit a database error; its transaction was rolled back."""

    def __init__(self, procedure: str, cause: Exception) -> None:
        super().__init__(f"{procedure} failed: {cause}")
        self.procedure = procedure
        self.cause = cause


def _failure(message: str, **extra: Any) -> dict[str, Any]:
    return {"success": False, "message": message, **extra}


def _already_registered(paypal_subscription_id: str) -> dict[str, Any]:
    # Belongs to another row already; cancelling it at PayPal would hit that row's owner
    logger.warning("PayPal subscription %s is already registered", paypal_subscription_id)
    return _failure("PayPal subscription is already registered", compensate=False)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns
    return value if value.tzinfo else value.replace(tzinfo=UTC)


async def _rollback(db: AsyncSession, procedure: str, exc: SQLAlchemyError) -> ProcedureError:
    logger.error("Procedure %s failed, rolling back: %s", procedure, exc)
    await db.rollback()
    return ProcedureError(procedure, exc)


async def validate_coupon(
    db: AsyncSession,
    code: str,
    user_id: str,
    plan_id: str | None = None,
) -> dict[str, Any]:
    """Decide whether a coupon code can be used by this user on this plan.

    Returns either ``{"valid": True, coupon_id, code, discount_type,
    discount_value, description}`` or ``{"valid": False, "error": reason}``.
    Read-only.
    """
    try:
        result = await db.execute(select(Coupon).where(func.upper(Coupon.code) == code.upper()))
        coupon = result.scalar_one_or_none()
        if not coupon:
            return {"valid": False, "error": "Coupon not found"}
        if not coupon.is_active:
            return {"valid": False, "error": "Coupon is not active"}
        if coupon.valid_until and _as_utc(coupon.valid_until) < now_utc():
            return {"valid": False, "error": "Coupon has expired"}
        if coupon.max_uses is not None and coupon.current_uses >= coupon.max_uses:
            return {"valid": False, "error": "Coupon usage limit reached"}
        if coupon.plan_id and coupon.plan_id != plan_id:
            return {"valid": False, "error": "Coupon is not valid for this plan"}

        previous_uses = await db.scalar(
            select(func.count())
            .select_from(CouponUsage)
            .where(CouponUsage.coupon_id == coupon.id, CouponUsage.user_id == user_id)
        )
        if previous_uses:
            return {"valid": False, "error": "Coupon already used"}
    except SQLAlchemyError as e:
        raise await _rollback(db, "validate_coupon", e)

    return {
        "valid": True,
        "coupon_id": coupon.id,
        "code": coupon.code,
        "discount_type": coupon.discount_type,
        "discount_value": float(coupon.discount_value),
        "description": coupon.description,
    }


async def create_subscription_atomic(
    db: AsyncSession,
    user_id: str,
    paypal_subscription_id: str,
    paypal_plan_id: str,
) -> dict[str, Any]:
    """Insert an active subscription and project it onto the user, in one transaction."""
    try:
        user = await db.get(User, user_id)
        if not user:
            return _failure("User not found")

        plan_result = await db.execute(
            select(SubscriptionPlan).where(
                SubscriptionPlan.paypal_plan_id == paypal_plan_id,
                SubscriptionPlan.is_active == True,
            )
        )
        plan = plan_result.scalar_one_or_none()
        if not plan:
            return _failure("Unknown subscription plan")
        plan_name = plan.name

        existing_result = await db.execute(
            select(Subscription).where(
                Subscription.user_id == user_id,
                Subscription.status == SUBSCRIPTION_ACTIVE,
            )
        )
        existing = existing_result.scalar_one_or_none()
        if existing:
            if existing.paypal_subscription_id == paypal_subscription_id:
                return {
                    "success": True,
                    "subscription_id": existing.id,
                    "plan": plan_name,
                    "message": "Subscription already active",
                }
            return _failure("User already has an active subscription")

        # A PayPal subscription id maps to exactly one row, whoever owns it
        registered = await db.scalar(
            select(Subscription.id).where(Subscription.paypal_subscription_id == paypal_subscription_id)
        )
        if registered:
            return _already_registered(paypal_subscription_id)

        subscription = Subscription(
            user_id=user_id,
            paypal_subscription_id=paypal_subscription_id,
            paypal_plan_id=paypal_plan_id,
            status=SUBSCRIPTION_ACTIVE,
        )
        db.add(subscription)
        user.subscription_plan = plan_name
        user.subscription_status = "active"
        await db.flush()
        subscription_id = subscription.id
        await db.commit()
    except IntegrityError as e:
        error = await _rollback(db, "create_subscription_atomic", e)
        # Lost a race against a concurrent activation of the same PayPal subscription
        try:
            winner = (
                await db.execute(
                    select(Subscription.id, Subscription.user_id, Subscription.status).where(
                        Subscription.paypal_subscription_id == paypal_subscription_id
                    )
                )
            ).first()
        except SQLAlchemyError:
            await db.rollback()
            raise error
        if not winner:
            raise error
        if winner.user_id == user_id and winner.status == SUBSCRIPTION_ACTIVE:
            return {
                "success": True,
                "subscription_id": winner.id,
                "plan": plan_name,
                "message": "Subscription already active",
            }
        return _already_registered(paypal_subscription_id)
    except SQLAlchemyError as e:
        raise await _rollback(db, "create_subscription_atomic", e)

    logger.info("Subscription %s created for user %s (%s)", subscription_id, user_id, plan_name)
    return {
        "success": True,
        "subscription_id": subscription_id,
        "plan": plan_name,
        "message": "Subscription created",
    }


async def cancel_subscription_atomic(
    db: AsyncSession,
    subscription_id: int,
    reason: str,
) -> dict[str, Any]:
    """Mark an active subscription cancelled and project it onto the user."""
    try:
        subscription = await db.get(Subscription, subscription_id, with_for_update=True)
        if not subscription:
            return _failure("Subscription not found")
        if subscription.status != SUBSCRIPTION_ACTIVE:
            return _failure(f"Subscription is {subscription.status}, not active")

        cancelled_at = now_utc()
        subscription.status = SUBSCRIPTION_CANCELLED
        subscription.cancelled_at = cancelled_at
        subscription.cancel_reason = reason

        user = await db.get(User, subscription.user_id)
        if user:
            user.subscription_status = "cancelled"
        await db.commit()
    except SQLAlchemyError as e:
        raise await _rollback(db, "cancel_subscription_atomic", e)

    logger.info("Subscription %s cancelled: %s", subscription_id, reason)
    return {
        "success": True,
        "subscription_id": subscription_id,
        "status": SUBSCRIPTION_CANCELLED,
        "cancelled_at": cancelled_at.isoformat(),
        "message": "Subscription cancelled",
    }


async def apply_coupon(
    db: AsyncSession,
    coupon_id: int,
    user_id: str,
    subscription_id: int,
    discount_applied: float | Decimal,
) -> dict[str, Any]:
    """Record a coupon usage and bump the coupon's usage counter atomically."""
    try:
        coupon = await db.get(Coupon, coupon_id)
        if not coupon:
            return _failure("Coupon not found")

        bumped = await db.execute(
            update(Coupon)
            .where(
                Coupon.id == coupon_id,
                or_(Coupon.max_uses.is_(None), Coupon.current_uses < Coupon.max_uses),
            )
            .values(current_uses=Coupon.current_uses + 1)
        )
        if bumped.rowcount == 0:
            await db.rollback()
            return _failure("Coupon usage limit reached")

        usage = CouponUsage(
            coupon_id=coupon_id,
            user_id=user_id,
            subscription_id=subscription_id,
            discount_type=coupon.discount_type,
            discount_applied=Decimal(str(discount_applied)),
        )
        db.add(usage)
        await db.flush()
        usage_id = usage.id
        await db.commit()
    except SQLAlchemyError as e:
        raise await _rollback(db, "apply_coupon", e)

    return {"success": True, "usage_id": usage_id, "message": "Coupon applied"}


async def update_subscription_status_webhook(
    db: AsyncSession,
    paypal_subscription_id: str,
    status: str,
    next_billing_date: datetime | None = None,
) -> dict[str, Any]:
    """Apply a provider-reported status change (idempotent)."""
    try:
        result = await db.execute(
            select(Subscription).where(Subscription.paypal_subscription_id == paypal_subscription_id)
        )
        subscription = result.scalar_one_or_none()
        if not subscription:
            return _failure("Subscription not found")

        subscription.status = status
        if status == SUBSCRIPTION_CANCELLED and not subscription.cancelled_at:
            subscription.cancelled_at = now_utc()
        if next_billing_date:
            subscription.next_billing_date = next_billing_date

        # Leave the user projection alone when a newer subscription is the active one
        other_active = await db.scalar(
            select(func.count())
            .select_from(Subscription)
            .where(
                Subscription.user_id == subscription.user_id,
                Subscription.status == SUBSCRIPTION_ACTIVE,
                Subscription.id != subscription.id,
            )
        )
        if not other_active:
            user = await db.get(User, subscription.user_id)
            if user:
                user.subscription_status = _USER_STATUS.get(status, "inactive")
        subscription_id = subscription.id
        await db.commit()
    except SQLAlchemyError as e:
        raise await _rollback(db, "update_subscription_status_webhook", e)

    return {"success": True, "subscription_id": subscription_id, "status": status}
