"""PayPal subscription lifecycle: activation, cancellation, compensation, webhooks.

Both flows span two systems (PayPal and our database) without a shared
transaction. Ordering rules:

* Activation: PayPal has already approved the subscription when we are called.
  If the database step fails, the PayPal subscription is cancelled again.
* Cancellation: PayPal is cancelled first; the database is only touched after
  PayPal confirms. If the database step then fails, the PayPal subscription is
  reactivated and the caller gets a critical error.

Every compensating PayPal call is persisted in billing_compensations so an
operator can find the cases where compensation itself failed.
"""

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from coachlatam.constants import (
    ACTIVATION_ROLLBACK_REASON,
    CANCELLATION_ROLLBACK_REASON,
    DATABASE_FAILURE_DETAIL,
    DEFAULT_CANCEL_REASON,
    PAYMENT_COMPLETED_EVENT,
    PAYPAL_ACTIVATABLE_STATES,
    SUBSCRIPTION_ACTIVE,
    WEBHOOK_STATUS_EVENTS,
)
from coachlatam.db.procedures import (
    ProcedureError,
    apply_coupon,
    cancel_subscription_atomic,
    create_subscription_atomic,
    update_subscription_status_webhook,
    validate_coupon,
)
from coachlatam.errors import CriticalInconsistency, ExternalError, NotFound, ValidationError
from coachlatam.models.compensation import BillingCompensation
from coachlatam.models.subscription import Subscription
from coachlatam.models.user import User
from coachlatam.services.coupon_service import normalize_code
from coachlatam.services.paypal_client import PayPalClient, PayPalError
from coachlatam.utils import add_months, now_utc, parse_timestamp

logger = logging.getLogger(__name__)


# --- Compensation records ---


async def _open_compensation(
    db: AsyncSession,
    *,
    user_id: str,
    subscription_id: int | None,
    paypal_subscription_id: str,
    action: str,
    reason: str,
) -> BillingCompensation | None:
    """Persist an 'attempted' record before the compensating call goes out."""
    try:
        # The session may still carry the transaction of the step that failed
        await db.rollback()
        record = BillingCompensation(
            user_id=user_id,
            subscription_id=subscription_id,
            paypal_subscription_id=paypal_subscription_id,
            action=action,
            reason=reason,
            status="attempted",
        )
        db.add(record)
        await db.commit()
        return record
    except SQLAlchemyError as e:
        logger.error("Could not record %s compensation for %s: %s", action, paypal_subscription_id, e)
        await db.rollback()
        return None


async def _close_compensation(
    db: AsyncSession,
    record: BillingCompensation | None,
    *,
    succeeded: bool,
    error: str | None = None,
) -> None:
    if record is None:
        return
    try:
        record.status = "succeeded" if succeeded else "failed"
        record.error = error
        await db.commit()
    except SQLAlchemyError as e:
        logger.error("Could not update compensation record %s: %s", record.id, e)
        await db.rollback()


async def _compensate(
    db: AsyncSession,
    paypal: PayPalClient,
    *,
    action: str,
    user_id: str,
    subscription_id: int | None,
    paypal_subscription_id: str,
    reason: str,
) -> bool:
    """Run one compensating PayPal call (no retry) and persist its outcome."""
    record = await _open_compensation(
        db,
        user_id=user_id,
        subscription_id=subscription_id,
        paypal_subscription_id=paypal_subscription_id,
        action=action,
        reason=reason,
    )
    try:
        if action == "cancel":
            await paypal.cancel_subscription(paypal_subscription_id, reason)
        else:
            await paypal.activate_subscription(paypal_subscription_id, reason)
    except PayPalError as e:
        logger.critical(
            "Compensating %s of PayPal subscription %s failed, manual reconciliation needed: %s",
            action, paypal_subscription_id, e,
        )
        await _close_compensation(db, record, succeeded=False, error=str(e))
        return False

    logger.warning("Compensating %s of PayPal subscription %s succeeded", action, paypal_subscription_id)
    await _close_compensation(db, record, succeeded=True)
    return True


# --- Activation ---


async def _verify_with_paypal(
    paypal: PayPalClient,
    user_id: str,
    paypal_subscription_id: str,
    paypal_plan_id: str,
) -> None:
    """Refuse client-reported subscription ids PayPal does not back up.

    Checkout stamps the user id into the subscription's ``custom_id``; a
    subscription stamped for somebody else is never activated for the caller.
    """
    try:
        remote = await paypal.get_subscription(paypal_subscription_id)
    except PayPalError as e:
        logger.error("Could not verify PayPal subscription %s: %s", paypal_subscription_id, e)
        raise ExternalError(
            "Could not verify subscription with PayPal",
            details={"paypal_subscription_id": paypal_subscription_id},
        )

    remote_status = str(remote.get("status") or "").upper()
    if remote_status not in PAYPAL_ACTIVATABLE_STATES:
        raise ValidationError(
            f"PayPal subscription is not approved (status: {remote_status or 'unknown'})",
            details={"paypal_subscription_id": paypal_subscription_id},
        )
    if remote.get("plan_id") != paypal_plan_id:
        raise ValidationError(
            "PayPal subscription does not match the selected plan",
            details={"paypal_subscription_id": paypal_subscription_id},
        )
    custom_id = remote.get("custom_id")
    if custom_id and custom_id != user_id:
        logger.warning(
            "PayPal subscription %s belongs to %s, not to user %s", paypal_subscription_id, custom_id, user_id
        )
        raise ValidationError(
            "PayPal subscription belongs to another account",
            details={"paypal_subscription_id": paypal_subscription_id},
        )


async def _apply_coupon_best_effort(
    db: AsyncSession,
    user_id: str,
    coupon_code: str,
    paypal_plan_id: str,
    subscription_id: int,
) -> bool:
    """Apply a coupon to a freshly created subscription. Never raises."""
    try:
        decision = await validate_coupon(db, normalize_code(coupon_code), user_id, paypal_plan_id)
        if not decision.get("valid"):
            logger.warning(
                "Coupon %s not applied to subscription %s: %s",
                coupon_code, subscription_id, decision.get("error"),
            )
            return False
        outcome = await apply_coupon(
            db, decision["coupon_id"], user_id, subscription_id, decision["discount_value"]
        )
    except (ProcedureError, ValidationError) as e:
        logger.error("Error applying coupon %s to subscription %s: %s", coupon_code, subscription_id, e)
        return False

    if not outcome.get("success"):
        logger.error(
            "Error applying coupon %s to subscription %s: %s",
            coupon_code, subscription_id, outcome.get("message"),
        )
        return False
    logger.info("Coupon %s applied to subscription %s", coupon_code, subscription_id)
    return True


async def activate_subscription(
    db: AsyncSession,
    service_db: AsyncSession,
    paypal: PayPalClient,
    user: User,
    paypal_subscription_id: str,
    paypal_plan_id: str,
    coupon_code: str | None = None,
) -> dict[str, Any]:
    """Turn an approved PayPal subscription into an active internal subscription."""
    user_id = user.id
    await _verify_with_paypal(paypal, user_id, paypal_subscription_id, paypal_plan_id)

    try:
        result = await create_subscription_atomic(db, user_id, paypal_subscription_id, paypal_plan_id)
        failure = None if result.get("success") else (result.get("message") or "Unknown error")
    except ProcedureError as e:
        logger.error("Activation procedure for user %s failed: %s", user_id, e)
        result, failure = {}, DATABASE_FAILURE_DETAIL

    if result.get("compensate") is False:
        # The PayPal subscription is tracked on another row; leave it running
        raise ValidationError(failure, details={"paypal_subscription_id": paypal_subscription_id})

    if failure:
        logger.error(
            "Activation of PayPal subscription %s for user %s failed: %s",
            paypal_subscription_id, user_id, failure,
        )
        await _compensate(
            service_db,
            paypal,
            action="cancel",
            user_id=user_id,
            subscription_id=None,
            paypal_subscription_id=paypal_subscription_id,
            reason=ACTIVATION_ROLLBACK_REASON,
        )
        raise ExternalError(
            "Could not activate subscription. Contact support with the subscription id.",
            details={"paypal_subscription_id": paypal_subscription_id, "reason": failure},
        )

    subscription_id = result["subscription_id"]
    coupon_applied = False
    if coupon_code:
        coupon_applied = await _apply_coupon_best_effort(
            db, user_id, coupon_code, paypal_plan_id, subscription_id
        )

    return {
        "success": True,
        "message": "Subscription activated successfully",
        "data": {
            "subscription_id": subscription_id,
            "paypal_subscription_id": paypal_subscription_id,
            "plan": result.get("plan"),
            "status": SUBSCRIPTION_ACTIVE,
            "coupon_applied": coupon_applied,
        },
    }


# --- Cancellation ---


async def get_active_subscription(db: AsyncSession, user_id: str) -> Subscription | None:
    result = await db.execute(
        select(Subscription).where(
            Subscription.user_id == user_id,
            Subscription.status == SUBSCRIPTION_ACTIVE,
        )
    )
    return result.scalar_one_or_none()


async def get_latest_subscription(db: AsyncSession, user_id: str) -> Subscription | None:
    """Active subscription if any, otherwise the most recent one."""
    active = await get_active_subscription(db, user_id)
    if active:
        return active
    result = await db.execute(
        select(Subscription)
        .where(Subscription.user_id == user_id)
        .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def cancel_subscription(
    db: AsyncSession,
    service_db: AsyncSession,
    paypal: PayPalClient,
    user: User,
    reason: str | None = None,
) -> dict[str, Any]:
    """Cancel the user's active subscription, PayPal first, then the database."""
    user_id = user.id
    reason = (reason or "").strip() or DEFAULT_CANCEL_REASON

    try:
        subscription = await get_active_subscription(db, user_id)
    except SQLAlchemyError as e:
        logger.error("Error fetching subscription for user %s: %s", user_id, e)
        raise ExternalError("Error fetching subscription")

    if not subscription:
        logger.info("No active subscription found for user %s", user_id)
        raise NotFound("No active subscription found")

    paypal_subscription_id = subscription.paypal_subscription_id
    subscription_id = subscription.id

    try:
        await paypal.cancel_subscription(paypal_subscription_id, reason)
    except PayPalError as e:
        logger.error("PayPal cancellation of %s failed: %s", paypal_subscription_id, e)
        raise ExternalError("Failed to cancel subscription with PayPal", details=str(e))

    try:
        outcome = await cancel_subscription_atomic(service_db, subscription_id, reason)
        failure = None if outcome.get("success") else (outcome.get("message") or "Unknown error")
    except ProcedureError as e:
        logger.error("Cancellation procedure for subscription %s failed: %s", subscription_id, e)
        outcome, failure = {}, DATABASE_FAILURE_DETAIL

    if failure:
        logger.error(
            "PayPal subscription %s cancelled but database update failed: %s",
            paypal_subscription_id, failure,
        )
        await _compensate(
            service_db,
            paypal,
            action="reactivate",
            user_id=user_id,
            subscription_id=subscription_id,
            paypal_subscription_id=paypal_subscription_id,
            reason=CANCELLATION_ROLLBACK_REASON,
        )
        raise CriticalInconsistency("Failed to cancel subscription", details=failure)

    return {
        "success": True,
        "message": "Subscription cancelled successfully",
        "data": outcome,
    }


# --- Webhooks ---


async def handle_webhook_event(event: dict[str, Any], db: AsyncSession) -> dict[str, Any]:
    """Apply a verified PayPal webhook event to the subscription it refers to."""
    event_type = event.get("event_type")
    resource = event.get("resource") or {}
    logger.info("PayPal webhook: %s", event_type)

    next_billing_date = None
    if event_type in WEBHOOK_STATUS_EVENTS:
        paypal_subscription_id = resource.get("id")
        status = WEBHOOK_STATUS_EVENTS[event_type]
        next_billing_date = parse_timestamp((resource.get("billing_info") or {}).get("next_billing_time"))
    elif event_type == PAYMENT_COMPLETED_EVENT:
        # Sale resources carry the subscription id as billing_agreement_id
        paypal_subscription_id = resource.get("billing_agreement_id")
        status = SUBSCRIPTION_ACTIVE
        next_billing_date = add_months(now_utc(), 1)
    else:
        logger.info("Unhandled PayPal event type: %s", event_type)
        return {"handled": False}

    if not paypal_subscription_id:
        logger.warning("PayPal %s event without a subscription id", event_type)
        return {"handled": False}

    try:
        outcome = await update_subscription_status_webhook(db, paypal_subscription_id, status, next_billing_date)
    except ProcedureError as e:
        logger.error("Error applying %s to %s: %s", event_type, paypal_subscription_id, e)
        raise ExternalError("Failed to update subscription")

    if not outcome.get("success"):
        logger.warning(
            "PayPal %s for %s not applied: %s", event_type, paypal_subscription_id, outcome.get("message")
        )
        return {"handled": False}
    return {"handled": True, **outcome}


# --- Operator views ---


async def list_compensations(
    db: AsyncSession,
    status: str | None = None,
    include_resolved: bool = False,
) -> list[BillingCompensation]:
    query = select(BillingCompensation).order_by(BillingCompensation.created_at.desc())
    if status:
        query = query.where(BillingCompensation.status == status)
    elif not include_resolved:
        query = query.where(BillingCompensation.status != "resolved")
    result = await db.execute(query)
    return list(result.scalars().all())


async def resolve_compensation(db: AsyncSession, compensation_id: int) -> BillingCompensation:
    record = await db.get(BillingCompensation, compensation_id)
    if not record:
        raise NotFound("Compensation record not found")
    record.status = "resolved"
    await db.commit()
    await db.refresh(record)
    logger.info("Compensation record %s marked resolved", compensation_id)
    return record
