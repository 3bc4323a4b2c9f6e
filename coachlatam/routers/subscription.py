"""Subscription routes — activation, cancellation, current status."""

import logging

from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from coachlatam.db.session import get_db, get_service_db
from coachlatam.errors import NotFound
from coachlatam.models.user import User
from coachlatam.routers.base import BillingRoute
from coachlatam.schemas.billing import (
    ActivateSubscriptionRequest,
    CancelSubscriptionRequest,
    SubscriptionInfo,
)
from coachlatam.services.auth_service import get_current_user
from coachlatam.services.paypal_client import PayPalClient, get_paypal_client
from coachlatam.services.subscription_service import (
    activate_subscription,
    cancel_subscription,
    get_latest_subscription,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/subscription", tags=["subscription"], route_class=BillingRoute)


@router.get("", response_model=SubscriptionInfo)
async def current_subscription(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    subscription = await get_latest_subscription(db, user.id)
    if not subscription:
        raise NotFound("No subscription found")
    return subscription


@router.post("/activate")
async def activate(
    payload: ActivateSubscriptionRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service_db: AsyncSession = Depends(get_service_db),
    paypal: PayPalClient = Depends(get_paypal_client),
):
    """Activate an approved PayPal subscription, optionally applying a coupon."""
    logger.info("Activate subscription request from user %s", user.id)
    return await activate_subscription(
        db,
        service_db,
        paypal,
        user,
        payload.subscription_id,
        payload.plan_id,
        payload.coupon_code,
    )


@router.post("/cancel")
async def cancel(
    payload: CancelSubscriptionRequest | None = Body(None),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    service_db: AsyncSession = Depends(get_service_db),
    paypal: PayPalClient = Depends(get_paypal_client),
):
    """Cancel the caller's active subscription (PayPal first, then database)."""
    logger.info("Cancel subscription request from user %s", user.id)
    reason = payload.reason if payload else None
    return await cancel_subscription(db, service_db, paypal, user, reason)
