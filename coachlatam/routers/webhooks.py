"""Webhook routes — PayPal."""

import json
import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from coachlatam.config import get_settings
from coachlatam.db.session import get_service_db
from coachlatam.errors import ExternalError, Unauthenticated, ValidationError
from coachlatam.routers.base import BillingRoute
from coachlatam.services.paypal_client import PayPalClient, get_paypal_client
from coachlatam.services.subscription_service import handle_webhook_event

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/webhooks", tags=["webhooks"], route_class=BillingRoute)


@router.post("/paypal")
async def paypal_webhook(
    request: Request,
    db: AsyncSession = Depends(get_service_db),
    paypal: PayPalClient = Depends(get_paypal_client),
):
    settings = get_settings()
    if not settings.paypal_webhook_id:
        logger.error("PAYPAL_WEBHOOK_ID not configured")
        raise ExternalError("Webhook not configured")
    if not settings.paypal_configured:
        logger.error("PayPal credentials not configured")
        raise ExternalError("PayPal credentials not configured")

    body = await request.body()
    try:
        event = json.loads(body)
    except ValueError:
        raise ValidationError("Invalid webhook payload")
    if not isinstance(event, dict):
        raise ValidationError("Invalid webhook payload")

    if settings.webhook_bypass_enabled:
        logger.warning("PayPal webhook verification bypassed (debug mode)")
    elif not await paypal.verify_webhook_signature(request.headers, body):
        logger.error("Invalid PayPal webhook signature")
        raise Unauthenticated("Invalid signature")

    await handle_webhook_event(event, db)
    return {"received": True}
