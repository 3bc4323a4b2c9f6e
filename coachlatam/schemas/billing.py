"""Billing-related Pydantic schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ActivateSubscriptionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    subscription_id: str = Field(alias="subscriptionId", min_length=1)
    plan_id: str = Field(alias="planId", min_length=1)
    coupon_code: str | None = Field(None, alias="couponCode")


class CancelSubscriptionRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)


class CouponValidateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Presence is checked by the coupon service so it can answer 400 itself
    code: str | None = None
    plan_id: str | None = Field(None, alias="planId")


class SubscriptionInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    paypal_subscription_id: str
    paypal_plan_id: str
    status: str
    cancelled_at: datetime | None = None
    next_billing_date: datetime | None = None
    created_at: datetime


class CompensationInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    subscription_id: int | None = None
    paypal_subscription_id: str
    action: str
    reason: str
    status: str
    error: str | None = None
    created_at: datetime
    updated_at: datetime
