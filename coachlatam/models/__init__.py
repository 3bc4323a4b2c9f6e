"""SQLAlchemy models for CoachLatam (PostgreSQL)."""

from .base import Base
from .user import User
from .plan import SubscriptionPlan
from .subscription import Subscription
from .coupon import Coupon, CouponUsage
from .compensation import BillingCompensation
from .client import Client
from .coaching_session import CoachingSession

__all__ = [
    "Base",
    "User",
    "SubscriptionPlan",
    "Subscription",
    "Coupon",
    "CouponUsage",
    "BillingCompensation",
    "Client",
    "CoachingSession",
]
