"""BillingCompensation model — persisted outcome of each compensating provider call."""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from coachlatam.utils import now_utc
from .base import Base


class BillingCompensation(Base):
    __tablename__ = "billing_compensations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    subscription_id: Mapped[int | None] = mapped_column(ForeignKey("subscriptions.id"), nullable=True)
    paypal_subscription_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(16), nullable=False)  # cancel | reactivate
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    # attempted -> succeeded | failed -> resolved
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="attempted", index=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc, onupdate=now_utc)
