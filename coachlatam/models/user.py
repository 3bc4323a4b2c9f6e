"""User model — profile row keyed by the identity provider's user id."""

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from coachlatam.utils import now_utc
from .base import Base


class User(Base):
    __tablename__ = "users"

    # Same UUID the identity provider puts in the token's `sub` claim
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="coach")
    # Denormalized projection of the active subscription
    subscription_plan: Mapped[str] = mapped_column(String(32), nullable=False, default="starter")
    subscription_status: Mapped[str] = mapped_column(String(32), nullable=False, default="inactive")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)

    # Relationships
    subscriptions: Mapped[list["Subscription"]] = relationship(back_populates="user")
    clients: Mapped[list["Client"]] = relationship(
        back_populates="coach", foreign_keys="Client.coach_id"
    )

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"
