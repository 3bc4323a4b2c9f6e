"""Coupon validation — thin front over the validate_coupon procedure."""

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from coachlatam.db.procedures import ProcedureError, validate_coupon
from coachlatam.errors import ExternalError, ValidationError
from coachlatam.models.user import User

logger = logging.getLogger(__name__)


def normalize_code(code: str | None) -> str:
    """Trim and upper-case a coupon code; empty input is a validation error."""
    normalized = (code or "").strip().upper()
    if not normalized:
        raise ValidationError("Coupon code is required")
    return normalized


async def validate_coupon_code(
    db: AsyncSession,
    user: User,
    code: str | None,
    plan_id: str | None = None,
) -> dict[str, Any]:
    """Return the coupon decision object for this user and plan, verbatim."""
    normalized = normalize_code(code)
    try:
        return await validate_coupon(db, normalized, user.id, plan_id or None)
    except ProcedureError as e:
        logger.error("Error validating coupon %s: %s", normalized, e)
        raise ExternalError("Error validating coupon")
