"""Coupon routes."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from coachlatam.db.session import get_db
from coachlatam.models.user import User
from coachlatam.routers.base import BillingRoute
from coachlatam.schemas.billing import CouponValidateRequest
from coachlatam.services.auth_service import get_current_user
from coachlatam.services.coupon_service import validate_coupon_code

router = APIRouter(prefix="/api/coupons", tags=["coupons"], route_class=BillingRoute)


@router.post("/validate")
async def validate(
    payload: CouponValidateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await validate_coupon_code(db, user, payload.code, payload.plan_id)
