"""Admin routes — billing compensation records for operator follow-up."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from coachlatam.db.session import get_service_db
from coachlatam.models.user import User
from coachlatam.routers.base import BillingRoute
from coachlatam.schemas.billing import CompensationInfo
from coachlatam.services.auth_service import require_admin
from coachlatam.services.subscription_service import list_compensations, resolve_compensation

router = APIRouter(prefix="/api/admin", tags=["admin"], route_class=BillingRoute)


@router.get("/billing/compensations", response_model=list[CompensationInfo])
async def compensations(
    status: str | None = Query(None, pattern="^(attempted|succeeded|failed|resolved)$"),
    include_resolved: bool = False,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_service_db),
):
    return await list_compensations(db, status=status, include_resolved=include_resolved)


@router.post("/billing/compensations/{compensation_id}/resolve", response_model=CompensationInfo)
async def resolve(
    compensation_id: int,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_service_db),
):
    return await resolve_compensation(db, compensation_id)
