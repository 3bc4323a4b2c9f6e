"""Client and coaching-session CRUD operations, scoped to the owning coach."""

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from coachlatam.constants import PAGE_SIZE, PLAN_LIMITS
from coachlatam.errors import NotFound, Unauthorized
from coachlatam.models.client import Client
from coachlatam.models.coaching_session import CoachingSession
from coachlatam.models.user import User
from coachlatam.schemas.clients import ClientCreate, ClientUpdate, SessionCreate, SessionUpdate


def max_clients_for(user: User) -> int:
    limits = PLAN_LIMITS.get(user.subscription_plan, PLAN_LIMITS["starter"])
    return limits["max_clients"]


async def list_clients(db: AsyncSession, coach_id: str, page: int = 1) -> list[Client]:
    result = await db.execute(
        select(Client)
        .where(Client.coach_id == coach_id)
        .order_by(Client.full_name)
        .offset((page - 1) * PAGE_SIZE)
        .limit(PAGE_SIZE)
    )
    return list(result.scalars().all())


async def get_client(db: AsyncSession, coach_id: str, client_id: int) -> Client:
    result = await db.execute(
        select(Client).where(Client.id == client_id, Client.coach_id == coach_id)
    )
    client = result.scalar_one_or_none()
    if not client:
        raise NotFound("Client not found")
    return client


async def create_client(db: AsyncSession, coach: User, data: ClientCreate) -> Client:
    """Create a client unless the coach's plan limit is already reached."""
    count = await db.scalar(
        select(func.count()).select_from(Client).where(Client.coach_id == coach.id)
    ) or 0
    limit = max_clients_for(coach)
    if count >= limit:
        raise Unauthorized(
            f"Your {coach.subscription_plan} plan allows up to {limit} clients",
            details={"max_clients": limit},
        )

    client = Client(coach_id=coach.id, **data.model_dump())
    db.add(client)
    await db.commit()
    await db.refresh(client)
    return client


async def update_client(db: AsyncSession, coach_id: str, client_id: int, updates: ClientUpdate) -> Client:
    client = await get_client(db, coach_id, client_id)
    for key, value in updates.model_dump(exclude_unset=True).items():
        setattr(client, key, value)
    await db.commit()
    await db.refresh(client)
    return client


async def delete_client(db: AsyncSession, coach_id: str, client_id: int) -> None:
    client = await get_client(db, coach_id, client_id)
    await db.execute(delete(CoachingSession).where(CoachingSession.client_id == client.id))
    await db.delete(client)
    await db.commit()


async def list_sessions(
    db: AsyncSession, coach_id: str, client_id: int | None = None
) -> list[CoachingSession]:
    query = select(CoachingSession).where(CoachingSession.coach_id == coach_id)
    if client_id is not None:
        query = query.where(CoachingSession.client_id == client_id)
    result = await db.execute(query.order_by(CoachingSession.scheduled_date.desc()).limit(PAGE_SIZE))
    return list(result.scalars().all())


async def get_session(db: AsyncSession, coach_id: str, session_id: int) -> CoachingSession:
    result = await db.execute(
        select(CoachingSession).where(
            CoachingSession.id == session_id, CoachingSession.coach_id == coach_id
        )
    )
    session = result.scalar_one_or_none()
    if not session:
        raise NotFound("Session not found")
    return session


async def create_session(db: AsyncSession, coach_id: str, data: SessionCreate) -> CoachingSession:
    # Only the coach's own clients can be booked
    await get_client(db, coach_id, data.client_id)
    session = CoachingSession(coach_id=coach_id, **data.model_dump())
    db.add(session)
    await db.commit()
    await db.refresh(session)
    return session


async def update_session(
    db: AsyncSession, coach_id: str, session_id: int, updates: SessionUpdate
) -> CoachingSession:
    session = await get_session(db, coach_id, session_id)
    for key, value in updates.model_dump(exclude_unset=True).items():
        setattr(session, key, value)
    await db.commit()
    await db.refresh(session)
    return session


async def delete_session(db: AsyncSession, coach_id: str, session_id: int) -> None:
    session = await get_session(db, coach_id, session_id)
    await db.delete(session)
    await db.commit()
