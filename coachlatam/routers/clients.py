"""Coach CRUD routes — clients and coaching sessions."""

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from coachlatam.db.session import get_db
from coachlatam.models.user import User
from coachlatam.schemas.clients import (
    ClientCreate,
    ClientInfo,
    ClientUpdate,
    SessionCreate,
    SessionInfo,
    SessionUpdate,
)
from coachlatam.services import client_service
from coachlatam.services.auth_service import get_current_user

router = APIRouter(prefix="/api", tags=["clients"])


# --- Clients ---


@router.get("/clients", response_model=list[ClientInfo])
async def list_clients(
    page: int = 1,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await client_service.list_clients(db, user.id, max(page, 1))


@router.post("/clients", response_model=ClientInfo, status_code=201)
async def create_client(
    payload: ClientCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await client_service.create_client(db, user, payload)


@router.get("/clients/{client_id}", response_model=ClientInfo)
async def get_client(
    client_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await client_service.get_client(db, user.id, client_id)


@router.patch("/clients/{client_id}", response_model=ClientInfo)
async def update_client(
    client_id: int,
    payload: ClientUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await client_service.update_client(db, user.id, client_id, payload)


@router.delete("/clients/{client_id}", status_code=204)
async def delete_client(
    client_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await client_service.delete_client(db, user.id, client_id)
    return Response(status_code=204)


# --- Sessions ---


@router.get("/sessions", response_model=list[SessionInfo])
async def list_sessions(
    client_id: int | None = None,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await client_service.list_sessions(db, user.id, client_id)


@router.post("/sessions", response_model=SessionInfo, status_code=201)
async def create_session(
    payload: SessionCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await client_service.create_session(db, user.id, payload)


@router.get("/sessions/{session_id}", response_model=SessionInfo)
async def get_session(
    session_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await client_service.get_session(db, user.id, session_id)


@router.patch("/sessions/{session_id}", response_model=SessionInfo)
async def update_session(
    session_id: int,
    payload: SessionUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await client_service.update_session(db, user.id, session_id, payload)


@router.delete("/sessions/{session_id}", status_code=204)
async def delete_session(
    session_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await client_service.delete_session(db, user.id, session_id)
    return Response(status_code=204)
