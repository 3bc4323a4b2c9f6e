"""Client and coaching-session Pydantic schemas."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class ClientCreate(BaseModel):
    full_name: str = Field(min_length=1, max_length=255)
    email: str | None = None
    phone: str | None = None
    company: str | None = None
    position: str | None = None
    status: Literal["active", "inactive", "completed"] = "active"
    notes: str | None = None


class ClientUpdate(BaseModel):
    full_name: str | None = Field(None, min_length=1, max_length=255)
    email: str | None = None
    phone: str | None = None
    company: str | None = None
    position: str | None = None
    status: Literal["active", "inactive", "completed"] | None = None
    notes: str | None = None


class ClientInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    full_name: str
    email: str | None = None
    phone: str | None = None
    company: str | None = None
    position: str | None = None
    status: str
    notes: str | None = None
    created_at: datetime


class SessionCreate(BaseModel):
    client_id: int
    title: str = Field(min_length=1, max_length=255)
    description: str | None = None
    scheduled_date: datetime
    duration: int = Field(60, ge=15, le=480)
    session_type: Literal["online", "presencial"] = "online"


class SessionUpdate(BaseModel):
    title: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    scheduled_date: datetime | None = None
    duration: int | None = Field(None, ge=15, le=480)
    status: Literal["scheduled", "completed", "cancelled", "no_show"] | None = None
    session_type: Literal["online", "presencial"] | None = None
    notes: str | None = None


class SessionInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    client_id: int
    title: str
    description: str | None = None
    scheduled_date: datetime
    duration: int
    status: str
    session_type: str
    notes: str | None = None
