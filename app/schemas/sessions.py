#app/schemas/sessions.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.enums import SessionJoinMode, SessionStatus


class FormFieldSchema(BaseModel):
    """One entry of a join form: {id, label, required, type, options}."""
    model_config = ConfigDict(extra="allow")

    id: str = Field(..., min_length=1)
    label: Optional[str] = None
    type: str = "text"
    required: bool = False
    options: List[str] = Field(default_factory=list)


class SessionCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    activity_id: uuid.UUID
    title: str = Field(..., min_length=1, max_length=200)
    date_time: datetime
    max_capacity: int = Field(..., ge=1)
    max_waitlist: int = Field(0, ge=0)
    join_mode: SessionJoinMode = SessionJoinMode.open
    description: Optional[str] = None
    location: Optional[str] = Field(None, max_length=500)
    join_form_schema: Optional[List[FormFieldSchema]] = None


class SessionUpdateRequest(BaseModel):
    """Partial update; only fields present in the body are applied."""
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    date_time: Optional[datetime] = None
    max_capacity: Optional[int] = Field(None, ge=1)
    max_waitlist: Optional[int] = Field(None, ge=0)
    join_mode: Optional[SessionJoinMode] = None
    description: Optional[str] = None
    location: Optional[str] = Field(None, max_length=500)
    join_form_schema: Optional[List[FormFieldSchema]] = None


class SessionStatusRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: SessionStatus


class SessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    organization_id: uuid.UUID
    activity_id: uuid.UUID
    title: str
    description: Optional[str] = None
    location: Optional[str] = None
    date_time: datetime
    max_capacity: int
    max_waitlist: int
    join_mode: SessionJoinMode
    status: SessionStatus
    join_form_schema: Optional[List[Dict[str, Any]]] = None
    created_by: Optional[uuid.UUID] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None


class SessionCounts(BaseModel):
    joined: int = 0
    waitlisted: int = 0
    pending: int = 0


class SessionWithCountsOut(BaseModel):
    session: SessionOut
    counts: SessionCounts
