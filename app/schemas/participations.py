#app/schemas/participations.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.enums import AttendanceStatus, ParticipationStatus, PaymentStatus
from app.schemas.sessions import SessionOut


class JoinRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    session_id: uuid.UUID
    form_answers: Optional[Dict[str, Any]] = None
    invite_token: Optional[str] = None


class AdminAddRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    session_id: uuid.UUID
    user_identifier: str = Field(..., min_length=1, description="Email or phone number of an organization member")


class MoveRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    target_session_id: uuid.UUID


class AttendanceUpdate(BaseModel):
    participation_id: uuid.UUID
    attendance: AttendanceStatus


class PaymentUpdate(BaseModel):
    participation_id: uuid.UUID
    payment: PaymentStatus


class BulkAttendanceRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    session_id: uuid.UUID
    updates: List[AttendanceUpdate] = Field(..., min_length=1)


class BulkPaymentRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    session_id: uuid.UUID
    updates: List[PaymentUpdate] = Field(..., min_length=1)


class BulkCancelRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    session_id: uuid.UUID
    participation_ids: List[uuid.UUID] = Field(..., min_length=1)


class ParticipationUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    attendance: Optional[AttendanceStatus] = None
    payment: Optional[PaymentStatus] = None
    notes: Optional[str] = None


class ParticipationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    session_id: uuid.UUID
    user_id: uuid.UUID
    status: ParticipationStatus
    attendance: AttendanceStatus
    payment: PaymentStatus
    notes: Optional[str] = None
    form_answers: Optional[Dict[str, Any]] = None
    attribute_overrides: Optional[Dict[str, Any]] = None
    joined_at: datetime
    cancelled_at: Optional[datetime] = None


class MyParticipationOut(BaseModel):
    participation: Optional[ParticipationOut] = None
    waitlist_position: Optional[int] = None


class MoveOut(BaseModel):
    cancelled: ParticipationOut
    created: ParticipationOut
    promoted: List[ParticipationOut] = Field(default_factory=list)


class BulkUpdateOut(BaseModel):
    updated: int


class BulkCancelOut(BaseModel):
    cancelled: List[ParticipationOut] = Field(default_factory=list)
    promoted: List[ParticipationOut] = Field(default_factory=list)


class RosterUser(BaseModel):
    id: uuid.UUID
    name: str
    email: Optional[str] = None
    phone_number: Optional[str] = None


class RosterEntry(BaseModel):
    participation: ParticipationOut
    user: RosterUser


class HistoryEntry(BaseModel):
    participation: ParticipationOut
    session: SessionOut
