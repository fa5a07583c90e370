#app/schemas/activities.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.enums import ActivityJoinMode, ActivityMembershipStatus
from app.schemas.sessions import FormFieldSchema


class ActivityCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=200)
    join_mode: ActivityJoinMode = ActivityJoinMode.open
    join_form_schema: Optional[List[FormFieldSchema]] = None


class MembershipReviewRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: uuid.UUID
    approve: bool


class ActivityOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    organization_id: uuid.UUID
    name: str
    join_mode: ActivityJoinMode
    is_active: bool
    join_form_schema: Optional[List[Dict[str, Any]]] = None


class ActivityMembershipOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    activity_id: uuid.UUID
    user_id: uuid.UUID
    status: ActivityMembershipStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class MyActivityOut(BaseModel):
    activity: ActivityOut
    membership: ActivityMembershipOut
