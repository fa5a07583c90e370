# app/api/v1/activities.py
from __future__ import annotations

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.auth_deps import get_admin_principal, get_current_principal
from app.db.session import get_db
from app.policies.rbac import Principal
from app.schemas.activities import (
    ActivityCreateRequest,
    ActivityMembershipOut,
    ActivityOut,
    MembershipReviewRequest,
    MyActivityOut,
)
from app.services.activities_service import ActivityService

router = APIRouter(prefix="/activities", tags=["activities"])


@router.post("", response_model=ActivityOut, status_code=201)
def create_activity(
    req: ActivityCreateRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_admin_principal),
):
    act = ActivityService().create_activity(
        db,
        principal,
        name=req.name,
        join_mode=req.join_mode,
        join_form_schema=[f.model_dump() for f in req.join_form_schema] if req.join_form_schema else None,
    )
    return ActivityOut.model_validate(act)


@router.get("/mine", response_model=List[MyActivityOut])
def my_activities(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    rows = ActivityService().list_my_memberships(db, principal)
    return [
        MyActivityOut(
            activity=ActivityOut.model_validate(act),
            membership=ActivityMembershipOut.model_validate(member),
        )
        for member, act in rows
    ]


@router.post("/{activity_id}/join", response_model=ActivityMembershipOut)
def join_activity(
    activity_id: uuid.UUID,
    invite_token: Optional[str] = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    member = ActivityService().join(db, principal, activity_id=activity_id, invite_token=invite_token)
    return ActivityMembershipOut.model_validate(member)


@router.post("/{activity_id}/members/review", response_model=ActivityMembershipOut)
def review_membership(
    activity_id: uuid.UUID,
    req: MembershipReviewRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_admin_principal),
):
    member = ActivityService().review(
        db,
        principal,
        activity_id=activity_id,
        user_id=req.user_id,
        approve=req.approve,
    )
    return ActivityMembershipOut.model_validate(member)
