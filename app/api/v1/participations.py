# app/api/v1/participations.py
from __future__ import annotations

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.auth_deps import get_admin_principal, get_current_principal
from app.db.session import get_db
from app.models.enums import ParticipationStatus
from app.policies.rbac import Principal
from app.schemas.participations import (
    AdminAddRequest,
    BulkAttendanceRequest,
    BulkCancelOut,
    BulkCancelRequest,
    BulkPaymentRequest,
    BulkUpdateOut,
    HistoryEntry,
    JoinRequest,
    MoveOut,
    MoveRequest,
    MyParticipationOut,
    ParticipationOut,
    ParticipationUpdateRequest,
    RosterEntry,
)
from app.schemas.sessions import SessionOut
from app.services.participation_store import ParticipationStore

router = APIRouter(prefix="/participations", tags=["participations"])


def _out(row) -> ParticipationOut:
    return ParticipationOut.model_validate(row)


def _history(rows) -> List[HistoryEntry]:
    return [
        HistoryEntry(participation=_out(p), session=SessionOut.model_validate(s))
        for p, s in rows
    ]


# ─────────────────────────────────────────────────────────────
# SELF-SERVICE
# ─────────────────────────────────────────────────────────────

@router.post("/join", response_model=ParticipationOut)
def join_session(
    req: JoinRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    row = ParticipationStore().join(
        db,
        principal,
        session_id=req.session_id,
        form_answers=req.form_answers,
        invite_token=req.invite_token,
    )
    return _out(row)


@router.post("/{participation_id}/cancel", response_model=ParticipationOut)
def cancel_participation(
    participation_id: uuid.UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return _out(ParticipationStore().cancel(db, principal, participation_id))


@router.get("/me", response_model=MyParticipationOut)
def my_participation(
    session_id: uuid.UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    row, position = ParticipationStore().get_my_participation(db, principal, session_id=session_id)
    return MyParticipationOut(
        participation=_out(row) if row else None,
        waitlist_position=position,
    )


@router.get("/me/history", response_model=List[HistoryEntry])
def my_history(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return _history(ParticipationStore().my_history(db, principal, limit=limit, offset=offset))


@router.get("/roster/{session_id}", response_model=List[RosterEntry])
def session_roster(
    session_id: uuid.UUID,
    status: Optional[ParticipationStatus] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    entries = ParticipationStore().roster(
        db,
        principal,
        session_id=session_id,
        status=status,
        limit=limit,
        offset=offset,
    )
    return [RosterEntry(participation=_out(e["participation"]), user=e["user"]) for e in entries]


# ─────────────────────────────────────────────────────────────
# ADMIN
# ─────────────────────────────────────────────────────────────

@router.post("/{participation_id}/approve", response_model=ParticipationOut)
def approve_participation(
    participation_id: uuid.UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_admin_principal),
):
    return _out(ParticipationStore().approve_pending(db, principal, participation_id))


@router.post("/{participation_id}/reject", response_model=ParticipationOut)
def reject_participation(
    participation_id: uuid.UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_admin_principal),
):
    return _out(ParticipationStore().reject_pending(db, principal, participation_id))


@router.post("/admin-add", response_model=ParticipationOut)
def admin_add(
    req: AdminAddRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_admin_principal),
):
    row = ParticipationStore().admin_add(
        db,
        principal,
        session_id=req.session_id,
        user_identifier=req.user_identifier,
    )
    return _out(row)


@router.post("/{participation_id}/move", response_model=MoveOut)
def move_participation(
    participation_id: uuid.UUID,
    req: MoveRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_admin_principal),
):
    result = ParticipationStore().move(
        db,
        principal,
        participation_id,
        target_session_id=req.target_session_id,
    )
    return MoveOut(
        cancelled=_out(result.cancelled),
        created=_out(result.created),
        promoted=[_out(p) for p in result.promoted],
    )


@router.post("/bulk-attendance", response_model=BulkUpdateOut)
def bulk_attendance(
    req: BulkAttendanceRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_admin_principal),
):
    updated = ParticipationStore().bulk_update_attendance(
        db,
        principal,
        session_id=req.session_id,
        updates=[(u.participation_id, u.attendance) for u in req.updates],
    )
    return BulkUpdateOut(updated=updated)


@router.post("/bulk-payment", response_model=BulkUpdateOut)
def bulk_payment(
    req: BulkPaymentRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_admin_principal),
):
    updated = ParticipationStore().bulk_update_payment(
        db,
        principal,
        session_id=req.session_id,
        updates=[(u.participation_id, u.payment) for u in req.updates],
    )
    return BulkUpdateOut(updated=updated)


@router.post("/bulk-cancel", response_model=BulkCancelOut)
def bulk_cancel(
    req: BulkCancelRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_admin_principal),
):
    result = ParticipationStore().bulk_cancel(
        db,
        principal,
        session_id=req.session_id,
        participation_ids=req.participation_ids,
    )
    return BulkCancelOut(
        cancelled=[_out(p) for p in result.cancelled],
        promoted=[_out(p) for p in result.promoted],
    )


@router.patch("/{participation_id}", response_model=ParticipationOut)
def update_participation(
    participation_id: uuid.UUID,
    req: ParticipationUpdateRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_admin_principal),
):
    row = ParticipationStore().update_participation(
        db,
        principal,
        participation_id,
        fields=req.model_dump(exclude_unset=True),
    )
    return _out(row)


@router.get("/users/{user_id}/history", response_model=List[HistoryEntry])
def user_history(
    user_id: uuid.UUID,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_admin_principal),
):
    rows = ParticipationStore().user_history(db, principal, user_id=user_id, limit=limit, offset=offset)
    return _history(rows)
