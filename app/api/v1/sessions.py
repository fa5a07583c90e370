# app/api/v1/sessions.py
from __future__ import annotations

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.auth_deps import get_admin_principal, get_current_principal
from app.db.session import get_db
from app.models.enums import SessionStatus
from app.policies.rbac import Principal
from app.schemas.sessions import (
    SessionCounts,
    SessionCreateRequest,
    SessionOut,
    SessionStatusRequest,
    SessionUpdateRequest,
    SessionWithCountsOut,
)
from app.services.session_lifecycle import SessionLifecycle

router = APIRouter(prefix="/sessions", tags=["sessions"])


def _out(session) -> SessionOut:
    return SessionOut.model_validate(session)


def _schema_dump(fields):
    return [f.model_dump() for f in fields] if fields is not None else None


# ─────────────────────────────────────────────────────────────
# READS
# ─────────────────────────────────────────────────────────────

@router.get("", response_model=List[SessionOut])
def list_sessions(
    status: Optional[SessionStatus] = None,
    activity_id: Optional[uuid.UUID] = None,
    include_deleted: bool = False,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    rows = SessionLifecycle().list_sessions(
        db,
        principal,
        status=status,
        activity_id=activity_id,
        include_deleted=include_deleted,
        limit=limit,
        offset=offset,
    )
    return [_out(s) for s in rows]


@router.get("/upcoming", response_model=List[SessionOut])
def list_upcoming(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return [_out(s) for s in SessionLifecycle().list_upcoming(db, principal, limit=limit, offset=offset)]


@router.get("/past", response_model=List[SessionOut])
def list_past(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return [_out(s) for s in SessionLifecycle().list_past(db, principal, limit=limit, offset=offset)]


@router.get("/{session_id}", response_model=SessionWithCountsOut)
def get_session(
    session_id: uuid.UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    session, occupancy = SessionLifecycle().get_with_counts(db, principal, session_id)
    return SessionWithCountsOut(
        session=_out(session),
        counts=SessionCounts(
            joined=occupancy.joined,
            waitlisted=occupancy.waitlisted,
            pending=occupancy.pending,
        ),
    )


# ─────────────────────────────────────────────────────────────
# ADMIN
# ─────────────────────────────────────────────────────────────

@router.post("", response_model=SessionOut, status_code=201)
def create_session(
    req: SessionCreateRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_admin_principal),
):
    session = SessionLifecycle().create_session(
        db,
        principal,
        activity_id=req.activity_id,
        title=req.title,
        date_time=req.date_time,
        max_capacity=req.max_capacity,
        max_waitlist=req.max_waitlist,
        join_mode=req.join_mode,
        description=req.description,
        location=req.location,
        join_form_schema=_schema_dump(req.join_form_schema),
    )
    return _out(session)


@router.patch("/{session_id}", response_model=SessionOut)
def update_session(
    session_id: uuid.UUID,
    req: SessionUpdateRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_admin_principal),
):
    fields = req.model_dump(exclude_unset=True)
    if "join_form_schema" in fields:
        fields["join_form_schema"] = _schema_dump(req.join_form_schema)
    session = SessionLifecycle().update_session(db, principal, session_id, fields=fields)
    return _out(session)


@router.post("/{session_id}/status", response_model=SessionOut)
def update_session_status(
    session_id: uuid.UUID,
    req: SessionStatusRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_admin_principal),
):
    session = SessionLifecycle().update_status(db, principal, session_id, new_status=req.status)
    return _out(session)


@router.delete("/{session_id}", response_model=SessionOut)
def delete_session(
    session_id: uuid.UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_admin_principal),
):
    return _out(SessionLifecycle().soft_delete(db, principal, session_id))
