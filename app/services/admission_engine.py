# app/services/admission_engine.py
from __future__ import annotations

import uuid
from dataclasses import dataclass

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from app.core.errors import SessionFullError
from app.models.enums import ParticipationStatus, SessionJoinMode
from app.models.event_session import EventSession
from app.models.participation import Participation


@dataclass(frozen=True)
class Occupancy:
    joined: int = 0
    waitlisted: int = 0
    pending: int = 0


def decide_admission(
    mode: SessionJoinMode,
    *,
    joined_count: int,
    waitlist_count: int,
    max_capacity: int,
    max_waitlist: int,
) -> ParticipationStatus:
    """
    Pure admission decision.

    - approval_required → pending, capacity is not looked at
    - open (or approving a pending request):
        joined while joined_count < max_capacity,
        else waitlisted while waitlist_count < max_waitlist,
        else SessionFullError and nothing is written
    """
    if mode == SessionJoinMode.approval_required:
        return ParticipationStatus.pending

    if joined_count < max_capacity:
        return ParticipationStatus.joined
    if waitlist_count < max_waitlist:
        return ParticipationStatus.waitlisted

    raise SessionFullError(
        "Session and waitlist are full.",
        details={
            "joined": joined_count,
            "waitlisted": waitlist_count,
            "max_capacity": max_capacity,
            "max_waitlist": max_waitlist,
        },
    )


class AdmissionEngine:
    """
    Reads occupancy and applies decide_admission. Callers must hold the
    session row lock (OrgScope.lock_session) in the same transaction that
    writes the resulting status.
    """

    def count_occupancy(self, db: Session, session_id: uuid.UUID) -> Occupancy:
        row = db.execute(
            select(
                func.count(case((Participation.status == ParticipationStatus.joined.value, 1))),
                func.count(case((Participation.status == ParticipationStatus.waitlisted.value, 1))),
                func.count(case((Participation.status == ParticipationStatus.pending.value, 1))),
            ).where(Participation.session_id == session_id)
        ).one()
        return Occupancy(joined=int(row[0]), waitlisted=int(row[1]), pending=int(row[2]))

    def admit(self, db: Session, session: EventSession, mode: SessionJoinMode) -> ParticipationStatus:
        occupancy = self.count_occupancy(db, session.id)
        return decide_admission(
            mode,
            joined_count=occupancy.joined,
            waitlist_count=occupancy.waitlisted,
            max_capacity=session.max_capacity,
            max_waitlist=session.max_waitlist,
        )
