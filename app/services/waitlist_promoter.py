# app/services/waitlist_promoter.py
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.enums import ParticipationStatus, SessionStatus
from app.models.event_session import EventSession
from app.models.participation import Participation
from app.services.admission_engine import AdmissionEngine
from app.services.audit_service import AuditAction, AuditService

logger = logging.getLogger(__name__)


def _now():
    return datetime.now(timezone.utc)


class WaitlistPromoter:
    """
    Fills freed seats from the waitlist, earliest joined_at first.

    Runs inside the transaction that freed the seats, with the session row
    already locked, so no concurrent joiner can see the seat as free.
    Event-driven only; nothing polls.
    """

    def __init__(
        self,
        admission: Optional[AdmissionEngine] = None,
        audit: Optional[AuditService] = None,
    ):
        self.admission = admission or AdmissionEngine()
        self.audit = audit or AuditService()

    def promote(
        self,
        db: Session,
        session: EventSession,
        *,
        freed_slots: int = 1,
        actor_user_id: Optional[uuid.UUID] = None,
    ) -> List[Participation]:
        """
        Promote up to freed_slots waitlisted participations, never past
        max_capacity. Terminal sessions are frozen and promote nobody.
        """
        if freed_slots <= 0:
            return []
        if session.status in (SessionStatus.completed.value, SessionStatus.cancelled.value):
            return []

        # pending writes (the cancellation that freed the seat) must be counted
        db.flush()

        occupancy = self.admission.count_occupancy(db, session.id)
        room = session.max_capacity - occupancy.joined
        limit = min(freed_slots, room)
        if limit <= 0:
            return []

        candidates = (
            db.execute(
                select(Participation)
                .where(
                    Participation.session_id == session.id,
                    Participation.status == ParticipationStatus.waitlisted.value,
                )
                .order_by(Participation.joined_at.asc(), Participation.id.asc())
                .limit(limit)
                .with_for_update()
            )
            .scalars()
            .all()
        )

        now = _now()
        for p in candidates:
            p.status = ParticipationStatus.joined.value
            p.updated_at = now
            self.audit.write(
                db,
                organization_id=session.organization_id,
                action=AuditAction.PARTICIPATION_PROMOTED,
                actor_user_id=actor_user_id,
                session_id=session.id,
                participation_id=p.id,
                details={"user_id": str(p.user_id)},
            )
            logger.info(
                "waitlist promotion",
                extra={"session_id": str(session.id), "participation_id": str(p.id)},
            )

        db.flush()
        return list(candidates)
