# app/services/org_scope.py
from __future__ import annotations

import uuid
from typing import Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.errors import NotFoundError
from app.models.activity import Activity
from app.models.event_session import EventSession
from app.models.participation import Participation


class OrgScope:
    """
    Organization-scoped lookups. Anything outside the caller's organization,
    or soft-deleted, is reported as not found so existence never leaks.
    """

    def __init__(self, organization_id: uuid.UUID):
        self.organization_id = organization_id

    # ─────────────────────────────────────────────
    # SESSIONS
    # ─────────────────────────────────────────────

    def _session_query(self, session_id: uuid.UUID):
        return select(EventSession).where(
            EventSession.id == session_id,
            EventSession.organization_id == self.organization_id,
            EventSession.deleted_at.is_(None),
        )

    def get_session(self, db: Session, session_id: uuid.UUID) -> Optional[EventSession]:
        return db.execute(self._session_query(session_id)).scalar_one_or_none()

    def require_session(self, db: Session, session_id: uuid.UUID) -> EventSession:
        session = self.get_session(db, session_id)
        if not session:
            raise NotFoundError("Session not found.")
        return session

    def lock_session(self, db: Session, session_id: uuid.UUID) -> EventSession:
        """
        Lock the session row (FOR UPDATE). Every admission decision for the
        session serializes here; counts read afterwards are authoritative.
        """
        session = db.execute(
            self._session_query(session_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if not session:
            raise NotFoundError("Session not found.")
        return session

    # ─────────────────────────────────────────────
    # PARTICIPATIONS
    # ─────────────────────────────────────────────

    def get_participation(
        self,
        db: Session,
        participation_id: uuid.UUID,
        *,
        user_id: Optional[uuid.UUID] = None,
    ) -> Optional[Participation]:
        q = (
            select(Participation)
            .join(EventSession, Participation.session_id == EventSession.id)
            .where(
                Participation.id == participation_id,
                EventSession.organization_id == self.organization_id,
                EventSession.deleted_at.is_(None),
            )
            .execution_options(populate_existing=True)
        )
        if user_id is not None:
            q = q.where(Participation.user_id == user_id)
        return db.execute(q).scalar_one_or_none()

    def require_participation(
        self,
        db: Session,
        participation_id: uuid.UUID,
        *,
        user_id: Optional[uuid.UUID] = None,
    ) -> Participation:
        row = self.get_participation(db, participation_id, user_id=user_id)
        if not row:
            raise NotFoundError("Participation not found.")
        return row

    def lock_participation_session(
        self,
        db: Session,
        participation_id: uuid.UUID,
        *,
        user_id: Optional[uuid.UUID] = None,
    ) -> Tuple[EventSession, Participation]:
        """
        Resolve a participation, lock its session, then re-read the
        participation so its status reflects every committed change.
        """
        row = self.require_participation(db, participation_id, user_id=user_id)
        session = self.lock_session(db, row.session_id)
        row = self.require_participation(db, participation_id, user_id=user_id)
        return session, row

    # ─────────────────────────────────────────────
    # ACTIVITIES
    # ─────────────────────────────────────────────

    def get_activity(self, db: Session, activity_id: uuid.UUID) -> Optional[Activity]:
        return db.execute(
            select(Activity).where(
                Activity.id == activity_id,
                Activity.organization_id == self.organization_id,
            )
        ).scalar_one_or_none()

    def require_activity(self, db: Session, activity_id: uuid.UUID) -> Activity:
        act = self.get_activity(db, activity_id)
        if not act:
            raise NotFoundError("Activity not found.")
        return act
