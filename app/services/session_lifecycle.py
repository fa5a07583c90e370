# app/services/session_lifecycle.py
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from sqlalchemy import desc, or_, select
from sqlalchemy.orm import Session, aliased

from app.core.errors import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
)
from app.db.transaction import atomic
from app.models.enums import ParticipationStatus, SessionJoinMode, SessionStatus
from app.models.event_session import EventSession
from app.models.participation import Participation
from app.policies.rbac import Principal, can_administer, require_admin
from app.services.admission_engine import AdmissionEngine, Occupancy
from app.services.audit_service import AuditAction, AuditService
from app.services.org_scope import OrgScope
from app.services.waitlist_promoter import WaitlistPromoter

logger = logging.getLogger(__name__)


SESSION_TRANSITIONS: Dict[SessionStatus, Set[SessionStatus]] = {
    SessionStatus.draft: {SessionStatus.published},
    SessionStatus.published: {SessionStatus.completed, SessionStatus.cancelled},
    SessionStatus.completed: set(),
    SessionStatus.cancelled: set(),
}

TERMINAL_SESSION_STATUSES: Set[SessionStatus] = {SessionStatus.completed, SessionStatus.cancelled}

# fields an admin may change through update_session
UPDATABLE_FIELDS = (
    "title",
    "description",
    "location",
    "date_time",
    "max_capacity",
    "max_waitlist",
    "join_mode",
    "join_form_schema",
)
REQUIRED_FIELDS = ("title", "date_time", "max_capacity", "max_waitlist", "join_mode")


def _now():
    return datetime.now(timezone.utc)


def can_transition_session(current: SessionStatus, target: SessionStatus) -> bool:
    return target in SESSION_TRANSITIONS.get(current, set())


def assert_session_transition(current: SessionStatus, target: SessionStatus) -> None:
    if not can_transition_session(current, target):
        raise InvalidTransitionError(
            f"Cannot move session from '{current.value}' to '{target.value}'.",
            details={"from": current.value, "to": target.value},
        )


def is_terminal(status: str) -> bool:
    return SessionStatus(status) in TERMINAL_SESSION_STATUSES


def assert_session_mutable(session: EventSession) -> None:
    if is_terminal(session.status):
        raise BadRequestError(f"Session is {session.status} and can no longer be changed.")


def _assert_reschedule_keeps_participants_free(db: Session, session: EventSession) -> None:
    """Moving a session must not double-book anyone already in it."""
    other = aliased(Participation)
    clash = db.execute(
        select(Participation.user_id, EventSession.id)
        .join(other, other.user_id == Participation.user_id)
        .join(EventSession, other.session_id == EventSession.id)
        .where(
            Participation.session_id == session.id,
            Participation.status != ParticipationStatus.cancelled.value,
            other.status != ParticipationStatus.cancelled.value,
            EventSession.id != session.id,
            EventSession.date_time == session.date_time,
            EventSession.deleted_at.is_(None),
            EventSession.status != SessionStatus.cancelled.value,
        )
        .limit(1)
    ).first()
    if clash is not None:
        raise ConflictError(
            "A participant already has another session at the new date and time.",
            details={"user_id": str(clash[0]), "session_id": str(clash[1])},
        )


def _validate_limits(max_capacity: Optional[int], max_waitlist: Optional[int]) -> None:
    if max_capacity is not None and max_capacity < 1:
        raise BadRequestError("max_capacity must be at least 1.")
    if max_waitlist is not None and max_waitlist < 0:
        raise BadRequestError("max_waitlist cannot be negative.")


class SessionLifecycle:
    """
    Session creation, reads and the draft → published → {completed, cancelled}
    state machine. Terminal sessions are frozen: no field or status change.

    Capacity reductions below current occupancy are accepted; nobody is
    evicted, admission just stops until occupancy drops.
    """

    def __init__(
        self,
        admission: Optional[AdmissionEngine] = None,
        audit: Optional[AuditService] = None,
        promoter: Optional[WaitlistPromoter] = None,
    ):
        self.admission = admission or AdmissionEngine()
        self.audit = audit or AuditService()
        self.promoter = promoter or WaitlistPromoter(admission=self.admission, audit=self.audit)

    # ---------------------------
    # READS
    # ---------------------------

    def get_session(self, db: Session, principal: Principal, session_id: uuid.UUID) -> EventSession:
        """Drafts are visible to admins only; for anyone else they do not exist."""
        session = OrgScope(principal.organization_id).require_session(db, session_id)
        if session.status == SessionStatus.draft.value and not can_administer(principal):
            raise NotFoundError("Session not found.")
        return session

    def get_with_counts(
        self,
        db: Session,
        principal: Principal,
        session_id: uuid.UUID,
    ) -> Tuple[EventSession, Occupancy]:
        session = self.get_session(db, principal, session_id)
        return session, self.admission.count_occupancy(db, session.id)

    def list_sessions(
        self,
        db: Session,
        principal: Principal,
        *,
        status: Optional[SessionStatus] = None,
        activity_id: Optional[uuid.UUID] = None,
        include_deleted: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> List[EventSession]:
        is_admin = can_administer(principal)
        if include_deleted and not is_admin:
            raise ForbiddenError("Only organization admins can list deleted sessions.")

        q = select(EventSession).where(EventSession.organization_id == principal.organization_id)
        if not include_deleted:
            q = q.where(EventSession.deleted_at.is_(None))
        if not is_admin:
            q = q.where(EventSession.status != SessionStatus.draft.value)
        if status is not None:
            q = q.where(EventSession.status == status.value)
        if activity_id is not None:
            q = q.where(EventSession.activity_id == activity_id)

        q = q.order_by(EventSession.date_time.asc(), EventSession.id.asc()).limit(limit).offset(offset)
        return list(db.execute(q).scalars().all())

    def list_upcoming(
        self,
        db: Session,
        principal: Principal,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> List[EventSession]:
        q = (
            select(EventSession)
            .where(
                EventSession.organization_id == principal.organization_id,
                EventSession.deleted_at.is_(None),
                EventSession.status == SessionStatus.published.value,
                EventSession.date_time >= _now(),
            )
            .order_by(EventSession.date_time.asc(), EventSession.id.asc())
            .limit(limit)
            .offset(offset)
        )
        return list(db.execute(q).scalars().all())

    def list_past(
        self,
        db: Session,
        principal: Principal,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> List[EventSession]:
        """Sessions whose time has passed or that reached a terminal status, newest first."""
        q = (
            select(EventSession)
            .where(
                EventSession.organization_id == principal.organization_id,
                EventSession.deleted_at.is_(None),
                EventSession.status != SessionStatus.draft.value,
                or_(
                    EventSession.date_time < _now(),
                    EventSession.status.in_([s.value for s in TERMINAL_SESSION_STATUSES]),
                ),
            )
            .order_by(desc(EventSession.date_time), EventSession.id.asc())
            .limit(limit)
            .offset(offset)
        )
        return list(db.execute(q).scalars().all())

    # ---------------------------
    # MUTATIONS
    # ---------------------------

    def create_session(
        self,
        db: Session,
        principal: Principal,
        *,
        activity_id: uuid.UUID,
        title: str,
        date_time: datetime,
        max_capacity: int,
        max_waitlist: int = 0,
        join_mode: SessionJoinMode = SessionJoinMode.open,
        description: Optional[str] = None,
        location: Optional[str] = None,
        join_form_schema: Optional[List[Dict[str, Any]]] = None,
    ) -> EventSession:
        require_admin(principal)
        _validate_limits(max_capacity, max_waitlist)
        scope = OrgScope(principal.organization_id)
        activity = scope.require_activity(db, activity_id)

        with atomic(db):
            session = EventSession(
                organization_id=principal.organization_id,
                activity_id=activity.id,
                title=title,
                description=description,
                location=location,
                date_time=date_time,
                max_capacity=max_capacity,
                max_waitlist=max_waitlist,
                join_mode=join_mode.value,
                status=SessionStatus.draft.value,
                join_form_schema=join_form_schema,
                created_by=principal.user_id,
            )
            db.add(session)
            db.flush()
            self.audit.write(
                db,
                organization_id=principal.organization_id,
                action=AuditAction.SESSION_CREATED,
                actor_user_id=principal.user_id,
                session_id=session.id,
                details={"activity_id": str(activity.id), "title": title},
            )

        logger.info("session created", extra={"session_id": str(session.id)})
        return session

    def update_session(
        self,
        db: Session,
        principal: Principal,
        session_id: uuid.UUID,
        *,
        fields: Mapping[str, Any],
    ) -> EventSession:
        require_admin(principal)

        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise BadRequestError(
                f"Unsupported session fields: {', '.join(sorted(unknown))}",
                details={"fields": sorted(unknown)},
            )
        cleared = sorted(k for k in REQUIRED_FIELDS if k in fields and fields[k] is None)
        if cleared:
            raise BadRequestError(f"Fields cannot be cleared: {', '.join(cleared)}")
        _validate_limits(fields.get("max_capacity"), fields.get("max_waitlist"))

        with atomic(db):
            session = OrgScope(principal.organization_id).lock_session(db, session_id)
            assert_session_mutable(session)
            old_capacity = session.max_capacity

            changed: List[str] = []
            for key, value in fields.items():
                if isinstance(value, SessionJoinMode):
                    value = value.value
                if getattr(session, key) != value:
                    setattr(session, key, value)
                    changed.append(key)

            if "date_time" in changed:
                _assert_reschedule_keeps_participants_free(db, session)

            if changed:
                session.updated_at = _now()
                self.audit.write(
                    db,
                    organization_id=session.organization_id,
                    action=AuditAction.SESSION_UPDATED,
                    actor_user_id=principal.user_id,
                    session_id=session.id,
                    details={"changed": sorted(changed)},
                )

            # a larger capacity frees seats for the waitlist
            if session.max_capacity > old_capacity:
                self.promoter.promote(
                    db,
                    session,
                    freed_slots=session.max_capacity - old_capacity,
                    actor_user_id=principal.user_id,
                )

        if changed:
            logger.info("session updated", extra={"session_id": str(session.id), "fields": sorted(changed)})
        return session

    def update_status(
        self,
        db: Session,
        principal: Principal,
        session_id: uuid.UUID,
        *,
        new_status: SessionStatus,
    ) -> EventSession:
        require_admin(principal)

        with atomic(db):
            session = OrgScope(principal.organization_id).lock_session(db, session_id)
            current = SessionStatus(session.status)
            assert_session_transition(current, new_status)

            session.status = new_status.value
            session.updated_at = _now()
            self.audit.write(
                db,
                organization_id=session.organization_id,
                action=AuditAction.SESSION_STATUS_CHANGED,
                actor_user_id=principal.user_id,
                session_id=session.id,
                details={"from": current.value, "to": new_status.value},
            )

        logger.info(
            "session status changed",
            extra={"session_id": str(session.id), "from": current.value, "to": new_status.value},
        )
        return session

    def soft_delete(self, db: Session, principal: Principal, session_id: uuid.UUID) -> EventSession:
        """
        Hide the session from every active query and admission path.
        Participation rows stay for reporting.
        """
        require_admin(principal)

        with atomic(db):
            session = OrgScope(principal.organization_id).lock_session(db, session_id)
            session.deleted_at = _now()
            self.audit.write(
                db,
                organization_id=session.organization_id,
                action=AuditAction.SESSION_DELETED,
                actor_user_id=principal.user_id,
                session_id=session.id,
            )

        logger.info("session deleted", extra={"session_id": str(session.id)})
        return session
