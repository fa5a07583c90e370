# app/services/participation_store.py
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from sqlalchemy import and_, desc, func, or_, select
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.errors import (
    BadRequestError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
)
from app.core.redaction import contact_view
from app.db.transaction import atomic
from app.models.enums import (
    AttendanceStatus,
    ParticipationStatus,
    PaymentStatus,
    SessionJoinMode,
    SessionStatus,
)
from app.models.event_session import EventSession
from app.models.organization import OrganizationMember
from app.models.participation import Participation
from app.models.user import User
from app.policies.access_gate import AccessGate
from app.policies.rbac import Principal, can_administer, require_admin
from app.services.admission_engine import AdmissionEngine
from app.services.audit_service import AuditAction, AuditService
from app.services.form_validation import clean_answers, parse_form_schema, validate_required_answers
from app.services.org_scope import OrgScope
from app.services.session_lifecycle import is_terminal
from app.services.waitlist_promoter import WaitlistPromoter

logger = logging.getLogger(__name__)


PARTICIPATION_TRANSITIONS: Dict[ParticipationStatus, Set[ParticipationStatus]] = {
    ParticipationStatus.pending: {
        ParticipationStatus.joined,
        ParticipationStatus.waitlisted,
        ParticipationStatus.cancelled,
    },
    # waitlisted → joined happens through promotion only
    ParticipationStatus.waitlisted: {ParticipationStatus.joined, ParticipationStatus.cancelled},
    ParticipationStatus.joined: {ParticipationStatus.cancelled},
    ParticipationStatus.cancelled: set(),
}

UPDATABLE_PARTICIPATION_FIELDS = ("attendance", "payment", "notes")


def _now():
    return datetime.now(timezone.utc)


def assert_participation_transition(current: ParticipationStatus, target: ParticipationStatus) -> None:
    if target not in PARTICIPATION_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(
            f"Cannot move participation from '{current.value}' to '{target.value}'.",
            details={"from": current.value, "to": target.value},
        )


@dataclass
class MoveResult:
    cancelled: Participation
    created: Participation
    promoted: List[Participation] = field(default_factory=list)


@dataclass
class BulkCancelResult:
    cancelled: List[Participation] = field(default_factory=list)
    promoted: List[Participation] = field(default_factory=list)


class ParticipationStore:
    """
    Owns the participation state machine and every write to participations.

    Admission-affecting operations follow one pattern: lock the session row,
    re-read state, decide, write, audit, commit, all in one transaction.
    Anything that frees a joined seat hands the session to the
    WaitlistPromoter before that transaction commits.
    """

    def __init__(
        self,
        gate: Optional[AccessGate] = None,
        admission: Optional[AdmissionEngine] = None,
        promoter: Optional[WaitlistPromoter] = None,
        audit: Optional[AuditService] = None,
        bulk_update_limit: Optional[int] = None,
    ):
        self.audit = audit or AuditService()
        self.admission = admission or AdmissionEngine()
        self.gate = gate or AccessGate()
        self.promoter = promoter or WaitlistPromoter(admission=self.admission, audit=self.audit)
        self._bulk_update_limit = bulk_update_limit

    @property
    def bulk_update_limit(self) -> int:
        if self._bulk_update_limit is None:
            return get_settings().bulk_update_limit
        return self._bulk_update_limit

    # ─────────────────────────────────────────────
    # INTERNAL HELPERS
    # ─────────────────────────────────────────────

    def _get_active(self, db: Session, session_id: uuid.UUID, user_id: uuid.UUID) -> Optional[Participation]:
        return db.execute(
            select(Participation)
            .where(
                Participation.session_id == session_id,
                Participation.user_id == user_id,
                Participation.status != ParticipationStatus.cancelled.value,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _assert_no_conflicting_participation(
        self,
        db: Session,
        session: EventSession,
        user_id: uuid.UUID,
    ) -> None:
        """A user cannot hold two active seats at the same date/time."""
        clash = db.execute(
            select(Participation.session_id)
            .join(EventSession, Participation.session_id == EventSession.id)
            .where(
                Participation.user_id == user_id,
                Participation.status != ParticipationStatus.cancelled.value,
                EventSession.id != session.id,
                EventSession.date_time == session.date_time,
                EventSession.deleted_at.is_(None),
                EventSession.status != SessionStatus.cancelled.value,
            )
            .limit(1)
        ).scalar_one_or_none()
        if clash is not None:
            raise ConflictError(
                "Already participating in another session at the same time.",
                details={"session_id": str(clash)},
            )

    def _insert(
        self,
        db: Session,
        session: EventSession,
        user_id: uuid.UUID,
        status: ParticipationStatus,
        *,
        form_answers: Optional[Dict[str, Any]] = None,
    ) -> Participation:
        row = Participation(
            session_id=session.id,
            user_id=user_id,
            status=status.value,
            form_answers=form_answers or None,
            joined_at=_now(),
        )
        db.add(row)
        db.flush()
        return row

    def _set_status(self, row: Participation, target: ParticipationStatus) -> None:
        assert_participation_transition(ParticipationStatus(row.status), target)
        now = _now()
        row.status = target.value
        row.updated_at = now
        if target == ParticipationStatus.cancelled:
            row.cancelled_at = now

    def _resolve_member(self, db: Session, organization_id: uuid.UUID, identifier: str) -> User:
        """Find an organization member by email (case-insensitive) or phone number."""
        ident = (identifier or "").strip()
        if not ident:
            raise BadRequestError("A user email or phone number is required.")

        if "@" in ident:
            match = func.lower(User.email) == ident.lower()
        else:
            match = User.phone_number == ident

        user = db.execute(
            select(User)
            .join(OrganizationMember, OrganizationMember.user_id == User.id)
            .where(OrganizationMember.organization_id == organization_id, match)
        ).scalar_one_or_none()
        if not user:
            raise NotFoundError("User not found in this organization.")
        return user

    # ─────────────────────────────────────────────
    # JOIN / CANCEL
    # ─────────────────────────────────────────────

    def join(
        self,
        db: Session,
        principal: Principal,
        *,
        session_id: uuid.UUID,
        form_answers: Optional[Mapping[str, Any]] = None,
        invite_token: Optional[str] = None,
    ) -> Participation:
        """
        Self-service join. Idempotent: an existing active participation is
        returned unchanged. Every check runs before the insert; a failure
        anywhere rolls the whole transaction back.
        """
        scope = OrgScope(principal.organization_id)

        with atomic(db):
            session = scope.lock_session(db, session_id)
            if session.status != SessionStatus.published.value:
                raise BadRequestError("Session is not open for joining.")

            existing = self._get_active(db, session.id, principal.user_id)
            if existing:
                return existing

            mode = self.gate.evaluate(db, principal, session, invite_token=invite_token)

            fields = parse_form_schema(session.join_form_schema)
            validate_required_answers(fields, form_answers)

            self._assert_no_conflicting_participation(db, session, principal.user_id)

            status = self.admission.admit(db, session, mode)
            row = self._insert(
                db,
                session,
                principal.user_id,
                status,
                form_answers=clean_answers(fields, form_answers),
            )
            self.audit.write(
                db,
                organization_id=session.organization_id,
                action=AuditAction.PARTICIPATION_JOINED,
                actor_user_id=principal.user_id,
                session_id=session.id,
                participation_id=row.id,
                details={"status": status.value, "mode": mode.value},
            )

        logger.info(
            "participation joined",
            extra={"session_id": str(session.id), "participation_id": str(row.id), "status": row.status},
        )
        return row

    def cancel(self, db: Session, principal: Principal, participation_id: uuid.UUID) -> Participation:
        """
        Self-cancel. An already cancelled participation is reported as not
        found, so a repeated cancel can never free (and promote into) a seat twice.
        """
        scope = OrgScope(principal.organization_id)

        with atomic(db):
            session, row = scope.lock_participation_session(db, participation_id, user_id=principal.user_id)
            if row.status == ParticipationStatus.cancelled.value:
                raise NotFoundError("Participation not found.")
            if session.status == SessionStatus.completed.value:
                raise BadRequestError("Cannot cancel a participation of a completed session.")

            was_joined = row.status == ParticipationStatus.joined.value
            previous = row.status
            self._set_status(row, ParticipationStatus.cancelled)
            self.audit.write(
                db,
                organization_id=session.organization_id,
                action=AuditAction.PARTICIPATION_CANCELLED,
                actor_user_id=principal.user_id,
                session_id=session.id,
                participation_id=row.id,
                details={"from": previous},
            )
            promoted = self.promoter.promote(
                db,
                session,
                freed_slots=1 if was_joined else 0,
                actor_user_id=principal.user_id,
            )

        logger.info(
            "participation cancelled",
            extra={"session_id": str(session.id), "participation_id": str(row.id), "promoted": len(promoted)},
        )
        return row

    # ─────────────────────────────────────────────
    # ADMIN DECISIONS
    # ─────────────────────────────────────────────

    def approve_pending(self, db: Session, principal: Principal, participation_id: uuid.UUID) -> Participation:
        """
        Re-runs the capacity decision: an approval can land on the waitlist
        when the session filled up while the request was pending.
        """
        require_admin(principal)
        scope = OrgScope(principal.organization_id)

        with atomic(db):
            session, row = scope.lock_participation_session(db, participation_id)
            if row.status != ParticipationStatus.pending.value:
                raise BadRequestError(f"Participation is '{row.status}', not pending.")
            if is_terminal(session.status):
                raise BadRequestError(f"Session is {session.status}.")

            status = self.admission.admit(db, session, SessionJoinMode.open)
            self._set_status(row, status)
            self.audit.write(
                db,
                organization_id=session.organization_id,
                action=AuditAction.PARTICIPATION_APPROVED,
                actor_user_id=principal.user_id,
                session_id=session.id,
                participation_id=row.id,
                details={"status": status.value},
            )

        logger.info(
            "participation approved",
            extra={"session_id": str(session.id), "participation_id": str(row.id), "status": row.status},
        )
        return row

    def reject_pending(self, db: Session, principal: Principal, participation_id: uuid.UUID) -> Participation:
        """
        Admin rejection/removal. Works on any active participation; removing
        a joined participant frees a seat and promotes from the waitlist.
        """
        require_admin(principal)
        scope = OrgScope(principal.organization_id)

        with atomic(db):
            session, row = scope.lock_participation_session(db, participation_id)
            if is_terminal(session.status):
                raise BadRequestError(f"Session is {session.status}.")

            was_joined = row.status == ParticipationStatus.joined.value
            previous = row.status
            self._set_status(row, ParticipationStatus.cancelled)
            self.audit.write(
                db,
                organization_id=session.organization_id,
                action=AuditAction.PARTICIPATION_REJECTED,
                actor_user_id=principal.user_id,
                session_id=session.id,
                participation_id=row.id,
                details={"from": previous},
            )
            promoted = self.promoter.promote(
                db,
                session,
                freed_slots=1 if was_joined else 0,
                actor_user_id=principal.user_id,
            )

        logger.info(
            "participation rejected",
            extra={"session_id": str(session.id), "participation_id": str(row.id), "promoted": len(promoted)},
        )
        return row

    def admin_add(
        self,
        db: Session,
        principal: Principal,
        *,
        session_id: uuid.UUID,
        user_identifier: str,
    ) -> Participation:
        """
        Administrative override: the user is seated as joined regardless of
        capacity, join mode or activity membership.
        """
        require_admin(principal)
        scope = OrgScope(principal.organization_id)
        user = self._resolve_member(db, principal.organization_id, user_identifier)

        with atomic(db):
            session = scope.lock_session(db, session_id)
            if is_terminal(session.status):
                raise BadRequestError(f"Cannot add participants to a {session.status} session.")
            if self._get_active(db, session.id, user.id):
                raise ConflictError("User is already in this session.")
            self._assert_no_conflicting_participation(db, session, user.id)

            row = self._insert(db, session, user.id, ParticipationStatus.joined)
            self.audit.write(
                db,
                organization_id=session.organization_id,
                action=AuditAction.PARTICIPATION_ADMIN_ADDED,
                actor_user_id=principal.user_id,
                session_id=session.id,
                participation_id=row.id,
                details={"user_id": str(user.id)},
            )

        logger.info(
            "participant added by admin",
            extra={"session_id": str(session.id), "participation_id": str(row.id)},
        )
        return row

    def move(
        self,
        db: Session,
        principal: Principal,
        participation_id: uuid.UUID,
        *,
        target_session_id: uuid.UUID,
    ) -> MoveResult:
        """
        Cancel the source seat (promoting on the source session) and place the
        same user in the target session, atomically. If the target cannot take
        them nothing changes on either side.
        """
        require_admin(principal)
        scope = OrgScope(principal.organization_id)

        source = scope.require_participation(db, participation_id)
        if source.session_id == target_session_id:
            raise BadRequestError("Cannot move a participant to the same session.")
        # cross-organization targets are simply not found
        scope.require_session(db, target_session_id)

        with atomic(db):
            # fixed lock order so two opposite moves cannot deadlock
            locked = {}
            for sid in sorted((source.session_id, target_session_id), key=str):
                locked[sid] = scope.lock_session(db, sid)
            source_session = locked[source.session_id]
            target = locked[target_session_id]

            row = scope.require_participation(db, participation_id)
            if row.status == ParticipationStatus.cancelled.value:
                raise BadRequestError("Participation is already cancelled.")
            if source_session.status == SessionStatus.completed.value:
                raise BadRequestError("Cannot move a participation of a completed session.")
            if is_terminal(target.status):
                raise BadRequestError(f"Cannot move to a {target.status} session.")
            if self._get_active(db, target.id, row.user_id):
                raise BadRequestError("User already has an active participation in the target session.")

            mode = self.gate.evaluate_placement(principal, target)

            was_joined = row.status == ParticipationStatus.joined.value
            previous = row.status
            self._set_status(row, ParticipationStatus.cancelled)
            self.audit.write(
                db,
                organization_id=source_session.organization_id,
                action=AuditAction.PARTICIPATION_MOVED,
                actor_user_id=principal.user_id,
                session_id=source_session.id,
                participation_id=row.id,
                details={"from": previous, "target_session_id": str(target.id)},
            )
            promoted = self.promoter.promote(
                db,
                source_session,
                freed_slots=1 if was_joined else 0,
                actor_user_id=principal.user_id,
            )

            self._assert_no_conflicting_participation(db, target, row.user_id)
            status = self.admission.admit(db, target, mode)
            # answers belong to the source session's form
            created = self._insert(db, target, row.user_id, status)
            self.audit.write(
                db,
                organization_id=target.organization_id,
                action=AuditAction.PARTICIPATION_JOINED,
                actor_user_id=principal.user_id,
                session_id=target.id,
                participation_id=created.id,
                details={"status": status.value, "moved_from": str(row.id)},
            )

        logger.info(
            "participation moved",
            extra={
                "participation_id": str(row.id),
                "source_session_id": str(source_session.id),
                "target_session_id": str(target.id),
                "status": created.status,
            },
        )
        return MoveResult(cancelled=row, created=created, promoted=promoted)

    # ─────────────────────────────────────────────
    # ATTENDANCE / PAYMENT
    # ─────────────────────────────────────────────

    def _check_batch(self, size: int) -> None:
        if size > self.bulk_update_limit:
            raise BadRequestError(
                f"At most {self.bulk_update_limit} participations per batch.",
                details={"limit": self.bulk_update_limit, "size": size},
            )

    def _load_batch(
        self,
        db: Session,
        session_id: uuid.UUID,
        participation_ids: Sequence[uuid.UUID],
    ) -> Dict[uuid.UUID, Participation]:
        rows = (
            db.execute(
                select(Participation)
                .where(
                    Participation.session_id == session_id,
                    Participation.id.in_(set(participation_ids)),
                )
                .execution_options(populate_existing=True)
            )
            .scalars()
            .all()
        )
        found = {r.id: r for r in rows}
        missing = [str(pid) for pid in participation_ids if pid not in found]
        if missing:
            raise NotFoundError(
                "Participation not found in session.",
                details={"missing": missing},
            )
        return found

    def _bulk_set(
        self,
        db: Session,
        principal: Principal,
        *,
        session_id: uuid.UUID,
        updates: Sequence[Tuple[uuid.UUID, str]],
        attr: str,
        action: str,
    ) -> int:
        require_admin(principal)
        self._check_batch(len(updates))
        if not updates:
            return 0

        scope = OrgScope(principal.organization_id)
        with atomic(db):
            session = scope.require_session(db, session_id)
            rows = self._load_batch(db, session.id, [pid for pid, _ in updates])
            now = _now()
            for pid, value in updates:
                setattr(rows[pid], attr, value)
                rows[pid].updated_at = now
            self.audit.write(
                db,
                organization_id=session.organization_id,
                action=action,
                actor_user_id=principal.user_id,
                session_id=session.id,
                details={"count": len(updates)},
            )

        logger.info(f"bulk {attr} update", extra={"session_id": str(session_id), "count": len(updates)})
        return len(updates)

    def bulk_update_attendance(
        self,
        db: Session,
        principal: Principal,
        *,
        session_id: uuid.UUID,
        updates: Sequence[Tuple[uuid.UUID, AttendanceStatus]],
    ) -> int:
        """All rows are updated or none: one unknown id rejects the batch."""
        return self._bulk_set(
            db,
            principal,
            session_id=session_id,
            updates=[(pid, AttendanceStatus(v).value) for pid, v in updates],
            attr="attendance",
            action=AuditAction.ATTENDANCE_BULK_UPDATED,
        )

    def bulk_update_payment(
        self,
        db: Session,
        principal: Principal,
        *,
        session_id: uuid.UUID,
        updates: Sequence[Tuple[uuid.UUID, PaymentStatus]],
    ) -> int:
        return self._bulk_set(
            db,
            principal,
            session_id=session_id,
            updates=[(pid, PaymentStatus(v).value) for pid, v in updates],
            attr="payment",
            action=AuditAction.PAYMENT_BULK_UPDATED,
        )

    def bulk_cancel(
        self,
        db: Session,
        principal: Principal,
        *,
        session_id: uuid.UUID,
        participation_ids: Sequence[uuid.UUID],
    ) -> BulkCancelResult:
        """
        Cancel several participations of one session and promote one
        waitlisted participant per freed seat. Already cancelled rows are
        left as they are.
        """
        require_admin(principal)
        self._check_batch(len(participation_ids))
        result = BulkCancelResult()
        if not participation_ids:
            return result

        scope = OrgScope(principal.organization_id)
        with atomic(db):
            session = scope.lock_session(db, session_id)
            if session.status == SessionStatus.completed.value:
                raise BadRequestError("Cannot cancel participations of a completed session.")

            rows = self._load_batch(db, session.id, participation_ids)
            freed = 0
            for row in rows.values():
                if row.status == ParticipationStatus.cancelled.value:
                    continue
                if row.status == ParticipationStatus.joined.value:
                    freed += 1
                previous = row.status
                self._set_status(row, ParticipationStatus.cancelled)
                self.audit.write(
                    db,
                    organization_id=session.organization_id,
                    action=AuditAction.PARTICIPATION_CANCELLED,
                    actor_user_id=principal.user_id,
                    session_id=session.id,
                    participation_id=row.id,
                    details={"from": previous, "bulk": True},
                )
                result.cancelled.append(row)

            result.promoted = self.promoter.promote(
                db,
                session,
                freed_slots=freed,
                actor_user_id=principal.user_id,
            )

        logger.info(
            "bulk cancellation",
            extra={
                "session_id": str(session_id),
                "cancelled": len(result.cancelled),
                "promoted": len(result.promoted),
            },
        )
        return result

    def update_participation(
        self,
        db: Session,
        principal: Principal,
        participation_id: uuid.UUID,
        *,
        fields: Mapping[str, Any],
    ) -> Participation:
        """Admin edit of attendance, payment and notes; status is untouched."""
        require_admin(principal)
        unknown = set(fields) - set(UPDATABLE_PARTICIPATION_FIELDS)
        if unknown:
            raise BadRequestError(
                f"Unsupported participation fields: {', '.join(sorted(unknown))}",
                details={"fields": sorted(unknown)},
            )

        values = dict(fields)
        if "attendance" in values:
            if values["attendance"] is None:
                raise BadRequestError("attendance cannot be cleared.")
            values["attendance"] = AttendanceStatus(values["attendance"]).value
        if "payment" in values:
            if values["payment"] is None:
                raise BadRequestError("payment cannot be cleared.")
            values["payment"] = PaymentStatus(values["payment"]).value

        scope = OrgScope(principal.organization_id)
        with atomic(db):
            row = scope.require_participation(db, participation_id)
            for key, value in values.items():
                setattr(row, key, value)
            row.updated_at = _now()
            self.audit.write(
                db,
                organization_id=principal.organization_id,
                action=AuditAction.PARTICIPATION_UPDATED,
                actor_user_id=principal.user_id,
                session_id=row.session_id,
                participation_id=row.id,
                details={"fields": sorted(values)},
            )
        return row

    # ─────────────────────────────────────────────
    # READS
    # ─────────────────────────────────────────────

    def waitlist_position(self, db: Session, row: Participation) -> Optional[int]:
        """1-based FIFO position by (joined_at, id); None unless waitlisted."""
        if row.status != ParticipationStatus.waitlisted.value:
            return None
        ahead = db.execute(
            select(func.count(Participation.id)).where(
                Participation.session_id == row.session_id,
                Participation.status == ParticipationStatus.waitlisted.value,
                or_(
                    Participation.joined_at < row.joined_at,
                    and_(Participation.joined_at == row.joined_at, Participation.id < row.id),
                ),
            )
        ).scalar_one()
        return int(ahead) + 1

    def get_my_participation(
        self,
        db: Session,
        principal: Principal,
        *,
        session_id: uuid.UUID,
    ) -> Tuple[Optional[Participation], Optional[int]]:
        session = OrgScope(principal.organization_id).require_session(db, session_id)
        row = self._get_active(db, session.id, principal.user_id)
        if row is None:
            return None, None
        return row, self.waitlist_position(db, row)

    def roster(
        self,
        db: Session,
        principal: Principal,
        *,
        session_id: uuid.UUID,
        status: Optional[ParticipationStatus] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        """
        Session roster in FIFO order. Non-admin viewers get other
        participants' contact fields masked.
        """
        is_admin = can_administer(principal)
        session = OrgScope(principal.organization_id).require_session(db, session_id)
        if session.status == SessionStatus.draft.value and not is_admin:
            raise NotFoundError("Session not found.")

        q = (
            select(Participation, User)
            .join(User, Participation.user_id == User.id)
            .where(Participation.session_id == session.id)
        )
        if status is not None:
            q = q.where(Participation.status == status.value)
        q = q.order_by(Participation.joined_at.asc(), Participation.id.asc()).limit(limit).offset(offset)

        return [
            {
                "participation": p,
                "user": contact_view(u, viewer_id=principal.user_id, unredacted=is_admin),
            }
            for p, u in db.execute(q).all()
        ]

    def _history(
        self,
        db: Session,
        organization_id: uuid.UUID,
        user_id: uuid.UUID,
        *,
        limit: int,
        offset: int,
    ) -> List[Tuple[Participation, EventSession]]:
        rows = db.execute(
            select(Participation, EventSession)
            .join(EventSession, Participation.session_id == EventSession.id)
            .where(
                Participation.user_id == user_id,
                EventSession.organization_id == organization_id,
                EventSession.deleted_at.is_(None),
            )
            .order_by(desc(Participation.joined_at), Participation.id.asc())
            .limit(limit)
            .offset(offset)
        ).all()
        return [(p, s) for p, s in rows]

    def my_history(
        self,
        db: Session,
        principal: Principal,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Tuple[Participation, EventSession]]:
        return self._history(db, principal.organization_id, principal.user_id, limit=limit, offset=offset)

    def user_history(
        self,
        db: Session,
        principal: Principal,
        *,
        user_id: uuid.UUID,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Tuple[Participation, EventSession]]:
        require_admin(principal)
        return self._history(db, principal.organization_id, user_id, limit=limit, offset=offset)
