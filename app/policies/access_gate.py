#app/policies/access_gate.py
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.orm import Session

from app.core.errors import BadRequestError, ForbiddenError, NotFoundError
from app.models.activity import Activity
from app.models.enums import (
    ActivityJoinMode,
    ActivityMembershipStatus,
    SessionJoinMode,
)
from app.models.event_session import EventSession
from app.policies.org_gate import OrganizationGate
from app.policies.rbac import Principal, can_administer
from app.services.activities_service import ActivityService
from app.services.collaborators import InviteRedeemer

logger = logging.getLogger(__name__)


class AccessGate:
    """
    Decides whether a caller may attempt to join a session, cascading
    organization → activity → session rules, and returns the admission mode
    handed to the AdmissionEngine.

    The only write it may perform is the implicit active membership for an
    open activity, staged in the caller's transaction.
    """

    def __init__(
        self,
        invite_redeemer: Optional[InviteRedeemer] = None,
        activities: Optional[ActivityService] = None,
    ):
        self.org_gate = OrganizationGate(invite_redeemer)
        self.activities = activities or ActivityService(org_gate=self.org_gate)

    # ─────────────────────────────────────────────
    # ORGANIZATION
    # ─────────────────────────────────────────────

    def check_organization(
        self,
        db: Session,
        principal: Principal,
        *,
        invite_token: Optional[str] = None,
    ) -> None:
        self.org_gate.check(db, principal, invite_token=invite_token)

    # ─────────────────────────────────────────────
    # ACTIVITY
    # ─────────────────────────────────────────────

    def check_activity(self, db: Session, principal: Principal, activity: Activity) -> None:
        # admins bypass every membership prerequisite
        if can_administer(principal):
            return

        membership = self.activities.get_membership(db, activity.id, principal.user_id)
        if membership and membership.status == ActivityMembershipStatus.active.value:
            return

        if not activity.is_active:
            raise BadRequestError("This activity is deactivated and cannot accept new members.")

        if activity.join_mode == ActivityJoinMode.open.value:
            self.activities.ensure_active_membership(db, activity, principal.user_id)
            return

        if activity.join_mode == ActivityJoinMode.require_approval.value:
            raise BadRequestError("Join the activity first.")

        raise ForbiddenError("This activity is invite only.")

    # ─────────────────────────────────────────────
    # SESSION
    # ─────────────────────────────────────────────

    def resolve_session_mode(self, session: EventSession, *, placement: bool = False) -> SessionJoinMode:
        """
        placement=True is an admin placing someone (move); invite-only
        sessions are reachable that way and admit on capacity.
        """
        mode = SessionJoinMode(session.join_mode)
        if mode == SessionJoinMode.invite_only:
            if placement:
                return SessionJoinMode.open
            raise ForbiddenError("This session is invite only.")
        return mode

    # ─────────────────────────────────────────────
    # CASCADE
    # ─────────────────────────────────────────────

    def evaluate(
        self,
        db: Session,
        principal: Principal,
        session: EventSession,
        *,
        invite_token: Optional[str] = None,
    ) -> SessionJoinMode:
        """Self-service join: all three gates, in order."""
        self.check_organization(db, principal, invite_token=invite_token)

        activity = db.get(Activity, session.activity_id)
        if activity is None or activity.organization_id != session.organization_id:
            raise NotFoundError("Activity not found.")
        self.check_activity(db, principal, activity)

        mode = self.resolve_session_mode(session)
        logger.info(
            "access granted",
            extra={"session_id": str(session.id), "user_id": str(principal.user_id), "mode": mode.value},
        )
        return mode

    def evaluate_placement(self, principal: Principal, session: EventSession) -> SessionJoinMode:
        """Admin placing another user: membership gates are bypassed."""
        if not can_administer(principal):
            raise ForbiddenError("Only organization admins can place participants.")
        return self.resolve_session_mode(session, placement=True)
