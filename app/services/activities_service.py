# app/services/activities_service.py
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.errors import BadRequestError, NotFoundError
from app.db.transaction import atomic
from app.models.activity import Activity, ActivityMember
from app.models.enums import ActivityJoinMode, ActivityMembershipStatus
from app.policies.org_gate import OrganizationGate
from app.policies.rbac import Principal, require_admin
from app.services.audit_service import AuditAction, AuditService
from app.services.org_scope import OrgScope

logger = logging.getLogger(__name__)


def _now():
    return datetime.now(timezone.utc)


class ActivityService:
    def __init__(
        self,
        audit: Optional[AuditService] = None,
        org_gate: Optional[OrganizationGate] = None,
    ):
        self.audit = audit or AuditService()
        self.org_gate = org_gate or OrganizationGate()

    # ---------------------------
    # READS
    # ---------------------------

    def get_membership(
        self,
        db: Session,
        activity_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> Optional[ActivityMember]:
        return db.execute(
            select(ActivityMember).where(
                ActivityMember.activity_id == activity_id,
                ActivityMember.user_id == user_id,
            )
        ).scalar_one_or_none()

    def has_active_membership(self, db: Session, activity_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        row = self.get_membership(db, activity_id, user_id)
        return bool(row and row.status == ActivityMembershipStatus.active.value)

    def list_my_memberships(self, db: Session, principal: Principal) -> List[Tuple[ActivityMember, Activity]]:
        rows = db.execute(
            select(ActivityMember, Activity)
            .join(Activity, ActivityMember.activity_id == Activity.id)
            .where(
                ActivityMember.user_id == principal.user_id,
                Activity.organization_id == principal.organization_id,
            )
            .order_by(ActivityMember.created_at.desc())
        ).all()
        return [(m, a) for m, a in rows]

    # ---------------------------
    # MUTATIONS (no commit; callers own the transaction)
    # ---------------------------

    def ensure_active_membership(
        self,
        db: Session,
        activity: Activity,
        user_id: uuid.UUID,
    ) -> ActivityMember:
        """
        Create an active membership, or reactivate a pending/rejected one.
        Used by open-mode joins, including the implicit join done when a user
        joins a session of an open activity.
        """
        row = self.get_membership(db, activity.id, user_id)
        if row is None:
            row = ActivityMember(
                activity_id=activity.id,
                user_id=user_id,
                status=ActivityMembershipStatus.active.value,
            )
            db.add(row)
        elif row.status != ActivityMembershipStatus.active.value:
            row.status = ActivityMembershipStatus.active.value
            row.updated_at = _now()
        else:
            return row

        self.audit.write(
            db,
            organization_id=activity.organization_id,
            action=AuditAction.ACTIVITY_MEMBERSHIP_CHANGED,
            actor_user_id=user_id,
            details={"activity_id": str(activity.id), "user_id": str(user_id), "status": "active"},
        )
        db.flush()
        return row

    # ---------------------------
    # OPERATIONS
    # ---------------------------

    def create_activity(
        self,
        db: Session,
        principal: Principal,
        *,
        name: str,
        join_mode: ActivityJoinMode = ActivityJoinMode.open,
        join_form_schema: Optional[List[Dict[str, Any]]] = None,
    ) -> Activity:
        require_admin(principal)

        with atomic(db):
            act = Activity(
                organization_id=principal.organization_id,
                name=name,
                join_mode=join_mode.value,
                join_form_schema=join_form_schema,
            )
            db.add(act)
            db.flush()
            self.audit.write(
                db,
                organization_id=principal.organization_id,
                action=AuditAction.ACTIVITY_CREATED,
                actor_user_id=principal.user_id,
                details={"activity_id": str(act.id), "join_mode": join_mode.value},
            )
        return act

    def join(
        self,
        db: Session,
        principal: Principal,
        *,
        activity_id: uuid.UUID,
        invite_token: Optional[str] = None,
    ) -> ActivityMember:
        """
        Self-service join.
        - open → active membership (created or reactivated)
        - require_approval → pending membership awaiting an admin
        - invite → refused; admins add members directly

        Callers outside the organization pass the same organization gate as
        a session join.
        """
        act = OrgScope(principal.organization_id).require_activity(db, activity_id)

        if not act.is_active:
            raise BadRequestError("This activity is deactivated and cannot accept new members.")

        with atomic(db):
            self.org_gate.check(db, principal, invite_token=invite_token)
            if act.join_mode == ActivityJoinMode.open.value:
                row = self.ensure_active_membership(db, act, principal.user_id)
            elif act.join_mode == ActivityJoinMode.require_approval.value:
                row = self.get_membership(db, act.id, principal.user_id)
                if row is None:
                    row = ActivityMember(
                        activity_id=act.id,
                        user_id=principal.user_id,
                        status=ActivityMembershipStatus.pending.value,
                    )
                    db.add(row)
                elif row.status == ActivityMembershipStatus.rejected.value:
                    row.status = ActivityMembershipStatus.pending.value
                    row.updated_at = _now()
                db.flush()
            else:
                raise BadRequestError("This activity is invite only.")

        logger.info(
            "activity join",
            extra={"activity_id": str(act.id), "user_id": str(principal.user_id), "status": row.status},
        )
        return row

    def review(
        self,
        db: Session,
        principal: Principal,
        *,
        activity_id: uuid.UUID,
        user_id: uuid.UUID,
        approve: bool,
    ) -> ActivityMember:
        """Admin decision on a pending membership request."""
        require_admin(principal)
        act = OrgScope(principal.organization_id).require_activity(db, activity_id)

        with atomic(db):
            row = self.get_membership(db, act.id, user_id)
            if row is None:
                raise NotFoundError("Activity membership not found.")
            if row.status != ActivityMembershipStatus.pending.value:
                raise BadRequestError(f"Membership is '{row.status}', not pending.")

            row.status = (
                ActivityMembershipStatus.active.value if approve else ActivityMembershipStatus.rejected.value
            )
            row.updated_at = _now()
            self.audit.write(
                db,
                organization_id=act.organization_id,
                action=AuditAction.ACTIVITY_MEMBERSHIP_CHANGED,
                actor_user_id=principal.user_id,
                details={"activity_id": str(act.id), "user_id": str(user_id), "status": row.status},
            )
        return row
