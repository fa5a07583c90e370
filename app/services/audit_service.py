from __future__ import annotations

import uuid
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.core.logging import request_id_var
from app.models.audit_log import AuditLog


class AuditAction:
    # Session lifecycle
    SESSION_CREATED = "SESSION_CREATED"
    SESSION_UPDATED = "SESSION_UPDATED"
    SESSION_STATUS_CHANGED = "SESSION_STATUS_CHANGED"
    SESSION_DELETED = "SESSION_DELETED"

    # Participation lifecycle
    PARTICIPATION_JOINED = "PARTICIPATION_JOINED"
    PARTICIPATION_CANCELLED = "PARTICIPATION_CANCELLED"
    PARTICIPATION_PROMOTED = "PARTICIPATION_PROMOTED"
    PARTICIPATION_APPROVED = "PARTICIPATION_APPROVED"
    PARTICIPATION_REJECTED = "PARTICIPATION_REJECTED"
    PARTICIPATION_ADMIN_ADDED = "PARTICIPATION_ADMIN_ADDED"
    PARTICIPATION_MOVED = "PARTICIPATION_MOVED"
    PARTICIPATION_UPDATED = "PARTICIPATION_UPDATED"
    ATTENDANCE_BULK_UPDATED = "ATTENDANCE_BULK_UPDATED"
    PAYMENT_BULK_UPDATED = "PAYMENT_BULK_UPDATED"

    # Activity membership
    ACTIVITY_CREATED = "ACTIVITY_CREATED"
    ACTIVITY_MEMBERSHIP_CHANGED = "ACTIVITY_MEMBERSHIP_CHANGED"


class AuditService:
    def write(
        self,
        db: Session,
        *,
        organization_id: uuid.UUID,
        action: str,
        actor_user_id: Optional[uuid.UUID],
        session_id: Optional[uuid.UUID] = None,
        participation_id: Optional[uuid.UUID] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        """
        Stage an audit row in the caller's transaction. The caller commits,
        so the row lands together with the change it describes or not at all.
        """
        row = AuditLog(
            organization_id=organization_id,
            session_id=session_id,
            participation_id=participation_id,
            actor_user_id=actor_user_id,
            action=action,
            request_id=request_id_var.get(),
            details_json=details or {},
        )
        db.add(row)
        return row
