#app/models/audit_log.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import String, DateTime, Index, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.types import JSONType


class AuditLog(Base):
    """
    Append-only trail of engine mutations. Rows are written inside the same
    transaction as the change they describe, so a rollback removes both.
    """
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(), primary_key=True, default=uuid.uuid4)

    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid(), nullable=False)
    session_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(), nullable=True)
    participation_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(), nullable=True)

    actor_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(), nullable=True)
    action: Mapped[str] = mapped_column(String(96), nullable=False)

    request_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    details_json: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_audit_org_session", "organization_id", "session_id"),
        Index("ix_audit_action", "action"),
        Index("ix_audit_created_at", "created_at"),
    )
