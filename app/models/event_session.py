#app/models/event_session.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    String,
    Text,
    DateTime,
    Integer,
    ForeignKey,
    CheckConstraint,
    Index,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.types import JSONType
from app.models.enums import SessionJoinMode, SessionStatus


class EventSession(Base):
    """
    A schedulable occurrence (meetup, match, class) under an activity.

    Occupancy is never stored here; joined/waitlisted counts are always
    derived from live participation rows while this row is locked.
    """
    __tablename__ = "event_sessions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(), primary_key=True, default=uuid.uuid4)

    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    activity_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(), ForeignKey("activities.id", ondelete="CASCADE"), nullable=False
    )

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    date_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    max_capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    max_waitlist: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))

    join_mode: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        server_default=text(f"'{SessionJoinMode.open.value}'"),
    )
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        server_default=text(f"'{SessionStatus.draft.value}'"),
    )

    join_form_schema: Mapped[Optional[List[Dict[str, Any]]]] = mapped_column(JSONType, nullable=True)

    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    __table_args__ = (
        CheckConstraint("max_capacity >= 1", name="ck_event_sessions_capacity_positive"),
        CheckConstraint("max_waitlist >= 0", name="ck_event_sessions_waitlist_nonnegative"),
        Index("ix_event_sessions_org", "organization_id"),
        Index("ix_event_sessions_org_status", "organization_id", "status"),
        Index("ix_event_sessions_activity", "activity_id"),
        Index("ix_event_sessions_date", "date_time"),
    )
