#app/models/participation.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import String, Text, DateTime, ForeignKey, Index, Uuid, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.types import JSONType
from app.models.enums import AttendanceStatus, ParticipationStatus, PaymentStatus


class Participation(Base):
    """
    One user's seat request for one session. Never deleted: cancellation is
    a status change so attendance/payment history survives.
    """
    __tablename__ = "participations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(), primary_key=True, default=uuid.uuid4)

    session_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(), ForeignKey("event_sessions.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        server_default=text(f"'{ParticipationStatus.joined.value}'"),
        doc="pending | waitlisted | joined | cancelled",
    )
    attendance: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        server_default=text(f"'{AttendanceStatus.pending.value}'"),
        doc="pending | show | no_show",
    )
    payment: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        server_default=text(f"'{PaymentStatus.unpaid.value}'"),
        doc="unpaid | paid",
    )

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    form_answers: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)
    attribute_overrides: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)

    # FIFO key for waitlist promotion
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    user = relationship("User")

    __table_args__ = (
        Index("ix_participations_session", "session_id"),
        Index("ix_participations_user", "user_id"),
        Index("ix_participations_session_status_joined", "session_id", "status", "joined_at"),
        # at most one non-cancelled participation per (session, user)
        Index(
            "uq_participations_active",
            "session_id",
            "user_id",
            unique=True,
            postgresql_where=text("status <> 'cancelled'"),
            sqlite_where=text("status <> 'cancelled'"),
        ),
    )
