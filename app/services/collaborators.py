# app/services/collaborators.py
from __future__ import annotations

import uuid
from abc import ABC, abstractmethod

from sqlalchemy.orm import Session


class InviteRedeemer(ABC):
    """
    Invite-link collaborator. A successful redemption counts as passing the
    organization gate for an invite-only organization.
    """

    @abstractmethod
    def redeem(
        self,
        db: Session,
        *,
        organization_id: uuid.UUID,
        user_id: uuid.UUID,
        token: str,
    ) -> bool:
        """
        Validate and consume the token inside the caller's transaction.
        Returns False for unknown, expired or exhausted tokens.
        """


class NoInviteRedeemer(InviteRedeemer):
    """
    Used until an invite-link issuer is wired in: every token is refused,
    so invite-only organizations admit existing members only.
    """

    def redeem(self, db: Session, *, organization_id: uuid.UUID, user_id: uuid.UUID, token: str) -> bool:
        return False
