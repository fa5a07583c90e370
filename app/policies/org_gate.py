#app/policies/org_gate.py
from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from app.core.errors import ForbiddenError, NotFoundError
from app.models.enums import OrganizationJoinMode
from app.models.organization import Organization
from app.policies.rbac import Principal
from app.services.collaborators import InviteRedeemer, NoInviteRedeemer


class OrganizationGate:
    """
    Organization-level eligibility shared by session joins and activity joins.
    Members always pass; everyone else is judged by the organization's
    default join mode.
    """

    def __init__(self, invite_redeemer: Optional[InviteRedeemer] = None):
        self.invite_redeemer = invite_redeemer or NoInviteRedeemer()

    def check(
        self,
        db: Session,
        principal: Principal,
        *,
        invite_token: Optional[str] = None,
    ) -> None:
        if principal.is_org_member:
            return

        org = db.get(Organization, principal.organization_id)
        if org is None:
            raise NotFoundError("Organization not found.")

        mode = org.default_join_mode
        if mode == OrganizationJoinMode.open.value:
            return

        if mode == OrganizationJoinMode.approval.value:
            raise ForbiddenError("Joining this organization requires an approved join request.")

        if invite_token and self.invite_redeemer.redeem(
            db,
            organization_id=org.id,
            user_id=principal.user_id,
            token=invite_token,
        ):
            return
        raise ForbiddenError("This organization is invite only.")
