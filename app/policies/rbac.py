#app/policies/rbac.py
from __future__ import annotations
import uuid
from dataclasses import dataclass
from typing import Optional, Set

from app.core.errors import ForbiddenError
from app.models.enums import MemberRole


@dataclass(frozen=True)
class Principal:
    """
    Caller identity as supplied by the identity provider.
    role is None when the user is not a member of the active organization.
    """
    user_id: uuid.UUID
    organization_id: uuid.UUID
    role: Optional[MemberRole]

    @property
    def is_org_member(self) -> bool:
        return self.role is not None


ADMIN_ROLES: Set[MemberRole] = {MemberRole.owner, MemberRole.admin}


def can_administer(principal: Principal) -> bool:
    """
    Single capability check: owners and admins administer the organization.
    """
    return principal.role in ADMIN_ROLES


def require_admin(principal: Principal) -> None:
    if not can_administer(principal):
        raise ForbiddenError("Only organization admins can perform this action.")

