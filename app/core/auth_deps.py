#app/core/auth_deps.py
from __future__ import annotations

import uuid

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.security import decode_token
from app.models.enums import MemberRole
from app.policies.rbac import Principal, require_admin

bearer = HTTPBearer(auto_error=True)


def get_current_principal(
    request: Request,
    creds: HTTPAuthorizationCredentials = Depends(bearer),
) -> Principal:
    """
    Canonical authentication dependency.

    Guarantees:
    - JWT is valid
    - sub (user id) and organization_id are present UUIDs
    - role, when present, is a valid MemberRole
    - a token without role means the caller is not an organization member
    """

    try:
        payload = decode_token(creds.credentials)
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid or expired token.")

    user_id = payload.get("sub")
    organization_id = payload.get("organization_id")
    role = payload.get("role")

    if not user_id or not organization_id:
        raise HTTPException(status_code=401, detail="Token missing required claims.")

    try:
        user_uuid = uuid.UUID(str(user_id))
        org_uuid = uuid.UUID(str(organization_id))
    except ValueError:
        raise HTTPException(status_code=401, detail="Token claims must be UUIDs.")

    role_enum = None
    if role:
        try:
            role_enum = MemberRole(role)
        except ValueError:
            raise HTTPException(status_code=401, detail="Invalid role in token.")

    principal = Principal(
        user_id=user_uuid,
        organization_id=org_uuid,
        role=role_enum,
    )

    # Make principal available to downstream middleware / handlers
    request.state.principal = principal

    return principal


def get_admin_principal(principal: Principal = Depends(get_current_principal)) -> Principal:
    require_admin(principal)
    return principal
