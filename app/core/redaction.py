from __future__ import annotations
import uuid
from typing import Any, Dict, Optional

from app.models.user import User


def mask_email(email: Optional[str]) -> Optional[str]:
    if not email:
        return None
    local, _, domain = email.partition("@")
    return local[:1] + "***@" + domain if domain else "***"


def mask_phone(phone: Optional[str]) -> Optional[str]:
    if not phone:
        return None
    return "*" * max(len(phone) - 4, 0) + phone[-4:]


def contact_view(user: User, *, viewer_id: uuid.UUID, unredacted: bool) -> Dict[str, Any]:
    """
    Public card of a participant. Other people's email/phone are masked
    unless the viewer administers the organization; your own are not.
    """
    show = unredacted or user.id == viewer_id
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email if show else mask_email(user.email),
        "phone_number": user.phone_number if show else mask_phone(user.phone_number),
    }
