#app/models/enums.py
from __future__ import annotations
from enum import Enum


class MemberRole(str, Enum):
    owner = "owner"
    admin = "admin"
    member = "member"


class OrganizationJoinMode(str, Enum):
    open = "open"
    invite = "invite"
    approval = "approval"


class ActivityJoinMode(str, Enum):
    open = "open"
    require_approval = "require_approval"
    invite = "invite"


class ActivityMembershipStatus(str, Enum):
    pending = "pending"
    active = "active"
    rejected = "rejected"


class SessionJoinMode(str, Enum):
    open = "open"
    approval_required = "approval_required"
    invite_only = "invite_only"


class SessionStatus(str, Enum):
    draft = "draft"
    published = "published"
    completed = "completed"
    cancelled = "cancelled"


class ParticipationStatus(str, Enum):
    pending = "pending"
    waitlisted = "waitlisted"
    joined = "joined"
    cancelled = "cancelled"


class AttendanceStatus(str, Enum):
    pending = "pending"
    show = "show"
    no_show = "no_show"


class PaymentStatus(str, Enum):
    unpaid = "unpaid"
    paid = "paid"
