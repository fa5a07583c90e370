# Importing the package registers every table on Base.metadata.
from app.models.user import User
from app.models.organization import Organization, OrganizationMember
from app.models.activity import Activity, ActivityMember
from app.models.event_session import EventSession
from app.models.participation import Participation
from app.models.audit_log import AuditLog

__all__ = [
    "User",
    "Organization",
    "OrganizationMember",
    "Activity",
    "ActivityMember",
    "EventSession",
    "Participation",
    "AuditLog",
]
