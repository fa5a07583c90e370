import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.logging import configure_logging
from app.core.security import create_access_token
from app.db.session import SessionLocal
from app.models.activity import Activity, ActivityMember
from app.models.enums import (
    ActivityJoinMode,
    ActivityMembershipStatus,
    MemberRole,
    OrganizationJoinMode,
    SessionJoinMode,
    SessionStatus,
)
from app.models.event_session import EventSession
from app.models.organization import Organization, OrganizationMember
from app.models.user import User

logger = logging.getLogger(__name__)

DEMO_USERS = [
    ("Olivia Owner", "owner@demo.local", "+15550000001", MemberRole.owner),
    ("Adam Admin", "admin@demo.local", "+15550000002", MemberRole.admin),
    ("Mia Member", "mia@demo.local", "+15550000003", MemberRole.member),
    ("Max Member", "max@demo.local", "+15550000004", MemberRole.member),
    ("Mo Member", "mo@demo.local", "+15550000005", MemberRole.member),
]


def seed():
    db: Session = SessionLocal()

    org = Organization(name="Demo Club", default_join_mode=OrganizationJoinMode.open.value)
    db.add(org)
    db.commit()

    activity = Activity(
        organization_id=org.id,
        name="Thursday Football",
        join_mode=ActivityJoinMode.open.value,
    )
    db.add(activity)
    db.commit()

    users = []
    for name, email, phone, role in DEMO_USERS:
        user = User(name=name, email=email, phone_number=phone)
        db.add(user)
        db.commit()
        db.add(OrganizationMember(organization_id=org.id, user_id=user.id, role=role.value))
        db.add(
            ActivityMember(
                activity_id=activity.id,
                user_id=user.id,
                status=ActivityMembershipStatus.active.value,
            )
        )
        users.append((user, role))
    db.commit()

    owner = users[0][0]
    session = EventSession(
        organization_id=org.id,
        activity_id=activity.id,
        title="5-a-side, week 1",
        location="Riverside pitch",
        date_time=datetime.now(timezone.utc) + timedelta(days=7),
        max_capacity=2,
        max_waitlist=1,
        join_mode=SessionJoinMode.open.value,
        status=SessionStatus.published.value,
        created_by=owner.id,
    )
    db.add(session)
    db.commit()

    logger.info(
        "seeded demo data",
        extra={"organization_id": str(org.id), "activity_id": str(activity.id), "session_id": str(session.id)},
    )
    for user, role in users:
        token = create_access_token(
            str(user.id),
            {"organization_id": str(org.id), "role": role.value},
        )
        print(f"{user.email} ({role.value}): {token}")

    db.close()


if __name__ == "__main__":
    configure_logging(get_settings())
    seed()
