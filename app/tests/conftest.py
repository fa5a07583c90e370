import os

# settings are read at import time; tests never need a real server database
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")

import itertools
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# FORCE model registration
import app.models  # noqa

from app.core.security import create_access_token
from app.db.base import Base
from app.db.session import install_sqlite_immediate_begin
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
from app.policies.rbac import Principal


def make_session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture(scope="function")
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    install_sqlite_immediate_begin(eng)
    Base.metadata.create_all(eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture(scope="function")
def db(engine):
    session = make_session_factory(engine)()
    try:
        yield session
    finally:
        session.close()


class Factory:
    """Builds tenants, users and sessions directly in the database."""

    _seq = itertools.count(1)

    def __init__(self, db):
        self.db = db

    def _n(self) -> int:
        return next(self._seq)

    def org(self, join_mode: OrganizationJoinMode = OrganizationJoinMode.open) -> Organization:
        org = Organization(name=f"Org {self._n()}", default_join_mode=join_mode.value)
        self.db.add(org)
        self.db.commit()
        return org

    def user(self, name=None, email=None, phone=None) -> User:
        n = self._n()
        user = User(
            name=name or f"User {n}",
            email=email or f"user{n}@example.com",
            phone_number=phone if phone is not None else f"+1555{n:07d}",
        )
        self.db.add(user)
        self.db.commit()
        return user

    def member(self, org: Organization, role: MemberRole = MemberRole.member, user: User = None) -> Principal:
        user = user or self.user()
        self.db.add(OrganizationMember(organization_id=org.id, user_id=user.id, role=role.value))
        self.db.commit()
        return Principal(user_id=user.id, organization_id=org.id, role=role)

    def admin(self, org: Organization) -> Principal:
        return self.member(org, role=MemberRole.admin)

    def outsider(self, org: Organization) -> Principal:
        """A known user acting in org without holding a membership there."""
        user = self.user()
        return Principal(user_id=user.id, organization_id=org.id, role=None)

    def activity(
        self,
        org: Organization,
        join_mode: ActivityJoinMode = ActivityJoinMode.open,
        is_active: bool = True,
    ) -> Activity:
        act = Activity(
            organization_id=org.id,
            name=f"Activity {self._n()}",
            join_mode=join_mode.value,
            is_active=is_active,
        )
        self.db.add(act)
        self.db.commit()
        return act

    def activity_membership(
        self,
        activity: Activity,
        principal: Principal,
        status: ActivityMembershipStatus = ActivityMembershipStatus.active,
    ) -> ActivityMember:
        row = ActivityMember(activity_id=activity.id, user_id=principal.user_id, status=status.value)
        self.db.add(row)
        self.db.commit()
        return row

    def session(
        self,
        activity: Activity,
        *,
        status: SessionStatus = SessionStatus.published,
        join_mode: SessionJoinMode = SessionJoinMode.open,
        max_capacity: int = 2,
        max_waitlist: int = 1,
        date_time: datetime = None,
        join_form_schema=None,
    ) -> EventSession:
        n = self._n()
        # distinct slots so sessions never double-book each other by accident
        when = date_time or datetime.now(timezone.utc).replace(microsecond=0) + timedelta(days=7, hours=n)
        s = EventSession(
            organization_id=activity.organization_id,
            activity_id=activity.id,
            title=f"Session {n}",
            date_time=when,
            max_capacity=max_capacity,
            max_waitlist=max_waitlist,
            join_mode=join_mode.value,
            status=status.value,
            join_form_schema=join_form_schema,
        )
        self.db.add(s)
        self.db.commit()
        return s


@pytest.fixture
def factory(db):
    return Factory(db)


def auth_headers(principal: Principal) -> dict:
    claims = {"organization_id": str(principal.organization_id)}
    if principal.role is not None:
        claims["role"] = principal.role.value
    token = create_access_token(str(principal.user_id), claims)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(db):
    from fastapi.testclient import TestClient

    from app.db.session import get_db
    from app.main import app

    def _get_db():
        try:
            yield db
        finally:
            db.rollback()

    app.dependency_overrides[get_db] = _get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def headers():
    return auth_headers


@pytest.fixture
def file_engine(tmp_path):
    """A real file database so separate connections contend for the write lock."""
    from app.db.session import build_engine

    eng = build_engine(f"sqlite:///{tmp_path / 'engine.db'}")
    Base.metadata.create_all(eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture
def make_factory():
    return Factory
