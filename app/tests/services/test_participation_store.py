import uuid
from datetime import datetime, timedelta, timezone

import pytest

from app.core.errors import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    SessionFullError,
)
from app.models.activity import ActivityMember
from app.models.audit_log import AuditLog
from app.models.enums import (
    ActivityJoinMode,
    AttendanceStatus,
    MemberRole,
    ParticipationStatus,
    PaymentStatus,
    SessionJoinMode,
    SessionStatus,
)
from app.models.participation import Participation
from app.services.audit_service import AuditAction
from app.services.participation_store import ParticipationStore, assert_participation_transition

JOINED = ParticipationStatus.joined.value
WAITLISTED = ParticipationStatus.waitlisted.value
PENDING = ParticipationStatus.pending.value
CANCELLED = ParticipationStatus.cancelled.value


def _statuses(db, session_id):
    rows = db.query(Participation).filter_by(session_id=session_id).all()
    return {r.user_id: r.status for r in rows if r.status != CANCELLED}


def _count(db, session_id, status):
    return db.query(Participation).filter_by(session_id=session_id, status=status).count()


def _set_joined_at(db, rows_in_order):
    """Pin FIFO order explicitly instead of relying on clock resolution."""
    base = datetime(2030, 1, 1, tzinfo=timezone.utc)
    for i, row in enumerate(rows_in_order):
        row.joined_at = base + timedelta(minutes=i)
    db.commit()


# ─────────────────────────────────────────────
# STATE MACHINE
# ─────────────────────────────────────────────

@pytest.mark.parametrize(
    "current,target",
    [
        (ParticipationStatus.cancelled, ParticipationStatus.joined),
        (ParticipationStatus.joined, ParticipationStatus.waitlisted),
        (ParticipationStatus.joined, ParticipationStatus.pending),
        (ParticipationStatus.waitlisted, ParticipationStatus.pending),
    ],
)
def test_illegal_participation_transitions(current, target):
    with pytest.raises(InvalidTransitionError):
        assert_participation_transition(current, target)


# ─────────────────────────────────────────────
# JOIN / CANCEL / PROMOTION
# ─────────────────────────────────────────────

def test_join_cancel_promotes_waitlisted(db, factory):
    org = factory.org()
    s = factory.session(factory.activity(org), max_capacity=2, max_waitlist=1)
    a, b, c = factory.member(org), factory.member(org), factory.member(org)
    store = ParticipationStore()

    pa = store.join(db, a, session_id=s.id)
    pb = store.join(db, b, session_id=s.id)
    pc = store.join(db, c, session_id=s.id)
    assert (pa.status, pb.status, pc.status) == (JOINED, JOINED, WAITLISTED)

    store.cancel(db, a, pa.id)

    assert _statuses(db, s.id) == {b.user_id: JOINED, c.user_id: JOINED}
    db.refresh(pa)
    assert pa.status == CANCELLED
    assert pa.cancelled_at is not None


def test_join_when_session_and_waitlist_full(db, factory):
    org = factory.org()
    s = factory.session(factory.activity(org), max_capacity=1, max_waitlist=0)
    store = ParticipationStore()
    store.join(db, factory.member(org), session_id=s.id)
    late = factory.member(org)

    with pytest.raises(SessionFullError):
        store.join(db, late, session_id=s.id)

    assert db.query(Participation).filter_by(session_id=s.id, user_id=late.user_id).count() == 0
    # the implicit activity membership is rolled back with the join
    assert db.query(ActivityMember).filter_by(user_id=late.user_id).count() == 0


def test_join_is_idempotent(db, factory):
    org = factory.org()
    s = factory.session(factory.activity(org))
    member = factory.member(org)
    store = ParticipationStore()

    first = store.join(db, member, session_id=s.id)
    second = store.join(db, member, session_id=s.id)

    assert first.id == second.id
    assert db.query(Participation).filter_by(session_id=s.id).count() == 1


def test_rejoin_after_cancel_creates_fresh_record(db, factory):
    org = factory.org()
    s = factory.session(factory.activity(org))
    member = factory.member(org)
    store = ParticipationStore()

    first = store.join(db, member, session_id=s.id)
    store.cancel(db, member, first.id)
    again = store.join(db, member, session_id=s.id)

    assert again.id != first.id
    assert again.status == JOINED
    assert db.query(Participation).filter_by(session_id=s.id, user_id=member.user_id).count() == 2


@pytest.mark.parametrize("status", [SessionStatus.draft, SessionStatus.completed, SessionStatus.cancelled])
def test_join_requires_published_session(db, factory, status):
    org = factory.org()
    s = factory.session(factory.activity(org), status=status)

    with pytest.raises(BadRequestError):
        ParticipationStore().join(db, factory.member(org), session_id=s.id)


def test_join_session_of_other_org_is_not_found(db, factory):
    org = factory.org()
    other = factory.org()
    s = factory.session(factory.activity(other))

    with pytest.raises(NotFoundError):
        ParticipationStore().join(db, factory.member(org), session_id=s.id)


def test_invite_activity_blocks_plain_member(db, factory):
    org = factory.org()
    act = factory.activity(org, ActivityJoinMode.invite)
    s = factory.session(act)

    with pytest.raises(ForbiddenError):
        ParticipationStore().join(db, factory.member(org), session_id=s.id)
    assert _count(db, s.id, JOINED) == 0


def test_required_form_answers(db, factory):
    org = factory.org()
    schema = [
        {"id": "shirt", "label": "Shirt size", "required": True, "type": "select", "options": ["S", "M"]},
        {"id": "note", "label": "Note", "required": False},
    ]
    s = factory.session(factory.activity(org), join_form_schema=schema)
    member = factory.member(org)
    store = ParticipationStore()

    with pytest.raises(BadRequestError) as exc:
        store.join(db, member, session_id=s.id, form_answers={"note": "hi", "shirt": "  "})
    assert exc.value.details["missing"] == ["Shirt size"]
    assert db.query(Participation).filter_by(session_id=s.id).count() == 0
    assert db.query(ActivityMember).filter_by(user_id=member.user_id).count() == 0

    row = store.join(db, member, session_id=s.id, form_answers={"shirt": "M", "extra": "dropped"})
    assert row.form_answers == {"shirt": "M"}


def test_double_booking_is_a_conflict(db, factory):
    org = factory.org()
    act = factory.activity(org)
    when = datetime.now(timezone.utc).replace(microsecond=0) + timedelta(days=10)
    s1 = factory.session(act, date_time=when)
    s2 = factory.session(act, date_time=when)
    member = factory.member(org)
    store = ParticipationStore()

    store.join(db, member, session_id=s1.id)
    with pytest.raises(ConflictError):
        store.join(db, member, session_id=s2.id)


def test_cancel_twice_is_not_found_and_promotes_once(db, factory):
    org = factory.org()
    s = factory.session(factory.activity(org), max_capacity=1, max_waitlist=2)
    a, b, c = factory.member(org), factory.member(org), factory.member(org)
    store = ParticipationStore()
    pa = store.join(db, a, session_id=s.id)
    pb = store.join(db, b, session_id=s.id)
    pc = store.join(db, c, session_id=s.id)
    _set_joined_at(db, [pa, pb, pc])

    store.cancel(db, a, pa.id)
    with pytest.raises(NotFoundError):
        store.cancel(db, a, pa.id)

    db.refresh(pb)
    db.refresh(pc)
    assert pb.status == JOINED
    assert pc.status == WAITLISTED
    promotions = db.query(AuditLog).filter_by(action=AuditAction.PARTICIPATION_PROMOTED).count()
    assert promotions == 1


def test_fifo_promotion_uses_earliest_joined_at(db, factory):
    org = factory.org()
    s = factory.session(factory.activity(org), max_capacity=1, max_waitlist=3)
    members = [factory.member(org) for _ in range(4)]
    store = ParticipationStore()
    rows = [store.join(db, m, session_id=s.id) for m in members]
    holder, w1, w2, w3 = rows
    # waitlist order deliberately differs from insertion order
    _set_joined_at(db, [holder, w3, w1, w2])

    store.cancel(db, members[0], holder.id)

    db.refresh(w3)
    assert w3.status == JOINED
    assert _count(db, s.id, WAITLISTED) == 2


def test_cannot_cancel_someone_elses_participation(db, factory):
    org = factory.org()
    s = factory.session(factory.activity(org))
    owner_of_row = factory.member(org)
    row = ParticipationStore().join(db, owner_of_row, session_id=s.id)

    with pytest.raises(NotFoundError):
        ParticipationStore().cancel(db, factory.member(org), row.id)


def test_cancel_in_completed_session_is_refused(db, factory):
    org = factory.org()
    s = factory.session(factory.activity(org))
    member = factory.member(org)
    row = ParticipationStore().join(db, member, session_id=s.id)
    s.status = SessionStatus.completed.value
    db.commit()

    with pytest.raises(BadRequestError):
        ParticipationStore().cancel(db, member, row.id)


def test_move_out_of_completed_session_is_refused(db, factory):
    org = factory.org()
    act = factory.activity(org)
    source = factory.session(act)
    target = factory.session(act)
    store = ParticipationStore()
    row = store.join(db, factory.member(org), session_id=source.id)
    source.status = SessionStatus.completed.value
    db.commit()

    with pytest.raises(BadRequestError):
        store.move(db, factory.admin(org), row.id, target_session_id=target.id)

    db.refresh(row)
    assert row.status == JOINED
    assert db.query(Participation).filter_by(session_id=target.id).count() == 0


def test_waitlisted_cancel_frees_no_seat(db, factory):
    org = factory.org()
    s = factory.session(factory.activity(org), max_capacity=1, max_waitlist=2)
    store = ParticipationStore()
    store.join(db, factory.member(org), session_id=s.id)
    w = factory.member(org)
    pw = store.join(db, w, session_id=s.id)
    other = store.join(db, factory.member(org), session_id=s.id)

    store.cancel(db, w, pw.id)

    db.refresh(other)
    assert other.status == WAITLISTED
    assert _count(db, s.id, JOINED) == 1


# ─────────────────────────────────────────────
# APPROVAL / REJECTION
# ─────────────────────────────────────────────

def test_approval_on_full_session_lands_on_waitlist(db, factory):
    org = factory.org()
    s = factory.session(
        factory.activity(org),
        join_mode=SessionJoinMode.approval_required,
        max_capacity=1,
        max_waitlist=1,
    )
    admin = factory.admin(org)
    store = ParticipationStore()
    pa = store.join(db, factory.member(org), session_id=s.id)
    pb = store.join(db, factory.member(org), session_id=s.id)
    assert pa.status == pb.status == PENDING

    assert store.approve_pending(db, admin, pa.id).status == JOINED
    assert store.approve_pending(db, admin, pb.id).status == WAITLISTED


def test_approve_requires_admin_and_pending(db, factory):
    org = factory.org()
    s = factory.session(factory.activity(org))
    member = factory.member(org)
    row = ParticipationStore().join(db, member, session_id=s.id)

    with pytest.raises(ForbiddenError):
        ParticipationStore().approve_pending(db, member, row.id)
    with pytest.raises(BadRequestError):
        ParticipationStore().approve_pending(db, factory.admin(org), row.id)


def test_approve_when_full_without_waitlist_keeps_pending(db, factory):
    org = factory.org()
    s = factory.session(
        factory.activity(org),
        join_mode=SessionJoinMode.approval_required,
        max_capacity=1,
        max_waitlist=0,
    )
    admin = factory.admin(org)
    store = ParticipationStore()
    pa = store.join(db, factory.member(org), session_id=s.id)
    pb = store.join(db, factory.member(org), session_id=s.id)
    store.approve_pending(db, admin, pa.id)

    with pytest.raises(SessionFullError):
        store.approve_pending(db, admin, pb.id)
    db.refresh(pb)
    assert pb.status == PENDING


def test_reject_pending(db, factory):
    org = factory.org()
    s = factory.session(factory.activity(org), join_mode=SessionJoinMode.approval_required)
    store = ParticipationStore()
    row = store.join(db, factory.member(org), session_id=s.id)

    rejected = store.reject_pending(db, factory.admin(org), row.id)
    assert rejected.status == CANCELLED


def test_rejecting_joined_participant_promotes(db, factory):
    org = factory.org()
    s = factory.session(factory.activity(org), max_capacity=1, max_waitlist=1)
    store = ParticipationStore()
    joined = store.join(db, factory.member(org), session_id=s.id)
    waiting = store.join(db, factory.member(org), session_id=s.id)

    store.reject_pending(db, factory.admin(org), joined.id)

    db.refresh(waiting)
    assert waiting.status == JOINED


def test_reject_cancelled_is_invalid(db, factory):
    org = factory.org()
    s = factory.session(factory.activity(org))
    member = factory.member(org)
    store = ParticipationStore()
    row = store.join(db, member, session_id=s.id)
    store.cancel(db, member, row.id)

    with pytest.raises(InvalidTransitionError):
        store.reject_pending(db, factory.admin(org), row.id)


# ─────────────────────────────────────────────
# ADMIN ADD
# ─────────────────────────────────────────────

def test_admin_add_overrides_capacity(db, factory):
    org = factory.org()
    s = factory.session(factory.activity(org), max_capacity=1, max_waitlist=0)
    admin = factory.admin(org)
    store = ParticipationStore()
    store.join(db, factory.member(org), session_id=s.id)
    user = factory.user(email="Guest@Example.org")
    factory.member(org, user=user)

    row = store.admin_add(db, admin, session_id=s.id, user_identifier="guest@example.org")

    assert row.status == JOINED
    assert row.user_id == user.id
    assert _count(db, s.id, JOINED) == 2


def test_admin_add_by_phone_and_invite_only(db, factory):
    org = factory.org()
    s = factory.session(factory.activity(org, ActivityJoinMode.invite), join_mode=SessionJoinMode.invite_only)
    user = factory.user(phone="+15559990000")
    factory.member(org, user=user)

    row = ParticipationStore().admin_add(db, factory.admin(org), session_id=s.id, user_identifier="+15559990000")
    assert row.user_id == user.id


def test_admin_add_rules(db, factory):
    org = factory.org()
    other_org = factory.org()
    s = factory.session(factory.activity(org))
    admin = factory.admin(org)
    store = ParticipationStore()
    stranger = factory.user()
    factory.member(other_org, user=stranger)
    member_user = factory.user()
    member = factory.member(org, user=member_user)

    with pytest.raises(NotFoundError):
        store.admin_add(db, admin, session_id=s.id, user_identifier=stranger.email)
    with pytest.raises(ForbiddenError):
        store.admin_add(db, member, session_id=s.id, user_identifier=member_user.email)

    store.admin_add(db, admin, session_id=s.id, user_identifier=member_user.email)
    with pytest.raises(ConflictError):
        store.admin_add(db, admin, session_id=s.id, user_identifier=member_user.email)


def test_admin_add_to_terminal_session_is_refused(db, factory):
    org = factory.org()
    s = factory.session(factory.activity(org), status=SessionStatus.cancelled)
    user = factory.user()
    factory.member(org, user=user)

    with pytest.raises(BadRequestError):
        ParticipationStore().admin_add(db, factory.admin(org), session_id=s.id, user_identifier=user.email)


# ─────────────────────────────────────────────
# MOVE
# ─────────────────────────────────────────────

def test_move_between_sessions_promotes_on_source(db, factory):
    org = factory.org()
    act = factory.activity(org)
    source = factory.session(act, max_capacity=1, max_waitlist=1)
    target = factory.session(act, max_capacity=2, max_waitlist=0)
    admin = factory.admin(org)
    store = ParticipationStore()
    mover = store.join(db, factory.member(org), session_id=source.id)
    waiting = store.join(db, factory.member(org), session_id=source.id)

    result = store.move(db, admin, mover.id, target_session_id=target.id)

    assert result.cancelled.id == mover.id
    assert result.cancelled.status == CANCELLED
    assert result.created.session_id == target.id
    assert result.created.user_id == mover.user_id
    assert result.created.status == JOINED
    assert [p.id for p in result.promoted] == [waiting.id]


def test_move_to_other_org_is_not_found_and_source_untouched(db, factory):
    org = factory.org()
    other = factory.org()
    source = factory.session(factory.activity(org))
    foreign = factory.session(factory.activity(other))
    store = ParticipationStore()
    row = store.join(db, factory.member(org), session_id=source.id)

    with pytest.raises(NotFoundError):
        store.move(db, factory.admin(org), row.id, target_session_id=foreign.id)

    db.refresh(row)
    assert row.status == JOINED
    assert db.query(Participation).filter_by(session_id=foreign.id).count() == 0


def test_move_to_same_session_is_bad_request(db, factory):
    org = factory.org()
    s = factory.session(factory.activity(org))
    row = ParticipationStore().join(db, factory.member(org), session_id=s.id)

    with pytest.raises(BadRequestError):
        ParticipationStore().move(db, factory.admin(org), row.id, target_session_id=s.id)


def test_move_into_full_target_changes_nothing(db, factory):
    org = factory.org()
    act = factory.activity(org)
    source = factory.session(act, max_capacity=1, max_waitlist=1)
    target = factory.session(act, max_capacity=1, max_waitlist=0)
    store = ParticipationStore()
    mover = store.join(db, factory.member(org), session_id=source.id)
    waiting = store.join(db, factory.member(org), session_id=source.id)
    store.join(db, factory.member(org), session_id=target.id)

    with pytest.raises(SessionFullError):
        store.move(db, factory.admin(org), mover.id, target_session_id=target.id)

    db.refresh(mover)
    db.refresh(waiting)
    assert mover.status == JOINED
    assert waiting.status == WAITLISTED


def test_move_when_user_already_in_target(db, factory):
    org = factory.org()
    act = factory.activity(org)
    source = factory.session(act)
    target = factory.session(act)
    member = factory.member(org)
    store = ParticipationStore()
    row = store.join(db, member, session_id=source.id)
    store.join(db, member, session_id=target.id)

    with pytest.raises(BadRequestError):
        store.move(db, factory.admin(org), row.id, target_session_id=target.id)


def test_move_into_approval_session_is_pending(db, factory):
    org = factory.org()
    act = factory.activity(org)
    source = factory.session(act)
    target = factory.session(act, join_mode=SessionJoinMode.approval_required)
    store = ParticipationStore()
    row = store.join(db, factory.member(org), session_id=source.id)

    result = store.move(db, factory.admin(org), row.id, target_session_id=target.id)
    assert result.created.status == PENDING


def test_move_does_not_carry_answers_to_another_form(db, factory):
    org = factory.org()
    act = factory.activity(org)
    source = factory.session(
        act,
        join_form_schema=[{"id": "shirt", "label": "Shirt size", "required": True}],
    )
    target = factory.session(
        act,
        join_form_schema=[{"id": "level", "label": "Level", "required": True}],
    )
    store = ParticipationStore()
    row = store.join(db, factory.member(org), session_id=source.id, form_answers={"shirt": "M"})

    result = store.move(db, factory.admin(org), row.id, target_session_id=target.id)

    assert result.created.form_answers is None
    assert result.created.status == JOINED
    db.refresh(row)
    assert row.form_answers == {"shirt": "M"}


# ─────────────────────────────────────────────
# ATTENDANCE / PAYMENT / BULK
# ─────────────────────────────────────────────

def test_bulk_attendance_updates_all(db, factory):
    org = factory.org()
    s = factory.session(factory.activity(org), max_capacity=3)
    store = ParticipationStore()
    rows = [store.join(db, factory.member(org), session_id=s.id) for _ in range(3)]

    n = store.bulk_update_attendance(
        db,
        factory.admin(org),
        session_id=s.id,
        updates=[(rows[0].id, AttendanceStatus.show), (rows[1].id, AttendanceStatus.no_show)],
    )

    assert n == 2
    for r in rows:
        db.refresh(r)
    assert [r.attendance for r in rows] == ["show", "no_show", "pending"]


def test_bulk_attendance_is_all_or_nothing(db, factory):
    org = factory.org()
    s = factory.session(factory.activity(org))
    other = factory.session(factory.activity(org))
    store = ParticipationStore()
    mine = store.join(db, factory.member(org), session_id=s.id)
    elsewhere = store.join(db, factory.member(org), session_id=other.id)

    with pytest.raises(NotFoundError) as exc:
        store.bulk_update_attendance(
            db,
            factory.admin(org),
            session_id=s.id,
            updates=[(mine.id, AttendanceStatus.show), (elsewhere.id, AttendanceStatus.show)],
        )
    assert exc.value.details["missing"] == [str(elsewhere.id)]

    db.refresh(mine)
    assert mine.attendance == AttendanceStatus.pending.value


def test_bulk_payment_and_limit(db, factory):
    org = factory.org()
    s = factory.session(factory.activity(org))
    admin = factory.admin(org)
    store = ParticipationStore(bulk_update_limit=1)
    a = store.join(db, factory.member(org), session_id=s.id)
    b = store.join(db, factory.member(org), session_id=s.id)

    with pytest.raises(BadRequestError):
        store.bulk_update_payment(
            db,
            admin,
            session_id=s.id,
            updates=[(a.id, PaymentStatus.paid), (b.id, PaymentStatus.paid)],
        )

    assert store.bulk_update_payment(db, admin, session_id=s.id, updates=[(a.id, PaymentStatus.paid)]) == 1
    db.refresh(a)
    assert a.payment == PaymentStatus.paid.value


def test_bulk_updates_require_admin(db, factory):
    org = factory.org()
    s = factory.session(factory.activity(org))
    member = factory.member(org)
    row = ParticipationStore().join(db, member, session_id=s.id)

    with pytest.raises(ForbiddenError):
        ParticipationStore().bulk_update_attendance(
            db, member, session_id=s.id, updates=[(row.id, AttendanceStatus.show)]
        )


def test_bulk_cancel_promotes_one_per_freed_seat(db, factory):
    org = factory.org()
    s = factory.session(factory.activity(org), max_capacity=2, max_waitlist=3)
    store = ParticipationStore()
    rows = [store.join(db, factory.member(org), session_id=s.id) for _ in range(5)]
    j1, j2, w1, w2, w3 = rows
    _set_joined_at(db, rows)

    result = store.bulk_cancel(db, factory.admin(org), session_id=s.id, participation_ids=[j1.id, j2.id])

    assert {p.id for p in result.cancelled} == {j1.id, j2.id}
    assert [p.id for p in result.promoted] == [w1.id, w2.id]
    assert _count(db, s.id, JOINED) == 2
    assert _count(db, s.id, WAITLISTED) == 1


def test_update_participation_fields(db, factory):
    org = factory.org()
    s = factory.session(factory.activity(org))
    store = ParticipationStore()
    row = store.join(db, factory.member(org), session_id=s.id)
    admin = factory.admin(org)

    updated = store.update_participation(
        db,
        admin,
        row.id,
        fields={"attendance": "show", "payment": "paid", "notes": "brought a ball"},
    )
    assert (updated.attendance, updated.payment, updated.notes) == ("show", "paid", "brought a ball")
    assert updated.status == JOINED

    with pytest.raises(BadRequestError):
        store.update_participation(db, admin, row.id, fields={"status": "cancelled"})
    with pytest.raises(NotFoundError):
        store.update_participation(db, admin, uuid.uuid4(), fields={"notes": "x"})


# ─────────────────────────────────────────────
# READS
# ─────────────────────────────────────────────

def test_waitlist_position(db, factory):
    org = factory.org()
    s = factory.session(factory.activity(org), max_capacity=1, max_waitlist=3)
    members = [factory.member(org) for _ in range(3)]
    store = ParticipationStore()
    rows = [store.join(db, m, session_id=s.id) for m in members]
    _set_joined_at(db, rows)

    row, position = store.get_my_participation(db, members[2], session_id=s.id)
    assert row.id == rows[2].id
    assert position == 2

    row, position = store.get_my_participation(db, members[0], session_id=s.id)
    assert row.status == JOINED
    assert position is None

    row, position = store.get_my_participation(db, factory.member(org), session_id=s.id)
    assert row is None and position is None


def test_roster_redacts_contacts_for_members(db, factory):
    org = factory.org()
    s = factory.session(factory.activity(org), max_capacity=3)
    store = ParticipationStore()
    viewer_user = factory.user(email="viewer@example.com", phone="+15550001111")
    viewer = factory.member(org, user=viewer_user)
    other_user = factory.user(email="other@example.com", phone="+15550002222")
    other = factory.member(org, user=other_user)
    store.join(db, viewer, session_id=s.id)
    store.join(db, other, session_id=s.id)

    entries = {e["user"]["id"]: e["user"] for e in store.roster(db, viewer, session_id=s.id)}
    assert entries[viewer_user.id]["email"] == "viewer@example.com"
    assert entries[other_user.id]["email"] != "other@example.com"
    assert entries[other_user.id]["phone_number"].endswith("2222")
    assert "+1555000" not in entries[other_user.id]["phone_number"]
    assert entries[other_user.id]["name"] == other_user.name

    admin_view = {e["user"]["id"]: e["user"] for e in store.roster(db, factory.admin(org), session_id=s.id)}
    assert admin_view[other_user.id]["email"] == "other@example.com"
    assert admin_view[other_user.id]["phone_number"] == "+15550002222"


def test_roster_status_filter_and_order(db, factory):
    org = factory.org()
    s = factory.session(factory.activity(org), max_capacity=1, max_waitlist=2)
    store = ParticipationStore()
    rows = [store.join(db, factory.member(org), session_id=s.id) for _ in range(3)]
    _set_joined_at(db, [rows[0], rows[2], rows[1]])

    waitlist = store.roster(db, factory.admin(org), session_id=s.id, status=ParticipationStatus.waitlisted)
    assert [e["participation"].id for e in waitlist] == [rows[2].id, rows[1].id]


def test_history(db, factory):
    org = factory.org()
    act = factory.activity(org)
    s1 = factory.session(act)
    s2 = factory.session(act)
    member = factory.member(org)
    store = ParticipationStore()
    p1 = store.join(db, member, session_id=s1.id)
    p2 = store.join(db, member, session_id=s2.id)
    _set_joined_at(db, [p1, p2])

    mine = store.my_history(db, member)
    assert [p.id for p, _ in mine] == [p2.id, p1.id]
    assert mine[0][1].id == s2.id

    admin_view = store.user_history(db, factory.admin(org), user_id=member.user_id, limit=1)
    assert [p.id for p, _ in admin_view] == [p2.id]

    with pytest.raises(ForbiddenError):
        store.user_history(db, member, user_id=member.user_id)


# ─────────────────────────────────────────────
# INVARIANTS
# ─────────────────────────────────────────────

def test_capacity_invariants_hold_through_churn(db, factory):
    org = factory.org()
    s = factory.session(factory.activity(org), max_capacity=3, max_waitlist=2)
    store = ParticipationStore()
    members = [factory.member(org) for _ in range(8)]
    active = {}

    for step in range(24):
        m = members[(step * 5) % len(members)]
        row = active.get(m.user_id)
        if row is not None and step % 3 == 0:
            store.cancel(db, m, row.id)
            del active[m.user_id]
        else:
            try:
                active[m.user_id] = store.join(db, m, session_id=s.id)
            except SessionFullError:
                pass
        assert _count(db, s.id, JOINED) <= s.max_capacity
        assert _count(db, s.id, WAITLISTED) <= s.max_waitlist


def test_every_mutation_is_audited_with_actor(db, factory):
    org = factory.org()
    s = factory.session(factory.activity(org))
    member = factory.member(org)
    row = ParticipationStore().join(db, member, session_id=s.id)

    log = db.query(AuditLog).filter_by(participation_id=row.id).one()
    assert log.action == AuditAction.PARTICIPATION_JOINED
    assert log.actor_user_id == member.user_id
    assert log.organization_id == org.id
    assert log.details_json["status"] == JOINED


def test_owner_role_counts_as_admin(db, factory):
    org = factory.org()
    s = factory.session(factory.activity(org), join_mode=SessionJoinMode.approval_required)
    owner = factory.member(org, role=MemberRole.owner)
    row = ParticipationStore().join(db, factory.member(org), session_id=s.id)

    assert ParticipationStore().approve_pending(db, owner, row.id).status == JOINED
