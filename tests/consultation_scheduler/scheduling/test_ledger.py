from datetime import date, datetime

import pytest

from consultation_scheduler.models.session import (
    ACTIVE_STATUSES,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_CONFIRMED,
    STATUS_NO_SHOW,
    STATUS_PENDING,
    SessionHistory,
    SlotReservation,
)
from consultation_scheduler.scheduling.booking_guard import reserve
from consultation_scheduler.scheduling.errors import InvalidStateTransition, NotFound
from consultation_scheduler.scheduling.ledger import advance_session, get_occupied_slots, get_session, list_sessions
from consultation_scheduler.scheduling.refund_policy import cancel
from consultation_scheduler.scheduling.slot_grid import parse_clock

MONDAY = date(2030, 1, 7)
TUESDAY = date(2030, 1, 8)
NOW = datetime(2030, 1, 1, 8, 0)


def test_occupied_slots_only_count_live_sessions(db, consultant, client_user) -> None:
    kept = reserve(db, consultant.id, client_user.id, MONDAY, parse_clock('10:00'), 30, now=NOW)
    dropped = reserve(db, consultant.id, client_user.id, MONDAY, parse_clock('11:00'), 30, now=NOW)
    reserve(db, consultant.id, client_user.id, TUESDAY, parse_clock('11:00'), 30, now=NOW)
    cancel(db, dropped.id, 'Personal reasons', now=NOW)

    assert get_occupied_slots(db, consultant.id, MONDAY) == {kept.start_minute}


def test_get_session_raises_not_found(db) -> None:
    with pytest.raises(NotFound):
        get_session(db, 12345)


def test_list_sessions_filters_and_orders(db, consultant, client_user, other_client) -> None:
    late = reserve(db, consultant.id, client_user.id, TUESDAY, parse_clock('09:30'), 30, now=NOW)
    early = reserve(db, consultant.id, client_user.id, MONDAY, parse_clock('15:00'), 30, now=NOW)
    other = reserve(db, consultant.id, other_client.id, MONDAY, parse_clock('10:00'), 30, now=NOW)
    cancel(db, other.id, 'Personal reasons', now=NOW)

    assert [session.id for session in list_sessions(db, client_id=client_user.id)] == [early.id, late.id]
    assert [session.id for session in list_sessions(db, consultant_id=consultant.id, session_date=MONDAY)] == [
        other.id,
        early.id,
    ]
    assert [session.id for session in list_sessions(db, statuses=ACTIVE_STATUSES)] == [early.id, late.id]


def test_advance_session_walks_the_lifecycle(db, consultant, client_user) -> None:
    session = reserve(db, consultant.id, client_user.id, MONDAY, parse_clock('10:00'), 30, now=NOW)
    assert session.status == STATUS_PENDING

    advance_session(db, session.id, STATUS_CONFIRMED)
    assert db.query(SlotReservation).count() == 1

    completed = advance_session(db, session.id, STATUS_COMPLETED)

    assert completed.status == STATUS_COMPLETED
    assert db.query(SlotReservation).count() == 0
    actions = [row.action for row in db.query(SessionHistory).order_by(SessionHistory.id).all()]
    assert actions == ['booked', STATUS_CONFIRMED, STATUS_COMPLETED]


def test_completed_session_is_immutable(db, consultant, client_user) -> None:
    session = reserve(db, consultant.id, client_user.id, MONDAY, parse_clock('10:00'), 30, now=NOW)
    advance_session(db, session.id, STATUS_CONFIRMED)
    advance_session(db, session.id, STATUS_COMPLETED)

    with pytest.raises(InvalidStateTransition):
        advance_session(db, session.id, STATUS_NO_SHOW)


@pytest.mark.parametrize('target', [STATUS_COMPLETED, STATUS_NO_SHOW, 'archived'])
def test_pending_session_cannot_skip_confirmation(db, consultant, client_user, target) -> None:
    session = reserve(db, consultant.id, client_user.id, MONDAY, parse_clock('10:00'), 30, now=NOW)

    with pytest.raises(InvalidStateTransition):
        advance_session(db, session.id, target)


def test_cancel_must_go_through_refund_engine(db, consultant, client_user) -> None:
    session = reserve(db, consultant.id, client_user.id, MONDAY, parse_clock('10:00'), 30, now=NOW)

    with pytest.raises(InvalidStateTransition):
        advance_session(db, session.id, STATUS_CANCELLED)


def test_no_show_frees_the_slot(db, consultant, client_user) -> None:
    session = reserve(db, consultant.id, client_user.id, MONDAY, parse_clock('10:00'), 30, now=NOW)
    advance_session(db, session.id, STATUS_CONFIRMED)
    advance_session(db, session.id, STATUS_NO_SHOW)

    assert get_occupied_slots(db, consultant.id, MONDAY) == set()
