from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta
from decimal import Decimal
from threading import Barrier

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from consultation_scheduler.core import config
from consultation_scheduler.database import Base, build_engine
from consultation_scheduler.models.session import (
    STATUS_CANCELLED,
    STATUS_PENDING,
    STATUS_PENDING_PAYMENT,
    ConsultationSession,
    SessionHistory,
    SlotReservation,
)
from consultation_scheduler.models.user import ROLE_CLIENT, ROLE_CONSULTANT, User
from consultation_scheduler.scheduling import availability_store, booking_guard
from consultation_scheduler.scheduling.booking_guard import reschedule, reserve
from consultation_scheduler.scheduling.errors import (
    ConflictError,
    ConflictReason,
    InvalidStateTransition,
    NotFound,
    PolicyViolation,
    TransientStoreError,
)
from consultation_scheduler.scheduling.locks import slot_locks
from consultation_scheduler.scheduling.refund_policy import cancel
from consultation_scheduler.scheduling.resolver import SlotStatus, status_of
from consultation_scheduler.scheduling.slot_grid import parse_clock, slot_start_datetime

MONDAY = date(2030, 1, 7)
TUESDAY = date(2030, 1, 8)
SUNDAY = date(2030, 1, 6)
NOW = datetime(2030, 1, 1, 8, 0)


def test_reserve_creates_pending_session_and_books_slot(db, consultant, client_user) -> None:
    session = reserve(db, consultant.id, client_user.id, MONDAY, parse_clock('13:00'), 30, notes='First visit', now=NOW)

    assert session.id is not None
    assert session.status == STATUS_PENDING
    assert session.price == Decimal('250.00')
    assert session.notes == 'First visit'
    assert status_of(db, consultant.id, MONDAY, parse_clock('13:00')) == SlotStatus.BOOKED

    reservation = db.query(SlotReservation).filter(SlotReservation.session_id == session.id).one()
    assert (reservation.reserved_date, reservation.start_minute) == (MONDAY, parse_clock('13:00'))
    assert db.query(SessionHistory).filter(SessionHistory.session_id == session.id).one().action == 'booked'


def test_reserve_uses_payment_policy_for_initial_status(db, consultant, client_user, monkeypatch) -> None:
    monkeypatch.setattr(config, 'PAYMENT_REQUIRED', True)

    paid_first = reserve(db, consultant.id, client_user.id, MONDAY, parse_clock('10:00'), 30, now=NOW)
    no_payment = reserve(
        db, consultant.id, client_user.id, MONDAY, parse_clock('10:30'), 30, requires_payment=False, now=NOW
    )

    assert paid_first.status == STATUS_PENDING_PAYMENT
    assert no_payment.status == STATUS_PENDING


def test_reserve_accepts_explicit_price(db, consultant, client_user) -> None:
    session = reserve(
        db, consultant.id, client_user.id, MONDAY, parse_clock('10:00'), 30, price=Decimal('199.999'), now=NOW
    )

    assert session.price == Decimal('200.00')


@pytest.mark.parametrize(
    ('slot_date', 'start', 'duration', 'reason'),
    [
        (MONDAY, '10:15', 30, ConflictReason.UNKNOWN_SLOT),
        (MONDAY, '18:30', 30, ConflictReason.UNKNOWN_SLOT),
        (MONDAY, '10:00', 60, ConflictReason.UNKNOWN_SLOT),
        (SUNDAY, '10:00', 30, ConflictReason.CLOSED_DAY),
    ],
)
def test_reserve_rejects_slots_off_the_grid_or_closed(db, consultant, client_user, slot_date, start, duration, reason) -> None:
    with pytest.raises(ConflictError) as exception_info:
        reserve(db, consultant.id, client_user.id, slot_date, parse_clock(start), duration, now=NOW)

    assert exception_info.value.reason == reason
    assert db.query(ConsultationSession).count() == 0


def test_reserve_rejects_slot_that_already_started(db, consultant, client_user) -> None:
    started = slot_start_datetime(MONDAY, parse_clock('10:00')) + timedelta(minutes=1)

    with pytest.raises(ConflictError) as exception_info:
        reserve(db, consultant.id, client_user.id, MONDAY, parse_clock('10:00'), 30, now=started)

    assert exception_info.value.reason == ConflictReason.PAST_SLOT


def test_started_slot_still_reports_closed_day_and_booking_first(db, consultant, client_user, other_client) -> None:
    reserve(db, consultant.id, client_user.id, MONDAY, parse_clock('10:00'), 30, now=NOW)
    availability_store.set_unavailable(db, consultant.id, MONDAY, parse_clock('11:00'))
    much_later = datetime(2030, 2, 1, 8, 0)

    outcomes = {}
    for slot_date, start in ((SUNDAY, '10:00'), (MONDAY, '11:00'), (MONDAY, '10:00'), (MONDAY, '12:00')):
        with pytest.raises(ConflictError) as exception_info:
            reserve(db, consultant.id, other_client.id, slot_date, parse_clock(start), 30, now=much_later)
        outcomes[(slot_date, start)] = exception_info.value.reason

    assert outcomes == {
        (SUNDAY, '10:00'): ConflictReason.CLOSED_DAY,
        (MONDAY, '11:00'): ConflictReason.MARKED_UNAVAILABLE,
        (MONDAY, '10:00'): ConflictReason.ALREADY_BOOKED,
        (MONDAY, '12:00'): ConflictReason.PAST_SLOT,
    }


def test_reserve_requires_known_consultant_and_client(db, consultant, client_user) -> None:
    with pytest.raises(NotFound):
        reserve(db, 999, client_user.id, MONDAY, parse_clock('10:00'), 30, now=NOW)

    with pytest.raises(NotFound):
        reserve(db, consultant.id, consultant.id, MONDAY, parse_clock('10:00'), 30, now=NOW)


def test_booking_scenario_with_unavailable_and_booked_slots(db, consultant, client_user) -> None:
    availability_store.set_unavailable(db, consultant.id, MONDAY, parse_clock('11:00'))

    with pytest.raises(ConflictError) as exception_info:
        reserve(db, consultant.id, client_user.id, MONDAY, parse_clock('11:00'), 30, now=NOW)
    assert exception_info.value.reason == ConflictReason.MARKED_UNAVAILABLE

    booked = reserve(db, consultant.id, client_user.id, MONDAY, parse_clock('13:00'), 30, now=NOW)
    assert booked.status == STATUS_PENDING

    with pytest.raises(PolicyViolation):
        availability_store.set_unavailable(db, consultant.id, MONDAY, parse_clock('13:00'))


def test_second_reserve_of_same_slot_is_already_booked(db, consultant, client_user, other_client) -> None:
    reserve(db, consultant.id, client_user.id, MONDAY, parse_clock('13:00'), 30, now=NOW)

    with pytest.raises(ConflictError) as exception_info:
        reserve(db, consultant.id, other_client.id, MONDAY, parse_clock('13:00'), 30, now=NOW)

    assert exception_info.value.reason == ConflictReason.ALREADY_BOOKED


def test_cancelled_slot_can_be_booked_again(db, consultant, client_user, other_client) -> None:
    first = reserve(db, consultant.id, client_user.id, MONDAY, parse_clock('13:00'), 30, now=NOW)
    cancel(db, first.id, 'Schedule conflict', now=NOW)

    second = reserve(db, consultant.id, other_client.id, MONDAY, parse_clock('13:00'), 30, now=NOW)

    assert second.id != first.id
    assert db.get(ConsultationSession, first.id).status == STATUS_CANCELLED


def test_store_failure_surfaces_as_transient_error(db, consultant, client_user, monkeypatch) -> None:
    def failing_commit() -> None:
        raise OperationalError('COMMIT', {}, Exception('database is locked'))

    monkeypatch.setattr(db, 'commit', failing_commit)

    with pytest.raises(TransientStoreError):
        reserve(db, consultant.id, client_user.id, MONDAY, parse_clock('13:00'), 30, now=NOW)


def test_concurrent_reserves_for_one_slot_let_exactly_one_win(tmp_path) -> None:
    engine = build_engine(f'sqlite:///{tmp_path / "race.db"}')
    Base.metadata.create_all(bind=engine)
    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    setup = session_factory()
    consultant = User(email='race@consult.example', role=ROLE_CONSULTANT, full_name='Race Consultant')
    clients = [User(email=f'client{index}@example.com', role=ROLE_CLIENT, full_name=f'Client {index}') for index in range(8)]
    setup.add_all([consultant, *clients])
    setup.commit()
    consultant_id = consultant.id
    client_ids = [client.id for client in clients]
    setup.close()

    barrier = Barrier(len(client_ids))

    def attempt(client_id: int) -> str:
        db = session_factory()
        try:
            barrier.wait()
            reserve(db, consultant_id, client_id, MONDAY, parse_clock('13:00'), 30, now=NOW)
            return 'booked'
        except ConflictError as exc:
            return exc.reason.value
        finally:
            db.close()

    with ThreadPoolExecutor(max_workers=len(client_ids)) as executor:
        outcomes = list(executor.map(attempt, client_ids))

    assert outcomes.count('booked') == 1
    assert outcomes.count(ConflictReason.ALREADY_BOOKED.value) == len(client_ids) - 1

    check = session_factory()
    try:
        assert check.query(ConsultationSession).count() == 1
        assert check.query(SlotReservation).count() == 1
    finally:
        check.close()
        engine.dispose()

    assert len(slot_locks) == 0


def test_reschedule_moves_session_and_frees_old_slot(db, consultant, client_user) -> None:
    session = reserve(db, consultant.id, client_user.id, MONDAY, parse_clock('13:00'), 30, now=NOW)

    moved = reschedule(db, session.id, TUESDAY, parse_clock('15:00'), reason='Work trip', now=NOW)

    assert (moved.session_date, moved.start_minute) == (TUESDAY, parse_clock('15:00'))
    assert (moved.original_date, moved.original_start_minute) == (MONDAY, parse_clock('13:00'))
    assert moved.reschedule_count == 1
    assert status_of(db, consultant.id, MONDAY, parse_clock('13:00')) == SlotStatus.AVAILABLE
    assert status_of(db, consultant.id, TUESDAY, parse_clock('15:00')) == SlotStatus.BOOKED
    assert db.query(SlotReservation).count() == 1


def test_reschedule_keeps_first_original_slot(db, consultant, client_user) -> None:
    session = reserve(db, consultant.id, client_user.id, MONDAY, parse_clock('13:00'), 30, now=NOW)

    reschedule(db, session.id, MONDAY, parse_clock('14:00'), now=NOW)
    moved = reschedule(db, session.id, TUESDAY, parse_clock('09:30'), now=NOW)

    assert moved.reschedule_count == 2
    assert (moved.original_date, moved.original_start_minute) == (MONDAY, parse_clock('13:00'))

    with pytest.raises(PolicyViolation):
        reschedule(db, session.id, TUESDAY, parse_clock('10:00'), now=NOW)


def test_reschedule_inside_minimum_notice_is_rejected(db, consultant, client_user) -> None:
    session = reserve(db, consultant.id, client_user.id, MONDAY, parse_clock('13:00'), 30, now=NOW)
    late = slot_start_datetime(MONDAY, parse_clock('13:00')) - timedelta(hours=23)

    with pytest.raises(PolicyViolation):
        reschedule(db, session.id, TUESDAY, parse_clock('15:00'), now=late)


def test_reschedule_onto_booked_slot_is_a_conflict(db, consultant, client_user, other_client) -> None:
    session = reserve(db, consultant.id, client_user.id, MONDAY, parse_clock('13:00'), 30, now=NOW)
    reserve(db, consultant.id, other_client.id, TUESDAY, parse_clock('15:00'), 30, now=NOW)

    with pytest.raises(ConflictError) as exception_info:
        reschedule(db, session.id, TUESDAY, parse_clock('15:00'), now=NOW)

    assert exception_info.value.reason == ConflictReason.ALREADY_BOOKED
    db.refresh(session)
    assert (session.session_date, session.start_minute) == (MONDAY, parse_clock('13:00'))


def test_cancelled_session_cannot_be_rescheduled(db, consultant, client_user) -> None:
    session = reserve(db, consultant.id, client_user.id, MONDAY, parse_clock('13:00'), 30, now=NOW)
    cancel(db, session.id, 'Health issue', now=NOW)

    with pytest.raises(InvalidStateTransition):
        booking_guard.reschedule(db, session.id, TUESDAY, parse_clock('15:00'), now=NOW)
