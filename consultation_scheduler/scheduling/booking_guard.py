"""The only write path that puts sessions into the ledger.

Validation and insert happen while holding the slot's in-process lock, and
the insert targets ``slot_reservations`` whose primary key is the slot
identity. A second writer for the same slot (another worker process, say)
fails on that key at commit time, so two reservations can never both land.
"""

import logging
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from consultation_scheduler.core import config
from consultation_scheduler.models.session import (
    STATUS_PENDING,
    STATUS_PENDING_PAYMENT,
    ConsultationSession,
    SessionHistory,
    SlotReservation,
)
from consultation_scheduler.scheduling.availability_store import get_overrides
from consultation_scheduler.scheduling.cache import availability_cache
from consultation_scheduler.scheduling.directory import require_client, require_consultant
from consultation_scheduler.scheduling.errors import (
    ConflictError,
    ConflictReason,
    InvalidStateTransition,
    PolicyViolation,
    TransientStoreError,
)
from consultation_scheduler.scheduling.ledger import get_occupied_slots, get_session, release_reservation
from consultation_scheduler.scheduling.locks import slot_locks
from consultation_scheduler.scheduling.pricing import default_price, round_money
from consultation_scheduler.scheduling.slot_grid import (
    TimeSlot,
    find_slot,
    format_clock,
    hours_until_start,
    is_closed_day,
    now_local,
)

logger = logging.getLogger(__name__)


def check_slot_bookable(
    db: Session,
    consultant_id: int,
    slot_date: date,
    start_minute: int,
    duration_minutes: int,
    now: datetime,
) -> TimeSlot:
    slot = find_slot(consultant_id, slot_date, start_minute)
    if slot is None or duration_minutes != config.SLOT_DURATION_MINUTES:
        raise ConflictError(
            ConflictReason.UNKNOWN_SLOT,
            f'{format_clock(start_minute)} for {duration_minutes} minutes is not a slot on the daily grid.',
        )

    if is_closed_day(slot_date):
        raise ConflictError(ConflictReason.CLOSED_DAY, 'The consultant does not work on this day.')

    if start_minute in get_overrides(db, consultant_id, slot_date):
        raise ConflictError(ConflictReason.MARKED_UNAVAILABLE, 'The consultant marked this slot unavailable.')

    if start_minute in get_occupied_slots(db, consultant_id, slot_date):
        raise ConflictError(ConflictReason.ALREADY_BOOKED, 'This slot is already booked.')

    if slot.starts_at <= now:
        raise ConflictError(ConflictReason.PAST_SLOT, 'This slot has already started.')

    return slot


def _commit_reservation(db: Session, key: tuple) -> None:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.info('Reservation key %s taken by a concurrent writer', key)
        raise ConflictError(ConflictReason.ALREADY_BOOKED, 'This slot is already booked.') from exc
    except OperationalError as exc:
        db.rollback()
        logger.exception('Reservation for %s aborted by the store', key)
        raise TransientStoreError('The reservation could not be completed. It is safe to retry.') from exc


def reserve(
    db: Session,
    consultant_id: int,
    client_id: int,
    slot_date: date,
    start_minute: int,
    duration_minutes: int,
    *,
    price: Decimal | None = None,
    notes: str | None = None,
    requires_payment: bool | None = None,
    now: datetime | None = None,
) -> ConsultationSession:
    require_consultant(db, consultant_id)
    require_client(db, client_id)

    now = now or now_local()
    if requires_payment is None:
        requires_payment = config.PAYMENT_REQUIRED
    key = (consultant_id, slot_date, start_minute)

    with slot_locks.hold(key):
        check_slot_bookable(db, consultant_id, slot_date, start_minute, duration_minutes, now)

        session = ConsultationSession(
            consultant_id=consultant_id,
            client_id=client_id,
            session_date=slot_date,
            start_minute=start_minute,
            duration_minutes=duration_minutes,
            status=STATUS_PENDING_PAYMENT if requires_payment else STATUS_PENDING,
            price=round_money(price) if price is not None else default_price(duration_minutes),
            notes=notes,
            reschedule_count=0,
        )
        db.add(session)
        try:
            db.flush()
        except OperationalError as exc:
            db.rollback()
            raise TransientStoreError('The reservation could not be completed. It is safe to retry.') from exc

        db.add(
            SlotReservation(
                consultant_id=consultant_id,
                reserved_date=slot_date,
                start_minute=start_minute,
                session_id=session.id,
            )
        )
        db.add(
            SessionHistory(
                session_id=session.id,
                action='booked',
                new_date=slot_date,
                new_start_minute=start_minute,
            )
        )
        _commit_reservation(db, key)
        db.refresh(session)

    availability_cache.invalidate(consultant_id, slot_date)
    logger.info(
        'Client %s booked consultant %s on %s at %s (session %s, %s)',
        client_id,
        consultant_id,
        slot_date.isoformat(),
        format_clock(start_minute),
        session.id,
        session.status,
    )
    return session


def reschedule(
    db: Session,
    session_id: int,
    new_date: date,
    new_start_minute: int,
    reason: str | None = None,
    now: datetime | None = None,
) -> ConsultationSession:
    now = now or now_local()
    session = get_session(db, session_id)

    if not session.is_active:
        raise InvalidStateTransition(f'A {session.status} session cannot be rescheduled.')

    if hours_until_start(session.session_date, session.start_minute, now) < config.RESCHEDULE_MIN_HOURS:
        raise PolicyViolation(
            f'Sessions can only be rescheduled at least {config.RESCHEDULE_MIN_HOURS} hours in advance.'
        )

    if session.reschedule_count >= config.MAX_RESCHEDULES:
        raise PolicyViolation(f'This session was already rescheduled {config.MAX_RESCHEDULES} times.')

    if (new_date, new_start_minute) == (session.session_date, session.start_minute):
        raise PolicyViolation('The new slot is the same as the current one.')

    old_date = session.session_date
    old_start_minute = session.start_minute
    old_status = session.status
    old_count = session.reschedule_count
    key = (session.consultant_id, new_date, new_start_minute)

    with slot_locks.hold(key):
        check_slot_bookable(db, session.consultant_id, new_date, new_start_minute, session.duration_minutes, now)

        values = {
            ConsultationSession.session_date: new_date,
            ConsultationSession.start_minute: new_start_minute,
            ConsultationSession.reschedule_count: old_count + 1,
        }
        if old_count == 0:
            values[ConsultationSession.original_date] = old_date
            values[ConsultationSession.original_start_minute] = old_start_minute

        updated = db.query(ConsultationSession).filter(
            ConsultationSession.id == session_id,
            ConsultationSession.status == old_status,
            ConsultationSession.reschedule_count == old_count,
        ).update(values, synchronize_session=False)
        if updated == 0:
            db.rollback()
            raise InvalidStateTransition(f'Session {session_id} changed state concurrently.')

        release_reservation(db, session_id)
        db.add(
            SlotReservation(
                consultant_id=session.consultant_id,
                reserved_date=new_date,
                start_minute=new_start_minute,
                session_id=session_id,
            )
        )
        db.add(
            SessionHistory(
                session_id=session_id,
                action='rescheduled',
                old_date=old_date,
                old_start_minute=old_start_minute,
                new_date=new_date,
                new_start_minute=new_start_minute,
                reason=reason,
            )
        )
        _commit_reservation(db, key)
        db.refresh(session)

    availability_cache.invalidate(session.consultant_id, old_date)
    availability_cache.invalidate(session.consultant_id, new_date)
    logger.info(
        'Session %s moved from %s %s to %s %s',
        session_id,
        old_date.isoformat(),
        format_clock(old_start_minute),
        new_date.isoformat(),
        format_clock(new_start_minute),
    )
    return session
