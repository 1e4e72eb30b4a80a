import logging
from datetime import date
from typing import Callable, Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from consultation_scheduler.models.availability import AvailabilityOverride
from consultation_scheduler.models.user import User
from consultation_scheduler.scheduling.cache import availability_cache
from consultation_scheduler.scheduling.errors import PolicyViolation
from consultation_scheduler.scheduling.ledger import get_occupied_slots
from consultation_scheduler.scheduling.locks import planning_locks
from consultation_scheduler.scheduling.slot_grid import format_clock, grid_starts, is_closed_day

logger = logging.getLogger(__name__)


def get_overrides(db: Session, consultant_id: int, slot_date: date) -> set[int]:
    """Start minutes the consultant marked unavailable on ``slot_date``.

    Rows stored for the closed weekday are ignored; that day is shut by rule.
    """
    if is_closed_day(slot_date):
        return set()

    rows = db.query(AvailabilityOverride.start_minute).filter(
        AvailabilityOverride.consultant_id == consultant_id,
        AvailabilityOverride.override_date == slot_date,
        AvailabilityOverride.is_available.is_(False),
    ).all()
    return {start_minute for (start_minute,) in rows}


def _require_open_day(slot_date: date) -> None:
    if is_closed_day(slot_date):
        raise PolicyViolation(f'{slot_date.isoformat()} is a closed day and cannot be planned.')


def _require_grid_starts(slot_date: date, starts: Iterable[int]) -> None:
    grid = set(grid_starts(slot_date))
    unknown = sorted(set(starts) - grid)
    if unknown:
        labels = ', '.join(format_clock(minute) for minute in unknown)
        raise PolicyViolation(f'Not a slot on the daily grid: {labels}.')


def _write_overrides(
    db: Session,
    consultant_id: int,
    slot_date: date,
    compute: Callable[[set[int], set[int]], set[int]],
) -> set[int]:
    _require_open_day(slot_date)

    with planning_locks.hold((consultant_id, slot_date)):
        try:
            # row lock on the consultant spans worker processes; sqlite skips FOR UPDATE
            db.query(User.id).filter(User.id == consultant_id).with_for_update().first()
            current = get_overrides(db, consultant_id, slot_date)
            occupied = get_occupied_slots(db, consultant_id, slot_date)
            unavailable = set(compute(current, occupied))
            _require_grid_starts(slot_date, unavailable)

            booked_changes = (unavailable ^ current) & occupied
            if booked_changes:
                labels = ', '.join(format_clock(minute) for minute in sorted(booked_changes))
                raise PolicyViolation(f'Booked slots cannot be edited: {labels}.')

            db.query(AvailabilityOverride).filter(
                AvailabilityOverride.consultant_id == consultant_id,
                AvailabilityOverride.override_date == slot_date,
            ).delete(synchronize_session=False)
            for start_minute in sorted(unavailable):
                db.add(
                    AvailabilityOverride(
                        consultant_id=consultant_id,
                        override_date=slot_date,
                        start_minute=start_minute,
                        is_available=False,
                    )
                )
            db.commit()
        except PolicyViolation:
            db.rollback()
            raise
        except SQLAlchemyError:
            db.rollback()
            logger.exception('Override write failed for consultant %s on %s', consultant_id, slot_date)
            raise

    availability_cache.invalidate(consultant_id, slot_date)
    logger.info(
        'Consultant %s marked %d slot(s) unavailable on %s',
        consultant_id,
        len(unavailable),
        slot_date.isoformat(),
    )
    return unavailable


def replace_overrides(db: Session, consultant_id: int, slot_date: date, unavailable_starts: Iterable[int]) -> set[int]:
    """Replace the whole override set of a date in one transaction."""
    requested = set(unavailable_starts)
    return _write_overrides(db, consultant_id, slot_date, lambda current, occupied: requested)


def _toggle(db: Session, consultant_id: int, slot_date: date, start_minute: int, make_unavailable: bool) -> set[int]:
    _require_grid_starts(slot_date, [start_minute])

    def compute(current: set[int], occupied: set[int]) -> set[int]:
        if start_minute in occupied:
            raise PolicyViolation(f'Booked slots cannot be edited: {format_clock(start_minute)}.')
        if make_unavailable:
            return current | {start_minute}
        return current - {start_minute}

    return _write_overrides(db, consultant_id, slot_date, compute)


def set_unavailable(db: Session, consultant_id: int, slot_date: date, start_minute: int) -> set[int]:
    return _toggle(db, consultant_id, slot_date, start_minute, make_unavailable=True)


def set_available(db: Session, consultant_id: int, slot_date: date, start_minute: int) -> set[int]:
    return _toggle(db, consultant_id, slot_date, start_minute, make_unavailable=False)


def close_day(db: Session, consultant_id: int, slot_date: date) -> set[int]:
    """Mark every unbooked slot of the date unavailable."""
    grid = set(grid_starts(slot_date))
    return _write_overrides(
        db,
        consultant_id,
        slot_date,
        lambda current, occupied: (grid - occupied) | (current & occupied),
    )


def open_day(db: Session, consultant_id: int, slot_date: date) -> set[int]:
    return _write_overrides(db, consultant_id, slot_date, lambda current, occupied: current & occupied)
