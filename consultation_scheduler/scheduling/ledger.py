import logging
from datetime import date
from typing import Iterable

from sqlalchemy.orm import Session

from consultation_scheduler.models.session import (
    ACTIVE_STATUSES,
    ALLOWED_TRANSITIONS,
    STATUS_CANCELLED,
    TERMINAL_STATUSES,
    ConsultationSession,
    SessionHistory,
    SlotReservation,
)
from consultation_scheduler.scheduling.cache import availability_cache
from consultation_scheduler.scheduling.errors import InvalidStateTransition, NotFound

logger = logging.getLogger(__name__)


def get_occupied_slots(db: Session, consultant_id: int, slot_date: date) -> set[int]:
    rows = db.query(ConsultationSession.start_minute).filter(
        ConsultationSession.consultant_id == consultant_id,
        ConsultationSession.session_date == slot_date,
        ConsultationSession.status.in_(ACTIVE_STATUSES),
    ).all()
    return {start_minute for (start_minute,) in rows}


def get_session(db: Session, session_id: int) -> ConsultationSession:
    session = db.query(ConsultationSession).filter(ConsultationSession.id == session_id).first()
    if session is None:
        raise NotFound(f'Session {session_id} not found.')
    return session


def list_sessions(
    db: Session,
    consultant_id: int | None = None,
    client_id: int | None = None,
    session_date: date | None = None,
    statuses: Iterable[str] | None = None,
) -> list[ConsultationSession]:
    query = db.query(ConsultationSession)
    if consultant_id is not None:
        query = query.filter(ConsultationSession.consultant_id == consultant_id)
    if client_id is not None:
        query = query.filter(ConsultationSession.client_id == client_id)
    if session_date is not None:
        query = query.filter(ConsultationSession.session_date == session_date)
    if statuses is not None:
        query = query.filter(ConsultationSession.status.in_(list(statuses)))

    return query.order_by(
        ConsultationSession.session_date.asc(),
        ConsultationSession.start_minute.asc(),
    ).all()


def release_reservation(db: Session, session_id: int) -> None:
    db.query(SlotReservation).filter(SlotReservation.session_id == session_id).delete(synchronize_session=False)


def advance_session(db: Session, session_id: int, target_status: str) -> ConsultationSession:
    """Apply a lifecycle transition reported by the payment or consultant side.

    Cancellation has its own path because it carries refund bookkeeping.
    """
    session = get_session(db, session_id)

    if target_status == STATUS_CANCELLED:
        raise InvalidStateTransition('Use the cancellation flow to cancel a session.')

    allowed = ALLOWED_TRANSITIONS.get(session.status, set())
    if target_status not in allowed:
        raise InvalidStateTransition(f'Cannot move a {session.status} session to {target_status}.')

    previous_status = session.status
    updated = db.query(ConsultationSession).filter(
        ConsultationSession.id == session_id,
        ConsultationSession.status == previous_status,
    ).update({ConsultationSession.status: target_status}, synchronize_session=False)

    if updated == 0:
        db.rollback()
        raise InvalidStateTransition(f'Session {session_id} changed state concurrently.')

    if target_status in TERMINAL_STATUSES:
        release_reservation(db, session_id)

    db.add(SessionHistory(session_id=session_id, action=target_status, reason=f'from {previous_status}'))
    db.commit()
    db.refresh(session)

    availability_cache.invalidate(session.consultant_id, session.session_date)
    logger.info('Session %s moved from %s to %s', session_id, previous_status, target_status)

    return session
