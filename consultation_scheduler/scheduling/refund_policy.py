import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from consultation_scheduler.models.cancellation import CancellationRecord, RefundRequest, REFUND_STATUS_PENDING
from consultation_scheduler.models.session import (
    CANCELLABLE_STATUSES,
    STATUS_CANCELLED,
    STATUS_PENDING_PAYMENT,
    ConsultationSession,
    SessionHistory,
)
from consultation_scheduler.scheduling.cache import availability_cache
from consultation_scheduler.scheduling.errors import InvalidStateTransition
from consultation_scheduler.scheduling.ledger import get_session, release_reservation
from consultation_scheduler.scheduling.pricing import round_money
from consultation_scheduler.scheduling.slot_grid import hours_until_start, now_local

logger = logging.getLogger(__name__)

# (minimum hours before the session, refund percentage), checked top down.
REFUND_TIERS = (
    (48, 100),
    (24, 75),
    (2, 50),
    (0, 0),
)


@dataclass(frozen=True)
class RefundQuote:
    hours_remaining: float
    refund_percentage: int
    refund_amount: Decimal


def refund_percentage_for(hours_remaining: float) -> int:
    hours_remaining = max(0.0, hours_remaining)
    for minimum_hours, percentage in REFUND_TIERS:
        if hours_remaining >= minimum_hours:
            return percentage
    return 0


def refund_amount_for(price: Decimal, percentage: int) -> Decimal:
    return round_money(Decimal(price) * percentage / 100)


def quote_refund(session: ConsultationSession, now: datetime | None = None) -> RefundQuote:
    now = now or now_local()
    hours_remaining = hours_until_start(session.session_date, session.start_minute, now)
    if session.status == STATUS_PENDING_PAYMENT:
        # nothing has been charged yet
        percentage = 0
    else:
        percentage = refund_percentage_for(hours_remaining)
    amount = refund_amount_for(session.price, percentage)

    return RefundQuote(hours_remaining=hours_remaining, refund_percentage=percentage, refund_amount=amount)


def cancel(
    db: Session,
    session_id: int,
    reason: str,
    notes: str | None = None,
    now: datetime | None = None,
) -> CancellationRecord:
    now = now or now_local()
    session = get_session(db, session_id)

    if session.status not in CANCELLABLE_STATUSES:
        raise InvalidStateTransition(f'A {session.status} session cannot be cancelled.')

    quote = quote_refund(session, now)

    try:
        updated = db.query(ConsultationSession).filter(
            ConsultationSession.id == session_id,
            ConsultationSession.status == session.status,
            ConsultationSession.reschedule_count == session.reschedule_count,
        ).update(
            {
                ConsultationSession.status: STATUS_CANCELLED,
                ConsultationSession.cancellation_reason: reason,
                ConsultationSession.cancelled_at: now,
                ConsultationSession.refund_amount: quote.refund_amount,
                ConsultationSession.refund_percentage: quote.refund_percentage,
            },
            synchronize_session=False,
        )
        if updated == 0:
            db.rollback()
            raise InvalidStateTransition(f'Session {session_id} changed state concurrently.')

        release_reservation(db, session_id)

        record = CancellationRecord(
            session_id=session_id,
            reason=reason,
            notes=notes,
            refund_amount=quote.refund_amount,
            refund_percentage=quote.refund_percentage,
            cancelled_at=now,
        )
        db.add(record)

        if quote.refund_amount > 0:
            db.add(
                RefundRequest(
                    session_id=session_id,
                    amount=quote.refund_amount,
                    status=REFUND_STATUS_PENDING,
                    requested_at=now,
                )
            )

        db.add(
            SessionHistory(
                session_id=session_id,
                action='cancelled',
                old_date=session.session_date,
                old_start_minute=session.start_minute,
                reason=reason,
            )
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception('Cancelling session %s failed', session_id)
        raise

    db.refresh(record)
    db.refresh(session)
    availability_cache.invalidate(session.consultant_id, session.session_date)
    logger.info(
        'Session %s cancelled %.1f hours ahead, refund %s%% (%s)',
        session_id,
        quote.hours_remaining,
        quote.refund_percentage,
        quote.refund_amount,
    )
    return record


def get_cancellation_record(db: Session, session_id: int) -> CancellationRecord | None:
    return db.query(CancellationRecord).filter(CancellationRecord.session_id == session_id).first()


def list_refund_requests(db: Session, session_id: int | None = None) -> list[RefundRequest]:
    query = db.query(RefundRequest)
    if session_id is not None:
        query = query.filter(RefundRequest.session_id == session_id)
    return query.order_by(RefundRequest.requested_at.asc()).all()
