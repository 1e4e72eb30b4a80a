from datetime import date, datetime, time
from decimal import Decimal

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from consultation_scheduler import notifications
from consultation_scheduler.auth.dependencies import ensure_session_party, get_current_user
from consultation_scheduler.core import config
from consultation_scheduler.database import get_db
from consultation_scheduler.models.cancellation import CancellationRecord
from consultation_scheduler.models.session import ACTIVE_STATUSES, ALLOWED_TRANSITIONS, STATUS_CANCELLED, ConsultationSession
from consultation_scheduler.models.user import ROLE_ADMIN, ROLE_CLIENT, ROLE_CONSULTANT, User
from consultation_scheduler.routes.http_errors import database_unavailable, ensure_database_ready, to_http_exception
from consultation_scheduler.scheduling import booking_guard, ledger, refund_policy
from consultation_scheduler.scheduling.errors import SchedulingError
from consultation_scheduler.scheduling.slot_grid import format_clock, time_to_minute

router = APIRouter(tags=['bookings'])

MAX_NOTES_LENGTH = 600
MAX_REASON_LENGTH = 200
LIFECYCLE_STATUSES = sorted({target for targets in ALLOWED_TRANSITIONS.values() for target in targets} - {STATUS_CANCELLED})


def _normalize_notes(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > MAX_NOTES_LENGTH:
        raise ValueError(f'Notes must be {MAX_NOTES_LENGTH} characters or fewer.')

    return normalized


def _require_whole_minute(value: time) -> time:
    if value.second or value.microsecond:
        raise ValueError('Start time must be whole minutes (HH:MM).')
    return value


class CreateBookingRequest(BaseModel):
    consultant_id: int
    client_id: int
    date: date
    start_time: time
    duration_minutes: int = config.SLOT_DURATION_MINUTES
    notes: str | None = None

    @field_validator('start_time')
    @classmethod
    def validate_start_time(cls, value: time) -> time:
        return _require_whole_minute(value)

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_notes(value)


class CancelBookingRequest(BaseModel):
    reason: str
    notes: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('A cancellation reason is required.')
        if len(normalized) > MAX_REASON_LENGTH:
            raise ValueError(f'Reason must be {MAX_REASON_LENGTH} characters or fewer.')
        return normalized

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_notes(value)


class RescheduleBookingRequest(BaseModel):
    date: date
    start_time: time
    reason: str | None = None

    @field_validator('start_time')
    @classmethod
    def validate_start_time(cls, value: time) -> time:
        return _require_whole_minute(value)

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _normalize_notes(value)


class UpdateStatusRequest(BaseModel):
    status: str

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in LIFECYCLE_STATUSES:
            raise ValueError(f'Status must be one of: {", ".join(LIFECYCLE_STATUSES)}.')
        return normalized


class SessionResponse(BaseModel):
    id: int
    consultant_id: int
    client_id: int
    date: date
    start_time: str
    end_time: str
    duration_minutes: int
    status: str
    price: Decimal
    notes: str | None = None
    cancellation_reason: str | None = None
    cancelled_at: datetime | None = None
    refund_amount: Decimal | None = None
    refund_percentage: int | None = None
    reschedule_count: int = 0


class CancellationResponse(BaseModel):
    session_id: int
    reason: str
    notes: str | None = None
    refund_amount: Decimal
    refund_percentage: int
    cancelled_at: datetime
    refund_requested: bool


class RefundQuoteResponse(BaseModel):
    session_id: int
    hours_remaining: float
    refund_percentage: int
    refund_amount: Decimal


def to_session_response(session: ConsultationSession) -> SessionResponse:
    return SessionResponse(
        id=session.id,
        consultant_id=session.consultant_id,
        client_id=session.client_id,
        date=session.session_date,
        start_time=format_clock(session.start_minute),
        end_time=format_clock(session.end_minute),
        duration_minutes=session.duration_minutes,
        status=session.status,
        price=session.price,
        notes=session.notes,
        cancellation_reason=session.cancellation_reason,
        cancelled_at=session.cancelled_at,
        refund_amount=session.refund_amount,
        refund_percentage=session.refund_percentage,
        reschedule_count=session.reschedule_count or 0,
    )


def to_cancellation_response(record: CancellationRecord) -> CancellationResponse:
    return CancellationResponse(
        session_id=record.session_id,
        reason=record.reason,
        notes=record.notes,
        refund_amount=record.refund_amount,
        refund_percentage=record.refund_percentage,
        cancelled_at=record.cancelled_at,
        refund_requested=record.refund_amount > 0,
    )


@router.post('', response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
def create_booking(
    data: CreateBookingRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if current_user.role != ROLE_ADMIN and current_user.id != data.client_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Clients can only book sessions for themselves.',
        )

    ensure_database_ready()

    try:
        session = booking_guard.reserve(
            db,
            consultant_id=data.consultant_id,
            client_id=data.client_id,
            slot_date=data.date,
            start_minute=time_to_minute(data.start_time),
            duration_minutes=data.duration_minutes,
            notes=data.notes,
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    background_tasks.add_task(
        notifications.publish,
        notifications.event_for(notifications.EVENT_SESSION_BOOKED, session),
    )
    return to_session_response(session)


@router.get('', response_model=list[SessionResponse])
def list_bookings(
    date: date | None = Query(default=None),
    include_closed: bool = Query(default=False),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    consultant_id = current_user.id if current_user.role == ROLE_CONSULTANT else None
    client_id = current_user.id if current_user.role == ROLE_CLIENT else None
    if current_user.role not in (ROLE_ADMIN, ROLE_CONSULTANT, ROLE_CLIENT):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Unknown role.')

    try:
        sessions = ledger.list_sessions(
            db,
            consultant_id=consultant_id,
            client_id=client_id,
            session_date=date,
            statuses=None if include_closed else ACTIVE_STATUSES,
        )
        return [to_session_response(session) for session in sessions]
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/{session_id}', response_model=SessionResponse)
def get_booking(
    session_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    try:
        session = ledger.get_session(db, session_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    ensure_session_party(current_user, session)
    return to_session_response(session)


@router.get('/{session_id}/refund-quote', response_model=RefundQuoteResponse)
def get_refund_quote(
    session_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    try:
        session = ledger.get_session(db, session_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    ensure_session_party(current_user, session)
    quote = refund_policy.quote_refund(session)
    return RefundQuoteResponse(
        session_id=session.id,
        hours_remaining=round(quote.hours_remaining, 2),
        refund_percentage=quote.refund_percentage,
        refund_amount=quote.refund_amount,
    )


@router.post('/{session_id}/cancel', response_model=CancellationResponse)
def cancel_booking(
    session_id: int,
    data: CancelBookingRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    try:
        session = ledger.get_session(db, session_id)
        ensure_session_party(current_user, session)
        record = refund_policy.cancel(db, session_id, data.reason, data.notes)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    background_tasks.add_task(
        notifications.publish,
        notifications.event_for(
            notifications.EVENT_SESSION_CANCELLED,
            session,
            reason=record.reason,
            refund_amount=str(record.refund_amount),
        ),
    )
    return to_cancellation_response(record)


@router.post('/{session_id}/reschedule', response_model=SessionResponse)
def reschedule_booking(
    session_id: int,
    data: RescheduleBookingRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    try:
        session = ledger.get_session(db, session_id)
        ensure_session_party(current_user, session)
        session = booking_guard.reschedule(
            db,
            session_id,
            data.date,
            time_to_minute(data.start_time),
            reason=data.reason,
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    background_tasks.add_task(
        notifications.publish,
        notifications.event_for(notifications.EVENT_SESSION_RESCHEDULED, session, reason=data.reason),
    )
    return to_session_response(session)


@router.post('/{session_id}/status', response_model=SessionResponse)
def update_booking_status(
    session_id: int,
    data: UpdateStatusRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    try:
        session = ledger.get_session(db, session_id)
        if current_user.role != ROLE_ADMIN and current_user.id != session.consultant_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail='Only the consultant of this session can change its status.',
            )
        session = ledger.advance_session(db, session_id, data.status)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    background_tasks.add_task(
        notifications.publish,
        notifications.event_for(notifications.EVENT_SESSION_STATUS_CHANGED, session),
    )
    return to_session_response(session)
