from datetime import date, time

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from consultation_scheduler.auth.dependencies import ensure_can_plan, get_current_user
from consultation_scheduler.database import get_db
from consultation_scheduler.models.user import User
from consultation_scheduler.routes.http_errors import database_unavailable, ensure_database_ready, to_http_exception
from consultation_scheduler.scheduling import availability_store
from consultation_scheduler.scheduling.directory import require_consultant
from consultation_scheduler.scheduling.errors import SchedulingError
from consultation_scheduler.scheduling.resolver import ResolvedSlot, SlotStatus, get_resolved_slots, resolve_status
from consultation_scheduler.scheduling.slot_grid import format_clock, generate_slots, is_closed_day, time_to_minute

router = APIRouter(tags=['availability'])


class SlotStatusResponse(BaseModel):
    start_time: str
    end_time: str
    start_minute: int
    duration_minutes: int
    status: str
    is_available: bool
    is_booked: bool


class AvailabilityDayResponse(BaseModel):
    consultant_id: int
    date: date
    is_closed_day: bool
    slots: list[SlotStatusResponse]


class GridSlotResponse(BaseModel):
    start_time: str
    end_time: str
    start_minute: int


class UpdateAvailabilityRequest(BaseModel):
    unavailable: list[time]

    @field_validator('unavailable')
    @classmethod
    def validate_unavailable(cls, value: list[time]) -> list[time]:
        for slot_time in value:
            if slot_time.second or slot_time.microsecond:
                raise ValueError('Slot times must be whole minutes (HH:MM).')
        return value


def to_slot_response(resolved: ResolvedSlot) -> SlotStatusResponse:
    slot = resolved.slot
    return SlotStatusResponse(
        start_time=format_clock(slot.start_minute),
        end_time=format_clock(slot.end_minute),
        start_minute=slot.start_minute,
        duration_minutes=slot.end_minute - slot.start_minute,
        status=resolved.status.value,
        is_available=resolved.status == SlotStatus.AVAILABLE,
        is_booked=resolved.status == SlotStatus.BOOKED,
    )


def to_day_response(consultant_id: int, slot_date: date, resolved: list[ResolvedSlot]) -> AvailabilityDayResponse:
    return AvailabilityDayResponse(
        consultant_id=consultant_id,
        date=slot_date,
        is_closed_day=is_closed_day(slot_date),
        slots=[to_slot_response(item) for item in resolved],
    )


@router.get('', response_model=AvailabilityDayResponse)
def get_availability(
    consultant_id: int = Query(...),
    date: date = Query(...),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        require_consultant(db, consultant_id)
        resolved = get_resolved_slots(db, consultant_id, date)
        return to_day_response(consultant_id, date, resolved)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.put('', response_model=AvailabilityDayResponse)
def replace_availability(
    data: UpdateAvailabilityRequest,
    consultant_id: int = Query(...),
    date: date = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_can_plan(current_user, consultant_id)
    ensure_database_ready()

    try:
        require_consultant(db, consultant_id)
        availability_store.replace_overrides(
            db,
            consultant_id,
            date,
            {time_to_minute(slot_time) for slot_time in data.unavailable},
        )
        return to_day_response(consultant_id, date, resolve_status(db, consultant_id, date))
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/close-day', response_model=AvailabilityDayResponse)
def close_day(
    consultant_id: int = Query(...),
    date: date = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_can_plan(current_user, consultant_id)
    ensure_database_ready()

    try:
        require_consultant(db, consultant_id)
        availability_store.close_day(db, consultant_id, date)
        return to_day_response(consultant_id, date, resolve_status(db, consultant_id, date))
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/open-day', response_model=AvailabilityDayResponse)
def open_day(
    consultant_id: int = Query(...),
    date: date = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_can_plan(current_user, consultant_id)
    ensure_database_ready()

    try:
        require_consultant(db, consultant_id)
        availability_store.open_day(db, consultant_id, date)
        return to_day_response(consultant_id, date, resolve_status(db, consultant_id, date))
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/grid', response_model=list[GridSlotResponse])
def get_slot_grid(date: date = Query(...)):
    if is_closed_day(date):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='No slots are offered on the closed day.',
        )

    return [
        GridSlotResponse(
            start_time=format_clock(slot.start_minute),
            end_time=format_clock(slot.end_minute),
            start_minute=slot.start_minute,
        )
        for slot in generate_slots(0, date)
    ]
