"""Tri-state slot status shared by the planning and booking views.

Precedence: closed day > booked > consultant override > available.
Booked must win over an override so a planning edit can never hide an
existing reservation.
"""

from dataclasses import dataclass
from datetime import date
from enum import Enum

from sqlalchemy.orm import Session

from consultation_scheduler.scheduling.availability_store import get_overrides
from consultation_scheduler.scheduling.cache import availability_cache
from consultation_scheduler.scheduling.ledger import get_occupied_slots
from consultation_scheduler.scheduling.slot_grid import TimeSlot, generate_slots, is_closed_day


class SlotStatus(str, Enum):
    AVAILABLE = 'available'
    UNAVAILABLE = 'unavailable'
    BOOKED = 'booked'


@dataclass(frozen=True)
class ResolvedSlot:
    slot: TimeSlot
    status: SlotStatus


def classify_slot(start_minute: int, closed: bool, occupied: set[int], overrides: set[int]) -> SlotStatus:
    if closed:
        return SlotStatus.UNAVAILABLE
    if start_minute in occupied:
        return SlotStatus.BOOKED
    if start_minute in overrides:
        return SlotStatus.UNAVAILABLE
    return SlotStatus.AVAILABLE


def resolve_status(db: Session, consultant_id: int, slot_date: date) -> list[ResolvedSlot]:
    slots = generate_slots(consultant_id, slot_date)
    closed = is_closed_day(slot_date)
    occupied = set() if closed else get_occupied_slots(db, consultant_id, slot_date)
    overrides = set() if closed else get_overrides(db, consultant_id, slot_date)

    return [
        ResolvedSlot(slot=slot, status=classify_slot(slot.start_minute, closed, occupied, overrides))
        for slot in slots
    ]


def _snapshot(db: Session, consultant_id: int, slot_date: date) -> list[list]:
    return [[resolved.slot.start_minute, resolved.status.value] for resolved in resolve_status(db, consultant_id, slot_date)]


def get_resolved_slots(db: Session, consultant_id: int, slot_date: date) -> list[ResolvedSlot]:
    snapshot = availability_cache.get_or_load(
        consultant_id,
        slot_date,
        lambda: _snapshot(db, consultant_id, slot_date),
    )
    statuses = {int(start_minute): SlotStatus(value) for start_minute, value in snapshot}
    return [
        ResolvedSlot(slot=slot, status=statuses[slot.start_minute])
        for slot in generate_slots(consultant_id, slot_date)
    ]


def status_of(db: Session, consultant_id: int, slot_date: date, start_minute: int) -> SlotStatus | None:
    for resolved in resolve_status(db, consultant_id, slot_date):
        if resolved.slot.start_minute == start_minute:
            return resolved.status
    return None
