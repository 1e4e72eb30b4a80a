from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from consultation_scheduler.core import config


@dataclass(frozen=True, order=True)
class TimeSlot:
    consultant_id: int
    date: date
    start_minute: int
    end_minute: int

    @property
    def start_time(self) -> time:
        return minute_to_time(self.start_minute)

    @property
    def end_time(self) -> time:
        return minute_to_time(self.end_minute)

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.date, self.start_time)


def time_to_minute(value: time) -> int:
    return value.hour * 60 + value.minute


def minute_to_time(minute: int) -> time:
    return time(minute // 60, minute % 60)


def parse_clock(value: str) -> int:
    """Convert ``"HH:MM"`` (or ``"HH:MM:SS"``) to minutes past midnight."""
    parts = value.strip().split(':')
    if len(parts) not in (2, 3):
        raise ValueError(f'Invalid clock time: {value!r}.')
    hours, minutes = int(parts[0]), int(parts[1])
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        raise ValueError(f'Invalid clock time: {value!r}.')
    return hours * 60 + minutes


def format_clock(minute: int) -> str:
    return f'{minute // 60:02d}:{minute % 60:02d}'


def slot_start_datetime(slot_date: date, start_minute: int) -> datetime:
    return datetime.combine(slot_date, time()) + timedelta(minutes=start_minute)


def is_closed_day(slot_date: date) -> bool:
    return slot_date.weekday() == config.CLOSED_WEEKDAY


def generate_slots(consultant_id: int, slot_date: date, duration_minutes: int | None = None) -> list[TimeSlot]:
    duration = duration_minutes or config.SLOT_DURATION_MINUTES
    opening = time_to_minute(config.OPEN_TIME)
    closing = time_to_minute(config.CLOSE_TIME)

    slots: list[TimeSlot] = []
    current = opening
    while current + duration <= closing:
        slots.append(TimeSlot(consultant_id, slot_date, current, current + duration))
        current += duration

    return slots


def grid_starts(slot_date: date, duration_minutes: int | None = None) -> list[int]:
    return [slot.start_minute for slot in generate_slots(0, slot_date, duration_minutes)]


def find_slot(consultant_id: int, slot_date: date, start_minute: int, duration_minutes: int | None = None) -> TimeSlot | None:
    for slot in generate_slots(consultant_id, slot_date, duration_minutes):
        if slot.start_minute == start_minute:
            return slot
    return None


def now_local() -> datetime:
    """Current wall-clock time in the operating timezone, without tzinfo."""
    return datetime.now(ZoneInfo(config.OPERATING_TIMEZONE)).replace(tzinfo=None)


def hours_until_start(slot_date: date, start_minute: int, now: datetime) -> float:
    """Hours from ``now`` to the slot start, never negative."""
    remaining = slot_start_datetime(slot_date, start_minute) - now
    return max(0.0, remaining.total_seconds() / 3600)
