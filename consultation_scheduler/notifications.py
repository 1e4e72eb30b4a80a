"""Booking and cancellation events for the notification collaborator.

Delivery is fire-and-forget: routes schedule ``publish`` as a background
task after the write has committed, and a failing listener is logged and
skipped. Nothing here can undo a booking or a cancellation.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable

logger = logging.getLogger(__name__)

EVENT_SESSION_BOOKED = 'session_booked'
EVENT_SESSION_CANCELLED = 'session_cancelled'
EVENT_SESSION_RESCHEDULED = 'session_rescheduled'
EVENT_SESSION_STATUS_CHANGED = 'session_status_changed'


@dataclass(frozen=True)
class SessionEvent:
    event_type: str
    session_id: int
    consultant_id: int
    client_id: int
    session_date: date
    start_minute: int
    status: str
    details: dict = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=datetime.now)


Listener = Callable[[SessionEvent], None]

_listeners: list[Listener] = []


def register_listener(listener: Listener) -> None:
    _listeners.append(listener)


def clear_listeners() -> None:
    _listeners.clear()


def event_for(event_type: str, session, **details) -> SessionEvent:
    return SessionEvent(
        event_type=event_type,
        session_id=session.id,
        consultant_id=session.consultant_id,
        client_id=session.client_id,
        session_date=session.session_date,
        start_minute=session.start_minute,
        status=session.status,
        details=details,
    )


def publish(event: SessionEvent) -> int:
    """Deliver ``event`` to every listener; returns how many succeeded."""
    logger.info('Publishing %s for session %s', event.event_type, event.session_id)

    delivered = 0
    for listener in list(_listeners):
        try:
            listener(event)
            delivered += 1
        except Exception:
            logger.exception('Notification listener %r failed for %s', listener, event.event_type)

    return delivered
