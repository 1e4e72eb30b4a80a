from datetime import date
from types import SimpleNamespace

from consultation_scheduler import notifications


def _session():
    return SimpleNamespace(
        id=7,
        consultant_id=1,
        client_id=2,
        session_date=date(2030, 1, 7),
        start_minute=600,
        status='pending',
    )


def test_publish_reaches_every_listener() -> None:
    received = []
    notifications.register_listener(received.append)

    event = notifications.event_for(notifications.EVENT_SESSION_BOOKED, _session())
    delivered = notifications.publish(event)

    assert delivered == 1
    assert received == [event]
    assert event.session_id == 7
    assert event.event_type == 'session_booked'


def test_failing_listener_does_not_stop_delivery() -> None:
    received = []

    def broken(_event) -> None:
        raise RuntimeError('mail server down')

    notifications.register_listener(broken)
    notifications.register_listener(received.append)

    event = notifications.event_for(notifications.EVENT_SESSION_CANCELLED, _session(), reason='Emergency')
    delivered = notifications.publish(event)

    assert delivered == 1
    assert received[0].details == {'reason': 'Emergency'}
