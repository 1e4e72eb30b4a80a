import os
from datetime import time
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///:memory:')
os.environ['REDIS_URL'] = ''

from consultation_scheduler import notifications  # noqa: E402
from consultation_scheduler.core import config  # noqa: E402
from consultation_scheduler.database import Base  # noqa: E402
from consultation_scheduler.models import availability, cancellation, session  # noqa: E402,F401
from consultation_scheduler.models.user import ROLE_CLIENT, ROLE_CONSULTANT, User  # noqa: E402
from consultation_scheduler.scheduling.cache import availability_cache  # noqa: E402


@pytest.fixture(autouse=True)
def scheduling_config(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(config, 'OPEN_TIME', time(9, 30))
    monkeypatch.setattr(config, 'CLOSE_TIME', time(18, 30))
    monkeypatch.setattr(config, 'SLOT_DURATION_MINUTES', 30)
    monkeypatch.setattr(config, 'CLOSED_WEEKDAY', 6)
    monkeypatch.setattr(config, 'PAYMENT_REQUIRED', False)
    monkeypatch.setattr(config, 'SESSION_PRICE', Decimal('500.00'))
    monkeypatch.setattr(config, 'MAX_RESCHEDULES', 2)
    monkeypatch.setattr(config, 'RESCHEDULE_MIN_HOURS', 24)
    availability_cache.clear()
    notifications.clear_listeners()
    yield
    availability_cache.clear()
    notifications.clear_listeners()


@pytest.fixture
def db():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


def _add_user(db, email: str, role: str, full_name: str) -> User:
    user = User(email=email, role=role, full_name=full_name)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def consultant(db) -> User:
    return _add_user(db, 'ayse@consult.example', ROLE_CONSULTANT, 'Ayse Consultant')


@pytest.fixture
def client_user(db) -> User:
    return _add_user(db, 'client@example.com', ROLE_CLIENT, 'First Client')


@pytest.fixture
def other_client(db) -> User:
    return _add_user(db, 'second@example.com', ROLE_CLIENT, 'Second Client')


@pytest.fixture
def make_user(db):
    def _make(email: str, role: str, full_name: str = 'Test User') -> User:
        return _add_user(db, email, role, full_name)

    return _make
