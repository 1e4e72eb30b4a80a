from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from consultation_scheduler.core import config


def build_engine(database_url: str):
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": 15}
    return create_engine(database_url, connect_args=connect_args)


engine = build_engine(config.DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_scheduling_schema_checked = False

SCHEDULING_INDEXES = [
    ('sessions', 'CREATE INDEX IF NOT EXISTS idx_sessions_consultant_date ON sessions(consultant_id, session_date)'),
    ('sessions', 'CREATE INDEX IF NOT EXISTS idx_sessions_client_status ON sessions(client_id, status)'),
    (
        'availability_overrides',
        'CREATE INDEX IF NOT EXISTS idx_overrides_consultant_date ON availability_overrides(consultant_id, override_date)',
    ),
    ('session_history', 'CREATE INDEX IF NOT EXISTS idx_session_history_session ON session_history(session_id)'),
]


def ensure_scheduling_schema() -> None:
    global _scheduling_schema_checked

    if _scheduling_schema_checked:
        return

    with _schema_lock:
        if _scheduling_schema_checked:
            return

        existing_tables = set(inspect(engine).get_table_names())

        with engine.begin() as connection:
            for table_name, statement in SCHEDULING_INDEXES:
                if table_name in existing_tables:
                    connection.execute(text(statement))

        _scheduling_schema_checked = True


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
