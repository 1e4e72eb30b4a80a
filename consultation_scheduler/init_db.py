"""Create the scheduling tables and indexes in DATABASE_URL.

Usage:
    python -m consultation_scheduler.init_db
"""
import sys

from sqlalchemy.exc import SQLAlchemyError

from consultation_scheduler.database import Base, engine, ensure_scheduling_schema
from consultation_scheduler.models import availability, cancellation, session, user  # noqa: F401


def main() -> None:
    try:
        Base.metadata.create_all(bind=engine)
        ensure_scheduling_schema()
    except SQLAlchemyError as exc:
        print("Database initialization failed:", exc, file=sys.stderr)
        sys.exit(1)
    print("Created tables:", ", ".join(sorted(Base.metadata.tables)))


if __name__ == "__main__":
    main()
