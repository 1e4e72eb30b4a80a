from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from consultation_scheduler.database import ensure_scheduling_schema
from consultation_scheduler.scheduling.errors import (
    ConflictError,
    InvalidStateTransition,
    NotFound,
    PolicyViolation,
    SchedulingError,
    TransientStoreError,
)

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'


def ensure_database_ready() -> None:
    try:
        ensure_scheduling_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


def database_unavailable() -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=DATABASE_UNAVAILABLE_DETAIL)


def to_http_exception(exc: SchedulingError) -> HTTPException:
    if isinstance(exc, ConflictError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={'reason': exc.reason.value, 'message': str(exc)},
        )
    if isinstance(exc, (PolicyViolation, InvalidStateTransition)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, NotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, TransientStoreError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
            headers={'Retry-After': '1'},
        )
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
