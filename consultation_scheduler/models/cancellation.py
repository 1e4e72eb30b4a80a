"""Cancellation and refund model definitions."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, event
from consultation_scheduler.database import Base

REFUND_STATUS_PENDING = "pending"
REFUND_STATUS_PROCESSED = "processed"


class CancellationRecord(Base):
    """Immutable record written once per cancelled session."""
    __tablename__ = "cancellation_records"

    id = Column(Integer, primary_key=True)
    session_id = Column(Integer, ForeignKey("sessions.id"), nullable=False, unique=True)
    reason = Column(String, nullable=False)
    notes = Column(String)
    refund_amount = Column(Numeric(10, 2), nullable=False)
    refund_percentage = Column(Integer, nullable=False)
    cancelled_at = Column(DateTime, nullable=False)


class RefundRequest(Base):
    """Hand-off to the payment collaborator, settled outside this service."""
    __tablename__ = "refund_requests"

    id = Column(Integer, primary_key=True)
    session_id = Column(Integer, ForeignKey("sessions.id"), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    status = Column(String, nullable=False, default=REFUND_STATUS_PENDING)
    requested_at = Column(DateTime, nullable=False)


@event.listens_for(CancellationRecord, "before_update")
def reject_cancellation_record_update(mapper, connection, target) -> None:
    raise ValueError("Cancellation records are append-only.")
