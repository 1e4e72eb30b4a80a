"""Consultation session model definitions."""

from datetime import datetime

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, Numeric, String
from consultation_scheduler.database import Base

STATUS_PENDING_PAYMENT = "pending_payment"
STATUS_PENDING = "pending"
STATUS_CONFIRMED = "confirmed"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"
STATUS_NO_SHOW = "no_show"

ACTIVE_STATUSES = (STATUS_PENDING_PAYMENT, STATUS_PENDING, STATUS_CONFIRMED)
TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_CANCELLED, STATUS_NO_SHOW)
CANCELLABLE_STATUSES = ACTIVE_STATUSES

ALLOWED_TRANSITIONS = {
    STATUS_PENDING_PAYMENT: {STATUS_PENDING, STATUS_CANCELLED},
    STATUS_PENDING: {STATUS_CONFIRMED, STATUS_CANCELLED},
    STATUS_CONFIRMED: {STATUS_COMPLETED, STATUS_CANCELLED, STATUS_NO_SHOW},
}


class ConsultationSession(Base):
    """A client's booking of one consultant slot."""
    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True)
    consultant_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    client_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    session_date = Column(Date, nullable=False)
    start_minute = Column(Integer, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default=STATUS_PENDING)
    price = Column(Numeric(10, 2), nullable=False)
    notes = Column(String)
    cancellation_reason = Column(String)
    cancelled_at = Column(DateTime)
    refund_amount = Column(Numeric(10, 2))
    refund_percentage = Column(Integer)
    reschedule_count = Column(Integer, nullable=False, default=0)
    original_date = Column(Date)
    original_start_minute = Column(Integer)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    @property
    def end_minute(self) -> int:
        return self.start_minute + self.duration_minutes

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


class SlotReservation(Base):
    """Arena row keyed by slot identity; at most one per live session."""
    __tablename__ = "slot_reservations"

    consultant_id = Column(Integer, ForeignKey("users.id"), primary_key=True)
    reserved_date = Column(Date, primary_key=True)
    start_minute = Column(Integer, primary_key=True)
    session_id = Column(Integer, ForeignKey("sessions.id"), nullable=False, unique=True)


class SessionHistory(Base):
    """Append-only trail of booking events."""
    __tablename__ = "session_history"

    id = Column(Integer, primary_key=True)
    session_id = Column(Integer, ForeignKey("sessions.id"), nullable=False)
    action = Column(String, nullable=False)  # booked/rescheduled/cancelled/<status>
    old_date = Column(Date)
    old_start_minute = Column(Integer)
    new_date = Column(Date)
    new_start_minute = Column(Integer)
    reason = Column(String)
    created_at = Column(DateTime, default=datetime.now)
