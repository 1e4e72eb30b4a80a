"""Availability model definitions."""

from sqlalchemy import Boolean, Column, Date, ForeignKey, Integer, UniqueConstraint
from consultation_scheduler.database import Base


class AvailabilityOverride(Base):
    """A slot whose availability deviates from the default open state."""
    __tablename__ = "availability_overrides"
    __table_args__ = (
        UniqueConstraint("consultant_id", "override_date", "start_minute", name="uq_override_slot"),
    )

    id = Column(Integer, primary_key=True)
    consultant_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    override_date = Column(Date, nullable=False)
    start_minute = Column(Integer, nullable=False)
    is_available = Column(Boolean, nullable=False, default=False)
