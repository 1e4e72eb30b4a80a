"""Errors raised by the scheduling engine.

All of them are recoverable by the caller. Routes translate them into HTTP
responses; nothing in the engine retries on its own.
"""

from enum import Enum


class ConflictReason(str, Enum):
    ALREADY_BOOKED = "AlreadyBooked"
    MARKED_UNAVAILABLE = "MarkedUnavailable"
    CLOSED_DAY = "ClosedDay"
    UNKNOWN_SLOT = "UnknownSlot"
    PAST_SLOT = "PastSlot"


class SchedulingError(Exception):
    """Base class for scheduling failures."""


class ConflictError(SchedulingError):
    """The requested slot cannot be reserved; the client should pick again."""

    def __init__(self, reason: ConflictReason, message: str | None = None):
        self.reason = reason
        super().__init__(message or f"Slot cannot be reserved: {reason.value}.")


class PolicyViolation(SchedulingError):
    """An edit that the availability rules forbid."""


class InvalidStateTransition(SchedulingError):
    """A session status change that is not allowed from its current status."""


class NotFound(SchedulingError):
    """Unknown session, consultant or slot."""


class TransientStoreError(SchedulingError):
    """The store could not guarantee atomicity; the request is safe to retry."""
