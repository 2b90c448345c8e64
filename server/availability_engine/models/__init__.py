"""Models module exporting all database models."""

from .booking import Booking, BookingStatus
from .rule import AvailabilityRule
from .slot import CancellationReason, Slot, SlotStatus
from .waitlist import WaitlistEntry, WaitlistStatus

__all__ = [
    # Scheduling entities
    "AvailabilityRule",
    "Slot",
    "SlotStatus",
    "CancellationReason",

    # Waitlist entity
    "WaitlistEntry",
    "WaitlistStatus",

    # Booking entity
    "Booking",
    "BookingStatus",
]
