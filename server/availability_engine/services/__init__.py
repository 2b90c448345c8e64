"""Service layer package."""

from .booking_service import BookingService
from .ledger_service import LedgerService
from .maintenance_service import MaintenanceService
from .rule_service import RuleService
from .slot_generator import SlotGenerator
from .slot_service import SlotService
from .waitlist_service import WaitlistService

__all__ = [
    "BookingService",
    "LedgerService",
    "MaintenanceService",
    "RuleService",
    "SlotGenerator",
    "SlotService",
    "WaitlistService",
]
