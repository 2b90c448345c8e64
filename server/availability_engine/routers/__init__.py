"""FastAPI routers package."""

from .booking import router as booking_router
from .health import router as health_router
from .maintenance import router as maintenance_router
from .metrics import router as metrics_router
from .rule import router as rule_router
from .slot import router as slot_router
from .waitlist import router as waitlist_router

__all__ = [
    "booking_router",
    "health_router",
    "maintenance_router",
    "metrics_router",
    "rule_router",
    "slot_router",
    "waitlist_router",
]
