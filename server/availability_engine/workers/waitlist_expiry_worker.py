"""Background worker for lapsed waitlist offers."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from ..services.maintenance_service import MaintenanceService
from .base import BaseWorker

logger = logging.getLogger(__name__)


class WaitlistExpiryWorker(BaseWorker):
    """
    Expires notified waitlist entries whose offer window has passed.

    The spots they were offered go to the next waiting customers of the
    same slot.
    """

    def __init__(self, interval_seconds: int = 3600, **kwargs):
        super().__init__(name="WaitlistExpiry", interval_seconds=interval_seconds, **kwargs)

    async def process(self, db: AsyncSession) -> None:
        result = await MaintenanceService(db, self.clock).process_waitlist_expiry()

        if result.expired_count:
            logger.info(
                f"Expired {result.expired_count} waitlist offers",
                extra={
                    "expired_count": result.expired_count,
                    "promoted_count": result.promoted_count,
                    "worker": self.name,
                }
            )
