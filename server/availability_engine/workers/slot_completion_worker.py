"""Background worker that completes slots once they have ended."""

from sqlalchemy.ext.asyncio import AsyncSession

from ..services.maintenance_service import MaintenanceService
from .base import BaseWorker


class SlotCompletionWorker(BaseWorker):
    """Marks active slots past their end time as completed."""

    def __init__(self, interval_seconds: int = 3600, **kwargs):
        super().__init__(name="SlotCompletion", interval_seconds=interval_seconds, **kwargs)

    async def process(self, db: AsyncSession) -> None:
        await MaintenanceService(db, self.clock).mark_past_slots_completed()
