"""Background worker that rolls rule horizons forward."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from ..services.maintenance_service import MaintenanceService
from .base import BaseWorker

logger = logging.getLogger(__name__)


class SlotGenerationWorker(BaseWorker):
    """Generates missing slots for every active rule, once a day by default."""

    def __init__(self, interval_seconds: int = 86400, **kwargs):
        super().__init__(name="SlotGeneration", interval_seconds=interval_seconds, **kwargs)

    async def process(self, db: AsyncSession) -> None:
        summary = await MaintenanceService(db, self.clock).generate_slots()

        if summary.failed_rule_ids:
            logger.warning(
                "Slot generation skipped failing rules",
                extra={
                    "failed_rule_ids": [str(rule_id) for rule_id in summary.failed_rule_ids],
                    "worker": self.name,
                }
            )
