"""Worker manager for coordinating background tasks."""

import asyncio
import logging
from typing import Dict

from ..core.config import settings
from .base import BaseWorker
from .slot_completion_worker import SlotCompletionWorker
from .slot_generation_worker import SlotGenerationWorker
from .waitlist_expiry_worker import WaitlistExpiryWorker

logger = logging.getLogger(__name__)


class WorkerManager:
    """
    Manages background workers for the application.

    Coordinates starting, stopping, and monitoring of all background workers.
    """

    def __init__(self):
        self.workers: Dict[str, BaseWorker] = {}
        self._setup_workers()

    def _setup_workers(self) -> None:
        """Initialize all workers with their configured intervals."""
        self.workers["slot_generation"] = SlotGenerationWorker(
            interval_seconds=settings.slot_generation_interval_seconds
        )
        self.workers["waitlist_expiry"] = WaitlistExpiryWorker(
            interval_seconds=settings.waitlist_expiry_interval_seconds
        )
        self.workers["slot_completion"] = SlotCompletionWorker(
            interval_seconds=settings.slot_completion_interval_seconds
        )

        logger.info(f"Initialized {len(self.workers)} workers")

    async def start_all(self) -> None:
        """Start all workers unless disabled by configuration."""
        if not settings.workers_enabled:
            logger.info("Background workers disabled by configuration")
            return

        logger.info("Starting all workers")

        for name, worker in self.workers.items():
            try:
                await worker.start()
                logger.info(f"Started worker: {name}")
            except Exception as e:
                logger.error(f"Failed to start worker {name}: {str(e)}", exc_info=True)

        logger.info(f"Started {len(self.workers)} workers")

    async def stop_all(self) -> None:
        """Stop all running workers gracefully."""
        running = {name: worker for name, worker in self.workers.items() if worker.is_running}
        if not running:
            return

        logger.info("Stopping all workers")

        results = await asyncio.gather(
            *(worker.stop() for worker in running.values()),
            return_exceptions=True,
        )

        for name, result in zip(running.keys(), results):
            if isinstance(result, Exception):
                logger.error(f"Error stopping worker {name}: {str(result)}")
            else:
                logger.info(f"Stopped worker: {name}")

        logger.info("All workers stopped")

    def get_worker(self, name: str) -> BaseWorker:
        """
        Get a specific worker by name.

        Raises:
            KeyError: If worker not found
        """
        return self.workers[name]

    def get_worker_status(self) -> Dict[str, bool]:
        """Map of worker name to running state."""
        return {name: worker.is_running for name, worker in self.workers.items()}


# Global worker manager instance
worker_manager = WorkerManager()
