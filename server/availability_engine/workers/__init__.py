"""Background workers for the availability engine."""

from .slot_completion_worker import SlotCompletionWorker
from .slot_generation_worker import SlotGenerationWorker
from .waitlist_expiry_worker import WaitlistExpiryWorker

__all__ = ["SlotCompletionWorker", "SlotGenerationWorker", "WaitlistExpiryWorker"]
