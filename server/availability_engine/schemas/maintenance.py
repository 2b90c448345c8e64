"""Schemas for the scheduled maintenance sweeps."""

from pydantic import BaseModel, Field


class GenerationSweepResponse(BaseModel):
    """Outcome of generating slots for every active rule."""

    rules_processed: int
    slots_created: int
    failed_rule_ids: list[str] = Field(default_factory=list)


class ExpirySweepResponse(BaseModel):
    """Outcome of expiring stale waitlist offers and re-promoting."""

    expired_count: int
    affected_slot_ids: list[str] = Field(default_factory=list)
    promoted_count: int


class CompletionSweepResponse(BaseModel):
    """Outcome of completing slots whose end has passed."""

    completed_count: int
