"""Slot-related Pydantic schemas."""

import datetime as dt
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from ..models.slot import CancellationReason, SlotStatus
from .rule import Duration, StartTime


class Slot(BaseModel):
    """Slot response schema."""

    id: str = Field(..., description="Unique slot ID")
    listing_id: str
    vendor_id: str
    rule_id: Optional[str] = Field(None, description="Generating rule; null for manual slots")
    date: dt.date
    start_time: str
    end_time: str
    capacity: int
    booked: int
    available: int
    booking_deadline: dt.datetime = Field(..., description="Bookings close after this local instant")
    status: SlotStatus
    cancelled_at: Optional[dt.datetime] = None
    cancellation_reason: Optional[CancellationReason] = None
    cancellation_message: Optional[str] = None
    version: int

    class Config:
        from_attributes = True


class SlotList(BaseModel):
    """List of slots."""

    items: list[Slot] = Field(default_factory=list)


class GenerateSlotsRequest(BaseModel):
    """
    Vendor-triggered generation for one rule.

    Without an explicit window the rule's rolling horizon starting today is
    used, optionally shortened by ``days_in_advance``.
    """

    rule_id: str = Field(..., description="Rule to expand")
    days_in_advance: Optional[int] = Field(None, ge=1, le=730, description="Shorter horizon than the rule's")
    start_date: Optional[dt.date] = Field(None, description="Explicit window start")
    end_date: Optional[dt.date] = Field(None, description="Explicit window end (inclusive)")

    @model_validator(mode="after")
    def check_window(self) -> "GenerateSlotsRequest":
        if (self.start_date is None) != (self.end_date is None):
            raise ValueError("start_date and end_date must be given together")
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class GenerateSlotsResponse(BaseModel):
    """Newly created slots; existing ones are skipped."""

    rule_id: str
    created_count: int
    slot_ids: list[str] = Field(default_factory=list)


class CreateSlotRequest(BaseModel):
    """Manual slot without a rule."""

    listing_id: str = Field(..., min_length=1, max_length=128)
    date: dt.date
    start_time: StartTime
    duration_minutes: Duration
    capacity: int = Field(..., gt=0, le=10000)
    booking_deadline_hours: int = Field(0, ge=0, le=8760)


class SlotIdRequest(BaseModel):
    """Request schema addressing one slot."""

    slot_id: str = Field(..., description="Slot ID")


class SearchSlotsRequest(BaseModel):
    """Slots of a listing within a date window."""

    listing_id: str = Field(..., description="Listing to search")
    start_date: dt.date
    end_date: dt.date
    status: Optional[SlotStatus] = Field(None, description="Only slots in this status")

    @model_validator(mode="after")
    def check_window(self) -> "SearchSlotsRequest":
        if self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class BookableSlotsRequest(BaseModel):
    """Slots a customer can book right now."""

    listing_id: str
    start_date: dt.date
    end_date: dt.date

    @model_validator(mode="after")
    def check_window(self) -> "BookableSlotsRequest":
        if self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class CancelSlotRequest(BaseModel):
    """Vendor cancellation of a slot."""

    slot_id: str
    reason: CancellationReason
    message: Optional[str] = Field(None, max_length=2000, description="Shown to affected customers")


class CancelSlotResponse(BaseModel):
    """Cancelled slot with the bookings it cancelled."""

    slot: Slot
    bookings_cancelled: int


class CapacityRequest(BaseModel):
    """Reserve or release guests on a slot."""

    slot_id: str
    guests: int = Field(..., gt=0, le=10000)


class ReleaseResponse(BaseModel):
    """Slot after a release and the waitlist entries it notified."""

    slot: Slot
    promoted_entry_ids: list[str] = Field(default_factory=list)
