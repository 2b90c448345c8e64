"""Booking-related Pydantic schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from ..models.booking import BookingStatus


class CreateBookingRequest(BaseModel):
    """Request schema for booking guests into a slot."""

    slot_id: str = Field(..., description="Slot to book")
    guests: int = Field(..., gt=0, le=10000, description="Number of guests")
    customer_email: Optional[str] = Field(None, max_length=320, description="Contact address")


class CancelBookingRequest(BaseModel):
    """Request schema for cancelling a booking."""

    booking_id: str = Field(..., description="Booking to cancel")
    reason: Optional[str] = Field(None, max_length=200, description="Cancellation reason")


class GetBookingRequest(BaseModel):
    """Request schema for getting a booking."""

    booking_id: str = Field(..., description="Booking ID")


class Booking(BaseModel):
    """Booking response schema."""

    id: str = Field(..., description="Unique booking ID")
    slot_id: str
    listing_id: str
    customer_id: str
    customer_email: Optional[str] = None
    guests: int
    status: BookingStatus
    waitlist_entry_id: Optional[str] = Field(None, description="Waitlist entry this booking fulfilled")
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True
