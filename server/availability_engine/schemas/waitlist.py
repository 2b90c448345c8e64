"""Waitlist-related Pydantic schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from ..models.waitlist import WaitlistStatus


class JoinWaitlistRequest(BaseModel):
    """Request schema for joining a slot's waitlist."""

    slot_id: str = Field(..., description="Full slot to wait for")
    customer_email: Optional[str] = Field(None, max_length=320, description="Address for the spot-available email")


class WaitlistEntryRequest(BaseModel):
    """Request schema addressing one waitlist entry."""

    entry_id: str = Field(..., description="Waitlist entry ID")


class ListWaitlistRequest(BaseModel):
    """Entries of one slot (vendor) or of the caller (customer)."""

    slot_id: Optional[str] = Field(None, description="Slot whose queue to list; omit for your own entries")
    status: Optional[WaitlistStatus] = Field(None, description="Only entries in this status")


class PromoteRequest(BaseModel):
    """Request schema for notifying the next customer in line."""

    slot_id: str = Field(..., description="Slot whose queue to advance")


class WaitlistEntry(BaseModel):
    """Waitlist entry response schema."""

    id: str = Field(..., description="Unique waitlist entry ID")
    slot_id: str = Field(..., description="Associated slot ID")
    listing_id: str
    customer_id: str
    customer_email: Optional[str] = None
    status: WaitlistStatus
    joined_at: datetime = Field(..., description="Queue join time (local)")
    notified_at: Optional[datetime] = Field(None, description="When the spot offer was sent")
    expires_at: Optional[datetime] = Field(None, description="When the spot offer lapses")

    class Config:
        from_attributes = True


class WaitlistEntryList(BaseModel):
    """List of waitlist entries in queue order."""

    items: list[WaitlistEntry] = Field(default_factory=list)


class WaitlistPosition(BaseModel):
    """Rank of an entry among the slot's waiting entries."""

    entry_id: str
    status: WaitlistStatus
    position: Optional[int] = Field(None, description="1-based rank; null once the entry stopped waiting")
    total_waiting: int


class PromoteResponse(BaseModel):
    """Result of a promotion; ``entry`` is null when nobody was waiting."""

    promoted: bool
    entry: Optional[WaitlistEntry] = None
