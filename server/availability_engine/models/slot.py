"""Slot model definition."""

from datetime import date, datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID as PgUUID
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base


class SlotStatus(str, Enum):
    """Slot lifecycle status."""
    ACTIVE = "active"
    BLOCKED = "blocked"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class CancellationReason(str, Enum):
    """Why a vendor cancelled a slot."""
    WEATHER = "weather"
    EMERGENCY = "emergency"
    PERSONAL = "personal"
    OTHER = "other"


class Slot(Base):
    """A dated, capacity-bounded bookable instance of a listing."""

    __tablename__ = "slots"

    id: Mapped[UUID] = mapped_column(
        PgUUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )

    listing_id: Mapped[str] = mapped_column(String(128), nullable=False)
    vendor_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    # NULL for manual slots and for slots whose rule was deleted
    rule_id: Mapped[Optional[UUID]] = mapped_column(
        PgUUID(as_uuid=True),
        ForeignKey("availability_rules.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    slot_date: Mapped[date] = mapped_column("date", Date, nullable=False)
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)

    # Capacity counters
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    booked: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    available: Mapped[int] = mapped_column(Integer, nullable=False)

    booking_deadline: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[SlotStatus] = mapped_column(
        String(20),
        nullable=False,
        default=SlotStatus.ACTIVE,
        index=True
    )

    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    cancellation_reason: Mapped[Optional[CancellationReason]] = mapped_column(String(20), nullable=True)
    cancellation_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Bumped on every capacity or status change
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(
        nullable=False,
        server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False,
        server_default=func.now(),
        onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint("listing_id", "date", "start_time", name="uq_slot_listing_date_start"),
        CheckConstraint("capacity > 0", name="ck_slot_capacity_positive"),
        CheckConstraint("booked >= 0", name="ck_slot_booked_non_negative"),
        CheckConstraint("available >= 0", name="ck_slot_available_non_negative"),
        CheckConstraint("available <= capacity", name="ck_slot_available_lte_capacity"),
        CheckConstraint("booked + available = capacity", name="ck_slot_counters_consistent"),
        Index("ix_slots_listing_date", "listing_id", "date"),
    )

    __mapper_args__ = {"eager_defaults": True}

    def __repr__(self) -> str:
        return (
            f"<Slot(id={self.id}, listing_id='{self.listing_id}', date={self.slot_date}, "
            f"start={self.start_time}, capacity={self.available}/{self.capacity}, status={self.status})>"
        )
