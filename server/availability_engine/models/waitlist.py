"""Waitlist model definition."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID as PgUUID
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base


class WaitlistStatus(str, Enum):
    """Waitlist entry status."""
    WAITING = "waiting"
    NOTIFIED = "notified"
    EXPIRED = "expired"
    BOOKED = "booked"


class WaitlistEntry(Base):
    """A customer queued for a spot in a full slot."""

    __tablename__ = "waitlist_entries"

    id: Mapped[UUID] = mapped_column(
        PgUUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )

    slot_id: Mapped[UUID] = mapped_column(
        PgUUID(as_uuid=True),
        ForeignKey("slots.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    listing_id: Mapped[str] = mapped_column(String(128), nullable=False)
    customer_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    customer_email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)

    # FIFO order is (joined_at, sequence); sequence increases per slot
    joined_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[WaitlistStatus] = mapped_column(
        String(20),
        nullable=False,
        default=WaitlistStatus.WAITING
    )
    notified_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, index=True)

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
        CheckConstraint("length(customer_id) > 0", name="ck_waitlist_customer_id_not_empty"),
        CheckConstraint(
            "(status IN ('waiting') AND notified_at IS NULL AND expires_at IS NULL) "
            "OR (status IN ('notified', 'expired', 'booked'))",
            name="ck_waitlist_waiting_not_notified",
        ),
        UniqueConstraint("slot_id", "sequence", name="uq_waitlist_slot_sequence"),
        # One open place in line per customer and slot
        Index(
            "uq_waitlist_waiting_slot_customer",
            "slot_id",
            "customer_id",
            unique=True,
            postgresql_where=text("status = 'waiting'"),
            sqlite_where=text("status = 'waiting'"),
        ),
        Index("ix_waitlist_slot_status_order", "slot_id", "status", "joined_at", "sequence"),
    )

    __mapper_args__ = {"eager_defaults": True}

    def __repr__(self) -> str:
        return (
            f"<WaitlistEntry(id={self.id}, slot_id={self.slot_id}, "
            f"customer_id='{self.customer_id}', status={self.status}, "
            f"joined_at={self.joined_at}, expires_at={self.expires_at})>"
        )
