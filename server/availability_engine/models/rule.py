"""Availability rule model definition."""

from datetime import date, datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, CheckConstraint, Date, Index, Integer, String, func
from sqlalchemy.dialects.postgresql import UUID as PgUUID
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base
from ..scheduling.recurrence import DaySelector, Frequency, RuleType, selector_for

# Exactly one payload, matching rule_type; the selector belongs to the frequency
RULE_PAYLOAD_CHECK = (
    "(rule_type = 'recurring' AND one_time_date IS NULL AND ("
    "(frequency = 'daily' AND days_of_week IS NULL AND days_of_month IS NULL) OR "
    "(frequency = 'weekly' AND days_of_week IS NOT NULL AND days_of_month IS NULL) OR "
    "(frequency = 'monthly' AND days_of_month IS NOT NULL AND days_of_week IS NULL)"
    ")) OR "
    "(rule_type = 'one-time' AND one_time_date IS NOT NULL AND frequency IS NULL "
    "AND days_of_week IS NULL AND days_of_month IS NULL)"
)


class AvailabilityRule(Base):
    """Vendor-authored template describing when a listing can be booked."""

    __tablename__ = "availability_rules"

    id: Mapped[UUID] = mapped_column(
        PgUUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )

    # Ownership; listings and vendors live in other services
    listing_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    vendor_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    rule_type: Mapped[RuleType] = mapped_column(String(20), nullable=False)

    # Recurring payload
    frequency: Mapped[Optional[Frequency]] = mapped_column(String(20), nullable=True)
    days_of_week: Mapped[Optional[list[int]]] = mapped_column(JSON(none_as_null=True), nullable=True)
    days_of_month: Mapped[Optional[list[int]]] = mapped_column(JSON(none_as_null=True), nullable=True)

    # One-time payload
    one_time_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # Shared by both payloads
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)

    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    booking_deadline_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # NULL means "indefinite"
    generate_days_in_advance: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)

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
        CheckConstraint(RULE_PAYLOAD_CHECK, name="ck_rule_payload_matches_type"),
        CheckConstraint("capacity > 0", name="ck_rule_capacity_positive"),
        CheckConstraint("duration_minutes > 0", name="ck_rule_duration_positive"),
        CheckConstraint("booking_deadline_hours >= 0", name="ck_rule_deadline_hours_non_negative"),
        CheckConstraint(
            "generate_days_in_advance IS NULL OR generate_days_in_advance >= 1",
            name="ck_rule_generate_days_positive",
        ),
        Index("ix_rules_listing_active", "listing_id", "active"),
    )

    __mapper_args__ = {"eager_defaults": True}

    @property
    def is_one_time(self) -> bool:
        return self.rule_type == RuleType.ONE_TIME

    @property
    def selector(self) -> Optional[DaySelector]:
        """Day selector of a recurring rule; None for one-time rules."""
        if self.is_one_time or self.frequency is None:
            return None
        return selector_for(self.frequency, self.days_of_week, self.days_of_month)

    def __repr__(self) -> str:
        return (
            f"<AvailabilityRule(id={self.id}, listing_id='{self.listing_id}', "
            f"type={self.rule_type}, frequency={self.frequency}, active={self.active})>"
        )
