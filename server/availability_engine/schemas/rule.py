"""Availability rule Pydantic schemas.

The recurrence pattern is a tagged union discriminated by ``frequency``:
weekly patterns carry ``days_of_week``, monthly patterns ``days_of_month``
and daily patterns no selector at all.
"""

import datetime as dt
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from ..scheduling.recurrence import RuleType

TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"

StartTime = Annotated[str, Field(pattern=TIME_PATTERN, description="Local start time (HH:MM)")]
Duration = Annotated[int, Field(gt=0, le=1440, description="Duration in minutes")]
GenerateDays = Union[Annotated[int, Field(ge=1, le=730)], Literal["indefinite"]]


def _sorted_unique(days: list[int]) -> list[int]:
    return sorted(set(days))


class DailyPattern(BaseModel):
    """Every calendar day."""

    frequency: Literal["daily"]
    start_time: StartTime
    duration_minutes: Duration


class WeeklyPattern(BaseModel):
    """Selected ISO weekdays (Monday=1 .. Sunday=7)."""

    frequency: Literal["weekly"]
    days_of_week: list[Annotated[int, Field(ge=1, le=7)]] = Field(..., min_length=1)
    start_time: StartTime
    duration_minutes: Duration

    @field_validator("days_of_week")
    @classmethod
    def normalize_days(cls, v: list[int]) -> list[int]:
        return _sorted_unique(v)


class MonthlyPattern(BaseModel):
    """Selected days of the month (1..31)."""

    frequency: Literal["monthly"]
    days_of_month: list[Annotated[int, Field(ge=1, le=31)]] = Field(..., min_length=1)
    start_time: StartTime
    duration_minutes: Duration

    @field_validator("days_of_month")
    @classmethod
    def normalize_days(cls, v: list[int]) -> list[int]:
        return _sorted_unique(v)


RecurrencePattern = Annotated[
    Union[DailyPattern, WeeklyPattern, MonthlyPattern],
    Field(discriminator="frequency"),
]


class OneTimeSchedule(BaseModel):
    """A single dated occurrence."""

    date: dt.date = Field(..., description="Calendar date of the occurrence")
    start_time: StartTime
    duration_minutes: Duration


class CreateRuleRequest(BaseModel):
    """Request schema for creating an availability rule."""

    listing_id: str = Field(..., min_length=1, max_length=128, description="Listing the rule belongs to")
    name: str = Field(..., min_length=1, max_length=200, description="Display name")
    rule_type: RuleType = Field(..., description="recurring or one-time")
    pattern: Optional[RecurrencePattern] = Field(None, description="Recurring payload")
    one_time: Optional[OneTimeSchedule] = Field(None, description="One-time payload")
    capacity: int = Field(..., gt=0, le=10000, description="Guests per slot")
    booking_deadline_hours: int = Field(0, ge=0, le=8760, description="Hours before start when booking closes")
    generate_days_in_advance: GenerateDays = Field(30, description="Generation horizon in days, or 'indefinite'")
    active: bool = Field(True, description="Whether slots are generated from this rule")

    @model_validator(mode="after")
    def check_payload_matches_type(self) -> "CreateRuleRequest":
        if self.rule_type is RuleType.RECURRING:
            if self.pattern is None:
                raise ValueError("recurring rules require a pattern")
            if self.one_time is not None:
                raise ValueError("recurring rules cannot carry a one_time payload")
        else:
            if self.one_time is None:
                raise ValueError("one-time rules require a one_time payload")
            if self.pattern is not None:
                raise ValueError("one-time rules cannot carry a pattern")
        return self


class UpdateRuleRequest(BaseModel):
    """Partial update; omitted fields keep their current values."""

    rule_id: str = Field(..., description="Rule to update")
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    rule_type: Optional[RuleType] = None
    pattern: Optional[RecurrencePattern] = None
    one_time: Optional[OneTimeSchedule] = None
    capacity: Optional[int] = Field(None, gt=0, le=10000)
    booking_deadline_hours: Optional[int] = Field(None, ge=0, le=8760)
    generate_days_in_advance: Optional[GenerateDays] = None
    active: Optional[bool] = None


class RuleIdRequest(BaseModel):
    """Request schema addressing one rule."""

    rule_id: str = Field(..., description="Rule ID")


class ListRulesRequest(BaseModel):
    """Request schema for listing rules by listing or by vendor."""

    listing_id: Optional[str] = Field(None, description="Rules of this listing")
    vendor_id: Optional[str] = Field(None, description="Rules of this vendor")
    active_only: bool = Field(False, description="Only active rules")

    @model_validator(mode="after")
    def check_scope(self) -> "ListRulesRequest":
        if not self.listing_id and not self.vendor_id:
            raise ValueError("listing_id or vendor_id is required")
        return self


class Rule(BaseModel):
    """Availability rule response schema."""

    id: str = Field(..., description="Unique rule ID")
    listing_id: str
    vendor_id: str
    name: str
    rule_type: RuleType
    pattern: Optional[RecurrencePattern] = None
    one_time: Optional[OneTimeSchedule] = None
    capacity: int
    booking_deadline_hours: int
    generate_days_in_advance: GenerateDays
    active: bool
    created_at: dt.datetime
    updated_at: dt.datetime

    class Config:
        from_attributes = True


class RuleList(BaseModel):
    """List of rules."""

    items: list[Rule] = Field(default_factory=list)


class DeleteRuleResponse(BaseModel):
    """Result of deleting a rule."""

    rule_id: str
    slots_deleted: int = Field(..., description="Future unbooked slots removed with the rule")
