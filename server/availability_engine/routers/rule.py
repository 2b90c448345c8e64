"""Rule router for availability rule management."""

import logging

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse
from pydantic import TypeAdapter
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import Caller, ClockDependency, DatabaseSession, VendorAuth
from ..core.exceptions import ProblemDetailsException
from ..schemas.common import PROBLEM_RESPONSES
from ..schemas.rule import (
    CreateRuleRequest,
    DeleteRuleResponse,
    ListRulesRequest,
    OneTimeSchedule,
    RecurrencePattern,
    Rule,
    RuleIdRequest,
    RuleList,
    UpdateRuleRequest,
)
from ..services.rule_service import RuleService
from ..services.slot_service import parse_uuid

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/rule", tags=["rule"], responses=PROBLEM_RESPONSES)

_pattern_adapter = TypeAdapter(RecurrencePattern)


def _convert_rule_to_schema(rule_model) -> Rule:
    """Convert rule model to schema, rebuilding the tagged pattern."""
    pattern = None
    one_time = None
    if rule_model.is_one_time:
        one_time = OneTimeSchedule(
            date=rule_model.one_time_date,
            start_time=rule_model.start_time,
            duration_minutes=rule_model.duration_minutes,
        )
    else:
        payload = {
            "frequency": rule_model.frequency,
            "start_time": rule_model.start_time,
            "duration_minutes": rule_model.duration_minutes,
        }
        if rule_model.days_of_week is not None:
            payload["days_of_week"] = rule_model.days_of_week
        if rule_model.days_of_month is not None:
            payload["days_of_month"] = rule_model.days_of_month
        pattern = _pattern_adapter.validate_python(payload)

    return Rule(
        id=str(rule_model.id),
        listing_id=rule_model.listing_id,
        vendor_id=rule_model.vendor_id,
        name=rule_model.name,
        rule_type=rule_model.rule_type,
        pattern=pattern,
        one_time=one_time,
        capacity=rule_model.capacity,
        booking_deadline_hours=rule_model.booking_deadline_hours,
        generate_days_in_advance=rule_model.generate_days_in_advance or "indefinite",
        active=rule_model.active,
        created_at=rule_model.created_at,
        updated_at=rule_model.updated_at,
    )


def _internal_error(message: str, extra: dict) -> HTTPException:
    logger.error(message, extra=extra, exc_info=True)
    return HTTPException(status_code=500, detail="Internal server error")


@router.post("/create", response_model=Rule)
async def create_rule(
    request: CreateRuleRequest,
    caller: Caller = VendorAuth,
    db: AsyncSession = DatabaseSession,
    clock=ClockDependency,
) -> JSONResponse:
    """
    Create an availability rule for one of the caller's listings.

    The rule does not produce slots until generation runs for it.
    """
    rule_service = RuleService(db, clock)

    try:
        rule = await rule_service.create_rule(request, caller)
        response_data = _convert_rule_to_schema(rule)
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise _internal_error(
            "Unexpected error in rule creation",
            {"listing_id": request.listing_id, "error": str(e)},
        )


@router.post("/update", response_model=Rule)
async def update_rule(
    request: UpdateRuleRequest,
    caller: Caller = VendorAuth,
    db: AsyncSession = DatabaseSession,
    clock=ClockDependency,
) -> JSONResponse:
    """Update a rule. Existing slots keep their values until regenerated."""
    rule_service = RuleService(db, clock)

    try:
        rule = await rule_service.update_rule(parse_uuid(request.rule_id, "rule"), request, caller)
        response_data = _convert_rule_to_schema(rule)
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise _internal_error("Unexpected error in rule update", {"rule_id": request.rule_id, "error": str(e)})


@router.post("/delete", response_model=DeleteRuleResponse)
async def delete_rule(
    request: RuleIdRequest,
    caller: Caller = VendorAuth,
    db: AsyncSession = DatabaseSession,
    clock=ClockDependency,
) -> JSONResponse:
    """
    Delete a rule.

    Future slots without bookings are removed with it; other slots remain
    as standalone slots.
    """
    rule_service = RuleService(db, clock)

    try:
        slots_deleted = await rule_service.delete_rule(parse_uuid(request.rule_id, "rule"), caller)
        response_data = DeleteRuleResponse(rule_id=request.rule_id, slots_deleted=slots_deleted)
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise _internal_error("Unexpected error in rule deletion", {"rule_id": request.rule_id, "error": str(e)})


@router.post("/toggle", response_model=Rule)
async def toggle_rule(
    request: RuleIdRequest,
    caller: Caller = VendorAuth,
    db: AsyncSession = DatabaseSession,
    clock=ClockDependency,
) -> JSONResponse:
    """Switch a rule between active and inactive."""
    rule_service = RuleService(db, clock)

    try:
        rule = await rule_service.toggle_active(parse_uuid(request.rule_id, "rule"), caller)
        response_data = _convert_rule_to_schema(rule)
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise _internal_error("Unexpected error in rule toggle", {"rule_id": request.rule_id, "error": str(e)})


@router.post("/get", response_model=Rule)
async def get_rule(
    request: RuleIdRequest,
    db: AsyncSession = DatabaseSession,
) -> JSONResponse:
    """Get a rule by ID."""
    rule_service = RuleService(db)

    try:
        rule = await rule_service.get_rule_by_id_or_raise(parse_uuid(request.rule_id, "rule"))
        response_data = _convert_rule_to_schema(rule)
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise _internal_error("Unexpected error in rule retrieval", {"rule_id": request.rule_id, "error": str(e)})


@router.post("/list", response_model=RuleList)
async def list_rules(
    request: ListRulesRequest,
    db: AsyncSession = DatabaseSession,
) -> JSONResponse:
    """List the rules of a listing, or of a vendor when no listing is given."""
    rule_service = RuleService(db)

    try:
        if request.listing_id:
            rules = await rule_service.list_rules_for_listing(request.listing_id, request.active_only)
        else:
            rules = await rule_service.list_rules_for_vendor(request.vendor_id, request.active_only)

        response_data = RuleList(items=[_convert_rule_to_schema(rule) for rule in rules])
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise _internal_error(
            "Unexpected error in rule listing",
            {"listing_id": request.listing_id, "vendor_id": request.vendor_id, "error": str(e)},
        )
