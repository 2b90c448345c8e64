"""Slot router: generation, search, lifecycle and capacity operations."""

import logging

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import (
    AdminAuth,
    Caller,
    ClockDependency,
    DatabaseSession,
    OutboxDependency,
    VendorAuth,
)
from ..core.exceptions import ProblemDetailsException
from ..schemas.common import PROBLEM_RESPONSES
from ..schemas.slot import (
    BookableSlotsRequest,
    CancelSlotRequest,
    CancelSlotResponse,
    CapacityRequest,
    CreateSlotRequest,
    GenerateSlotsRequest,
    GenerateSlotsResponse,
    ReleaseResponse,
    SearchSlotsRequest,
    Slot,
    SlotIdRequest,
    SlotList,
)
from ..services.ledger_service import LedgerService
from ..services.slot_generator import SlotGenerator
from ..services.slot_service import SlotService, parse_uuid

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/slot", tags=["slot"], responses=PROBLEM_RESPONSES)


def _convert_slot_to_schema(slot_model) -> Slot:
    """Convert slot model to schema."""
    return Slot(
        id=str(slot_model.id),
        listing_id=slot_model.listing_id,
        vendor_id=slot_model.vendor_id,
        rule_id=str(slot_model.rule_id) if slot_model.rule_id else None,
        date=slot_model.slot_date,
        start_time=slot_model.start_time,
        end_time=slot_model.end_time,
        capacity=slot_model.capacity,
        booked=slot_model.booked,
        available=slot_model.available,
        booking_deadline=slot_model.booking_deadline,
        status=slot_model.status,
        cancelled_at=slot_model.cancelled_at,
        cancellation_reason=slot_model.cancellation_reason,
        cancellation_message=slot_model.cancellation_message,
        version=slot_model.version,
    )


def _ok(response_data) -> JSONResponse:
    return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))


def _internal_error(message: str, extra: dict) -> HTTPException:
    logger.error(message, extra=extra, exc_info=True)
    return HTTPException(status_code=500, detail="Internal server error")


@router.post("/generate", response_model=GenerateSlotsResponse)
async def generate_slots(
    request: GenerateSlotsRequest,
    caller: Caller = VendorAuth,
    db: AsyncSession = DatabaseSession,
    clock=ClockDependency,
) -> JSONResponse:
    """
    Generate slots for one of the caller's rules.

    Idempotent: slots that already exist for a date and start time are
    skipped, so only new slot IDs are returned.
    """
    generator = SlotGenerator(db, clock)
    rule_id = parse_uuid(request.rule_id, "rule")

    try:
        if request.start_date is not None:
            slot_ids = await generator.generate_window_for_rule(
                rule_id, caller, request.start_date, request.end_date
            )
        else:
            slot_ids = await generator.regenerate_for_rule(rule_id, caller, request.days_in_advance)

        response_data = GenerateSlotsResponse(
            rule_id=request.rule_id,
            created_count=len(slot_ids),
            slot_ids=[str(slot_id) for slot_id in slot_ids],
        )
        return _ok(response_data)

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise _internal_error("Unexpected error in slot generation", {"rule_id": request.rule_id, "error": str(e)})


@router.post("/create", response_model=Slot)
async def create_slot(
    request: CreateSlotRequest,
    caller: Caller = VendorAuth,
    db: AsyncSession = DatabaseSession,
    clock=ClockDependency,
) -> JSONResponse:
    """Create a single slot outside any rule."""
    slot_service = SlotService(db, clock)

    try:
        slot = await slot_service.create_manual_slot(request, caller)
        return _ok(_convert_slot_to_schema(slot))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise _internal_error(
            "Unexpected error in manual slot creation",
            {"listing_id": request.listing_id, "date": request.date.isoformat(), "error": str(e)},
        )


@router.post("/get", response_model=Slot)
async def get_slot(
    request: SlotIdRequest,
    db: AsyncSession = DatabaseSession,
) -> JSONResponse:
    """Get a slot by ID."""
    slot_service = SlotService(db)

    try:
        slot = await slot_service.get_slot_by_id_or_raise(parse_uuid(request.slot_id, "slot"))
        return _ok(_convert_slot_to_schema(slot))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise _internal_error("Unexpected error in slot retrieval", {"slot_id": request.slot_id, "error": str(e)})


@router.post("/search", response_model=SlotList)
async def search_slots(
    request: SearchSlotsRequest,
    db: AsyncSession = DatabaseSession,
) -> JSONResponse:
    """Slots of a listing within a date window, optionally filtered by status."""
    slot_service = SlotService(db)

    try:
        slots = await slot_service.list_slots(
            request.listing_id, request.start_date, request.end_date, request.status
        )
        response_data = SlotList(items=[_convert_slot_to_schema(slot) for slot in slots])

        logger.info(
            "Slot search completed",
            extra={"listing_id": request.listing_id, "total_found": len(slots)}
        )
        return _ok(response_data)

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise _internal_error("Unexpected error in slot search", {"listing_id": request.listing_id, "error": str(e)})


@router.post("/bookable", response_model=SlotList)
async def bookable_slots(
    request: BookableSlotsRequest,
    db: AsyncSession = DatabaseSession,
    clock=ClockDependency,
) -> JSONResponse:
    """Active slots with free spots whose booking deadline has not passed."""
    slot_service = SlotService(db, clock)

    try:
        slots = await slot_service.list_bookable_slots(request.listing_id, request.start_date, request.end_date)
        return _ok(SlotList(items=[_convert_slot_to_schema(slot) for slot in slots]))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise _internal_error(
            "Unexpected error in bookable slot search", {"listing_id": request.listing_id, "error": str(e)}
        )


@router.post("/block", response_model=Slot)
async def block_slot(
    request: SlotIdRequest,
    caller: Caller = VendorAuth,
    db: AsyncSession = DatabaseSession,
    clock=ClockDependency,
) -> JSONResponse:
    """Take an active slot without bookings off sale."""
    slot_service = SlotService(db, clock)

    try:
        slot = await slot_service.block_slot(parse_uuid(request.slot_id, "slot"), caller)
        return _ok(_convert_slot_to_schema(slot))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise _internal_error("Unexpected error in slot block", {"slot_id": request.slot_id, "error": str(e)})


@router.post("/unblock", response_model=Slot)
async def unblock_slot(
    request: SlotIdRequest,
    caller: Caller = VendorAuth,
    db: AsyncSession = DatabaseSession,
    clock=ClockDependency,
) -> JSONResponse:
    """Put a blocked slot back on sale."""
    slot_service = SlotService(db, clock)

    try:
        slot = await slot_service.unblock_slot(parse_uuid(request.slot_id, "slot"), caller)
        return _ok(_convert_slot_to_schema(slot))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise _internal_error("Unexpected error in slot unblock", {"slot_id": request.slot_id, "error": str(e)})


@router.post("/cancel", response_model=CancelSlotResponse)
async def cancel_slot(
    request: CancelSlotRequest,
    caller: Caller = VendorAuth,
    db: AsyncSession = DatabaseSession,
    clock=ClockDependency,
    outbox=OutboxDependency,
) -> JSONResponse:
    """
    Cancel a slot.

    Every confirmed booking in the slot is cancelled with it and each
    affected customer is notified with the reason and message.
    """
    slot_service = SlotService(db, clock, outbox)

    try:
        result = await slot_service.cancel_slot(
            parse_uuid(request.slot_id, "slot"), request.reason, request.message, caller
        )
        response_data = CancelSlotResponse(
            slot=_convert_slot_to_schema(result.slot),
            bookings_cancelled=len(result.bookings),
        )
        return _ok(response_data)

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise _internal_error("Unexpected error in slot cancellation", {"slot_id": request.slot_id, "error": str(e)})


@router.post("/reserve", response_model=Slot)
async def reserve_capacity(
    request: CapacityRequest,
    caller: Caller = AdminAuth,
    db: AsyncSession = DatabaseSession,
    clock=ClockDependency,
    outbox=OutboxDependency,
) -> JSONResponse:
    """Reserve spots directly on the ledger (internal operation)."""
    ledger = LedgerService(db, clock, outbox)

    try:
        slot = await ledger.reserve(parse_uuid(request.slot_id, "slot"), request.guests)
        return _ok(_convert_slot_to_schema(slot))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise _internal_error(
            "Unexpected error in capacity reservation",
            {"slot_id": request.slot_id, "guests": request.guests, "error": str(e)},
        )


@router.post("/release", response_model=ReleaseResponse)
async def release_capacity(
    request: CapacityRequest,
    caller: Caller = AdminAuth,
    db: AsyncSession = DatabaseSession,
    clock=ClockDependency,
    outbox=OutboxDependency,
) -> JSONResponse:
    """
    Release spots directly on the ledger (internal operation).

    Over-releasing is clamped to the slot's bounds. Freed spots are offered
    to the waitlist.
    """
    ledger = LedgerService(db, clock, outbox)

    try:
        result = await ledger.release(parse_uuid(request.slot_id, "slot"), request.guests)
        response_data = ReleaseResponse(
            slot=_convert_slot_to_schema(result.slot),
            promoted_entry_ids=[str(entry.id) for entry in result.promoted],
        )
        return _ok(response_data)

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise _internal_error(
            "Unexpected error in capacity release",
            {"slot_id": request.slot_id, "guests": request.guests, "error": str(e)},
        )
