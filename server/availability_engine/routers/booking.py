"""Booking router for booking operations."""

import logging

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import Caller, ClockDependency, DatabaseSession, OutboxDependency, RequiredAuth
from ..core.exceptions import ProblemDetailsException
from ..schemas.booking import Booking, CancelBookingRequest, CreateBookingRequest, GetBookingRequest
from ..schemas.common import PROBLEM_RESPONSES
from ..services.booking_service import BookingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/booking", tags=["booking"], responses=PROBLEM_RESPONSES)


def _convert_booking_to_schema(booking_model) -> Booking:
    """Convert booking model to schema."""
    return Booking(
        id=str(booking_model.id),
        slot_id=str(booking_model.slot_id),
        listing_id=booking_model.listing_id,
        customer_id=booking_model.customer_id,
        customer_email=booking_model.customer_email,
        guests=booking_model.guests,
        status=booking_model.status,
        waitlist_entry_id=str(booking_model.waitlist_entry_id) if booking_model.waitlist_entry_id else None,
        cancelled_at=booking_model.cancelled_at,
        cancellation_reason=booking_model.cancellation_reason,
        created_at=booking_model.created_at,
    )


@router.post("/create", response_model=Booking)
async def create_booking(
    request: CreateBookingRequest,
    caller: Caller = RequiredAuth,
    db: AsyncSession = DatabaseSession,
    clock=ClockDependency,
    outbox=OutboxDependency,
) -> JSONResponse:
    """
    Book guests into a slot.

    Fails with 409 when the slot is not bookable, its deadline has passed
    or too few spots remain.
    """
    booking_service = BookingService(db, clock, outbox)

    try:
        booking = await booking_service.create_booking(
            request.slot_id, request.guests, caller, request.customer_email
        )
        response_data = _convert_booking_to_schema(booking)
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in booking creation",
            extra={"slot_id": request.slot_id, "guests": request.guests, "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/cancel", response_model=Booking)
async def cancel_booking(
    request: CancelBookingRequest,
    caller: Caller = RequiredAuth,
    db: AsyncSession = DatabaseSession,
    clock=ClockDependency,
    outbox=OutboxDependency,
) -> JSONResponse:
    """
    Cancel a booking and release its spots.

    Cancelling twice returns the already cancelled booking.
    """
    booking_service = BookingService(db, clock, outbox)

    try:
        booking = await booking_service.cancel_booking(request.booking_id, caller, request.reason)
        response_data = _convert_booking_to_schema(booking)
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in booking cancellation",
            extra={"booking_id": request.booking_id, "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/get", response_model=Booking)
async def get_booking(
    request: GetBookingRequest,
    caller: Caller = RequiredAuth,
    db: AsyncSession = DatabaseSession,
) -> JSONResponse:
    """Get a booking by ID."""
    booking_service = BookingService(db)

    try:
        booking = await booking_service.get_booking_for_caller(request.booking_id, caller)
        response_data = _convert_booking_to_schema(booking)
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in booking retrieval",
            extra={"booking_id": request.booking_id, "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error")
