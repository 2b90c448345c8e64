"""Waitlist router for waitlist operations."""

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
    RequiredAuth,
)
from ..core.exceptions import AuthorizationError, ProblemDetailsException
from ..schemas.common import PROBLEM_RESPONSES
from ..schemas.waitlist import (
    JoinWaitlistRequest,
    ListWaitlistRequest,
    PromoteRequest,
    PromoteResponse,
    WaitlistEntry,
    WaitlistEntryList,
    WaitlistEntryRequest,
    WaitlistPosition,
)
from ..services.slot_service import parse_uuid
from ..services.waitlist_service import WaitlistService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/waitlist", tags=["waitlist"], responses=PROBLEM_RESPONSES)


def _convert_waitlist_entry_to_schema(entry_model) -> WaitlistEntry:
    """Convert waitlist entry model to schema."""
    return WaitlistEntry(
        id=str(entry_model.id),
        slot_id=str(entry_model.slot_id),
        listing_id=entry_model.listing_id,
        customer_id=entry_model.customer_id,
        customer_email=entry_model.customer_email,
        status=entry_model.status,
        joined_at=entry_model.joined_at,
        notified_at=entry_model.notified_at,
        expires_at=entry_model.expires_at,
    )


def _internal_error(message: str, extra: dict) -> HTTPException:
    logger.error(message, extra=extra, exc_info=True)
    return HTTPException(status_code=500, detail="Internal server error")


@router.post("/join", response_model=WaitlistEntry)
async def join_waitlist(
    request: JoinWaitlistRequest,
    caller: Caller = RequiredAuth,
    db: AsyncSession = DatabaseSession,
    clock=ClockDependency,
    outbox=OutboxDependency,
) -> JSONResponse:
    """
    Join the waitlist of a full slot.

    Only one waiting entry per customer and slot is allowed. Slots with
    free spots should be booked directly.
    """
    waitlist_service = WaitlistService(db, clock, outbox)

    try:
        entry = await waitlist_service.join(
            parse_uuid(request.slot_id, "slot"),
            caller.user_id,
            request.customer_email or caller.email,
        )
        response_data = _convert_waitlist_entry_to_schema(entry)
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise _internal_error(
            "Unexpected error in waitlist join",
            {"slot_id": request.slot_id, "customer_id": caller.user_id, "error": str(e)},
        )


@router.post("/leave")
async def leave_waitlist(
    request: WaitlistEntryRequest,
    caller: Caller = RequiredAuth,
    db: AsyncSession = DatabaseSession,
    clock=ClockDependency,
    outbox=OutboxDependency,
) -> JSONResponse:
    """Leave a waitlist. A pending spot offer passes to the next customer."""
    waitlist_service = WaitlistService(db, clock, outbox)

    try:
        await waitlist_service.leave(parse_uuid(request.entry_id, "waitlist_entry"), caller.user_id)
        return JSONResponse(status_code=200, content={"entry_id": request.entry_id, "removed": True})

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise _internal_error("Unexpected error in waitlist leave", {"entry_id": request.entry_id, "error": str(e)})


@router.post("/position", response_model=WaitlistPosition)
async def waitlist_position(
    request: WaitlistEntryRequest,
    caller: Caller = RequiredAuth,
    db: AsyncSession = DatabaseSession,
) -> JSONResponse:
    """1-based queue position of one of the caller's entries."""
    waitlist_service = WaitlistService(db)

    try:
        result = await waitlist_service.position(parse_uuid(request.entry_id, "waitlist_entry"))
        if result.entry.customer_id != caller.user_id and not caller.is_admin:
            raise AuthorizationError(detail="You can only view your own waitlist entries")

        response_data = WaitlistPosition(
            entry_id=str(result.entry.id),
            status=result.entry.status,
            position=result.position,
            total_waiting=result.total_waiting,
        )
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise _internal_error("Unexpected error in waitlist position", {"entry_id": request.entry_id, "error": str(e)})


@router.post("/list", response_model=WaitlistEntryList)
async def list_waitlist(
    request: ListWaitlistRequest,
    caller: Caller = RequiredAuth,
    db: AsyncSession = DatabaseSession,
) -> JSONResponse:
    """
    List waitlist entries.

    With a slot_id the slot's whole queue is returned (slot vendor or
    admin only); without one, the caller's own entries.
    """
    waitlist_service = WaitlistService(db)

    try:
        if request.slot_id:
            slot = await waitlist_service.slot_service.get_slot_by_id_or_raise(parse_uuid(request.slot_id, "slot"))
            if not caller.is_admin:
                waitlist_service.slot_service.check_owner(slot, caller)
            entries = await waitlist_service.list_for_slot(slot.id, request.status)
        else:
            entries = await waitlist_service.list_for_customer(caller.user_id, request.status)

        response_data = WaitlistEntryList(items=[_convert_waitlist_entry_to_schema(entry) for entry in entries])
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise _internal_error("Unexpected error in waitlist listing", {"slot_id": request.slot_id, "error": str(e)})


@router.post("/promote", response_model=PromoteResponse)
async def promote_next(
    request: PromoteRequest,
    caller: Caller = AdminAuth,
    db: AsyncSession = DatabaseSession,
    clock=ClockDependency,
    outbox=OutboxDependency,
) -> JSONResponse:
    """
    Offer a free spot to the next waiting customer (internal operation).

    Does not reserve capacity. Returns ``promoted: false`` when the slot
    has no free spot or nobody is waiting.
    """
    waitlist_service = WaitlistService(db, clock, outbox)

    try:
        entry = await waitlist_service.promote_next(parse_uuid(request.slot_id, "slot"))
        response_data = PromoteResponse(
            promoted=entry is not None,
            entry=_convert_waitlist_entry_to_schema(entry) if entry is not None else None,
        )
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        raise _internal_error("Unexpected error in waitlist promotion", {"slot_id": request.slot_id, "error": str(e)})
