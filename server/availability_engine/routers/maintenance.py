"""Maintenance router: on-demand runs of the scheduled sweeps (admin only)."""

import logging

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import AdminAuth, Caller, ClockDependency, DatabaseSession, OutboxDependency
from ..core.exceptions import ProblemDetailsException
from ..schemas.common import PROBLEM_RESPONSES
from ..schemas.maintenance import CompletionSweepResponse, ExpirySweepResponse, GenerationSweepResponse
from ..services.maintenance_service import MaintenanceService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/maintenance", tags=["maintenance"], responses=PROBLEM_RESPONSES)


@router.post("/generate-slots", response_model=GenerationSweepResponse)
async def run_generation_sweep(
    caller: Caller = AdminAuth,
    db: AsyncSession = DatabaseSession,
    clock=ClockDependency,
    outbox=OutboxDependency,
) -> JSONResponse:
    """Extend every active rule's slots over its horizon."""
    service = MaintenanceService(db, clock, outbox)

    try:
        summary = await service.generate_slots()
        response_data = GenerationSweepResponse(
            rules_processed=summary.rules_processed,
            slots_created=summary.slots_created,
            failed_rule_ids=[str(rule_id) for rule_id in summary.failed_rule_ids],
        )
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error("Unexpected error in generation sweep", extra={"error": str(e)}, exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/expire-waitlist", response_model=ExpirySweepResponse)
async def run_expiry_sweep(
    caller: Caller = AdminAuth,
    db: AsyncSession = DatabaseSession,
    clock=ClockDependency,
    outbox=OutboxDependency,
) -> JSONResponse:
    """Expire lapsed waitlist offers and offer the spots to the next in line."""
    service = MaintenanceService(db, clock, outbox)

    try:
        result = await service.process_waitlist_expiry()
        response_data = ExpirySweepResponse(
            expired_count=result.expired_count,
            affected_slot_ids=[str(slot_id) for slot_id in result.affected_slot_ids],
            promoted_count=result.promoted_count,
        )
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error("Unexpected error in waitlist expiry sweep", extra={"error": str(e)}, exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/complete-slots", response_model=CompletionSweepResponse)
async def run_completion_sweep(
    caller: Caller = AdminAuth,
    db: AsyncSession = DatabaseSession,
    clock=ClockDependency,
    outbox=OutboxDependency,
) -> JSONResponse:
    """Mark active slots that have ended as completed."""
    service = MaintenanceService(db, clock, outbox)

    try:
        completed = await service.mark_past_slots_completed()
        response_data = CompletionSweepResponse(completed_count=completed)
        return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error("Unexpected error in completion sweep", extra={"error": str(e)}, exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")
