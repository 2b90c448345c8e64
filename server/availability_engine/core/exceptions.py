"""Custom exceptions following RFC 9457 Problem Details for HTTP APIs."""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat() + "Z"


class ProblemDetailsException(HTTPException):
    """
    Base exception class following RFC 9457 Problem Details for HTTP APIs.

    https://tools.ietf.org/rfc/rfc9457.txt
    """

    def __init__(
        self,
        status_code: int,
        title: str,
        detail: Optional[str] = None,
        type_uri: Optional[str] = None,
        instance: Optional[str] = None,
        extensions: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize Problem Details exception.

        Args:
            status_code: HTTP status code
            title: Short, human-readable summary of the problem type
            detail: Human-readable explanation specific to this occurrence
            type_uri: URI reference that identifies the problem type
            instance: URI reference that identifies the specific occurrence
            extensions: Additional problem-specific information
            headers: HTTP headers to include in response
        """
        self.status_code = status_code
        self.title = title
        self.detail = detail
        self.type_uri = type_uri or f"about:blank#{status_code}"
        self.instance = instance
        self.extensions = extensions or {}

        # Create the problem details object
        self.problem_details = {
            "type": self.type_uri,
            "title": self.title,
            "status": self.status_code,
        }

        if self.detail:
            self.problem_details["detail"] = self.detail

        if self.instance:
            self.problem_details["instance"] = self.instance

        # Add extensions
        self.problem_details.update(self.extensions)

        super().__init__(
            status_code=status_code,
            detail=self.problem_details,
            headers=headers
        )

    def __str__(self) -> str:
        # HTTPException.__init__ replaces self.detail with the problem dict
        return self.problem_details.get("detail") or self.title


class ValidationError(ProblemDetailsException):
    """Exception for domain validation errors (malformed rule payloads, guest counts)."""

    def __init__(
        self,
        detail: str = "The request data failed validation",
        errors: Optional[Dict[str, Any]] = None,
        instance: Optional[str] = None,
    ):
        extensions: Dict[str, Any] = {"code": "VALIDATION_ERROR", "retryable": False}
        if errors:
            extensions["errors"] = errors

        super().__init__(
            status_code=400,
            title="Validation Error",
            detail=detail,
            type_uri="https://example.com/problems/validation-error",
            instance=instance,
            extensions=extensions,
        )


class AuthenticationError(ProblemDetailsException):
    """Exception for authentication errors."""

    def __init__(
        self,
        detail: str = "Authentication credentials are required",
        instance: Optional[str] = None,
    ):
        super().__init__(
            status_code=401,
            title="Authentication Required",
            detail=detail,
            type_uri="https://example.com/problems/authentication-required",
            instance=instance,
            headers={"WWW-Authenticate": "Bearer"},
        )


class AuthorizationError(ProblemDetailsException):
    """Exception for role and ownership errors."""

    def __init__(
        self,
        detail: str = "Insufficient permissions to access this resource",
        required_permissions: Optional[list] = None,
        instance: Optional[str] = None,
    ):
        extensions: Dict[str, Any] = {"retryable": False}
        if required_permissions:
            extensions["required_permissions"] = required_permissions

        super().__init__(
            status_code=403,
            title="Access Forbidden",
            detail=detail,
            type_uri="https://example.com/problems/access-forbidden",
            instance=instance,
            extensions=extensions,
        )


class NotFoundError(ProblemDetailsException):
    """Exception for resource not found errors."""

    def __init__(
        self,
        resource_type: str = "resource",
        resource_id: Optional[str] = None,
        detail: Optional[str] = None,
        instance: Optional[str] = None,
    ):
        if not detail:
            detail = f"The requested {resource_type}"
            if resource_id:
                detail += f" with ID '{resource_id}'"
            detail += " could not be found"

        extensions = {
            "resource_type": resource_type,
        }
        if resource_id:
            extensions["resource_id"] = resource_id

        super().__init__(
            status_code=404,
            title="Resource Not Found",
            detail=detail,
            type_uri="https://example.com/problems/resource-not-found",
            instance=instance,
            extensions=extensions,
        )


class ConflictError(ProblemDetailsException):
    """Exception for resource conflict errors."""

    def __init__(
        self,
        detail: str = "The request conflicts with the current state of the resource",
        conflicting_resource: Optional[Dict[str, Any]] = None,
        instance: Optional[str] = None,
        title: str = "Resource Conflict",
        code: Optional[str] = None,
    ):
        extensions: Dict[str, Any] = {}
        if conflicting_resource:
            extensions["conflicting_resource"] = conflicting_resource
        if code:
            extensions["code"] = code
            extensions["retryable"] = False

        super().__init__(
            status_code=409,
            title=title,
            detail=detail,
            type_uri="https://example.com/problems/resource-conflict",
            instance=instance,
            extensions=extensions,
        )


class InternalServerError(ProblemDetailsException):
    """Exception for internal server errors."""

    def __init__(
        self,
        detail: str = "An unexpected error occurred while processing the request",
        error_id: Optional[str] = None,
        instance: Optional[str] = None,
        code: Optional[str] = None,
    ):
        if not error_id:
            error_id = str(uuid.uuid4())

        extensions: Dict[str, Any] = {
            "error_id": error_id,
            "timestamp": _utc_timestamp(),
        }
        if code:
            extensions["code"] = code

        super().__init__(
            status_code=500,
            title="Internal Server Error",
            detail=detail,
            type_uri="https://example.com/problems/internal-server-error",
            instance=instance,
            extensions=extensions,
        )


# Capacity ledger exceptions

class CapacityExceededError(ConflictError):
    """Requested guests exceed the slot's remaining availability."""

    def __init__(self, slot_id: str, requested: int, available: int):
        spots = "spot" if available == 1 else "spots"
        super().__init__(
            title="Capacity Exceeded",
            detail=f"Only {available} {spots} remaining for this time slot",
            conflicting_resource={"slot_id": slot_id},
            code="CAPACITY_EXCEEDED",
        )
        self.slot_id = slot_id
        self.requested = requested
        self.available = available
        self.problem_details.update({
            "requested": requested,
            "available": available,
        })


class DeadlinePassedError(ConflictError):
    """The slot's booking deadline is in the past."""

    def __init__(self, slot_id: str, booking_deadline: datetime):
        super().__init__(
            title="Booking Deadline Passed",
            detail="Booking deadline has passed for this time slot",
            conflicting_resource={"slot_id": slot_id},
            code="DEADLINE_PASSED",
        )
        self.slot_id = slot_id
        self.booking_deadline = booking_deadline
        self.problem_details["booking_deadline"] = booking_deadline.isoformat()


class SlotNotBookableError(ConflictError):
    """The slot is blocked, cancelled or completed."""

    def __init__(self, slot_id: str, status: str):
        super().__init__(
            title="Slot Not Bookable",
            detail="This time slot is no longer available",
            conflicting_resource={"slot_id": slot_id, "status": status},
            code="SLOT_NOT_BOOKABLE",
        )
        self.slot_id = slot_id
        self.status = status


class InvalidSlotTransitionError(ConflictError):
    """A slot status change the lifecycle does not allow."""

    def __init__(self, slot_id: str, current: str, target: str, detail: Optional[str] = None):
        super().__init__(
            title="Invalid Slot Transition",
            detail=detail or f"Cannot move slot from '{current}' to '{target}'",
            conflicting_resource={"slot_id": slot_id, "status": current},
            code="INVALID_TRANSITION",
        )
        self.current = current
        self.target = target


class DuplicateSlotError(ConflictError):
    """A slot already exists for the listing, date and start time."""

    def __init__(self, listing_id: str, slot_date: str, start_time: str):
        super().__init__(
            title="Duplicate Slot",
            detail="A slot already exists for this date and time",
            conflicting_resource={
                "listing_id": listing_id,
                "date": slot_date,
                "start_time": start_time,
            },
            code="DUPLICATE_SLOT",
        )


class CapacityInvariantError(InternalServerError):
    """Slot counters no longer satisfy available = capacity - booked."""

    def __init__(self, capacity: int, booked: int, available: int):
        super().__init__(
            detail=(
                f"Capacity invariant violated: capacity={capacity}, "
                f"booked={booked}, available={available}"
            ),
            code="CAPACITY_INVARIANT",
        )


# Waitlist exceptions

class SlotHasAvailabilityError(ConflictError):
    """Joining a waitlist is only possible while the slot is full."""

    def __init__(self, slot_id: str, available: int):
        super().__init__(
            title="Slot Has Availability",
            detail="Slot has availability. Book directly instead of joining waitlist.",
            conflicting_resource={"slot_id": slot_id},
            code="SLOT_HAS_AVAILABILITY",
        )
        self.problem_details["available"] = available


class AlreadyOnWaitlistError(ConflictError):
    """The customer already has a waiting entry for the slot."""

    def __init__(self, slot_id: str, entry_id: str):
        super().__init__(
            title="Already On Waitlist",
            detail="You are already on the waitlist for this slot",
            conflicting_resource={"slot_id": slot_id, "waitlist_entry_id": entry_id},
            code="ALREADY_ON_WAITLIST",
        )


async def problem_details_handler(request: Request, exc: ProblemDetailsException) -> JSONResponse:
    """
    Exception handler for Problem Details exceptions.

    Args:
        request: FastAPI request object
        exc: Problem Details exception

    Returns:
        JSONResponse: Problem Details formatted response
    """
    content = dict(exc.problem_details)
    content.setdefault("instance", request.url.path)
    return JSONResponse(
        status_code=exc.status_code,
        content=content,
        headers=exc.headers,
        media_type="application/problem+json",
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render request schema violations as a 422 problem with a violations list."""
    violations = [
        {
            "path": ".".join(str(part) for part in error.get("loc", ()) if part != "body"),
            "message": error.get("msg", "Invalid value"),
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content={
            "type": "https://example.com/problems/validation-error",
            "title": "Unprocessable Entity",
            "status": 422,
            "detail": "The request body failed schema validation",
            "instance": request.url.path,
            "violations": violations,
        },
        media_type="application/problem+json",
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Generic exception handler that converts unhandled exceptions to Problem Details format.

    Args:
        request: FastAPI request object
        exc: Unhandled exception

    Returns:
        JSONResponse: Problem Details formatted response
    """
    error_id = str(uuid.uuid4())

    problem_details = {
        "type": "https://example.com/problems/internal-server-error",
        "title": "Internal Server Error",
        "status": 500,
        "detail": "An unexpected error occurred while processing the request",
        "instance": str(request.url),
        "error_id": error_id,
        "timestamp": _utc_timestamp(),
    }

    return JSONResponse(
        status_code=500,
        content=problem_details,
        media_type="application/problem+json",
    )
