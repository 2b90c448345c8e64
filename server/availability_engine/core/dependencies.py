"""FastAPI dependencies for database sessions, authentication, time and notifications."""

from dataclasses import dataclass, field
from typing import AsyncGenerator, Optional

import jwt
from fastapi import Depends, Header
from jwt import PyJWTError
from sqlalchemy.ext.asyncio import AsyncSession

from ..services.notifications import NotificationOutbox, notification_outbox
from .clock import Clock, system_clock
from .config import settings
from .database import get_async_session
from .exceptions import AuthenticationError, AuthorizationError

VENDOR_ROLES = frozenset({"vendor", "admin"})


@dataclass(frozen=True)
class Caller:
    """The authenticated principal behind a request."""

    user_id: str
    roles: tuple[str, ...] = field(default_factory=tuple)
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return "admin" in self.roles

    @property
    def is_vendor(self) -> bool:
        return bool(VENDOR_ROLES.intersection(self.roles))


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Database dependency that provides async database sessions.

    Yields:
        AsyncSession: Database session
    """
    async for session in get_async_session():
        yield session


def decode_token(token: str) -> Caller:
    """
    Decode an HS256 bearer token into a Caller.

    Raises:
        AuthenticationError: If the token is invalid, expired or has no subject
    """
    try:
        payload = jwt.decode(token, settings.bearer_token_secret, algorithms=["HS256"])
    except PyJWTError as e:
        raise AuthenticationError(detail=f"Token validation failed: {e}")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError(detail="Invalid token payload")

    roles = payload.get("roles") or []
    if isinstance(roles, str):
        roles = [roles]

    return Caller(user_id=str(user_id), roles=tuple(roles), email=payload.get("email"))


async def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization")
) -> Caller:
    """
    Authentication dependency that validates Bearer tokens.

    Raises:
        AuthenticationError: If the header is missing or malformed, or the token is invalid
    """
    if not authorization:
        raise AuthenticationError(detail="Authorization header missing")

    try:
        scheme, token = authorization.split()
    except ValueError:
        raise AuthenticationError(detail="Invalid authorization header format")

    if scheme.lower() != "bearer":
        raise AuthenticationError(detail="Invalid authentication scheme")

    return decode_token(token)


async def require_vendor(caller: Caller = Depends(get_current_user)) -> Caller:
    """Restrict an endpoint to vendors and admins."""
    if not caller.is_vendor:
        raise AuthorizationError(
            detail="Vendor role required",
            required_permissions=sorted(VENDOR_ROLES),
        )
    return caller


async def require_admin(caller: Caller = Depends(get_current_user)) -> Caller:
    """Restrict an endpoint to admins (maintenance sweeps)."""
    if not caller.is_admin:
        raise AuthorizationError(detail="Admin role required", required_permissions=["admin"])
    return caller


def get_clock() -> Clock:
    """Current time source; overridden in tests with a FrozenClock."""
    return system_clock


def get_outbox() -> NotificationOutbox:
    """Post-commit notification outbox."""
    return notification_outbox


DatabaseSession = Depends(get_db)
RequiredAuth = Depends(get_current_user)
VendorAuth = Depends(require_vendor)
AdminAuth = Depends(require_admin)
ClockDependency = Depends(get_clock)
OutboxDependency = Depends(get_outbox)
