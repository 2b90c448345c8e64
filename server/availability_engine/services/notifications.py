"""Outbound notification events.

Events are handed to a :class:`NotificationDispatcher` through the
:class:`NotificationOutbox` only after the state change that caused them has
committed. Delivery runs in background tasks; a failed delivery is logged and
counted, never raised back into the operation that triggered it.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Optional, Protocol

import httpx

from ..core.config import settings
from ..core.observability import get_logger, metrics_collector

logger = get_logger(__name__)

SPOT_AVAILABLE = "waitlist_spot_available"
BOOKING_CANCELLED = "booking_cancelled"
SPOT_AVAILABLE_CHANNELS = ("in_app", "email")


@dataclass(frozen=True)
class ListingContext:
    """What the customer needs to recognise the offered slot."""

    listing_id: str
    slot_date: date
    start_time: str
    end_time: str

    def as_payload(self) -> dict[str, Any]:
        return {
            "listing_id": self.listing_id,
            "date": self.slot_date.isoformat(),
            "start_time": self.start_time,
            "end_time": self.end_time,
        }


class NotificationDispatcher(Protocol):
    """Delivery side of the notification collaborator."""

    async def waitlist_spot_available(
        self,
        customer_id: str,
        slot_id: str,
        expires_at: datetime,
        listing: ListingContext,
        channel: str,
        customer_email: Optional[str] = None,
    ) -> None:
        ...

    async def booking_cancelled(
        self,
        customer_id: str,
        slot_id: str,
        reason: str,
        message: Optional[str] = None,
        customer_email: Optional[str] = None,
    ) -> None:
        ...


class LoggingNotificationDispatcher:
    """Writes events to the structured log; the default when no webhook is set."""

    async def waitlist_spot_available(
        self,
        customer_id: str,
        slot_id: str,
        expires_at: datetime,
        listing: ListingContext,
        channel: str,
        customer_email: Optional[str] = None,
    ) -> None:
        logger.info(
            SPOT_AVAILABLE,
            customer_id=customer_id,
            slot_id=slot_id,
            expires_at=expires_at.isoformat(),
            channel=channel,
            **listing.as_payload(),
        )

    async def booking_cancelled(
        self,
        customer_id: str,
        slot_id: str,
        reason: str,
        message: Optional[str] = None,
        customer_email: Optional[str] = None,
    ) -> None:
        logger.info(
            BOOKING_CANCELLED,
            customer_id=customer_id,
            slot_id=slot_id,
            reason=reason,
            cancellation_message=message,
        )


class WebhookNotificationDispatcher:
    """POSTs each event as JSON to the notification service."""

    def __init__(self, url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.timeout = timeout
        self._client = client

    async def _post(self, payload: dict[str, Any]) -> None:
        if self._client is not None:
            response = await self._client.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(self.url, json=payload)
            response.raise_for_status()

    async def waitlist_spot_available(
        self,
        customer_id: str,
        slot_id: str,
        expires_at: datetime,
        listing: ListingContext,
        channel: str,
        customer_email: Optional[str] = None,
    ) -> None:
        await self._post({
            "event": SPOT_AVAILABLE,
            "channel": channel,
            "customer_id": customer_id,
            "customer_email": customer_email,
            "slot_id": slot_id,
            "expires_at": expires_at.isoformat(),
            "listing": listing.as_payload(),
        })

    async def booking_cancelled(
        self,
        customer_id: str,
        slot_id: str,
        reason: str,
        message: Optional[str] = None,
        customer_email: Optional[str] = None,
    ) -> None:
        await self._post({
            "event": BOOKING_CANCELLED,
            "customer_id": customer_id,
            "customer_email": customer_email,
            "slot_id": slot_id,
            "reason": reason,
            "message": message,
        })


@dataclass
class NotificationOutbox:
    """Fire-and-forget delivery of committed events."""

    dispatcher: NotificationDispatcher
    _pending: set[asyncio.Task] = field(default_factory=set, repr=False)

    def _enqueue(self, event: str, send: Callable[[], Awaitable[None]], **context: Any) -> None:
        task = asyncio.create_task(self._deliver(event, send, context))
        # Keep a reference until done so the task is not garbage collected
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, event: str, send: Callable[[], Awaitable[None]], context: dict) -> None:
        try:
            await send()
        except Exception as e:
            metrics_collector.record_notification_failure(event)
            logger.error("notification_delivery_failed", notification_event=event, error=str(e), **context)

    def spot_available(
        self,
        customer_id: str,
        slot_id: str,
        expires_at: datetime,
        listing: ListingContext,
        customer_email: Optional[str] = None,
    ) -> None:
        """Queue the in-app and the email offer for a promoted customer."""
        for channel in SPOT_AVAILABLE_CHANNELS:
            self._enqueue(
                SPOT_AVAILABLE,
                lambda channel=channel: self.dispatcher.waitlist_spot_available(
                    customer_id, slot_id, expires_at, listing, channel, customer_email
                ),
                customer_id=customer_id,
                slot_id=slot_id,
                channel=channel,
            )

    def booking_cancelled(
        self,
        customer_id: str,
        slot_id: str,
        reason: str,
        message: Optional[str] = None,
        customer_email: Optional[str] = None,
    ) -> None:
        self._enqueue(
            BOOKING_CANCELLED,
            lambda: self.dispatcher.booking_cancelled(customer_id, slot_id, reason, message, customer_email),
            customer_id=customer_id,
            slot_id=slot_id,
        )

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait until every queued delivery has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


def build_dispatcher() -> NotificationDispatcher:
    if settings.notification_webhook_url:
        return WebhookNotificationDispatcher(
            settings.notification_webhook_url,
            timeout=settings.notification_timeout_seconds,
        )
    return LoggingNotificationDispatcher()


notification_outbox = NotificationOutbox(build_dispatcher())
