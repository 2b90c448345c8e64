"""Unit tests for notification dispatch and the post-commit outbox."""

import json
from datetime import date, datetime

import httpx
import pytest

from availability_engine.core.observability import NOTIFICATION_FAILURES
from availability_engine.services import notifications
from availability_engine.services.notifications import (
    BOOKING_CANCELLED,
    SPOT_AVAILABLE,
    ListingContext,
    LoggingNotificationDispatcher,
    NotificationOutbox,
    WebhookNotificationDispatcher,
)

from conftest import RecordingDispatcher

LISTING = ListingContext(listing_id="listing-1", slot_date=date(2025, 3, 10), start_time="09:00", end_time="11:00")
EXPIRES = datetime(2025, 3, 4, 10, 0)


def _failures(event: str) -> float:
    return NOTIFICATION_FAILURES.labels(event=event)._value.get()


@pytest.mark.asyncio
async def test_webhook_posts_spot_available():
    received = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(json.loads(request.content))
        return httpx.Response(202)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        dispatcher = WebhookNotificationDispatcher("http://notify.test/events", client=client)
        await dispatcher.waitlist_spot_available("alice", "slot-1", EXPIRES, LISTING, "email", "alice@example.com")

    assert received == [
        {
            "event": SPOT_AVAILABLE,
            "channel": "email",
            "customer_id": "alice",
            "customer_email": "alice@example.com",
            "slot_id": "slot-1",
            "expires_at": "2025-03-04T10:00:00",
            "listing": {"listing_id": "listing-1", "date": "2025-03-10", "start_time": "09:00", "end_time": "11:00"},
        }
    ]


@pytest.mark.asyncio
async def test_webhook_error_status_raises():
    transport = httpx.MockTransport(lambda request: httpx.Response(503))

    async with httpx.AsyncClient(transport=transport) as client:
        dispatcher = WebhookNotificationDispatcher("http://notify.test/events", client=client)
        with pytest.raises(httpx.HTTPStatusError):
            await dispatcher.booking_cancelled("alice", "slot-1", "weather")


@pytest.mark.asyncio
async def test_outbox_sends_offer_on_both_channels():
    dispatcher = RecordingDispatcher()
    outbox = NotificationOutbox(dispatcher)

    outbox.spot_available("alice", "slot-1", EXPIRES, LISTING, "alice@example.com")
    await outbox.drain()

    assert sorted(event["channel"] for event in dispatcher.spot_available) == ["email", "in_app"]
    assert outbox.pending == 0


@pytest.mark.asyncio
async def test_outbox_failure_is_counted_not_raised():
    dispatcher = RecordingDispatcher()
    dispatcher.fail_for.add("alice")
    outbox = NotificationOutbox(dispatcher)
    before = _failures(BOOKING_CANCELLED)

    outbox.booking_cancelled("alice", "slot-1", "slot_cancelled:weather")
    outbox.booking_cancelled("bob", "slot-1", "slot_cancelled:weather")
    await outbox.drain()

    assert _failures(BOOKING_CANCELLED) == before + 1
    assert [event["customer_id"] for event in dispatcher.cancellations] == ["bob"]


class _EventRecorder:
    def __init__(self):
        self.events = []

    def info(self, event, **fields):
        self.events.append((event, fields))


@pytest.mark.asyncio
async def test_logging_dispatcher_accepts_events(monkeypatch):
    recorder = _EventRecorder()
    monkeypatch.setattr(notifications.logger, "logger", recorder)
    dispatcher = LoggingNotificationDispatcher()

    await dispatcher.waitlist_spot_available("alice", "slot-1", EXPIRES, LISTING, "in_app")
    await dispatcher.booking_cancelled("alice", "slot-1", "customer_cancelled", "See you soon")

    assert [event for event, _ in recorder.events] == [SPOT_AVAILABLE, BOOKING_CANCELLED]
    cancelled = recorder.events[1][1]
    assert cancelled["cancellation_message"] == "See you soon"
    assert cancelled["reason"] == "customer_cancelled"
