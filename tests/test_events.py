"""Dual-sink event delivery tests."""

from __future__ import annotations

import asyncio
from datetime import datetime

from app.models import EventEnvelope, WatchEvent
from app.services.events import EventEmitter


class StubApi:
    """Request/response sink returning a fixed outcome or raising."""

    def __init__(self, result: bool = True, error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.envelopes: list[EventEnvelope] = []
        self.watch_events: list[WatchEvent] = []

    async def send_event(self, envelope: EventEnvelope) -> bool:
        self.envelopes.append(envelope)
        if self.error is not None:
            raise self.error
        return self.result

    async def send_watch_event(self, event: WatchEvent) -> bool:
        self.watch_events.append(event)
        if self.error is not None:
            raise self.error
        return self.result


class StubBus:
    """Message-bus sink recording published records."""

    def __init__(self, result: bool = True, error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.published: list[tuple[str, str, EventEnvelope]] = []

    async def publish(self, topic: str, key: str, envelope: EventEnvelope) -> bool:
        self.published.append((topic, key, envelope))
        if self.error is not None:
            raise self.error
        return self.result


def test_either_sink_is_enough() -> None:
    """Delivery succeeds when one sink accepts, and fails only when both fail."""

    async def runner() -> None:
        envelope = EventEnvelope(event_type="user_synced")
        mixed = EventEmitter(StubApi(result=False), StubBus(), topic="events")
        raising = EventEmitter(StubApi(error=RuntimeError("down")), StubBus(result=True), topic="events")
        failing = EventEmitter(StubApi(result=False), StubBus(error=RuntimeError("down")), topic="events")

        assert await mixed.emit(envelope) is True
        assert await raising.emit(envelope) is True
        assert await failing.emit(envelope) is False

    asyncio.run(runner())


def test_bus_message_key_and_topic() -> None:
    """Bus records use the configured topic and a timestamped key."""

    async def runner() -> None:
        bus = StubBus()
        emitter = EventEmitter(None, bus, topic="media-recommendation-events")
        envelope = EventEnvelope(event_type="content_synced", timestamp_utc=datetime(2024, 3, 7, 3, 4, 5))

        assert await emitter.emit(envelope)

        topic, key, published = bus.published[0]
        assert topic == "media-recommendation-events"
        assert key == "content_synced_20240307030405"
        assert published is envelope

    asyncio.run(runner())


def test_user_and_content_events_are_prefixed() -> None:
    """Helper emitters prefix the event type and wrap the data."""

    async def runner() -> None:
        api = StubApi()
        emitter = EventEmitter(api, None, topic="events")

        await emitter.emit_user_event("synced", "u1", {"itemCount": 3})
        await emitter.emit_content_event("synced", "i1")

        assert [envelope.event_type for envelope in api.envelopes] == ["user_synced", "content_synced"]
        assert api.envelopes[0].payload == {"userId": "u1", "eventType": "synced", "data": {"itemCount": 3}}
        assert api.envelopes[1].payload["itemId"] == "i1"

    asyncio.run(runner())


def test_watch_events_use_dedicated_endpoint() -> None:
    """Watch events go to the watch endpoint and to the bus as watch_event."""

    async def runner() -> None:
        api = StubApi()
        bus = StubBus()
        emitter = EventEmitter(api, bus, topic="events")
        event = WatchEvent(user_id="u1", item_id="i1", event_type="pause", position_ticks=10)

        assert await emitter.emit_watch_event(event)

        assert api.watch_events == [event]
        assert api.envelopes == []
        _, key, envelope = bus.published[0]
        assert envelope.event_type == "watch_event"
        assert envelope.payload["eventType"] == "pause"
        assert key.startswith("watch_event_")

    asyncio.run(runner())


def test_no_sinks_configured() -> None:
    """Without any sink the event is dropped and reported undelivered."""

    async def runner() -> None:
        emitter = EventEmitter(None, None, topic="events")

        assert await emitter.emit(EventEnvelope(event_type="noop")) is False

    asyncio.run(runner())
