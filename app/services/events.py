"""Best-effort telemetry delivered to the scoring service and the message bus."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Protocol

from ..models import EventEnvelope, WatchEvent
from .event_bus import MessageBusPublisher

logger = logging.getLogger(__name__)


class EventApi(Protocol):
    async def send_event(self, envelope: EventEnvelope) -> bool: ...

    async def send_watch_event(self, event: WatchEvent) -> bool: ...


class EventEmitter:
    """Sends every event to both sinks concurrently.

    Delivery counts as successful when either sink accepts the event. Failures
    are logged and never raised to the caller.
    """

    def __init__(
        self,
        api: EventApi | None,
        bus: MessageBusPublisher | None,
        *,
        topic: str,
        source: str = "recollect",
    ):
        self._api = api
        self._bus = bus
        self._topic = topic
        self._source = source

    def envelope(self, event_type: str, payload: dict[str, Any]) -> EventEnvelope:
        return EventEnvelope(event_type=event_type, source=self._source, payload=payload)

    @staticmethod
    def message_key(envelope: EventEnvelope) -> str:
        return f"{envelope.event_type}_{envelope.timestamp_utc:%Y%m%d%H%M%S}"

    async def emit(self, envelope: EventEnvelope) -> bool:
        """Deliver a lifecycle envelope to both sinks."""

        api_call = self._api.send_event(envelope) if self._api is not None else None
        return await self._deliver(envelope, api_call)

    async def emit_watch_event(self, event: WatchEvent) -> bool:
        """Deliver a playback interaction to both sinks."""

        envelope = self.envelope("watch_event", event.to_wire())
        api_call = self._api.send_watch_event(event) if self._api is not None else None
        return await self._deliver(envelope, api_call)

    async def emit_user_event(
        self, event_type: str, user_id: str, data: dict[str, Any] | None = None
    ) -> bool:
        payload = {"userId": user_id, "eventType": event_type, "data": data or {}}
        return await self.emit(self.envelope(f"user_{event_type}", payload))

    async def emit_content_event(
        self, event_type: str, item_id: str, data: dict[str, Any] | None = None
    ) -> bool:
        payload = {"itemId": item_id, "eventType": event_type, "data": data or {}}
        return await self.emit(self.envelope(f"content_{event_type}", payload))

    async def _deliver(
        self, envelope: EventEnvelope, api_call: Awaitable[bool] | None
    ) -> bool:
        sinks: list[str] = []
        calls: list[Awaitable[bool]] = []
        if api_call is not None:
            sinks.append("api")
            calls.append(api_call)
        if self._bus is not None:
            sinks.append("bus")
            calls.append(
                self._bus.publish(self._topic, self.message_key(envelope), envelope)
            )
        if not calls:
            logger.debug("No event sinks configured; dropping %s", envelope.event_type)
            return False

        results = await asyncio.gather(*calls, return_exceptions=True)
        delivered = False
        for sink, result in zip(sinks, results):
            if isinstance(result, Exception):
                logger.warning(
                    "Delivering %s event to %s failed: %s", envelope.event_type, sink, result
                )
            elif result:
                delivered = True
            else:
                logger.debug("%s sink did not accept %s event", sink, envelope.event_type)
        if not delivered:
            logger.warning("%s event was not delivered to any sink", envelope.event_type)
        return delivered
