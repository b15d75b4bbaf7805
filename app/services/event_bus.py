"""Message-bus publishing through a Kafka REST proxy."""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from ..config import Settings
from ..errors import ConfigurationMissing
from ..models import EventEnvelope

logger = logging.getLogger(__name__)

REST_PROXY_CONTENT_TYPE = "application/vnd.kafka.json.v2+json"


class MessageBusPublisher(Protocol):
    async def publish(self, topic: str, key: str, envelope: EventEnvelope) -> bool: ...


class RestProxyPublisher:
    """Publishes JSON records via the Kafka REST proxy v2 API."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        if not settings.event_bus_url:
            raise ConfigurationMissing("RestProxyPublisher", "EVENT_BUS_URL")
        self._settings = settings
        self._client = http_client

    async def publish(self, topic: str, key: str, envelope: EventEnvelope) -> bool:
        body = {"records": [{"key": key, "value": envelope.to_wire()}]}
        headers = {
            "Content-Type": REST_PROXY_CONTENT_TYPE,
            "Accept": "application/vnd.kafka.v2+json",
        }
        try:
            response = await self._client.post(f"/topics/{topic}", json=body, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("Error sending %s event to the bus: %s", envelope.event_type, exc)
            return False
        if not response.is_success:
            logger.warning(
                "Failed to send %s event to the bus. Status: %s",
                envelope.event_type,
                response.status_code,
            )
            return False

        # The proxy answers 200 even when individual records fail.
        try:
            offsets = response.json().get("offsets", [])
        except (ValueError, AttributeError):
            offsets = []
        failed = [entry for entry in offsets if isinstance(entry, dict) and entry.get("error")]
        if failed:
            logger.warning(
                "Bus rejected %s event: %s", envelope.event_type, failed[0].get("error")
            )
            return False
        logger.debug("Sent %s event to the bus", envelope.event_type)
        return True
