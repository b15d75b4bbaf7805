"""Turn host playback notifications into watch events."""

from __future__ import annotations

import logging

from pydantic import field_validator

from ..models import WatchEvent, WatchEventType, WireModel
from ..utils import clean_identifier
from .events import EventEmitter

logger = logging.getLogger(__name__)

TICKS_PER_SECOND = 10_000_000

HOST_EVENT_NAMES = {
    "start": "play_start",
    "playbackstart": "play_start",
    "stop": "play_stop",
    "playbackstop": "play_stop",
    "unpause": "resume",
    "playbackunpause": "resume",
    "playbackpause": "pause",
    "playbackprogress": "progress",
}


class PlaybackNotification(WireModel):
    """Playback session change reported by the host."""

    event_type: WatchEventType
    user_id: str | None = None
    item_id: str | None = None
    position_ticks: int | None = None
    device_id: str | None = None
    device_name: str | None = None
    client_name: str | None = None

    @field_validator("event_type", mode="before")
    @classmethod
    def _map_host_names(cls, value: object) -> object:
        if isinstance(value, str):
            key = value.strip().replace("_", "").lower()
            if key in HOST_EVENT_NAMES:
                return HOST_EVENT_NAMES[key]
            return value.strip().lower()
        return value

    @field_validator("user_id", "item_id", mode="before")
    @classmethod
    def _clean_ids(cls, value: object) -> str | None:
        return clean_identifier(value)


def should_forward_progress(position_ticks: int | None, interval_seconds: int) -> bool:
    """True when the position falls in the first second of an interval window."""

    if interval_seconds <= 0:
        return True
    position_seconds = (position_ticks or 0) / TICKS_PER_SECOND
    return position_seconds % interval_seconds < 1


class PlaybackEventHandler:
    """Forwards playback notifications through the dual-sink emitter."""

    def __init__(self, events: EventEmitter, *, progress_interval_seconds: int = 30):
        self._events = events
        self._progress_interval = progress_interval_seconds

    async def handle(self, notification: PlaybackNotification) -> bool:
        """Emit a watch event; returns ``False`` when nothing was delivered."""

        try:
            if not notification.user_id or not notification.item_id:
                logger.warning(
                    "Ignoring %s notification without user or item", notification.event_type
                )
                return False
            if notification.event_type == "progress" and not should_forward_progress(
                notification.position_ticks, self._progress_interval
            ):
                return False

            event = WatchEvent(
                user_id=notification.user_id,
                item_id=notification.item_id,
                event_type=notification.event_type,
                position_ticks=notification.position_ticks,
                device_id=notification.device_id,
                device_name=notification.device_name,
                client_name=notification.client_name,
            )
            delivered = await self._events.emit_watch_event(event)
        except Exception:
            logger.exception("Error processing %s event", notification.event_type)
            return False
        logger.debug(
            "Processed %s event for user %s, item %s",
            event.event_type,
            event.user_id,
            event.item_id,
        )
        return delivered
