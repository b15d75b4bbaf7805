"""Client for the external recommendation scoring service."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..errors import ConfigurationMissing, UpstreamUnavailable
from ..models import (
    ContentMetadata,
    EventEnvelope,
    ScoredCandidate,
    SyncRecord,
    WatchEvent,
)

logger = logging.getLogger(__name__)


class ScoringServiceClient:
    """Thin wrapper around the scoring service HTTP API.

    Calls are never retried here; a failed call is retried by the next
    scheduled or manual trigger.
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        if not settings.scoring_service_url:
            raise ConfigurationMissing("ScoringServiceClient", "SCORING_SERVICE_URL")
        if not settings.scoring_api_key:
            raise ConfigurationMissing("ScoringServiceClient", "SCORING_API_KEY")
        self._settings = settings
        self._client = http_client

    def _headers(self) -> dict[str, str]:
        return {
            "X-API-Key": self._settings.scoring_api_key or "",
            "User-Agent": f"{self._settings.app_name}/1.0 (recollect)",
        }

    async def _post(self, path: str, payload: dict[str, Any]) -> httpx.Response:
        return await self._client.post(path, json=payload, headers=self._headers())

    async def sync_user(self, record: SyncRecord) -> bool:
        """Push a user's watch history and ratings."""

        try:
            response = await self._post("/api/sync/user", record.to_wire())
        except httpx.HTTPError as exc:
            logger.warning("Error syncing user data for user %s: %s", record.user_id, exc)
            return False
        if response.is_success:
            logger.info("Synced user data for user %s", record.user_id)
            return True
        logger.warning(
            "Failed to sync user data for user %s. Status: %s",
            record.user_id,
            response.status_code,
        )
        return False

    async def sync_content(self, metadata: ContentMetadata) -> bool:
        """Push metadata for a single catalog item."""

        try:
            response = await self._post("/api/sync/content", metadata.to_wire())
        except httpx.HTTPError as exc:
            logger.warning(
                "Error syncing content metadata for item %s: %s", metadata.item_id, exc
            )
            return False
        if response.is_success:
            logger.debug("Synced content metadata for item %s", metadata.item_id)
            return True
        logger.warning(
            "Failed to sync content metadata for item %s. Status: %s",
            metadata.item_id,
            response.status_code,
        )
        return False

    async def fetch_recommendations(
        self, user_id: str, count: int = 20
    ) -> list[ScoredCandidate]:
        """Return scored candidates for the user.

        Raises ``UpstreamUnavailable`` when the service cannot be reached, times
        out, answers with a non-2xx status or returns something other than a
        JSON list.
        """

        try:
            response = await self._client.get(
                f"/api/recommendations/{user_id}",
                params={"count": count},
                headers=self._headers(),
            )
        except httpx.TimeoutException as exc:
            raise UpstreamUnavailable(
                f"Scoring service timed out for user {user_id}"
            ) from exc
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(
                f"Scoring service unreachable for user {user_id}: {exc}"
            ) from exc

        if not response.is_success:
            raise UpstreamUnavailable(
                f"Scoring service returned {response.status_code} for user {user_id}"
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise UpstreamUnavailable("Scoring service returned non-JSON content") from exc
        if isinstance(data, dict):
            key = next((k for k in ("recommendations", "items") if k in data), None)
            data = data[key] if key is not None else None
        if not isinstance(data, list):
            raise UpstreamUnavailable("Unexpected recommendation payload structure")

        candidates: list[ScoredCandidate] = []
        for entry in data:
            if not isinstance(entry, dict):
                continue
            try:
                candidates.append(ScoredCandidate.model_validate(entry))
            except ValidationError as exc:
                logger.debug("Skipping malformed candidate %s: %s", entry, exc)
        logger.info("Retrieved %s recommendations for user %s", len(candidates), user_id)
        return candidates

    async def send_watch_event(self, event: WatchEvent) -> bool:
        try:
            response = await self._post("/api/events/watch", event.to_wire())
        except httpx.HTTPError as exc:
            logger.warning(
                "Error sending watch event for user %s, item %s: %s",
                event.user_id,
                event.item_id,
                exc,
            )
            return False
        if response.is_success:
            logger.debug(
                "Sent watch event for user %s, item %s", event.user_id, event.item_id
            )
            return True
        logger.warning("Failed to send watch event. Status: %s", response.status_code)
        return False

    async def send_event(self, envelope: EventEnvelope) -> bool:
        try:
            response = await self._post("/api/events", envelope.to_wire())
        except httpx.HTTPError as exc:
            logger.warning("Error sending %s event: %s", envelope.event_type, exc)
            return False
        if response.is_success:
            return True
        logger.warning(
            "Failed to send %s event. Status: %s",
            envelope.event_type,
            response.status_code,
        )
        return False

    async def check_health(self) -> bool:
        try:
            response = await self._client.get("/api/health", headers=self._headers())
        except httpx.HTTPError as exc:
            logger.warning("Error testing connection to scoring service: %s", exc)
            return False
        healthy = response.is_success
        logger.info("Connection test %s", "successful" if healthy else "failed")
        return healthy


class UnconfiguredScoringService:
    """Stands in for the scoring client when its settings are missing.

    Recommendation fetches raise ``UpstreamUnavailable`` so callers take the
    fallback path; sync pushes and the health check report failure.
    """

    def __init__(self, reason: str):
        self.reason = reason

    async def fetch_recommendations(
        self, user_id: str, count: int = 20
    ) -> list[ScoredCandidate]:
        raise UpstreamUnavailable(f"Scoring service not configured: {self.reason}")

    async def sync_user(self, record: SyncRecord) -> bool:
        logger.debug("Skipping user sync for %s: %s", record.user_id, self.reason)
        return False

    async def sync_content(self, metadata: ContentMetadata) -> bool:
        return False

    async def check_health(self) -> bool:
        logger.info("Connection test skipped: %s", self.reason)
        return False
