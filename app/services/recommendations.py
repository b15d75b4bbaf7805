"""Per-user recommendation passes and home-screen rows."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Protocol

from ..categories import collection_name, group_candidates, matches_home_row
from ..config import Settings
from ..errors import UpstreamUnavailable
from ..models import Category, ResolvedItem, ScoredCandidate
from ..utils import utcnow
from .catalog_store import CatalogStore
from .collections import CollectionLifecycleManager
from .events import EventEmitter
from .fallback import FallbackRecommender
from .identity import IdentityResolver

logger = logging.getLogger(__name__)


class RecommendationSource(Protocol):
    async def fetch_recommendations(
        self, user_id: str, count: int = 20
    ) -> list[ScoredCandidate]: ...


@dataclass(slots=True)
class GenerationSummary:
    """Outcome of a recommendation pass over one or more users."""

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0

    @property
    def success(self) -> bool:
        return self.succeeded > 0

    @property
    def message(self) -> str:
        text = (
            f"Generated recommendations for {self.succeeded}/{self.total} users"
            if self.success
            else f"No recommendations generated for {self.total} users"
        )
        if self.skipped:
            text += f" ({self.skipped} skipped after cancellation)"
        return text

    def to_payload(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
        }


class RecommendationOrchestrator:
    """Runs fetch, resolve, group, materialise and prune for each user."""

    def __init__(
        self,
        settings: Settings,
        catalog: CatalogStore,
        source: RecommendationSource,
        resolver: IdentityResolver,
        fallback: FallbackRecommender,
        collections: CollectionLifecycleManager,
        events: EventEmitter,
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._settings = settings
        self._catalog = catalog
        self._source = source
        self._resolver = resolver
        self._fallback = fallback
        self._collections = collections
        self._events = events
        self._clock = clock

    async def generate_for_user(self, user_id: str) -> bool:
        """Refresh the user's recommendation collections.

        Returns ``True`` when at least one collection was created or updated.
        ``False`` only means there was nothing to show this round.
        """

        try:
            return await self._generate(user_id)
        except Exception:
            logger.exception("Error generating recommendations for user %s", user_id)
            return False

    async def _generate(self, user_id: str) -> bool:
        logger.info("Generating recommendations for user %s", user_id)
        if await self._catalog.get_user(user_id) is None:
            logger.warning("User %s not found", user_id)
            return False

        count = self._settings.recommendation_fetch_count
        resolved: list[tuple[ScoredCandidate, ResolvedItem]] = []
        if not self._settings.use_fallback_only:
            candidates = await self._fetch(user_id, count)
            resolved = await self._resolver.resolve_all(candidates, user_id)
            if candidates and not resolved:
                logger.info(
                    "None of %s candidates resolved for user %s", len(candidates), user_id
                )
        if not resolved:
            logger.info("Using fallback recommendations for user %s", user_id)
            fallback = await self._fallback.as_candidates(user_id, count)
            resolved = await self._resolver.resolve_all(fallback, user_id)
        if not resolved:
            logger.info("No recommendations available for user %s", user_id)
            return False

        limit = self._settings.max_recommendation_collections
        groups = group_candidates(resolved)[:limit]
        today = self._clock()
        created = 0
        for group in groups:
            name = collection_name(group.category, today)
            collection = await self._collections.create_or_update(name, group.items, user_id)
            if collection is None:
                continue
            created += 1
            await self._events.emit_user_event(
                "collection_created",
                user_id,
                {
                    "collectionId": collection.id,
                    "collectionName": collection.name,
                    "category": group.category.value,
                    "itemCount": len(group.items),
                },
            )

        await self._collections.cleanup(user_id, limit)
        await self._events.emit_user_event(
            "recommendations_generated",
            user_id,
            {"count": len(resolved), "collections": created},
        )
        logger.info(
            "Materialised %s recommendation collections for user %s", created, user_id
        )
        return created > 0

    async def generate_for_all_users(
        self, cancel_event: asyncio.Event | None = None
    ) -> GenerationSummary:
        """Run per-user passes concurrently; succeeds if any user succeeds.

        Setting ``cancel_event`` stops users that have not started yet. Work
        already committed for other users is kept.
        """

        try:
            users = await self._catalog.list_users()
        except Exception:
            logger.exception("Failed to list users for recommendation generation")
            return GenerationSummary()

        summary = GenerationSummary(total=len(users))
        semaphore = asyncio.Semaphore(self._settings.max_concurrency)

        async def run(user_id: str) -> bool | None:
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    return None
                return await self.generate_for_user(user_id)

        results = await asyncio.gather(*(run(user.id) for user in users))
        for result in results:
            if result is None:
                summary.skipped += 1
            elif result:
                summary.succeeded += 1
            else:
                summary.failed += 1
        logger.info("Completed recommendation generation: %s", summary.message)
        return summary

    async def trigger(self, user_id: str | None = None) -> GenerationSummary:
        """Manual entry point for one user or everyone."""

        if user_id is None:
            return await self.generate_for_all_users()
        ok = await self.generate_for_user(user_id)
        return GenerationSummary(total=1, succeeded=int(ok), failed=int(not ok))

    async def get_home_screen_recommendations(
        self,
        user_id: str,
        category: Category | None = None,
        limit: int | None = None,
    ) -> list[ResolvedItem]:
        """Resolved items for a home-screen row without touching collections."""

        limit = limit or self._settings.home_screen_limit
        if not self._settings.use_fallback_only:
            try:
                items = await self._scored_row(user_id, category, limit)
            except Exception:
                logger.exception("Error building home-screen row for user %s", user_id)
                items = []
            if items:
                logger.info(
                    "Retrieved %s scored recommendations for user %s", len(items), user_id
                )
                return items
            logger.info(
                "Scored recommendations unavailable, using fallback for user %s", user_id
            )
        fallback = await self._fallback.for_category(category, user_id, limit)
        return [item.to_resolved() for item in fallback[:limit]]

    async def _scored_row(
        self, user_id: str, category: Category | None, limit: int
    ) -> list[ResolvedItem]:
        count = limit if category is None else max(
            limit, self._settings.recommendation_fetch_count
        )
        candidates = await self._fetch(user_id, count)
        if category is not None:
            candidates = [c for c in candidates if matches_home_row(c, category)]
        resolved = await self._resolver.resolve_all(candidates, user_id)
        return [item for _, item in resolved][:limit]

    async def _fetch(self, user_id: str, count: int) -> list[ScoredCandidate]:
        try:
            return await self._source.fetch_recommendations(user_id, count)
        except UpstreamUnavailable as exc:
            logger.warning("Scoring service unavailable for user %s: %s", user_id, exc)
            return []
