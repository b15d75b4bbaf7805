"""Catalog-only recommendations used when the scoring service has nothing."""

from __future__ import annotations

import logging
from collections import Counter
from typing import Iterable

from ..models import Category, ItemQuery, MediaItem, ScoredCandidate
from ..utils import coerce_int
from .catalog_store import CatalogStore

logger = logging.getLogger(__name__)

FAVORITE_HISTORY_WINDOW = 50
FAVORITE_RATING_THRESHOLD = 4.0
FAVORITE_GENRE_COUNT = 5
GENERAL_GENRE_COUNT = 3
SIMILAR_GENRE_COUNT = 2
HIGHLY_RATED_THRESHOLD = 7.0
SIMILAR_RATING_THRESHOLD = 6.0

# One reason for a whole fallback pass so the set classifies as a single
# FOR_YOU group instead of splitting per tier.
LIBRARY_PICK_REASON = "Picked from your library"


class FallbackRecommender:
    """Heuristic recommendations built from the user's own library.

    Every public method returns a list and never raises. Failures degrade to
    an emptier result.
    """

    def __init__(self, catalog: CatalogStore):
        self._catalog = catalog

    async def favorite_genres(self, user_id: str) -> list[str]:
        """Top genres among recently watched favorites or well-rated items."""

        try:
            watched = await self._catalog.list_recently_watched(
                user_id, FAVORITE_HISTORY_WINDOW
            )
        except Exception:
            logger.exception("Failed to load watch history for user %s", user_id)
            return []

        counts: Counter[str] = Counter()
        for item in watched:
            try:
                data = await self._catalog.get_user_item_data(user_id, item.id)
            except Exception as exc:
                logger.debug("Skipping %s while ranking genres: %s", item.id, exc)
                continue
            if data is None:
                continue
            if data.is_favorite or (data.rating or 0) >= FAVORITE_RATING_THRESHOLD:
                counts.update(item.genres)
        # most_common keeps first-seen order between equal counts.
        return [genre for genre, _ in counts.most_common(FAVORITE_GENRE_COUNT)]

    async def recommend(self, user_id: str, limit: int) -> list[MediaItem]:
        return await self._general(user_id, limit)

    async def trending(self, user_id: str, limit: int) -> list[MediaItem]:
        """Most recently added items the user has not seen."""

        try:
            if not await self._user_exists(user_id):
                return []
            return await self._list_unseen(
                user_id, ItemQuery(order_by="date_created"), limit
            )
        except Exception:
            logger.exception("Failed to build trending fallback for user %s", user_id)
            return []

    async def similar_to_favorites(self, user_id: str, limit: int) -> list[MediaItem]:
        """Unseen, well-rated items from the user's two favorite genres."""

        try:
            if not await self._user_exists(user_id):
                return []
            genres = await self.favorite_genres(user_id)
            if not genres:
                logger.info(
                    "No favorite genres for user %s; using recently added items", user_id
                )
                return await self.trending(user_id, limit)
            query = ItemQuery(
                genres=tuple(genres[:SIMILAR_GENRE_COUNT]),
                min_community_rating=SIMILAR_RATING_THRESHOLD,
                order_by="community_rating",
            )
            return await self._list_unseen(user_id, query, limit)
        except Exception:
            logger.exception("Failed to build similar-to-favorites for user %s", user_id)
            return []

    async def for_category(
        self, category: Category | None, user_id: str, limit: int
    ) -> list[MediaItem]:
        """Pick the heuristic that best stands in for a home-screen row."""

        if category in (Category.SIMILAR_CONTENT, Category.GENRE_RECOMMENDATIONS):
            return await self.similar_to_favorites(user_id, limit)
        if category in (Category.TRENDING, Category.NEW_RELEASES):
            return await self.trending(user_id, limit)
        return await self.recommend(user_id, limit)

    async def as_candidates(self, user_id: str, limit: int) -> list[ScoredCandidate]:
        """General recommendations wrapped as candidates sharing one reason.

        Tags are left empty so the genre rule cannot pull part of the set
        into another category.
        """

        return [
            ScoredCandidate(
                internal_item_id=item.id,
                external_catalog_id=coerce_int(item.provider_id("Tmdb")),
                name=item.name,
                media_type=item.media_type,
                score=round((item.community_rating or 0.0) / 10, 3),
                reason=LIBRARY_PICK_REASON,
            )
            for item in await self._general(user_id, limit)
        ]

    async def _general(self, user_id: str, limit: int) -> list[MediaItem]:
        if limit <= 0:
            return []
        picks: list[MediaItem] = []
        try:
            if not await self._user_exists(user_id):
                return []

            genres = await self.favorite_genres(user_id)
            if genres:
                top = tuple(genres[:GENERAL_GENRE_COUNT])
                picks.extend(
                    await self._list_unseen(
                        user_id, ItemQuery(genres=top, order_by="community_rating"), limit
                    )
                )

            if len(picks) < limit:
                picks.extend(
                    await self._list_unseen(
                        user_id,
                        ItemQuery(
                            min_community_rating=HIGHLY_RATED_THRESHOLD,
                            order_by="community_rating",
                        ),
                        limit - len(picks),
                        exclude=(item.id for item in picks),
                    )
                )
        except Exception:
            logger.exception("Failed to build fallback recommendations for user %s", user_id)
        logger.info("Built %s fallback recommendations for user %s", len(picks), user_id)
        return picks

    async def _user_exists(self, user_id: str) -> bool:
        user = await self._catalog.get_user(user_id)
        if user is None:
            logger.warning("User %s not found", user_id)
            return False
        return True

    async def _list_unseen(
        self,
        user_id: str,
        query: ItemQuery,
        limit: int,
        *,
        exclude: Iterable[str] = (),
    ) -> list[MediaItem]:
        skip = set(exclude)
        unseen: list[MediaItem] = []
        for item in await self._catalog.query_items(query):
            if len(unseen) >= limit:
                break
            if item.id in skip or await self._has_watched(user_id, item):
                continue
            unseen.append(item)
        return unseen

    async def _has_watched(self, user_id: str, item: MediaItem) -> bool:
        try:
            data = await self._catalog.get_user_item_data(user_id, item.id)
        except Exception as exc:
            logger.debug("Treating %s as unseen for user %s: %s", item.id, user_id, exc)
            return False
        return data is not None and data.watched
