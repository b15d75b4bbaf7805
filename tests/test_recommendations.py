"""Recommendation orchestrator scenarios."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any

from app.config import Settings
from app.errors import UpstreamUnavailable
from app.models import Category, EventEnvelope, ScoredCandidate
from app.services.catalog_store import LibraryCatalog
from app.services.collections import CollectionLifecycleManager
from app.services.events import EventEmitter
from app.services.fallback import FallbackRecommender
from app.services.identity import IdentityResolver
from app.services.recommendations import RecommendationOrchestrator

from catalog_helpers import ManualClock, media, open_database, played, seed


class StaticSource:
    """Scoring source returning a fixed candidate list or raising."""

    def __init__(
        self,
        candidates: list[ScoredCandidate] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.candidates = candidates or []
        self.error = error
        self.calls: list[tuple[str, int]] = []

    async def fetch_recommendations(self, user_id: str, count: int = 20) -> list[ScoredCandidate]:
        self.calls.append((user_id, count))
        if self.error is not None:
            raise self.error
        return list(self.candidates)


class RecordingApi:
    """Event API stub remembering every envelope."""

    def __init__(self) -> None:
        self.events: list[EventEnvelope] = []

    async def send_event(self, envelope: EventEnvelope) -> bool:
        self.events.append(envelope)
        return True

    async def send_watch_event(self, event: Any) -> bool:  # pragma: no cover - unused here
        return True

    def types(self) -> list[str]:
        return [envelope.event_type for envelope in self.events]


def build(
    database,
    source: StaticSource,
    clock: ManualClock,
    **overrides: Any,
) -> tuple[RecommendationOrchestrator, CollectionLifecycleManager, RecordingApi]:
    settings = Settings(_env_file=None, **overrides)
    catalog = LibraryCatalog(database.session_factory)
    api = RecordingApi()
    events = EventEmitter(api, None, topic=settings.event_bus_topic)
    collections = CollectionLifecycleManager(catalog, settings, clock=clock)
    orchestrator = RecommendationOrchestrator(
        settings,
        catalog,
        source,
        IdentityResolver(catalog),
        FallbackRecommender(catalog),
        collections,
        events,
        clock=clock,
    )
    return orchestrator, collections, api


def nolan_items() -> list:
    """Fresh catalog rows per test; ORM instances can't be shared across databases."""

    return [
        media("inc", "Inception", tmdb="27205"),
        media("int", "Interstellar", tmdb="157336"),
        media("ten", "Tenet", tmdb="577922"),
        media("dun", "Dunkirk", tmdb="374720"),
        media("mem", "Memento", tmdb="77"),
        media("pre", "The Prestige", tmdb="1124"),
    ]


def test_name_only_candidate_lands_in_similar_collection(tmp_path) -> None:
    """A name-only Inception candidate resolves and names the similar collection."""

    async def runner() -> None:
        database = await open_database(tmp_path / "orchestrator.db")
        await seed(database, users=["u1"], items=nolan_items())
        source = StaticSource(
            [
                ScoredCandidate(name="Inception", media_type="movie", reason="similar to your favorites", score=0.9),
                ScoredCandidate(tmdbId=157336, reason="similar to your favorites", score=0.8),
                ScoredCandidate(itemId="ten", reason="similar to your favorites", score=0.7),
            ]
        )
        clock = ManualClock(datetime(2024, 3, 7, 3, 0))
        orchestrator, collections, api = build(database, source, clock)

        assert await orchestrator.generate_for_user("u1") is True

        stored = await collections.list_collections("u1")
        assert [collection.name for collection in stored] == [
            "AI Recommendations: More Like Your Favorites (Mar 07)"
        ]
        assert stored[0].member_ids == ["inc", "int", "ten"]
        assert "user_collection_created" in api.types()
        assert api.types()[-1] == "user_recommendations_generated"
        assert source.calls == [("u1", 50)]

        await database.dispose()

    asyncio.run(runner())


def test_running_twice_updates_instead_of_duplicating(tmp_path) -> None:
    """An unchanged candidate set keeps one collection per category."""

    async def runner() -> None:
        database = await open_database(tmp_path / "orchestrator.db")
        await seed(database, users=["u1"], items=nolan_items())
        source = StaticSource(
            [
                ScoredCandidate(itemId="inc", reason="Picked for you", score=0.6),
                ScoredCandidate(itemId="mem", reason="Picked for you", score=0.6),
                ScoredCandidate(itemId="pre", reason="Picked for you", score=0.6),
            ]
        )
        clock = ManualClock(datetime(2024, 3, 7, 3, 0))
        orchestrator, collections, _ = build(database, source, clock)

        assert await orchestrator.generate_for_user("u1")
        first = await collections.list_collections("u1")
        clock.advance(minutes=1)
        assert await orchestrator.generate_for_user("u1")
        second = await collections.list_collections("u1")

        assert len(first) == len(second) == 1
        assert second[0].id == first[0].id
        assert second[0].name == "AI Recommendations: Recommended for You (Mar 07)"
        assert second[0].member_ids == first[0].member_ids
        assert second[0].last_modified > first[0].last_modified

        await database.dispose()

    asyncio.run(runner())


def test_two_item_category_is_not_materialised(tmp_path) -> None:
    """Two resolved items stay below the threshold while three make it."""

    async def runner() -> None:
        database = await open_database(tmp_path / "orchestrator.db")
        await seed(database, users=["u1"], items=nolan_items())
        source = StaticSource(
            [
                ScoredCandidate(itemId="inc", reason="similar vibes", score=0.9),
                ScoredCandidate(itemId="int", reason="similar vibes", score=0.9),
                ScoredCandidate(itemId="ten", reason="trending", score=0.4),
                ScoredCandidate(itemId="dun", reason="trending", score=0.4),
                ScoredCandidate(itemId="mem", reason="trending", score=0.4),
            ]
        )
        orchestrator, collections, _ = build(database, source, ManualClock(datetime(2024, 3, 7)))

        assert await orchestrator.generate_for_user("u1")

        names = [collection.name for collection in await collections.list_collections("u1")]
        assert names == ["AI Recommendations: What's Trending (Mar 07)"]

        await database.dispose()

    asyncio.run(runner())


def test_collection_cap_keeps_best_groups(tmp_path) -> None:
    """Only the strongest groups are materialised when the cap is reached."""

    async def runner() -> None:
        database = await open_database(tmp_path / "orchestrator.db")
        await seed(database, users=["u1"], items=nolan_items())
        source = StaticSource(
            [
                ScoredCandidate(itemId="inc", reason="trending", score=0.3),
                ScoredCandidate(itemId="int", reason="trending", score=0.3),
                ScoredCandidate(itemId="ten", reason="trending", score=0.3),
                ScoredCandidate(itemId="dun", reason="new arrival", score=0.9),
                ScoredCandidate(itemId="mem", reason="new arrival", score=0.9),
                ScoredCandidate(itemId="pre", reason="new arrival", score=0.9),
            ]
        )
        orchestrator, collections, _ = build(
            database,
            source,
            ManualClock(datetime(2024, 3, 7)),
            MAX_RECOMMENDATION_COLLECTIONS=1,
        )

        assert await orchestrator.generate_for_user("u1")

        names = [collection.name for collection in await collections.list_collections("u1")]
        assert names == ["AI Recommendations: Fresh Picks (Mar 07)"]

        await database.dispose()

    asyncio.run(runner())


async def seed_drama_fan(database) -> None:
    await seed(
        database,
        users=["u1"],
        items=[
            media("w1", "Seen Drama", genres=["Drama"], rating=8.0),
            media("d1", "Drama One", genres=["Drama"], rating=7.0),
            media("d2", "Drama Two", genres=["Drama"], rating=6.0),
            media("d3", "Drama Three", genres=["Drama"], rating=5.0),
        ],
        user_data=[played("u1", "w1", favorite=True)],
    )


def test_empty_scoring_result_uses_fallback(tmp_path) -> None:
    """An empty scored set still produces collections from the library."""

    async def runner() -> None:
        database = await open_database(tmp_path / "orchestrator.db")
        await seed_drama_fan(database)
        orchestrator, collections, _ = build(database, StaticSource([]), ManualClock(datetime(2024, 3, 7)))

        assert await orchestrator.generate_for_user("u1")

        stored = await collections.list_collections("u1")
        assert [collection.name for collection in stored] == [
            "AI Recommendations: Recommended for You (Mar 07)"
        ]
        assert stored[0].member_ids == ["d1", "d2", "d3"]

        await database.dispose()

    asyncio.run(runner())


def test_fallback_mixing_genre_and_rating_tiers_makes_one_collection(tmp_path) -> None:
    """Genre matches and highly rated backfill land in the same collection."""

    async def runner() -> None:
        database = await open_database(tmp_path / "orchestrator.db")
        await seed(
            database,
            users=["u1"],
            items=[
                media("w1", "Seen Drama", genres=["Drama"], rating=8.0),
                media("d1", "Drama One", genres=["Drama"], rating=6.0),
                media("d2", "Drama Two", genres=["Drama"], rating=5.0),
                media("x1", "Top Western", genres=["Western"], rating=9.0),
                media("x2", "Top Comedy", genres=["Comedy"], rating=8.5),
            ],
            user_data=[played("u1", "w1", favorite=True)],
        )
        orchestrator, collections, api = build(database, StaticSource([]), ManualClock(datetime(2024, 3, 7)))

        assert await orchestrator.generate_for_user("u1")

        stored = await collections.list_collections("u1")
        assert [collection.name for collection in stored] == [
            "AI Recommendations: Recommended for You (Mar 07)"
        ]
        assert stored[0].member_ids == ["d1", "d2", "x1", "x2"]
        assert api.types() == ["user_collection_created", "user_recommendations_generated"]

        await database.dispose()

    asyncio.run(runner())


def test_upstream_failure_and_unresolvable_results_fall_back(tmp_path) -> None:
    """Errors and candidates that match nothing take the fallback path."""

    async def runner() -> None:
        database = await open_database(tmp_path / "orchestrator.db")
        await seed_drama_fan(database)
        clock = ManualClock(datetime(2024, 3, 7))
        failing, failing_collections, _ = build(
            database, StaticSource(error=UpstreamUnavailable("timeout")), clock
        )
        unknown, _, _ = build(
            database, StaticSource([ScoredCandidate(name="Not In Library", score=1.0)]), clock
        )

        assert await failing.generate_for_user("u1")
        assert await unknown.generate_for_user("u1")
        assert len(await failing_collections.list_collections("u1")) == 1

        await database.dispose()

    asyncio.run(runner())


def test_fallback_only_mode_skips_scoring_service(tmp_path) -> None:
    """Forced fallback never calls the scoring service."""

    async def runner() -> None:
        database = await open_database(tmp_path / "orchestrator.db")
        await seed_drama_fan(database)
        source = StaticSource([ScoredCandidate(itemId="d1", score=1.0)])
        orchestrator, _, _ = build(
            database, source, ManualClock(datetime(2024, 3, 7)), USE_FALLBACK_ONLY=True
        )

        assert await orchestrator.generate_for_user("u1")
        home = await orchestrator.get_home_screen_recommendations("u1")

        assert source.calls == []
        assert [item.internal_item_id for item in home] == ["d1", "d2", "d3"]

        await database.dispose()

    asyncio.run(runner())


def test_home_screen_fallback_depends_on_library(tmp_path) -> None:
    """Fallback rows are non-empty exactly when a qualifying unseen item exists."""

    async def runner() -> None:
        database = await open_database(tmp_path / "orchestrator.db")
        await seed(
            database,
            users=["u1", "u2"],
            items=[
                media("w1", "Seen", genres=["Drama"], rating=9.0),
                media("low", "Low Rated", genres=["Horror"], rating=5.0),
            ],
            user_data=[played("u1", "w1"), played("u2", "w1")],
        )
        orchestrator, _, _ = build(database, StaticSource([]), ManualClock(datetime(2024, 3, 7)))

        assert await orchestrator.get_home_screen_recommendations("u1") == []

        await seed(database, items=[media("top", "Top Rated", genres=["Western"], rating=7.0)])
        rows = await orchestrator.get_home_screen_recommendations("u1", limit=5)

        assert [item.internal_item_id for item in rows] == ["top"]

        await database.dispose()

    asyncio.run(runner())


def test_home_screen_filters_scored_candidates_by_category(tmp_path) -> None:
    """Category rows keep only matching candidates and never persist anything."""

    async def runner() -> None:
        database = await open_database(tmp_path / "orchestrator.db")
        await seed(database, users=["u1"], items=nolan_items())
        source = StaticSource(
            [
                ScoredCandidate(name="Inception", media_type="movie", reason="similar to your favorites", score=0.9),
                ScoredCandidate(itemId="dun", reason="trending", score=0.8),
                ScoredCandidate(itemId="mem", reason="popular right now", score=0.7),
                ScoredCandidate(itemId="pre", reason="one of your favorite directors", score=0.6),
                ScoredCandidate(itemId="ten", reason="hot pick", tags=("Thriller", "Trending"), score=0.5),
            ]
        )
        orchestrator, collections, _ = build(database, source, ManualClock(datetime(2024, 3, 7)))

        similar = await orchestrator.get_home_screen_recommendations("u1", Category.SIMILAR_CONTENT)
        trending = await orchestrator.get_home_screen_recommendations("u1", Category.TRENDING, 1)

        assert [item.internal_item_id for item in similar] == ["inc", "pre"]
        assert [item.internal_item_id for item in trending] == ["dun"]
        full_trending = await orchestrator.get_home_screen_recommendations("u1", Category.TRENDING)
        cast = await orchestrator.get_home_screen_recommendations("u1", Category.CAST_CREW)

        assert [item.internal_item_id for item in full_trending] == ["dun", "mem", "ten"]
        assert [item.internal_item_id for item in cast] == ["pre"]
        assert await collections.list_collections("u1") == []

        await database.dispose()

    asyncio.run(runner())


def test_unknown_user_returns_false(tmp_path) -> None:
    """Missing users are reported as nothing to show."""

    async def runner() -> None:
        database = await open_database(tmp_path / "orchestrator.db")
        source = StaticSource([ScoredCandidate(itemId="x", score=1.0)])
        orchestrator, _, _ = build(database, source, ManualClock(datetime(2024, 3, 7)))

        assert await orchestrator.generate_for_user("ghost") is False
        assert source.calls == []

        await database.dispose()

    asyncio.run(runner())


def test_generate_for_all_users_counts_outcomes(tmp_path) -> None:
    """Batch generation succeeds when any user succeeds and honours cancellation."""

    async def runner() -> None:
        database = await open_database(tmp_path / "orchestrator.db")
        await seed_drama_fan(database)
        await seed(database, users=["u2"])
        orchestrator, _, _ = build(database, StaticSource([]), ManualClock(datetime(2024, 3, 7)))

        summary = await orchestrator.generate_for_all_users()
        cancel = asyncio.Event()
        cancel.set()
        cancelled = await orchestrator.generate_for_all_users(cancel)
        single = await orchestrator.trigger("u2")

        assert summary.success
        assert (summary.total, summary.succeeded, summary.failed) == (2, 1, 1)
        assert cancelled.skipped == 2 and not cancelled.success
        assert "skipped" in cancelled.message
        assert single.to_payload()["success"] is False

        await database.dispose()

    asyncio.run(runner())
