"""Scheduler timing and pass composition tests."""

from __future__ import annotations

import asyncio
from datetime import datetime, time
from typing import cast

from app.config import Settings
from app.scheduler import RecommendationScheduler, seconds_until
from app.services.recommendations import GenerationSummary, RecommendationOrchestrator
from app.services.sync import SyncOrchestrator, SyncReport


def test_seconds_until_later_today_and_tomorrow() -> None:
    """The next run is today when still ahead, otherwise tomorrow."""

    assert seconds_until(time(3, 0), datetime(2024, 3, 7, 2, 30)) == 30 * 60
    assert seconds_until(time(3, 0), datetime(2024, 3, 7, 3, 0)) == 24 * 3600
    assert seconds_until(time(3, 0), datetime(2024, 3, 7, 23, 0)) == 4 * 3600


class DummySync(SyncOrchestrator):
    """Sync stub counting trigger calls."""

    def __init__(self) -> None:  # pragma: no cover - nothing to initialise
        self.calls = 0

    async def trigger_sync(self, cancel_event=None) -> SyncReport:  # type: ignore[override]
        self.calls += 1
        return SyncReport(success=True, message="ok")


class DummyRecommendations(RecommendationOrchestrator):
    """Recommendation stub recording the cancel event it received."""

    def __init__(self) -> None:  # pragma: no cover - nothing to initialise
        self.events: list[asyncio.Event | None] = []

    async def generate_for_all_users(self, cancel_event=None) -> GenerationSummary:  # type: ignore[override]
        self.events.append(cancel_event)
        return GenerationSummary(total=1, succeeded=1)


def test_run_pass_syncs_then_generates() -> None:
    """A pass syncs first and generates only when auto-create is enabled."""

    async def runner() -> None:
        sync, recommendations = DummySync(), DummyRecommendations()
        enabled = RecommendationScheduler(Settings(_env_file=None), sync, recommendations)
        disabled = RecommendationScheduler(
            Settings(_env_file=None, AUTO_CREATE_COLLECTIONS=False), sync, recommendations
        )

        await enabled.run_pass()
        await disabled.run_pass()

        assert sync.calls == 2
        assert len(recommendations.events) == 1
        assert isinstance(recommendations.events[0], asyncio.Event)

    asyncio.run(runner())


def test_startup_pass_then_daily_wait() -> None:
    """The loop runs a delayed startup pass and then waits for the daily slot."""

    async def runner() -> None:
        sleeps: list[float] = []
        daily_wait = asyncio.Event()

        async def fake_sleep(seconds: float) -> None:
            sleeps.append(seconds)
            if len(sleeps) > 1:
                daily_wait.set()
                await asyncio.Event().wait()

        sync, recommendations = DummySync(), DummyRecommendations()
        scheduler = RecommendationScheduler(
            Settings(_env_file=None, STARTUP_DELAY_SECONDS=5, DAILY_RUN_TIME="03:00"),
            sync,
            recommendations,
            now=lambda: datetime(2024, 3, 7, 1, 0),
            sleep=fake_sleep,
        )

        await scheduler.start()
        await asyncio.wait_for(daily_wait.wait(), timeout=1)
        assert scheduler.running
        await scheduler.stop()

        assert sleeps == [5, 2 * 3600]
        assert sync.calls == 1
        assert len(recommendations.events) == 1
        assert not scheduler.running

    asyncio.run(runner())


def test_disabled_scheduler_never_starts() -> None:
    """With the scheduler disabled start() is a no-op."""

    async def runner() -> None:
        scheduler = RecommendationScheduler(
            Settings(_env_file=None, ENABLE_SCHEDULER=False),
            cast(SyncOrchestrator, object()),
            cast(RecommendationOrchestrator, object()),
        )

        await scheduler.start()
        assert not scheduler.running
        await scheduler.stop()

    asyncio.run(runner())
