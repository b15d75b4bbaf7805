"""Daily background pass combining sync and recommendation generation."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from datetime import datetime, time, timedelta
from typing import Awaitable, Callable

from .config import Settings
from .services.recommendations import RecommendationOrchestrator
from .services.sync import SyncOrchestrator

logger = logging.getLogger(__name__)


def seconds_until(run_time: time, now: datetime) -> float:
    """Seconds from ``now`` until the next occurrence of ``run_time``."""

    target = datetime.combine(now.date(), run_time)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


class RecommendationScheduler:
    """Runs an optional delayed startup pass and then one pass per day."""

    def __init__(
        self,
        settings: Settings,
        sync: SyncOrchestrator,
        recommendations: RecommendationOrchestrator,
        *,
        now: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._settings = settings
        self._sync = sync
        self._recommendations = recommendations
        self._now = now
        self._sleep = sleep
        self._task: asyncio.Task[None] | None = None
        self._cancel_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if not self._settings.enable_scheduler:
            logger.info("Recommendation scheduler disabled")
            return
        if self._task is None:
            self._cancel_event = asyncio.Event()
            self._task = asyncio.create_task(self._loop())
            logger.info(
                "Recommendation scheduler started; daily run at %s",
                self._settings.daily_run_time.strftime("%H:%M"),
            )

    async def stop(self) -> None:
        """Signal the running pass to stop and cancel the loop."""

        self._cancel_event.set()
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def run_pass(self) -> None:
        """Sync everything, then refresh collections when enabled."""

        cancel_event = self._cancel_event
        report = await self._sync.trigger_sync(cancel_event)
        logger.info("Scheduled sync finished: %s", report.message)
        if cancel_event.is_set():
            logger.info("Scheduled pass cancelled after sync")
            return
        if not self._settings.auto_create_collections:
            return
        summary = await self._recommendations.generate_for_all_users(cancel_event)
        logger.info("Scheduled generation finished: %s", summary.message)

    async def _loop(self) -> None:
        delay = self._settings.startup_delay_seconds
        if delay > 0:
            await self._sleep(delay)
            await self._safe_pass()
        while True:
            wait = seconds_until(self._settings.daily_run_time, self._now())
            logger.debug("Next scheduled pass in %.0f seconds", wait)
            await self._sleep(wait)
            await self._safe_pass()

    async def _safe_pass(self) -> None:
        try:
            await self.run_pass()
        except Exception as exc:  # pragma: no cover - background safety net
            logger.exception("Scheduled pass failed: %s", exc)
