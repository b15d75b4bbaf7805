"""Push watch history and catalog metadata to the scoring service."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings
from ..db_models import SyncStateRecord
from ..models import (
    ContentMetadata,
    SyncRecord,
    UserRating,
    WatchHistoryEntry,
)
from ..utils import coerce_int, utcnow
from .catalog_store import CatalogStore
from .events import EventEmitter

logger = logging.getLogger(__name__)

SYNC_STATE_ROW_ID = 1


class SyncTarget(Protocol):
    async def sync_user(self, record: SyncRecord) -> bool: ...

    async def sync_content(self, metadata: ContentMetadata) -> bool: ...

    async def check_health(self) -> bool: ...


class SyncStateStore:
    """Persists the process-wide last successful sync time."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self) -> datetime | None:
        async with self._session_factory() as session:
            record = await session.get(SyncStateRecord, SYNC_STATE_ROW_ID)
            return record.last_sync_time if record is not None else None

    async def set(self, value: datetime) -> None:
        # Last writer wins; concurrent manual and scheduled syncs are not serialised.
        async with self._session_factory() as session:
            record = await session.get(SyncStateRecord, SYNC_STATE_ROW_ID)
            if record is None:
                record = SyncStateRecord(id=SYNC_STATE_ROW_ID)
                session.add(record)
            record.last_sync_time = value
            await session.commit()


@dataclass(slots=True)
class SyncReport:
    """Result of a manual sync trigger."""

    success: bool
    message: str
    users_synced: bool | None = None
    content_synced: bool | None = None
    last_sync_time: datetime | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "usersSynced": self.users_synced,
            "contentSynced": self.content_synced,
            "lastSyncTime": self.last_sync_time.isoformat() if self.last_sync_time else None,
        }


@dataclass(slots=True)
class ConnectionReport:
    success: bool
    message: str

    def to_payload(self) -> dict[str, Any]:
        return {"success": self.success, "message": self.message}


def _status(value: bool) -> str:
    return "Success" if value else "Failed"


class SyncOrchestrator:
    """Sends user and content snapshots, tolerating per-unit failures."""

    def __init__(
        self,
        settings: Settings,
        catalog: CatalogStore,
        target: SyncTarget,
        events: EventEmitter,
        state: SyncStateStore,
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._settings = settings
        self._catalog = catalog
        self._target = target
        self._events = events
        self._state = state
        self._clock = clock

    async def get_last_sync_time(self) -> datetime | None:
        try:
            return await self._state.get()
        except Exception:
            logger.exception("Failed to read the last sync time")
            return None

    async def update_last_sync_time(self) -> datetime | None:
        now = self._clock()
        try:
            await self._state.set(now)
        except Exception:
            logger.exception("Failed to record the last sync time")
            return None
        return now

    async def build_sync_record(self, user_id: str, user_name: str = "") -> SyncRecord:
        """Assemble bounded watch history and ratings for a user."""

        watched = await self._catalog.list_recently_watched(
            user_id, self._settings.sync_history_limit
        )
        history: list[WatchHistoryEntry] = []
        ratings: list[UserRating] = []
        for item in watched:
            try:
                data = await self._catalog.get_user_item_data(user_id, item.id)
            except Exception as exc:
                logger.warning(
                    "Skipping item %s in sync for user %s: %s", item.id, user_id, exc
                )
                continue
            if data is None:
                continue
            history.append(
                WatchHistoryEntry(
                    item_id=item.id,
                    item_name=item.name,
                    item_type=item.media_type,
                    tmdb_id=coerce_int(item.provider_id("Tmdb")),
                    tvdb_id=coerce_int(item.provider_id("Tvdb")),
                    last_played=data.last_played,
                    position_ticks=data.position_ticks,
                    play_count=data.play_count,
                    is_favorite=data.is_favorite,
                    rating=data.rating,
                )
            )
            if data.rating is not None:
                ratings.append(
                    UserRating(
                        item_id=item.id,
                        rating=data.rating,
                        rated_at=data.last_played or self._clock(),
                    )
                )
        return SyncRecord(
            user_id=user_id,
            user_name=user_name,
            watch_history=history,
            ratings=ratings,
            synced_at=self._clock(),
        )

    async def sync_user(self, user_id: str) -> bool:
        logger.info("Starting sync for user %s", user_id)
        try:
            user = await self._catalog.get_user(user_id)
            if user is None:
                logger.warning("User %s not found for sync", user_id)
                return False
            record = await self.build_sync_record(user.id, user.name)
            if not await self._target.sync_user(record):
                return False
        except Exception:
            logger.exception("Error syncing user %s", user_id)
            return False

        await self._events.emit_user_event(
            "synced", user_id, {"itemCount": len(record.watch_history)}
        )
        logger.info(
            "Synced user %s with %s items", user_id, len(record.watch_history)
        )
        return True

    async def sync_all_users(self, cancel_event: asyncio.Event | None = None) -> bool:
        """Sync every user; succeeds when at least one user synced."""

        logger.info("Starting sync of all users")
        try:
            users = await self._catalog.list_users()
        except Exception:
            logger.exception("Error listing users for sync")
            return False

        semaphore = asyncio.Semaphore(self._settings.max_concurrency)

        async def run(user_id: str) -> bool:
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    return False
                return await self.sync_user(user_id)

        results = await asyncio.gather(*(run(user.id) for user in users))
        succeeded = sum(1 for result in results if result)
        logger.info(
            "Completed user sync: %s/%s users synced successfully", succeeded, len(users)
        )
        return succeeded > 0

    async def sync_content_library(self, cancel_event: asyncio.Event | None = None) -> bool:
        """Send metadata for every catalog item; succeeds when any item synced."""

        logger.info("Starting content library sync")
        try:
            items = await self._catalog.list_items()
        except Exception:
            logger.exception("Error listing catalog items for content sync")
            return False

        synced = 0
        for item in items:
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Content sync cancelled after %s items", synced)
                break
            try:
                ok = await self._target.sync_content(ContentMetadata.from_item(item))
            except Exception as exc:
                logger.warning("Error syncing content item %s: %s", item.id, exc)
                continue
            if ok:
                synced += 1
                await self._events.emit_content_event(
                    "synced", item.id, {"name": item.name, "itemType": item.media_type}
                )
        logger.info("Content library sync completed: %s items synced", synced)
        return synced > 0

    async def trigger_sync(self, cancel_event: asyncio.Event | None = None) -> SyncReport:
        """Run the user and content legs together; either succeeding counts."""

        users_ok, content_ok = await asyncio.gather(
            self.sync_all_users(cancel_event), self.sync_content_library(cancel_event)
        )
        if users_ok or content_ok:
            stamped = await self.update_last_sync_time()
            return SyncReport(
                success=True,
                message=(
                    f"Sync completed. Users: {_status(users_ok)}, "
                    f"Content: {_status(content_ok)}"
                ),
                users_synced=users_ok,
                content_synced=content_ok,
                last_sync_time=stamped,
            )
        return SyncReport(
            success=False,
            message="Sync failed for both users and content",
            users_synced=False,
            content_synced=False,
            last_sync_time=await self.get_last_sync_time(),
        )

    async def trigger_user_sync(self) -> SyncReport:
        ok = await self.sync_all_users()
        stamped = await self.update_last_sync_time() if ok else await self.get_last_sync_time()
        return SyncReport(
            success=ok,
            message="User sync completed successfully" if ok else "User sync failed",
            users_synced=ok,
            last_sync_time=stamped,
        )

    async def trigger_content_sync(self) -> SyncReport:
        ok = await self.sync_content_library()
        stamped = await self.update_last_sync_time() if ok else await self.get_last_sync_time()
        return SyncReport(
            success=ok,
            message="Content sync completed successfully" if ok else "Content sync failed",
            content_synced=ok,
            last_sync_time=stamped,
        )

    async def test_connection(self) -> ConnectionReport:
        try:
            ok = await self._target.check_health()
        except Exception as exc:
            logger.exception("Connection test failed")
            return ConnectionReport(success=False, message=f"Connection test error: {exc}")
        return ConnectionReport(
            success=ok, message="Connection successful" if ok else "Connection failed"
        )
