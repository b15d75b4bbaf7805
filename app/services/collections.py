"""Create, refresh and prune per-user recommendation collections."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Sequence

from ..config import Settings
from ..models import PersistedCollection, ResolvedItem
from ..utils import utcnow
from .catalog_store import CatalogStore

logger = logging.getLogger(__name__)

OVERVIEW_PREFIX = "AI-generated recommendations based on your viewing preferences."


def created_overview(at: datetime) -> str:
    return f"{OVERVIEW_PREFIX} Generated on {at:%Y-%m-%d %H:%M}"


def updated_overview(at: datetime) -> str:
    return f"{OVERVIEW_PREFIX} Last updated on {at:%Y-%m-%d %H:%M}"


class CollectionLifecycleManager:
    """Owns every write the engine makes to recommendation collections.

    Only collections whose names start with the configured prefix are ever
    touched. Membership is replaced wholesale on update, so a collection always
    holds exactly the last resolved set. No method raises; failures are logged
    and reported as ``None`` or ``False``.
    """

    def __init__(
        self,
        catalog: CatalogStore,
        settings: Settings,
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._catalog = catalog
        self._prefix = settings.collection_prefix
        self._clock = clock

    @property
    def prefix(self) -> str:
        return self._prefix

    def full_name(self, name: str) -> str:
        if name.startswith(self._prefix):
            return name
        return f"{self._prefix}{name}"

    async def list_collections(self, user_id: str) -> list[PersistedCollection]:
        """Recommendation collections for a user, most recently modified first."""

        try:
            return await self._catalog.list_collections_by_name_prefix(
                self._prefix, user_id
            )
        except Exception:
            logger.exception("Failed to list collections for user %s", user_id)
            return []

    async def find_by_name(self, name: str, user_id: str) -> PersistedCollection | None:
        wanted = self.full_name(name).casefold()
        for collection in await self.list_collections(user_id):
            if collection.name.casefold() == wanted:
                return collection
        return None

    async def create_or_update(
        self, name: str, items: Sequence[ResolvedItem], user_id: str
    ) -> PersistedCollection | None:
        """Create the named collection, or refresh it when it already exists."""

        if not items:
            logger.warning("No resolved items for collection %r; skipping", name)
            return None

        full_name = self.full_name(name)
        try:
            existing = await self.find_by_name(full_name, user_id)
            if existing is not None:
                logger.info("Collection %r exists, updating instead", full_name)
                if not await self.update(existing.id, items):
                    return None
                return await self._catalog.get_collection(existing.id)

            now = self._clock()
            collection = await self._catalog.create_collection(
                full_name,
                created_overview(now),
                user_id,
                [item.internal_item_id for item in items],
                created_at=now,
            )
        except Exception:
            logger.exception("Error creating collection %r for user %s", full_name, user_id)
            return None

        logger.info(
            "Created collection %r with %s items for user %s",
            full_name,
            len(collection.member_ids),
            user_id,
        )
        return collection

    async def update(self, collection_id: str, items: Sequence[ResolvedItem]) -> bool:
        """Replace the collection's members with ``items``."""

        now = self._clock()
        try:
            updated = await self._catalog.set_members(
                collection_id,
                [item.internal_item_id for item in items],
                overview=updated_overview(now),
                modified_at=now,
            )
        except Exception:
            logger.exception("Error updating collection %s", collection_id)
            return False
        if updated is None:
            logger.warning("Collection %s not found", collection_id)
            return False
        logger.info("Updated collection %r with %s items", updated.name, len(updated.member_ids))
        return True

    async def cleanup(self, user_id: str, max_collections: int) -> bool:
        """Delete everything beyond the ``max_collections`` most recently modified."""

        try:
            collections = await self._catalog.list_collections_by_name_prefix(
                self._prefix, user_id
            )
        except Exception:
            logger.exception("Error listing collections for cleanup of user %s", user_id)
            return False

        # Ties on last_modified keep the catalog's order.
        ordered = sorted(collections, key=lambda c: c.last_modified, reverse=True)
        stale = ordered[max(max_collections, 0):]
        ok = True
        for collection in stale:
            if not await self.delete(collection.id):
                ok = False
        if stale:
            logger.info("Cleaned up %s old collections for user %s", len(stale), user_id)
        return ok

    async def delete(self, collection_id: str) -> bool:
        """Remove the collection itself; member items stay in the catalog."""

        try:
            deleted = await self._catalog.delete_collection(collection_id)
        except Exception:
            logger.exception("Error deleting collection %s", collection_id)
            return False
        if not deleted:
            logger.warning("Collection %s not found", collection_id)
        return deleted
