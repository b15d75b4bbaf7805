"""Match scored candidates to catalog items."""

from __future__ import annotations

import logging
from typing import Iterable

from ..models import MediaItem, ResolvedItem, ScoredCandidate
from ..utils import normalize_media_type
from .catalog_store import CatalogStore

logger = logging.getLogger(__name__)

EXTERNAL_ID_PROVIDER = "Tmdb"


class IdentityResolver:
    """Resolve candidates by internal id, then external id, then exact name."""

    def __init__(self, catalog: CatalogStore):
        self._catalog = catalog

    async def resolve(
        self, candidate: ScoredCandidate, scope_user_id: str | None = None
    ) -> ResolvedItem | None:
        """Return the catalog item a candidate refers to, or ``None``.

        Lookup failures are logged and treated as unresolved so that a single
        bad candidate never aborts the batch it belongs to.
        """

        try:
            item = await self._lookup(candidate, scope_user_id)
        except Exception as exc:
            logger.warning("Failed to resolve %s: %s", candidate.describe(), exc)
            return None
        if item is None:
            logger.debug("Could not resolve %s to a catalog item", candidate.describe())
            return None
        return item.to_resolved()

    async def resolve_all(
        self, candidates: Iterable[ScoredCandidate], scope_user_id: str | None = None
    ) -> list[tuple[ScoredCandidate, ResolvedItem]]:
        """Resolve a batch, keeping candidate order and the first hit per item."""

        resolved: list[tuple[ScoredCandidate, ResolvedItem]] = []
        seen: set[str] = set()
        for candidate in candidates:
            item = await self.resolve(candidate, scope_user_id)
            if item is None or item.internal_item_id in seen:
                continue
            seen.add(item.internal_item_id)
            resolved.append((candidate, item))
        return resolved

    async def _lookup(
        self, candidate: ScoredCandidate, scope_user_id: str | None
    ) -> MediaItem | None:
        if candidate.internal_item_id:
            item = await self._catalog.find_by_id(candidate.internal_item_id)
            if item is not None:
                return item

        if candidate.external_catalog_id:
            item = await self._catalog.find_by_external_id(
                EXTERNAL_ID_PROVIDER, str(candidate.external_catalog_id)
            )
            if item is not None:
                return item

        if candidate.name:
            return await self._catalog.find_by_name_and_type(
                candidate.name,
                normalize_media_type(candidate.media_type),
                scope_user_id,
            )
        return None
