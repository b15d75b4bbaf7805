"""Catalog contract and its SQLAlchemy-backed implementation."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Iterable, Protocol, Sequence

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import CollectionRecord, MediaItemRecord, UserItemDataRecord, UserRecord
from ..models import (
    CatalogUser,
    ItemQuery,
    MediaItem,
    PersistedCollection,
    UserItemData,
)
from ..utils import normalize_media_type, utcnow


class CatalogStore(Protocol):
    """Narrow view of the media catalog used by the engine."""

    async def get_user(self, user_id: str) -> CatalogUser | None: ...

    async def list_users(self) -> list[CatalogUser]: ...

    async def find_by_id(self, item_id: str) -> MediaItem | None: ...

    async def find_by_external_id(self, provider: str, value: str) -> MediaItem | None: ...

    async def find_by_name_and_type(
        self, name: str, media_type: str | None, scope_user_id: str | None = None
    ) -> MediaItem | None: ...

    async def query_items(self, query: ItemQuery) -> list[MediaItem]: ...

    async def list_items(self) -> list[MediaItem]: ...

    async def list_recently_watched(self, user_id: str, limit: int) -> list[MediaItem]: ...

    async def get_user_item_data(self, user_id: str, item_id: str) -> UserItemData | None: ...

    async def create_collection(
        self,
        name: str,
        overview: str,
        user_id: str,
        item_ids: Sequence[str],
        *,
        created_at: datetime | None = None,
    ) -> PersistedCollection: ...

    async def get_collection(self, collection_id: str) -> PersistedCollection | None: ...

    async def set_members(
        self,
        collection_id: str,
        item_ids: Sequence[str],
        *,
        overview: str | None = None,
        modified_at: datetime | None = None,
    ) -> PersistedCollection | None: ...

    async def delete_collection(self, collection_id: str) -> bool: ...

    async def list_collections_by_name_prefix(
        self, prefix: str, user_id: str
    ) -> list[PersistedCollection]: ...


class LibraryCatalog:
    """Catalog store persisted through the SQLAlchemy async session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_user(self, user_id: str) -> CatalogUser | None:
        async with self._session_factory() as session:
            record = await session.get(UserRecord, user_id)
            if record is None:
                return None
            return CatalogUser(id=record.id, name=record.name)

    async def list_users(self) -> list[CatalogUser]:
        async with self._session_factory() as session:
            result = await session.execute(select(UserRecord).order_by(UserRecord.id))
            return [
                CatalogUser(id=record.id, name=record.name)
                for record in result.scalars().all()
            ]

    async def find_by_id(self, item_id: str) -> MediaItem | None:
        async with self._session_factory() as session:
            record = await session.get(MediaItemRecord, item_id)
            return self._to_item(record) if record is not None else None

    async def find_by_external_id(self, provider: str, value: str) -> MediaItem | None:
        # Provider ids live in a JSON column, so the scan happens in Python in
        # table order. Duplicate external ids resolve to whichever row comes first.
        target = str(value).strip()
        for item in await self.list_items():
            if item.provider_id(provider) == target:
                return item
        return None

    async def find_by_name_and_type(
        self, name: str, media_type: str | None, scope_user_id: str | None = None
    ) -> MediaItem | None:
        wanted = name.strip()
        if not wanted:
            return None
        async with self._session_factory() as session:
            stmt = select(MediaItemRecord).where(
                func.lower(MediaItemRecord.name) == wanted.lower()
            )
            normalized_type = normalize_media_type(media_type)
            if normalized_type:
                stmt = stmt.where(MediaItemRecord.media_type == normalized_type)
            result = await session.execute(stmt)
            records = result.scalars().all()
        for record in records:
            # SQLite lower() only folds ASCII; confirm with a full casefold.
            if record.name.casefold() == wanted.casefold():
                return self._to_item(record)
        return None

    async def query_items(self, query: ItemQuery) -> list[MediaItem]:
        async with self._session_factory() as session:
            stmt = select(MediaItemRecord)
            if query.min_community_rating is not None:
                stmt = stmt.where(
                    MediaItemRecord.community_rating >= query.min_community_rating
                )
            if query.order_by == "community_rating":
                stmt = stmt.order_by(MediaItemRecord.community_rating.desc())
            elif query.order_by == "date_created":
                stmt = stmt.order_by(MediaItemRecord.date_created.desc())
            else:
                stmt = stmt.order_by(MediaItemRecord.name)
            result = await session.execute(stmt)
            records = result.scalars().all()

        items = [self._to_item(record) for record in records]
        if query.genres:
            wanted = {genre.casefold() for genre in query.genres}
            items = [
                item
                for item in items
                if any(genre.casefold() in wanted for genre in item.genres)
            ]
        if query.limit is not None:
            items = items[: query.limit]
        return items

    async def list_items(self) -> list[MediaItem]:
        async with self._session_factory() as session:
            result = await session.execute(select(MediaItemRecord))
            return [self._to_item(record) for record in result.scalars().all()]

    async def list_recently_watched(self, user_id: str, limit: int) -> list[MediaItem]:
        async with self._session_factory() as session:
            stmt = (
                select(MediaItemRecord)
                .join(UserItemDataRecord, UserItemDataRecord.item_id == MediaItemRecord.id)
                .where(
                    UserItemDataRecord.user_id == user_id,
                    or_(
                        UserItemDataRecord.played.is_(True),
                        UserItemDataRecord.play_count > 0,
                    ),
                )
                .order_by(UserItemDataRecord.last_played.desc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return [self._to_item(record) for record in result.scalars().all()]

    async def get_user_item_data(self, user_id: str, item_id: str) -> UserItemData | None:
        async with self._session_factory() as session:
            stmt = select(UserItemDataRecord).where(
                UserItemDataRecord.user_id == user_id,
                UserItemDataRecord.item_id == item_id,
            )
            result = await session.execute(stmt)
            record = result.scalar_one_or_none()
            if record is None:
                if await session.get(UserRecord, user_id) is None:
                    return None
                return UserItemData()
            return UserItemData(
                played=bool(record.played),
                play_count=record.play_count or 0,
                is_favorite=bool(record.is_favorite),
                rating=record.rating,
                position_ticks=record.position_ticks,
                last_played=record.last_played,
            )

    async def create_collection(
        self,
        name: str,
        overview: str,
        user_id: str,
        item_ids: Sequence[str],
        *,
        created_at: datetime | None = None,
    ) -> PersistedCollection:
        now = created_at or utcnow()
        record = CollectionRecord(
            id=uuid.uuid4().hex,
            user_id=user_id,
            name=name,
            overview=overview,
            member_ids=self._dedupe(item_ids),
            created_at=now,
            last_modified=now,
        )
        async with self._session_factory() as session:
            session.add(record)
            await session.commit()
        return self._to_collection(record)

    async def get_collection(self, collection_id: str) -> PersistedCollection | None:
        async with self._session_factory() as session:
            record = await session.get(CollectionRecord, collection_id)
            return self._to_collection(record) if record is not None else None

    async def set_members(
        self,
        collection_id: str,
        item_ids: Sequence[str],
        *,
        overview: str | None = None,
        modified_at: datetime | None = None,
    ) -> PersistedCollection | None:
        async with self._session_factory() as session:
            record = await session.get(CollectionRecord, collection_id)
            if record is None:
                return None
            record.member_ids = self._dedupe(item_ids)
            if overview is not None:
                record.overview = overview
            record.last_modified = modified_at or utcnow()
            await session.commit()
            return self._to_collection(record)

    async def delete_collection(self, collection_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(CollectionRecord).where(CollectionRecord.id == collection_id)
            )
            await session.commit()
            return bool(result.rowcount)

    async def list_collections_by_name_prefix(
        self, prefix: str, user_id: str
    ) -> list[PersistedCollection]:
        async with self._session_factory() as session:
            stmt = (
                select(CollectionRecord)
                .where(CollectionRecord.user_id == user_id)
                .order_by(CollectionRecord.last_modified.desc())
            )
            result = await session.execute(stmt)
            records = result.scalars().all()
        return [
            self._to_collection(record)
            for record in records
            if record.name.startswith(prefix)
        ]

    @staticmethod
    def _dedupe(item_ids: Iterable[str]) -> list[str]:
        return list(dict.fromkeys(item_ids))

    @staticmethod
    def _to_item(record: MediaItemRecord) -> MediaItem:
        return MediaItem(
            id=record.id,
            name=record.name,
            media_type=record.media_type,
            provider_ids=dict(record.provider_ids or {}),
            genres=list(record.genres or []),
            tags=list(record.tags or []),
            studios=list(record.studios or []),
            overview=record.overview,
            community_rating=record.community_rating,
            official_rating=record.official_rating,
            premiere_date=record.premiere_date,
            run_time_ticks=record.run_time_ticks,
            date_created=record.date_created,
            date_modified=record.date_modified,
        )

    @staticmethod
    def _to_collection(record: CollectionRecord) -> PersistedCollection:
        return PersistedCollection(
            id=record.id,
            name=record.name,
            overview=record.overview or "",
            member_ids=list(record.member_ids or []),
            owner_user_id=record.user_id,
            last_modified=record.last_modified,
            created_at=record.created_at,
        )
