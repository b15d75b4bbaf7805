"""Models describing candidates, catalog views and wire payloads."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .utils import clean_identifier, coerce_int, utcnow

WatchEventType = Literal["play_start", "play_stop", "pause", "resume", "progress"]


class Category(str, Enum):
    """Human-facing recommendation groupings."""

    SIMILAR_CONTENT = "SimilarContent"
    GENRE_RECOMMENDATIONS = "GenreRecommendations"
    CAST_CREW = "CastCrew"
    TRENDING = "Trending"
    NEW_RELEASES = "NewReleases"
    FOR_YOU = "ForYou"


class ScoredCandidate(BaseModel):
    """A recommendation produced by the scoring service."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    internal_item_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("itemId", "internalItemId", "internal_item_id"),
        serialization_alias="itemId",
    )
    external_catalog_id: int | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "tmdbId", "externalCatalogId", "external_catalog_id"
        ),
        serialization_alias="tmdbId",
    )
    name: str = Field(
        default="",
        validation_alias=AliasChoices("itemName", "name"),
        serialization_alias="itemName",
    )
    media_type: str | None = Field(
        default=None,
        validation_alias=AliasChoices("itemType", "mediaType", "media_type"),
        serialization_alias="itemType",
    )
    score: float = 0.0
    reason: str = Field(
        default="",
        validation_alias=AliasChoices("reason", "reasonText"),
    )
    tags: tuple[str, ...] = ()

    @field_validator("internal_item_id", mode="before")
    @classmethod
    def _clean_item_id(cls, value: object) -> str | None:
        return clean_identifier(value)

    @field_validator("external_catalog_id", mode="before")
    @classmethod
    def _coerce_external_id(cls, value: object) -> int | None:
        parsed = coerce_int(value)
        if parsed is None or parsed <= 0:
            return None
        return parsed

    @field_validator("name", "reason", mode="before")
    @classmethod
    def _none_to_blank(cls, value: object) -> object:
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("tags", mode="before")
    @classmethod
    def _normalise_tags(cls, value: object) -> tuple[str, ...]:
        if value is None:
            return ()
        if isinstance(value, str):
            return (value,)
        return tuple(str(tag) for tag in value if tag is not None)  # type: ignore[union-attr]

    def describe(self) -> str:
        """Return a short label used in log messages."""

        if self.name:
            return self.name
        if self.internal_item_id:
            return f"item {self.internal_item_id}"
        if self.external_catalog_id:
            return f"TMDb {self.external_catalog_id}"
        return "unnamed candidate"


@dataclass(frozen=True, slots=True)
class ResolvedItem:
    """A scored candidate matched to exactly one catalog item."""

    internal_item_id: str
    name: str
    media_type: str

    def to_payload(self) -> dict[str, str]:
        return {
            "itemId": self.internal_item_id,
            "name": self.name,
            "mediaType": self.media_type,
        }


@dataclass(slots=True)
class CollectionGroup:
    """Resolved candidates sharing a category during a single pass."""

    category: Category
    candidates: list[ScoredCandidate] = field(default_factory=list)
    items: list[ResolvedItem] = field(default_factory=list)

    @property
    def average_score(self) -> float:
        if not self.candidates:
            return 0.0
        return sum(candidate.score for candidate in self.candidates) / len(
            self.candidates
        )


@dataclass(slots=True)
class PersistedCollection:
    """A recommendation collection owned by the catalog store."""

    id: str
    name: str
    overview: str
    member_ids: list[str]
    owner_user_id: str
    last_modified: datetime
    created_at: datetime

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "overview": self.overview,
            "memberItemIds": list(self.member_ids),
            "owningUserId": self.owner_user_id,
            "lastModified": self.last_modified.isoformat(),
        }


@dataclass(slots=True)
class CatalogUser:
    """Minimal view of a catalog user."""

    id: str
    name: str


@dataclass(slots=True)
class MediaItem:
    """Catalog item view exposed by the catalog contract."""

    id: str
    name: str
    media_type: str
    provider_ids: dict[str, str] = field(default_factory=dict)
    genres: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    studios: list[str] = field(default_factory=list)
    overview: str | None = None
    community_rating: float | None = None
    official_rating: str | None = None
    premiere_date: datetime | None = None
    run_time_ticks: int | None = None
    date_created: datetime | None = None
    date_modified: datetime | None = None

    def provider_id(self, provider: str) -> str | None:
        """Return a provider identifier using a case-insensitive provider name."""

        for key, value in self.provider_ids.items():
            if key.lower() == provider.lower():
                return str(value)
        return None

    def to_resolved(self) -> ResolvedItem:
        return ResolvedItem(
            internal_item_id=self.id, name=self.name, media_type=self.media_type
        )


@dataclass(slots=True)
class UserItemData:
    """Per-user play state for a catalog item."""

    played: bool = False
    play_count: int = 0
    is_favorite: bool = False
    rating: float | None = None
    position_ticks: int | None = None
    last_played: datetime | None = None

    @property
    def watched(self) -> bool:
        return self.played or self.play_count > 0


@dataclass(frozen=True, slots=True)
class ItemQuery:
    """Filters accepted by ``CatalogStore.query_items``."""

    genres: tuple[str, ...] = ()
    min_community_rating: float | None = None
    order_by: Literal["community_rating", "date_created", "name"] = "name"
    limit: int | None = None


class WireModel(BaseModel):
    """Base class for camelCase JSON payloads exchanged with collaborators."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class WatchHistoryEntry(WireModel):
    item_id: str
    item_name: str = ""
    item_type: str = ""
    tmdb_id: int | None = None
    tvdb_id: int | None = None
    last_played: datetime | None = None
    position_ticks: int | None = None
    play_count: int = 0
    is_favorite: bool = False
    rating: float | None = None


class UserRating(WireModel):
    item_id: str
    rating: float
    rated_at: datetime


class SyncRecord(WireModel):
    """User history snapshot pushed to the scoring service."""

    user_id: str
    user_name: str = ""
    watch_history: list[WatchHistoryEntry] = Field(default_factory=list)
    ratings: list[UserRating] = Field(default_factory=list)
    synced_at: datetime = Field(default_factory=utcnow)


class ContentMetadata(WireModel):
    """Catalog metadata pushed to the scoring service during content sync."""

    item_id: str
    name: str
    item_type: str
    tmdb_id: int | None = None
    tvdb_id: int | None = None
    imdb_id: str | None = None
    premiere_date: datetime | None = None
    genres: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    studios: list[str] = Field(default_factory=list)
    overview: str | None = None
    community_rating: float | None = None
    official_rating: str | None = None
    run_time_ticks: int | None = None
    date_created: datetime | None = None
    date_modified: datetime | None = None

    @classmethod
    def from_item(cls, item: MediaItem) -> "ContentMetadata":
        return cls(
            item_id=item.id,
            name=item.name,
            item_type=item.media_type,
            tmdb_id=coerce_int(item.provider_id("Tmdb")),
            tvdb_id=coerce_int(item.provider_id("Tvdb")),
            imdb_id=item.provider_id("Imdb"),
            premiere_date=item.premiere_date,
            genres=list(item.genres),
            tags=list(item.tags),
            studios=list(item.studios),
            overview=item.overview,
            community_rating=item.community_rating,
            official_rating=item.official_rating,
            run_time_ticks=item.run_time_ticks,
            date_created=item.date_created,
            date_modified=item.date_modified,
        )


class WatchEvent(WireModel):
    """A single playback interaction reported by the host."""

    user_id: str
    item_id: str
    event_type: WatchEventType
    timestamp_utc: datetime = Field(default_factory=utcnow)
    position_ticks: int | None = None
    device_id: str | None = None
    device_name: str | None = None
    client_name: str | None = None


class EventEnvelope(WireModel):
    """Telemetry envelope delivered to both event sinks."""

    event_type: str
    timestamp_utc: datetime = Field(default_factory=utcnow)
    source: str = "recollect"
    version: str = "1.0"
    payload: dict[str, Any] = Field(default_factory=dict)
