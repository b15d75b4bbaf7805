"""Category rules and collection naming for scored candidates."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable

from .models import Category, CollectionGroup, ResolvedItem, ScoredCandidate

MIN_COLLECTION_ITEMS = 3


@dataclass(frozen=True)
class CategoryDefinition:
    """Describes how a category is detected and presented."""

    category: Category
    label: str
    collection_title: str
    keywords: tuple[str, ...] = ()
    match_first_tag: bool = False

    def matches(self, reason: str, first_tag: str) -> bool:
        if any(keyword in reason for keyword in self.keywords):
            return True
        if self.match_first_tag:
            return any(keyword in first_tag for keyword in self.keywords)
        return False


# Evaluated top to bottom; the first match wins. A reason such as
# "popular with people who like thrillers" must land in SIMILAR_CONTENT.
CATEGORY_RULES: tuple[CategoryDefinition, ...] = (
    CategoryDefinition(
        category=Category.SIMILAR_CONTENT,
        label="Similar Content",
        collection_title="More Like Your Favorites",
        keywords=("similar", "like"),
    ),
    CategoryDefinition(
        category=Category.GENRE_RECOMMENDATIONS,
        label="Genre Recommendations",
        collection_title="Discover New Genres",
        keywords=("genre",),
        match_first_tag=True,
    ),
    CategoryDefinition(
        category=Category.CAST_CREW,
        label="Based on Cast & Crew",
        collection_title="From Your Favorite Creators",
        keywords=("actor", "director"),
    ),
    CategoryDefinition(
        category=Category.TRENDING,
        label="Trending Now",
        collection_title="What's Trending",
        keywords=("trending", "popular"),
    ),
    CategoryDefinition(
        category=Category.NEW_RELEASES,
        label="New Releases",
        collection_title="Fresh Picks",
        keywords=("recent", "new"),
    ),
)

DEFAULT_DEFINITION = CategoryDefinition(
    category=Category.FOR_YOU,
    label="For You",
    collection_title="Recommended for You",
)

CATEGORY_DEFINITIONS: dict[Category, CategoryDefinition] = {
    definition.category: definition
    for definition in (*CATEGORY_RULES, DEFAULT_DEFINITION)
}


def classify(candidate: ScoredCandidate) -> Category:
    """Return the category implied by the candidate's reason and first tag."""

    reason = (candidate.reason or "").lower()
    first_tag = candidate.tags[0].lower() if candidate.tags else ""
    for definition in CATEGORY_RULES:
        if definition.matches(reason, first_tag):
            return definition.category
    return DEFAULT_DEFINITION.category


@dataclass(frozen=True)
class HomeRowFilter:
    """Loose keyword match used to fill a single home-screen row."""

    reason_keywords: tuple[str, ...]
    tag_keywords: tuple[str, ...] = ()

    def matches(self, candidate: ScoredCandidate) -> bool:
        reason = (candidate.reason or "").lower()
        if any(keyword in reason for keyword in self.reason_keywords):
            return True
        tags = [tag.lower() for tag in candidate.tags]
        return any(keyword in tag for keyword in self.tag_keywords for tag in tags)


# Rows overlap on purpose: a candidate may show up in several of them.
HOME_ROW_FILTERS: dict[Category, HomeRowFilter] = {
    Category.SIMILAR_CONTENT: HomeRowFilter(("similar", "like", "favorite")),
    Category.TRENDING: HomeRowFilter(("trending", "popular"), tag_keywords=("trending",)),
    Category.NEW_RELEASES: HomeRowFilter(("new", "recent", "release")),
}


def matches_home_row(candidate: ScoredCandidate, category: Category) -> bool:
    """Whether a candidate belongs in the home-screen row for ``category``.

    Rows without a dedicated filter fall back to :func:`classify`.
    """

    row_filter = HOME_ROW_FILTERS.get(category)
    if row_filter is None:
        return classify(candidate) == category
    return row_filter.matches(candidate)


def parse_category(value: str | None) -> Category | None:
    """Resolve loosely formatted category names from request parameters."""

    if value is None:
        return None
    cleaned = value.strip().replace("-", "").replace("_", "").replace(" ", "").lower()
    if not cleaned or cleaned in {"all", "general"}:
        return None
    aliases = {
        "similar": Category.SIMILAR_CONTENT,
        "genre": Category.GENRE_RECOMMENDATIONS,
        "genres": Category.GENRE_RECOMMENDATIONS,
        "cast": Category.CAST_CREW,
        "new": Category.NEW_RELEASES,
    }
    if cleaned in aliases:
        return aliases[cleaned]
    for category in Category:
        if category.value.lower() == cleaned:
            return category
    raise ValueError(f"Unknown category: {value}")


def group_candidates(
    resolved: Iterable[tuple[ScoredCandidate, ResolvedItem]],
    *,
    min_items: int = MIN_COLLECTION_ITEMS,
) -> list[CollectionGroup]:
    """Group resolved candidates by category, strongest average score first."""

    groups: dict[Category, CollectionGroup] = {}
    for candidate, item in resolved:
        category = classify(candidate)
        group = groups.setdefault(category, CollectionGroup(category=category))
        group.candidates.append(candidate)
        group.items.append(item)

    eligible = [group for group in groups.values() if len(group.items) >= min_items]
    # sorted() is stable, so equal averages keep first-appearance order.
    return sorted(eligible, key=lambda group: group.average_score, reverse=True)


def collection_name(category: Category, on: date | datetime) -> str:
    """Return the dated collection name for a category."""

    definition = CATEGORY_DEFINITIONS.get(category, DEFAULT_DEFINITION)
    return f"{definition.collection_title} ({on.strftime('%b %d')})"
