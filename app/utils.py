"""Utility helpers for the Recollect service."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any


EMPTY_GUID_RE = re.compile(r"^[0{}\-]+$")
KNOWN_MEDIA_TYPES = {"movie": "movie", "series": "series", "show": "series", "tv": "series"}


def utcnow() -> datetime:
    """Return the current naive UTC timestamp used throughout persistence."""

    return datetime.utcnow()


def clean_identifier(value: object) -> str | None:
    """Return a trimmed identifier, treating blanks, ``0`` and empty GUIDs as absent."""

    if value is None:
        return None
    text = str(value).strip()
    if not text or EMPTY_GUID_RE.match(text):
        return None
    return text


def coerce_int(value: Any, *, default: int | None = None) -> int | None:
    """Parse integers from loosely typed payload values."""

    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


def normalize_media_type(value: str | None) -> str | None:
    """Map free-form media type labels onto ``movie``/``series`` when recognised."""

    if not value:
        return None
    lowered = value.strip().lower()
    return KNOWN_MEDIA_TYPES.get(lowered)
