"""Tracked item model and the engine's read-model state."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping


USER_FIELDS = ("episodes_watched", "score", "status", "season")
# Fields that survive a details cache clear.
KEPT_ON_STRIP = (
    "id",
    "title",
    "poster_url",
    "score",
    "episodes_watched",
    "total_episodes",
    "status",
    "genres",
    "season",
)

_CAMEL_KEYS = {
    "episodesWatched": "episodes_watched",
    "totalEpisodes": "total_episodes",
    "mediaStatus": "media_status",
    "posterUrl": "poster_url",
    "bannerUrl": "banner_url",
    "averageScore": "average_score",
    "startDate": "start_date",
    "alternativeTitles": "alternative_titles",
    "siteUrl": "site_url",
}


@dataclass
class TrackedItem:
    """One entry of the user's anime collection."""

    id: int
    title: str
    episodes_watched: int = 0
    score: int = 0
    status: str = "plan_to_watch"
    season: str = ""
    description: str | None = None
    media_status: str | None = None
    total_episodes: int = 0
    poster_url: str = ""
    banner_url: str = ""
    genres: List[str] = field(default_factory=list)
    average_score: int = 0
    format: str = ""
    start_date: str = ""
    studio: str = ""
    alternative_titles: List[str] = field(default_factory=list)
    site_url: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_complete_metadata(self) -> bool:
        return bool(self.description) and self.media_status is not None

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "TrackedItem":
        """Build an item from its persisted form; camelCase keys are accepted."""
        known = {f.name for f in dataclasses.fields(cls)}
        values: Dict[str, Any] = {}
        extra: Dict[str, Any] = dict(raw.get("extra") or {})
        for key, value in raw.items():
            if key == "extra":
                continue
            name = _CAMEL_KEYS.get(key, key)
            if name in known:
                values[name] = value
            else:
                extra[name] = value
        if "id" not in values:
            raise ValueError("tracked item is missing an id")
        values["id"] = int(values["id"])
        values["title"] = str(values.get("title") or f"ID {values['id']}")
        for list_field in ("genres", "alternative_titles"):
            if list_field in values:
                values[list_field] = list(values[list_field] or [])
        return cls(extra=extra, **values)

    def to_dict(self) -> Dict[str, Any]:
        data = dataclasses.asdict(self)
        if not data["extra"]:
            data.pop("extra")
        return data


def merge_fields(item: TrackedItem, fields: Mapping[str, Any]) -> TrackedItem:
    """Return a copy of ``item`` with ``fields`` overwritten key by key.

    The id is never changed by a merge. Unknown keys land in ``extra``.
    Merging the same fields twice gives the same item as merging once.
    """
    known = {f.name for f in dataclasses.fields(TrackedItem)}
    updates: Dict[str, Any] = {}
    extra = dict(item.extra)
    for key, value in fields.items():
        if key in ("id", "extra"):
            continue
        name = _CAMEL_KEYS.get(key, key)
        if name in known:
            updates[name] = list(value) if isinstance(value, (list, tuple)) else value
        else:
            extra[name] = value
    return dataclasses.replace(item, extra=extra, **updates)


def strip_to_identity(item: TrackedItem) -> TrackedItem:
    """Drop fetched metadata, keeping identifying and user-owned fields."""
    kept = {name: getattr(item, name) for name in KEPT_ON_STRIP}
    kept["genres"] = list(kept["genres"])
    return TrackedItem(**kept)


@dataclass
class RateLimitState:
    """Global pause after the API reported a rate limit."""

    active: bool = False
    seconds_remaining: int = 0


@dataclass
class BackoffState:
    """Delay before the next dequeue plus the network-error countdown display."""

    current_delay_ms: int = 2000
    network_error_active: bool = False
    network_error_seconds_remaining: int = 0
    network_error_initial_seconds: int = 0


@dataclass
class NetworkErrorState:
    """Read-only view of the network-error countdown."""

    active: bool = False
    seconds_remaining: int = 0
    initial_seconds: int = 0


@dataclass
class ProgressState:
    """User-visible progress of the current fetch batch."""

    total: int = 0
    current: int = 0
    fetching_title: str = ""
    active: bool = False
