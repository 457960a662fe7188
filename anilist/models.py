"""Model for normalized anime metadata derived from AniList."""

from __future__ import annotations

import html
import re
from dataclasses import dataclass
from typing import Any, Dict, Tuple


_TAG_RE = re.compile(r"<[^>]+>")
_BREAK_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)


def clean_description(raw: str, max_len: int = 0) -> str:
    """Strip AniList HTML markup from a description and optionally truncate it."""
    text = _BREAK_RE.sub("\n", raw or "")
    text = html.unescape(_TAG_RE.sub("", text))
    text = re.sub(r"\n{3,}", "\n\n", text).strip()
    if max_len and len(text) > max_len:
        text = text[: max_len - 3].rstrip() + "..."
    return text


def _format_date(raw: Any) -> str:
    if not isinstance(raw, dict) or not raw.get("year"):
        return ""
    parts = [f"{int(raw['year']):04d}"]
    if raw.get("month"):
        parts.append(f"{int(raw['month']):02d}")
        if raw.get("day"):
            parts.append(f"{int(raw['day']):02d}")
    return "-".join(parts)


def _pick_title(titles: Any) -> str:
    if not isinstance(titles, dict):
        return ""
    for key in ("english", "romaji", "native"):
        value = str(titles.get(key) or "").strip()
        if value:
            return value
    return ""


@dataclass(frozen=True)
class AnimeMetadata:
    """Canonical metadata for one anime as reported by AniList."""

    mal_id: int
    anilist_id: int
    title: str
    description: str
    media_status: str
    total_episodes: int
    poster_url: str
    banner_url: str
    genres: Tuple[str, ...]
    average_score: int
    format: str
    start_date: str
    studio: str
    alternative_titles: Tuple[str, ...]
    site_url: str

    @classmethod
    def from_anilist(cls, media: Dict[str, Any], max_description_len: int = 0) -> "AnimeMetadata":
        """Create an AnimeMetadata instance from an AniList ``Media`` payload.

        Args:
            media: Raw AniList media object.
            max_description_len: Maximum description length (0 keeps it whole).

        Returns:
            Normalized AnimeMetadata instance.
        """
        titles = media.get("title") or {}
        title = _pick_title(titles)

        alternatives = []
        if isinstance(titles, dict):
            for key in ("romaji", "english", "native"):
                value = str(titles.get(key) or "").strip()
                if value and value != title and value not in alternatives:
                    alternatives.append(value)
        for synonym in media.get("synonyms") or []:
            value = str(synonym or "").strip()
            if value and value != title and value not in alternatives:
                alternatives.append(value)

        cover = media.get("coverImage") or {}
        poster_url = ""
        if isinstance(cover, dict):
            poster_url = str(cover.get("extraLarge") or cover.get("large") or cover.get("medium") or "")

        studio = ""
        studios = media.get("studios") or {}
        nodes = studios.get("nodes") if isinstance(studios, dict) else None
        for node in nodes or []:
            name = str((node or {}).get("name") or "").strip()
            if name:
                studio = name
                break

        return cls(
            mal_id=int(media.get("idMal") or 0),
            anilist_id=int(media.get("id") or 0),
            title=title,
            description=clean_description(str(media.get("description") or ""), max_description_len),
            media_status=str(media.get("status") or "").strip(),
            total_episodes=int(media.get("episodes") or 0),
            poster_url=poster_url,
            banner_url=str(media.get("bannerImage") or ""),
            genres=tuple(str(g) for g in (media.get("genres") or []) if g),
            average_score=int(media.get("averageScore") or 0),
            format=str(media.get("format") or "").strip(),
            start_date=_format_date(media.get("startDate")),
            studio=studio,
            alternative_titles=tuple(alternatives),
            site_url=str(media.get("siteUrl") or ""),
        )

    def to_fields(self) -> Dict[str, Any]:
        """Convert the metadata into tracked item field overrides.

        Empty values are left out so a sparse payload never blanks a field
        that an earlier fetch already filled.
        """
        fields: Dict[str, Any] = {
            "title": self.title,
            "description": self.description,
            "media_status": self.media_status,
            "total_episodes": self.total_episodes,
            "poster_url": self.poster_url,
            "banner_url": self.banner_url,
            "genres": list(self.genres),
            "average_score": self.average_score,
            "format": self.format,
            "start_date": self.start_date,
            "studio": self.studio,
            "alternative_titles": list(self.alternative_titles),
            "site_url": self.site_url,
        }
        if self.anilist_id:
            fields["anilist_id"] = self.anilist_id
        return {key: value for key, value in fields.items() if value not in ("", 0, [], None)}


@dataclass(frozen=True)
class CandidateMatch:
    """Scored search result offered during manual resolution."""

    metadata: AnimeMetadata
    score: float

    @property
    def mal_id(self) -> int:
        return self.metadata.mal_id

    @property
    def title(self) -> str:
        return self.metadata.title
