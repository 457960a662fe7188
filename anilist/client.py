"""AniList GraphQL client and title matching helpers."""

from __future__ import annotations

import re
import unicodedata
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, List

import requests
from rapidfuzz import fuzz

from anilist.models import AnimeMetadata, CandidateMatch


ANILIST_URL = "https://graphql.anilist.co"

_MEDIA_FIELDS = """
    id
    idMal
    title { romaji english native }
    synonyms
    description(asHtml: false)
    status
    episodes
    genres
    format
    averageScore
    bannerImage
    siteUrl
    coverImage { extraLarge large medium }
    startDate { year month day }
    studios(isMain: true) { nodes { name } }
"""

DETAILS_QUERY = (
    "query ($idMal: Int) { Media(idMal: $idMal, type: ANIME) {" + _MEDIA_FIELDS + "} }"
)

SEARCH_QUERY = (
    "query ($search: String, $perPage: Int) { Page(page: 1, perPage: $perPage) {"
    " media(search: $search, type: ANIME) {" + _MEDIA_FIELDS + "} } }"
)


class RateLimitError(Exception):
    """Raised when AniList answers with HTTP 429.

    ``retry_after`` is the server's requested pause in seconds, 0 when the
    response did not say.
    """

    def __init__(self, retry_after: int = 0, message: str = "") -> None:
        self.retry_after = max(0, int(retry_after))
        super().__init__(message or f"AniList rate limit hit (429), retry after {self.retry_after}s")


def parse_retry_after(value: str | None, now: datetime | None = None) -> int:
    """Parse a Retry-After header given as seconds or an HTTP date."""
    if not value:
        return 0
    stripped = value.strip()
    if stripped.isdigit():
        return int(stripped)
    try:
        when = parsedate_to_datetime(stripped)
    except (TypeError, ValueError):
        return 0
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    current = now or datetime.now(timezone.utc)
    return max(0, int((when - current).total_seconds()))


def anilist_request(
    session: requests.Session,
    api_url: str,
    query: str,
    variables: Dict[str, Any],
    timeout: float,
) -> Dict[str, Any]:
    """Make an AniList GraphQL request.

    Args:
        session: Requests session.
        api_url: GraphQL endpoint.
        query: GraphQL query document.
        variables: Query variables.
        timeout: Request timeout in seconds.

    Returns:
        The ``data`` object of the GraphQL response.

    Raises:
        RateLimitError: When the API answers 429.
        requests.HTTPError: For any other non-2xx status.
    """
    resp = session.post(
        api_url,
        json={"query": query, "variables": variables},
        headers={"Accept": "application/json"},
        timeout=timeout,
    )
    if resp.status_code == 429:
        raise RateLimitError(parse_retry_after(resp.headers.get("Retry-After")))
    resp.raise_for_status()
    payload = resp.json() or {}
    return payload.get("data") or {}


def anilist_anime_details(
    session: requests.Session,
    api_url: str,
    mal_id: int,
    timeout: float,
) -> Dict[str, Any] | None:
    """Fetch the AniList media payload for a MyAnimeList id.

    Returns:
        The media payload, or None when AniList has no entry for the id.
    """
    try:
        data = anilist_request(session, api_url, DETAILS_QUERY, {"idMal": int(mal_id)}, timeout)
    except requests.HTTPError as exc:
        if exc.response is not None and exc.response.status_code == 404:
            return None
        raise
    media = data.get("Media")
    return media if isinstance(media, dict) else None


def anilist_search(
    session: requests.Session,
    api_url: str,
    title: str,
    per_page: int,
    timeout: float,
) -> List[Dict[str, Any]]:
    """Search AniList anime by title and return raw media payloads."""
    if not title:
        return []
    data = anilist_request(session, api_url, SEARCH_QUERY, {"search": title, "perPage": per_page}, timeout)
    page = data.get("Page") or {}
    return [m for m in (page.get("media") or []) if isinstance(m, dict)]


def normalize_title(title: str) -> str:
    """Normalize a title for fuzzy matching.

    Args:
        title: Title to normalize.

    Returns:
        Normalized title string.
    """
    lowered = title.lower()
    lowered = unicodedata.normalize("NFKD", lowered)
    lowered = "".join(ch for ch in lowered if not unicodedata.combining(ch))
    lowered = lowered.replace("&", "and")
    lowered = re.sub(r"[^\w]+", " ", lowered)
    return re.sub(r"\s+", " ", lowered).strip()


def title_similarity(left: str, right: str) -> float:
    """Compute a fuzzy similarity score between two titles in [0, 1]."""
    if not left or not right:
        return 0.0
    return fuzz.QRatio(normalize_title(left), normalize_title(right)) / 100.0


def score_candidate(query: str, metadata: AnimeMetadata) -> float:
    """Score a candidate against the searched title using its best-matching name."""
    names = [metadata.title, *metadata.alternative_titles]
    return max((title_similarity(query, name) for name in names if name), default=0.0) * 10.0


class AniListClient:
    """Metadata fetcher and title searcher backed by the AniList API."""

    def __init__(
        self,
        session: requests.Session | None = None,
        api_url: str = ANILIST_URL,
        timeout: float = 20.0,
        search_limit: int = 10,
        max_description_length: int = 0,
    ) -> None:
        self.session = session or requests.Session()
        self.api_url = api_url
        self.timeout = timeout
        self.search_limit = search_limit
        self.max_description_length = max_description_length

    def fetch_metadata(self, mal_id: int) -> Dict[str, Any] | None:
        """Return merge-ready metadata fields for ``mal_id``, or None if unknown."""
        media = anilist_anime_details(self.session, self.api_url, mal_id, self.timeout)
        if media is None:
            return None
        return AnimeMetadata.from_anilist(media, self.max_description_length).to_fields()

    def search_by_title(self, title: str) -> List[CandidateMatch]:
        """Search by title; results without a MyAnimeList id are dropped."""
        results = anilist_search(self.session, self.api_url, title, self.search_limit, self.timeout)
        candidates: List[CandidateMatch] = []
        for media in results:
            metadata = AnimeMetadata.from_anilist(media, self.max_description_length)
            if not metadata.mal_id:
                continue
            candidates.append(CandidateMatch(metadata=metadata, score=score_candidate(title, metadata)))
        return candidates
