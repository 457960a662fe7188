"""Fetch outcome classification for a single queued id."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Protocol, Union

from anilist.client import RateLimitError
from anilist.models import CandidateMatch


class MetadataFetcher(Protocol):
    """Remote metadata source consumed by the engine."""

    def fetch_metadata(self, item_id: int) -> Mapping[str, Any] | None:
        """Return metadata fields for the id, or None when the service has no match.

        Raises RateLimitError for a rate-limited request and any other
        exception for a failed one.
        """

    def search_by_title(self, title: str) -> List[CandidateMatch]:
        """Return candidate matches for a free-text title."""


@dataclass(frozen=True)
class Fetched:
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AlreadyComplete:
    pass


@dataclass(frozen=True)
class NotFound:
    pass


@dataclass(frozen=True)
class RateLimited:
    retry_after: int = 0


@dataclass(frozen=True)
class FetchFailed:
    message: str = ""


FetchOutcome = Union[Fetched, AlreadyComplete, NotFound, RateLimited, FetchFailed]


def fetch_one(fetcher: MetadataFetcher, item_id: int) -> FetchOutcome:
    """Fetch metadata for one id and classify the result.

    Nothing raised by the fetcher escapes: a rate limit becomes RateLimited,
    anything else becomes FetchFailed.
    """
    try:
        metadata = fetcher.fetch_metadata(item_id)
    except RateLimitError as exc:
        return RateLimited(retry_after=exc.retry_after)
    except Exception as exc:
        return FetchFailed(message=str(exc) or exc.__class__.__name__)
    if metadata is None:
        return NotFound()
    return Fetched(metadata=dict(metadata))


def counts_as_processed(outcome: FetchOutcome) -> bool:
    """True for outcomes that consume the id and reset backoff."""
    return isinstance(outcome, (Fetched, AlreadyComplete, NotFound))
