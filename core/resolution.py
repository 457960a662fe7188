"""Manual resolution of items the background fetch could not match."""

from __future__ import annotations

from typing import List

from anilist.models import CandidateMatch
from core.fetching import MetadataFetcher
from core.models import USER_FIELDS, TrackedItem, merge_fields


def rank_candidates(candidates: List[CandidateMatch], min_score: float = 0.0) -> List[CandidateMatch]:
    """Sort candidates best first and drop those scoring below ``min_score``."""
    kept = [c for c in candidates if c.score >= min_score]
    return sorted(kept, key=lambda c: (-c.score, c.title.lower()))


def search_candidates(
    searcher: MetadataFetcher,
    title: str,
    limit: int = 10,
    min_score: float = 0.0,
) -> List[CandidateMatch]:
    """Search the remote service for ``title`` and return ranked candidates.

    Errors from the searcher propagate to the caller.
    """
    if not title.strip():
        return []
    return rank_candidates(list(searcher.search_by_title(title)), min_score)[:limit]


def build_resolved_item(original: TrackedItem, candidate: CandidateMatch) -> TrackedItem:
    """Build the replacement item for a manual match.

    The candidate's metadata becomes canonical; progress, score, status and
    the locally tracked season come from the original record.
    """
    base = TrackedItem(id=candidate.mal_id, title=candidate.title or original.title)
    resolved = merge_fields(base, candidate.metadata.to_fields())
    carried = {name: getattr(original, name) for name in USER_FIELDS}
    return merge_fields(resolved, carried)
