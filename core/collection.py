"""Collection store: the ordered list of tracked items plus merged metadata."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Set

from core.models import TrackedItem, merge_fields, strip_to_identity


class Collection:
    """Authoritative, ordered set of tracked items keyed by id.

    Every mutation is written through to the store. The details cache keeps
    the fetched metadata per id so it survives a collection import.
    """

    def __init__(self, store: Any) -> None:
        self._store = store
        self._items: List[TrackedItem] = []
        self._details: Dict[int, Dict[str, Any]] = {}

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item_id: object) -> bool:
        return self._index(item_id) is not None

    def _index(self, item_id: object) -> int | None:
        for idx, item in enumerate(self._items):
            if item.id == item_id:
                return idx
        return None

    def _save(self) -> None:
        self._store.save_collection(self._items)

    def load(self) -> bool:
        """Load items and the details cache from the store.

        Returns:
            True when a stored collection was found.
        """
        self._details = self._store.load_details_cache()
        stored = self._store.load_collection()
        if stored is None:
            self._items = []
            return False
        self._items = self._with_cached_details(stored)
        return True

    def _with_cached_details(self, items: Iterable[TrackedItem]) -> List[TrackedItem]:
        merged: List[TrackedItem] = []
        seen: Set[int] = set()
        for item in items:
            if item.id in seen:
                continue
            seen.add(item.id)
            cached = self._details.get(item.id)
            merged.append(merge_fields(item, cached) if cached else item)
        return merged

    def get(self, item_id: int) -> TrackedItem | None:
        idx = self._index(item_id)
        return self._items[idx] if idx is not None else None

    def items(self) -> List[TrackedItem]:
        return list(self._items)

    def ids(self) -> List[int]:
        return [item.id for item in self._items]

    def details(self, item_id: int) -> Dict[str, Any] | None:
        cached = self._details.get(item_id)
        return dict(cached) if cached is not None else None

    def missing_metadata_ids(self, exclude: Set[int] | None = None) -> List[int]:
        """Ids lacking a description or a media status, in collection order."""
        skip = exclude or set()
        return [item.id for item in self._items if not item.has_complete_metadata and item.id not in skip]

    def replace_all(self, items: Iterable[TrackedItem]) -> None:
        """Replace the whole collection, re-applying cached details by id."""
        self._items = self._with_cached_details(items)
        self._save()

    def merge(self, item_id: int, fields: Mapping[str, Any]) -> TrackedItem | None:
        """Overwrite ``fields`` on the item with ``item_id``.

        The details cache is updated even when the item is no longer tracked.
        """
        cached = dict(self._details.get(item_id) or {})
        cached.update({key: value for key, value in fields.items() if key != "id"})
        self._details[item_id] = cached
        self._store.save_details_cache(self._details)

        idx = self._index(item_id)
        if idx is None:
            return None
        updated = merge_fields(self._items[idx], fields)
        self._items[idx] = updated
        self._save()
        return updated

    def rekey(self, old_id: int, item: TrackedItem) -> None:
        """Replace the entry ``old_id`` with ``item`` and move it to the front.

        An existing entry already carrying ``item.id`` is dropped so the
        collection never holds two items with the same id.
        """
        self._items = [entry for entry in self._items if entry.id not in (old_id, item.id)]
        self._items.insert(0, item)
        self._save()

    def remove(self, item_id: int) -> bool:
        idx = self._index(item_id)
        if idx is None:
            return False
        del self._items[idx]
        self._save()
        return True

    def strip_all(self) -> None:
        """Drop fetched metadata from every item and empty the details cache."""
        self._details = {}
        self._store.clear_details_cache()
        self._store.save_details_cache(self._details)
        self._items = [strip_to_identity(item) for item in self._items]
        self._save()
