"""Ordered backlog of item ids awaiting a metadata fetch."""

from __future__ import annotations

from collections import deque
from typing import Deque, Iterable, Iterator, List


class PendingQueue:
    """FIFO of ids with priority re-insertion at the front.

    Duplicates are tolerated; merging fetched metadata is idempotent.
    """

    def __init__(self, ids: Iterable[int] = ()) -> None:
        self._ids: Deque[int] = deque(ids)

    def __len__(self) -> int:
        return len(self._ids)

    def __bool__(self) -> bool:
        return bool(self._ids)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._ids

    def __iter__(self) -> Iterator[int]:
        return iter(list(self._ids))

    def snapshot(self) -> List[int]:
        return list(self._ids)

    def push_back(self, item_id: int) -> None:
        self._ids.append(item_id)

    def push_front(self, item_id: int) -> None:
        self._ids.appendleft(item_id)

    def pop_front(self) -> int:
        return self._ids.popleft()

    def peek(self) -> int | None:
        return self._ids[0] if self._ids else None

    def prepend_new(self, ids: Iterable[int]) -> List[int]:
        """Put ids not already queued at the front, keeping their order.

        Returns:
            The ids that were added.
        """
        queued = set(self._ids)
        added: List[int] = []
        for item_id in ids:
            if item_id in queued:
                continue
            queued.add(item_id)
            added.append(item_id)
        self._ids.extendleft(reversed(added))
        return added

    def remove(self, item_id: int) -> int:
        """Drop every occurrence of ``item_id`` and return how many were removed."""
        before = len(self._ids)
        self._ids = deque(i for i in self._ids if i != item_id)
        return before - len(self._ids)

    def replace(self, ids: Iterable[int]) -> None:
        self._ids = deque(ids)

    def clear(self) -> None:
        self._ids.clear()
