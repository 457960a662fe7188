"""JSON-file persistence for the collection, unresolved ids and details cache."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Set

from core.models import TrackedItem
from logger import get_logger

log = get_logger()

COLLECTION_FILE = "collection.json"
UNRESOLVED_FILE = "unresolved.json"
DETAILS_CACHE_FILE = "details_cache.json"


class JsonStore:
    """Synchronous key-value store backed by one JSON file per key.

    Read and write failures are logged and swallowed; callers always get a
    usable (possibly empty) value back.
    """

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = Path(data_dir).expanduser()

    def _path(self, name: str) -> Path:
        return self.data_dir / name

    def _read(self, name: str) -> Any:
        path = self._path(name)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            log.warn(f"⚠️ Could not read {path}: {exc}")
            return None

    def _write(self, name: str, data: Any) -> None:
        path = self._path(name)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(path.suffix + ".tmp")
            tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
            tmp.replace(path)
        except (OSError, TypeError, ValueError) as exc:
            log.warn(f"⚠️ Could not write {path}: {exc}")

    def _remove(self, name: str) -> None:
        try:
            self._path(name).unlink(missing_ok=True)
        except OSError as exc:
            log.warn(f"⚠️ Could not remove {self._path(name)}: {exc}")

    def load_collection(self) -> List[TrackedItem] | None:
        raw = self._read(COLLECTION_FILE)
        if not isinstance(raw, list):
            return None
        items: List[TrackedItem] = []
        for entry in raw:
            if not isinstance(entry, dict):
                continue
            try:
                items.append(TrackedItem.from_dict(entry))
            except (TypeError, ValueError) as exc:
                log.warn(f"⚠️ Skipping malformed collection entry: {exc}")
        return items

    def save_collection(self, items: List[TrackedItem]) -> None:
        self._write(COLLECTION_FILE, [item.to_dict() for item in items])

    def load_unresolved(self) -> Set[int]:
        raw = self._read(UNRESOLVED_FILE)
        if not isinstance(raw, list):
            return set()
        ids: Set[int] = set()
        for value in raw:
            try:
                ids.add(int(value))
            except (TypeError, ValueError):
                continue
        return ids

    def save_unresolved(self, ids: Set[int]) -> None:
        self._write(UNRESOLVED_FILE, sorted(ids))

    def load_details_cache(self) -> Dict[int, Dict[str, Any]]:
        raw = self._read(DETAILS_CACHE_FILE)
        if not isinstance(raw, dict):
            return {}
        cache: Dict[int, Dict[str, Any]] = {}
        for key, value in raw.items():
            if not isinstance(value, dict):
                continue
            try:
                cache[int(key)] = value
            except (TypeError, ValueError):
                continue
        return cache

    def save_details_cache(self, cache: Dict[int, Dict[str, Any]]) -> None:
        self._write(DETAILS_CACHE_FILE, {str(key): value for key, value in cache.items()})

    def clear_details_cache(self) -> None:
        self._remove(DETAILS_CACHE_FILE)
