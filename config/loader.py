"""Configuration loading and normalization."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Mapping

from config.merge import apply_env_overrides, merge_dicts
from config.models import AniListConfig, Config, LoggingConfig, QueueConfig, StorageConfig


BASE_DIR = Path(__file__).resolve().parent.parent
MODULE_CONFIG_PATHS = {
    "anilist": BASE_DIR / "anilist" / "config.json",
    "queue": BASE_DIR / "core" / "queue_config.json",
}


def _as_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    return default


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _non_negative(value: int) -> int:
    return value if value >= 0 else 0


def _load_json(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def _load_default_sections() -> Dict[str, Any]:
    raw: Dict[str, Any] = {}
    for section, file_path in MODULE_CONFIG_PATHS.items():
        if file_path.exists():
            raw[section] = _load_json(file_path)
    return raw


def _section(raw: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ValueError(f"config section '{name}' must be an object")
    return value


def config_from_dict(raw: Dict[str, Any]) -> Config:
    """Build a Config instance from a raw dictionary.

    Raises:
        ValueError: If the config or one of its sections is not an object.
    """
    if not isinstance(raw, dict):
        raise ValueError("config must be a JSON object")
    anilist_raw = _section(raw, "anilist")
    queue_raw = _section(raw, "queue")
    storage_raw = _section(raw, "storage")
    logging_raw = _section(raw, "logging")

    anilist = AniListConfig(
        api_url=str(anilist_raw.get("api_url", "https://graphql.anilist.co")),
        timeout_seconds=_as_float(anilist_raw.get("timeout_seconds", 20.0), 20.0),
        search_limit=max(1, _as_int(anilist_raw.get("search_limit", 10), 10)),
        min_score=_as_float(anilist_raw.get("min_score", 0.0), 0.0),
        max_description_length=_non_negative(_as_int(anilist_raw.get("max_description_length", 0), 0)),
    )
    queue = QueueConfig(
        base_delay_ms=_non_negative(_as_int(queue_raw.get("base_delay_ms", 2000), 2000)),
        first_failure_delay_ms=_non_negative(_as_int(queue_raw.get("first_failure_delay_ms", 30000), 30000)),
        repeat_failure_delay_ms=_non_negative(_as_int(queue_raw.get("repeat_failure_delay_ms", 10000), 10000)),
        default_rate_limit_seconds=max(1, _as_int(queue_raw.get("default_rate_limit_seconds", 60), 60)),
        min_rate_limit_seconds=_non_negative(_as_int(queue_raw.get("min_rate_limit_seconds", 0), 0)),
    )
    storage = StorageConfig(
        data_dir=str(storage_raw.get("data_dir", "~/.animelist-enricher")),
    )
    logging = LoggingConfig(
        level=str(logging_raw.get("level", "INFO")).upper(),
        timestamps=_as_bool(logging_raw.get("timestamps"), False),
    )
    return Config(anilist=anilist, queue=queue, storage=storage, logging=logging)


def load_config(path: Path | None, environ: Mapping[str, str] | None = None) -> Config:
    """Load config data into a Config instance.

    Args:
        path: Optional path to a JSON config file containing overrides.
        environ: Environment mapping; defaults to ``os.environ``.

    Returns:
        Parsed Config instance.
    """
    raw = _load_default_sections()
    if path is not None:
        user = _load_json(path)
        if not isinstance(user, dict):
            raise ValueError(f"config file must contain a JSON object: {path}")
        raw = merge_dicts(raw, user)
    raw = apply_env_overrides(raw, os.environ if environ is None else environ)
    return config_from_dict(raw)
