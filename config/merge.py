"""Config merging helpers."""

from __future__ import annotations

from typing import Any, Dict, Mapping


ENV_OVERRIDES = {
    "ANIMELIST_ENRICHER_DATA_DIR": ("storage", "data_dir"),
    "ANIMELIST_ENRICHER_LOG_LEVEL": ("logging", "level"),
    "ANILIST_API_URL": ("anilist", "api_url"),
}


def merge_dicts(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge overrides into base, ignoring null override values."""
    merged = dict(base)
    for key, value in overrides.items():
        if value is None:
            continue
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_dicts(merged[key], value)
        else:
            merged[key] = value
    return merged


def apply_env_overrides(raw: Dict[str, Any], environ: Mapping[str, str]) -> Dict[str, Any]:
    """Overlay the supported environment variables onto a raw config dict."""
    overrides: Dict[str, Any] = {}
    for env_name, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(env_name, "").strip()
        if value:
            overrides.setdefault(section, {})[key] = value
    if not overrides:
        return raw
    return merge_dicts(raw, overrides)
