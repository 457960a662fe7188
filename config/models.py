"""Configuration dataclasses."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class AniListConfig:
    """AniList API settings."""

    api_url: str = "https://graphql.anilist.co"
    timeout_seconds: float = 20.0
    search_limit: int = 10
    min_score: float = 0.0
    max_description_length: int = 0


@dataclass
class QueueConfig:
    """Background fetch queue pacing."""

    base_delay_ms: int = 2000
    first_failure_delay_ms: int = 30000
    repeat_failure_delay_ms: int = 10000
    default_rate_limit_seconds: int = 60
    min_rate_limit_seconds: int = 0


@dataclass
class StorageConfig:
    """Local data directory settings."""

    data_dir: str = "~/.animelist-enricher"


@dataclass
class LoggingConfig:
    """Console logging settings."""

    level: str = "INFO"
    timestamps: bool = False


@dataclass
class Config:
    """Top-level configuration container."""

    anilist: AniListConfig
    queue: QueueConfig
    storage: StorageConfig
    logging: LoggingConfig
