"""Config package facade."""

from config.loader import config_from_dict, load_config
from config.models import (
    AniListConfig,
    Config,
    LoggingConfig,
    QueueConfig,
    StorageConfig,
)

__all__ = [
    "AniListConfig",
    "Config",
    "LoggingConfig",
    "QueueConfig",
    "StorageConfig",
    "config_from_dict",
    "load_config",
]
