"""Configuration loading and management."""

from skill_cache.config.loader import (
    apply_env_overrides,
    load_config,
    merge_configs,
)
from skill_cache.config.schema import CacheConfig, ConfigFile, parse_size

__all__ = [
    # Loader functions
    "apply_env_overrides",
    "load_config",
    "merge_configs",
    # Schema classes
    "CacheConfig",
    "ConfigFile",
    "parse_size",
]
