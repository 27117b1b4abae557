"""Configuration loader with merge logic and precedence handling."""

import copy
import os
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from skill_cache.config.defaults import DEFAULT_CONFIG
from skill_cache.config.schema import CacheConfig, ConfigFile
from skill_cache.errors import ConfigError


# Environment variable -> key in the [cache] table
ENV_OVERRIDES = {
    "SKILL_CACHE_DIR": "dir",
    "SKILL_CACHE_MAX_AGE": "max_age",
    "SKILL_CACHE_MAX_SIZE": "max_size",
    "SKILL_CACHE_LOCK_TIMEOUT": "lock_timeout",
    "SKILL_CACHE_OFFLINE": "offline",
}


def load_toml_file(file_path: Path) -> dict[str, Any]:
    """Load and parse a TOML configuration file.

    Args:
        file_path: Path to the TOML file

    Returns:
        Dictionary containing the parsed TOML content

    Raises:
        tomllib.TOMLDecodeError: If the file contains invalid TOML
        FileNotFoundError: If the file doesn't exist
    """
    with open(file_path, "rb") as f:
        return tomllib.load(f)


def merge_configs(configs: list[dict[str, Any]]) -> dict[str, Any]:
    """Deep merge multiple configuration dictionaries.

    Merges configs from lowest to highest precedence, where later configs
    override earlier ones. Nested dictionaries are merged recursively; any
    other value in a later config replaces the earlier one.

    Args:
        configs: List of configuration dictionaries in order from lowest to
                highest precedence

    Returns:
        Merged configuration dictionary
    """
    result: dict[str, Any] = {}

    for config in configs:
        result = _deep_merge(result, config)

    return result


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge two dictionaries, with override taking precedence."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def apply_env_overrides(
    config: dict[str, Any], env: Optional[Mapping[str, str]] = None
) -> dict[str, Any]:
    """Apply environment variable overrides to configuration.

    Supports the variables listed in ``ENV_OVERRIDES``. Empty values are
    ignored.

    Args:
        config: Configuration dictionary to apply overrides to
        env: Environment mapping (defaults to ``os.environ``)

    Returns:
        Configuration dictionary with environment overrides applied
    """
    env = os.environ if env is None else env
    overrides = {
        key: env[name] for name, key in ENV_OVERRIDES.items() if env.get(name)
    }
    if not overrides:
        return config
    return _deep_merge(config, {"cache": overrides})


def load_config(
    config_path: Optional[Path] = None, env: Optional[Mapping[str, str]] = None
) -> CacheConfig:
    """Load and merge configuration from all sources.

    Configuration precedence (lowest to highest):
    1. Built-in defaults
    2. Config file (if it exists)
    3. Environment variables

    Args:
        config_path: Path to ``config.toml``. A missing file is not an error.
        env: Environment mapping (defaults to ``os.environ``)

    Returns:
        Validated CacheConfig instance

    Raises:
        ConfigError: If the file is unreadable, not valid TOML, or the merged
            configuration fails validation
    """
    configs_to_merge = [copy.deepcopy(DEFAULT_CONFIG)]

    if config_path is not None and config_path.exists():
        try:
            configs_to_merge.append(load_toml_file(config_path))
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"invalid TOML in {config_path}: {e}") from e
        except OSError as e:
            raise ConfigError(f"cannot read {config_path}: {e}") from e

    merged_config = apply_env_overrides(merge_configs(configs_to_merge), env)

    try:
        return ConfigFile(**merged_config).cache
    except ValidationError as e:
        source = config_path if config_path is not None else "defaults"
        raise ConfigError(f"invalid settings ({source}): {e}") from e
