"""Cache directory resolution.

The cache follows a Cargo-like layout::

    <home>/                 (~/.skill-cache by default)
    ├── config.toml
    └── git/                (cache root)
        ├── checkouts/      working trees at specific commits or branches
        └── db/             bare repositories (fetch targets)
"""

import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass, replace
from pathlib import Path, PurePath, PurePosixPath, PureWindowsPath
from typing import Optional

from skill_cache.config.loader import load_config
from skill_cache.config.schema import CacheConfig
from skill_cache.errors import ConfigError
from skill_cache.utils.paths import expand_path


ENV_HOME = "SKILL_CACHE_HOME"
ENV_CACHE_DIR = "SKILL_CACHE_DIR"

HOME_DIR_NAME = ".skill-cache"
CONFIG_FILE_NAME = "config.toml"


@dataclass(frozen=True)
class CachePaths:
    """Resolved locations of the cache directories."""

    home: Path
    root: Path
    config_file: Path

    @property
    def db_dir(self) -> Path:
        """Repository store: one bare repository per ``owner-repo``."""
        return self.root / "db"

    @property
    def checkouts_dir(self) -> Path:
        """Checkout store: one working tree per ``owner-repo-{hash|branch}``."""
        return self.root / "checkouts"

    def with_root(self, root: Path) -> "CachePaths":
        return replace(self, root=root)


def _user_home(env: Mapping[str, str], platform: str) -> Optional[PurePath]:
    if platform.startswith("win"):
        if env.get("USERPROFILE"):
            return PureWindowsPath(env["USERPROFILE"])
        if env.get("HOMEDRIVE") and env.get("HOMEPATH"):
            return PureWindowsPath(env["HOMEDRIVE"] + env["HOMEPATH"])
        return None
    if env.get("HOME"):
        return PurePosixPath(env["HOME"])
    return None


def resolve_paths(env: Mapping[str, str], platform: str) -> CachePaths:
    """Resolve the cache directories from an environment snapshot.

    Resolution order:
    - home: ``SKILL_CACHE_HOME``, else ``<user home>/.skill-cache``
    - cache root: ``SKILL_CACHE_DIR``, else ``<home>/git``
    - config file: ``<home>/config.toml``

    Reads nothing but ``env``; the same inputs always give the same result.

    Args:
        env: Environment variables
        platform: Platform identity as in ``sys.platform``

    Returns:
        Resolved CachePaths

    Raises:
        ConfigError: If no home directory can be determined
    """
    if env.get(ENV_HOME):
        home = Path(env[ENV_HOME])
    else:
        user_home = _user_home(env, platform)
        if user_home is None:
            raise ConfigError(
                f"could not determine a home directory; set {ENV_HOME}"
            )
        home = Path(user_home) / HOME_DIR_NAME

    if env.get(ENV_CACHE_DIR):
        root = Path(env[ENV_CACHE_DIR])
    else:
        root = home / "git"

    return CachePaths(home=home, root=root, config_file=home / CONFIG_FILE_NAME)


@dataclass(frozen=True)
class CacheContext:
    """Everything a cache operation needs, resolved once per command.

    Attributes:
        paths: Cache directory locations
        config: Merged configuration
        offline: Whether network access is forbidden
    """

    paths: CachePaths
    config: CacheConfig
    offline: bool = False

    @property
    def lock_timeout(self) -> float:
        return self.config.lock_timeout


def build_context(
    env: Optional[Mapping[str, str]] = None,
    platform: Optional[str] = None,
    offline: Optional[bool] = None,
) -> CacheContext:
    """Resolve paths and load configuration into a CacheContext.

    A cache directory from the config file replaces the default cache root;
    ``SKILL_CACHE_DIR`` still takes precedence because the environment layer
    of the configuration overrides the file.

    Args:
        env: Environment variables (defaults to ``os.environ``)
        platform: Platform identity (defaults to ``sys.platform``)
        offline: Force offline mode on or off (None = use configuration)

    Raises:
        ConfigError: If paths cannot be resolved or the configuration is invalid
    """
    env = os.environ if env is None else env
    platform = sys.platform if platform is None else platform

    paths = resolve_paths(env, platform)
    config = load_config(paths.config_file, env)
    if config.dir:
        paths = paths.with_root(expand_path(config.dir))

    return CacheContext(
        paths=paths,
        config=config,
        offline=config.offline if offline is None else offline,
    )
