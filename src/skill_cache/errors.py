"""Exception hierarchy for cache and install operations.

Every error names the repository and, where relevant, the revision or
checkout that was being processed, so a message shown to the user is
actionable on its own.
"""

from pathlib import Path
from typing import Optional


class SkillCacheError(Exception):
    """Base class for all skill cache errors."""


class ConfigError(SkillCacheError):
    """Invalid configuration, or no usable home directory."""

    def __init__(self, message: str):
        super().__init__(f"Configuration error: {message}")


class SourceParseError(SkillCacheError):
    """A repository source descriptor could not be parsed."""

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Invalid skill source '{source}': {reason}")


class NetworkError(SkillCacheError):
    """Cloning or fetching a remote repository failed.

    The cache is left unchanged, so the caller may retry.
    """

    def __init__(self, repository: str, message: str):
        self.repository = repository
        super().__init__(f"Network error for {repository}: {message}")


class RepositoryNotCached(SkillCacheError):
    """Offline mode was requested but the cache cannot serve the request."""

    def __init__(self, repository: str, reason: Optional[str] = None):
        self.repository = repository
        message = f"Repository {repository} is not available in the offline cache"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class RevisionNotFound(SkillCacheError):
    """The requested commit, branch or tag does not exist."""

    def __init__(self, repository: str, revision: str):
        self.repository = repository
        self.revision = revision
        super().__init__(f"Revision '{revision}' not found in {repository}")


class CacheLocked(SkillCacheError):
    """A cache entry lock could not be acquired within the timeout."""

    def __init__(self, entry: str, timeout: float):
        self.entry = entry
        self.timeout = timeout
        super().__init__(
            f"Cache entry {entry} is locked by another process "
            f"(gave up after {timeout:g}s)"
        )


class CorruptedCache(SkillCacheError):
    """A cache entry failed its integrity check and could not be repaired."""

    def __init__(self, entry: str, reason: str):
        self.entry = entry
        super().__init__(f"Cache entry {entry} is corrupted: {reason}")


class CacheIOError(SkillCacheError):
    """A filesystem operation on the cache failed."""

    def __init__(self, entry: str, message: str):
        self.entry = entry
        super().__init__(f"I/O error on {entry}: {message}")


class TargetExistsError(SkillCacheError):
    """The install target already exists and overwriting was not requested."""

    def __init__(self, path: Path):
        self.path = path
        super().__init__(f"Target already exists: {path} (use overwrite to replace it)")


class SkillPathNotFound(SkillCacheError):
    """The requested sub-path does not exist in the resolved checkout."""

    def __init__(self, checkout: str, sub_path: str):
        self.checkout = checkout
        self.sub_path = sub_path
        super().__init__(f"Path '{sub_path}' not found in checkout {checkout}")
