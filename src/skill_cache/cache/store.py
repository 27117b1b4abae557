"""Repository store: one bare repository per remote owner/repo pair."""

import json
import logging
import os
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from skill_cache.cache.lock import DirectoryLock
from skill_cache.cache.paths import CacheContext
from skill_cache.core.source import RepositorySource, repository_id
from skill_cache.errors import CacheIOError, NetworkError, RepositoryNotCached
from skill_cache.fetch.protocols import GitBackend, GitBackendError
from skill_cache.utils.paths import make_temp_dir, remove_dir, write_json_atomic


logger = logging.getLogger(__name__)

METADATA_FILE = "skill-cache.json"

# Entries every bare repository has; anything lacking one is treated as absent
BARE_MARKERS = (("HEAD", "file"), ("objects", "dir"), ("refs", "dir"))


class UpdatePolicy(str, Enum):
    """Whether an existing repository should be fetched before use."""

    REUSE = "reuse"
    REFRESH = "refresh"


@dataclass
class BareRepository:
    """A bare repository in the store.

    Attributes:
        owner: Repository owner
        repo: Repository name
        path: Storage directory
        url: Remote URL it was cloned from
        last_fetch: When it was last cloned or fetched (None if unknown)
    """

    owner: str
    repo: str
    path: Path
    url: str
    last_fetch: Optional[datetime] = None

    @property
    def name(self) -> str:
        return repository_id(self.owner, self.repo)

    @property
    def display_name(self) -> str:
        return f"{self.owner}/{self.repo}"


def is_bare_repository(path: Path) -> bool:
    """Check that ``path`` has the internal structure of a bare repository."""
    if not path.is_dir():
        return False
    for marker, kind in BARE_MARKERS:
        entry = path / marker
        if kind == "file" and not entry.is_file():
            return False
        if kind == "dir" and not entry.is_dir():
            return False
    return True


def read_repository_metadata(path: Path) -> dict[str, Any]:
    """Read the store's bookkeeping for a repository, or {} if there is none."""
    try:
        data = json.loads((path / METADATA_FILE).read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp written by the cache."""
    if not isinstance(value, str):
        return None
    try:
        moment = datetime.fromisoformat(value)
    except ValueError:
        return None
    # Handle naive datetimes by assuming UTC
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


class RepositoryStore:
    """Owns the bare repositories under ``<cache root>/db``.

    Repositories are cloned once and reused by every later install. All
    creation and fetching happens under the repository's exclusive lock, and
    new clones are built in a temporary sibling directory that is renamed
    into place only once complete.
    """

    def __init__(self, context: CacheContext, backend: GitBackend):
        """Initialize the store.

        Args:
            context: Resolved cache locations and settings
            backend: Version-control operations
        """
        self.context = context
        self.backend = backend

    @property
    def db_dir(self) -> Path:
        return self.context.paths.db_dir

    def path_for(self, name: str) -> Path:
        return self.db_dir / name

    def lock(self, name: str) -> DirectoryLock:
        return DirectoryLock(self.path_for(name), timeout=self.context.lock_timeout)

    def is_valid(self, path: Path) -> bool:
        return is_bare_repository(path)

    def lookup(self, owner: str, repo: str) -> Optional[BareRepository]:
        """Return the stored repository if present and intact.

        Never locks and never touches the network.
        """
        path = self.path_for(repository_id(owner, repo))
        if not self.is_valid(path):
            return None
        metadata = read_repository_metadata(path)
        return BareRepository(
            owner=owner,
            repo=repo,
            path=path,
            url=metadata.get("url", ""),
            last_fetch=parse_timestamp(metadata.get("last_fetch")),
        )

    def ensure(
        self,
        source: RepositorySource,
        policy: UpdatePolicy = UpdatePolicy.REUSE,
        offline: Optional[bool] = None,
    ) -> BareRepository:
        """Make sure the source's repository is in the store.

        Args:
            source: Repository to provide
            policy: REUSE returns an existing entry untouched; REFRESH fetches it
            offline: Forbid network access (None = use the context setting)

        Returns:
            The stored BareRepository

        Raises:
            RepositoryNotCached: Offline and the entry is missing, corrupted,
                or a refresh was requested
            NetworkError: Clone or fetch failed
            CacheLocked: The repository lock could not be acquired in time
            CacheIOError: Filesystem failure, or the path is taken by a non-cache file
        """
        offline = self.context.offline if offline is None else offline
        display = f"{source.owner}/{source.repo}"

        existing = self._load(source)
        if existing is not None and policy is UpdatePolicy.REUSE:
            return existing

        if offline:
            if existing is not None:
                raise RepositoryNotCached(display, "refreshing requires network access")
            path = self.path_for(source.repository_id)
            reason = "cache entry is corrupted" if os.path.lexists(path) else None
            raise RepositoryNotCached(display, reason)

        with self.lock(source.repository_id).exclusive():
            # Another process may have finished while we waited for the lock
            existing = self._load(source)
            if existing is None:
                return self._clone(source)
            if policy is UpdatePolicy.REFRESH:
                self._fetch(source, existing)
            return existing

    def discard(self, name: str) -> None:
        """Delete a repository that cannot be read, so the next ``ensure`` clones it.

        Raises:
            CacheLocked: The repository lock could not be acquired in time
            CacheIOError: The entry could not be removed
        """
        path = self.path_for(name)
        with self.lock(name).exclusive():
            if not os.path.lexists(path):
                return
            if not path.is_dir() or path.is_symlink():
                raise CacheIOError(name, f"{path} exists and is not a cache directory")
            logger.warning("Discarding corrupted repository cache %s", name)
            try:
                remove_dir(path)
            except OSError as e:
                raise CacheIOError(name, f"cannot remove corrupted entry: {e}") from e

    def _load(self, source: RepositorySource) -> Optional[BareRepository]:
        repository = self.lookup(source.owner, source.repo)
        if repository is not None and not repository.url:
            repository.url = source.url
        return repository

    def _clone(self, source: RepositorySource) -> BareRepository:
        name = source.repository_id
        display = f"{source.owner}/{source.repo}"
        path = self.path_for(name)

        if os.path.lexists(path):
            if not path.is_dir() or path.is_symlink():
                raise CacheIOError(name, f"{path} exists and is not a cache directory")
            logger.warning("Discarding corrupted repository cache %s", name)
            try:
                remove_dir(path)
            except OSError as e:
                raise CacheIOError(name, f"cannot remove corrupted entry: {e}") from e

        logger.info("Cloning %s into %s", source.url, path)
        tmp = None
        try:
            tmp = make_temp_dir(self.db_dir, name)
            self.backend.clone_bare(source.url, tmp)
            repository = BareRepository(
                owner=source.owner,
                repo=source.repo,
                path=path,
                url=source.url,
                last_fetch=datetime.now(timezone.utc),
            )
            self._write_metadata(tmp, repository)
            os.rename(tmp, path)
            return repository
        except GitBackendError as e:
            raise NetworkError(display, f"clone of {source.url} failed: {e}") from e
        except OSError as e:
            raise CacheIOError(name, str(e)) from e
        finally:
            # Interrupted or failed clones never become visible
            if tmp is not None and tmp.exists():
                shutil.rmtree(tmp, ignore_errors=True)

    def _fetch(self, source: RepositorySource, repository: BareRepository) -> None:
        logger.info("Fetching %s into %s", source.url, repository.path)
        try:
            self.backend.fetch(repository.path, source.url)
        except GitBackendError as e:
            raise NetworkError(
                repository.display_name, f"fetch from {source.url} failed: {e}"
            ) from e

        repository.url = source.url
        repository.last_fetch = datetime.now(timezone.utc)
        try:
            self._write_metadata(repository.path, repository)
        except OSError as e:
            raise CacheIOError(repository.name, str(e)) from e

    def _write_metadata(self, directory: Path, repository: BareRepository) -> None:
        write_json_atomic(
            directory / METADATA_FILE,
            {
                "url": repository.url,
                "last_fetch": repository.last_fetch.isoformat()
                if repository.last_fetch
                else None,
            },
        )
