"""Age- and size-based removal of cache entries."""

import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from skill_cache.cache.checkout import last_used
from skill_cache.cache.lock import DirectoryLock, is_lock_file, remove_orphan_lock
from skill_cache.cache.paths import CacheContext
from skill_cache.cache.status import CachedCheckout, scan_checkouts, scan_repositories
from skill_cache.errors import CacheIOError, CacheLocked
from skill_cache.utils.paths import TEMP_MARKERS, is_temp_name, remove_dir


logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class CleanScope(str, Enum):
    """Which stores a clean may touch."""

    CHECKOUTS = "checkouts"
    ALL = "all"


@dataclass
class CleanSummary:
    """What a clean removed, and what it had to leave behind."""

    checkouts_removed: int = 0
    checkouts_freed: int = 0
    repos_removed: int = 0
    repos_freed: int = 0
    temp_removed: int = 0
    locks_removed: int = 0
    skipped: list[str] = field(default_factory=list)

    @property
    def total_freed(self) -> int:
        return self.checkouts_freed + self.repos_freed


class EvictionPolicy:
    """Removes checkouts (and, in full scope, repositories) from the cache.

    Every removal takes the entry's exclusive lock first, so an entry that an
    install is reading under a shared lock is waited for, and skipped if the
    wait times out. Repositories are only removed when nobody holds them.
    """

    # Leftovers of interrupted operations older than this are swept
    STALE_TEMP_AGE = timedelta(hours=1)

    def __init__(
        self,
        context: CacheContext,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.context = context
        self._now = now or (lambda: datetime.now(timezone.utc))

    def clean(
        self,
        scope: CleanScope = CleanScope.CHECKOUTS,
        max_age_days: Optional[int] = None,
        max_size: Optional[int] = None,
    ) -> CleanSummary:
        """Evict checkouts by age and size; with ``ALL`` also drop repositories.

        Args:
            scope: CHECKOUTS leaves the repository store alone; ALL also removes
                every repository not currently locked
            max_age_days: Remove checkouts unused for longer (0 = no age limit,
                None = configured value)
            max_size: Evict least recently used checkouts until their total size
                fits (0 = unlimited, None = configured value)

        Returns:
            CleanSummary of removed entries and freed bytes
        """
        config = self.context.config
        max_age_days = config.max_age if max_age_days is None else max_age_days
        max_size = config.max_size if max_size is None else max_size

        summary = CleanSummary()
        remaining = scan_checkouts(self.context.paths.checkouts_dir)

        if max_age_days > 0:
            cutoff = self._now() - timedelta(days=max_age_days)
            kept = []
            for entry in remaining:
                expired = entry.last_used is not None and entry.last_used < cutoff
                if not (expired and self._remove_checkout(entry, summary, cutoff)):
                    kept.append(entry)
            remaining = kept

        if max_size > 0:
            total = sum(entry.size for entry in remaining)
            for entry in sorted(remaining, key=lambda e: e.last_used or _EPOCH):
                if total <= max_size:
                    break
                if self._remove_checkout(entry, summary):
                    total -= entry.size

        if scope is CleanScope.ALL:
            self._remove_repositories(summary)

        self._remove_stale_temp(summary)
        self._remove_orphan_locks(summary)
        return summary

    def purge(self) -> CleanSummary:
        """Remove every checkout and every repository that is not in use."""
        summary = CleanSummary()
        for entry in scan_checkouts(self.context.paths.checkouts_dir):
            self._remove_checkout(entry, summary)
        self._remove_repositories(summary)
        self._remove_stale_temp(summary)
        self._remove_orphan_locks(summary)
        return summary

    def _remove_checkout(
        self,
        entry: CachedCheckout,
        summary: CleanSummary,
        cutoff: Optional[datetime] = None,
    ) -> bool:
        lock = DirectoryLock(entry.path, timeout=self.context.lock_timeout)
        try:
            with lock.exclusive():
                if not entry.path.is_dir():
                    return False
                if cutoff is not None:
                    # Used by someone else since we scanned it
                    used = last_used(entry.path)
                    if used is not None and used >= cutoff:
                        return False
                remove_dir(entry.path)
        except CacheLocked:
            logger.warning("Skipping checkout %s: it is in use", entry.name)
            summary.skipped.append(entry.name)
            return False
        except OSError as e:
            raise CacheIOError(entry.name, f"cannot remove checkout: {e}") from e

        logger.info("Removed checkout %s", entry.name)
        summary.checkouts_removed += 1
        summary.checkouts_freed += entry.size
        return True

    def _remove_repositories(self, summary: CleanSummary) -> None:
        for entry in scan_repositories(self.context.paths.db_dir):
            lock = DirectoryLock(entry.path, timeout=self.context.lock_timeout)
            try:
                with lock.exclusive(timeout=0):
                    if not entry.path.is_dir():
                        continue
                    remove_dir(entry.path)
            except CacheLocked:
                logger.warning("Skipping repository %s: it is in use", entry.name)
                summary.skipped.append(entry.name)
                continue
            except OSError as e:
                raise CacheIOError(entry.name, f"cannot remove repository: {e}") from e

            logger.info("Removed repository %s", entry.name)
            summary.repos_removed += 1
            summary.repos_freed += entry.size

    def _remove_stale_temp(self, summary: CleanSummary) -> None:
        paths = self.context.paths
        cutoff = (self._now() - self.STALE_TEMP_AGE).timestamp()
        for directory in (paths.db_dir, paths.checkouts_dir):
            for path in _temp_entries(directory):
                # An operation still building this directory holds its entry's lock
                owner = DirectoryLock(directory / _entry_name(path.name), timeout=0)
                try:
                    if path.stat().st_mtime >= cutoff:
                        continue
                    with owner.exclusive():
                        shutil.rmtree(path)
                except CacheLocked:
                    continue
                except OSError as e:
                    logger.debug("Could not remove leftover %s: %s", path, e)
                    continue
                summary.temp_removed += 1

    def _remove_orphan_locks(self, summary: CleanSummary) -> None:
        paths = self.context.paths
        for directory in (paths.db_dir, paths.checkouts_dir):
            if not directory.is_dir():
                continue
            for path in sorted(directory.iterdir()):
                if is_lock_file(path) and remove_orphan_lock(path):
                    summary.locks_removed += 1


def _temp_entries(directory: Path) -> list[Path]:
    if not directory.is_dir():
        return []
    return [p for p in directory.iterdir() if p.is_dir() and is_temp_name(p.name)]


def _entry_name(temp_name: str) -> str:
    # ".owner-repo.tmp-abc123" -> "owner-repo"
    name = temp_name[1:]
    for marker in TEMP_MARKERS:
        if marker in name:
            return name.rsplit(marker, 1)[0]
    return name
