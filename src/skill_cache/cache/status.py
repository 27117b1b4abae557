"""Read-only cache statistics."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from skill_cache.cache.checkout import last_used, read_checkout_metadata
from skill_cache.cache.paths import CacheContext
from skill_cache.cache.store import parse_timestamp, read_repository_metadata
from skill_cache.utils.paths import dir_size


@dataclass
class CachedRepo:
    """A repository in ``db/``."""

    name: str
    path: Path
    size: int
    last_fetch: Optional[datetime] = None


@dataclass
class CachedCheckout:
    """A checkout in ``checkouts/``."""

    name: str
    path: Path
    size: int
    last_used: Optional[datetime] = None
    commit: Optional[str] = None


def _list_entries(directory: Path) -> list[Path]:
    if not directory.is_dir():
        return []
    try:
        children = list(directory.iterdir())
    except OSError:
        return []
    return sorted(
        p for p in children if not p.name.startswith(".") and p.is_dir()
    )


def scan_repositories(db_dir: Path) -> list[CachedRepo]:
    """List the repository store's entries with their sizes, sorted by name."""
    repos = []
    for path in _list_entries(db_dir):
        metadata = read_repository_metadata(path)
        repos.append(
            CachedRepo(
                name=path.name,
                path=path,
                size=dir_size(path),
                last_fetch=parse_timestamp(metadata.get("last_fetch")),
            )
        )
    return repos


def scan_checkouts(checkouts_dir: Path) -> list[CachedCheckout]:
    """List the checkout store's entries with sizes and last use, sorted by name."""
    checkouts = []
    for path in _list_entries(checkouts_dir):
        metadata = read_checkout_metadata(path) or {}
        checkouts.append(
            CachedCheckout(
                name=path.name,
                path=path,
                size=dir_size(path),
                last_used=last_used(path),
                commit=metadata.get("commit"),
            )
        )
    return checkouts


@dataclass
class CacheStats:
    """Snapshot of what the cache holds."""

    root: Path
    repos: list[CachedRepo] = field(default_factory=list)
    checkouts: list[CachedCheckout] = field(default_factory=list)

    @classmethod
    def collect(cls, context: CacheContext) -> "CacheStats":
        """Collect cache statistics. Takes no locks and writes nothing."""
        paths = context.paths
        return cls(
            root=paths.root,
            repos=scan_repositories(paths.db_dir),
            checkouts=scan_checkouts(paths.checkouts_dir),
        )

    @property
    def exists(self) -> bool:
        return self.root.is_dir()

    @property
    def db_size(self) -> int:
        return sum(r.size for r in self.repos)

    @property
    def checkouts_size(self) -> int:
        return sum(c.size for c in self.checkouts)

    @property
    def total_size(self) -> int:
        return self.db_size + self.checkouts_size

    def to_dict(self) -> dict:
        return {
            "root": str(self.root),
            "db": {
                "count": len(self.repos),
                "size": self.db_size,
                "entries": [
                    {
                        "name": r.name,
                        "size": r.size,
                        "last_fetch": r.last_fetch.isoformat() if r.last_fetch else None,
                    }
                    for r in self.repos
                ],
            },
            "checkouts": {
                "count": len(self.checkouts),
                "size": self.checkouts_size,
                "entries": [
                    {
                        "name": c.name,
                        "size": c.size,
                        "commit": c.commit,
                        "last_used": c.last_used.isoformat() if c.last_used else None,
                    }
                    for c in self.checkouts
                ],
            },
            "total_size": self.total_size,
        }


def format_age(moment: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Format how long ago ``moment`` was, e.g. ``(3 days ago)``."""
    if moment is None:
        return ""
    now = now or datetime.now(timezone.utc)
    seconds = int((now - moment).total_seconds())
    if seconds < 0:
        return ""

    mins = seconds // 60
    hours = mins // 60
    days = hours // 24
    weeks = days // 7

    for count, unit in ((weeks, "week"), (days, "day"), (hours, "hour"), (mins, "minute")):
        if count > 0:
            return f"({count} {unit}{'' if count == 1 else 's'} ago)"
    return "(just now)"
