"""Checkout store: working trees materialized from bare repositories.

Checkouts live under ``<cache root>/checkouts`` and are named by a tagged
identity. Trees pinned to a commit or tag (``owner-repo-a1b2c3d``) never
change once created. Trees that follow a branch (``owner-repo-main``) are
replaced whenever the branch tip moves.
"""

import json
import logging
import os
import re
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from skill_cache.cache.lock import DirectoryLock
from skill_cache.cache.paths import CacheContext
from skill_cache.cache.store import BareRepository, parse_timestamp
from skill_cache.core.source import CheckoutIdentity
from skill_cache.errors import CacheIOError, CorruptedCache, RevisionNotFound
from skill_cache.fetch.protocols import GitBackend, GitBackendError
from skill_cache.utils.paths import make_temp_dir, swap_dir, write_json_atomic


logger = logging.getLogger(__name__)

METADATA_FILE = ".skill-cache-checkout.json"

_COMMIT_PATTERN = re.compile(r"^[0-9a-fA-F]{4,40}$")


class RevisionKind(str, Enum):
    """What a revision specifier turned out to name."""

    COMMIT = "commit"
    TAG = "tag"
    BRANCH = "branch"


@dataclass(frozen=True)
class ResolvedRevision:
    """A revision specifier resolved against a repository's refs."""

    commit: str
    kind: RevisionKind
    name: str


@dataclass
class Checkout:
    """A working tree in the checkout store."""

    identity: CheckoutIdentity
    path: Path
    commit: str
    created_at: datetime
    last_used_at: datetime
    revision: Optional[str] = None

    @property
    def name(self) -> str:
        return self.identity.name


def read_checkout_metadata(path: Path) -> Optional[dict[str, Any]]:
    """Read a checkout's metadata, or None if it is missing or unreadable."""
    try:
        data = json.loads((path / METADATA_FILE).read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
    if not isinstance(data, dict) or not isinstance(data.get("commit"), str):
        return None
    return data


def last_used(path: Path) -> Optional[datetime]:
    """When a checkout was last used.

    Falls back to the directory's modification time when the metadata is
    unreadable, and returns None if the directory is gone.
    """
    metadata = read_checkout_metadata(path)
    if metadata is not None:
        moment = parse_timestamp(metadata.get("last_used_at"))
        if moment is not None:
            return moment
    try:
        return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
    except OSError:
        return None


class CheckoutManager:
    """Resolves revisions and materializes working trees for them."""

    def __init__(self, context: CacheContext, backend: GitBackend):
        """Initialize the checkout manager.

        Args:
            context: Resolved cache locations and settings
            backend: Version-control operations
        """
        self.context = context
        self.backend = backend

    @property
    def checkouts_dir(self) -> Path:
        return self.context.paths.checkouts_dir

    def path_for(self, identity: CheckoutIdentity) -> Path:
        return self.checkouts_dir / identity.name

    def lock(self, identity: CheckoutIdentity) -> DirectoryLock:
        return DirectoryLock(self.path_for(identity), timeout=self.context.lock_timeout)

    def resolve_revision(
        self, repository: BareRepository, revision: Optional[str]
    ) -> ResolvedRevision:
        """Turn a revision specifier into a commit.

        Branches are matched first, then tags, then (for hex strings) commits.
        No specifier means the repository's default branch.

        Raises:
            RevisionNotFound: If nothing matches
            CorruptedCache: If the repository's refs cannot be read
        """
        path = repository.path
        try:
            refs = self.backend.list_refs(path)
        except GitBackendError as e:
            raise CorruptedCache(repository.name, f"cannot read refs: {e}") from e

        if revision is None:
            branch = self.backend.default_branch(path)
            if branch is None or f"refs/heads/{branch}" not in refs:
                raise RevisionNotFound(repository.display_name, "HEAD")
            return ResolvedRevision(refs[f"refs/heads/{branch}"], RevisionKind.BRANCH, branch)

        if f"refs/heads/{revision}" in refs:
            return ResolvedRevision(refs[f"refs/heads/{revision}"], RevisionKind.BRANCH, revision)
        if f"refs/tags/{revision}" in refs:
            return ResolvedRevision(refs[f"refs/tags/{revision}"], RevisionKind.TAG, revision)
        if _COMMIT_PATTERN.match(revision):
            commit = self.backend.resolve_commit(path, revision)
            if commit:
                return ResolvedRevision(commit, RevisionKind.COMMIT, revision)

        raise RevisionNotFound(repository.display_name, revision)

    def identity_for(
        self, repository: BareRepository, resolved: ResolvedRevision
    ) -> CheckoutIdentity:
        if resolved.kind is RevisionKind.BRANCH:
            return CheckoutIdentity.branch(repository.owner, repository.repo, resolved.name)
        return CheckoutIdentity.pinned(repository.owner, repository.repo, resolved.commit)

    def load(self, identity: CheckoutIdentity) -> Optional[Checkout]:
        """Return the stored checkout for ``identity``, or None if absent or corrupted.

        Raises:
            CacheIOError: The entry belongs to a checkout of the other kind (a
                branch named like the short hash of a pinned checkout)
        """
        path = self.path_for(identity)
        if not path.is_dir():
            return None
        metadata = read_checkout_metadata(path)
        if metadata is None:
            return None
        stored_kind = metadata.get("kind")
        if stored_kind is not None and stored_kind != identity.kind.value:
            raise CacheIOError(
                identity.name,
                f"entry holds a {stored_kind} checkout, "
                f"refusing to use it as a {identity.kind.value} checkout",
            )
        created_at = parse_timestamp(metadata.get("created_at"))
        used_at = parse_timestamp(metadata.get("last_used_at"))
        if created_at is None or used_at is None:
            return None
        return Checkout(
            identity=identity,
            path=path,
            commit=metadata["commit"],
            created_at=created_at,
            last_used_at=used_at,
            revision=metadata.get("revision"),
        )

    def resolve(
        self,
        repository: BareRepository,
        revision: Optional[str] = None,
        offline: Optional[bool] = None,
    ) -> Checkout:
        """Find or create the checkout for ``revision``.

        Args:
            repository: Bare repository to check out from
            revision: Commit, branch or tag (None = default branch)
            offline: Forbid network access (None = use the context setting).
                Checkouts are built from the local repository, so this only
                decides whether a corrupted entry may be rebuilt.

        Returns:
            The checkout, with ``last_used_at`` refreshed

        Raises:
            RevisionNotFound: No branch, tag or commit matches ``revision``
            CorruptedCache: Offline and the entry is damaged, or a pinned entry
                holds a different commit
            CacheLocked: The checkout lock could not be acquired in time
            CacheIOError: Filesystem failure while building the tree, or the
                entry's name is taken by a checkout of the other kind
        """
        offline = self.context.offline if offline is None else offline
        resolved = self.resolve_revision(repository, revision)
        identity = self.identity_for(repository, resolved)

        existing = self.load(identity)
        if existing is not None and existing.commit == resolved.commit:
            with self.lock(identity).shared():
                if self.touch(existing):
                    return existing
            # Replaced since we loaded it; settle it under the exclusive lock

        if existing is None and os.path.lexists(self.path_for(identity)) and offline:
            raise CorruptedCache(identity.name, "checkout metadata is missing or unreadable")

        return self._materialize(repository, identity, resolved)

    def touch(self, checkout: Checkout) -> bool:
        """Record that ``checkout`` was just used.

        Only ``last_used_at`` is rewritten, and only while the entry on disk
        still holds ``checkout.commit``. The caller must hold the checkout's
        lock.

        Returns:
            False if the entry was replaced or removed since it was loaded
        """
        metadata = read_checkout_metadata(checkout.path)
        if metadata is None or metadata["commit"] != checkout.commit:
            return False

        now = datetime.now(timezone.utc)
        metadata["last_used_at"] = now.isoformat()
        try:
            write_json_atomic(checkout.path / METADATA_FILE, metadata)
            os.utime(checkout.path)
        except OSError as e:
            logger.debug("Could not update last use of %s: %s", checkout.name, e)
        else:
            checkout.last_used_at = now
        return True

    def _materialize(
        self,
        repository: BareRepository,
        identity: CheckoutIdentity,
        resolved: ResolvedRevision,
    ) -> Checkout:
        with self.lock(identity).exclusive():
            existing = self.load(identity)
            if existing is not None:
                if existing.commit == resolved.commit:
                    self.touch(existing)
                    return existing
                if not identity.is_mutable:
                    raise CorruptedCache(
                        identity.name,
                        f"holds commit {existing.commit[:12]}, "
                        f"expected {resolved.commit[:12]}",
                    )
                logger.info(
                    "Updating %s: %s -> %s",
                    identity.name,
                    existing.commit[:7],
                    resolved.commit[:7],
                )
            elif os.path.lexists(self.path_for(identity)):
                logger.warning("Discarding corrupted checkout %s", identity.name)

            return self._write(
                repository,
                identity,
                resolved,
                created_at=existing.created_at if existing else None,
            )

    def _write(
        self,
        repository: BareRepository,
        identity: CheckoutIdentity,
        resolved: ResolvedRevision,
        created_at: Optional[datetime],
    ) -> Checkout:
        path = self.path_for(identity)
        if os.path.lexists(path) and (not path.is_dir() or path.is_symlink()):
            raise CacheIOError(identity.name, f"{path} exists and is not a cache directory")

        logger.info("Checking out %s at %s", repository.display_name, resolved.commit[:7])
        tmp = None
        try:
            tmp = make_temp_dir(self.checkouts_dir, identity.name)
            os.chmod(tmp, 0o755)
            self.backend.checkout(repository.path, resolved.commit, tmp)
            now = datetime.now(timezone.utc)
            checkout = Checkout(
                identity=identity,
                path=path,
                commit=resolved.commit,
                created_at=created_at or now,
                last_used_at=now,
                revision=resolved.name,
            )
            self._write_metadata(tmp, checkout)
            swap_dir(tmp, path)
            return checkout
        except GitBackendError as e:
            raise CacheIOError(
                identity.name,
                f"checkout of {resolved.commit[:12]} from {repository.display_name} failed: {e}",
            ) from e
        except OSError as e:
            raise CacheIOError(identity.name, str(e)) from e
        finally:
            # Interrupted or failed checkouts never become visible
            if tmp is not None and tmp.exists():
                shutil.rmtree(tmp, ignore_errors=True)

    def _write_metadata(self, directory: Path, checkout: Checkout) -> None:
        write_json_atomic(
            directory / METADATA_FILE,
            {
                "identity": checkout.name,
                "kind": checkout.identity.kind.value,
                "commit": checkout.commit,
                "revision": checkout.revision,
                "created_at": checkout.created_at.isoformat(),
                "last_used_at": checkout.last_used_at.isoformat(),
            },
        )
