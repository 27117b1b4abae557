"""Install pipeline: repository store -> checkout -> copy into the project.

For each install, it:
1. Validates the source (nothing is touched for malformed input)
2. Ensures the bare repository is cached (clone or fetch unless offline)
3. Resolves the revision to a checkout, creating or updating it as needed
4. Copies the skill's sub-path into the target directory
"""

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from skill_cache.cache.checkout import METADATA_FILE, Checkout, CheckoutManager
from skill_cache.cache.paths import CacheContext, build_context
from skill_cache.cache.store import BareRepository, RepositoryStore, UpdatePolicy
from skill_cache.core.skill import SkillMetadata, read_skill_metadata
from skill_cache.core.source import RepositorySource, parse_source
from skill_cache.errors import (
    CacheIOError,
    CorruptedCache,
    RepositoryNotCached,
    RevisionNotFound,
    SkillPathNotFound,
    TargetExistsError,
)
from skill_cache.fetch.git import GitPythonBackend
from skill_cache.fetch.protocols import GitBackend
from skill_cache.utils.paths import make_temp_dir, swap_dir


logger = logging.getLogger(__name__)


@dataclass
class InstallResult:
    """Outcome of a successful install.

    Attributes:
        path: Directory the skill was installed into
        commit: Full id of the commit it was installed from
        checkout: Cache checkout the files were copied from
        repository: Cached bare repository
        skill: Metadata from the installed SKILL.md, if any
    """

    path: Path
    commit: str
    checkout: Checkout
    repository: BareRepository
    skill: Optional[SkillMetadata] = None


class CacheLookupPipeline:
    """Serves skill installs from the local repository cache."""

    # An entry evicted between resolution and locking is resolved again once
    MAX_ATTEMPTS = 2

    def __init__(self, context: CacheContext, backend: Optional[GitBackend] = None):
        """Initialize the pipeline.

        Args:
            context: Resolved cache locations and settings
            backend: Version-control operations (defaults to GitPython)
        """
        self.context = context
        backend = backend if backend is not None else GitPythonBackend()
        self.store = RepositoryStore(context, backend)
        self.checkouts = CheckoutManager(context, backend)

    def install(
        self,
        source: RepositorySource,
        target_dir: Path,
        offline: Optional[bool] = None,
        update_policy: UpdatePolicy = UpdatePolicy.REUSE,
        overwrite: bool = False,
    ) -> InstallResult:
        """Install a skill from the cache into ``target_dir``.

        Args:
            source: Repository, sub-path and revision of the skill
            target_dir: Directory to create (or replace) with the skill's files
            offline: Forbid network access (None = use the context setting)
            update_policy: REFRESH fetches the repository before resolving
            overwrite: Replace ``target_dir`` if it already exists

        Returns:
            InstallResult with the installed path and resolved commit

        Raises:
            SourceParseError: The source is malformed
            TargetExistsError: ``target_dir`` exists and ``overwrite`` is False
            RepositoryNotCached: Offline and the cache cannot serve the request
            NetworkError: Clone or fetch failed
            RevisionNotFound: The revision does not exist
            SkillPathNotFound: The sub-path does not exist at that revision
            CacheLocked: A cache entry stayed locked past the timeout
            CorruptedCache: A damaged entry could not be repaired
            CacheIOError: Filesystem failure
        """
        source.validate()
        offline = self.context.offline if offline is None else offline
        target_dir = Path(target_dir)

        if os.path.lexists(target_dir) and not overwrite:
            raise TargetExistsError(target_dir)

        for _ in range(self.MAX_ATTEMPTS):
            repository, checkout = self._checkout(source, update_policy, offline)

            with self.checkouts.lock(checkout.identity).shared():
                current = self.checkouts.load(checkout.identity)
                if current is None or current.commit != checkout.commit:
                    logger.info(
                        "Checkout %s changed before it could be used, retrying",
                        checkout.name,
                    )
                    continue
                installed = self._copy(current, source, target_dir, overwrite)

            logger.info("Installed %s at %s into %s", source, checkout.commit[:7], installed)
            return InstallResult(
                path=installed,
                commit=current.commit,
                checkout=current,
                repository=repository,
                skill=read_skill_metadata(installed),
            )

        raise CorruptedCache(
            checkout.name, "entry kept disappearing while it was being installed"
        )

    def _checkout(
        self, source: RepositorySource, policy: UpdatePolicy, offline: bool
    ) -> tuple[BareRepository, Checkout]:
        display = f"{source.owner}/{source.repo}"
        fetched = policy is UpdatePolicy.REFRESH
        recloned = False

        for _ in range(self.MAX_ATTEMPTS):
            repository = self.store.ensure(source, policy, offline=offline)
            try:
                with self.store.lock(repository.name).shared():
                    if not self.store.is_valid(repository.path):
                        logger.info("Repository %s vanished, retrying", repository.name)
                        continue
                    return repository, self.checkouts.resolve(
                        repository, source.revision, offline=offline
                    )
            except CorruptedCache as e:
                # Damaged checkouts surface here only when they cannot be rebuilt
                if e.entry != repository.name:
                    raise
                if offline:
                    raise RepositoryNotCached(display, "cache entry is corrupted") from e
                if recloned:
                    raise
                logger.warning("%s", e)
                self.store.discard(repository.name)
                recloned = True
            except RevisionNotFound as e:
                if offline:
                    raise RepositoryNotCached(
                        display, f"revision '{e.revision}' is not in the local cache"
                    ) from e
                if fetched:
                    raise
                # The ref may be newer than our copy of the repository
                logger.info("Revision %s not cached, fetching %s", e.revision, display)
                policy = UpdatePolicy.REFRESH
                fetched = True

        repository = self.store.ensure(source, policy, offline=offline)
        with self.store.lock(repository.name).shared():
            return repository, self.checkouts.resolve(
                repository, source.revision, offline=offline
            )

    def _copy(
        self,
        checkout: Checkout,
        source: RepositorySource,
        target_dir: Path,
        overwrite: bool,
    ) -> Path:
        skill_dir = checkout.path / source.path if source.path else checkout.path
        if not skill_dir.is_dir():
            raise SkillPathNotFound(checkout.name, source.path or ".")

        if os.path.lexists(target_dir) and not overwrite:
            raise TargetExistsError(target_dir)

        tmp = None
        try:
            tmp = make_temp_dir(target_dir.parent, target_dir.name)
            shutil.copytree(
                skill_dir,
                tmp,
                symlinks=True,
                dirs_exist_ok=True,
                ignore=shutil.ignore_patterns(METADATA_FILE),
            )
            swap_dir(tmp, target_dir)
        except OSError as e:
            raise CacheIOError(
                checkout.name, f"cannot install into {target_dir}: {e}"
            ) from e
        finally:
            if tmp is not None and tmp.exists():
                shutil.rmtree(tmp, ignore_errors=True)
        return target_dir


def install_skill(
    source: Union[str, RepositorySource],
    target_dir: Path,
    *,
    context: Optional[CacheContext] = None,
    backend: Optional[GitBackend] = None,
    offline: Optional[bool] = None,
    update: bool = False,
    overwrite: bool = False,
) -> InstallResult:
    """Parse ``source`` if needed and install it through the cache.

    Convenience entry point for callers that do not manage a CacheContext.
    """
    if isinstance(source, str):
        source = parse_source(source)
    context = context if context is not None else build_context()
    pipeline = CacheLookupPipeline(context, backend)
    return pipeline.install(
        source,
        target_dir,
        offline=offline,
        update_policy=UpdatePolicy.REFRESH if update else UpdatePolicy.REUSE,
        overwrite=overwrite,
    )
