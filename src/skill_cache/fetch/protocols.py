"""Abstract interface for the version-control operations the cache needs."""

from pathlib import Path
from typing import Optional, Protocol


class GitBackendError(Exception):
    """A version-control operation failed.

    Raised by backends; the cache layer wraps it with the repository or
    checkout identity before it reaches the user.
    """


class GitBackend(Protocol):
    """Narrow capability interface over bare repositories.

    The cache never touches git plumbing directly, so the whole pipeline can
    run against an in-memory fake.
    """

    def clone_bare(self, url: str, dest: Path) -> None:
        """Clone ``url`` as a bare repository into the empty directory ``dest``.

        Raises:
            GitBackendError: If the clone fails
        """
        ...

    def fetch(self, repo_dir: Path, url: str) -> None:
        """Update all branches and tags of the bare repository from ``url``.

        Raises:
            GitBackendError: If the fetch fails
        """
        ...

    def list_refs(self, repo_dir: Path) -> dict[str, str]:
        """Return full ref names (``refs/heads/x``, ``refs/tags/y``) mapped to commits.

        Annotated tags are peeled to the commit they point at.
        """
        ...

    def default_branch(self, repo_dir: Path) -> Optional[str]:
        """Return the branch ``HEAD`` points at, or None if it is detached/unknown."""
        ...

    def resolve_commit(self, repo_dir: Path, revision: str) -> Optional[str]:
        """Return the full commit id for ``revision``, or None if there is no such commit."""
        ...

    def checkout(self, repo_dir: Path, commit: str, dest: Path) -> None:
        """Write the tree of ``commit`` into the existing empty directory ``dest``.

        Raises:
            GitBackendError: If the tree cannot be materialized
        """
        ...
