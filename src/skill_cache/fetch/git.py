"""Git backend built on GitPython."""

import logging
import tarfile
import tempfile
from pathlib import Path
from typing import Optional

from git import Git, Repo
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from skill_cache.fetch.protocols import GitBackendError


logger = logging.getLogger(__name__)


class GitPythonBackend:
    """Bare-repository operations through the ``git`` executable."""

    # Mirror every branch and tag; the store has no remote-tracking namespace
    REFSPECS = ("+refs/heads/*:refs/heads/*", "+refs/tags/*:refs/tags/*")

    def __init__(self, fetch_timeout: Optional[float] = 600.0):
        """Initialize the backend.

        Args:
            fetch_timeout: Seconds after which a running clone or fetch is killed
                (None = no limit)
        """
        self.fetch_timeout = fetch_timeout
        # Never block on a credential prompt
        self._env = {"GIT_TERMINAL_PROMPT": "0"}

    def _open(self, repo_dir: Path) -> Repo:
        try:
            return Repo(str(repo_dir))
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise GitBackendError(f"not a git repository: {repo_dir}") from e

    def clone_bare(self, url: str, dest: Path) -> None:
        logger.debug("git clone --bare %s %s", url, dest)
        cmd = Git()
        try:
            with cmd.custom_environment(**self._env):
                cmd.clone(
                    "--bare",
                    "--quiet",
                    "--",
                    url,
                    str(dest),
                    kill_after_timeout=self.fetch_timeout,
                )
        except GitCommandError as e:
            raise GitBackendError(_describe(e)) from e

    def fetch(self, repo_dir: Path, url: str) -> None:
        repo = self._open(repo_dir)
        logger.debug("git fetch %s in %s", url, repo_dir)
        try:
            with repo.git.custom_environment(**self._env):
                repo.git.fetch(
                    "--quiet",
                    "--prune",
                    "--force",
                    url,
                    *self.REFSPECS,
                    kill_after_timeout=self.fetch_timeout,
                )
        except GitCommandError as e:
            raise GitBackendError(_describe(e)) from e

    def list_refs(self, repo_dir: Path) -> dict[str, str]:
        repo = self._open(repo_dir)
        try:
            output = repo.git.for_each_ref(
                "--format=%(objectname) %(*objectname) %(refname)",
                "refs/heads",
                "refs/tags",
            )
        except GitCommandError as e:
            raise GitBackendError(_describe(e)) from e

        refs = {}
        for line in output.splitlines():
            parts = line.split()
            if len(parts) == 3:
                # Annotated tag: use the peeled commit
                refs[parts[2]] = parts[1]
            elif len(parts) == 2:
                refs[parts[1]] = parts[0]
        return refs

    def default_branch(self, repo_dir: Path) -> Optional[str]:
        repo = self._open(repo_dir)
        try:
            ref = repo.git.symbolic_ref("--quiet", "HEAD")
        except GitCommandError:
            return None
        prefix = "refs/heads/"
        return ref[len(prefix):] if ref.startswith(prefix) else None

    def resolve_commit(self, repo_dir: Path, revision: str) -> Optional[str]:
        repo = self._open(repo_dir)
        try:
            return repo.git.rev_parse("--verify", "--quiet", f"{revision}^{{commit}}")
        except GitCommandError:
            return None

    def checkout(self, repo_dir: Path, commit: str, dest: Path) -> None:
        # git archive leaves the bare repository untouched, unlike a checkout
        # with --work-tree which would write an index into it.
        repo = self._open(repo_dir)
        logger.debug("git archive %s from %s into %s", commit, repo_dir, dest)
        try:
            with tempfile.TemporaryFile() as archive:
                repo.archive(archive, treeish=commit, format="tar")
                archive.seek(0)
                with tarfile.open(fileobj=archive, mode="r:") as tar:
                    if hasattr(tarfile, "data_filter"):
                        tar.extractall(dest, filter="data")
                    else:
                        tar.extractall(dest)
        except GitCommandError as e:
            raise GitBackendError(_describe(e)) from e
        except tarfile.TarError as e:
            raise GitBackendError(f"invalid archive for {commit}: {e}") from e


def _describe(error: GitCommandError) -> str:
    stderr = (error.stderr or "").strip()
    if stderr.startswith("stderr:"):
        stderr = stderr[len("stderr:"):].strip()
    return stderr.strip("'").strip() or str(error)
