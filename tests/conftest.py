"""Shared pytest fixtures for skill cache tests."""

import hashlib
import json
import os
from pathlib import Path
from typing import Callable, Optional

import pytest

# Rich sizes its module-level consoles at import; keep CLI output unwrapped
# so long temporary paths do not split asserted phrases across lines.
os.environ.setdefault("COLUMNS", "200")

from skill_cache.cache.paths import build_context
from skill_cache.fetch.protocols import GitBackendError


REMOTE_URL = "https://github.com/acme/skills.git"

PDF_SKILL = """---
name: pdf
description: Read and fill PDF forms
version: 1.0.0
---

# PDF

Use this skill to work with PDF files.
"""


class FakeRemote:
    """An in-memory remote repository: commits are plain file mappings."""

    def __init__(self, default_branch: str = "main"):
        self.default_branch = default_branch
        self.commits: dict[str, dict[str, str]] = {}
        self.branches: dict[str, str] = {}
        self.tags: dict[str, str] = {}

    def commit(
        self,
        files: dict[str, str],
        branch: Optional[str] = None,
        tag: Optional[str] = None,
    ) -> str:
        """Record a commit and return its id."""
        payload = json.dumps([len(self.commits), files], sort_keys=True)
        commit_id = hashlib.sha1(payload.encode()).hexdigest()
        self.commits[commit_id] = dict(files)
        if branch is not None:
            self.branches[branch] = commit_id
        if tag is not None:
            self.tags[tag] = commit_id
        return commit_id

    def snapshot(self) -> dict:
        refs = {f"refs/heads/{name}": c for name, c in self.branches.items()}
        refs.update({f"refs/tags/{name}": c for name, c in self.tags.items()})
        return {"head": self.default_branch, "refs": refs, "commits": self.commits}


class FakeGitBackend:
    """GitBackend that keeps repository state in a JSON file.

    Cloned directories get the same top-level layout as a real bare
    repository, so the store's integrity checks apply unchanged.
    """

    STATE_FILE = "fake-state.json"

    def __init__(self):
        self.remotes: dict[str, FakeRemote] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail_network = False
        self.clone_hook: Optional[Callable[[], None]] = None

    def add_remote(self, url: str, default_branch: str = "main") -> FakeRemote:
        remote = FakeRemote(default_branch)
        self.remotes[url] = remote
        return remote

    def count(self, operation: str) -> int:
        return sum(1 for op, _ in self.calls if op == operation)

    @property
    def network_calls(self) -> list[tuple[str, str]]:
        return [call for call in self.calls if call[0] in ("clone", "fetch")]

    def _remote(self, url: str) -> FakeRemote:
        if self.fail_network:
            raise GitBackendError("Could not resolve host: github.com")
        if url not in self.remotes:
            raise GitBackendError(f"repository '{url}' not found")
        return self.remotes[url]

    def _save(self, repo_dir: Path, remote: FakeRemote) -> None:
        (repo_dir / self.STATE_FILE).write_text(json.dumps(remote.snapshot()))

    def _load(self, repo_dir: Path) -> dict:
        try:
            return json.loads((repo_dir / self.STATE_FILE).read_text())
        except (OSError, ValueError) as e:
            raise GitBackendError(f"not a git repository: {repo_dir}") from e

    def clone_bare(self, url: str, dest: Path) -> None:
        self.calls.append(("clone", url))
        if self.clone_hook is not None:
            self.clone_hook()
        remote = self._remote(url)
        (dest / "HEAD").write_text(f"ref: refs/heads/{remote.default_branch}\n")
        (dest / "objects").mkdir()
        (dest / "refs").mkdir()
        self._save(dest, remote)

    def fetch(self, repo_dir: Path, url: str) -> None:
        self.calls.append(("fetch", url))
        self._save(repo_dir, self._remote(url))

    def list_refs(self, repo_dir: Path) -> dict[str, str]:
        return dict(self._load(repo_dir)["refs"])

    def default_branch(self, repo_dir: Path) -> Optional[str]:
        return self._load(repo_dir)["head"]

    def resolve_commit(self, repo_dir: Path, revision: str) -> Optional[str]:
        matches = [c for c in self._load(repo_dir)["commits"] if c.startswith(revision.lower())]
        return matches[0] if len(matches) == 1 else None

    def checkout(self, repo_dir: Path, commit: str, dest: Path) -> None:
        self.calls.append(("checkout", commit))
        files = self._load(repo_dir)["commits"].get(commit)
        if files is None:
            raise GitBackendError(f"unknown commit {commit}")
        for relative, content in files.items():
            path = dest / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)


@pytest.fixture
def cache_env(tmp_path):
    """Provide an isolated cache environment."""
    return {
        "SKILL_CACHE_HOME": str(tmp_path / "skill-cache-home"),
        "SKILL_CACHE_LOCK_TIMEOUT": "2",
    }


@pytest.fixture
def context(cache_env):
    """Provide a CacheContext rooted in a temporary directory."""
    return build_context(env=cache_env, platform="linux")


@pytest.fixture
def fast_context(cache_env):
    """Provide a CacheContext that gives up on busy locks quickly."""
    env = dict(cache_env, SKILL_CACHE_LOCK_TIMEOUT="0.2")
    return build_context(env=env, platform="linux")


@pytest.fixture
def backend():
    """Provide a fake git backend."""
    return FakeGitBackend()


@pytest.fixture
def remote(backend):
    """Provide the acme/skills remote with one commit on main, tagged v1.0."""
    remote = backend.add_remote(REMOTE_URL)
    remote.commit(
        {
            "README.md": "# Acme skills\n",
            "skills/pdf/SKILL.md": PDF_SKILL,
            "skills/pdf/scripts/fill.py": "print('fill v1')\n",
            "skills/docx/SKILL.md": "---\nname: docx\n---\n",
        },
        branch="main",
        tag="v1.0",
    )
    return remote


@pytest.fixture
def target_dir(tmp_path):
    """Provide the project's skills directory."""
    target = tmp_path / "project" / ".claude" / "skills"
    target.mkdir(parents=True)
    return target


@pytest.fixture
def set_last_used():
    """Provide a helper that rewrites a checkout's recorded last use."""

    def rewrite(checkout_dir: Path, moment) -> None:
        metadata_file = checkout_dir / ".skill-cache-checkout.json"
        metadata = json.loads(metadata_file.read_text())
        metadata["last_used_at"] = moment.isoformat()
        metadata_file.write_text(json.dumps(metadata))

    return rewrite
