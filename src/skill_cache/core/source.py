"""Repository source descriptors and cache entry identities.

This module provides functionality to:
- Parse skill source strings (shorthand, HTTPS and SSH URLs) into components
- Validate a source before any filesystem or network access
- Derive the on-disk names of repository-store and checkout entries
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional
from urllib.parse import urlparse

from skill_cache.errors import SourceParseError


DEFAULT_HOST = "github.com"
SHORT_HASH_LENGTH = 7

_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


@dataclass(frozen=True)
class RepositorySource:
    """A parsed reference to a skill inside a remote git repository.

    Attributes:
        host: Git host (e.g. ``github.com``)
        owner: Repository owner (user or organization)
        repo: Repository name, without a ``.git`` suffix
        path: Sub-path of the skill within the repository ("" = repository root)
        revision: Commit, branch or tag (None = the default branch)
        ssh: Whether the source was given as an SSH URL
    """

    host: str
    owner: str
    repo: str
    path: str = ""
    revision: Optional[str] = None
    ssh: bool = False

    @property
    def url(self) -> str:
        """Clone URL of the repository."""
        if self.ssh:
            return f"git@{self.host}:{self.owner}/{self.repo}.git"
        return f"https://{self.host}/{self.owner}/{self.repo}.git"

    @property
    def repository_id(self) -> str:
        """Name of this repository's entry in the repository store."""
        return repository_id(self.owner, self.repo)

    @property
    def skill_name(self) -> str:
        """Default install name: last path component, or the repository name."""
        if self.path:
            return self.path.rstrip("/").split("/")[-1]
        return self.repo

    def validate(self) -> None:
        """Check the source is well-formed.

        Raises:
            SourceParseError: If owner, repo, sub-path or revision are unusable
        """
        display = str(self)
        if not self.host:
            raise SourceParseError(display, "missing host")
        for label, value in (("owner", self.owner), ("repository", self.repo)):
            if not value:
                raise SourceParseError(display, f"missing {label}")
            if not _NAME_PATTERN.match(value) or value in (".", ".."):
                raise SourceParseError(display, f"invalid {label} name '{value}'")
        if self.path:
            if self.path.startswith("/") or "\\" in self.path:
                raise SourceParseError(display, "sub-path must be relative")
            if any(part in ("", ".", "..") for part in self.path.split("/")):
                raise SourceParseError(display, f"invalid sub-path '{self.path}'")
        if self.revision is not None:
            if not self.revision or self.revision.startswith("-") or ".." in self.revision:
                raise SourceParseError(display, f"invalid revision '{self.revision}'")

    def __str__(self) -> str:
        text = f"{self.owner}/{self.repo}"
        if self.path:
            text = f"{text}/{self.path}"
        if self.revision:
            text = f"{text}@{self.revision}"
        return text


def parse_source(value: str) -> RepositorySource:
    """Parse a skill source string into a RepositorySource.

    Handles:
    - owner/repo, owner/repo/path/to/skill
    - owner/repo@ref, owner/repo/path@ref
    - github.com/owner/repo (host without scheme)
    - https://github.com/owner/repo(.git)
    - https://github.com/owner/repo/tree/ref/path/to/skill
    - git@github.com:owner/repo(.git)

    Args:
        value: Source string to parse

    Returns:
        Validated RepositorySource

    Raises:
        SourceParseError: If the string is not a recognised source
    """
    text = value.strip()
    if not text:
        raise SourceParseError(value, "empty source")

    if text.startswith("git@"):
        source = _parse_ssh(value, text)
    elif "://" in text:
        source = _parse_url(value, text)
    else:
        first = text.split("/", 1)[0]
        if "." in first and text.count("/") >= 2:
            # Host without a scheme, e.g. github.com/owner/repo
            source = _parse_url(value, f"https://{text}")
        else:
            source = _parse_shorthand(value, text)

    source.validate()
    return source


def _split_revision(text: str) -> tuple[str, Optional[str]]:
    if "@" in text:
        text, revision = text.rsplit("@", 1)
        return text, revision
    return text, None


def _strip_git_suffix(repo: str) -> str:
    return repo[:-4] if repo.endswith(".git") else repo


def _parse_shorthand(value: str, text: str) -> RepositorySource:
    text, revision = _split_revision(text)
    parts = text.strip("/").split("/")
    if len(parts) < 2:
        raise SourceParseError(value, "expected owner/repo at minimum")
    return RepositorySource(
        host=DEFAULT_HOST,
        owner=parts[0],
        repo=_strip_git_suffix(parts[1]),
        path="/".join(parts[2:]),
        revision=revision,
    )


def _parse_ssh(value: str, text: str) -> RepositorySource:
    try:
        host, rest = text[len("git@"):].split(":", 1)
    except ValueError:
        raise SourceParseError(value, "expected git@host:owner/repo") from None
    rest, revision = _split_revision(rest)
    parts = rest.strip("/").split("/")
    if len(parts) < 2:
        raise SourceParseError(value, "expected git@host:owner/repo")
    return RepositorySource(
        host=host,
        owner=parts[0],
        repo=_strip_git_suffix(parts[1]),
        path="/".join(parts[2:]),
        revision=revision,
        ssh=True,
    )


def _parse_url(value: str, text: str) -> RepositorySource:
    parsed = urlparse(text)
    if parsed.scheme not in ("http", "https"):
        raise SourceParseError(value, f"unsupported URL scheme '{parsed.scheme}'")

    host = parsed.netloc.lower()
    if host == "www.github.com":
        host = DEFAULT_HOST

    path, revision = _split_revision(parsed.path)
    parts = path.strip("/").split("/")
    if len(parts) < 2 or not parts[0] or not parts[1]:
        raise SourceParseError(value, "expected owner/repo at minimum")

    owner = parts[0]
    repo = _strip_git_suffix(parts[1])
    sub_path = ""

    # /owner/repo/tree/<ref>/<path...> and /owner/repo/blob/<ref>/<path...>
    if len(parts) >= 4 and parts[2] in ("tree", "blob"):
        revision = parts[3]
        sub_path = "/".join(parts[4:])
    elif len(parts) > 2:
        sub_path = "/".join(parts[2:])

    return RepositorySource(
        host=host,
        owner=owner,
        repo=repo,
        path=sub_path,
        revision=revision,
    )


def repository_id(owner: str, repo: str) -> str:
    """Name of a repository-store entry: ``{owner}-{repo}``."""
    return f"{owner}-{repo}"


class IdentityKind(str, Enum):
    """How a checkout is identified, and therefore whether it may change."""

    PINNED = "pinned"
    BRANCH = "branch"


@dataclass(frozen=True)
class CheckoutIdentity:
    """Tagged identity of an entry in the checkout store.

    Pinned identities (commits and tags) name an immutable tree by short hash.
    Branch identities name a tree that follows the branch tip and may be
    rewritten in place by a later resolution.
    """

    owner: str
    repo: str
    kind: IdentityKind
    label: str

    @classmethod
    def pinned(cls, owner: str, repo: str, commit: str) -> "CheckoutIdentity":
        return cls(owner, repo, IdentityKind.PINNED, commit[:SHORT_HASH_LENGTH])

    @classmethod
    def branch(cls, owner: str, repo: str, branch: str) -> "CheckoutIdentity":
        return cls(owner, repo, IdentityKind.BRANCH, branch.replace("/", "-"))

    @property
    def name(self) -> str:
        return f"{repository_id(self.owner, self.repo)}-{self.label}"

    @property
    def is_mutable(self) -> bool:
        return self.kind is IdentityKind.BRANCH

    def __str__(self) -> str:
        return self.name


def checkout_name(owner: str, repo: str, rev: str) -> str:
    """Name of a hash-pinned checkout: ``{owner}-{repo}-{first 7 of rev}``."""
    return CheckoutIdentity.pinned(owner, repo, rev).name
