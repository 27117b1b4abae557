"""Tests for checkout resolution and materialization."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from skill_cache.cache.checkout import (
    METADATA_FILE,
    CheckoutManager,
    RevisionKind,
    last_used,
    read_checkout_metadata,
)
from skill_cache.cache.lock import DirectoryLock
from skill_cache.cache.store import RepositoryStore, UpdatePolicy
from skill_cache.core.source import parse_source
from skill_cache.errors import CacheIOError, CacheLocked, CorruptedCache, RevisionNotFound
from skill_cache.fetch.protocols import GitBackendError
from skill_cache.utils.paths import is_temp_name


@pytest.fixture
def store(context, backend):
    return RepositoryStore(context, backend)


@pytest.fixture
def manager(context, backend):
    return CheckoutManager(context, backend)


@pytest.fixture
def repository(store, remote):
    """Provide the cached acme/skills repository."""
    return store.ensure(parse_source("acme/skills"))


class TestResolveRevision:
    """Test revision resolution against repository refs."""

    def test_default_branch(self, manager, repository, remote):
        resolved = manager.resolve_revision(repository, None)

        assert resolved.kind is RevisionKind.BRANCH
        assert resolved.name == "main"
        assert resolved.commit == remote.branches["main"]

    def test_tag(self, manager, repository, remote):
        resolved = manager.resolve_revision(repository, "v1.0")

        assert resolved.kind is RevisionKind.TAG
        assert resolved.commit == remote.tags["v1.0"]

    def test_full_commit(self, manager, repository, remote):
        commit = remote.branches["main"]

        resolved = manager.resolve_revision(repository, commit)

        assert resolved.kind is RevisionKind.COMMIT
        assert resolved.commit == commit

    def test_short_commit(self, manager, repository, remote):
        commit = remote.branches["main"]

        assert manager.resolve_revision(repository, commit[:7]).commit == commit

    def test_branch_wins_over_tag(self, manager, repository, store, remote):
        remote.commit({"x": "1"}, branch="release")
        remote.tags["release"] = remote.branches["main"]
        store.ensure(parse_source("acme/skills"), UpdatePolicy.REFRESH)

        resolved = manager.resolve_revision(repository, "release")

        assert resolved.kind is RevisionKind.BRANCH
        assert resolved.commit == remote.branches["release"]

    def test_unknown_revision(self, manager, repository):
        with pytest.raises(RevisionNotFound) as exc_info:
            manager.resolve_revision(repository, "does-not-exist")

        assert exc_info.value.revision == "does-not-exist"
        assert "acme/skills" in str(exc_info.value)

    def test_unreadable_refs(self, manager, repository):
        (repository.path / "fake-state.json").unlink()

        with pytest.raises(CorruptedCache):
            manager.resolve_revision(repository, "main")


class TestResolve:
    """Test finding and creating checkouts."""

    def test_branch_checkout(self, manager, repository, remote, context):
        checkout = manager.resolve(repository)

        assert checkout.name == "acme-skills-main"
        assert checkout.path == context.paths.checkouts_dir / "acme-skills-main"
        assert checkout.commit == remote.branches["main"]
        assert (checkout.path / "skills" / "pdf" / "SKILL.md").is_file()

    def test_tag_checkout_is_pinned(self, manager, repository, remote):
        checkout = manager.resolve(repository, "v1.0")

        assert checkout.name == f"acme-skills-{remote.tags['v1.0'][:7]}"
        assert not checkout.identity.is_mutable

    def test_branch_with_slash(self, manager, repository, store, remote):
        remote.commit({"README.md": "feature"}, branch="feature/new")
        store.ensure(parse_source("acme/skills"), UpdatePolicy.REFRESH)

        checkout = manager.resolve(repository, "feature/new")

        assert checkout.name == "acme-skills-feature-new"
        assert (checkout.path / "README.md").read_text() == "feature"

    def test_metadata(self, manager, repository, remote):
        checkout = manager.resolve(repository, "v1.0")

        metadata = read_checkout_metadata(checkout.path)
        assert metadata["commit"] == remote.tags["v1.0"]
        assert metadata["kind"] == "pinned"
        assert metadata["revision"] == "v1.0"

    def test_existing_checkout_is_reused(self, manager, repository, backend):
        first = manager.resolve(repository)
        second = manager.resolve(repository)

        assert first.path == second.path
        assert backend.count("checkout") == 1

    def test_reuse_updates_last_used(self, manager, repository, set_last_used):
        checkout = manager.resolve(repository)
        old = datetime.now(timezone.utc) - timedelta(days=10)
        set_last_used(checkout.path, old)

        manager.resolve(repository)

        assert last_used(checkout.path) > old + timedelta(days=9)

    def test_branch_checkout_follows_tip(self, manager, repository, store, remote, backend):
        first = manager.resolve(repository)
        new_commit = remote.commit({"README.md": "updated"}, branch="main")
        store.ensure(parse_source("acme/skills"), UpdatePolicy.REFRESH)

        second = manager.resolve(repository)

        assert second.name == first.name
        assert second.commit == new_commit
        assert second.created_at == first.created_at
        assert (second.path / "README.md").read_text() == "updated"
        assert not (second.path / "skills").exists()
        assert backend.count("checkout") == 2

    def test_pinned_checkout_survives_branch_move(self, manager, repository, store, remote):
        pinned = manager.resolve(repository, "v1.0")
        remote.commit({"README.md": "updated"}, branch="main")
        store.ensure(parse_source("acme/skills"), UpdatePolicy.REFRESH)

        manager.resolve(repository)

        assert (pinned.path / "skills" / "pdf" / "SKILL.md").is_file()
        assert manager.load(pinned.identity).commit == pinned.commit


class TestCorruption:
    """Test damaged checkout entries."""

    def test_missing_metadata_is_rebuilt(self, manager, repository, backend):
        checkout = manager.resolve(repository)
        (checkout.path / METADATA_FILE).unlink()

        rebuilt = manager.resolve(repository)

        assert rebuilt.commit == checkout.commit
        assert read_checkout_metadata(rebuilt.path) is not None
        assert backend.count("checkout") == 2

    def test_missing_metadata_offline(self, manager, repository):
        checkout = manager.resolve(repository)
        (checkout.path / METADATA_FILE).unlink()

        with pytest.raises(CorruptedCache):
            manager.resolve(repository, offline=True)

    def test_pinned_checkout_with_wrong_commit(self, manager, repository):
        checkout = manager.resolve(repository, "v1.0")
        metadata_file = checkout.path / METADATA_FILE
        metadata = json.loads(metadata_file.read_text())
        metadata["commit"] = "0" * 40
        metadata_file.write_text(json.dumps(metadata))

        with pytest.raises(CorruptedCache, match="expected"):
            manager.resolve(repository, "v1.0")

    def test_failed_checkout_leaves_nothing(self, manager, repository, backend, context):
        def fail(repo_dir, commit, dest):
            (dest / "partial.txt").write_text("half written")
            raise GitBackendError("archive failed")

        backend.checkout = fail

        with pytest.raises(CacheIOError, match="archive failed"):
            manager.resolve(repository)

        assert not (context.paths.checkouts_dir / "acme-skills-main").exists()
        assert not any(is_temp_name(p.name) for p in context.paths.checkouts_dir.iterdir())


class TestSharedEntries:
    """Test checkouts used by several installs at once."""

    def test_stale_touch_keeps_new_commit(self, manager, repository, store, remote):
        stale = manager.load(manager.resolve(repository).identity)
        new_commit = remote.commit({"README.md": "updated"}, branch="main")
        store.ensure(parse_source("acme/skills"), UpdatePolicy.REFRESH)
        manager.resolve(repository)

        with manager.lock(stale.identity).shared():
            assert not manager.touch(stale)

        assert read_checkout_metadata(stale.path)["commit"] == new_commit
        assert (stale.path / "README.md").read_text() == "updated"

    def test_touch_only_updates_last_use(self, manager, repository, set_last_used):
        checkout = manager.resolve(repository, "v1.0")
        set_last_used(checkout.path, datetime.now(timezone.utc) - timedelta(days=10))
        before = read_checkout_metadata(checkout.path)

        with manager.lock(checkout.identity).shared():
            assert manager.touch(checkout)

        after = read_checkout_metadata(checkout.path)
        for key in ("identity", "kind", "commit", "revision", "created_at"):
            assert after[key] == before[key]
        assert last_used(checkout.path) > datetime.now(timezone.utc) - timedelta(minutes=1)

    def test_branch_named_like_pinned_hash(self, manager, repository, store, remote):
        pinned = manager.resolve(repository, "v1.0")
        short = pinned.commit[:7]
        remote.commit({"README.md": "branch"}, branch=short)
        store.ensure(parse_source("acme/skills"), UpdatePolicy.REFRESH)

        with pytest.raises(CacheIOError, match="pinned checkout"):
            manager.resolve(repository, short)

        assert manager.load(pinned.identity).commit == pinned.commit
        assert (pinned.path / "skills" / "pdf" / "SKILL.md").is_file()
        assert (pinned.path / "README.md").read_text() == "# Acme skills\n"

    def test_branch_update_waits_for_readers(
        self, fast_context, backend, repository, store, remote
    ):
        manager = CheckoutManager(fast_context, backend)
        checkout = manager.resolve(repository)
        new_commit = remote.commit({"README.md": "updated"}, branch="main")
        store.ensure(parse_source("acme/skills"), UpdatePolicy.REFRESH)

        with DirectoryLock(checkout.path, timeout=1).shared():
            with pytest.raises(CacheLocked):
                manager.resolve(repository)

            assert (checkout.path / "README.md").read_text() == "# Acme skills\n"
            assert manager.load(checkout.identity).commit == checkout.commit

        assert manager.resolve(repository).commit == new_commit
