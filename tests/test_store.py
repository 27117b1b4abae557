"""Tests for the bare repository store."""

import json
import threading
import time

import pytest

from skill_cache.cache.store import METADATA_FILE, RepositoryStore, UpdatePolicy
from skill_cache.core.source import parse_source
from skill_cache.errors import CacheIOError, NetworkError, RepositoryNotCached
from skill_cache.utils.paths import is_temp_name


@pytest.fixture
def store(context, backend, remote):
    """Provide a repository store backed by the fake remote."""
    return RepositoryStore(context, backend)


@pytest.fixture
def source():
    return parse_source("acme/skills/skills/pdf")


def leftovers(directory):
    return [p.name for p in directory.iterdir() if is_temp_name(p.name)]


class TestEnsure:
    """Test providing repositories."""

    def test_clone_on_first_use(self, store, backend, source, context):
        repository = store.ensure(source)

        assert repository.path == context.paths.db_dir / "acme-skills"
        assert repository.url == "https://github.com/acme/skills.git"
        assert repository.last_fetch is not None
        assert (repository.path / "HEAD").is_file()
        assert backend.count("clone") == 1

    def test_metadata_written(self, store, source):
        repository = store.ensure(source)

        metadata = json.loads((repository.path / METADATA_FILE).read_text())
        assert metadata["url"] == "https://github.com/acme/skills.git"
        assert metadata["last_fetch"]

    def test_reuse_does_not_touch_network(self, store, backend, source):
        store.ensure(source)
        store.ensure(source)
        store.ensure(parse_source("acme/skills/skills/docx"))

        assert backend.network_calls == [("clone", "https://github.com/acme/skills.git")]

    def test_refresh_fetches(self, store, backend, source):
        first = store.ensure(source)
        refreshed = store.ensure(source, UpdatePolicy.REFRESH)

        assert backend.count("fetch") == 1
        assert refreshed.path == first.path
        assert refreshed.last_fetch >= first.last_fetch

    def test_refresh_of_missing_entry_clones(self, store, backend, source):
        store.ensure(source, UpdatePolicy.REFRESH)

        assert backend.count("clone") == 1
        assert backend.count("fetch") == 0

    def test_lookup(self, store, source):
        assert store.lookup("acme", "skills") is None

        store.ensure(source)
        repository = store.lookup("acme", "skills")

        assert repository.name == "acme-skills"
        assert repository.display_name == "acme/skills"


class TestOffline:
    """Test offline behaviour of the store."""

    def test_missing_entry(self, store, backend, source):
        with pytest.raises(RepositoryNotCached) as exc_info:
            store.ensure(source, offline=True)

        assert "acme/skills" in str(exc_info.value)
        assert backend.calls == []

    def test_cached_entry_is_reused(self, store, backend, source):
        store.ensure(source)
        backend.calls.clear()

        repository = store.ensure(source, offline=True)

        assert repository.name == "acme-skills"
        assert backend.calls == []

    def test_refresh_requires_network(self, store, backend, source):
        store.ensure(source)
        backend.calls.clear()

        with pytest.raises(RepositoryNotCached, match="requires network access"):
            store.ensure(source, UpdatePolicy.REFRESH, offline=True)
        assert backend.calls == []

    def test_corrupted_entry(self, store, backend, source, context):
        (context.paths.db_dir / "acme-skills").mkdir(parents=True)

        with pytest.raises(RepositoryNotCached, match="corrupted"):
            store.ensure(source, offline=True)
        assert backend.calls == []


class TestFailures:
    """Test failed and interrupted clones."""

    def test_network_failure_leaves_no_entry(self, store, backend, source, context):
        backend.fail_network = True

        with pytest.raises(NetworkError) as exc_info:
            store.ensure(source)

        assert "acme/skills" in str(exc_info.value)
        assert store.lookup("acme", "skills") is None
        assert leftovers(context.paths.db_dir) == []

    def test_fetch_failure_keeps_entry(self, store, backend, source):
        store.ensure(source)
        backend.fail_network = True

        with pytest.raises(NetworkError):
            store.ensure(source, UpdatePolicy.REFRESH)

        assert store.lookup("acme", "skills") is not None

    def test_interrupted_clone_is_cleaned_up(self, store, backend, source, context):
        def interrupt():
            raise KeyboardInterrupt

        backend.clone_hook = interrupt

        with pytest.raises(KeyboardInterrupt):
            store.ensure(source)

        assert store.lookup("acme", "skills") is None
        assert leftovers(context.paths.db_dir) == []

    def test_corrupted_entry_is_recloned(self, store, backend, source, context):
        broken = context.paths.db_dir / "acme-skills"
        broken.mkdir(parents=True)
        (broken / "garbage").write_text("not a repository")

        repository = store.ensure(source)

        assert (repository.path / "HEAD").is_file()
        assert not (repository.path / "garbage").exists()
        assert backend.count("clone") == 1

    def test_file_in_the_way(self, store, source, context):
        context.paths.db_dir.mkdir(parents=True)
        (context.paths.db_dir / "acme-skills").write_text("not a directory")

        with pytest.raises(CacheIOError):
            store.ensure(source)


class TestConcurrency:
    """Test concurrent access to one repository."""

    def test_concurrent_ensure_clones_once(self, store, backend, source):
        backend.clone_hook = lambda: time.sleep(0.3)
        results = []
        errors = []

        def worker():
            try:
                results.append(store.ensure(source))
            except Exception as e:  # pragma: no cover - reported below
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert len(results) == 2
        assert results[0].path == results[1].path
        assert backend.count("clone") == 1
