"""Advisory per-directory locks shared by every cache operation.

Each cache entry ``<parent>/<name>`` is guarded by a lock file
``<parent>/.<name>.lock``. The lock file lives beside the entry, so an entry
that does not exist yet (a clone in progress) can still be locked. Deleting
the entry leaves its lock file behind; eviction sweeps lock files whose entry
is gone (``remove_orphan_lock``).

- Unix/Linux/macOS: ``fcntl.flock`` (shared and exclusive)
- Windows: ``msvcrt.locking`` (shared acquisitions are exclusive)

Usage::

    lock = DirectoryLock(db_dir / "owner-repo", timeout=30)
    with lock.exclusive():
        ...  # create or mutate the entry
    with lock.shared():
        ...  # read the entry; eviction waits until we are done
"""

import logging
import os
import sys
import time
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Iterator, Optional

from skill_cache.errors import CacheIOError, CacheLocked
from skill_cache.utils.paths import ensure_dir


logger = logging.getLogger(__name__)

LOCK_SUFFIX = ".lock"
POLL_INTERVAL = 0.05


class LockBusy(Exception):
    """The lock is held in a conflicting mode by someone else."""


def lock_path_for(directory: Path) -> Path:
    """Path of the lock file guarding ``directory``."""
    return directory.parent / f".{directory.name}{LOCK_SUFFIX}"


# ============================================
# Unix/Linux/macOS
# ============================================

def _try_lock_unix(handle: IO, exclusive: bool) -> None:
    import fcntl

    flags = (fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH) | fcntl.LOCK_NB
    try:
        fcntl.flock(handle.fileno(), flags)
    except BlockingIOError as e:
        raise LockBusy(handle.name) from e


def _unlock_unix(handle: IO) -> None:
    import fcntl

    fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


# ============================================
# Windows
# ============================================

def _try_lock_windows(handle: IO, exclusive: bool) -> None:
    import msvcrt

    handle.seek(0)
    try:
        msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
    except OSError as e:
        # errno 13 (Permission denied) / 36 (Resource deadlock avoided) = held
        if e.errno in (13, 36):
            raise LockBusy(handle.name) from e
        raise


def _unlock_windows(handle: IO) -> None:
    import msvcrt

    handle.seek(0)
    msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)


if sys.platform == "win32":
    _try_lock, _unlock = _try_lock_windows, _unlock_windows
else:
    _try_lock, _unlock = _try_lock_unix, _unlock_unix


class DirectoryLock:
    """Cross-process advisory lock tied to one cache directory.

    Acquisition polls in non-blocking mode until ``timeout`` seconds have
    passed, then raises ``CacheLocked``. The lock is released on every exit
    from the ``with`` block, including exceptions and interrupts.
    """

    def __init__(self, directory: Path, timeout: float, poll_interval: float = POLL_INTERVAL):
        self.directory = directory
        self.path = lock_path_for(directory)
        self.timeout = timeout
        self.poll_interval = poll_interval

    @property
    def name(self) -> str:
        return self.directory.name

    @contextmanager
    def exclusive(self, timeout: float | None = None) -> Iterator[None]:
        """Hold the lock exclusively: no other holder of either mode."""
        with self._acquire(exclusive=True, timeout=timeout):
            yield

    @contextmanager
    def shared(self, timeout: float | None = None) -> Iterator[None]:
        """Hold the lock shared: other readers allowed, no exclusive holder."""
        with self._acquire(exclusive=False, timeout=timeout):
            yield

    @contextmanager
    def _acquire(self, exclusive: bool, timeout: float | None) -> Iterator[None]:
        timeout = self.timeout if timeout is None else timeout
        mode = "exclusive" if exclusive else "shared"
        deadline = time.monotonic() + timeout
        waited = False
        while True:
            handle = self._try_acquire(exclusive)
            if handle is not None:
                break
            if time.monotonic() >= deadline:
                raise CacheLocked(self.name, timeout)
            if not waited:
                logger.info("Waiting for %s lock on %s", mode, self.name)
                waited = True
            time.sleep(self.poll_interval)

        try:
            logger.debug("Acquired %s lock on %s", mode, self.name)
            try:
                yield
            finally:
                try:
                    _unlock(handle)
                except OSError as e:
                    logger.warning("Failed to release lock on %s: %s", self.name, e)
                logger.debug("Released %s lock on %s", mode, self.name)
        finally:
            handle.close()

    def _try_acquire(self, exclusive: bool) -> Optional[IO]:
        """Open and lock the lock file without waiting; None if it is busy."""
        try:
            ensure_dir(self.path.parent)
            handle = open(self.path, "a+b")
        except OSError as e:
            raise CacheIOError(self.name, f"cannot open lock file {self.path}: {e}") from e

        try:
            _try_lock(handle, exclusive)
        except LockBusy:
            handle.close()
            return None
        except OSError as e:
            handle.close()
            raise CacheIOError(self.name, f"cannot lock {self.path}: {e}") from e
        except BaseException:
            handle.close()
            raise

        if not _is_current(handle, self.path):
            # The lock file was swept between open and lock
            _unlock(handle)
            handle.close()
            return None
        return handle


def _is_current(handle: IO, path: Path) -> bool:
    try:
        return os.path.samestat(os.fstat(handle.fileno()), os.stat(path))
    except FileNotFoundError:
        return False


def is_lock_file(path: Path) -> bool:
    """Report whether ``path`` is a lock file rather than a cache entry."""
    return path.name.startswith(".") and path.name.endswith(LOCK_SUFFIX)


def entry_path_for(lock_file: Path) -> Path:
    """Path of the cache entry a lock file guards."""
    return lock_file.parent / lock_file.name[1 : -len(LOCK_SUFFIX)]


def remove_orphan_lock(lock_file: Path) -> bool:
    """Delete a lock file whose entry no longer exists.

    The lock is taken without waiting first, so a lock held by a clone or
    checkout still being built is left alone. Waiters that opened the file
    before it was deleted notice and reopen it.

    Returns:
        True if the lock file was removed
    """
    entry = entry_path_for(lock_file)
    if os.path.lexists(entry):
        return False
    try:
        with DirectoryLock(entry, timeout=0).exclusive():
            if os.path.lexists(entry):
                return False
            lock_file.unlink()
    except (CacheLocked, CacheIOError):
        return False
    except OSError as e:
        logger.debug("Could not remove lock file %s: %s", lock_file, e)
        return False
    return True
