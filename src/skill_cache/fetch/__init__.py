"""Version-control backends for the repository cache."""

from skill_cache.fetch.git import GitPythonBackend
from skill_cache.fetch.protocols import GitBackend, GitBackendError

__all__ = ["GitBackend", "GitBackendError", "GitPythonBackend"]
