"""Local cache of remote skill repositories and their checkouts."""

from skill_cache.cache.checkout import Checkout, CheckoutManager, ResolvedRevision, RevisionKind
from skill_cache.cache.eviction import CleanScope, CleanSummary, EvictionPolicy
from skill_cache.cache.lock import DirectoryLock
from skill_cache.cache.paths import CacheContext, CachePaths, build_context, resolve_paths
from skill_cache.cache.pipeline import CacheLookupPipeline, InstallResult, install_skill
from skill_cache.cache.status import CacheStats, format_age
from skill_cache.cache.store import BareRepository, RepositoryStore, UpdatePolicy

__all__ = [
    "BareRepository",
    "CacheContext",
    "CacheLookupPipeline",
    "CachePaths",
    "CacheStats",
    "Checkout",
    "CheckoutManager",
    "CleanScope",
    "CleanSummary",
    "DirectoryLock",
    "EvictionPolicy",
    "InstallResult",
    "RepositoryStore",
    "ResolvedRevision",
    "RevisionKind",
    "UpdatePolicy",
    "build_context",
    "format_age",
    "install_skill",
    "resolve_paths",
]
