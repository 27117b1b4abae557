"""Core source descriptors and skill models."""

from skill_cache.core.skill import SkillMetadata, read_skill_metadata
from skill_cache.core.source import (
    CheckoutIdentity,
    IdentityKind,
    RepositorySource,
    checkout_name,
    parse_source,
    repository_id,
)

__all__ = [
    "CheckoutIdentity",
    "IdentityKind",
    "RepositorySource",
    "SkillMetadata",
    "checkout_name",
    "parse_source",
    "read_skill_metadata",
    "repository_id",
]
