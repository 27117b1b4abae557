"""Skill metadata parsed from an installed skill's SKILL.md."""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


SKILL_FILE = "SKILL.md"

_FRONTMATTER = re.compile(r"^---\s*\n(.*?)\n---\s*(?:\n|$)", re.DOTALL)


@dataclass
class SkillMetadata:
    """Metadata parsed from a skill's SKILL.md frontmatter."""

    name: str
    description: Optional[str] = None
    version: Optional[str] = None
    author: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_yaml(cls, data: dict[str, Any]) -> "SkillMetadata":
        """Create metadata from parsed YAML."""
        data = dict(data)
        name = str(data.pop("name"))
        description = data.pop("description", None)
        version = data.pop("version", None)
        author = data.pop("author", None)
        return cls(
            name=name,
            description=description,
            version=str(version) if version is not None else None,
            author=author,
            extra=data,
        )


def read_skill_metadata(skill_dir: Path) -> Optional[SkillMetadata]:
    """Parse the YAML frontmatter of ``skill_dir/SKILL.md``.

    A skill without SKILL.md, or with frontmatter that lacks a name or does
    not parse, has no metadata; that is not an error for installation.
    """
    skill_md = skill_dir / SKILL_FILE
    if not skill_md.is_file():
        return None

    try:
        content = skill_md.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return None

    match = _FRONTMATTER.match(content)
    if not match:
        return None

    try:
        data = yaml.safe_load(match.group(1))
    except yaml.YAMLError:
        return None
    if not isinstance(data, dict) or "name" not in data:
        return None
    return SkillMetadata.from_yaml(data)
