"""Pydantic models for skill cache configuration."""

import re
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


SIZE_UNITS = {
    "": 1,
    "B": 1,
    "K": 1024,
    "KB": 1024,
    "M": 1024**2,
    "MB": 1024**2,
    "G": 1024**3,
    "GB": 1024**3,
    "T": 1024**4,
    "TB": 1024**4,
}

_SIZE_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([A-Za-z]*)\s*$")


def parse_size(value: Union[int, float, str]) -> int:
    """Parse a size given in bytes or with a unit suffix.

    Accepts integers (bytes) and strings such as ``"512"``, ``"500MB"``,
    ``"1.5 GB"`` or ``"2g"``. Units are binary (1 KB = 1024 bytes).

    Raises:
        ValueError: If the value is negative or not a recognised size
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid size: {value!r}")
    if isinstance(value, (int, float)):
        if value < 0:
            raise ValueError(f"Size must not be negative: {value}")
        return int(value)

    match = _SIZE_PATTERN.match(value)
    if not match:
        raise ValueError(f"Invalid size: {value!r}")
    number, unit = match.groups()
    multiplier = SIZE_UNITS.get(unit.upper())
    if multiplier is None:
        raise ValueError(f"Unknown size unit '{unit}' in {value!r}")
    return int(float(number) * multiplier)


class CacheConfig(BaseModel):
    """Settings of the ``[cache]`` table."""

    dir: Optional[str] = Field(
        default=None,
        description="Cache root directory (defaults to <home>/git)",
    )
    max_age: int = Field(
        default=30,
        ge=0,
        description="Maximum checkout age in days before eviction (0 = never expire)",
    )
    max_size: int = Field(
        default=0,
        ge=0,
        description="Maximum total checkout size in bytes (0 = unlimited)",
    )
    lock_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Seconds to wait for a cache entry lock",
    )
    offline: bool = Field(
        default=False, description="Serve only from the local cache, never fetch"
    )

    @field_validator("max_size", mode="before")
    @classmethod
    def validate_max_size(cls, v):
        """Accept sizes with unit suffixes."""
        return parse_size(v)

    @field_validator("dir")
    @classmethod
    def validate_dir(cls, v: Optional[str]) -> Optional[str]:
        """Treat an empty directory string as unset."""
        if v is not None and not v.strip():
            return None
        return v


class ConfigFile(BaseModel):
    """Root of ``config.toml``.

    Tables belonging to other tools (formatter, linter, ...) are ignored.
    """

    model_config = ConfigDict(extra="ignore")

    cache: CacheConfig = Field(default_factory=CacheConfig)
