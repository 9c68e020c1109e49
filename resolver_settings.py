"""
Settings for the install candidate resolver.

Settings live in an optional JSON file; every key has a default, so an empty
object (or no file at all) gives the stock behaviour:

{
    "properties_filenames": ["control.nacp", "Control.nacp"],
    "default_selected": true,
    "codec": "my_codec_package.codec:NxCodec"
}

``properties_filenames`` is tried in order inside the Control archive's RomFS;
packaging tools disagree on the casing of the NACP file, hence two names.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

DEFAULT_PROPERTIES_FILENAMES = ("control.nacp", "Control.nacp")

_log = logging.getLogger(__name__)


class ResolverSettings(BaseModel):
    properties_filenames: list[str] = Field(
        default_factory=lambda: list(DEFAULT_PROPERTIES_FILENAMES)
    )
    default_selected: bool = True
    codec: str | None = None

    @field_validator("properties_filenames")
    @classmethod
    def _check_filenames(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("properties_filenames must name at least one file")
        seen = set()
        for name in v:
            if not name or "/" in name or "\\" in name:
                raise ValueError(f"Invalid properties filename: {name!r}")
            if name in seen:
                raise ValueError(f"Duplicate properties filename: {name!r}")
            seen.add(name)
        return v

    @field_validator("codec")
    @classmethod
    def _check_codec(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        if ":" not in v:
            raise ValueError(f"Invalid codec reference {v!r}, expected 'module:attribute'")
        return v


def parse_settings(data: bytes) -> ResolverSettings:
    """Parse raw JSON bytes into ResolverSettings.

    Raises ``pydantic.ValidationError`` if the data is invalid.
    Raises ``json.JSONDecodeError`` if the bytes are not valid JSON.
    """
    return ResolverSettings.model_validate(json.loads(data))


def load_settings(path: str | Path | None) -> ResolverSettings:
    if path is None:
        return ResolverSettings()
    path = Path(path)
    if not path.exists():
        _log.info("Settings file %s not found, using defaults", path)
        return ResolverSettings()
    return parse_settings(path.read_bytes())
