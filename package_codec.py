"""
Container codec contract for the install candidate resolver.

The resolver never touches NCA/XCI/NSP bytes itself. A codec library does the
decoding and hands back small handle objects; this module describes what those
objects must look like so a real codec or an in-memory fake can be plugged in.

Layout of what the resolver walks:

    game.nsp / game.xci
    └── secure partition        <- status, declared name
        ├── Meta NCA            <- subdirectory[0] / file[0] = content metadata (CNMT)
        ├── Control NCA         <- RomFS -> control.nacp (application properties)
        ├── Program NCA
        └── ...

Raw ``.nca`` files are accepted as-is and never reach the codec beyond
``open_file``.
"""

from __future__ import annotations

import importlib
import logging
from enum import Enum, IntEnum
from typing import Any, Optional, Protocol

from pydantic import BaseModel, Field, field_validator

_log = logging.getLogger(__name__)


class CodecError(Exception):
    """Raised by a codec when a container or record cannot be decoded."""


class ContentKind(IntEnum):
    """Content type byte of an NCA header."""

    PROGRAM = 0
    META = 1
    CONTROL = 2
    MANUAL = 3
    DATA = 4
    PUBLIC_DATA = 5


class TitleType(IntEnum):
    """Title type byte of a content metadata record."""

    SYSTEM_PROGRAM = 0x01
    SYSTEM_DATA = 0x02
    SYSTEM_ARCHIVE = 0x03
    FIRMWARE_PACKAGE_A = 0x04
    FIRMWARE_PACKAGE_B = 0x05
    APPLICATION = 0x80
    UPDATE = 0x81
    AOC = 0x82
    DELTA_TITLE = 0x83


class ResultStatus(Enum):
    SUCCESS = "success"
    ERROR_NOT_INITIALIZED = "not_initialized"
    ERROR_BAD_HEADER = "bad_header"
    ERROR_MISSING_KEYS = "missing_keys"
    ERROR_MISSING_META = "missing_meta"
    ERROR_BAD_PARTITION = "bad_partition"


# ── Decoded records ───────────────────────────────────────────────────


class ContentMetadataRecord(BaseModel):
    """Title category and version, decoded from the Meta archive."""

    title_type: TitleType
    title_version: int = Field(ge=0)
    title_id: int | None = None


class ApplicationProperties(BaseModel):
    """Display name and version string, decoded from the Control archive.

    Fixed-width string fields come out of the codec NUL padded; the padding
    is stripped here so labels never carry it.
    """

    application_name: str
    version_string: str = ""

    @field_validator("application_name", "version_string")
    @classmethod
    def _strip_padding(cls, v: str) -> str:
        return v.split("\x00", 1)[0].strip()


# ── Handle protocols ──────────────────────────────────────────────────


class VirtualFile(Protocol):
    name: str


class FileHandle(Protocol):
    def close(self) -> None: ...


class Directory(Protocol):
    def files(self) -> list[VirtualFile]: ...

    def get_file(self, name: str) -> Optional[VirtualFile]: ...


class FilesystemImage(Protocol):
    def extracted_root(self) -> Optional[Directory]: ...


class ContentArchive(Protocol):
    kind: ContentKind

    def subdirectories(self) -> list[Directory]: ...

    def filesystem_image(self) -> Optional[FilesystemImage]: ...


class SecurePartition(Protocol):
    status: ResultStatus
    name: str

    def collapsed_content_archives(self) -> list[ContentArchive]:
        """Content archives with base/patch duplicates resolved to one entry each."""
        ...


class PackageCodec(Protocol):
    def open_file(self, path: str) -> Optional[FileHandle]: ...

    def decode_gamecard_image(self, handle: FileHandle) -> Optional[SecurePartition]: ...

    def decode_submission_package(self, handle: FileHandle) -> SecurePartition: ...

    def parse_metadata_record(self, file: VirtualFile) -> ContentMetadataRecord: ...

    def parse_application_properties(self, file: VirtualFile) -> ApplicationProperties: ...


# ── Loading ───────────────────────────────────────────────────────────


def load_codec(reference: str) -> PackageCodec:
    """Import a codec from a ``"module:attribute"`` reference.

    The attribute may be a codec instance or a zero-argument callable
    (class or factory) returning one.

    Raises ``ValueError`` for a malformed reference and ``ImportError`` /
    ``AttributeError`` when the target cannot be found.
    """
    module_name, sep, attr = reference.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(
            f"Invalid codec reference {reference!r}, expected 'module:attribute'"
        )

    module = importlib.import_module(module_name)
    target: Any = module
    for part in attr.split("."):
        target = getattr(target, part)

    codec = target
    if isinstance(target, type) or (callable(target) and not hasattr(target, "open_file")):
        codec = target()
    if not hasattr(codec, "open_file"):
        raise ValueError(f"{reference!r} does not provide a package codec")

    _log.debug("Loaded package codec %s from %s", type(codec).__name__, reference)
    return codec
