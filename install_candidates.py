"""
Install Candidate Resolver - Core Logic

Decides which of a user-picked set of files can be offered for installation
and builds the label shown next to each one.

Per file:
    1. classify()  - open the file and pick a container by filename suffix
    2. normalize() - collapsed content archive list of a secure partition
    3. extract()   - title category, version and display name -> label

A file either yields exactly one InstallCandidate or none. Failures are never
reported per file; the file simply does not show up in the result.
"""

from __future__ import annotations

import logging
from contextlib import closing
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable, Iterable, Optional

from package_codec import (
    ApplicationProperties,
    CodecError,
    ContentArchive,
    ContentKind,
    ContentMetadataRecord,
    FileHandle,
    PackageCodec,
    ResultStatus,
    SecurePartition,
    TitleType,
    VirtualFile,
)
from resolver_settings import ResolverSettings

_log = logging.getLogger(__name__)

# Suffixes are matched on the raw name text, case-insensitively, in this order.
RAW_ARCHIVE_SUFFIX = "nca"
GAMECARD_SUFFIX = "xci"
SUBMISSION_PACKAGE_SUFFIX = "nsp"

TITLE_CATEGORIES = {
    TitleType.UPDATE: "Update",
    TitleType.AOC: "DLC",
}

# Anything a broken or foreign file can make the codec raise.
SKIPPABLE_ERRORS = (CodecError, OSError, ValueError)


@dataclass(frozen=True)
class InstallCandidate:
    """One accepted input file, ready to be shown as a checkable entry."""

    path: str
    label: str
    selected: bool = True

    def toggled(self, selected: bool) -> InstallCandidate:
        return replace(self, selected=selected)


@dataclass(frozen=True)
class RawArchive:
    """A bare content archive. Trusted as-is and listed by filename."""

    handle: FileHandle


@dataclass(frozen=True)
class PartitionContainer:
    """A secure partition from a submission package or gamecard image."""

    partition: SecurePartition


PackageContainer = RawArchive | PartitionContainer


# ── Container Classifier ──────────────────────────────────────────────


def classify(path: str, handle: FileHandle, codec: PackageCodec) -> Optional[PackageContainer]:
    lowered = path.lower()

    if lowered.endswith(RAW_ARCHIVE_SUFFIX):
        return RawArchive(handle)

    if lowered.endswith(GAMECARD_SUFFIX):
        partition = codec.decode_gamecard_image(handle)
    elif lowered.endswith(SUBMISSION_PACKAGE_SUFFIX):
        partition = codec.decode_submission_package(handle)
    else:
        _log.debug("%s: unsupported file type", path)
        return None

    if partition is None:
        _log.debug("%s: no secure partition", path)
        return None
    if partition.status != ResultStatus.SUCCESS:
        _log.debug("%s: secure partition status %s", path, partition.status.name)
        return None

    return PartitionContainer(partition)


# ── Package Normalizer ────────────────────────────────────────────────


def normalize(container: PartitionContainer) -> list[ContentArchive]:
    """Ordered, de-duplicated content archives of a partition.

    Collapsing base/patch duplicates is the codec's job; raw archives never
    come through here since they are a single entry by construction.
    """
    return list(container.partition.collapsed_content_archives())


def find_content(archives: Iterable[ContentArchive], kind: ContentKind) -> Optional[ContentArchive]:
    return next((nca for nca in archives if nca.kind == kind), None)


# ── Metadata Extractor ────────────────────────────────────────────────


def read_metadata_record(meta: ContentArchive, codec: PackageCodec) -> Optional[ContentMetadataRecord]:
    """Parse the first file of the Meta archive's first section."""
    sections = meta.subdirectories()
    if not sections:
        return None

    files = sections[0].files()
    if not files:
        return None

    return codec.parse_metadata_record(files[0])


def _first_present(directory, names: Iterable[str]) -> Optional[VirtualFile]:
    return next(
        (found for found in (directory.get_file(name) for name in names) if found is not None),
        None,
    )


def read_application_properties(
    control: ContentArchive, codec: PackageCodec, filenames: Iterable[str]
) -> Optional[ApplicationProperties]:
    """Properties from the Control archive's RomFS, or None on any miss.

    A broken Control archive only costs the nicer label, never the candidate.
    """
    try:
        image = control.filesystem_image()
        if image is None:
            return None

        root = image.extracted_root()
        if root is None:
            return None

        nacp = _first_present(root, filenames)
        if nacp is None:
            return None

        return codec.parse_application_properties(nacp)
    except SKIPPABLE_ERRORS as exc:
        _log.debug("Unreadable application properties: %s", exc)
        return None


def title_category(record: ContentMetadataRecord) -> str:
    """Category label ("Update" or "DLC"), empty for titles not installable this way."""
    return TITLE_CATEGORIES.get(record.title_type, "")


def _label_from_properties(category, record, properties, container_name) -> Optional[str]:
    if properties is None:
        return None
    return f"{properties.application_name} ({category}) ({properties.version_string})"


def _label_from_container_name(category, record, properties, container_name) -> Optional[str]:
    return f"{container_name} ({category}) (v{record.title_version})"


LABEL_BUILDERS: tuple[Callable[..., Optional[str]], ...] = (
    _label_from_properties,
    _label_from_container_name,
)


def build_label(
    category: str,
    record: ContentMetadataRecord,
    properties: Optional[ApplicationProperties],
    container_name: str,
) -> str:
    return next(
        label
        for label in (
            builder(category, record, properties, container_name) for builder in LABEL_BUILDERS
        )
        if label is not None
    )


def extract(
    path: str,
    container: PackageContainer,
    codec: PackageCodec,
    settings: ResolverSettings,
) -> Optional[InstallCandidate]:
    if isinstance(container, RawArchive):
        return InstallCandidate(path, Path(path).name, settings.default_selected)

    archives = normalize(container)

    meta = find_content(archives, ContentKind.META)
    if meta is None:
        _log.debug("%s: no Meta archive", path)
        return None

    record = read_metadata_record(meta, codec)
    if record is None:
        _log.debug("%s: Meta archive has no metadata record", path)
        return None

    category = title_category(record)
    if not category:
        # Base applications inside NSP/XCI are deliberately not listed.
        _log.debug("%s: title type %s not installable", path, record.title_type.name)
        return None

    control = find_content(archives, ContentKind.CONTROL)
    properties = (
        None
        if control is None
        else read_application_properties(control, codec, settings.properties_filenames)
    )

    label = build_label(category, record, properties, container.partition.name)
    return InstallCandidate(path, label, settings.default_selected)


# ── Resolver ──────────────────────────────────────────────────────────


class InstallCandidateResolver:
    """
    Runs the classify -> normalize -> extract pipeline over a file list.

    Workflow:
        1. resolve() to turn picked paths into candidates
        2. caller toggles ``selected`` (InstallCandidate.toggled)
        3. confirmed_paths() for the final list to install
    """

    def __init__(
        self,
        codec: PackageCodec,
        settings: Optional[ResolverSettings] = None,
        log_callback: Optional[Callable[[str], None]] = None,
    ):
        self.codec = codec
        self.settings = settings or ResolverSettings()
        self._log_cb = log_callback or _log.debug

    def log(self, msg: str):
        self._log_cb(msg)

    def resolve(self, paths: Iterable[str]) -> list[InstallCandidate]:
        candidates: list[InstallCandidate] = []
        total = 0

        for path in paths:
            total += 1
            candidate = self.resolve_one(path)
            if candidate is not None:
                candidates.append(candidate)
                self.log(f"  {Path(path).name}: {candidate.label}")

        self.log(f"Resolved {len(candidates)} of {total} file(s)")
        return candidates

    def resolve_one(self, path: str) -> Optional[InstallCandidate]:
        name = Path(path).name

        try:
            handle = self.codec.open_file(path)
        except OSError as e:
            self.log(f"  {name}: could not open ({e}), skipping")
            return None
        if handle is None:
            self.log(f"  {name}: could not open, skipping")
            return None

        with closing(handle):
            try:
                container = classify(path, handle, self.codec)
                if container is None:
                    self.log(f"  {name}: not an installable package, skipping")
                    return None
                candidate = extract(path, container, self.codec, self.settings)
            except SKIPPABLE_ERRORS as e:
                self.log(f"  {name}: {e}, skipping")
                return None

        if candidate is None:
            self.log(f"  {name}: no installable Update or DLC found, skipping")
        return candidate


# ── Public API ────────────────────────────────────────────────────────


def resolve_candidates(
    paths: Iterable[str],
    codec: PackageCodec,
    settings: Optional[ResolverSettings] = None,
    log_callback: Optional[Callable[[str], None]] = None,
) -> list[InstallCandidate]:
    """Candidates for ``paths``, in input order, with skipped files left out."""
    return InstallCandidateResolver(codec, settings, log_callback).resolve(paths)


def confirmed_paths(candidates: Iterable[InstallCandidate]) -> list[str]:
    """Paths of the candidates still checked, in list order."""
    return [c.path for c in candidates if c.selected]
