"""
Archive inspection for uploaded saved-list exports.
Enumerates the per-list export files inside a zip archive without parsing them.
"""

from __future__ import annotations

import logging
import zipfile
from pathlib import Path, PurePosixPath

from src.importer.errors import ArchiveCorrupt, ArchiveEmpty, ParseError
from src.importer.importer_config import ImportConfig
from src.importer.models import ListSource

LOGGER = logging.getLogger("importer.archive")

_IGNORED_PREFIXES = ("__MACOSX/",)


def _is_ignored(entry_name: str) -> bool:
    return entry_name.startswith(_IGNORED_PREFIXES) or PurePosixPath(entry_name).name.startswith("._")


def _in_container(entry_name: str, container: str) -> bool:
    return container in PurePosixPath(entry_name).parent.parts


def _source_for(info: zipfile.ZipInfo) -> ListSource:
    path = PurePosixPath(info.filename)
    return ListSource(
        entry_name=info.filename,
        name=path.stem,
        extension=path.suffix.lower(),
    )


def inspect_archive(archive_path: Path | str, config: ImportConfig) -> list[ListSource]:
    """Return the per-list export files in the archive, ordered by entry name.

    Raises `ArchiveCorrupt` when the file is not a readable zip and `ArchiveEmpty`
    when nothing inside matches the saved-lists layout.
    """

    container = config.saved_lists_prefix.strip("/")
    extensions = {extension.lower() for extension in config.export_extensions}

    try:
        with zipfile.ZipFile(archive_path) as archive:
            entries = [info for info in archive.infolist() if not info.is_dir() and not _is_ignored(info.filename)]
    except (zipfile.BadZipFile, zipfile.LargeZipFile, OSError) as exc:
        raise ArchiveCorrupt(
            f"Archive could not be opened: {exc}",
            details={"archive_path": str(archive_path)},
        ) from exc

    sources = [
        _source_for(info)
        for info in entries
        if _in_container(info.filename, container) and PurePosixPath(info.filename).suffix.lower() in extensions
    ]

    if not sources:
        legacy = [info for info in entries if PurePosixPath(info.filename).name == config.legacy_export_name]
        if legacy:
            LOGGER.info("No %s exports found; using legacy export %s", container, legacy[0].filename)
            sources = [_source_for(legacy[0])]

    if not sources:
        raise ArchiveEmpty(
            f'No "{container}/*" exports or "{config.legacy_export_name}" found in archive',
            details={"archive_path": str(archive_path), "entry_count": len(entries)},
        )

    return sorted(sources, key=lambda source: source.entry_name)


def read_list_bytes(archive_path: Path | str, source: ListSource) -> bytes:
    """Read one export file; an unreadable entry only affects its own list."""

    try:
        with zipfile.ZipFile(archive_path) as archive:
            return archive.read(source.entry_name)
    except (zipfile.BadZipFile, KeyError, OSError) as exc:
        raise ParseError(
            f"Failed to read {source.name}: {exc}",
            details={"entry_name": source.entry_name},
        ) from exc
