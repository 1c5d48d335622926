"""Component archive reading.

A component archive is a zip file. ``META-INF/component.toml`` describes the
component; every other file entry is payload, installed at the same relative
path under the installation root.
"""

import logging
import stat
import tomllib
import zipfile
from dataclasses import dataclass
from pathlib import Path

from .exceptions import MetadataError
from .schema import DEFAULT_FILE_PERMISSIONS
from .schema import ComponentDescriptor
from .utils import normalize_relative_path

logger = logging.getLogger(__name__)

META_DIR = "META-INF/"
DESCRIPTOR_NAME = "META-INF/component.toml"


@dataclass(frozen=True)
class ArchiveEntry:
    """One payload file of a component archive."""

    path: str
    data: bytes
    mode: int = DEFAULT_FILE_PERMISSIONS


def _open(archive: Path) -> zipfile.ZipFile:
    if not archive.exists():
        raise FileNotFoundError(f"Component archive not found: {archive}")
    try:
        return zipfile.ZipFile(archive)
    except zipfile.BadZipFile as e:
        raise MetadataError(f"Not a component archive: {archive}", context={"archive": str(archive)}) from e


def _entry_mode(info: zipfile.ZipInfo) -> int:
    mode = stat.S_IMODE(info.external_attr >> 16)
    return mode or DEFAULT_FILE_PERMISSIONS


def _payload_infos(zf: zipfile.ZipFile, archive: Path) -> list[tuple[str, zipfile.ZipInfo]]:
    infos = []
    seen = set()
    for info in zf.infolist():
        if info.is_dir() or info.filename.startswith(META_DIR):
            continue
        path = normalize_relative_path(info.filename)
        if path is None:
            raise MetadataError(
                f"Archive entry escapes the installation root: {info.filename}",
                context={"archive": str(archive), "entry": info.filename},
            )
        if path in seen:
            raise MetadataError(
                f"Archive entry {path} is listed more than once",
                context={"archive": str(archive), "entry": info.filename},
            )
        seen.add(path)
        infos.append((path, info))
    return infos


def extract(archive: Path) -> list[ArchiveEntry]:
    """
    Read all payload entries of a component archive.

    Args:
        archive: Path to the zip archive

    Returns:
        Payload entries ordered by path

    Raises:
        FileNotFoundError: If the archive does not exist
        MetadataError: If the archive is not a zip or contains unsafe paths
    """
    with _open(archive) as zf:
        entries = [
            ArchiveEntry(path=path, data=zf.read(info), mode=_entry_mode(info))
            for path, info in _payload_infos(zf, archive)
        ]
    logger.debug(f"Extracted {len(entries)} entries from {archive}")
    return sorted(entries, key=lambda e: e.path)


def read_descriptor(archive: Path) -> ComponentDescriptor:
    """
    Read the component descriptor embedded in an archive.

    The declared file list is the archive payload; permissions come from the
    zip entry unless ``[component.permissions]`` overrides them.

    Raises:
        FileNotFoundError: If the archive does not exist
        MetadataError: If the descriptor is missing or invalid
    """
    with _open(archive) as zf:
        try:
            raw = zf.read(DESCRIPTOR_NAME)
        except KeyError:
            raise MetadataError(
                f"{DESCRIPTOR_NAME} not found in {archive}",
                context={"archive": str(archive)},
            ) from None
        payload = {path: _entry_mode(info) for path, info in _payload_infos(zf, archive)}

    try:
        data = tomllib.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, tomllib.TOMLDecodeError) as e:
        raise MetadataError(f"Invalid {DESCRIPTOR_NAME} in {archive}: {e}", context={"archive": str(archive)}) from e

    return ComponentDescriptor.from_toml_data(data, payload)
