"""Version comparison, checksums and path helpers shared across the installer."""

import hashlib
import logging
import re
from pathlib import Path
from pathlib import PurePosixPath

from packaging.version import InvalidVersion
from packaging.version import Version

logger = logging.getLogger(__name__)

VERSION_PATTERN = re.compile(r"(\d+(?:\.\d+)*)")

_CHUNK_SIZE = 64 * 1024


def release_tuple(raw: str) -> tuple[int, ...]:
    """Return the numeric release part of a version string.

    Qualifiers such as ``-dev`` or ``-rc1`` are dropped, so ``0.33-dev`` and
    ``0.33`` compare as equal releases.

    Raises:
        ValueError: If no numeric release can be found
    """
    try:
        release = Version(raw).release
    except InvalidVersion:
        match = VERSION_PATTERN.search(raw)
        if match is None:
            raise ValueError(f"Not a version: {raw!r}") from None
        release = tuple(int(part) for part in match.group(1).split("."))

    # Trailing zeros do not change a release ("1.0" == "1")
    trimmed = list(release)
    while len(trimmed) > 1 and trimmed[-1] == 0:
        trimmed.pop()
    return tuple(trimmed)


def is_version_compatible(available: str, required: str) -> bool:
    """True if ``available`` release is at least ``required`` release."""
    return release_tuple(available) >= release_tuple(required)


def version_sort_key(raw: str) -> tuple:
    """Sort key ordering versions oldest to newest; unparseable versions sort first."""
    try:
        return (1, Version(raw))
    except InvalidVersion:
        return (0, raw)


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sha256_file(path: Path) -> str:
    """Hex sha256 digest of a file's contents."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def normalize_relative_path(raw: str) -> str | None:
    """Normalize an archive/manifest path to a safe POSIX relative path.

    Returns:
        Normalized path, or None if it is absolute, empty or escapes the root
    """
    candidate = raw.replace("\\", "/")
    path = PurePosixPath(candidate)
    if path.is_absolute() or candidate.startswith("/"):
        return None
    parts = [part for part in path.parts if part not in ("", ".")]
    if not parts or ".." in parts:
        return None
    return "/".join(parts)


def prune_empty_dirs(start: Path, stop: Path) -> list[Path]:
    """Remove empty directories from ``start`` upwards, never removing ``stop``.

    Returns:
        Directories that were removed
    """
    removed: list[Path] = []
    current = start
    stop = stop.resolve()
    while current.resolve() != stop and stop in current.resolve().parents:
        try:
            current.rmdir()
        except OSError:
            # Not empty (or already gone); parents cannot be empty either
            break
        removed.append(current)
        logger.debug(f"Removed empty directory {current}")
        current = current.parent
    return removed
