"""Component and base installation metadata.

Component descriptors come from two places: catalog entries (JSON) and the
``META-INF/component.toml`` file embedded in component archives. Both end up
as the same immutable ComponentDescriptor.
"""

import logging
import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field

from .exceptions import MetadataError

logger = logging.getLogger(__name__)

# Capability keys (lower-cased release file keys)
CAP_GRAALVM_VERSION = "graalvm_version"
CAP_OS_NAME = "os_name"
CAP_OS_ARCH = "os_arch"
CAP_EDITION = "edition"
CAP_CATALOG_URL = "component_catalog"

RELEASE_FILE = "release"

DEFAULT_FILE_PERMISSIONS = 0o644

_RELEASE_LINE = re.compile(r'^\s*([A-Za-z_][A-Za-z0-9_.]*)\s*=\s*(.*?)\s*$')
_COMPONENT_ID = re.compile(r"[A-Za-z0-9_][A-Za-z0-9_.-]*")


def is_valid_component_id(component_id: str) -> bool:
    """True for plain dotted ids such as ``org.graalvm.ruby``; ids name registry files."""
    return bool(_COMPONENT_ID.fullmatch(component_id)) and ".." not in component_id


class FileEntry(BaseModel):
    """A file declared by a component, relative to the installation root."""

    model_config = ConfigDict(frozen=True)

    path: str
    permissions: int = DEFAULT_FILE_PERMISSIONS
    shared: bool = False


class ComponentDescriptor(BaseModel):
    """
    Installable component metadata.

    Immutable once parsed. ``requires`` maps capability keys of the base
    installation to their required value; ``graalvm_version`` is compared as
    a minimum version, every other capability must match exactly.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    version: str
    name: str = ""
    requires: dict[str, str] = Field(default_factory=dict)
    files: tuple[FileEntry, ...] = ()
    post_install: str | None = None

    # Catalog-only fields: where the archive lives and its sha256
    url: str | None = None
    checksum: str | None = None

    @property
    def display_name(self) -> str:
        return self.name or self.id

    def shared_paths(self) -> frozenset[str]:
        return frozenset(entry.path for entry in self.files if entry.shared)

    @classmethod
    def from_toml_data(cls, data: dict[str, Any], payload: dict[str, int] | None = None) -> "ComponentDescriptor":
        """
        Build a descriptor from parsed ``component.toml`` data.

        Args:
            data: Parsed TOML document
            payload: Archive payload paths mapped to their archive permissions

        Returns:
            ComponentDescriptor instance

        Raises:
            MetadataError: If the [component] section or required fields are missing
        """
        component = data.get("component")
        if not isinstance(component, dict):
            raise MetadataError("[component] section missing in component descriptor")

        for key in ("id", "version"):
            if not isinstance(component.get(key), str) or not component[key]:
                raise MetadataError(f"Component descriptor is missing required field '{key}'")
        if not is_valid_component_id(component["id"]):
            raise MetadataError(f"Invalid component id {component['id']!r}")

        requires = component.get("requires", {})
        if not isinstance(requires, dict):
            raise MetadataError("[component.requires] must be a table")

        overrides = component.get("permissions", {})
        shared = set(component.get("shared", []))

        files = []
        for path, mode in sorted((payload or {}).items()):
            if path in overrides:
                mode = _parse_mode(overrides[path])
            files.append(FileEntry(path=path, permissions=mode, shared=path in shared))

        return cls(
            id=component["id"],
            version=component["version"],
            name=component.get("name", ""),
            requires={str(k): str(v) for k, v in requires.items()},
            files=tuple(files),
            post_install=component.get("post_install"),
        )


def _parse_mode(value: Any) -> int:
    if isinstance(value, int):
        return value
    try:
        return int(str(value), 8)
    except ValueError:
        raise MetadataError(f"Invalid file permissions: {value!r}") from None


class BaseSystemInfo(BaseModel):
    """Capabilities of the base installation, read from its ``release`` file."""

    model_config = ConfigDict(frozen=True)

    capabilities: dict[str, str] = Field(default_factory=dict)

    @property
    def version(self) -> str | None:
        return self.capabilities.get(CAP_GRAALVM_VERSION)

    @property
    def catalog_url(self) -> str | None:
        return self.capabilities.get(CAP_CATALOG_URL)

    def get(self, capability: str) -> str | None:
        return self.capabilities.get(capability.lower())

    @classmethod
    def from_release_file(cls, release_path: Path) -> "BaseSystemInfo":
        """
        Load capabilities from a ``KEY="value"`` release file.

        Keys are lower-cased; surrounding quotes are stripped; comments and
        malformed lines are skipped.

        Raises:
            MetadataError: If the file is missing or has no version
        """
        if not release_path.exists():
            raise MetadataError(
                f"Release file not found: {release_path}",
                context={"path": str(release_path)},
            )

        capabilities: dict[str, str] = {}
        for line in release_path.read_text(encoding="utf-8").splitlines():
            if not line.strip() or line.lstrip().startswith("#"):
                continue
            match = _RELEASE_LINE.match(line)
            if match is None:
                logger.debug(f"Skipping malformed release line: {line!r}")
                continue
            key, value = match.groups()
            if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
                value = value[1:-1]
            capabilities[key.lower()] = value

        if CAP_GRAALVM_VERSION not in capabilities:
            raise MetadataError(
                f"{release_path} does not declare GRAALVM_VERSION",
                context={"path": str(release_path)},
            )
        return cls(capabilities=capabilities)
