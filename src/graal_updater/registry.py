"""Component registry - the persisted record of installed components.

The registry directory is the sole source of truth for what is installed.
It is never rebuilt by scanning the installation tree.

Layout: one JSON record per component under the storage directory
(``<home>/lib/installer/components/<id>.json``):
{
  "version": "1.0",
  "descriptor": {"id": "org.graalvm.ruby", "version": "1.0.0", ...},
  "files": [{"path": "bin/ruby", "checksum": "ab12...", "shared": false}],
  "installed_at": "2025-10-26T12:00:00+00:00"
}

There is no cross-process lock: two installers working on the same
installation concurrently interleave in an undefined way.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from dataclasses import field
from datetime import UTC
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from .exceptions import MetadataError
from .schema import ComponentDescriptor
from .schema import is_valid_component_id
from .utils import sha256_file

logger = logging.getLogger(__name__)

STORAGE_RELATIVE_PATH = Path("lib") / "installer" / "components"
RECORD_SUFFIX = ".json"


@dataclass(frozen=True)
class ManifestEntry:
    """A file placed by a component."""

    path: str
    checksum: str
    shared: bool = False

    def to_dict(self) -> dict:
        return {"path": self.path, "checksum": self.checksum, "shared": self.shared}

    @classmethod
    def from_dict(cls, data: dict) -> "ManifestEntry":
        return cls(**data)


@dataclass
class InstalledComponent:
    """Registry record of an installed component."""

    descriptor: ComponentDescriptor
    files: list[ManifestEntry] = field(default_factory=list)
    installed_at: str = ""

    @property
    def id(self) -> str:
        return self.descriptor.id

    @property
    def version(self) -> str:
        return self.descriptor.version

    def file_paths(self) -> set[str]:
        return {entry.path for entry in self.files}

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "version": ComponentRegistry.VERSION,
            "descriptor": self.descriptor.model_dump(mode="json"),
            "files": [entry.to_dict() for entry in self.files],
            "installed_at": self.installed_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "InstalledComponent":
        """Create from dictionary."""
        return cls(
            descriptor=ComponentDescriptor.model_validate(data["descriptor"]),
            files=[ManifestEntry.from_dict(entry) for entry in data.get("files", [])],
            installed_at=data.get("installed_at", ""),
        )


class ComponentRegistry:
    """
    Installed component registry (with injected storage path).

    Records are read when the registry is created or reloaded, and written
    only by record_install()/record_removal(), which the installer calls after
    a transaction has committed its files.
    """

    VERSION = "1.0"

    def __init__(self, storage_path: Path, home: Path):
        """Initialize registry.

        Args:
            storage_path: Directory holding one record per component
            home: Installation root that manifest paths are relative to

        Example:
            >>> registry = ComponentRegistry(home / STORAGE_RELATIVE_PATH, home)
        """
        self.storage_path = storage_path
        self.home = home
        self._data: dict[str, InstalledComponent] = {}
        self.load()

    def load(self) -> "ComponentRegistry":
        """
        Read persisted records. A missing storage directory means nothing is installed.

        Raises:
            MetadataError: If a record cannot be parsed
        """
        self._data = {}
        if not self.storage_path.is_dir():
            logger.debug(f"No registry at {self.storage_path}; nothing installed")
            return self

        for record_path in sorted(self.storage_path.glob(f"*{RECORD_SUFFIX}")):
            try:
                with open(record_path, encoding="utf-8") as f:
                    data = json.load(f)
                if data.get("version") != self.VERSION:
                    logger.warning(
                        f"Registry record version mismatch in {record_path.name}: "
                        f"expected {self.VERSION}, got {data.get('version')}"
                    )
                component = InstalledComponent.from_dict(data)
            except (OSError, json.JSONDecodeError, KeyError, TypeError, ValidationError) as e:
                raise MetadataError(
                    f"Invalid registry record {record_path}: {e}",
                    context={"path": str(record_path)},
                ) from e
            self._data[component.id] = component

        logger.debug(f"Loaded {len(self._data)} installed components from {self.storage_path}")
        return self

    def _record_path(self, component_id: str) -> Path:
        if not is_valid_component_id(component_id):
            raise MetadataError(f"Invalid component id {component_id!r}", context={"component": component_id})
        return self.storage_path / f"{component_id}{RECORD_SUFFIX}"

    def _write_record(self, component: InstalledComponent) -> None:
        record_path = self._record_path(component.id)
        self.storage_path.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.storage_path, prefix=".record-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(component.to_dict(), f, indent=2)
            os.replace(tmp_name, record_path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def list_installed(self) -> list[InstalledComponent]:
        """
        List installed components.

        Returns:
            Installed components ordered by id
        """
        return [self._data[cid] for cid in sorted(self._data)]

    def find(self, component_id: str) -> InstalledComponent | None:
        return self._data.get(component_id)

    def is_installed(self, component_id: str) -> bool:
        return component_id in self._data

    def owners_of(self, path: str) -> list[InstalledComponent]:
        """Installed components whose manifest contains ``path``."""
        return [c for c in self.list_installed() if path in c.file_paths()]

    def is_shared_by_others(self, path: str, component_id: str) -> bool:
        """True if another installed component also owns ``path`` as a shared file."""
        for owner in self.owners_of(path):
            if owner.id == component_id:
                continue
            if any(entry.path == path and entry.shared for entry in owner.files):
                return True
        return False

    def record_install(self, descriptor: ComponentDescriptor, manifest: list[ManifestEntry]) -> InstalledComponent:
        """
        Persist an installed component (replacing any previous record for its id).

        Raises:
            OSError: If the record cannot be written; in-memory state is unchanged
        """
        component = InstalledComponent(
            descriptor=descriptor,
            files=sorted(manifest, key=lambda e: e.path),
            installed_at=datetime.now(UTC).isoformat(),
        )
        self._write_record(component)
        self._data[component.id] = component
        logger.debug(f"Recorded {component.id} {component.version} with {len(manifest)} files")
        return component

    def record_removal(self, component_id: str) -> None:
        """
        Remove a component record.

        Raises:
            OSError: If the record cannot be deleted
        """
        self._record_path(component_id).unlink(missing_ok=True)
        self._data.pop(component_id, None)
        logger.debug(f"Removed {component_id} from registry")

    def verify(self) -> list[str]:
        """
        Check installed manifests against the installation tree.

        Out-of-sync files are reported, never repaired.

        Returns:
            Human-readable problems, empty when in sync
        """
        problems = []
        for component in self.list_installed():
            for entry in component.files:
                target = self.home / entry.path
                if not target.is_file():
                    problems.append(f"{component.id}: file {entry.path} is missing")
                elif sha256_file(target) != entry.checksum:
                    problems.append(f"{component.id}: file {entry.path} was modified")
        for problem in problems:
            logger.warning(f"Registry out of sync: {problem}")
        return problems
