"""Install/uninstall engine.

Each operation is one InstallTransaction moving through the states

    RESOLVED -> STAGED -> COMMITTED      (success)
    RESOLVED -> STAGED -> ROLLED_BACK    (failure)

Staging extracts and checks everything in a scratch directory inside the
installation root; nothing else is touched until commit. Commit moves files
into place one rename at a time and updates the registry only after every
file is in place. Any failure rolls back the files placed so far and leaves
the registry alone.

Operations return a TransactionResult instead of raising, so callers see the
final state and both the primary and any rollback errors.
"""

import errno
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from dataclasses import field
from enum import Enum
from pathlib import Path

from .archive import extract
from .exceptions import ComponentAlreadyInstalledError
from .exceptions import ComponentError
from .exceptions import ComponentNotFoundError
from .exceptions import ConflictingComponentError
from .exceptions import InstallerIOError
from .exceptions import UserAbortError
from .registry import ComponentRegistry
from .registry import InstalledComponent
from .registry import ManifestEntry
from .schema import ComponentDescriptor
from .utils import prune_empty_dirs
from .utils import sha256_bytes
from .utils import sha256_file

logger = logging.getLogger(__name__)

STAGING_PREFIX = ".gu-staging-"


class TransactionState(str, Enum):
    RESOLVED = "resolved"
    STAGED = "staged"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled-back"


@dataclass
class TransactionResult:
    """Outcome of one install or uninstall."""

    component_id: str
    state: TransactionState = TransactionState.RESOLVED
    error: ComponentError | None = None
    secondary_errors: list[str] = field(default_factory=list)
    installed: InstalledComponent | None = None
    removed_files: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state is TransactionState.COMMITTED

    @property
    def exit_code(self) -> int:
        return 0 if self.ok or self.error is None else self.error.exit_code


@dataclass
class _StagedFile:
    path: str
    staged: Path | None
    checksum: str
    shared: bool


class InstallTransaction:
    """
    One install or uninstall operation.

    Ephemeral: holds staged writes, planned removals and the commit journal
    for a single call, and is discarded afterwards whether it committed or not.
    """

    def __init__(self, home: Path, registry: ComponentRegistry, replace: bool = False):
        """Initialize transaction.

        Args:
            home: Installation root
            registry: Registry of the installation
            replace: Overwrite existing unowned files and reinstall installed components
        """
        self.home = home
        self.registry = registry
        self.replace = replace
        self.state = TransactionState.RESOLVED
        self._stage_dir: Path | None = None
        self._staged: list[_StagedFile] = []
        self._removals: list[str] = []
        # (target, backup) in commit order; backup is None for new files
        self._journal: list[tuple[Path, Path | None]] = []
        self._created_dirs: list[Path] = []

    # Install

    def install(self, descriptor: ComponentDescriptor, archive: Path) -> TransactionResult:
        """
        Install a resolved component from its archive.

        Returns:
            TransactionResult, COMMITTED on success and ROLLED_BACK otherwise
        """
        result = TransactionResult(component_id=descriptor.id)
        try:
            try:
                self._stage_install(descriptor, archive)
                result.installed = self._commit_install(descriptor)
            except KeyboardInterrupt:
                result.error = UserAbortError(f"Installation of {descriptor.id} was interrupted")
            except ComponentError as e:
                result.error = e
            except OSError as e:
                result.error = InstallerIOError(
                    f"Cannot install {descriptor.id}: {e}",
                    e,
                    context={"component": descriptor.id, "path": e.filename},
                )

            if result.error is not None:
                logger.error(f"Installation of {descriptor.id} failed: {result.error.message}")
                self._rollback(result)
            result.state = self.state
            return result
        finally:
            self._discard_stage()

    def _stage_install(self, descriptor: ComponentDescriptor, archive: Path) -> None:
        existing = self.registry.find(descriptor.id)
        if existing is not None and not self.replace:
            raise ComponentAlreadyInstalledError(
                f"Component {descriptor.id} {existing.version} is already installed",
                context={"component": descriptor.id, "version": existing.version},
            )

        entries = extract(archive)
        declared = {entry.path: entry for entry in descriptor.files}
        shared = descriptor.shared_paths()
        owned_before = existing.file_paths() if existing is not None else set()

        self._stage_dir = Path(tempfile.mkdtemp(prefix=STAGING_PREFIX, dir=self.home))
        logger.debug(f"Staging {descriptor.id} in {self._stage_dir}")

        for entry in entries:
            target = self.home / entry.path
            is_shared = entry.path in shared
            other_owners = [o.id for o in self.registry.owners_of(entry.path) if o.id != descriptor.id]

            if other_owners:
                if not (is_shared and self.registry.is_shared_by_others(entry.path, descriptor.id)):
                    raise ConflictingComponentError(
                        f"File {entry.path} of {descriptor.id} is already installed by {', '.join(other_owners)}",
                        context={"component": descriptor.id, "path": entry.path, "owners": other_owners},
                    )
                if target.is_file():
                    # Shared file is already in place; keep the installed copy
                    self._staged.append(_StagedFile(entry.path, None, sha256_file(target), True))
                    continue
            elif target.is_dir():
                raise IsADirectoryError(errno.EISDIR, "A directory exists where a file would be installed", str(target))
            elif (target.exists() or target.is_symlink()) and entry.path not in owned_before and not self.replace:
                raise FileExistsError(errno.EEXIST, "File already exists", str(target))

            mode = declared[entry.path].permissions if entry.path in declared else entry.mode
            staged = self._stage_dir / "files" / entry.path
            staged.parent.mkdir(parents=True, exist_ok=True)
            staged.write_bytes(entry.data)
            staged.chmod(mode)
            self._staged.append(_StagedFile(entry.path, staged, sha256_bytes(entry.data), is_shared))

        new_paths = {entry.path for entry in entries}
        self._removals = sorted(
            path
            for path in owned_before - new_paths
            if not self.registry.is_shared_by_others(path, descriptor.id)
        )
        self.state = TransactionState.STAGED
        logger.debug(f"Staged {len(self._staged)} files, {len(self._removals)} removals for {descriptor.id}")

    def _commit_install(self, descriptor: ComponentDescriptor) -> InstalledComponent:
        assert self._stage_dir is not None
        backup_root = self._stage_dir / "backup"

        for staged_file in self._staged:
            if staged_file.staged is None:
                continue
            target = self.home / staged_file.path
            self._make_parents(target.parent)
            backup = self._backup(target, backup_root / staged_file.path)
            self._journal.append((target, backup))
            os.replace(staged_file.staged, target)

        for path in self._removals:
            target = self.home / path
            backup = self._backup(target, backup_root / path)
            if backup is not None:
                self._journal.append((target, backup))

        manifest = [ManifestEntry(path=s.path, checksum=s.checksum, shared=s.shared) for s in self._staged]
        installed = self.registry.record_install(descriptor, manifest)
        self.state = TransactionState.COMMITTED

        for path in self._removals:
            prune_empty_dirs((self.home / path).parent, self.home)
        logger.info(f"Installed {descriptor.id} {descriptor.version} ({len(manifest)} files)")
        return installed

    def _backup(self, target: Path, backup: Path) -> Path | None:
        if not (target.exists() or target.is_symlink()):
            return None
        backup.parent.mkdir(parents=True, exist_ok=True)
        os.replace(target, backup)
        return backup

    def _make_parents(self, directory: Path) -> None:
        missing = []
        current = directory
        while not current.exists() and current != self.home:
            missing.append(current)
            current = current.parent
        for path in reversed(missing):
            path.mkdir()
            self._created_dirs.append(path)

    def _rollback(self, result: TransactionResult) -> None:
        """Undo committed steps; failures are recorded as secondary errors."""
        for target, backup in reversed(self._journal):
            try:
                target.unlink(missing_ok=True)
                if backup is not None:
                    os.replace(backup, target)
            except OSError as e:
                message = f"Rollback could not restore {target}: {e}"
                logger.error(message)
                result.secondary_errors.append(message)
        for directory in reversed(self._created_dirs):
            try:
                directory.rmdir()
            except OSError as e:
                message = f"Rollback could not remove directory {directory}: {e}"
                logger.error(message)
                result.secondary_errors.append(message)
        self._journal.clear()
        self._created_dirs.clear()
        self.state = TransactionState.ROLLED_BACK

    def _discard_stage(self) -> None:
        if self._stage_dir is None:
            return
        try:
            shutil.rmtree(self._stage_dir)
        except OSError as e:
            logger.warning(f"Could not remove staging directory {self._stage_dir}: {e}")
        self._stage_dir = None

    # Uninstall

    def uninstall(self, component_id: str) -> TransactionResult:
        """
        Remove an installed component.

        Only files in the component's manifest that no other installed
        component shares are deleted. Removal is the last step, so there is
        nothing to roll back; a failure part way leaves the registry entry in
        place and the registry reports the missing files as out of sync.

        Returns:
            TransactionResult, COMMITTED on success and ROLLED_BACK otherwise
        """
        result = TransactionResult(component_id=component_id)
        component = self.registry.find(component_id)
        if component is None:
            result.error = ComponentNotFoundError(
                f"Component {component_id} is not installed",
                context={"component": component_id},
            )
            result.state = self.state = TransactionState.ROLLED_BACK
            return result

        try:
            self._stage_uninstall(component)
            result.removed_files = self._commit_uninstall(component)
        except KeyboardInterrupt:
            result.error = UserAbortError(f"Removal of {component_id} was interrupted")
        except ComponentError as e:
            result.error = e
        except OSError as e:
            result.error = InstallerIOError(
                f"Cannot uninstall {component_id}: {e}",
                e,
                context={"component": component_id, "path": e.filename},
            )

        if result.error is not None:
            logger.error(f"Removal of {component_id} failed: {result.error.message}")
            self.state = TransactionState.ROLLED_BACK
        result.state = self.state
        return result

    def _stage_uninstall(self, component: InstalledComponent) -> None:
        removals = []
        for entry in component.files:
            if self.registry.is_shared_by_others(entry.path, component.id):
                logger.debug(f"Keeping {entry.path}, shared with another component")
                continue
            target = self.home / entry.path
            if target.is_dir() and not target.is_symlink():
                raise OSError(errno.ENOTEMPTY, "Expected a file but found a directory", str(target))
            if not (target.exists() or target.is_symlink()):
                logger.warning(f"Registry out of sync: {component.id} file {entry.path} is already missing")
                continue
            removals.append(entry.path)
        self._removals = removals
        self.state = TransactionState.STAGED

    def _commit_uninstall(self, component: InstalledComponent) -> list[str]:
        removed = []
        for path in self._removals:
            (self.home / path).unlink()
            removed.append(path)
        for path in removed:
            prune_empty_dirs((self.home / path).parent, self.home)
        self.registry.record_removal(component.id)
        self.state = TransactionState.COMMITTED
        logger.info(f"Uninstalled {component.id} {component.version} ({len(removed)} files removed)")
        return removed


def install_component(
    descriptor: ComponentDescriptor,
    archive: Path,
    home: Path,
    registry: ComponentRegistry,
    replace: bool = False,
) -> TransactionResult:
    """
    Install a component (mechanism only, apps inject paths and registry).

    Args:
        descriptor: Resolved, requirement-checked descriptor
        archive: Local component archive
        home: Installation root
        registry: Registry of the installation
        replace: Overwrite existing files and reinstall an installed component

    Returns:
        TransactionResult of the operation

    Example:
        >>> result = install_component(resolved.descriptor, resolved.archive, home, registry)
        >>> if not result.ok:
        ...     print(result.error.message)
    """
    return InstallTransaction(home, registry, replace=replace).install(descriptor, archive)


def uninstall_component(component_id: str, home: Path, registry: ComponentRegistry) -> TransactionResult:
    """
    Uninstall a component (mechanism only, apps inject paths and registry).

    Returns:
        TransactionResult; ComponentNotFound error if it is not installed
    """
    return InstallTransaction(home, registry).uninstall(component_id)
